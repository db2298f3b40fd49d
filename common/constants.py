"""Project-wide constants (entity names, directions, enum values, defaults)."""

ENTITY_USER = "user"
ENTITY_SESSION = "session"
ENTITY_ACCOUNT = "account"
ENTITY_MCP_SERVER = "mcp_server"
ENTITY_OAUTH_SESSION = "oauth_session"

DIRECTION_FORWARD = "agentpod->metamcp"
DIRECTION_REVERSE = "metamcp->agentpod"

DEFAULT_LOCAL_IDENTITY = "agentpod_sync"
DEFAULT_PEER_IDENTITY = "metamcp_sync"

TRANSPORT_STDIO = "STDIO"
TRANSPORT_SSE = "SSE"
TRANSPORT_STREAMABLE_HTTP = "STREAMABLE_HTTP"
TRANSPORT_KINDS = (TRANSPORT_STDIO, TRANSPORT_SSE, TRANSPORT_STREAMABLE_HTTP)

OAUTH_STATUS_PENDING = "pending"
OAUTH_STATUS_AUTHORIZED = "authorized"
OAUTH_STATUS_EXPIRED = "expired"
OAUTH_STATUS_ERROR = "error"
OAUTH_STATUSES = (
    OAUTH_STATUS_PENDING,
    OAUTH_STATUS_AUTHORIZED,
    OAUTH_STATUS_EXPIRED,
    OAUTH_STATUS_ERROR,
)

AUTH_TYPE_NONE = "none"
AUTH_TYPE_BEARER = "bearer_token"

DEFAULT_TOKEN_TYPE = "Bearer"

DEFAULT_APPLY_TIMEOUT_SECONDS: float = 5.0
DEFAULT_READINESS_MAX_ATTEMPTS: int = 10
DEFAULT_READINESS_DELAY_SECONDS: float = 3.0
DEFAULT_DISPATCH_WORKERS: int = 4
DEFAULT_DISPATCH_QUEUE_SIZE: int = 1000
DEFAULT_RECONCILE_BATCH_SIZE: int = 200
