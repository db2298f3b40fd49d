"""API routes package."""

from replicator.routes.admin_routes import router as admin_router

__all__ = ["admin_router"]
