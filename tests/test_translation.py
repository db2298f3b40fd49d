"""Tests for translation between local and peer row shapes."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from common.constants import DIRECTION_FORWARD, DIRECTION_REVERSE, ENTITY_MCP_SERVER, ENTITY_SESSION
from replicator.exceptions import TranslationError
from replicator.replication import translation
from replicator.replication.translation import (
    mcp_server_from_peer,
    mcp_server_to_peer,
    oauth_session_to_peer,
    remap_enum,
    to_epoch_seconds,
    to_string_list,
    to_string_map,
    translate,
    user_to_peer,
)

from conftest import make_local_server, make_oauth_session, make_peer_server, make_user


@pytest.fixture
def mock_logger(monkeypatch):
    logger = MagicMock()
    monkeypatch.setattr(translation, "logger", logger)
    return logger


class TestHelpers:

    def test_remap_enum_allowed_value(self, entity_config):
        assert remap_enum("SSE", entity_config.transport) == "SSE"

    def test_remap_enum_alias(self, entity_config):
        mapping = entity_config.transport.model_copy(update={"aliases": {"stdio": "STDIO"}})
        assert remap_enum("stdio", mapping) == "STDIO"

    def test_remap_enum_unknown_raises(self, entity_config):
        with pytest.raises(TranslationError):
            remap_enum("WEBSOCKET", entity_config.transport)

    def test_to_string_list_from_json_text(self):
        assert to_string_list('["a", "b"]') == ["a", "b"]

    def test_to_string_list_stringifies_non_strings(self):
        assert to_string_list([1, "x", {"k": 1}]) == ["1", "x", '{"k": 1}']

    def test_to_string_list_none_is_empty(self):
        assert to_string_list(None) == []

    def test_to_string_list_rejects_object(self):
        with pytest.raises(TranslationError):
            to_string_list({"a": 1})

    def test_to_string_list_rejects_invalid_json(self):
        with pytest.raises(TranslationError):
            to_string_list("not json")

    def test_to_string_map_rejects_list(self):
        with pytest.raises(TranslationError):
            to_string_map([1, 2])

    def test_to_epoch_seconds_naive_is_utc(self):
        expected = int(datetime(2025, 1, 1, tzinfo=timezone.utc).timestamp())
        assert to_epoch_seconds("2025-01-01T00:00:00") == expected

    def test_to_epoch_seconds_with_offset(self):
        expected = int(datetime(2025, 1, 1, tzinfo=timezone.utc).timestamp())
        assert to_epoch_seconds("2025-01-01T02:00:00+02:00") == expected
        assert to_epoch_seconds("2025-01-01T00:00:00Z") == expected

    def test_to_epoch_seconds_empty(self):
        assert to_epoch_seconds(None) is None
        assert to_epoch_seconds("") is None

    def test_to_epoch_seconds_invalid(self):
        with pytest.raises(TranslationError):
            to_epoch_seconds("yesterday")


class TestIdentityTranslation:

    def test_user_renames_and_normalizes_boolean(self):
        peer = user_to_peer(make_user(email_verified=1))

        assert peer["id"] == "u1"
        assert peer["email"] == "a@x.com"
        assert peer["email_verified"] is True

    def test_session_passes_key_through(self):
        row = {
            "id": "sess-1", "expires_at": "2025-02-01T00:00:00", "token": "tok",
            "created_at": "c", "updated_at": "u", "ip_address": "127.0.0.1",
            "user_agent": "pytest", "user_id": "u1",
        }
        peer = translate(DIRECTION_FORWARD, ENTITY_SESSION, row)

        assert peer == row


class TestMcpServerTranslation:

    def test_forward_maps_fields(self, entity_config):
        row = make_local_server(
            auth_config={"bearer_token": "abc", "headers": {"X-Team": "core"}},
        )
        peer = mcp_server_to_peer(row, entity_config)

        assert peer["uuid"] == "s1"
        assert peer["type"] == "STDIO"
        assert peer["args"] == ["-y", "@modelcontextprotocol/server-everything"]
        assert peer["env"] == {"DEBUG": "1"}
        assert peer["bearer_token"] == "abc"
        assert peer["headers"] == {"X-Team": "core"}

    def test_forward_unknown_type_defaults_to_stdio(self, entity_config, mock_logger):
        peer = mcp_server_to_peer(make_local_server(type="WEBSOCKET"), entity_config)

        assert peer["type"] == "STDIO"
        mock_logger.warning.assert_called_once()
        assert "field=type" in mock_logger.warning.call_args[0][0]

    def test_forward_malformed_containers_use_defaults(self, entity_config, mock_logger):
        row = make_local_server(args="not json", environment=["x"], auth_config="{broken")
        peer = mcp_server_to_peer(row, entity_config)

        assert peer["args"] == []
        assert peer["env"] == {}
        assert peer["bearer_token"] is None
        assert peer["headers"] == {}
        assert mock_logger.warning.call_count == 3

    def test_forward_empty_bearer_token_is_null(self, entity_config):
        peer = mcp_server_to_peer(make_local_server(auth_config={"bearer_token": ""}), entity_config)
        assert peer["bearer_token"] is None

    def test_reverse_derives_auth_type(self, entity_config):
        with_token = mcp_server_from_peer(make_peer_server(bearer_token="tok"), entity_config, now="now")
        without_token = mcp_server_from_peer(make_peer_server(), entity_config, now="now")

        assert with_token["auth_type"] == "bearer_token"
        assert with_token["auth_config"] == {"bearer_token": "tok", "headers": {}}
        assert without_token["auth_type"] == "none"

    def test_reverse_maps_fields(self, entity_config):
        local = mcp_server_from_peer(
            make_peer_server(env={"A": "1"}, args=["--port", "80"]), entity_config, now="now"
        )

        assert local["id"] == "p1"
        assert local["type"] == "SSE"
        assert local["environment"] == {"A": "1"}
        assert local["args"] == ["--port", "80"]
        assert local["enabled"] is True
        assert local["created_at"] == "2025-01-01T00:00:00"
        assert local["updated_at"] == "now"

    def test_reverse_unknown_type_defaults_to_stdio(self, entity_config, mock_logger):
        local = translate(DIRECTION_REVERSE, ENTITY_MCP_SERVER, make_peer_server(type="GRPC"), entity_config)

        assert local["type"] == "STDIO"
        mock_logger.warning.assert_called_once()


class TestOAuthSessionTranslation:

    def test_builds_client_information_and_tokens(self):
        row = make_oauth_session(
            access_token="t1",
            refresh_token="r1",
            token_type="bearer",
            expires_at="2025-01-01T00:00:00",
            scope="read",
            status="authorized",
        )
        peer = oauth_session_to_peer(row)

        assert peer["uuid"] == "o1"
        assert peer["mcp_server_uuid"] == "s1"
        assert peer["client_information"] == {"client_id": "client-1", "client_secret": "shh"}
        assert peer["tokens"] == {
            "access_token": "t1",
            "refresh_token": "r1",
            "token_type": "bearer",
            "expires_at": int(datetime(2025, 1, 1, tzinfo=timezone.utc).timestamp()),
            "scope": "read",
        }
        assert peer["code_verifier"] == "verifier"

    def test_token_defaults(self):
        peer = oauth_session_to_peer(make_oauth_session(access_token="t1", client_secret=None))

        assert peer["client_information"]["client_secret"] == ""
        assert peer["tokens"]["refresh_token"] == ""
        assert peer["tokens"]["token_type"] == "Bearer"
        assert peer["tokens"]["expires_at"] is None
        assert peer["tokens"]["scope"] == ""

    def test_invalid_expiry_falls_back_to_null(self, mock_logger):
        peer = oauth_session_to_peer(make_oauth_session(access_token="t1", expires_at="soon"))

        assert peer["tokens"]["expires_at"] is None
        mock_logger.warning.assert_called_once()


def test_translate_unknown_pair_raises():
    with pytest.raises(KeyError):
        translate(DIRECTION_REVERSE, ENTITY_SESSION, {"id": "x"})
