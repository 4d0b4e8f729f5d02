import json
import os
from unittest.mock import MagicMock

import pytest
import requests

from clipboard_store import (
    BackendUnavailable,
    ClipboardItem,
    EdgeConfigStore,
    FileStore,
    MalformedResponse,
    PayloadTooLarge,
    build_store,
    decode_item,
    parse_connection_string,
)

CONNECTION_STRING = "https://edge-config.vercel.com/ecfg_abc123?token=read-token"


def _response(status_code=200, json_data=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    response.json.return_value = json_data
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def edge_store(session):
    return EdgeConfigStore(CONNECTION_STRING, write_token="admin-token", timeout=5, session=session)


class TestClipboardItem:
    def test_empty(self):
        item = ClipboardItem.empty()
        assert item.content == ""
        assert item.type == "text"
        assert item.language is None
        assert item.timestamp > 0

    def test_byte_size_counts_utf8(self, make_item):
        assert make_item("é").byte_size == 2


class TestDecodeItem:
    def test_dict(self):
        item = decode_item({"content": "x", "type": "text", "language": None, "timestamp": 1})
        assert item.content == "x"

    def test_json_string(self):
        item = decode_item(json.dumps({"content": "x", "type": "sql", "language": "sql", "timestamp": 1}))
        assert item.type == "sql"

    def test_garbage_string(self):
        with pytest.raises(MalformedResponse):
            decode_item("not json")

    def test_wrong_type(self):
        with pytest.raises(MalformedResponse):
            decode_item([1, 2])

    def test_missing_fields(self):
        with pytest.raises(MalformedResponse):
            decode_item({"type": "text"})


class TestParseConnectionString:
    def test_url_form(self):
        assert parse_connection_string(CONNECTION_STRING) == ("ecfg_abc123", "read-token")

    def test_prefixed_form(self):
        assert parse_connection_string("edge-config:id=ecfg_abc123&token=read-token") == ("ecfg_abc123", "read-token")

    def test_url_without_token(self):
        assert parse_connection_string("https://edge-config.vercel.com/ecfg_abc123") == ("ecfg_abc123", None)

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_missing(self, value):
        with pytest.raises(BackendUnavailable, match="EDGE_CONFIG"):
            parse_connection_string(value)

    def test_foreign_host(self):
        with pytest.raises(BackendUnavailable):
            parse_connection_string("https://example.com/ecfg_abc123?token=x")

    def test_missing_id(self):
        with pytest.raises(BackendUnavailable):
            parse_connection_string("https://edge-config.vercel.com/?token=x")

    def test_unparseable_url(self):
        with pytest.raises(BackendUnavailable, match="Invalid EDGE_CONFIG format"):
            parse_connection_string("https://[edge-config.vercel.com/x?token=t")


class TestSizeCeiling:
    def test_exactly_at_limit_is_written(self, edge_store, session, make_item):
        session.patch.return_value = _response(200, {"status": "ok"})
        edge_store.write("clipboard_content", make_item("a" * 8192))
        session.patch.assert_called_once()

    def test_one_byte_over_is_rejected_before_network(self, edge_store, session, make_item):
        with pytest.raises(PayloadTooLarge) as exc_info:
            edge_store.write("clipboard_content", make_item("a" * 8193))
        assert exc_info.value.size == 8193
        assert exc_info.value.limit == 8192
        session.patch.assert_not_called()

    def test_multibyte_characters_count_as_bytes(self, edge_store, session, make_item):
        # 4097 two-byte characters is 8194 bytes
        with pytest.raises(PayloadTooLarge):
            edge_store.write("clipboard_content", make_item("é" * 4097))
        session.patch.assert_not_called()

    def test_configurable_limit(self, tmp_path, make_item):
        store = FileStore(str(tmp_path), max_content_bytes=10)
        store.write("k", make_item("0123456789"))
        with pytest.raises(PayloadTooLarge):
            store.write("k", make_item("0123456789!"))


class TestEdgeConfigRead:
    def test_read_item(self, edge_store, session):
        record = {"content": "hi", "type": "text", "language": None, "timestamp": 123}
        session.get.return_value = _response(200, record)

        item = edge_store.read("clipboard_content")

        assert item == ClipboardItem(**record)
        args, kwargs = session.get.call_args
        assert args[0] == "https://edge-config.vercel.com/ecfg_abc123/item/clipboard_content"
        assert kwargs["headers"] == {"Authorization": "Bearer read-token"}
        assert kwargs["timeout"] == 5

    def test_missing_key_is_absent(self, edge_store, session):
        session.get.return_value = _response(404, text="not found")
        assert edge_store.read("clipboard_content") is None

    def test_unauthorized_is_absent(self, edge_store, session):
        session.get.return_value = _response(401, text="unauthorized")
        assert edge_store.read("clipboard_content") is None

    def test_network_error_is_absent(self, edge_store, session):
        session.get.side_effect = requests.exceptions.ConnectionError("boom")
        assert edge_store.read("clipboard_content") is None

    def test_malformed_value_is_absent(self, edge_store, session):
        session.get.return_value = _response(200, {"unexpected": True})
        assert edge_store.read("clipboard_content") is None

    def test_unconfigured_is_absent(self, session):
        store = EdgeConfigStore(None, session=session)
        assert store.read("clipboard_content") is None
        session.get.assert_not_called()

    def test_unparseable_connection_string_is_absent(self, session):
        store = EdgeConfigStore("https://[edge-config.vercel.com/x?token=t", session=session)
        assert store.read("clipboard_content") is None
        session.get.assert_not_called()

    def test_read_raw_raises(self, session):
        store = EdgeConfigStore(None, session=session)
        with pytest.raises(BackendUnavailable):
            store.read_raw("clipboard_content")


class TestEdgeConfigWrite:
    def test_upsert_request(self, edge_store, session, make_item):
        session.patch.return_value = _response(200, {"status": "ok"})
        item = make_item("SELECT * FROM users", type="sql", language="sql")

        assert edge_store.write("clipboard_content", item) == item

        args, kwargs = session.patch.call_args
        assert args[0] == "https://api.vercel.com/v1/edge-config/ecfg_abc123/items"
        assert kwargs["headers"]["Authorization"] == "Bearer admin-token"
        assert kwargs["json"] == {
            "items": [{"operation": "upsert", "key": "clipboard_content", "value": item.model_dump()}]
        }
        assert kwargs["params"] is None
        assert kwargs["timeout"] == 5

    def test_team_id_query_param(self, session, make_item):
        store = EdgeConfigStore(CONNECTION_STRING, write_token="admin-token", team_id="team_1", session=session)
        session.patch.return_value = _response(200)
        store.write("clipboard_content", make_item())
        assert session.patch.call_args.kwargs["params"] == {"teamId": "team_1"}

    def test_missing_write_token(self, session, make_item):
        store = EdgeConfigStore(CONNECTION_STRING, session=session)
        with pytest.raises(BackendUnavailable, match="EDGE_CONFIG_TOKEN"):
            store.write("clipboard_content", make_item())
        session.patch.assert_not_called()

    def test_missing_connection_string(self, session, make_item):
        store = EdgeConfigStore(None, write_token="admin-token", session=session)
        with pytest.raises(BackendUnavailable):
            store.write("clipboard_content", make_item())

    def test_http_error(self, edge_store, session, make_item):
        session.patch.return_value = _response(403, text="forbidden")
        with pytest.raises(BackendUnavailable, match="403 forbidden"):
            edge_store.write("clipboard_content", make_item())

    def test_server_side_size_error(self, edge_store, session, make_item):
        session.patch.return_value = _response(400, text="Edge Config size limit exceeded")
        with pytest.raises(PayloadTooLarge, match="Storage limit reached"):
            edge_store.write("clipboard_content", make_item())

    def test_413_status(self, edge_store, session, make_item):
        session.patch.return_value = _response(413, text="")
        with pytest.raises(PayloadTooLarge) as exc_info:
            edge_store.write("clipboard_content", make_item("héllo"))
        assert exc_info.value.size == 6
        assert exc_info.value.limit == 8192

    def test_timeout(self, edge_store, session, make_item):
        session.patch.side_effect = requests.exceptions.Timeout()
        with pytest.raises(BackendUnavailable, match="timed out"):
            edge_store.write("clipboard_content", make_item())

    def test_connection_error(self, edge_store, session, make_item):
        session.patch.side_effect = requests.exceptions.ConnectionError("unreachable")
        with pytest.raises(BackendUnavailable, match="unreachable"):
            edge_store.write("clipboard_content", make_item())


class TestDescribe:
    def test_configured(self, edge_store):
        info = edge_store.describe()
        assert info["configured"] is True
        assert info["edge_config_id"] == "ecfg_abc123"
        assert info["has_read_token"] is True
        assert info["has_write_token"] is True
        assert "read-token" not in json.dumps(info)
        assert "admin-token" not in json.dumps(info)

    def test_unconfigured(self):
        info = EdgeConfigStore(None).describe()
        assert info["configured"] is False
        assert info["has_write_token"] is False


class TestFileStore:
    def test_missing_is_absent(self, file_store):
        assert file_store.read("clipboard_content") is None

    def test_write_then_read(self, file_store, make_item):
        item = make_item("print('hi')", type="python", language="python")
        file_store.write("clipboard_content", item)
        assert file_store.read("clipboard_content") == item

    def test_last_write_wins(self, file_store, make_item):
        file_store.write("clipboard_content", make_item("first"))
        file_store.write("clipboard_content", make_item("second"))
        assert file_store.read("clipboard_content").content == "second"

    def test_file_permissions(self, file_store, make_item):
        file_store.write("clipboard_content", make_item())
        path = file_store.directory / "clipboard_content.json"
        assert os.stat(path).st_mode & 0o777 == 0o600

    def test_corrupt_file_is_absent(self, file_store):
        file_store.directory.mkdir(parents=True)
        (file_store.directory / "clipboard_content.json").write_text("{broken")
        assert file_store.read("clipboard_content") is None

    def test_undecodable_file_is_absent(self, file_store):
        file_store.directory.mkdir(parents=True)
        (file_store.directory / "clipboard_content.json").write_bytes(b"\xff\xfe garbage")
        assert file_store.read("clipboard_content") is None


class TestBuildStore:
    def test_edge_config(self):
        store = build_store({
            "storage_backend": "edge_config",
            "edge_config": CONNECTION_STRING,
            "edge_config_token": "admin-token",
            "max_content_bytes": 4096,
            "request_timeout_seconds": 3,
        })
        assert isinstance(store, EdgeConfigStore)
        assert store.max_content_bytes == 4096
        assert store.timeout == 3

    def test_file(self, tmp_path):
        store = build_store({"storage_backend": "file", "data_dir": str(tmp_path)})
        assert isinstance(store, FileStore)
        assert store.max_content_bytes == 8192

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown storage backend"):
            build_store({"storage_backend": "redis"})
