"""
Storage backends for the single OneClip clipboard record.

The record lives under one well-known key. Reads degrade to "no content" on
any backend problem; writes enforce the size ceiling before touching the
network and surface failures as ClipboardError subclasses.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import parse_qs, urlparse

import requests
from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError

logger = logging.getLogger("oneclip.store")

DEFAULT_MAX_CONTENT_BYTES = 8 * 1024  # Edge Config item limit on the Hobby plan
DEFAULT_TIMEOUT_SECONDS = 10

EDGE_CONFIG_READ_BASE = "https://edge-config.vercel.com"
EDGE_CONFIG_WRITE_BASE = "https://api.vercel.com/v1/edge-config"


class ClipboardError(Exception):
    """Base class for clipboard failures"""


class ValidationError(ClipboardError):
    """Request payload has the wrong shape"""


class PayloadTooLarge(ClipboardError):
    """Content exceeds the storage size ceiling"""

    def __init__(self, size: int, limit: int, message: Optional[str] = None):
        self.size = size
        self.limit = limit
        super().__init__(message or (
            f"Content exceeds the {limit / 1024:g}KB limit. "
            f"Current size: {size / 1024:.2f}KB, maximum: {limit / 1024:g}KB"
        ))


class BackendUnavailable(ClipboardError):
    """Storage backend is misconfigured or unreachable"""

    def __init__(self, message: str, record: Optional["ClipboardItem"] = None):
        self.record = record
        super().__init__(message)


class MalformedResponse(BackendUnavailable):
    """Storage backend answered with something we could not decode"""


def now_millis() -> int:
    return int(time.time() * 1000)


class ClipboardItem(BaseModel):
    content: str
    type: str = "text"
    language: Optional[str] = None
    timestamp: int

    @classmethod
    def empty(cls) -> "ClipboardItem":
        """The record readers see before anything has been saved"""
        return cls(content="", type="text", language=None, timestamp=now_millis())

    @property
    def byte_size(self) -> int:
        return len(self.content.encode("utf-8"))


class ClipboardStore:
    """Single-key read/write gateway with a client-side size ceiling"""

    name = "base"

    def __init__(self, max_content_bytes: int = DEFAULT_MAX_CONTENT_BYTES):
        self.max_content_bytes = max_content_bytes

    def check_size(self, item: ClipboardItem) -> None:
        size = item.byte_size
        if size > self.max_content_bytes:
            raise PayloadTooLarge(size, self.max_content_bytes)

    def read(self, key: str) -> Optional[ClipboardItem]:
        """Return the stored record, or None when absent or unreadable"""
        try:
            value = self.read_raw(key)
        except ClipboardError as e:
            logger.warning(f"Read of {key!r} from {self.name} failed: {e}")
            return None

        if value is None:
            return None

        try:
            return decode_item(value)
        except MalformedResponse as e:
            logger.warning(f"Ignoring unreadable value for {key!r} in {self.name}: {e}")
            return None

    def read_raw(self, key: str):
        """Fetch the stored value as-is; raises ClipboardError on failure"""
        return self._read_value(key)

    def write(self, key: str, item: ClipboardItem) -> ClipboardItem:
        """Replace the stored record; last write wins"""
        self.check_size(item)
        self._write_value(key, item.model_dump())
        logger.info(f"Stored {item.type} record ({item.byte_size} bytes) under {key!r} in {self.name}")
        return item

    def describe(self) -> dict:
        return {"backend": self.name, "max_content_bytes": self.max_content_bytes}

    def _read_value(self, key: str):
        raise NotImplementedError

    def _write_value(self, key: str, value: dict) -> None:
        raise NotImplementedError


def decode_item(value) -> ClipboardItem:
    """Accept the record as an object or as a JSON-encoded string of it"""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError as e:
            raise MalformedResponse(f"Stored value is not valid JSON: {e}")
    if not isinstance(value, dict):
        raise MalformedResponse(f"Stored value has unexpected type {type(value).__name__}")
    try:
        return ClipboardItem.model_validate(value)
    except ModelValidationError as e:
        raise MalformedResponse(f"Stored value is not a clipboard record: {e.error_count()} error(s)")


def parse_connection_string(connection_string: str) -> Tuple[str, Optional[str]]:
    """
    Split an Edge Config connection string into (edge_config_id, read_token).

    Accepts both forms Vercel hands out:
        https://edge-config.vercel.com/ecfg_abc?token=xyz
        edge-config:id=ecfg_abc&token=xyz
    """
    value = (connection_string or "").strip()
    if not value:
        raise BackendUnavailable("EDGE_CONFIG environment variable is not set")

    if value.startswith("edge-config:"):
        params = parse_qs(value[len("edge-config:"):])
        edge_config_id = params.get("id", [None])[0]
        token = params.get("token", [None])[0]
    else:
        try:
            parsed = urlparse(value)
            hostname = parsed.hostname
        except ValueError as e:
            raise BackendUnavailable(f"Invalid EDGE_CONFIG format: {e}") from e
        if hostname != "edge-config.vercel.com":
            raise BackendUnavailable("Invalid EDGE_CONFIG format: expected an edge-config.vercel.com URL")
        edge_config_id = parsed.path.strip("/").split("/")[0] or None
        token = parse_qs(parsed.query).get("token", [None])[0]

    if not edge_config_id:
        raise BackendUnavailable("Invalid EDGE_CONFIG format: missing Edge Config id")
    return edge_config_id, token


def _mentions_size_limit(text: str) -> bool:
    lowered = text.lower()
    return any(word in lowered for word in ("size", "limit", "exceed"))


class EdgeConfigStore(ClipboardStore):
    """
    Vercel Edge Config backend.

    Reads go through the edge-config.vercel.com item endpoint using the read
    token embedded in the connection string. That path is eventually
    consistent. Writes must go through the Vercel REST API with an
    administrative token because the read endpoint is read-only.
    """

    name = "edge_config"

    def __init__(self, connection_string: Optional[str], write_token: Optional[str] = None,
                 team_id: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT_SECONDS,
                 max_content_bytes: int = DEFAULT_MAX_CONTENT_BYTES,
                 session: Optional[requests.Session] = None):
        super().__init__(max_content_bytes)
        self.connection_string = connection_string
        self.write_token = write_token
        self.team_id = team_id
        self.timeout = timeout
        self.session = session or requests.Session()

    def _connection(self) -> Tuple[str, Optional[str]]:
        return parse_connection_string(self.connection_string)

    def _read_value(self, key: str):
        edge_config_id, token = self._connection()
        if not token:
            raise BackendUnavailable("EDGE_CONFIG connection string has no read token")

        url = f"{EDGE_CONFIG_READ_BASE}/{edge_config_id}/item/{key}"
        try:
            response = self.session.get(
                url,
                params={"version": "1"},
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise BackendUnavailable(f"Edge Config read failed: {e}")

        if response.status_code == 404:
            return None
        if not response.ok:
            raise BackendUnavailable(f"Edge Config read failed: {response.status_code} {response.text}")

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponse(f"Edge Config returned invalid JSON: {e}")

    def _write_value(self, key: str, value: dict) -> None:
        edge_config_id, _ = self._connection()
        if not self.write_token:
            raise BackendUnavailable(
                "EDGE_CONFIG_TOKEN environment variable is not set. Required for writing to Edge Config."
            )

        params = {"teamId": self.team_id} if self.team_id else None
        try:
            response = self.session.patch(
                f"{EDGE_CONFIG_WRITE_BASE}/{edge_config_id}/items",
                params=params,
                headers={
                    "Authorization": f"Bearer {self.write_token}",
                    "Content-Type": "application/json",
                },
                json={"items": [{"operation": "upsert", "key": key, "value": value}]},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            raise BackendUnavailable(f"Edge Config update timed out after {self.timeout}s")
        except requests.exceptions.RequestException as e:
            raise BackendUnavailable(f"Edge Config update failed: {e}")

        if response.ok:
            return

        error_text = response.text
        logger.error(f"Edge Config API error: {response.status_code} {error_text}")
        if response.status_code == 413 or _mentions_size_limit(error_text):
            size = len(value.get("content", "").encode("utf-8"))
            raise PayloadTooLarge(
                size,
                self.max_content_bytes,
                "Storage limit reached: Content exceeds the Edge Config size limit. "
                "Please reduce the content size.",
            )
        raise BackendUnavailable(f"Failed to save: {response.status_code} {error_text}")

    def describe(self) -> dict:
        info = super().describe()
        try:
            edge_config_id, token = self._connection()
        except BackendUnavailable as e:
            info.update({"configured": False, "error": str(e)})
        else:
            info.update({
                "configured": True,
                "edge_config_id": edge_config_id,
                "has_read_token": bool(token),
            })
        info["has_write_token"] = bool(self.write_token)
        info["team_id"] = self.team_id
        return info


class FileStore(ClipboardStore):
    """Local development backend: one JSON file per key"""

    name = "file"

    def __init__(self, directory: str, max_content_bytes: int = DEFAULT_MAX_CONTENT_BYTES):
        super().__init__(max_content_bytes)
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def _read_value(self, key: str):
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise BackendUnavailable(f"Failed to read {path}: {e}")

    def _write_value(self, key: str, value: dict) -> None:
        path = self._path(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(value, f)
            os.chmod(path, 0o600)
        except OSError as e:
            raise BackendUnavailable(f"Failed to write {path}: {e}")

    def describe(self) -> dict:
        info = super().describe()
        info.update({"configured": True, "directory": str(self.directory)})
        return info


def build_store(config: dict) -> ClipboardStore:
    """Create the storage backend named by config['storage_backend']"""
    backend = config.get("storage_backend", "edge_config")
    max_content_bytes = config.get("max_content_bytes", DEFAULT_MAX_CONTENT_BYTES)

    if backend == "edge_config":
        return EdgeConfigStore(
            connection_string=config.get("edge_config"),
            write_token=config.get("edge_config_token"),
            team_id=config.get("vercel_team_id"),
            timeout=config.get("request_timeout_seconds", DEFAULT_TIMEOUT_SECONDS),
            max_content_bytes=max_content_bytes,
        )
    if backend == "file":
        return FileStore(config["data_dir"], max_content_bytes=max_content_bytes)
    raise ValueError(f"Unknown storage backend: {backend!r}")
