import os
import shutil
import tempfile

import pytest

# oneclip_server reads its configuration at import time
ONECLIP_HOME = tempfile.mkdtemp(prefix="oneclip-test-")
os.environ["ONECLIP_HOME"] = ONECLIP_HOME
os.environ["ONECLIP_STORAGE_BACKEND"] = "file"
for _name in ("EDGE_CONFIG", "EDGE_CONFIG_TOKEN", "VERCEL_TOKEN", "VERCEL_TEAM_ID",
              "ONECLIP_MAX_CONTENT_BYTES", "ONECLIP_PORT"):
    os.environ.pop(_name, None)

from clipboard_store import ClipboardItem, FileStore  # noqa: E402


def pytest_sessionfinish(session, exitstatus):
    shutil.rmtree(ONECLIP_HOME, ignore_errors=True)


@pytest.fixture
def file_store(tmp_path):
    return FileStore(str(tmp_path / "data"))


@pytest.fixture
def make_item():
    """Factory fixture to create ClipboardItem instances for testing."""

    def _make_item(content: str = "hello world", type: str = "text", language=None,
                   timestamp: int = 1700000000000) -> ClipboardItem:
        return ClipboardItem(content=content, type=type, language=language, timestamp=timestamp)

    return _make_item
