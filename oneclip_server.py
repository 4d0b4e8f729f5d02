#!/usr/bin/env python3
"""
OneClip - A single-item online clipboard backed by Vercel Edge Config
"""

from contextlib import asynccontextmanager
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import uvicorn
import yaml
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, StrictStr

from clipboard_store import (
    DEFAULT_MAX_CONTENT_BYTES,
    DEFAULT_TIMEOUT_SECONDS,
    BackendUnavailable,
    ClipboardError,
    ClipboardItem,
    ClipboardStore,
    PayloadTooLarge,
    ValidationError,
    build_store,
    now_millis,
)
from content_detection import ContentType, detect_content_type, format_json

# Configuration management
CONFIG_DIR = Path(os.environ.get("ONECLIP_HOME", Path.home() / ".oneclip"))
CONFIG_FILE = CONFIG_DIR / "config.yaml"
DATA_DIR = CONFIG_DIR / "data"
LOG_FILE = CONFIG_DIR / "oneclip.log"

CLIPBOARD_KEY = "clipboard_content"

# Setup logging
def setup_logging():
    """Configure the server log file"""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("oneclip")
    logger.setLevel(logging.INFO)
    logger.propagate = False  # Prevent propagation to uvicorn logger

    try:
        file_handler = logging.FileHandler(LOG_FILE)
        file_handler.setLevel(logging.INFO)

        # Log format: timestamp | level | message
        formatter = logging.Formatter('%(asctime)s | %(levelname)s | %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
        file_handler.setFormatter(formatter)

        # Remove existing handlers to avoid duplicates
        logger.handlers.clear()
        logger.addHandler(file_handler)

        try:
            os.chmod(LOG_FILE, 0o600)
        except OSError:
            pass  # Created lazily by some platforms
    except OSError as e:
        print(f"Warning: Failed to setup file logging: {e}", flush=True)

    return logger

logger = setup_logging()

# Default configuration
DEFAULT_CONFIG = {
    "port": 3000,
    "storage_backend": "edge_config",
    "clipboard_key": CLIPBOARD_KEY,
    "max_content_bytes": DEFAULT_MAX_CONTENT_BYTES,
    "request_timeout_seconds": DEFAULT_TIMEOUT_SECONDS,
    "data_dir": str(DATA_DIR),
    "cors_origins": ["*"],
    # Credentials come from the environment, never from the generated file
    "edge_config": None,
    "edge_config_token": None,
    "vercel_team_id": None,
}

def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default

def apply_env_overrides(config: dict) -> dict:
    """Overlay environment variables on top of file configuration"""
    config = dict(config)
    config["edge_config"] = os.environ.get("EDGE_CONFIG") or config.get("edge_config")
    config["edge_config_token"] = (
        os.environ.get("EDGE_CONFIG_TOKEN")
        or os.environ.get("VERCEL_TOKEN")
        or config.get("edge_config_token")
    )
    config["vercel_team_id"] = os.environ.get("VERCEL_TEAM_ID") or config.get("vercel_team_id")
    config["storage_backend"] = os.environ.get("ONECLIP_STORAGE_BACKEND") or config.get("storage_backend")
    config["max_content_bytes"] = _env_int("ONECLIP_MAX_CONTENT_BYTES", config.get("max_content_bytes"))
    config["port"] = _env_int("ONECLIP_PORT", config.get("port"))
    return config

def load_config() -> dict:
    """Load configuration from ~/.oneclip/config.yaml and the environment"""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    if CONFIG_FILE.exists():
        with open(CONFIG_FILE, 'r') as f:
            config = yaml.safe_load(f) or {}
        config = {**DEFAULT_CONFIG, **config}
    else:
        # Create default config
        with open(CONFIG_FILE, 'w') as f:
            yaml.safe_dump(DEFAULT_CONFIG, f, sort_keys=False)
        config = dict(DEFAULT_CONFIG)

    return apply_env_overrides(config)

class ClipboardUpdate(BaseModel):
    content: StrictStr

class Clipboard:
    """Holds the single shared clipboard record in an external store (last write wins)"""

    def __init__(self, store: ClipboardStore, key: str = CLIPBOARD_KEY):
        self.store = store
        self.key = key

    def fetch(self) -> ClipboardItem:
        """Return the current record, or an empty one if nothing is stored"""
        item = self.store.read(self.key)
        if item is None:
            return ClipboardItem.empty()
        return item

    def replace(self, content) -> ClipboardItem:
        """Classify, format and store new content"""
        if not isinstance(content, str):
            raise ValidationError("Content must be a string")
        if not content:
            raise ValidationError("Content must not be empty")

        detection = detect_content_type(content)
        if detection.is_valid_json:
            content = format_json(content)

        try:
            content.encode("utf-8")
        except UnicodeEncodeError:
            raise ValidationError("Content must be valid UTF-8 text")

        item = ClipboardItem(
            content=content,
            type=detection.type.value,
            language=detection.language,
            timestamp=now_millis(),
        )
        return self._save(item)

    def clear(self) -> ClipboardItem:
        """Empty the record; it stays in the store with blank content"""
        item = ClipboardItem(content="", type=ContentType.TEXT.value, language=None, timestamp=now_millis())
        return self._save(item)

    def _save(self, item: ClipboardItem) -> ClipboardItem:
        try:
            return self.store.write(self.key, item)
        except BackendUnavailable as e:
            e.record = item
            raise

# Load configuration
config = load_config()

clipboard = Clipboard(build_store(config), key=config.get("clipboard_key", CLIPBOARD_KEY))

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log effective configuration on server startup"""
    logger.info("="*60)
    logger.info("OneClip server starting")
    logger.info(f"Config: {CONFIG_FILE}")
    logger.info(f"Storage backend: {clipboard.store.name}")
    logger.info(f"Max content size: {clipboard.store.max_content_bytes} bytes")
    logger.info("="*60)
    yield

# Create FastAPI app
app = FastAPI(title="OneClip", version="1.0.0", lifespan=lifespan)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get("cors_origins", ["*"]),
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every API request with its outcome"""
    client_ip = request.client.host if request.client else "unknown"
    response = await call_next(request)
    if request.url.path.startswith("/clipboard"):
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} from {client_ip}")
    return response

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies as 400 instead of FastAPI's 422"""
    if any(error.get("type") == "json_invalid" for error in exc.errors()):
        message = "Invalid JSON in request body"
    else:
        message = "Content must be a string"
    logger.warning(f"Rejected {request.method} {request.url.path}: {message}")
    return JSONResponse({"error": message}, status_code=400)

def get_html_page(max_content_bytes: int) -> str:
    """Generate the single-page clipboard UI with DOS shell theme"""
    return f"""
    <!DOCTYPE html>
    <html lang="en">
    <head>
        <meta charset="UTF-8">
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <title>ONECLIP - Online Clipboard</title>
        <link rel="stylesheet" href="https://cdnjs.cloudflare.com/ajax/libs/highlight.js/11.9.0/styles/atom-one-dark.min.css">
        <script src="https://cdnjs.cloudflare.com/ajax/libs/highlight.js/11.9.0/highlight.min.js"></script>
        <style>
            @import url('https://fonts.googleapis.com/css2?family=Press+Start+2P&family=Courier+Prime&display=swap');

            * {{
                margin: 0;
                padding: 0;
                box-sizing: border-box;
            }}

            body {{
                font-family: 'Courier Prime', monospace;
                background: #1a4d2e;
                min-height: 100vh;
                padding: 10px;
                display: flex;
                flex-direction: column;
                color: #9eff6f;
                font-size: 14px;
            }}

            .container {{
                background: #2d5a3d;
                border: 8px solid #9eff6f;
                box-shadow: inset 0 0 0 4px #4a7c59, 0 0 30px rgba(0, 255, 136, 0.6);
                max-width: 960px;
                width: 100%;
                margin: 0 auto;
                flex: 1;
                display: flex;
                flex-direction: column;
            }}

            .header {{
                background: linear-gradient(180deg, #1a0033 0%, #2d5a3d 100%);
                padding: 20px;
                border-bottom: 6px solid #4a7c59;
                font-family: 'Press Start 2P', cursive;
                letter-spacing: 2px;
                text-shadow: 0 0 10px rgba(255, 0, 255, 0.3), 4px 4px 0px rgba(0, 255, 136, 0.3);
            }}

            .header h1 {{
                font-size: 18px;
                margin-bottom: 10px;
                text-transform: uppercase;
            }}

            .header p {{
                font-size: 9px;
                opacity: 0.9;
                text-transform: uppercase;
            }}

            .content {{
                padding: 20px;
                flex: 1;
            }}

            .section {{
                margin-bottom: 25px;
            }}

            .label {{
                display: block;
                font-family: 'Press Start 2P', cursive;
                font-size: 11px;
                text-transform: uppercase;
                letter-spacing: 2px;
                margin-bottom: 10px;
            }}

            .error-banner {{
                display: none;
                margin-bottom: 15px;
                padding: 10px 12px;
                color: #ff6666;
                border: 2px solid #ff6666;
                background: #440000;
            }}

            #pasteInput {{
                width: 100%;
                min-height: 140px;
                padding: 12px 15px;
                border: 4px solid #9eff6f;
                background: #000000;
                color: #9eff6f;
                font-family: 'Courier Prime', monospace;
                font-size: 14px;
                resize: vertical;
                box-shadow: inset 0 0 0 2px #4a7c59;
            }}

            #pasteInput:focus {{
                outline: none;
                box-shadow: inset 0 0 0 4px #4a7c59, 0 0 20px rgba(0, 255, 136, 0.4);
            }}

            .input-footer {{
                display: flex;
                justify-content: space-between;
                align-items: center;
                gap: 8px;
                margin-top: 10px;
                flex-wrap: wrap;
            }}

            .hint, .size-counter {{
                font-size: 12px;
                opacity: 0.8;
            }}

            .size-counter.over {{
                color: #ff6666;
                opacity: 1;
            }}

            .button-group {{
                display: flex;
                gap: 8px;
            }}

            button {{
                padding: 10px 18px;
                border: 4px solid #9eff6f;
                font-size: 11px;
                font-family: 'Press Start 2P', cursive;
                cursor: pointer;
                text-transform: uppercase;
                letter-spacing: 2px;
                background: #000000;
                color: #9eff6f;
                box-shadow: inset 0 0 0 2px #4a7c59;
                transition: all 0.1s ease;
            }}

            button:hover:not(:disabled) {{
                background: #9eff6f;
                color: #000000;
                transform: translate(-2px, -2px);
            }}

            button:disabled {{
                opacity: 0.5;
                cursor: not-allowed;
            }}

            .btn-danger {{
                color: #4a7c59;
                border-color: #4a7c59;
            }}

            .display-header {{
                display: flex;
                justify-content: space-between;
                align-items: center;
                margin-bottom: 10px;
                gap: 8px;
                flex-wrap: wrap;
            }}

            .badges {{
                display: flex;
                gap: 8px;
                align-items: center;
            }}

            .badge {{
                padding: 4px 10px;
                border: 2px solid #9eff6f;
                background: #000000;
                font-size: 12px;
                text-transform: uppercase;
            }}

            .badge.formatted {{
                border-color: #4a7c59;
                color: #4a7c59;
            }}

            .saved-at {{
                font-size: 12px;
                opacity: 0.8;
            }}

            .display {{
                border: 4px solid #9eff6f;
                background: #000000;
                min-height: 200px;
                box-shadow: inset 0 0 0 2px #4a7c59;
                overflow: auto;
            }}

            .display pre {{
                margin: 0;
                padding: 15px;
                white-space: pre-wrap;
                word-break: break-word;
                font-family: 'Courier Prime', monospace;
                font-size: 14px;
            }}

            .display pre code.hljs {{
                background: transparent;
                padding: 0;
            }}

            .empty-state {{
                text-align: center;
                padding: 60px 20px;
                opacity: 0.5;
                text-transform: uppercase;
                letter-spacing: 1px;
            }}

            .toast {{
                position: fixed;
                bottom: 20px;
                right: 20px;
                background: #000000;
                color: #9eff6f;
                border: 1px solid #9eff6f;
                padding: 12px 16px;
                opacity: 0;
                transform: translateY(20px);
                transition: all 0.3s ease;
                z-index: 1000;
                font-size: 12px;
            }}

            .toast.show {{
                opacity: 1;
                transform: translateY(0);
            }}

            .toast.error {{
                color: #ff6666;
                border-color: #ff6666;
                background: #440000;
            }}

            @media (max-width: 600px) {{
                .header h1 {{
                    font-size: 14px;
                }}
                .input-footer {{
                    flex-direction: column;
                    align-items: stretch;
                }}
                .button-group {{
                    flex-direction: column;
                }}
            }}
        </style>
    </head>
    <body>
        <div class="container">
            <div class="header">
                <h1>&gt; OneClip_</h1>
                <p>Paste content below to save and view it with auto-formatting</p>
            </div>

            <div class="content">
                <div class="error-banner" id="errorBanner"></div>

                <div class="section">
                    <label class="label" for="pasteInput">Paste Content Here</label>
                    <textarea id="pasteInput" placeholder="Paste your content here or type and press Ctrl+Enter / Cmd+Enter to save..."></textarea>
                    <div class="input-footer">
                        <span class="hint">Tip: paste directly or type and press Ctrl+Enter / Cmd+Enter</span>
                        <span class="size-counter" id="sizeCounter">0 / {max_content_bytes} bytes</span>
                        <div class="button-group">
                            <button id="saveBtn" onclick="saveContent()" disabled>Save</button>
                            <button class="btn-danger" onclick="clearContent()">Clear</button>
                        </div>
                    </div>
                </div>

                <div class="section">
                    <div class="display-header">
                        <div class="badges">
                            <span class="label" style="margin: 0;">Last Saved Content</span>
                            <span class="badge" id="typeBadge" style="display: none;"></span>
                            <span class="badge formatted" id="formattedBadge" style="display: none;">Auto-formatted</span>
                        </div>
                        <div class="button-group">
                            <span class="saved-at" id="savedAt"></span>
                            <button onclick="loadContent()">Refresh</button>
                            <button id="copyBtn" onclick="copyContent()" disabled>Copy</button>
                        </div>
                    </div>
                    <div class="display" id="display">
                        <div class="empty-state">Loading...</div>
                    </div>
                </div>
            </div>
        </div>

        <div class="toast" id="toast"></div>

        <script>
            const API_BASE = window.location.origin;
            const MAX_CONTENT_BYTES = {max_content_bytes};
            // highlight.js renders HTML with its XML grammar
            const HIGHLIGHT_LANGUAGES = {{ html: 'xml' }};

            let currentContent = '';
            let isSaving = false;

            function byteSize(text) {{
                return new TextEncoder().encode(text).length;
            }}

            function updateSizeCounter() {{
                const text = document.getElementById('pasteInput').value;
                const size = byteSize(text);
                const counter = document.getElementById('sizeCounter');
                counter.textContent = `${{size}} / ${{MAX_CONTENT_BYTES}} bytes`;
                counter.classList.toggle('over', size > MAX_CONTENT_BYTES);
                document.getElementById('saveBtn').disabled = isSaving || !text.trim();
            }}

            function showError(message) {{
                const banner = document.getElementById('errorBanner');
                if (message) {{
                    banner.textContent = 'Error: ' + message;
                    banner.style.display = 'block';
                }} else {{
                    banner.style.display = 'none';
                }}
            }}

            function timeAgo(timestamp) {{
                const seconds = Math.floor((Date.now() - timestamp) / 1000);
                if (seconds < 60) return 'saved just now';
                if (seconds < 3600) return `saved ${{Math.floor(seconds / 60)}}m ago`;
                if (seconds < 86400) return `saved ${{Math.floor(seconds / 3600)}}h ago`;
                return 'saved ' + new Date(timestamp).toLocaleString();
            }}

            function renderItem(item) {{
                currentContent = item.content || '';
                const display = document.getElementById('display');
                const typeBadge = document.getElementById('typeBadge');
                const formattedBadge = document.getElementById('formattedBadge');
                const savedAt = document.getElementById('savedAt');

                document.getElementById('copyBtn').disabled = !currentContent;

                if (!currentContent) {{
                    display.innerHTML = '<div class="empty-state">No content yet</div>';
                    typeBadge.style.display = 'none';
                    formattedBadge.style.display = 'none';
                    savedAt.textContent = '';
                    return;
                }}

                typeBadge.textContent = item.type;
                typeBadge.style.display = 'inline-block';
                formattedBadge.style.display = item.type === 'json' ? 'inline-block' : 'none';
                savedAt.textContent = timeAgo(item.timestamp);

                const pre = document.createElement('pre');
                const code = document.createElement('code');
                code.textContent = currentContent;

                const language = HIGHLIGHT_LANGUAGES[item.language] || item.language;
                if (language && window.hljs && hljs.getLanguage(language)) {{
                    code.className = 'language-' + language;
                    hljs.highlightElement(code);
                }}

                pre.appendChild(code);
                display.innerHTML = '';
                display.appendChild(pre);
            }}

            async function loadContent() {{
                try {{
                    const response = await fetch(API_BASE + '/clipboard');
                    const data = await response.json();

                    if (response.ok) {{
                        showError(null);
                        renderItem(data);
                    }} else {{
                        showError(data.error || 'Failed to fetch clipboard content');
                    }}
                }} catch (error) {{
                    console.error('Error loading content:', error);
                    showError('Failed to fetch clipboard content');
                }}
            }}

            async function saveContent(textToSave) {{
                const input = document.getElementById('pasteInput');
                const text = textToSave || input.value.trim();

                if (!text) {{
                    showToast('Please enter some content', 'error');
                    return;
                }}

                if (byteSize(text) > MAX_CONTENT_BYTES) {{
                    showToast(`Content exceeds the ${{MAX_CONTENT_BYTES}} byte limit`, 'error');
                    return;
                }}

                isSaving = true;
                document.getElementById('saveBtn').textContent = 'Saving...';
                updateSizeCounter();

                try {{
                    const response = await fetch(API_BASE + '/clipboard', {{
                        method: 'POST',
                        headers: {{'Content-Type': 'application/json'}},
                        body: JSON.stringify({{ content: text }})
                    }});
                    const data = await response.json();

                    if (response.ok) {{
                        input.value = '';
                        showError(null);
                        renderItem(data);
                        showToast('Content saved!');
                    }} else {{
                        showError(data.message || data.error);
                        showToast('Failed to save content', 'error');
                    }}
                }} catch (error) {{
                    console.error('Error:', error);
                    showToast('Failed to save content', 'error');
                }} finally {{
                    isSaving = false;
                    document.getElementById('saveBtn').textContent = 'Save';
                    updateSizeCounter();
                }}
            }}

            async function clearContent() {{
                if (!confirm('Clear the saved clipboard content?')) {{
                    return;
                }}

                try {{
                    const response = await fetch(API_BASE + '/clipboard', {{ method: 'DELETE' }});
                    const data = await response.json();

                    if (response.ok && data.success) {{
                        showError(null);
                        showToast('Clipboard cleared');
                        loadContent();
                    }} else {{
                        showError(data.error || 'Failed to clear clipboard content');
                    }}
                }} catch (error) {{
                    console.error('Error:', error);
                    showToast('Error clearing clipboard', 'error');
                }}
            }}

            async function copyContent() {{
                const button = document.getElementById('copyBtn');
                try {{
                    await navigator.clipboard.writeText(currentContent);
                    button.textContent = 'Copied!';
                    setTimeout(() => {{
                        button.textContent = 'Copy';
                    }}, 2000);
                    showToast('Copied to clipboard!');
                }} catch (error) {{
                    console.error('Failed to copy:', error);
                    showToast('Failed to copy to clipboard', 'error');
                }}
            }}

            function showToast(message, type = 'success') {{
                const toast = document.getElementById('toast');
                toast.textContent = message;
                toast.className = 'toast show';
                if (type === 'error') {{
                    toast.classList.add('error');
                }}

                setTimeout(() => {{
                    toast.classList.remove('show');
                }}, 3000);
            }}

            const pasteInput = document.getElementById('pasteInput');

            // Pasting saves immediately
            pasteInput.addEventListener('paste', (e) => {{
                const pasted = e.clipboardData.getData('text');
                if (!pasted) {{
                    return;
                }}
                e.preventDefault();
                pasteInput.value = pasted;
                updateSizeCounter();
                saveContent(pasted);
            }});

            pasteInput.addEventListener('input', updateSizeCounter);

            // Allow Ctrl+Enter or Cmd+Enter to save
            pasteInput.addEventListener('keydown', (e) => {{
                if ((e.ctrlKey || e.metaKey) && e.key === 'Enter') {{
                    e.preventDefault();
                    saveContent();
                }}
            }});

            document.addEventListener('DOMContentLoaded', loadContent);
        </script>
    </body>
    </html>
    """

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok"}

@app.get("/", response_class=HTMLResponse)
async def serve_ui():
    """Serve the web UI"""
    return get_html_page(clipboard.store.max_content_bytes)

@app.get("/clipboard")
def get_clipboard():
    """Get the current clipboard record"""
    item = clipboard.fetch()
    return item.model_dump()

@app.post("/clipboard")
def update_clipboard(update: ClipboardUpdate):
    """Replace the clipboard record with new content"""
    try:
        item = clipboard.replace(update.content)
    except ValidationError as e:
        logger.warning(f"Rejected clipboard update: {e}")
        return JSONResponse({"error": str(e)}, status_code=400)
    except PayloadTooLarge as e:
        logger.warning(f"Rejected clipboard update: {e}")
        return JSONResponse({"error": str(e), "size": e.size, "limit": e.limit}, status_code=413)
    except BackendUnavailable as e:
        logger.error(f"Failed to update clipboard content: {e}")
        record = e.record.model_dump() if e.record else None
        return JSONResponse(
            {"error": "Failed to update clipboard content", "message": str(e), "record": record},
            status_code=500,
        )

    logger.info(f"Saved {item.type} content ({item.byte_size} bytes)")
    return item.model_dump()

@app.delete("/clipboard")
def clear_clipboard():
    """Clear the clipboard record"""
    try:
        clipboard.clear()
    except ClipboardError as e:
        logger.error(f"Failed to clear clipboard content: {e}")
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)

    logger.warning("Cleared clipboard content")
    return {"success": True}

@app.get("/clipboard/debug")
def debug_clipboard():
    """Report storage configuration and try a raw read"""
    test: dict = {"can_read": False, "data": None, "error": None}
    try:
        test["data"] = clipboard.store.read_raw(clipboard.key)
        test["can_read"] = True
    except ClipboardError as e:
        test["error"] = str(e)
        if "EDGE_CONFIG" in str(e):
            test["suggestion"] = "Make sure EDGE_CONFIG holds the connection string of an Edge Config linked to this project"

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "storage": clipboard.store.describe(),
        "key": clipboard.key,
        "test": test,
    }

def main(port: Optional[int] = None):
    """Run the OneClip server"""
    port = port or config.get("port", 3000)
    print(f"Starting OneClip server on port {port}...")
    print(f"Config file: {CONFIG_FILE}")
    print(f"Log file: {LOG_FILE}")
    print(f"Storage backend: {clipboard.store.name}")
    print(f"Max content size: {clipboard.store.max_content_bytes} bytes")
    uvicorn.run(app, host="0.0.0.0", port=port)

if __name__ == "__main__":
    main()
