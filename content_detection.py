"""
Content type detection for clipboard text.

Classifies an arbitrary text blob as one of a fixed set of content types so the
web UI can pick a syntax highlighter, and pretty-prints JSON payloads.
"""

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple


class ContentType(str, Enum):
    TEXT = "text"
    JSON = "json"
    HTML = "html"
    XML = "xml"
    SQL = "sql"
    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"
    PYTHON = "python"
    CSS = "css"
    YAML = "yaml"
    MARKDOWN = "markdown"
    SHELL = "shell"


# Highlighter hint per type; plain text gets none
LANGUAGES = {
    ContentType.TEXT: None,
    ContentType.SHELL: "bash",
}


@dataclass(frozen=True)
class ContentDetection:
    type: ContentType
    language: Optional[str]
    is_valid_json: bool = False

    @classmethod
    def of(cls, content_type: ContentType) -> "ContentDetection":
        language = LANGUAGES.get(content_type, content_type.value)
        return cls(content_type, language, content_type == ContentType.JSON)


HTML_TAG = re.compile(r"<[a-z][\s\S]*>", re.IGNORECASE)
XML_DECLARATION = re.compile(r"<\?xml[\s\S]*\?>", re.IGNORECASE)
XML_NAMESPACED_TAG = re.compile(r"<[a-z]+:[\s\S]*>", re.IGNORECASE)

SQL_KEYWORDS = re.compile(
    r"\b(SELECT|INSERT|UPDATE|DELETE|CREATE|ALTER|DROP|FROM|WHERE|JOIN|INNER|OUTER"
    r"|LEFT|RIGHT|GROUP BY|ORDER BY|HAVING|UNION|EXEC|EXECUTE)\b",
    re.IGNORECASE | re.ASCII,
)
SQL_MIN_LENGTH = 20

JS_PATTERNS = [
    re.compile(r"^(import|export|const|let|var|function|class|interface|type|enum)\s+", re.MULTILINE),
    re.compile(r"=>\s*\{?"),
    re.compile(r"console\.(log|error|warn|info)"),
    re.compile(r"\.(map|filter|reduce|forEach)\("),
    re.compile(r"async\s+function"),
    re.compile(r"await\s+"),
]
TS_PATTERNS = [
    re.compile(r":\s*(string|number|boolean|object|any|void|never|unknown|Record|Array<|Promise<)", re.ASCII),
    re.compile(r"interface\s+\w+|type\s+\w+\s*=|enum\s+\w+", re.ASCII),
]

PYTHON_PATTERNS = [
    re.compile(r"^(def|class|import|from|if|elif|else|for|while|try|except|with|async|await)\s+", re.MULTILINE),
    re.compile(r":\s*$", re.MULTILINE),
    re.compile(r"print\s*\("),
    re.compile(r"""__name__\s*==\s*['"]__main__['"]"""),
]

CSS_BLOCK = re.compile(r"\{[\s\S]*:[\s\S]*;[\s\S]*\}")
CSS_SELECTOR = re.compile(r"[\w\s.#:,\[\]()>+~*-]+", re.ASCII)

YAML_LINE = re.compile(r"^\s*(---|[\w-]+:\s|\s+-\s+)", re.MULTILINE | re.ASCII)

MARKDOWN_PATTERNS = [
    re.compile(r"#{1,6}\s+"),
    re.compile(r"\*\*[\s\S]+\*\*"),
    re.compile(r"\s*[-*+]\s+"),
]

SHELL_PATTERNS = [
    re.compile(r"#!/bin/(bash|sh)"),
    re.compile(r"\$\s"),
    re.compile(r"(cd|ls|grep|awk|sed|curl|wget)\s+"),
]


def trim(text: str) -> str:
    """Strip surrounding whitespace and byte order marks"""
    return text.strip().strip("\ufeff").strip()


def _reject_constant(name: str):
    raise ValueError(f"Invalid JSON literal: {name}")


def parse_json(text: str):
    """Parse strict JSON; NaN and Infinity literals are rejected."""
    return json.loads(text, parse_constant=_reject_constant)


def is_json(text: str) -> bool:
    try:
        parse_json(text)
    except (RecursionError, ValueError):
        return False
    return True


def looks_like_html(text: str) -> bool:
    return bool(HTML_TAG.search(text))


def looks_like_xml(text: str) -> bool:
    return bool(XML_DECLARATION.search(text) or XML_NAMESPACED_TAG.search(text))


def looks_like_sql(text: str) -> bool:
    return len(text) > SQL_MIN_LENGTH and bool(SQL_KEYWORDS.search(text))


def looks_like_javascript(text: str) -> bool:
    return any(pattern.search(text) for pattern in JS_PATTERNS)


def looks_like_typescript(text: str) -> bool:
    return looks_like_javascript(text) and any(pattern.search(text) for pattern in TS_PATTERNS)


def looks_like_python(text: str) -> bool:
    return any(pattern.search(text) for pattern in PYTHON_PATTERNS)


def looks_like_css(text: str) -> bool:
    if "function" in text or "=>" in text:
        return False
    if not CSS_BLOCK.search(text):
        return False
    selector = text.split("{", 1)[0]
    return bool(selector.strip()) and bool(CSS_SELECTOR.fullmatch(selector))


def looks_like_yaml(text: str) -> bool:
    return bool(YAML_LINE.search(text))


def looks_like_markdown(text: str) -> bool:
    return any(pattern.match(text) for pattern in MARKDOWN_PATTERNS)


def looks_like_shell(text: str) -> bool:
    return any(pattern.match(text) for pattern in SHELL_PATTERNS)


# Evaluated top to bottom against the trimmed text; first match wins.
# TypeScript sits above JavaScript since it only refines a JS match.
DETECTION_RULES: List[Tuple[Callable[[str], bool], ContentType]] = [
    (is_json, ContentType.JSON),
    (looks_like_html, ContentType.HTML),
    (looks_like_xml, ContentType.XML),
    (looks_like_sql, ContentType.SQL),
    (looks_like_typescript, ContentType.TYPESCRIPT),
    (looks_like_javascript, ContentType.JAVASCRIPT),
    (looks_like_python, ContentType.PYTHON),
    (looks_like_css, ContentType.CSS),
    (looks_like_yaml, ContentType.YAML),
    (looks_like_markdown, ContentType.MARKDOWN),
    (looks_like_shell, ContentType.SHELL),
]


def detect_content_type(content: str) -> ContentDetection:
    """
    Detect the content type and highlighter language of a text blob.

    Detection is best effort: the result is a display hint, and the rule
    order only guarantees the same answer for the same input.
    """
    trimmed = trim(content or "")
    if not trimmed:
        return ContentDetection.of(ContentType.TEXT)

    for matches, content_type in DETECTION_RULES:
        if matches(trimmed):
            return ContentDetection.of(content_type)

    return ContentDetection.of(ContentType.TEXT)


def format_json(content: str) -> str:
    """Re-indent JSON with two spaces, or return the input unchanged"""
    try:
        parsed = parse_json(trim(content))
    except (AttributeError, RecursionError, TypeError, ValueError):
        return content

    formatted = json.dumps(parsed, indent=2, ensure_ascii=False)
    try:
        formatted.encode("utf-8")
    except UnicodeEncodeError:
        # Lone surrogates only survive as \u escapes
        formatted = json.dumps(parsed, indent=2)
    return formatted
