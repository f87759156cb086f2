"""Injection detection and input sanitization for request bodies.

Security: Signature-based detectors for SQL injection, shell command
injection, and script injection (XSS), plus sanitizers that rewrite strings
and JSON structures into a conservative character set.

This is defense-in-depth, not a guarantee. Persistence must still use
parameterized queries and rendering must still encode output. A clean scan
means "no known signature matched", nothing more.
"""

import re
from dataclasses import dataclass, field
from typing import Any

DEFAULT_MAX_DEPTH = 10
"""Maximum nesting depth walked in attacker-supplied structures."""

MAX_STRING_LENGTH = 10_000
"""Sanitized strings are truncated to this many characters."""

# =============================================================================
# Detector signatures
# =============================================================================

_SHELL_BINARIES = (
    r"(?:cat|ls|rm|mv|cp|wget|curl|nc|ncat|netcat|bash|sh|zsh|dash|ksh|"
    r"python[23]?|perl|ruby|php|node|chmod|chown|whoami|id|uname|ping|"
    r"nslookup|dig|ifconfig|ps|kill|sudo|su|powershell|cmd|echo|eval|exec)"
)

_SQL_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        # Quote-escaped tautology: ' OR '1'='1, " or 1=1
        r"['\"]\s*\)?\s*(?:or|and)\s+['\"]?[\w-]+['\"]?\s*(?:=|<|>|like)",
        r"\bor\s+1\s*=\s*1\b",
        # Quote closing a value then terminating the statement: ');
        r"['\"]\s*\)+\s*;",
        # Quote followed by a comment token: admin'--
        r"['\"]\s*(?:--|#|/\*)",
        # Stacked statement after a semicolon
        r";\s*(?:drop|delete|insert|update|alter|create|truncate|exec(?:ute)?|"
        r"shutdown|grant|revoke|declare)\b",
        r"\bunion\b(?:\s+all)?\s+select\b",
        r"\b(?:drop|truncate|alter)\s+(?:table|database|schema)\b",
        r"\binsert\s+into\s+[\w.`\"\[\]]+\s*(?:\([^)]*\))?\s*values\b",
        r"\bdelete\s+from\s+[\w.`\"\[\]]+",
        r"\bupdate\s+[\w.`\"\[\]]+\s+set\s+\w+\s*=",
        # Time-based and stored-procedure payloads
        r"\b(?:sleep|benchmark|pg_sleep)\s*\(\s*\d+",
        r"\bwaitfor\s+delay\b",
        r"\bxp_cmdshell\b|\bexec(?:ute)?\s+(?:xp|sp)_\w+",
        r"\binformation_schema\b",
    )
)

_COMMAND_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        # Shell separator followed by a common binary: ; cat, && rm, | nc
        rf"(?:;|&&?|\|\|?)\s*{_SHELL_BINARIES}\b",
        # Command substitution
        r"\$\([^)]*\)",
        rf"`\s*{_SHELL_BINARIES}\b[^`]*`",
        r"\$\{IFS\}",
        # Sensitive paths and interpreters
        r"/etc/(?:passwd|shadow|hosts)\b",
        r"/bin/(?:ba|z|da)?sh\b",
        r"\bcmd(?:\.exe)?\s+/c\b",
        r"\brm\s+-[a-z]*r[a-z]*f|\brm\s+-[a-z]*f[a-z]*r",
        r">\s*/dev/(?:null|tcp|udp)",
    )
)

_XSS_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"<\s*/?\s*script\b",
        r"<\s*(?:iframe|frame|frameset|object|embed|applet|meta|base)\b",
        r"<\s*(?:img|svg|body|input|video|audio|details|a)\b[^>]*\bon[a-z]+\s*=",
        r"\bjava\s*script\s*:",
        r"\bvb\s*script\s*:",
        r"\bdata\s*:\s*(?:text/html|application/(?:x-)?javascript|image/svg)",
        # Inline event handler attribute: onerror=, onload =
        r"\bon[a-z]{3,}\s*=",
        r"\bexpression\s*\(",
        r"\bsrcdoc\s*=",
    )
)

_DETECTORS: tuple[tuple[str, tuple[re.Pattern[str], ...]], ...] = (
    ("SQL injection", _SQL_PATTERNS),
    ("Command injection", _COMMAND_PATTERNS),
    ("Script injection", _XSS_PATTERNS),
)

# =============================================================================
# Sanitizer patterns
# =============================================================================

# Control characters except tab, newline, carriage return (free text keeps them)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_ANGLE_BRACKETS = re.compile(r"[<>]")
_DANGEROUS_SCHEMES = re.compile(
    r"(?:java|vb)\s*script\s*:|data\s*:", re.IGNORECASE
)
_EVENT_HANDLERS = re.compile(r"\bon[a-z]{3,}\s*=", re.IGNORECASE)
_QUOTES_AND_SEPARATORS = re.compile(r"['\"`;|]")
_DOT_DOT = re.compile(r"\.\.")
_KEY_UNSAFE = re.compile(r"[^A-Za-z0-9_]")


# =============================================================================
# Detectors
# =============================================================================


def _matches_any(value: str, patterns: tuple[re.Pattern[str], ...]) -> bool:
    return any(pattern.search(value) for pattern in patterns)


def looks_like_sql_injection(value: str) -> bool:
    """Whether a string matches a SQL injection signature."""
    return isinstance(value, str) and _matches_any(value, _SQL_PATTERNS)


def looks_like_command_injection(value: str) -> bool:
    """Whether a string matches a shell command injection signature."""
    return isinstance(value, str) and _matches_any(value, _COMMAND_PATTERNS)


def looks_like_xss(value: str) -> bool:
    """Whether a string matches a script injection signature."""
    return isinstance(value, str) and _matches_any(value, _XSS_PATTERNS)


# =============================================================================
# Structured scan
# =============================================================================


@dataclass
class ScanResult:
    """Outcome of scanning a value.

    Attributes:
        valid: True if no detector fired anywhere in the value.
        errors: One entry per finding, in traversal order. Entries name the
            location, so they stay out of logs.
        detectors: Detector label per finding, safe to log.
    """

    valid: bool = True
    errors: list[str] = field(default_factory=list)
    detectors: list[str] = field(default_factory=list)

    def add(self, label: str, location: str) -> None:
        self.valid = False
        self.errors.append(f"{label} pattern detected at {location}")
        self.detectors.append(label)


def _scan_string(value: str, location: str, result: ScanResult) -> None:
    for label, patterns in _DETECTORS:
        if _matches_any(value, patterns):
            result.add(label, location)


def _scan(
    value: Any, location: str, depth: int, max_depth: int, result: ScanResult
) -> None:
    if depth > max_depth:
        # sanitize_structured drops whatever lies past max_depth
        return
    if isinstance(value, str):
        _scan_string(value, location, result)
    elif isinstance(value, dict):
        for key, item in value.items():
            key_text = str(key)
            _scan_string(key_text, f"{location} (key)", result)
            _scan(item, f"{location}.{key_text}", depth + 1, max_depth, result)
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _scan(item, f"{location}[{index}]", depth + 1, max_depth, result)


def scan(value: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> ScanResult:
    """Run every detector over every string in a JSON-like value.

    Walks strings, lists, tuples, and dicts (keys included) without mutating
    the input. Structures nested deeper than max_depth are not walked, which
    bounds recursion on hostile payloads; sanitize_structured replaces them
    with None, so nothing past the limit reaches a handler.

    Args:
        value: Parsed request body or any JSON-compatible value.
            Any is justified: JSON values have no common base type.
        max_depth: Maximum container nesting to walk.

    Returns:
        ScanResult aggregating all findings.
    """
    result = ScanResult()
    _scan(value, "$", 0, max_depth, result)
    return result


# =============================================================================
# Sanitizers
# =============================================================================


def _sanitize_once(value: str) -> str:
    value = _CONTROL_CHARS.sub("", value)
    value = _ANGLE_BRACKETS.sub("", value)
    value = _DANGEROUS_SCHEMES.sub("", value)
    value = _EVENT_HANDLERS.sub("", value)
    value = _QUOTES_AND_SEPARATORS.sub("", value)
    value = _DOT_DOT.sub("", value)
    return value[:MAX_STRING_LENGTH].strip()


def sanitize_string(value: str) -> str:
    """Rewrite a string into a conservative, inert form.

    Removes control and null bytes, angle brackets, javascript:/vbscript:/
    data: schemes, inline event-handler syntax, quotes, semicolons,
    backticks, pipes, and ``..``; trims; truncates to MAX_STRING_LENGTH.

    Removing one token can splice together another (``javajavascript:script:``),
    so passes repeat until nothing changes. Every pass only deletes
    characters, so the loop terminates and the result is idempotent.

    Args:
        value: Untrusted string.

    Returns:
        Sanitized string.
    """
    current = value
    while True:
        cleaned = _sanitize_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned


def sanitize_key(key: str) -> str:
    """Reduce a mapping key to letters, digits, and underscores."""
    return _KEY_UNSAFE.sub("", key)


def _sanitize(value: Any, depth: int, max_depth: int) -> Any:
    if depth > max_depth:
        return None
    if isinstance(value, str):
        return sanitize_string(value)
    if isinstance(value, dict):
        cleaned: dict[str, Any] = {}
        for key, item in value.items():
            safe_key = sanitize_key(str(key))
            if not safe_key:
                continue
            cleaned[safe_key] = _sanitize(item, depth + 1, max_depth)
        return cleaned
    if isinstance(value, (list, tuple)):
        return [_sanitize(item, depth + 1, max_depth) for item in value]
    return value


def sanitize_structured(value: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> Any:
    """Sanitize every string and key in a JSON-like value.

    String leaves go through sanitize_string(). Keys keep only
    ``[A-Za-z0-9_]``; entries whose key becomes empty are dropped. Other
    scalars pass through unchanged. Anything nested deeper than max_depth is
    replaced with None. The input is not mutated.

    Args:
        value: Parsed request body or any JSON-compatible value.
        max_depth: Maximum container nesting to keep.

    Returns:
        A new, sanitized value.
    """
    return _sanitize(value, 0, max_depth)
