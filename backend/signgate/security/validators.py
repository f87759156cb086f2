"""Single-purpose field validators and normalizers.

Each helper returns None, False, or an error list on malformed input and
never raises, so callers can turn the result into a ValidationError with a
message of their choosing.
"""

import base64
import binascii
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import PurePosixPath
from urllib.parse import urlsplit

from email_validator import EmailNotValidError
from email_validator import validate_email as validate_email_syntax

MAX_EMAIL_LENGTH = 254  # RFC 5321
MAX_FILE_NAME_LENGTH = 255
MAX_URL_LENGTH = 2048
MAX_RATE_LIMIT_KEY_LENGTH = 255
MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15  # E.164

_FILE_NAME_UNSAFE = re.compile(r'[<>:"|?*\x00-\x1f\x7f]')
_PATH_SEPARATORS = re.compile(r"[/\\]")
_DRIVE_LETTER = re.compile(r"^[a-zA-Z]:")
_PHONE_ALLOWED = re.compile(r"[^\d+]")
_RATE_LIMIT_KEY_UNSAFE = re.compile(r"[^a-zA-Z0-9:._-]")
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")
_BASE64_URLSAFE_RE = re.compile(r"^[A-Za-z0-9_-]*={0,2}$")

_SAFE_URL_SCHEMES = frozenset({"http", "https"})
_GMAIL_DOMAINS = frozenset({"gmail.com", "googlemail.com"})

# Free and disposable mail providers
FREE_EMAIL_DOMAINS = frozenset(
    {
        # Major providers
        "gmail.com", "yahoo.com", "yahoo.co.uk", "yahoo.fr", "yahoo.de",
        "yahoo.es", "yahoo.it", "outlook.com", "hotmail.com", "hotmail.co.uk",
        "hotmail.fr", "hotmail.de", "live.com", "msn.com", "aol.com",
        "aol.co.uk", "aol.fr", "aol.de", "icloud.com", "me.com", "mac.com",
        "protonmail.com", "proton.me", "zoho.com", "yandex.com", "yandex.ru",
        "mail.com", "gmx.com", "gmx.de", "gmx.fr", "gmx.co.uk", "inbox.com",
        "fastmail.com", "tutanota.com", "tutanota.de", "mail.ru", "qq.com",
        "163.com", "126.com", "sina.com", "rediffmail.com", "rediff.com",
        "hushmail.com", "hush.com",
        # Disposable
        "disposable.com", "tempmail.com", "guerrillamail.com",
        "10minutemail.com", "throwaway.email", "temp-mail.org",
        "mailinator.com", "getnada.com", "mohmal.com", "fakemail.net",
        "sharklasers.com", "grr.la", "guerrillamailblock.com", "pokemail.net",
        "spam4.me", "bccto.me", "chammy.info", "devnullmail.com",
        "dispostable.com", "emailondeck.com", "fakeinbox.com",
        "fakemailgenerator.com", "maildrop.cc", "meltmail.com",
        "mintemail.com", "mytrashmail.com", "nospamfor.us", "nowmymail.com",
        "spamgourmet.com", "spamhole.com", "trashmail.com", "trashmail.net",
        "trashmailer.com", "tempinbox.com", "yopmail.com", "yopmail.fr",
        "yopmail.net", "jetable.org", "melt.li", "meltmail.net",
        "mytemp.email", "nada.email", "nada.ltd", "nada.pro", "nada1.ltd",
    }
    | {
        f"nadaemail{n}.{tld}"
        for n in ("", "1", "2", "3", "4", "5")
        for tld in ("com", "net", "org", "pro", "xyz")
    }
)  # fmt: skip

_DISPOSABLE_DOMAIN_PATTERNS = tuple(
    re.compile(rf"^{prefix}", re.IGNORECASE)
    for prefix in (
        "temp", "tmp", "disposable", "throwaway", "fake", "spam", "trash",
        "mohmal", "guerrilla", "10minute", "nada", "getnada", "maildrop",
        "melt", "mint", "yopmail", "jetable",
    )
)  # fmt: skip

# Local parts typical of test, role, or no-reply addresses
_SUSPICIOUS_LOCAL_PARTS = tuple(
    re.compile(rf"^{prefix}", re.IGNORECASE)
    for prefix in (
        "test", "temp", "fake", "spam", "admin", "noreply", "no-reply",
        "donotreply", "donotreplay",
    )
)  # fmt: skip


def sanitize_file_name(file_name: str) -> str:
    """Make a user-supplied file name safe to store.

    Removes ``..``, replaces path separators with ``_``, drops characters
    invalid on common filesystems, and truncates to 255 chars while keeping
    the extension.

    Args:
        file_name: Original file name.

    Returns:
        Sanitized name, or "file" if nothing usable remains.
    """
    if not isinstance(file_name, str):
        return "file"
    safe = file_name.replace("..", "")
    safe = _PATH_SEPARATORS.sub("_", safe)
    safe = _FILE_NAME_UNSAFE.sub("", safe).strip()

    if len(safe) > MAX_FILE_NAME_LENGTH:
        if "." in safe:
            name, ext = safe.rsplit(".", 1)
            ext = f".{ext}"[:MAX_FILE_NAME_LENGTH]
            safe = name[: MAX_FILE_NAME_LENGTH - len(ext)] + ext
        else:
            safe = safe[:MAX_FILE_NAME_LENGTH]

    return safe or "file"


def sanitize_file_path(path: str) -> str | None:
    """Normalize a relative storage path, rejecting traversal.

    Args:
        path: Relative path using / or \\ separators.

    Returns:
        Normalized forward-slash path, or None if the path is absolute,
        names a drive, contains a null byte, or has a ``..`` segment.
    """
    if not isinstance(path, str) or not path.strip() or "\x00" in path:
        return None
    normalized = path.strip().replace("\\", "/")
    if normalized.startswith("/") or _DRIVE_LETTER.match(normalized):
        return None
    parts = [part for part in normalized.split("/") if part not in ("", ".")]
    if not parts or any(part == ".." for part in parts):
        return None
    if any(_FILE_NAME_UNSAFE.search(part) for part in parts):
        return None
    return str(PurePosixPath(*parts))


def sanitize_email(email: str) -> str | None:
    """Trim, lowercase, and validate an email address.

    Syntax is checked by email-validator without DNS lookups.

    Returns:
        Normalized address, or None if malformed or longer than 254 chars.
    """
    if not isinstance(email, str):
        return None
    candidate = email.strip().lower()
    if not candidate or len(candidate) > MAX_EMAIL_LENGTH:
        return None
    try:
        validate_email_syntax(candidate, check_deliverability=False)
    except EmailNotValidError:
        return None
    return candidate


def is_valid_email(email: str) -> bool:
    """Strict email syntax check (no trimming or case folding)."""
    if not isinstance(email, str) or not 0 < len(email) <= MAX_EMAIL_LENGTH:
        return False
    if email != email.strip():
        return False
    try:
        validate_email_syntax(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def normalize_email(email: str) -> str:
    """Fold an address so aliases of one mailbox compare equal.

    Gmail ignores dots and ``+tag`` suffixes in the local part; other
    providers only ``+tag``. Used for duplicate detection and rate limit
    keys, never for delivery.

    Examples:
        User.Name+Tag@Gmail.COM -> username@gmail.com
        user+tag@yahoo.com -> user@yahoo.com
    """
    if not isinstance(email, str):
        return ""
    normalized = email.strip().lower()
    if normalized.count("@") != 1:
        return normalized
    local, domain = normalized.split("@")
    if domain in _GMAIL_DOMAINS:
        local = local.replace(".", "")
    local = local.split("+", 1)[0]
    return f"{local}@{domain}"


def emails_match(first: str, second: str) -> bool:
    """Whether two addresses reach the same mailbox after normalize_email()."""
    return normalize_email(first) == normalize_email(second)


def get_email_domain(email: str) -> str | None:
    """Lowercased domain of an address, or None unless it has exactly one @."""
    if not isinstance(email, str) or not email:
        return None
    parts = email.lower().split("@")
    if len(parts) != 2:
        return None
    return parts[1]


def is_free_email_provider(email: str) -> bool:
    """Whether the address belongs to a free or disposable mail provider.

    Matches the known-provider list exactly, then falls back to domain
    prefixes common among throwaway services (``tempmail.xyz``,
    ``trashbox.io``).
    """
    domain = get_email_domain(email)
    if not domain:
        return False
    if domain in FREE_EMAIL_DOMAINS:
        return True
    return any(pattern.match(domain) for pattern in _DISPOSABLE_DOMAIN_PATTERNS)


@dataclass
class EmailValidationResult:
    """Outcome of validate_email().

    Attributes:
        valid: Syntax is valid and the address is at most 254 chars.
        is_free_email: Domain is a free or disposable provider.
        normalized_email: normalize_email() of the input.
        domain: get_email_domain() of the input.
        warnings: Signals for spam review; never grounds for rejection alone.
    """

    valid: bool
    is_free_email: bool
    normalized_email: str
    domain: str | None
    warnings: list[str] = field(default_factory=list)


def validate_email(email: str) -> EmailValidationResult:
    """Validate an address and flag signup-spam signals.

    Free providers and role or throwaway local parts (``test``, ``admin``,
    ``noreply``...) produce warnings but do not affect ``valid``.
    """
    normalized = normalize_email(email)
    is_free = is_free_email_provider(email)
    warnings: list[str] = []

    if is_free:
        warnings.append("Free email provider detected")

    local_part = normalized.split("@", 1)[0]
    if any(pattern.match(local_part) for pattern in _SUSPICIOUS_LOCAL_PARTS):
        warnings.append("Suspicious email pattern detected")

    return EmailValidationResult(
        valid=is_valid_email(email),
        is_free_email=is_free,
        normalized_email=normalized,
        domain=get_email_domain(email),
        warnings=warnings,
    )


def sanitize_phone_number(phone: str) -> str | None:
    """Reduce a phone number to E.164-style digits.

    Keeps digits and a single leading ``+``; spaces, dashes, dots, and
    parentheses are dropped.

    Returns:
        Normalized number, or None if it has fewer than 7 or more than 15
        digits or a ``+`` anywhere but the start.
    """
    if not isinstance(phone, str):
        return None
    stripped = _PHONE_ALLOWED.sub("", phone.strip())
    if "+" in stripped[1:]:
        return None
    digits = stripped.lstrip("+")
    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        return None
    return stripped


def is_valid_uuid(value: str) -> bool:
    """Whether value is a canonical (hyphenated) UUID string."""
    if not isinstance(value, str) or len(value) != 36:
        return False
    try:
        parsed = uuid.UUID(value)
    except ValueError:
        return False
    return str(parsed) == value.lower()


def is_safe_url(url: str) -> bool:
    """Whether url is an absolute http(s) URL.

    Rejects every other scheme, including javascript:, data:, vbscript:,
    and file:, as well as URLs longer than 2048 chars or without a host.
    """
    if not isinstance(url, str) or not url or len(url) > MAX_URL_LENGTH:
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    return parts.scheme.lower() in _SAFE_URL_SCHEMES and bool(parts.netloc)


def is_valid_date(value: str) -> bool:
    """Whether value is an ISO 8601 date or datetime."""
    if not isinstance(value, str) or not value:
        return False
    try:
        if len(value) == 10:
            date.fromisoformat(value)
        else:
            datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


def is_valid_base64(value: str, *, urlsafe: bool = False) -> bool:
    """Whether value is well-formed, correctly padded base64."""
    if not isinstance(value, str) or not value or len(value) % 4:
        return False
    pattern = _BASE64_URLSAFE_RE if urlsafe else _BASE64_RE
    if not pattern.match(value):
        return False
    try:
        if urlsafe:
            base64.urlsafe_b64decode(value)
        else:
            base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return False
    return True


def sanitize_rate_limit_key(key: str) -> str:
    """Restrict a rate limit identifier to ``[A-Za-z0-9:._-]``, 255 chars."""
    if not isinstance(key, str):
        return ""
    return _RATE_LIMIT_KEY_UNSAFE.sub("", key)[:MAX_RATE_LIMIT_KEY_LENGTH]


# =============================================================================
# File uploads
# =============================================================================

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
MAX_IMAGE_UPLOAD_BYTES = 5 * 1024 * 1024

_DANGEROUS_EXTENSIONS = frozenset(
    {
        ".exe", ".bat", ".cmd", ".com", ".pif", ".scr", ".vbs", ".js", ".jar",
        ".app", ".deb", ".pkg", ".rpm", ".sh", ".ps1", ".dll", ".so", ".dylib",
    }
)  # fmt: skip

_DANGEROUS_MIME_TYPES = frozenset(
    {
        "application/x-msdownload",
        "application/x-executable",
        "application/x-sh",
        "application/x-shellscript",
        "application/x-msdos-program",
        "application/x-ms-installer",
    }
)

IMAGE_MIME_TYPES = (
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
)
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")

DOCUMENT_MIME_TYPES = (
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
)
DOCUMENT_EXTENSIONS = (".pdf", ".doc", ".docx", ".txt")


@dataclass
class FileUploadResult:
    """Outcome of validating upload metadata.

    Attributes:
        valid: True if no rule was violated.
        errors: Human-readable violations.
        sanitized_file_name: Safe name to store, only set when valid.
    """

    valid: bool
    errors: list[str] = field(default_factory=list)
    sanitized_file_name: str | None = None


def _extension(file_name: str) -> str:
    return PurePosixPath(file_name.lower()).suffix


def validate_file_upload(
    file_name: str,
    size: int,
    content_type: str | None = None,
    *,
    max_size: int = DEFAULT_MAX_UPLOAD_BYTES,
    allowed_mime_types: tuple[str, ...] = (),
    allowed_extensions: tuple[str, ...] = (),
    require_mime_type: bool = False,
) -> FileUploadResult:
    """Validate upload metadata before the content is read.

    Checks size, MIME and extension allow-lists, and blocks executables by
    extension or MIME type regardless of the allow-lists. Content sniffing
    is the storage layer's job.

    Args:
        file_name: Client-supplied file name.
        size: Declared size in bytes.
        content_type: Declared MIME type, if any.
        max_size: Size ceiling in bytes.
        allowed_mime_types: Accepted MIME types (empty accepts any).
        allowed_extensions: Accepted extensions with dot (empty accepts any).
        require_mime_type: Reject uploads without a declared MIME type.

    Returns:
        FileUploadResult with all violations.
    """
    if not isinstance(file_name, str) or not file_name.strip():
        return FileUploadResult(valid=False, errors=["Invalid file name"])

    errors: list[str] = []
    extension = _extension(file_name)
    mime = content_type.split(";", 1)[0].strip().lower() if content_type else None

    if size < 0 or size > max_size:
        errors.append(f"File size exceeds maximum allowed size of {max_size} bytes")

    if mime:
        if allowed_mime_types and mime not in allowed_mime_types:
            errors.append(f"File type {mime} is not allowed")
    elif require_mime_type:
        errors.append("File MIME type is required")

    if allowed_extensions and extension not in allowed_extensions:
        errors.append(
            f"File extension is not allowed. Allowed: {', '.join(allowed_extensions)}"
        )

    if extension in _DANGEROUS_EXTENSIONS:
        errors.append("Executable files are not allowed")
    if mime in _DANGEROUS_MIME_TYPES:
        errors.append("Executable file types are not allowed")

    if errors:
        return FileUploadResult(valid=False, errors=errors)
    return FileUploadResult(valid=True, sanitized_file_name=sanitize_file_name(file_name))


def validate_image_upload(
    file_name: str,
    size: int,
    content_type: str | None,
    max_size: int = MAX_IMAGE_UPLOAD_BYTES,
) -> FileUploadResult:
    """Validate an image upload (signature images, logos)."""
    return validate_file_upload(
        file_name,
        size,
        content_type,
        max_size=max_size,
        allowed_mime_types=IMAGE_MIME_TYPES,
        allowed_extensions=IMAGE_EXTENSIONS,
        require_mime_type=True,
    )


def validate_document_upload(
    file_name: str,
    size: int,
    content_type: str | None,
    max_size: int = DEFAULT_MAX_UPLOAD_BYTES,
) -> FileUploadResult:
    """Validate a document upload (contract attachments)."""
    return validate_file_upload(
        file_name,
        size,
        content_type,
        max_size=max_size,
        allowed_mime_types=DOCUMENT_MIME_TYPES,
        allowed_extensions=DOCUMENT_EXTENSIONS,
        require_mime_type=True,
    )
