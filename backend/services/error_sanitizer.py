import re
from typing import Iterable, Optional


_SUSPICIOUS_ERROR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"traceback", re.IGNORECASE),
    re.compile(r"\bfile\s+\".*?\.py\"", re.IGNORECASE),
    re.compile(r"/home/|/users/|[a-z]:\\", re.IGNORECASE),
)

_CREDENTIAL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bBearer\s+[A-Za-z0-9._\-]+", re.IGNORECASE),
    re.compile(r"\bsk-[A-Za-z0-9_\-]{8,}"),
    re.compile(r"\bvercel_blob_rw_[A-Za-z0-9_]+", re.IGNORECASE),
    re.compile(r"\bAKIA[0-9A-Z]{16}\b"),
)

REDACTED = "[redacted]"
PROVIDER_DIAGNOSTIC_MAX_CHARS = 200


def redact_secrets(message: str, secrets: Iterable[str] = ()) -> str:
    """Replace configured secrets and credential-shaped tokens."""
    for secret in secrets:
        if secret and len(secret) >= 4:
            message = message.replace(secret, REDACTED)
    for pattern in _CREDENTIAL_PATTERNS:
        message = pattern.sub(REDACTED, message)
    return message


def sanitize_public_error_message(
    message: Optional[str],
    *,
    fallback: str = "Internal error",
    max_chars: int = 240,
    secrets: Iterable[str] = (),
) -> Optional[str]:
    """
    Sanitize an error message before returning it to clients.

    Treat `message` as untrusted: it may contain stack traces, file paths,
    or credentials (especially if derived from `str(exception)` or from a
    third-party response body).
    """
    if not message:
        return None

    safe = message.encode("utf-8", errors="replace").decode("utf-8", errors="replace")
    safe = safe.strip()
    safe = re.sub(r"\s+", " ", safe)
    if not safe:
        return None

    if any(p.search(safe) for p in _SUSPICIOUS_ERROR_PATTERNS):
        return fallback

    safe = redact_secrets(safe, secrets)

    if len(safe) > max_chars:
        return f"{safe[:max_chars]}…"
    return safe


def sanitize_provider_diagnostic(
    message: Optional[str], *, secrets: Iterable[str] = ()
) -> Optional[str]:
    """Short, secret-free excerpt of a provider error body."""
    return sanitize_public_error_message(
        message,
        fallback="provider returned an unreadable error",
        max_chars=PROVIDER_DIAGNOSTIC_MAX_CHARS,
        secrets=secrets,
    )
