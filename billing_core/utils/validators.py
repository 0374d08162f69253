import re

# Simple, pragmatic patterns
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_ANGLE_RE = re.compile(r"[<>]")

def clean_str(val: str | None, max_len: int = 255) -> str | None:
    """
    Collapse whitespace, trim, enforce max length. Returns None if empty after cleaning.
    """
    if val is None:
        return None
    s = re.sub(r"\s+", " ", val).strip()
    if not s:
        return None
    return s[:max_len]

def sanitize_external_id(val, max_len: int = 100) -> str | None:
    """
    Payment-provider references arrive in webhook payloads and are shown in admin
    screens: trim, truncate, then drop angle brackets. Non-strings become None.
    """
    if not val or not isinstance(val, str):
        return None
    s = _ANGLE_RE.sub("", val.strip()[:max_len])
    return s or None

def is_valid_email(val: str | None) -> bool:
    if not val:
        return False
    return bool(_EMAIL_RE.match(val))
