"""
Utility helper functions
"""
from datetime import datetime
import re
import unicodedata


def utc_now_iso() -> str:
    """Current UTC time in ISO 8601"""
    return datetime.utcnow().isoformat()


def strip_accents(text: str) -> str:
    """Remove diacritics ("estándar" -> "estandar")"""
    normalized = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def sanitize_phone(number: str) -> str:
    """Keep digits and a leading plus sign"""
    return re.sub(r"[^0-9+]", "", number or "").strip()


def truncate_text(text: str, length: int = 100) -> str:
    """Truncate text to specified length"""
    if not text:
        return ""
    if len(text) <= length:
        return text
    return text[:length] + "..."
