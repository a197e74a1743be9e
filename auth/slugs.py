"""
auth/slugs.py -- URL-safe tenant slugs.

slugify("Café Ñandú & Co") -> "cafe-nandu-co". Uniqueness is the store's job
(AccountStore.unique_slug appends -1, -2, ...).
"""

from __future__ import annotations

import re
import unicodedata

_INVALID = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")
_DASHES = re.compile(r"-+")

# Used when a name has no ASCII-representable characters at all.
FALLBACK_SLUG = "organization"


def slugify(name: str) -> str:
    """Lowercase, strip accents, keep [a-z0-9-], collapse and trim dashes."""
    text = unicodedata.normalize("NFD", name.lower())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = _INVALID.sub("", text)
    text = _WHITESPACE.sub("-", text.strip())
    text = _DASHES.sub("-", text).strip("-")
    return text or FALLBACK_SLUG


def organization_name(first_name: str) -> str:
    """Default tenant name for accounts created through an OAuth login."""
    first = first_name.strip()
    return f"{first}'s organization" if first else "My organization"
