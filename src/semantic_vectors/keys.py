"""Vector record keys and content hashes."""

from __future__ import annotations

import hashlib
import re

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^a-z0-9_:.\- ]+")


def normalize_key_part(value: str) -> str:
    """Lowercase, collapse whitespace to ``-`` and drop characters outside ``[a-z0-9_:.-]``.

    Example:
        >>> normalize_key_part("  Sales  Order Header ")
        'sales-order-header'
    """
    value = _WHITESPACE.sub(" ", value.strip().lower())
    value = _DISALLOWED.sub("", value)
    return value.replace(" ", "-")


def build_key(model_name: str, entity_type: str, schema_name: str, name: str) -> str:
    """Build the stable index key ``model:type:schema:name`` from normalized parts.

    Raises:
        ValueError: If any part is blank
    """
    parts = {"model_name": model_name, "entity_type": entity_type, "schema_name": schema_name, "name": name}
    for label, part in parts.items():
        if not part or not part.strip():
            raise ValueError(f"{label} must not be blank")
    return ":".join(normalize_key_part(part) for part in parts.values())


def build_content_hash(content: str) -> str:
    """Lowercase hex SHA-256 of the UTF-8 encoded content.

    Raises:
        ValueError: If content is blank
    """
    if not content or not content.strip():
        raise ValueError("content must not be blank")
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
