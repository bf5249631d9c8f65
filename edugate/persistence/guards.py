from __future__ import annotations

import re

from edugate.core.config import get_settings
from edugate.core.errors import InvalidSchemaName


# Letters, digits and underscore only; never a leading digit.
_SCHEMA_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")
SCHEMA_PREFIX = "tenant_"


def validate_schema_name(schema_name: object, *, max_length: int | None = None) -> str:
    # Single choke point for schema identifiers that end up in composed SQL.
    limit = max_length if max_length is not None else get_settings().schema_name_max_length
    if not isinstance(schema_name, str):
        raise InvalidSchemaName("Invalid schema name")
    if not schema_name or len(schema_name) > limit:
        raise InvalidSchemaName("Invalid schema name")
    if _SCHEMA_NAME_RE.fullmatch(schema_name) is None:
        raise InvalidSchemaName("Invalid schema name")
    return schema_name


def quote_schema(schema_name: str) -> str:
    # Quote a validated schema for the fixed DDL templates; case is preserved.
    return f'"{validate_schema_name(schema_name)}"'


def create_schema_slug(name: str, *, max_length: int | None = None) -> str:
    """Derive a tenant schema name from a school name or id.

    The result always passes ``validate_schema_name``: non alphanumeric runs
    collapse to ``_`` and the name is truncated to the configured cap.
    """
    limit = max_length if max_length is not None else get_settings().schema_name_max_length
    slug = _SLUG_STRIP_RE.sub("_", name.strip().lower()).strip("_")
    if not slug:
        raise InvalidSchemaName("Cannot derive a schema name from an empty tenant name")
    schema_name = f"{SCHEMA_PREFIX}{slug}"[:limit].rstrip("_")
    return validate_schema_name(schema_name, max_length=limit)
