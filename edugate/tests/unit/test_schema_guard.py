from __future__ import annotations

import pytest

from edugate.core.errors import InvalidSchemaName
from edugate.persistence.guards import create_schema_slug, quote_schema, validate_schema_name


@pytest.mark.parametrize("name", ["tenant_northridge", "_private", "T1_school", "a"])
def test_validate_schema_name_accepts_safe_identifiers(name: str) -> None:
    assert validate_schema_name(name) == name


@pytest.mark.parametrize(
    "name",
    [
        "",
        "1tenant",
        "tenant-northridge",
        "tenant northridge",
        'tenant"; DROP SCHEMA public; --',
        "tenant_x;SELECT 1",
        "tenant.other",
        "ténant",
        None,
        42,
    ],
)
def test_validate_schema_name_rejects_unsafe_values(name: object) -> None:
    with pytest.raises(InvalidSchemaName) as excinfo:
        validate_schema_name(name)
    # The message never echoes the rejected value.
    assert excinfo.value.message == "Invalid schema name"


def test_validate_schema_name_enforces_length_cap() -> None:
    assert validate_schema_name("t" * 10, max_length=10) == "t" * 10
    with pytest.raises(InvalidSchemaName):
        validate_schema_name("t" * 11, max_length=10)


def test_quote_schema_validates_before_quoting() -> None:
    assert quote_schema("tenant_northridge") == '"tenant_northridge"'
    with pytest.raises(InvalidSchemaName):
        quote_schema('x"; DROP TABLE users; --')


def test_create_schema_slug_normalizes_names() -> None:
    assert create_schema_slug("Northridge High") == "tenant_northridge_high"
    assert create_schema_slug("  St. Mary's -- Academy ") == "tenant_st_mary_s_academy"
    assert create_schema_slug("2024 Cohort") == "tenant_2024_cohort"


def test_create_schema_slug_truncates_and_stays_valid() -> None:
    slug = create_schema_slug("a very long school name " * 5, max_length=20)
    assert len(slug) <= 20
    assert not slug.endswith("_")
    assert validate_schema_name(slug, max_length=20) == slug


def test_create_schema_slug_rejects_empty_names() -> None:
    with pytest.raises(InvalidSchemaName):
        create_schema_slug("!!!")
