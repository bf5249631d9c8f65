from __future__ import annotations

from datetime import datetime, timezone

from edugate.domain.enums import EntityType
from edugate.services.audit import (
    extract_entity_id,
    normalize_actor_id,
    resolve_entity_type,
    sanitize_details,
)


def test_sanitize_details_redacts_sensitive_keys_recursively() -> None:
    payload = {
        "password": "hunter2",
        "accessToken": "abc",
        "refresh_token": "def",
        "client_secret": "s3cr3t",
        "Api-Key": "key",
        "nested": {"authorization": "Bearer abc", "safe": 1},
        "items": [{"token": "x", "name": "row"}],
        "name": "Jane",
    }
    sanitized = sanitize_details(payload)
    assert sanitized["password"] == "[REDACTED]"
    assert sanitized["accessToken"] == "[REDACTED]"
    assert sanitized["refresh_token"] == "[REDACTED]"
    assert sanitized["client_secret"] == "[REDACTED]"
    assert sanitized["Api-Key"] == "[REDACTED]"
    assert sanitized["nested"] == {"authorization": "[REDACTED]", "safe": 1}
    assert sanitized["items"] == [{"token": "[REDACTED]", "name": "row"}]
    assert sanitized["name"] == "Jane"
    # The caller's payload is left untouched.
    assert payload["password"] == "hunter2"


def test_sanitize_details_coerces_non_json_values() -> None:
    stamp = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    sanitized = sanitize_details({"at": stamp, "tags": ("a", "b"), "obj": object})
    assert sanitized["at"] == stamp.isoformat()
    assert sanitized["tags"] == ["a", "b"]
    assert isinstance(sanitized["obj"], str)


def test_resolve_entity_type_uses_last_path_segment() -> None:
    assert resolve_entity_type("/v1/classes/C1/attendance") == EntityType.ATTENDANCE
    assert resolve_entity_type("/v1/classes/C1/subjects/S1/grades") == EntityType.GRADE
    assert resolve_entity_type("/v1/platform/overrides") == EntityType.OVERRIDE
    assert resolve_entity_type("/v1/users?page=2") == EntityType.USER
    assert resolve_entity_type("/v1/platform/overrides/abc/revoke") == EntityType.ACCESS
    assert resolve_entity_type("/") == EntityType.ACCESS


def test_extract_entity_id_prefers_path_params() -> None:
    assert extract_entity_id({"class_id": "C1"}, {"classId": "C9"}) == "C1"
    assert extract_entity_id({}, {"studentId": "S-7"}) == "S-7"
    assert extract_entity_id({"override_id": "o-1"}, None) == "o-1"
    assert extract_entity_id({}, ["not", "a", "mapping"]) is None
    assert extract_entity_id(None, {"id": ""}) is None


def test_normalize_actor_id_accepts_only_uuids() -> None:
    raw = "6F1C2B8E-5B2C-4F0A-9C8D-1E2F3A4B5C6D"
    assert normalize_actor_id(raw) == raw.lower()
    assert normalize_actor_id(f"  {raw}  ") == raw.lower()
    assert normalize_actor_id("user-42") is None
    assert normalize_actor_id(None) is None
    assert normalize_actor_id(42) is None
