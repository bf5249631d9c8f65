from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt


TEST_JWT_SECRET = "test-jwt-secret-with-enough-entropy-0001"


def issue_token(
    user_id: str,
    *,
    secret: str = TEST_JWT_SECRET,
    expires_in: timedelta = timedelta(minutes=15),
) -> str:
    # Mint identity-service style tokens; only the subject is trusted.
    now = datetime.now(timezone.utc)
    claims = {"sub": user_id, "iat": now, "exp": now + expires_in}
    return jwt.encode(claims, secret, algorithm="HS256")


def auth_headers(user_id: str, *, tenant: str | None = None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {issue_token(user_id)}"}
    if tenant is not None:
        headers["X-Tenant-ID"] = tenant
    return headers
