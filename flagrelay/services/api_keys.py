"""API key registry."""

from __future__ import annotations

import base64
import secrets
from datetime import datetime, timezone

from flagrelay.errors import InvalidInputError, NotFoundError
from flagrelay.services.remote import RemoteExecutor
from flagrelay.services.remote_schema import API_KEYS_TABLE
from flagrelay.types import ApiKeyRecord

KEY_BYTES = 32


class ApiKeyNotFoundError(NotFoundError):
    """Raised when removing a key that does not exist."""


def generate_api_key() -> str:
    """Return 32 random bytes as unpadded URL-safe base64."""

    return base64.urlsafe_b64encode(secrets.token_bytes(KEY_BYTES)).decode("ascii").rstrip("=")


def add_api_key(
    executor: RemoteExecutor,
    description: str,
    *,
    key: str | None = None,
    now: datetime | None = None,
) -> ApiKeyRecord:
    """Store a new key, generating one unless `key` is given."""

    clean_key = (key or generate_api_key()).strip()
    if not clean_key:
        raise InvalidInputError("API key cannot be empty")
    created_at = int((now or datetime.now(timezone.utc)).timestamp())
    executor.execute(
        f"INSERT INTO {API_KEYS_TABLE} (key, description, created_at) VALUES (?, ?, ?)",
        [clean_key, description, created_at],
    )
    return ApiKeyRecord(key=clean_key, description=description, created_at=created_at)


def remove_api_key(executor: RemoteExecutor, key: str) -> None:
    result = executor.execute(f"DELETE FROM {API_KEYS_TABLE} WHERE key = ?", [key])
    if result.changes == 0:
        raise ApiKeyNotFoundError(f"API key not found: {key}")


def validate_api_key(executor: RemoteExecutor, key: str | None) -> bool:
    """Return whether the key is registered."""

    if not key:
        return False
    result = executor.execute(f"SELECT 1 AS hit FROM {API_KEYS_TABLE} WHERE key = ? LIMIT 1", [key])
    return bool(result.rows)


def list_api_keys(executor: RemoteExecutor) -> list[ApiKeyRecord]:
    """Return every key, newest first."""

    result = executor.execute(
        f"SELECT key, description, created_at FROM {API_KEYS_TABLE} ORDER BY created_at DESC, key ASC"
    )
    return [
        ApiKeyRecord(
            key=str(row["key"]),
            description=str(row.get("description") or ""),
            created_at=int(row["created_at"]),
        )
        for row in result.rows
    ]
