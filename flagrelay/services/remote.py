"""Remote store executors used for every read and write of the replicated dataset."""

from __future__ import annotations

import json
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from flagrelay.config import Settings, get_settings
from flagrelay.errors import UpstreamUnavailableError


class RemoteExecutorError(UpstreamUnavailableError):
    """Raised when the remote store rejects a statement or cannot be reached."""


@dataclass(slots=True)
class QueryResult:
    """Rows returned by a statement plus the number of rows it wrote."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    changes: int = 0

    def first(self) -> dict[str, Any] | None:
        return self.rows[0] if self.rows else None


class RemoteExecutor(Protocol):
    """Protocol for anything able to run parameterized SQL on the remote store."""

    def execute(self, statement: str, params: Sequence[Any] | None = None) -> QueryResult:
        """Run one statement, or a `;`-separated batch when no params are given."""


def split_statements(statement: str) -> list[str]:
    """Split a statement batch on `;`, dropping blank parts and `--` comment lines."""

    parts: list[str] = []
    for raw_part in statement.split(";"):
        lines = [line for line in raw_part.splitlines() if not line.strip().startswith("--")]
        clean = "\n".join(lines).strip()
        if clean:
            parts.append(clean)
    return parts


@dataclass(slots=True)
class D1Client:
    """Minimal Cloudflare D1 query API client using stdlib HTTP."""

    account_id: str
    database_id: str
    api_token: str
    base_url: str = "https://api.cloudflare.com/client/v4"
    timeout_seconds: int = 30

    @property
    def query_url(self) -> str:
        return (
            f"{self.base_url.rstrip('/')}/accounts/{self.account_id}"
            f"/d1/database/{self.database_id}/query"
        )

    def execute(self, statement: str, params: Sequence[Any] | None = None) -> QueryResult:
        payload = {
            "sql": statement,
            "params": list(params or []),
        }
        req = urllib_request.Request(
            url=self.query_url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_token}",
                "Content-Type": "application/json",
            },
        )
        try:
            with urllib_request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read().decode("utf-8")
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise RemoteExecutorError(f"D1 HTTP {exc.code}: {detail}") from exc
        except urllib_error.URLError as exc:
            raise RemoteExecutorError(f"D1 request failed: {exc.reason}") from exc
        except TimeoutError as exc:
            raise RemoteExecutorError("D1 request timed out") from exc

        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise RemoteExecutorError("D1 returned an undecodable response") from exc
        if not isinstance(decoded, dict):
            raise RemoteExecutorError("D1 returned an unexpected response")
        if not decoded.get("success"):
            raise RemoteExecutorError(f"D1 query unsuccessful: {_format_api_errors(decoded.get('errors'))}")
        return _parse_d1_results(decoded.get("result"))


def _format_api_errors(errors: Any) -> str:
    if not isinstance(errors, list) or not errors:
        return "no error detail"
    messages = []
    for item in errors:
        if isinstance(item, dict):
            messages.append(str(item.get("message") or item))
        else:
            messages.append(str(item))
    return "; ".join(messages)


def _parse_d1_results(result: Any) -> QueryResult:
    if not isinstance(result, list) or not result:
        return QueryResult()
    try:
        first_rows = result[0].get("results") or []
        changes = sum(int((entry.get("meta") or {}).get("changes", 0)) for entry in result)
    except (AttributeError, TypeError, ValueError) as exc:
        raise RemoteExecutorError("D1 returned malformed statement results") from exc
    return QueryResult(rows=[dict(row) for row in first_rows], changes=changes)


def _disable_pysqlite_transactions(dbapi_connection: Any, _connection_record: Any) -> None:
    # BEGIN comes from _emit_begin so DDL joins the transaction.
    dbapi_connection.isolation_level = None


def _emit_begin(conn: Any) -> None:
    conn.exec_driver_sql("BEGIN")


class SQLiteExecutor:
    """Runs remote-store statements against a SQLite database through SQLAlchemy.

    Calls are serialised, so a multi-statement batch is never observed half
    applied by another call on the same executor. Each call runs inside an
    explicit BEGIN, so DDL such as the table swap rolls back with the rest of
    the batch.
    """

    def __init__(self, engine: Engine) -> None:
        if not event.contains(engine, "connect", _disable_pysqlite_transactions):
            event.listen(engine, "connect", _disable_pysqlite_transactions)
            event.listen(engine, "begin", _emit_begin)
        self._engine = engine
        self._lock = threading.Lock()

    @classmethod
    def from_url(cls, url: str) -> SQLiteExecutor:
        if ":memory:" in url or url.rstrip("/").endswith("sqlite:"):
            engine = create_engine(
                url,
                future=True,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            engine = create_engine(url, future=True, connect_args={"check_same_thread": False})
        return cls(engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    def execute(self, statement: str, params: Sequence[Any] | None = None) -> QueryResult:
        statements = split_statements(statement)
        if params and len(statements) > 1:
            raise RemoteExecutorError("Parameters are only supported for single statements")

        rows: list[dict[str, Any]] | None = None
        changes = 0
        with self._lock:
            try:
                with self._engine.begin() as conn:
                    for sql in statements:
                        if params:
                            result = conn.exec_driver_sql(sql, tuple(params))
                        else:
                            result = conn.exec_driver_sql(sql)
                        if result.returns_rows:
                            fetched = [dict(row._mapping) for row in result]
                            if rows is None:
                                rows = fetched
                        elif result.rowcount and result.rowcount > 0:
                            changes += result.rowcount
            except (SQLAlchemyError, OverflowError) as exc:
                raise RemoteExecutorError(f"SQLite statement failed: {exc}") from exc
        return QueryResult(rows=rows or [], changes=changes)

    def dispose(self) -> None:
        self._engine.dispose()


def get_default_executor(settings: Settings | None = None) -> RemoteExecutor:
    """Return the configured remote executor."""

    active = settings or get_settings()
    if active.has_cloudflare_credentials:
        return D1Client(
            account_id=active.cloudflare_account_id or "",
            database_id=active.cloudflare_d1_id or "",
            api_token=active.cloudflare_api_token or "",
            base_url=active.cloudflare_api_base_url,
            timeout_seconds=active.remote_timeout_seconds,
        )
    if active.remote_sqlite_url:
        return SQLiteExecutor.from_url(active.remote_sqlite_url)
    raise RemoteExecutorError(
        "Remote store is not configured. Set CLOUDFLARE_ACCOUNT_ID, CLOUDFLARE_D1_ID and "
        "CLOUDFLARE_API_TOKEN, or REMOTE_SQLITE_URL."
    )
