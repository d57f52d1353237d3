"""Isolated-mode data provider.

Restores a named fixture bundle into a private SQLite scratch database,
verifies it, and hands back a ``DataContext`` whose cleanup closes and
deletes the scratch file.

Fixture bundles live in ``ISOLATED_FIXTURES_DIR``:
- ``<dataset>.sql``: executed as a script
- ``<dataset>.json``: ``{"customers": [{"id": ..., "name": ...}, ...], ...}``
"""
from __future__ import annotations

import json
import logging
import re
import sqlite3
import tempfile
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import anyio
import anyio.to_thread

from fieldservice_testing.config import IsolatedSettings
from fieldservice_testing.errors import FixtureNotFoundError, FixtureVerificationError
from fieldservice_testing.models import (
    ConnectionInfo,
    DataContext,
    EntityRecord,
    TestDataSet,
    TestMetadata,
    TestMode,
    new_test_run_id,
)
from fieldservice_testing.retry import RetryExecutor, RetryPolicy

logger = logging.getLogger(__name__)

BUNDLE_SUFFIXES = (".sql", ".json")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# SQLite VM instructions between deadline checks
_PROGRESS_STEPS = 1000


@dataclass
class VerificationResult:
    dataset: str
    failures: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class _RestoredStore:
    connection: sqlite3.Connection
    path: Path
    data: TestDataSet


class IsolatedDataProvider:
    """Builds isolated DataContexts from fixture bundles.

    At most one restore runs at a time per provider; each load gets its own
    scratch file, so contexts never share state.
    """

    def __init__(
        self,
        settings: IsolatedSettings,
        retry_policy: Optional[RetryPolicy] = None,
        version: str = "1.0.0",
        executor: Optional[RetryExecutor] = None,
    ) -> None:
        self.settings = settings
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=1.0)
        self.version = version
        self.executor = executor or RetryExecutor()
        self._restore_lock = threading.RLock()
        self._tempdir: Optional[Path] = None

    @property
    def scratch_dir(self) -> Path:
        if self.settings.scratch_dir is not None:
            self.settings.scratch_dir.mkdir(parents=True, exist_ok=True)
            return self.settings.scratch_dir
        if self._tempdir is None:
            self._tempdir = Path(tempfile.mkdtemp(prefix="fieldservice-isolated-"))
        return self._tempdir

    def find_bundle(self, dataset: str) -> Path:
        candidates = [self.settings.fixtures_dir / f"{dataset}{suffix}" for suffix in BUNDLE_SUFFIXES]
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        raise FixtureNotFoundError(dataset, searched=[str(candidate) for candidate in candidates])

    async def load(self, dataset_name: Optional[str] = None, test_run_id: Optional[str] = None) -> DataContext:
        """Restore ``dataset_name`` and return a ready isolated context.

        Raises:
            FixtureNotFoundError: No bundle for the dataset (after retries)
            FixtureVerificationError: Restored data failed verification (after retries)
        """
        dataset = dataset_name or self.settings.default_dataset
        run_id = test_run_id or new_test_run_id(TestMode.ISOLATED)
        policy = RetryPolicy(
            max_attempts=self.retry_policy.max_attempts,
            base_delay=self.retry_policy.base_delay,
            is_retryable=self.retry_policy.is_retryable,
            attempt_timeout=self.settings.restore_timeout,
            max_delay=self.retry_policy.max_delay,
        )

        logger.info("[ISOLATED] Restoring dataset '%s' for run %s", dataset, run_id)
        store = await self.executor.execute(
            lambda: anyio.to_thread.run_sync(self._restore, dataset, run_id),
            policy,
            description=f"restore of '{dataset}'",
        )
        logger.info("[ISOLATED] Dataset '%s' ready: %r at %s", dataset, store.data, store.path)

        async def release() -> None:
            await anyio.to_thread.run_sync(self._dispose, store.connection, store.path)

        return DataContext(
            mode=TestMode.ISOLATED,
            test_data=store.data,
            connection_info=ConnectionInfo(
                host="localhost",
                database=str(store.path),
                is_test_connection=True,
            ),
            metadata=TestMetadata.create(TestMode.ISOLATED, self.version, run_id),
            cleanup=release,
            session=store.connection,
        )

    async def query(self, context: DataContext, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Run a read query against the context's scratch database."""
        if context.mode is not TestMode.ISOLATED or not isinstance(context.session, sqlite3.Connection):
            raise ValueError("query() requires an isolated DataContext")
        if context.cleaned_up:
            raise ValueError(f"DataContext {context.test_run_id} has already been cleaned up")
        connection: sqlite3.Connection = context.session

        def run() -> List[Dict[str, Any]]:
            with self._restore_lock:
                return [dict(row) for row in connection.execute(sql, tuple(params)).fetchall()]

        return await anyio.to_thread.run_sync(run)

    def run_verification_queries(self, connection: sqlite3.Connection, queries: Iterable[str]) -> List[str]:
        """Return a failure message per query that errors or returns no rows."""
        failures: List[str] = []
        for sql in queries:
            try:
                row = connection.execute(sql).fetchone()
            except sqlite3.Error as exc:
                failures.append(f"{sql!r} raised {exc}")
                continue
            if row is None:
                failures.append(f"{sql!r} returned no rows")
        return failures

    # ---- worker-thread helpers -------------------------------------------------

    def _restore(self, dataset: str, run_id: str) -> _RestoredStore:
        deadline = time.monotonic() + self.settings.restore_timeout
        with self._restore_lock:
            bundle = self.find_bundle(dataset)
            path = self.scratch_dir / f"{dataset}-{run_id}.sqlite3"
            if path.exists():
                path.unlink()

            connection = sqlite3.connect(
                str(path),
                timeout=self.settings.restore_timeout,
                check_same_thread=False,
            )
            connection.row_factory = sqlite3.Row
            connection.set_progress_handler(lambda: int(time.monotonic() > deadline), _PROGRESS_STEPS)
            try:
                try:
                    expected = self._apply_bundle(connection, bundle)
                    _check_deadline(deadline, dataset, "applying the bundle")
                    result = self.verify(connection, dataset, expected)
                    _check_deadline(deadline, dataset, "verification")
                except sqlite3.OperationalError as exc:
                    if "interrupted" in str(exc) and time.monotonic() > deadline:
                        raise TimeoutError(
                            f"Restore of '{dataset}' exceeded {self.settings.restore_timeout}s"
                        ) from exc
                    raise
                if not result.ok:
                    raise FixtureVerificationError(dataset, result.failures)
                data = self._extract(connection)
                connection.set_progress_handler(None, 0)
            except Exception:
                logger.warning("[ISOLATED] Restore of '%s' failed, removing %s", dataset, path)
                self._dispose(connection, path)
                raise
            return _RestoredStore(connection=connection, path=path, data=data)

    def verify(
        self,
        connection: sqlite3.Connection,
        dataset: str,
        expected: Optional[Dict[str, List[Dict[str, Any]]]] = None,
    ) -> VerificationResult:
        result = VerificationResult(dataset)
        result.failures.extend(self.run_verification_queries(connection, self.settings.verification_queries))
        for category, rows in (expected or {}).items():
            table = _identifier(category)
            try:
                actual = connection.execute(f'SELECT COUNT(*) FROM "{table}"').fetchone()[0]
            except sqlite3.Error as exc:
                result.failures.append(f"{category}: {exc}")
                continue
            if actual != len(rows):
                result.failures.append(f"{category}: expected {len(rows)} rows, found {actual}")
            for row in rows:
                if "id" not in row:
                    continue
                found = connection.execute(f'SELECT 1 FROM "{table}" WHERE id = ?', (str(row["id"]),)).fetchone()
                if found is None:
                    result.failures.append(f"{category}: record {row['id']!r} missing")
        return result

    def _apply_bundle(self, connection: sqlite3.Connection, bundle: Path) -> Optional[Dict[str, List[Dict[str, Any]]]]:
        if bundle.suffix == ".sql":
            connection.executescript(bundle.read_text(encoding="utf-8"))
            connection.commit()
            return None

        with bundle.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        if not isinstance(payload, dict):
            raise ValueError(f"Fixture bundle {bundle} must contain a JSON object of categories")

        expected: Dict[str, List[Dict[str, Any]]] = {}
        for category, rows in payload.items():
            if not isinstance(rows, list):
                raise ValueError(f"Fixture bundle {bundle}: '{category}' must be a list of rows")
            table = _identifier(category)
            columns = _columns(rows)
            column_sql = ", ".join(
                '"id" TEXT PRIMARY KEY' if column == "id" else f'"{column}"' for column in columns
            )
            connection.execute(f'CREATE TABLE IF NOT EXISTS "{table}" ({column_sql})')
            if rows:
                placeholders = ", ".join("?" for _ in columns)
                quoted = ", ".join(f'"{column}"' for column in columns)
                connection.executemany(
                    f'INSERT INTO "{table}" ({quoted}) VALUES ({placeholders})',
                    [tuple(_to_sql(row.get(column), column) for column in columns) for row in rows],
                )
            expected[category] = rows
        connection.commit()
        return expected

    def _extract(self, connection: sqlite3.Connection) -> TestDataSet:
        tables = {
            row[0] for row in connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        }
        records: Dict[str, List[EntityRecord]] = {}
        for category in self.settings.categories:
            if category not in tables:
                records[category] = []
                continue
            rows = connection.execute(f'SELECT * FROM "{_identifier(category)}"').fetchall()
            records[category] = [_to_record(dict(row)) for row in rows]
        return TestDataSet(records)

    def _dispose(self, connection: sqlite3.Connection, path: Path) -> None:
        with self._restore_lock:
            connection.close()
            for candidate in (path, path.with_name(path.name + "-journal"), path.with_name(path.name + "-wal")):
                candidate.unlink(missing_ok=True)
        logger.debug("[ISOLATED] Removed scratch database %s", path)


def _check_deadline(deadline: float, dataset: str, stage: str) -> None:
    if time.monotonic() > deadline:
        raise TimeoutError(f"Restore of '{dataset}' ran past its deadline during {stage}")


def _identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid table or column name in fixture bundle: {name!r}")
    return name


def _columns(rows: List[Dict[str, Any]]) -> List[str]:
    columns: List[str] = ["id"]
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(_identifier(key))
    return columns


def _to_sql(value: Any, column: str) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if column == "id" and value is not None:
        return str(value)
    return value


def _to_record(row: Dict[str, Any]) -> EntityRecord:
    record_id = row.pop("id", None)
    name = row.pop("name", None)
    # Fixture provenance marks rows as test data unless the bundle says otherwise
    is_test_data = bool(row.pop("is_test_data", True))
    return EntityRecord(
        id=str(record_id) if record_id is not None else "",
        name=str(name) if name is not None else "",
        is_test_data=is_test_data,
        attributes=row,
    )
