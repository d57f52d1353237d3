"""Production-mode data provider.

Ensures a catalog of synthetic, marker-named entities exists in the live
field-service system and returns a ``DataContext`` bound to it. Ensuring is
idempotent and safe to run from concurrent workers: look up by exact name,
create only when missing, and treat a 409 on create as another worker
having won the race.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import urlparse

import httpx

from fieldservice_testing.config import ProductionSettings
from fieldservice_testing.errors import (
    ConfigurationError,
    DuplicateEntityError,
    EntityEnsureError,
    LiveSystemError,
    SafetyViolationError,
)
from fieldservice_testing.live_client import FieldServiceClient
from fieldservice_testing.models import (
    DEFAULT_CATEGORIES,
    ConnectionInfo,
    DataContext,
    EntityRecord,
    EntitySpec,
    TestDataSet,
    TestMetadata,
    TestMode,
    new_test_run_id,
)
from fieldservice_testing.naming import NamingConventionValidator
from fieldservice_testing.retry import RetryExecutor, RetryPolicy
from fieldservice_testing.safety import ProductionSafetyGuard, SafetyOperation

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], FieldServiceClient]


class _NotYetVisible(Exception):
    """Entity not returned by the live API yet."""

    retryable = True


def default_catalog(settings: ProductionSettings) -> List[EntitySpec]:
    """Looney Tunes customers spread over the configured locations, one route per location."""
    locations = list(settings.locations) or ["Cedar Falls"]
    catalog: List[EntitySpec] = []
    for index, name in enumerate(settings.customer_names):
        catalog.append(EntitySpec("customer", name, {"location": locations[index % len(locations)]}))
    for location in locations:
        catalog.append(EntitySpec("route", f"{location} Route", {"location": location}))
    return catalog


@dataclass
class HealthReport:
    """State of the synthetic catalog in the live system."""

    base_url: str
    reachable: bool = False
    missing: List[str] = field(default_factory=list)
    non_compliant: List[str] = field(default_factory=list)
    # (kind, name) -> ids, first one is kept on repair
    duplicates: Dict[Tuple[str, str], List[str]] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.reachable and not (self.errors or self.non_compliant or self.duplicates)

    def recommendations(self) -> List[str]:
        advice: List[str] = []
        if not self.reachable:
            advice.append(f"Check that {self.base_url} is up and reachable")
        if self.duplicates:
            advice.append(f"Remove duplicates of {len(self.duplicates)} entities")
        if self.missing:
            advice.append(f"Create missing entities: {', '.join(self.missing)}")
        if self.non_compliant:
            advice.append(f"Flag as test data: {', '.join(self.non_compliant)}")
        advice.extend(f"Investigate: {error}" for error in self.errors)
        return advice

    def summary(self) -> str:
        status = "healthy" if self.healthy else "issues found"
        return (
            f"{status}: {len(self.missing)} missing, {len(self.duplicates)} duplicated, "
            f"{len(self.non_compliant)} not flagged"
        )


class ProductionTestDataProvider:
    def __init__(
        self,
        settings: ProductionSettings,
        guard: Optional[ProductionSafetyGuard] = None,
        client_factory: Optional[ClientFactory] = None,
        retry_policy: Optional[RetryPolicy] = None,
        version: str = "1.0.0",
        executor: Optional[RetryExecutor] = None,
    ) -> None:
        self.settings = settings
        self.validator = NamingConventionValidator(settings.marker)
        self.guard = guard or ProductionSafetyGuard(self.validator)
        self.client_factory = client_factory or self._default_client
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=1.0)
        self.version = version
        self.executor = executor or RetryExecutor()

    def _default_client(self) -> FieldServiceClient:
        if not self.settings.api_base_url:
            raise ConfigurationError(
                "FIELDSERVICE_API_BASE_URL is required for production mode",
                key="FIELDSERVICE_API_BASE_URL",
            )
        return FieldServiceClient(
            self.settings.api_base_url,
            token=self.settings.api_token,
            timeout=self.settings.ensure_timeout,
        )

    def prepare(self, spec: EntitySpec) -> EntitySpec:
        """Apply the naming convention (marker in the name, marker-domain email)."""
        name = self.validator.apply(spec.name)
        attributes = dict(spec.attributes)
        attributes.setdefault("is_test_data", True)
        if spec.kind == "customer" and not attributes.get("email"):
            attributes["email"] = self.validator.email_for(name)
        return replace(spec, name=name, attributes=attributes)

    def _policy(self) -> RetryPolicy:
        return replace(self.retry_policy, attempt_timeout=self.settings.ensure_timeout)

    async def ensure(
        self,
        catalog: Optional[Iterable[EntitySpec]] = None,
        catalog_name: str = "default",
        test_run_id: Optional[str] = None,
    ) -> DataContext:
        """Ensure every catalog entity exists and return a production context.

        Raises:
            SafetyViolationError: A create targeted a non-compliant name
            EntityEnsureError: Entities could not be confirmed present
        """
        run_id = test_run_id or new_test_run_id(TestMode.PRODUCTION)
        specs = [self.prepare(spec) for spec in (catalog if catalog is not None else default_catalog(self.settings))]
        client = self.client_factory()
        created: List[Tuple[str, str, str]] = []
        logger.info(
            "[PRODUCTION] Ensuring %d entities of catalog '%s' at %s (run %s)",
            len(specs),
            catalog_name,
            client.base_url,
            run_id,
        )

        try:
            for spec in specs:
                await self.executor.execute(
                    lambda spec=spec: self._ensure_one(client, spec, created),
                    self._policy(),
                    description=f"ensure {spec.kind} '{spec.name}'",
                )
            records, missing = await self._confirm(client, specs)
            if missing:
                raise EntityEnsureError(catalog_name, missing, "not visible after create")
            dataset = TestDataSet(records)
            offending = self.validator.non_compliant(dataset.all_records())
            if offending:
                raise EntityEnsureError(
                    catalog_name,
                    [record.name for record in offending],
                    "not marked as test data",
                )
        except (SafetyViolationError, EntityEnsureError):
            await self._abandon(client, created)
            raise
        except Exception as exc:
            await self._abandon(client, created)
            pending = [spec.name for spec in specs if spec.name not in {name for _, _, name in created}]
            raise EntityEnsureError(catalog_name, pending, f"{type(exc).__name__}: {exc}") from exc

        logger.info(
            "[PRODUCTION] Catalog '%s' ready: %r (%d created)",
            catalog_name,
            dataset,
            len(created),
        )

        async def release() -> None:
            try:
                if self.settings.removes_data:
                    await self._remove_created(client, created)
                else:
                    logger.debug("[PRODUCTION] Preserving synthetic data for run %s", run_id)
            finally:
                await client.close()

        parsed = urlparse(client.base_url)
        return DataContext(
            mode=TestMode.PRODUCTION,
            test_data=dataset,
            connection_info=ConnectionInfo(
                host=parsed.hostname or client.base_url,
                database="fieldservice-api",
                is_test_connection=False,
                port=parsed.port,
            ),
            metadata=TestMetadata.create(TestMode.PRODUCTION, self.version, run_id),
            cleanup=release,
            session=client,
            guard=self.guard,
        )

    async def health_check(self, catalog: Optional[Iterable[EntitySpec]] = None) -> HealthReport:
        """Report missing, duplicated and unflagged catalog entities without changing anything."""
        specs = [self.prepare(spec) for spec in (catalog if catalog is not None else default_catalog(self.settings))]
        client = self.client_factory()
        report = HealthReport(base_url=client.base_url)
        try:
            report.reachable = await client.health()
            if not report.reachable:
                return report

            found: Dict[Tuple[str, str], List[EntityRecord]] = {}
            unlisted: Set[str] = set()
            for kind in sorted({spec.kind for spec in specs}):
                try:
                    items = await client.list(kind)
                except (httpx.HTTPError, LiveSystemError) as exc:
                    report.errors.append(f"listing {kind}s failed: {exc}")
                    unlisted.add(kind)
                    continue
                for item in items:
                    record = _to_record(item, self.validator)
                    # Real data is never inspected, only marker-named entities
                    if not self.validator.is_compliant(record.name):
                        continue
                    found.setdefault((kind, record.name), []).append(record)
                    if not record.is_test_data:
                        report.non_compliant.append(record.name)

            report.missing = [
                spec.name for spec in specs if spec.kind not in unlisted and (spec.kind, spec.name) not in found
            ]
            report.duplicates = {key: [r.id for r in records] for key, records in found.items() if len(records) > 1}
        finally:
            await client.close()

        log = logger.info if report.healthy else logger.warning
        log("[PRODUCTION] Health check of %s: %s", report.base_url, report.summary())
        return report

    async def repair(self, report: HealthReport, catalog: Optional[Iterable[EntitySpec]] = None) -> List[str]:
        """Create missing catalog entities and delete all but the first of each duplicate.

        Returns a line per change made. Every delete goes through the safety guard.
        """
        specs = [self.prepare(spec) for spec in (catalog if catalog is not None else default_catalog(self.settings))]
        client = self.client_factory()
        changes: List[str] = []
        try:
            for (kind, name), ids in report.duplicates.items():
                for entity_id in ids[1:]:
                    self.guard.validate(SafetyOperation(name, kind, "delete"))
                    await client.delete(kind, entity_id)
                    changes.append(f"removed duplicate {kind} '{name}' ({entity_id})")

            created: List[Tuple[str, str, str]] = []
            for spec in specs:
                if spec.name not in report.missing:
                    continue
                await self.executor.execute(
                    lambda spec=spec: self._ensure_one(client, spec, created),
                    self._policy(),
                    description=f"repair {spec.kind} '{spec.name}'",
                )
            changes.extend(f"created {kind} '{name}'" for kind, _, name in created)
        finally:
            await client.close()

        logger.info("[PRODUCTION] Repaired %d entities at %s", len(changes), client.base_url)
        return changes

    async def _ensure_one(
        self,
        client: FieldServiceClient,
        spec: EntitySpec,
        created: List[Tuple[str, str, str]],
    ) -> Optional[Dict[str, Any]]:
        existing = await client.find_by_name(spec.kind, spec.name)
        if existing is not None:
            logger.debug("[PRODUCTION] %s '%s' already exists (id=%s)", spec.kind, spec.name, existing.get("id"))
            return existing

        self.guard.validate(SafetyOperation(spec.name, spec.kind, "create"))
        try:
            item = await client.create(spec.kind, spec.payload())
        except DuplicateEntityError:
            logger.info("[PRODUCTION] %s '%s' was created concurrently, reusing it", spec.kind, spec.name)
            return await client.find_by_name(spec.kind, spec.name)

        created.append((spec.kind, str(item.get("id")), spec.name))
        logger.info("[PRODUCTION] Created %s '%s' (id=%s)", spec.kind, spec.name, item.get("id"))
        return item

    async def _confirm(
        self,
        client: FieldServiceClient,
        specs: List[EntitySpec],
    ) -> Tuple[Dict[str, List[EntityRecord]], List[str]]:
        records: Dict[str, List[EntityRecord]] = {category: [] for category in DEFAULT_CATEGORIES}
        missing: List[str] = []

        for spec in specs:

            async def lookup(spec: EntitySpec = spec) -> Dict[str, Any]:
                item = await client.find_by_name(spec.kind, spec.name)
                if item is None:
                    raise _NotYetVisible(f"{spec.kind} '{spec.name}' not found")
                return item

            try:
                item = await self.executor.execute(lookup, self._policy(), description=f"confirm {spec.kind} '{spec.name}'")
            except _NotYetVisible:
                missing.append(spec.name)
                continue
            records.setdefault(spec.category, []).append(_to_record(item, self.validator))
        return records, missing

    async def _remove_created(self, client: FieldServiceClient, created: List[Tuple[str, str, str]]) -> None:
        failures: List[BaseException] = []
        for kind, entity_id, name in reversed(created):
            self.guard.validate(SafetyOperation(name, kind, "delete"))
            try:
                await client.delete(kind, entity_id)
            except LiveSystemError as exc:
                if exc.status_code == 404:
                    continue
                failures.append(exc)
            else:
                logger.info("[PRODUCTION] Removed %s '%s'", kind, name)
        created.clear()
        if failures:
            raise failures[0]

    async def _abandon(self, client: FieldServiceClient, created: List[Tuple[str, str, str]]) -> None:
        try:
            if self.settings.removes_data and created:
                await self._remove_created(client, created)
        except Exception as exc:
            logger.warning("[PRODUCTION] Could not remove partially ensured entities: %s", exc)
        finally:
            await client.close()


def _to_record(item: Dict[str, Any], validator: NamingConventionValidator) -> EntityRecord:
    attributes = {key: value for key, value in item.items() if key not in ("id", "name", "is_test_data")}
    name = str(item.get("name", ""))
    flag = item.get("is_test_data")
    # APIs that drop unknown fields never echo the flag; the marker in the name decides then
    is_test_data = bool(flag) if flag is not None else validator.is_compliant(name)
    return EntityRecord(
        id=str(item.get("id", "")),
        name=name,
        is_test_data=is_test_data,
        attributes=attributes,
    )
