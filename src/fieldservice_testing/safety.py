"""Production safety guard.

Mutations in production mode may only touch entities that carry the test
data marker. Page objects and the production provider call the guard before
every create, update or delete.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Deque, List, Optional

from fieldservice_testing.errors import SafetyViolationError
from fieldservice_testing.models import TestMode
from fieldservice_testing.naming import NamingConventionValidator

logger = logging.getLogger(__name__)

# Most recent decisions kept per guard; the guard lives for the whole session
DEFAULT_LOG_SIZE = 1000


@dataclass(frozen=True)
class SafetyOperation:
    target_name: str
    target_kind: str
    operation: str = "mutate"


@dataclass(frozen=True)
class OperationLogEntry:
    timestamp: datetime
    operation: str
    target_kind: str
    target_name: str
    allowed: bool


class ProductionSafetyGuard:
    def __init__(
        self,
        validator: Optional[NamingConventionValidator] = None,
        log_operations: bool = True,
        max_log_entries: int = DEFAULT_LOG_SIZE,
    ) -> None:
        self.validator = validator or NamingConventionValidator()
        self.log_operations = log_operations
        self.operation_log: Deque[OperationLogEntry] = deque(maxlen=max_log_entries)

    @property
    def marker(self) -> str:
        return self.validator.marker

    def validate(self, operation: SafetyOperation) -> None:
        """Raise ``SafetyViolationError`` unless the target is test data."""
        allowed = self.validator.is_compliant(operation.target_name)
        if self.log_operations:
            self.operation_log.append(
                OperationLogEntry(
                    timestamp=datetime.now(timezone.utc),
                    operation=operation.operation,
                    target_kind=operation.target_kind,
                    target_name=operation.target_name,
                    allowed=allowed,
                )
            )
        if not allowed:
            logger.error(
                "[SAFETY] Blocked %s on %s '%s' (missing marker '%s')",
                operation.operation,
                operation.target_kind,
                operation.target_name,
                self.marker,
            )
            raise SafetyViolationError(
                operation=operation.operation,
                target_kind=operation.target_kind,
                target_name=operation.target_name,
                marker=self.marker,
            )
        logger.debug("[SAFETY] Allowed %s on %s '%s'", operation.operation, operation.target_kind, operation.target_name)

    def check(self, mode: TestMode, operation: SafetyOperation) -> None:
        # Isolated scratch databases are disposable
        if mode is TestMode.ISOLATED:
            return
        self.validate(operation)

    def blocked_operations(self) -> List[OperationLogEntry]:
        return [entry for entry in self.operation_log if not entry.allowed]
