"""
Typed failures returned (inside ``Err``) by the inventory engine, the record
services and the query layer.

Every error carries a stable ``code`` so callers can branch on it without
reading message text, plus a ``details()`` mapping for API payloads.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Dict, List, Optional
from uuid import UUID


@dataclass(frozen=True)
class LedgerError:
    code: ClassVar[str] = "INTERNAL_ERROR"

    @property
    def message(self) -> str:
        return self.code.replace("_", " ").capitalize()

    def details(self) -> Dict[str, Any]:
        return {
            key: str(value) if isinstance(value, UUID) else value
            for key, value in asdict(self).items()
        }


@dataclass(frozen=True)
class InvalidInput(LedgerError):
    code: ClassVar[str] = "VALIDATION_ERROR"

    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def message(self) -> str:
        return "Invalid input"


@dataclass(frozen=True)
class NotFound(LedgerError):
    code: ClassVar[str] = "NOT_FOUND"

    entity_type: str
    id: UUID

    @property
    def message(self) -> str:
        return f"{self.entity_type} {self.id} not found"


@dataclass(frozen=True)
class InsufficientInventory(LedgerError):
    code: ClassVar[str] = "INSUFFICIENT_INVENTORY"

    available: int
    requested: int

    @property
    def message(self) -> str:
        return (
            f"Insufficient inventory: available {self.available} units, "
            f"requested {self.requested} units"
        )


@dataclass(frozen=True)
class InvalidStateTransition(LedgerError):
    code: ClassVar[str] = "INVALID_STATE_TRANSITION"

    entity_type: str
    entity_id: UUID
    current_state: str
    attempted_state: str

    @property
    def message(self) -> str:
        return (
            f"{self.entity_type} {self.entity_id} cannot move from "
            f"{self.current_state} to {self.attempted_state}"
        )


@dataclass(frozen=True)
class DuplicateUnitSerial(LedgerError):
    code: ClassVar[str] = "DUPLICATE_UNIT_SERIAL"

    unit_serial_number: str
    attempts: int = 1

    @property
    def message(self) -> str:
        return f"Unit serial {self.unit_serial_number} is already assigned"


@dataclass(frozen=True)
class DonorNotEligible(LedgerError):
    code: ClassVar[str] = "DONOR_NOT_ELIGIBLE"

    donor_id: UUID
    days_remaining: int
    reason: Optional[str] = None

    @property
    def message(self) -> str:
        if self.reason:
            return self.reason
        return f"Not eligible to donate yet. Please wait {self.days_remaining} more days."


@dataclass(frozen=True)
class ConcurrentModification(LedgerError):
    code: ClassVar[str] = "CONCURRENT_MODIFICATION"

    entity_type: str
    entity_id: UUID
    attempts: int

    @property
    def message(self) -> str:
        return (
            f"{self.entity_type} {self.entity_id} was modified concurrently; "
            f"gave up after {self.attempts} attempts"
        )


@dataclass(frozen=True)
class StorageUnavailable(LedgerError):
    code: ClassVar[str] = "STORAGE_UNAVAILABLE"

    reason: str

    @property
    def message(self) -> str:
        return "Storage is unavailable"


@dataclass(frozen=True)
class Timeout(LedgerError):
    code: ClassVar[str] = "TIMEOUT"

    operation: str
    seconds: float

    @property
    def message(self) -> str:
        return f"{self.operation} did not finish within {self.seconds} seconds"
