"""Exception taxonomy shared by the ledger, services and controllers."""

from __future__ import annotations

from datetime import date
from typing import Optional, Sequence


class InventoryError(Exception):
    """Base exception for inventory engine failures."""


class InvalidRequestError(InventoryError):
    """Raised when request inputs are malformed; callers must not retry."""


class InvalidRangeError(InvalidRequestError):
    """Raised when a date range starts after it ends."""


class RouteNotFoundError(InventoryError):
    """Raised when a route id does not exist in the route catalog."""


class ReservationNotFoundError(InventoryError):
    """Raised when a reservation id does not exist in the ledger."""


class PricingConfigNotFoundError(InventoryError):
    """Raised when no pricing configuration matches the lookup."""


class InvalidPricingConfigError(InventoryError):
    """Raised when a pricing configuration fails validation."""


class InvalidTransitionError(InventoryError):
    """Raised when a reservation status change is not a lifecycle edge."""


class LedgerUnavailableError(InventoryError):
    """Raised when the persistence layer is unreachable or erroring."""


class LedgerBusyError(LedgerUnavailableError):
    """Raised when the ledger write lock could not be acquired in time."""


class ConcurrentModificationError(InventoryError):
    """Raised when admission retries are exhausted under write contention."""


class CapacityExceededError(InventoryError):
    """Raised when committing a reservation would oversell a capacity cell."""

    def __init__(
        self,
        message: str,
        *,
        max_available_sov: float,
        unavailable_dates: Optional[Sequence[date]] = None,
    ) -> None:
        super().__init__(message)
        self.max_available_sov = max_available_sov
        self.unavailable_dates = list(unavailable_dates or [])
