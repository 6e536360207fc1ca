"""Error taxonomy shared by the stores and the sale transaction manager."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Tuple


class GestiArtError(Exception):
    """Base class for every domain error raised by the package."""


class ValidationError(GestiArtError):
    """Raised for malformed input or references to unknown products."""


class NotFound(GestiArtError):
    """Raised when a sale or product cannot be located."""


class ConflictError(NotFound):
    """Raised when a record was removed or replaced while a call was running."""


class PersistenceError(GestiArtError):
    """Raised when the underlying storage fails to read or write."""


@dataclass(frozen=True)
class StockShortfall:
    """One product that cannot cover the requested quantity."""

    product_id: str
    requested: int
    available: int

    @property
    def shortfall(self) -> int:
        return self.requested - self.available


class InsufficientStock(GestiArtError):
    """Raised when one or more products lack the stock a sale needs.

    ``shortfalls`` lists every offending product so the caller can show all of
    them at once instead of failing on the first line.
    """

    def __init__(self, shortfalls: Iterable[StockShortfall]):
        self.shortfalls: Tuple[StockShortfall, ...] = tuple(shortfalls)
        details = ", ".join(
            f"{item.product_id} (requested {item.requested}, available {item.available}, short by {item.shortfall})"
            for item in self.shortfalls
        )
        super().__init__(f"Insufficient stock: {details}")

    @property
    def product_ids(self) -> Tuple[str, ...]:
        return tuple(item.product_id for item in self.shortfalls)


__all__ = [
    "GestiArtError",
    "ValidationError",
    "NotFound",
    "ConflictError",
    "PersistenceError",
    "StockShortfall",
    "InsufficientStock",
]
