"""Stock health classification derived from availability and thresholds."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .errors import InvalidQuantityError
from .ledger import LedgerSnapshot

DEFAULT_UNDERSTOCKED = 5
DEFAULT_OVERSTOCKED = 100


class StockStatus(str, Enum):
    OUT = "out"
    UNDERSTOCKED = "understocked"
    ADEQUATE = "adequate"
    OVERSTOCKED = "overstocked"


@dataclass(frozen=True)
class StockThresholds:
    """Per-SKU thresholds; ``0`` disables the matching state."""

    understocked: int = DEFAULT_UNDERSTOCKED
    overstocked: int = DEFAULT_OVERSTOCKED

    def __post_init__(self) -> None:
        for name in ("understocked", "overstocked"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                msg = f"{name} threshold must be a non-negative integer"
                raise InvalidQuantityError(msg, field=name, value=value)

    @classmethod
    def resolve(
        cls,
        understocked: int | None,
        overstocked: int | None,
        *,
        default: StockThresholds | None = None,
    ) -> StockThresholds:
        """Fill unset thresholds from ``default``."""

        base = default or cls()
        return cls(
            understocked=base.understocked if understocked is None else understocked,
            overstocked=base.overstocked if overstocked is None else overstocked,
        )


def classify(available: int, total: int, thresholds: StockThresholds) -> StockStatus:
    """Return the stock status for the given quantities.

    ``out`` always wins. ``overstocked`` looks at the raw total, so a large
    shipment is flagged even while heavily reserved; ``understocked`` looks at
    what can still be fulfilled.
    """

    if available <= 0:
        return StockStatus.OUT
    if thresholds.overstocked > 0 and total >= thresholds.overstocked:
        return StockStatus.OVERSTOCKED
    if thresholds.understocked > 0 and available <= thresholds.understocked:
        return StockStatus.UNDERSTOCKED
    return StockStatus.ADEQUATE


def classify_snapshot(snapshot: LedgerSnapshot, thresholds: StockThresholds) -> StockStatus:
    return classify(snapshot.available_quantity, snapshot.total_quantity, thresholds)
