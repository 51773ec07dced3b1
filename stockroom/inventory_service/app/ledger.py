"""Quantity ledger: total on-hand stock versus tagged sub-quantities per SKU.

The ledger is an explicit, in-memory view built from persisted inventory
records for the duration of one operation. Read methods are pure; the only
mutators are :meth:`QuantityLedger.apply_stock_delta`,
:meth:`QuantityLedger.claim` and :meth:`QuantityLedger.release`, each of which
keeps ``0 <= tagged_total <= total_quantity`` intact or raises.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from .errors import (
    InsufficientAvailabilityError,
    InsufficientStockError,
    InvalidQuantityError,
    NotFoundError,
)
from .metrics import LEDGER_CLAMPED_TOTAL

_LOGGER = logging.getLogger(__name__)


class TagKind(str, Enum):
    RESERVED = "reserved"
    BROKEN = "broken"
    IMPERFECT = "imperfect"
    LOANED = "loaned"
    STOCK = "stock"

    @property
    def claims_stock(self) -> bool:
        """Stock tags label inventory without removing it from availability."""

        return self is not TagKind.STOCK


CLAIMING_KINDS: tuple[TagKind, ...] = tuple(kind for kind in TagKind if kind.claims_stock)


def _require_count(value: Any, *, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"{name} must be an integer"
        raise InvalidQuantityError(msg, field=name, value=value)
    if value < 0:
        msg = f"{name} must be non-negative"
        raise InvalidQuantityError(msg, field=name, value=value)
    return value


def _empty_summary() -> dict[TagKind, int]:
    return {kind: 0 for kind in CLAIMING_KINDS}


def clamp_available(sku: str, total: int, tagged: int) -> int:
    """Return ``total - tagged``; a negative result is logged, counted and reported as 0."""

    raw = total - tagged
    if raw < 0:
        LEDGER_CLAMPED_TOTAL.inc()
        _LOGGER.warning(
            "Inventory consistency breach for SKU %s: total=%s tagged=%s; reporting 0 available",
            sku,
            total,
            tagged,
        )
        return 0
    return raw


@dataclass(frozen=True)
class LedgerSnapshot:
    """Immutable inventory state for one SKU."""

    sku: str
    total_quantity: int
    tag_summary: Mapping[TagKind, int] = field(default_factory=_empty_summary)

    @property
    def tagged_total(self) -> int:
        return sum(count for kind, count in self.tag_summary.items() if kind.claims_stock)

    @property
    def available_quantity(self) -> int:
        return clamp_available(self.sku, self.total_quantity, self.tagged_total)

    @classmethod
    def from_mapping(cls, sku: str, payload: Mapping[str, Any]) -> LedgerSnapshot:
        """Adapt a ``{total_quantity, tag_summary}`` payload from storage."""

        total = _require_count(payload.get("total_quantity", 0), name="total_quantity")
        summary = _empty_summary()
        for raw_kind, count in (payload.get("tag_summary") or {}).items():
            kind = TagKind(raw_kind)
            if not kind.claims_stock:
                continue
            summary[kind] += _require_count(count, name=f"tag_summary.{kind.value}")
        return cls(sku=sku, total_quantity=total, tag_summary=MappingProxyType(summary))


class QuantityLedger:
    """Per-SKU total and tagged quantities, addressed by SKU code."""

    def __init__(self, snapshots: Iterable[LedgerSnapshot] = ()) -> None:
        self._totals: dict[str, int] = {}
        self._tagged: dict[str, dict[TagKind, int]] = {}
        for snapshot in snapshots:
            self.load(snapshot)

    def load(self, snapshot: LedgerSnapshot) -> None:
        """Replace the ledger state for ``snapshot.sku``."""

        self._totals[snapshot.sku] = snapshot.total_quantity
        summary = _empty_summary()
        for kind, count in snapshot.tag_summary.items():
            if kind.claims_stock:
                summary[kind] += count
        self._tagged[snapshot.sku] = summary

    def _require(self, sku: str) -> None:
        if sku not in self._totals:
            msg = f"No inventory record for SKU {sku}"
            raise NotFoundError(msg, sku=sku)

    def total(self, sku: str) -> int:
        self._require(sku)
        return self._totals[sku]

    def tagged_total(self, sku: str) -> int:
        self._require(sku)
        return sum(self._tagged[sku].values())

    def available(self, sku: str) -> int:
        """Return ``total - tagged_total`` for ``sku``, never below zero."""

        return clamp_available(sku, self.total(sku), self.tagged_total(sku))

    def tagged_breakdown(self, sku: str) -> dict[TagKind, int]:
        self._require(sku)
        return dict(self._tagged[sku])

    def snapshot(self, sku: str) -> LedgerSnapshot:
        return LedgerSnapshot(
            sku=sku,
            total_quantity=self.total(sku),
            tag_summary=MappingProxyType(self.tagged_breakdown(sku)),
        )

    def apply_stock_delta(self, sku: str, delta: int) -> int:
        """Adjust total stock by ``delta`` and return the new total.

        The first positive delta for an unknown SKU opens its record.
        """

        if isinstance(delta, bool) or not isinstance(delta, int):
            msg = "stock delta must be an integer"
            raise InvalidQuantityError(msg, field="delta", value=delta)
        current = self._totals.get(sku, 0)
        tagged = sum(self._tagged.get(sku, {}).values())
        new_total = current + delta
        if new_total < tagged or new_total < 0:
            raise InsufficientStockError(sku, requested_total=new_total, tagged_total=tagged)
        self._totals[sku] = new_total
        self._tagged.setdefault(sku, _empty_summary())
        return new_total

    def claim(self, sku: str, kind: TagKind, quantity: int) -> None:
        """Move ``quantity`` units of ``sku`` from available into ``kind``."""

        _require_count(quantity, name="quantity")
        if not kind.claims_stock:
            return
        available = self.available(sku)
        if quantity > available:
            raise InsufficientAvailabilityError(sku, requested=quantity, available=available)
        self._tagged[sku][kind] += quantity

    def release(self, sku: str, kind: TagKind, quantity: int) -> None:
        """Return ``quantity`` tagged units of ``kind`` to available."""

        _require_count(quantity, name="quantity")
        if not kind.claims_stock:
            return
        self._require(sku)
        tagged = self._tagged[sku][kind]
        if quantity > tagged:
            msg = f"Cannot release {quantity} {kind.value} units of SKU {sku}; only {tagged} tagged"
            raise InvalidQuantityError(msg, sku=sku, kind=kind.value, requested=quantity, tagged=tagged)
        self._tagged[sku][kind] = tagged - quantity

    def consume(self, sku: str, kind: TagKind, quantity: int) -> None:
        """Release ``quantity`` tagged units and remove them from stock."""

        self.release(sku, kind, quantity)
        if kind.claims_stock:
            self.apply_stock_delta(sku, -quantity)
