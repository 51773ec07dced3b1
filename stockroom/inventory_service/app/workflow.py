"""Step-gated assembly of a create-tag request.

The workflow walks ``details -> select_items -> review`` one step at a time.
Moving forward re-checks the gate for the step being left; moving back keeps
everything entered so far. Submission hands the finished request to a
persistence collaborator and stays in review if it is rejected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Protocol

from .allocation import SelectionMethod
from .errors import InsufficientAvailabilityError, InventoryError, InvalidQuantityError, WorkflowStateError
from .ledger import TagKind
from .tag_items import AvailabilityLookup, NewLineItem

_LOGGER = logging.getLogger(__name__)


class WorkflowStep(str, Enum):
    DETAILS = "details"
    SELECT_ITEMS = "select_items"
    REVIEW = "review"


_ORDER: tuple[WorkflowStep, ...] = (WorkflowStep.DETAILS, WorkflowStep.SELECT_ITEMS, WorkflowStep.REVIEW)


@dataclass(frozen=True)
class CreateTagRequest:
    attribution: str
    kind: TagKind
    items: tuple[NewLineItem, ...]
    due_date: date | None = None
    notes: str = ""
    project_name: str = ""


class TagCreator(Protocol):
    async def create_tag(self, request: CreateTagRequest) -> Any: ...


@dataclass
class TagDetails:
    attribution: str = ""
    kind: TagKind = TagKind.RESERVED
    due_date: date | None = None
    notes: str = ""
    project_name: str = ""


@dataclass
class TagWorkflow:
    creator: TagCreator
    details: TagDetails = field(default_factory=TagDetails)
    step: WorkflowStep = WorkflowStep.DETAILS
    selections: dict[str, NewLineItem] = field(default_factory=dict)
    last_error: InventoryError | None = None
    submitted: bool = False
    result: Any = None

    def _require_step(self, expected: WorkflowStep, action: str) -> None:
        if self.submitted:
            msg = "Tag has already been submitted"
            raise WorkflowStateError(msg, step=self.step.value)
        if self.step is not expected:
            msg = f"Cannot {action} during the {self.step.value} step"
            raise WorkflowStateError(msg, step=self.step.value, expected=expected.value)

    def update_details(self, **changes: Any) -> TagDetails:
        self._require_step(WorkflowStep.DETAILS, "edit details")
        if "kind" in changes:
            changes["kind"] = TagKind(changes["kind"])
        self.details = replace(self.details, **changes)
        return self.details

    def select_item(
        self,
        sku: str,
        quantity: int,
        *,
        selection_method: SelectionMethod = SelectionMethod.FIFO,
        instance_ids: tuple[int, ...] = (),
    ) -> None:
        self._require_step(WorkflowStep.SELECT_ITEMS, "select items")
        self.selections[sku] = NewLineItem(
            sku=sku,
            quantity=quantity,
            selection_method=SelectionMethod(selection_method),
            instance_ids=tuple(instance_ids),
        )

    def deselect_item(self, sku: str) -> None:
        self._require_step(WorkflowStep.SELECT_ITEMS, "select items")
        self.selections.pop(sku, None)

    def _check_details(self) -> None:
        if not self.details.attribution.strip():
            msg = "Attribution is required"
            raise WorkflowStateError(msg, step=WorkflowStep.DETAILS.value, field="attribution")

    def _check_selections(self, available: AvailabilityLookup) -> None:
        if not self.selections:
            msg = "Select at least one item"
            raise WorkflowStateError(msg, step=WorkflowStep.SELECT_ITEMS.value)
        for item in self.selections.values():
            quantity = item.quantity
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                msg = f"Quantity for SKU {item.sku} must be a positive integer"
                raise InvalidQuantityError(msg, sku=item.sku, value=quantity)
            free = available(item.sku)
            if quantity > free:
                raise InsufficientAvailabilityError(item.sku, requested=quantity, available=free)

    def next(self, available: AvailabilityLookup | None = None) -> WorkflowStep:
        """Advance one step after checking the current step's gate.

        ``available`` must return fresh availability when leaving item
        selection; stock may have moved since the selection panel was filled.
        """

        if self.submitted:
            msg = "Tag has already been submitted"
            raise WorkflowStateError(msg, step=self.step.value)
        if self.step is WorkflowStep.DETAILS:
            self._check_details()
        elif self.step is WorkflowStep.SELECT_ITEMS:
            if available is None:
                msg = "Current availability is required to review the selection"
                raise WorkflowStateError(msg, step=self.step.value)
            self._check_selections(available)
        else:
            msg = "Review is the last step; submit instead"
            raise WorkflowStateError(msg, step=self.step.value)
        self.step = _ORDER[_ORDER.index(self.step) + 1]
        self.last_error = None
        return self.step

    def back(self) -> WorkflowStep:
        if self.submitted:
            msg = "Tag has already been submitted"
            raise WorkflowStateError(msg, step=self.step.value)
        index = _ORDER.index(self.step)
        if index == 0:
            msg = "Already at the first step"
            raise WorkflowStateError(msg, step=self.step.value)
        self.step = _ORDER[index - 1]
        return self.step

    def build_request(self) -> CreateTagRequest:
        return CreateTagRequest(
            attribution=self.details.attribution.strip(),
            kind=self.details.kind,
            items=tuple(self.selections.values()),
            due_date=self.details.due_date,
            notes=self.details.notes.strip(),
            project_name=self.details.project_name.strip(),
        )

    async def submit(self) -> Any:
        """Send the request to the collaborator; stay in review on rejection."""

        self._require_step(WorkflowStep.REVIEW, "submit")
        request = self.build_request()
        try:
            result = await self.creator.create_tag(request)
        except InventoryError as exc:
            _LOGGER.info("Tag submission for %s rejected: %s", request.attribution, exc.message)
            self.last_error = exc
            raise
        self.last_error = None
        self.submitted = True
        self.result = result
        return result
