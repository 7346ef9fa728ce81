"""
Per-item lifecycle shared by characters and panels.

    NOT_STARTED --generate--> GENERATING --ok--> DONE
                                         --err-> FAILED
    DONE --update/tweak--> UPDATING --ok--> DONE
                                    --err-> FAILED (panel) | DONE (character keeps its image)
    FAILED --generate--> GENERATING

GENERATING and UPDATING act as the per-item lock: any operation started
while an item is in one of them is rejected with ItemBusyError.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Awaitable, Callable

from app.core.exceptions import GenerationError, ItemBusyError, ValidationError
from app.core.metrics import record_item_operation
from app.core.request_context import log_context
from app.services.session_state import ComicSession, ItemKind, ItemState

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    GENERATE = "generate"
    UPDATE = "update"
    TWEAK = "tweak"


BUSY_STATES = frozenset({ItemState.GENERATING, ItemState.UPDATING})

_ALLOWED_FROM: dict[tuple[ItemKind, Operation], frozenset[ItemState]] = {
    (ItemKind.PANEL, Operation.GENERATE): frozenset({ItemState.NOT_STARTED, ItemState.FAILED}),
    (ItemKind.PANEL, Operation.UPDATE): frozenset({ItemState.DONE}),
    (ItemKind.PANEL, Operation.TWEAK): frozenset({ItemState.DONE}),
    # Characters can always be re-generated from scratch once idle.
    (ItemKind.CHARACTER, Operation.GENERATE): frozenset(
        {ItemState.NOT_STARTED, ItemState.DONE, ItemState.FAILED}
    ),
    (ItemKind.CHARACTER, Operation.UPDATE): frozenset({ItemState.DONE}),
    (ItemKind.CHARACTER, Operation.TWEAK): frozenset({ItemState.DONE}),
}


def is_busy(state: ItemState) -> bool:
    return state in BUSY_STATES


def start_state(kind: ItemKind, item_id: str, state: ItemState, operation: Operation) -> ItemState:
    """Return the busy state an operation moves the item into, or raise."""
    if is_busy(state):
        raise ItemBusyError(kind.value, item_id)
    if state not in _ALLOWED_FROM[(kind, operation)]:
        raise ValidationError(
            f"cannot {operation.value} {kind.value} {item_id} while it is {state.value}",
            detail=f"{kind.value} is not ready to {operation.value}",
        )
    return ItemState.GENERATING if operation is Operation.GENERATE else ItemState.UPDATING


def failure_state(kind: ItemKind, has_artifact: bool) -> ItemState:
    """Panels always surface FAILED; a character falls back to DONE when it still has an image."""
    if kind is ItemKind.CHARACTER and has_artifact:
        return ItemState.DONE
    return ItemState.FAILED


class ItemStatusTracker:
    """Drives one item through a busy state and applies the outcome as a single patch."""

    def __init__(self, session: ComicSession) -> None:
        self.session = session

    async def run(
        self,
        kind: ItemKind,
        item_id: str,
        operation: Operation,
        work: Callable[[], Awaitable[dict]],
    ) -> bool:
        """Run `work` with the item locked.

        `work` returns the field changes to apply on success. A GenerationError
        leaves every artifact field untouched and only moves the status.

        Returns:
            True when the changes were applied, False when the operation failed
            or the session was reset while it was in flight.
        """
        session = self.session
        item = session.get_item(kind, item_id)
        busy = start_state(kind, item_id, item.status, operation)
        epoch = session.epoch

        session.error = None
        session.patch_item(kind, item_id, status=busy)

        with log_context(session_id=session.id, item_id=item_id):
            logger.info("%s.%s started", kind.value, operation.value)
            try:
                changes = await work()
            except GenerationError as exc:
                if session.epoch != epoch:
                    logger.info("%s.%s failed after reset; dropped", kind.value, operation.value)
                    return False
                current = session.get_item(kind, item_id)
                session.patch_item(
                    kind,
                    item_id,
                    status=failure_state(kind, current.artifact is not None),
                )
                session.error = str(exc)
                record_item_operation(kind.value, operation.value, "failed")
                logger.warning("%s.%s failed error=%s", kind.value, operation.value, exc)
                return False
            except Exception:
                # Unexpected errors propagate, but never leave the item locked.
                if session.epoch == epoch:
                    current = session.get_item(kind, item_id)
                    session.patch_item(
                        kind,
                        item_id,
                        status=failure_state(kind, current.artifact is not None),
                    )
                record_item_operation(kind.value, operation.value, "error")
                raise

            if session.epoch != epoch:
                logger.info("%s.%s finished after reset; dropped", kind.value, operation.value)
                return False

            session.patch_item(kind, item_id, status=ItemState.DONE, **changes)
            record_item_operation(kind.value, operation.value, "succeeded")
            logger.info("%s.%s succeeded", kind.value, operation.value)
            return True
