"""Signup intent state machine.

One table of allowed transitions and one function that applies them. The server-side intent record and
the client's local poll state both move through ``transition``; nothing else assigns ``status``.

    CREATED ---------> CHECKOUT_CREATED ---------> PAID_READY ---------> FINALIZED
       |                      |                        ^  |
       +----------------------|------------------------+  |
       +------------------+---+---------------------------+--> TIMEOUT | ERROR
                                                                  |
                          CHECKOUT_CREATED | PAID_READY <---------+
"""
from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any

from provisioning.errors import InvalidTransitionError


class IntentStatus(str, enum.Enum):
    CREATED = "CREATED"
    CHECKOUT_CREATED = "CHECKOUT_CREATED"
    PAID_READY = "PAID_READY"
    FINALIZED = "FINALIZED"
    TIMEOUT = "TIMEOUT"
    ERROR = "ERROR"


NON_TERMINAL = frozenset({IntentStatus.CREATED, IntentStatus.CHECKOUT_CREATED, IntentStatus.PAID_READY})
RECOVERABLE = frozenset({IntentStatus.TIMEOUT, IntentStatus.ERROR})

TRANSITIONS: dict[IntentStatus, frozenset[IntentStatus]] = {
    IntentStatus.CREATED: frozenset({
        IntentStatus.CHECKOUT_CREATED,
        IntentStatus.PAID_READY,
        IntentStatus.TIMEOUT,
        IntentStatus.ERROR,
    }),
    IntentStatus.CHECKOUT_CREATED: frozenset({
        IntentStatus.PAID_READY,
        IntentStatus.TIMEOUT,
        IntentStatus.ERROR,
    }),
    IntentStatus.PAID_READY: frozenset({
        IntentStatus.FINALIZED,
        IntentStatus.TIMEOUT,
        IntentStatus.ERROR,
    }),
    IntentStatus.FINALIZED: frozenset(),
    # Recovery never goes back to CREATED: a new checkout or a re-read confirmation only.
    IntentStatus.TIMEOUT: frozenset({IntentStatus.CHECKOUT_CREATED, IntentStatus.PAID_READY, IntentStatus.ERROR}),
    IntentStatus.ERROR: frozenset({IntentStatus.CHECKOUT_CREATED, IntentStatus.PAID_READY, IntentStatus.TIMEOUT}),
}


def coerce_status(value: Any) -> IntentStatus:
    if isinstance(value, IntentStatus):
        return value
    try:
        return IntentStatus(str(value).upper())
    except ValueError:
        raise InvalidTransitionError(f"Unknown intent status: {value!r}")


def can_transition(src: IntentStatus | str, dst: IntentStatus | str) -> bool:
    src_s, dst_s = coerce_status(src), coerce_status(dst)
    return src_s == dst_s or dst_s in TRANSITIONS[src_s]


def is_terminal(status: IntentStatus | str) -> bool:
    return coerce_status(status) == IntentStatus.FINALIZED


def transition(target: Any, dst: IntentStatus | str, *, trigger: str = "") -> tuple[IntentStatus, IntentStatus]:
    """Move ``target.status`` to ``dst``. Returns (old, new); same-state calls are no-ops.

    ``target`` is anything with a ``status`` attribute (ORM intent or client poll state). When it also has
    ``updated_at`` that is stamped on every real change.
    """
    src = coerce_status(target.status)
    new = coerce_status(dst)
    if src == new:
        return src, new
    if new not in TRANSITIONS[src]:
        intent_id = getattr(target, "id", None) or getattr(target, "intent_id", None)
        suffix = f" ({trigger})" if trigger else ""
        raise InvalidTransitionError(
            f"Cannot move signup from {src.value} to {new.value}{suffix}.",
            intent_id=str(intent_id) if intent_id else None,
        )
    target.status = new
    if hasattr(target, "updated_at"):
        target.updated_at = datetime.now(timezone.utc)
    return src, new
