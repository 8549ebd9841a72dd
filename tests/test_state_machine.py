"""Transition table and the provider selector."""
import pytest

from provisioning.errors import InvalidTransitionError
from provisioning.services.provider_selector import PaymentProvider, select_provider
from provisioning.services.state_machine import (
    IntentStatus,
    TRANSITIONS,
    can_transition,
    coerce_status,
    is_terminal,
    transition,
)


class Target:
    def __init__(self, status, intent_id="intent-1"):
        self.status = status
        self.intent_id = intent_id


@pytest.mark.parametrize("country,expected", [
    ("AR", PaymentProvider.mercadopago),
    ("ar", PaymentProvider.mercadopago),
    (" Ar ", PaymentProvider.mercadopago),
    ("US", PaymentProvider.stripe),
    ("BR", PaymentProvider.stripe),
    ("", PaymentProvider.stripe),
    (None, PaymentProvider.stripe),
])
def test_select_provider(country, expected):
    assert select_provider(country) == expected


def test_happy_path_transitions():
    t = Target(IntentStatus.CREATED)
    assert transition(t, IntentStatus.CHECKOUT_CREATED) == (IntentStatus.CREATED, IntentStatus.CHECKOUT_CREATED)
    transition(t, IntentStatus.PAID_READY)
    transition(t, IntentStatus.FINALIZED)
    assert t.status == IntentStatus.FINALIZED
    assert is_terminal(t.status)


def test_inline_capture_skips_checkout_created():
    assert can_transition(IntentStatus.CREATED, IntentStatus.PAID_READY)


def test_same_state_is_noop():
    t = Target(IntentStatus.CHECKOUT_CREATED)
    assert transition(t, "CHECKOUT_CREATED") == (IntentStatus.CHECKOUT_CREATED, IntentStatus.CHECKOUT_CREATED)
    assert can_transition(IntentStatus.FINALIZED, IntentStatus.FINALIZED)


def test_finalized_is_terminal():
    assert TRANSITIONS[IntentStatus.FINALIZED] == frozenset()
    for dst in IntentStatus:
        if dst != IntentStatus.FINALIZED:
            assert not can_transition(IntentStatus.FINALIZED, dst)


@pytest.mark.parametrize("src", [IntentStatus.TIMEOUT, IntentStatus.ERROR])
def test_recovery_never_returns_to_created(src):
    assert not can_transition(src, IntentStatus.CREATED)
    assert can_transition(src, IntentStatus.CHECKOUT_CREATED)
    assert can_transition(src, IntentStatus.PAID_READY)
    assert not can_transition(src, IntentStatus.FINALIZED)


def test_invalid_transition_carries_intent_id():
    t = Target(IntentStatus.CREATED, intent_id="abc")
    with pytest.raises(InvalidTransitionError) as exc:
        transition(t, IntentStatus.FINALIZED, trigger="finalize")
    assert exc.value.intent_id == "abc"
    assert exc.value.code == "invalid_transition"
    assert t.status == IntentStatus.CREATED


def test_coerce_status_rejects_unknown():
    assert coerce_status("paid_ready") == IntentStatus.PAID_READY
    with pytest.raises(InvalidTransitionError):
        coerce_status("SHIPPED")
