"""Confirmation poller: waits for the server to report PAID_READY after checkout.

Runs on the confirmation page. Each tick reads the persisted status; network failures are skipped
quietly until the ceiling, hard failures stop at once. The poller's own outcome (TIMEOUT or ERROR) is a
local state moved through the same transition table as the server-side intent.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from provisioning.config import get_settings
from provisioning.errors import (
    IntentNotFoundError,
    NetworkError,
    PollTimeoutError,
    ProviderError,
    SignupError,
    ValidationError,
    normalize_error,
)
from provisioning.services.state_machine import IntentStatus, RECOVERABLE, can_transition, coerce_status, transition

logger = logging.getLogger(__name__)

READY = frozenset({IntentStatus.PAID_READY, IntentStatus.FINALIZED})
HARD_ERRORS = (IntentNotFoundError, ValidationError)


@dataclass
class LocalPollState:
    intent_id: str
    status: IntentStatus = IntentStatus.CREATED
    attempts: int = 0
    network_failures: int = 0
    last_error: SignupError | None = None
    confirmed: bool = False


@dataclass
class PollResult:
    intent_id: str
    status: IntentStatus
    attempts: int
    error: SignupError | None = None

    @property
    def ready(self) -> bool:
        return self.status in READY


class ConfirmationPoller:
    def __init__(
        self,
        api,
        *,
        interval: float | None = None,
        max_attempts: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api = api
        settings = get_settings()
        self.interval = settings.poll_interval_seconds if interval is None else interval
        self.max_attempts = settings.poll_max_attempts if max_attempts is None else max_attempts
        self._sleep = sleep
        self._state: LocalPollState | None = None
        self._external_session_id: str | None = None

    @property
    def state(self) -> LocalPollState | None:
        return self._state

    def _observe(self, status: IntentStatus) -> None:
        state = self._state
        if can_transition(state.status, status):
            transition(state, status, trigger="poll")
        else:
            # Server moved on without us (another tab finalized, or retention ran)
            logger.info("[Poller] intent %s jumped %s -> %s", state.intent_id, state.status.value, status.value)
            state.status = status

    def _finish(self, dst: IntentStatus, error: SignupError | None) -> PollResult:
        state = self._state
        if state.status != dst:
            transition(state, dst, trigger="poll finished")
        state.last_error = error
        return PollResult(state.intent_id, state.status, state.attempts, error)

    def _confirm(self, intent_id: str) -> IntentStatus | None:
        """mark-ready with the session id from the return URL. A failure counts as a failed tick."""
        state = self._state
        try:
            out = self.api.mark_intent_ready(intent_id, self._external_session_id)
        except NetworkError as e:
            state.network_failures += 1
            state.last_error = e
            return None
        except HARD_ERRORS:
            raise
        except SignupError as e:
            state.last_error = e
            logger.info("[Poller] mark-ready for %s failed: %s", intent_id, e.message)
            return None
        status = coerce_status(out["status"])
        if status in READY:
            state.confirmed = True
        return status

    def poll(self, intent_id: str, external_session_id: str | None = None) -> PollResult:
        self._state = LocalPollState(intent_id=intent_id)
        self._external_session_id = (external_session_id or "").strip() or None
        return self._run()

    def retry(self) -> PollResult:
        """User-triggered retry: fresh local counter and state, same intent; server state untouched."""
        if self._state is None:
            raise ValidationError("Nothing to retry: no confirmation has been polled yet.")
        self._state = LocalPollState(intent_id=self._state.intent_id)
        return self._run()

    def _run(self) -> PollResult:
        state = self._state
        intent_id = state.intent_id
        while state.attempts < self.max_attempts:
            if state.attempts:
                self._sleep(self.interval)
            state.attempts += 1
            try:
                out = self.api.get_intent_status(intent_id)
            except NetworkError as e:
                state.network_failures += 1
                state.last_error = e
                logger.debug("[Poller] tick %s for %s: network error", state.attempts, intent_id)
                continue
            except HARD_ERRORS as e:
                return self._finish(IntentStatus.ERROR, e)
            except SignupError as e:
                state.last_error = e
                continue
            except Exception as e:
                state.last_error = normalize_error(e, intent_id)
                continue

            status = coerce_status(out["status"])
            if status in READY:
                self._observe(status)
                return PollResult(intent_id, state.status, state.attempts)

            wants_confirm = self._external_session_id and not state.confirmed
            if wants_confirm and (status == IntentStatus.CHECKOUT_CREATED or status in RECOVERABLE):
                try:
                    confirmed = self._confirm(intent_id)
                except HARD_ERRORS as e:
                    return self._finish(IntentStatus.ERROR, e)
                if confirmed is not None:
                    status = confirmed
                if status in READY:
                    self._observe(status)
                    return PollResult(intent_id, state.status, state.attempts)

            if status in RECOVERABLE:
                self._observe(status)
                if status == IntentStatus.ERROR:
                    error = ProviderError("Payment was not completed. Start checkout again.", intent_id=intent_id)
                else:
                    error = PollTimeoutError("This signup expired. Start checkout again.", intent_id=intent_id)
                return self._finish(status, error)

            self._observe(status)

        if state.network_failures >= state.attempts:
            error = state.last_error or NetworkError("Could not reach the server.", intent_id=intent_id)
            logger.warning("[Poller] intent %s: every tick failed on the network", intent_id)
            return self._finish(IntentStatus.ERROR, error.with_intent(intent_id))
        logger.info("[Poller] intent %s not ready after %s attempts", intent_id, state.attempts)
        return self._finish(
            IntentStatus.TIMEOUT,
            PollTimeoutError("Payment confirmation is taking longer than expected. You can retry.", intent_id=intent_id),
        )
