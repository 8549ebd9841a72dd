"""Signup pipeline as the wizard sees it.

``begin`` runs from the last wizard step and ``resume`` from the confirmation page the processor redirects
back to. Both return a navigation command for the host (NavigateTo, Completed or Failed) instead of
touching any UI, and every failure arrives as a SignupError with message, code and intent id.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Union

from provisioning.client.poller import ConfirmationPoller
from provisioning.client.recovery_cache import RecoveryCache, RecoveryEntry
from provisioning.errors import (
    IntentStateError,
    MissingRecoveryDataError,
    SignupError,
    ValidationError,
    normalize_error,
)
from provisioning.services.auth import check_password_rules
from provisioning.services.checkout import MODE_REDIRECT

logger = logging.getLogger(__name__)


@dataclass
class SignupForm:
    email: str
    password: str
    plan_id: str
    full_name: str | None = None
    company_name: str | None = None
    modules: list[str] = field(default_factory=list)

    def validate(self) -> None:
        email = (self.email or "").strip()
        if not email or "@" not in email:
            raise ValidationError("A valid email address is required.")
        if not (self.plan_id or "").strip():
            raise ValidationError("Choose a plan.")
        check_password_rules(self.password)


@dataclass
class NavigateTo:
    url: str
    intent_id: str


@dataclass
class Completed:
    intent_id: str
    company: dict
    access_token: str | None = None
    already_finalized: bool = False


@dataclass
class Failed:
    error: SignupError

    @property
    def message(self) -> str:
        return self.error.message

    @property
    def code(self) -> str:
        return self.error.code

    @property
    def intent_id(self) -> str | None:
        return self.error.intent_id


Command = Union[NavigateTo, Completed, Failed]


class SignupPipeline:
    def __init__(self, api, cache: RecoveryCache, poller: ConfirmationPoller | None = None):
        self.api = api
        self.cache = cache
        self.poller = poller or ConfirmationPoller(api)
        self._finalizing = False
        self._password: str | None = None
        self._intent_id: str | None = None  # last intent handed to finalize, for retry

    def begin(
        self,
        form: SignupForm,
        *,
        billing_country: str,
        success_url: str | None = None,
        cancel_url: str | None = None,
        payment_method_ref: str | None = None,
    ) -> Command:
        intent_id = None
        try:
            form.validate()
            created = self.api.create_intent(
                email=form.email.strip(),
                full_name=form.full_name,
                company_name=form.company_name,
                plan_id=form.plan_id,
                modules=list(form.modules or []),
                billing_country=billing_country,
            )
            intent_id = created["intent_id"]
            # Must be on disk before the browser leaves for the processor
            self.cache.save(RecoveryEntry(intent_id=intent_id, password=form.password))
            self._password = form.password
            started = self.api.start_checkout(
                intent_id,
                success_url=success_url,
                cancel_url=cancel_url,
                payment_method_ref=payment_method_ref,
            )
        except Exception as e:
            return self._failed(e, intent_id)

        if started["mode"] == MODE_REDIRECT:
            logger.info("[Signup] intent %s redirecting to %s checkout", intent_id, started["provider"])
            return NavigateTo(url=started["checkout_url"], intent_id=intent_id)
        self._intent_id = intent_id
        return self._finalize(intent_id, form.password)

    def resume(self, intent_id: str | None = None, external_session_id: str | None = None) -> Command:
        """Confirmation page entry point. The intent id from the return URL wins over the cache."""
        try:
            entry = self.cache.load()
        except SignupError as e:
            return Failed(e.with_intent(intent_id))

        intent_id = (intent_id or "").strip() or (entry.intent_id if entry else None)
        if not intent_id:
            return Failed(MissingRecoveryDataError("No signup in progress on this device. Start again."))
        password = entry.password if entry and entry.intent_id == intent_id else None
        if not password:
            return Failed(MissingRecoveryDataError(
                "This device has no saved credentials for the signup. Start again or sign in.",
                intent_id=intent_id,
            ))
        self._password = password
        self._intent_id = intent_id

        result = self.poller.poll(intent_id, external_session_id)
        if not result.ready:
            return Failed(result.error or IntentStateError("Signup is not ready.", intent_id=intent_id))
        return self._finalize(intent_id, password)

    def retry(self) -> Command:
        """After TIMEOUT, ERROR or a failed finalize: reset the poll counter and re-read the persisted status.

        Payment is never collected again; a PAID_READY intent goes straight back to finalize.
        """
        state = self.poller.state
        intent_id = self._intent_id or (state.intent_id if state else None)
        if not intent_id:
            return Failed(ValidationError("Nothing to retry."))
        try:
            self.api.retry_intent(intent_id)
        except Exception as e:
            return self._failed(e, intent_id)
        if state is not None and state.intent_id == intent_id:
            result = self.poller.retry()
        else:
            result = self.poller.poll(intent_id)
        if not result.ready:
            return Failed(result.error or IntentStateError("Signup is not ready.", intent_id=intent_id))
        password = self._password
        if not password:
            try:
                entry = self.cache.load()
            except SignupError as e:
                return Failed(e.with_intent(intent_id))
            password = entry.password if entry and entry.intent_id == intent_id else None
        if not password:
            return Failed(MissingRecoveryDataError("No saved credentials to finish signup.", intent_id=intent_id))
        return self._finalize(intent_id, password)

    def _finalize(self, intent_id: str, password: str) -> Command:
        if self._finalizing:
            return Failed(IntentStateError("Signup is already being finalized.", intent_id=intent_id))
        self._finalizing = True
        try:
            out = self.api.finalize(intent_id, password)
        except Exception as e:
            return self._failed(e, intent_id)
        finally:
            self._finalizing = False
        self.cache.purge()
        self._password = None
        self._intent_id = None
        logger.info("[Signup] intent %s finalized (already=%s)", intent_id, out.get("already_finalized"))
        return Completed(
            intent_id=intent_id,
            company=out["company"],
            access_token=out.get("access_token"),
            already_finalized=bool(out.get("already_finalized")),
        )

    def _failed(self, exc: Exception, intent_id: str | None) -> Failed:
        error = normalize_error(exc, intent_id)
        logger.info("[Signup] %r", error)
        return Failed(error)
