"""Signup error taxonomy.

Every failure in the provisioning pipeline reaches callers as one SignupError subclass carrying a
human-readable message and, where known, the intent id. The HTTP layer renders ``to_dict()`` and the
client rebuilds the same class from that body, so nothing downstream has to guess at error shapes.
"""
from __future__ import annotations

from typing import Any


class SignupError(Exception):
    code = "unknown"
    status_code = 500

    def __init__(self, message: str, intent_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.intent_id = intent_id

    def with_intent(self, intent_id: str | None) -> "SignupError":
        if intent_id and not self.intent_id:
            self.intent_id = intent_id
        return self

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, "intent_id": self.intent_id}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r}, intent_id={self.intent_id!r})"


class ValidationError(SignupError):
    """Required signup data missing or malformed; nothing was created."""
    code = "validation"
    status_code = 400


class MissingRecoveryDataError(ValidationError):
    """Confirmation page has no intent id or no cached password to finish with."""
    code = "missing_recovery_data"


class ProviderError(SignupError):
    """Processor declined or rejected the payment method. Shown verbatim; intent stays retryable."""
    code = "provider"
    status_code = 402


class ProviderUnavailableError(ProviderError):
    """Processor credentials are not configured on this deployment."""
    code = "provider_unavailable"
    status_code = 503


class NetworkError(SignupError):
    """Transient transport failure. The poller retries these silently."""
    code = "network"
    status_code = 503


class IntentNotFoundError(SignupError):
    """Unknown or expired intent id. The user has to restart signup."""
    code = "intent_not_found"
    status_code = 404


class IntentStateError(SignupError):
    """Operation not allowed in the intent's current status."""
    code = "invalid_state"
    status_code = 409


class InvalidTransitionError(IntentStateError):
    code = "invalid_transition"


class PollTimeoutError(SignupError):
    """Local poll ceiling reached without PAID_READY. Recoverable with a manual retry."""
    code = "timeout"
    status_code = 408


class UnknownError(SignupError):
    code = "unknown"
    status_code = 500


_BY_CODE: dict[str, type[SignupError]] = {
    cls.code: cls
    for cls in (
        ValidationError,
        MissingRecoveryDataError,
        ProviderError,
        ProviderUnavailableError,
        NetworkError,
        IntentNotFoundError,
        IntentStateError,
        InvalidTransitionError,
        PollTimeoutError,
        UnknownError,
    )
}

_BY_STATUS: dict[int, type[SignupError]] = {
    400: ValidationError,
    402: ProviderError,
    404: IntentNotFoundError,
    408: PollTimeoutError,
    409: IntentStateError,
    422: ValidationError,
    502: NetworkError,
    503: NetworkError,
    504: NetworkError,
}


def _message_from_detail(detail: Any) -> str:
    """FastAPI request validation gives a list of {loc, msg}; everything else is a string."""
    if isinstance(detail, str):
        return detail
    if isinstance(detail, list):
        parts = []
        for item in detail:
            if isinstance(item, dict):
                loc = ".".join(str(p) for p in item.get("loc", []) if p != "body")
                msg = item.get("msg") or ""
                parts.append(f"{loc}: {msg}" if loc else msg)
            else:
                parts.append(str(item))
        return "; ".join(p for p in parts if p) or "Invalid request"
    if detail is None:
        return ""
    return str(detail)


def error_from_payload(status_code: int, payload: Any, intent_id: str | None = None) -> SignupError:
    """Rebuild the tagged error from an HTTP error response body."""
    body = payload if isinstance(payload, dict) else {"detail": payload}
    message = _message_from_detail(body.get("detail") or body.get("error") or body.get("message"))
    cls = _BY_CODE.get(str(body.get("code") or "")) or _BY_STATUS.get(status_code, UnknownError)
    if not message:
        message = f"Request failed with status {status_code}"
    return cls(message, intent_id=body.get("intent_id") or intent_id)


def normalize_error(exc: BaseException, intent_id: str | None = None) -> SignupError:
    """Map any exception raised below the boundary onto the taxonomy."""
    if isinstance(exc, SignupError):
        return exc.with_intent(intent_id)

    import httpx
    import stripe

    if isinstance(exc, stripe.CardError):
        return ProviderError(getattr(exc, "user_message", None) or str(exc), intent_id=intent_id)
    if isinstance(exc, (stripe.APIConnectionError, stripe.RateLimitError)):
        return NetworkError(f"Stripe unreachable: {getattr(exc, 'user_message', None) or exc}", intent_id=intent_id)
    if isinstance(exc, stripe.AuthenticationError):
        return ProviderUnavailableError("Stripe rejected the configured API key.", intent_id=intent_id)
    if isinstance(exc, stripe.StripeError):
        return ProviderError(getattr(exc, "user_message", None) or str(exc), intent_id=intent_id)
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            payload = exc.response.json()
        except ValueError:
            payload = {"detail": exc.response.text}
        return error_from_payload(exc.response.status_code, payload, intent_id=intent_id)
    if isinstance(exc, httpx.TransportError):
        return NetworkError(f"Network error: {exc}", intent_id=intent_id)
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return NetworkError(str(exc) or type(exc).__name__, intent_id=intent_id)
    return UnknownError(str(exc) or type(exc).__name__, intent_id=intent_id)
