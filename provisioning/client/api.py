"""HTTP client for the signup endpoints.

One method per server operation. Transport failures become NetworkError; any non-2xx body is rebuilt
into the matching SignupError subclass, so callers only ever catch the taxonomy.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from provisioning.errors import NetworkError, error_from_payload

logger = logging.getLogger(__name__)


class SignupApiClient:
    def __init__(self, http: httpx.Client | None = None, *, base_url: str = "", timeout: float = 15.0):
        # FastAPI's TestClient is an httpx.Client and can be passed straight in
        self._http = http or httpx.Client(base_url=base_url, timeout=timeout)

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, *, json: dict | None = None, intent_id: str | None = None) -> Any:
        try:
            r = self._http.request(method, path, json=json)
        except httpx.TransportError as e:
            logger.info("[SignupApi] %s %s transport error: %s", method, path, e)
            raise NetworkError(f"Network error: {e}", intent_id=intent_id) from e
        if r.status_code >= 400:
            try:
                payload = r.json()
            except ValueError:
                payload = {"detail": r.text}
            raise error_from_payload(r.status_code, payload, intent_id=intent_id)
        return r.json()

    def list_plans(self) -> list[dict]:
        return self._request("GET", "/plans")

    def create_intent(self, **fields: Any) -> dict:
        body = {k: v for k, v in fields.items() if v is not None}
        return self._request("POST", "/signup/intents", json=body)

    def create_setup(self, email: str, full_name: str | None = None, billing_country: str | None = None) -> dict:
        return self._request(
            "POST",
            "/signup/setup",
            json={"email": email, "full_name": full_name, "billing_country": billing_country},
        )

    def save_payment_method(self, **fields: Any) -> dict:
        body = {k: v for k, v in fields.items() if v is not None}
        return self._request("POST", "/signup/payment-methods", json=body)

    def start_checkout(
        self,
        intent_id: str,
        *,
        success_url: str | None = None,
        cancel_url: str | None = None,
        payment_method_ref: str | None = None,
    ) -> dict:
        body = {"intent_id": intent_id, "success_url": success_url, "cancel_url": cancel_url}
        if payment_method_ref is not None:
            body["payment_method_ref"] = payment_method_ref
        return self._request("POST", "/signup/checkout", json=body, intent_id=intent_id)

    def get_intent_status(self, intent_id: str) -> dict:
        return self._request("POST", "/signup/intents/status", json={"intent_id": intent_id}, intent_id=intent_id)

    def mark_intent_ready(self, intent_id: str, external_session_id: str | None = None) -> dict:
        return self._request(
            "POST",
            "/signup/intents/ready",
            json={"intent_id": intent_id, "external_session_id": external_session_id},
            intent_id=intent_id,
        )

    def retry_intent(self, intent_id: str) -> dict:
        return self._request("POST", f"/signup/intents/{intent_id}/retry", intent_id=intent_id)

    def finalize(self, intent_id: str, password: str) -> dict:
        return self._request(
            "POST",
            "/signup/finalize",
            json={"intent_id": intent_id, "password": password},
            intent_id=intent_id,
        )
