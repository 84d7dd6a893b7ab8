"""
Transport between the form session and the evaluation API.

The session only sees `EvaluationGateway`; `HttpEvaluationGateway` is the
httpx-backed implementation. Error responses come back as the same
exception classes the server raised.
"""
from __future__ import annotations

from typing import Any, Protocol

import httpx

from perfreview.core.app_logger import get_logger
from perfreview.core.errors import PerfReviewError, error_for_status

logger = get_logger("client.gateway")


class ConnectivityError(PerfReviewError):
    """The server could not be reached at all."""

    status_code = 503
    code = "connectivity_error"


class TransientServerError(PerfReviewError):
    status_code = 502
    code = "server_error"


# the only failures worth retrying; everything else is a real answer from the server
RETRYABLE_ERRORS = (ConnectivityError, TransientServerError)


class EvaluationGateway(Protocol):
    def fetch_evaluation(self, evaluation_id: str) -> dict[str, Any]:
        ...

    def save_draft(self, evaluation_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        ...

    def submit(self, evaluation_id: str, fields: dict[str, Any], *, idempotency_key: str) -> dict[str, Any]:
        ...


class HttpEvaluationGateway:
    def __init__(self, client: httpx.Client, *, user_email: str | None = None):
        self.client = client
        self.user_email = user_email

    @classmethod
    def connect(cls, base_url: str, *, user_email: str, timeout: float = 10.0) -> "HttpEvaluationGateway":
        return cls(httpx.Client(base_url=base_url, timeout=timeout), user_email=user_email)

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {}
        if self.user_email:
            headers["X-User-Email"] = self.user_email
        headers.update(extra or {})
        return headers

    def _request(self, method: str, url: str, *, headers: dict[str, str] | None = None, **kwargs) -> dict[str, Any]:
        try:
            resp = self.client.request(method, url, headers=self._headers(headers), **kwargs)
        except httpx.TransportError as exc:
            logger.warning("%s %s unreachable: %s", method, url, exc)
            raise ConnectivityError(f"Could not reach server: {exc}") from exc

        if resp.status_code >= 500:
            raise TransientServerError(
                f"Server error {resp.status_code}",
                details={"status_code": resp.status_code},
            )
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail")
            except ValueError:
                detail = resp.text
            raise error_for_status(resp.status_code, detail)
        return resp.json()

    def fetch_evaluation(self, evaluation_id: str) -> dict[str, Any]:
        return self._request("GET", f"/evaluations/{evaluation_id}")

    def save_draft(self, evaluation_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        return self._request("PATCH", f"/evaluations/{evaluation_id}", json={"kind": "draft", **fields})

    def submit(self, evaluation_id: str, fields: dict[str, Any], *, idempotency_key: str) -> dict[str, Any]:
        return self._request(
            "POST",
            f"/evaluations/{evaluation_id}/submit",
            json={"kind": "submit", **fields},
            headers={"Idempotency-Key": idempotency_key},
        )

    def close(self) -> None:
        self.client.close()
