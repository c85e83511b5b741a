from __future__ import annotations

import time
from typing import Any, Callable, Mapping
from urllib.parse import quote

import httpx

from pulsewatch.services.signatures import build_ping_signature


_RETRY_STATUSES = {429, 503}


class PulsewatchApiError(Exception):
    """Non-success response from the Pulsewatch API."""

    def __init__(self, status_code: int, code: str | None, message: str) -> None:
        super().__init__(f"{status_code} {code or 'UNKNOWN_ERROR'}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message


def _retry_after_seconds(headers: Mapping[str, str] | None) -> float | None:
    if not headers:
        return None
    retry_after = headers.get("Retry-After")
    if retry_after:
        try:
            return float(retry_after)
        except ValueError:
            return None
    retry_ms = headers.get("X-RateLimit-Retry-After-Ms")
    if retry_ms:
        try:
            return float(retry_ms) / 1000.0
        except ValueError:
            return None
    return None


def _raise_for_envelope(response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    code: str | None = None
    message = response.reason_phrase or "Request failed"
    try:
        error = response.json().get("error") or {}
        code = error.get("code")
        message = error.get("message") or message
    except (ValueError, AttributeError):
        pass
    raise PulsewatchApiError(response.status_code, code, message)


class PulsewatchClient:
    """Synchronous client that signs heartbeat pings and unwraps /v1 envelopes.

    429 and 503 responses are retried with backoff, honoring ``Retry-After``
    when the server sends it.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        tenant_id: str = "public",
        signing_secret: str | None = None,
        admin_token: str | None = None,
        max_retries: int = 2,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock_ms: Callable[[], int] | None = None,
    ) -> None:
        self._tenant_id = tenant_id
        self._signing_secret = signing_secret
        self._admin_token = admin_token
        self._max_retries = max_retries
        self._sleep = sleep
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"X-Tenant-Id": tenant_id},
        )

    def __enter__(self) -> PulsewatchClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        attempt = 0
        while True:
            response = self._http.request(method, path, **kwargs)
            if response.status_code not in _RETRY_STATUSES or attempt >= self._max_retries:
                break
            retry_after = _retry_after_seconds(response.headers)
            if retry_after is None:
                retry_after = min(2.0, 0.25 * (2 ** attempt))
            self._sleep(retry_after)
            attempt += 1
        _raise_for_envelope(response)
        return response.json().get("data")

    def _admin_headers(self) -> dict[str, str]:
        if not self._admin_token:
            raise ValueError("admin_token is required for admin calls")
        return {"Authorization": f"Bearer {self._admin_token}"}

    def ping(self, client_id: str, *, meta: Any = None) -> dict[str, Any]:
        headers: dict[str, str] = {}
        if self._signing_secret:
            # Sign at send time; the server rejects timestamps outside its skew window.
            timestamp = str(self._clock_ms())
            headers["X-Heartbeat-Timestamp"] = timestamp
            headers["X-Heartbeat-Signature"] = build_ping_signature(
                self._signing_secret, self._tenant_id, client_id, timestamp
            )
        payload: dict[str, Any] = {"id": client_id}
        if meta is not None:
            payload["meta"] = meta
        return self._request("POST", "/v1/ping", json=payload, headers=headers)

    def list_clients(self) -> dict[str, Any]:
        return self._request("GET", "/v1/clients")

    def get_status(self, client_id: str) -> dict[str, Any]:
        # Ids may contain "/", "?" or "#"; encode them as a single path segment.
        return self._request("GET", f"/v1/clients/{quote(client_id, safe='')}")

    def record_fact(self, *, source: str, type: str, entity: str, meta: Any = None) -> dict[str, Any]:
        payload = {"source": source, "type": type, "entity": entity, "meta": meta}
        return self._request("POST", "/v1/facts", json=payload)

    def get_config(self) -> dict[str, Any]:
        return self._request("GET", "/v1/admin/config", headers=self._admin_headers())

    def set_config(self, *, tier: str, alert_webhook_url: str | None = None) -> dict[str, Any]:
        payload = {"tier": tier, "alert_webhook_url": alert_webhook_url}
        return self._request("PUT", "/v1/admin/config", json=payload, headers=self._admin_headers())
