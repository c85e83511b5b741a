from __future__ import annotations

import json
from typing import Any

import httpx


class WebhookRecorder:
    """Capture outbound webhook posts through an httpx MockTransport."""

    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.requests: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"ok": self.status_code < 400})

    @property
    def payloads(self) -> list[dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]

    def transitions(self) -> list[tuple[str, str, str]]:
        # (id, from, to) tuples in delivery order.
        return [(payload["id"], payload["from"], payload["to"]) for payload in self.payloads]
