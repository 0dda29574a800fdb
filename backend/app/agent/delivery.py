"""
Batch delivery for the tracking agent.

A flush drains the queue in one swap, tries the primary transport, falls back
to the beacon sender and only re-queues the batch (at the front) when the
beacon could not even be dispatched. Nothing here raises to the caller.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Any

import httpx


logger = logging.getLogger(__name__)

BEACON_MAX_BYTES = 64 * 1024


class TransportError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class Transport:
    """Primary delivery. Must raise TransportError on any non-success outcome."""

    def send(self, payload: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class BestEffortSender:
    """Fire-and-forget delivery. Returns False when the payload could not be dispatched."""

    def send(self, payload: str) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        pass


class FlushOutcome(str, Enum):
    EMPTY = "empty"
    SENT = "sent"
    BEACON = "beacon"
    REQUEUED = "requeued"


class DeliveryQueue:
    def __init__(self) -> None:
        self._events: list[dict[str, Any]] = []

    def __len__(self) -> int:
        return len(self._events)

    def append(self, event: dict[str, Any]) -> int:
        self._events.append(event)
        return len(self._events)

    def drain(self) -> list[dict[str, Any]]:
        # Swap, don't copy: events tracked while a send is in flight land in the new list.
        events, self._events = self._events, []
        return events

    def requeue_front(self, events: list[dict[str, Any]]) -> None:
        self._events = list(events) + self._events

    def snapshot(self) -> list[dict[str, Any]]:
        return list(self._events)


def encode_batch(events: list[dict[str, Any]]) -> str:
    return json.dumps({"events": events}, separators=(",", ":"), ensure_ascii=False)


class Delivery:
    def __init__(self, queue: DeliveryQueue, transport: Transport, beacon: BestEffortSender) -> None:
        self.queue = queue
        self.transport = transport
        self.beacon = beacon

    def _dispatch_beacon(self, payload: str) -> bool:
        try:
            return bool(self.beacon.send(payload))
        except Exception:
            logger.exception("agent.beacon_error")
            return False

    def flush(self) -> FlushOutcome:
        events = self.queue.drain()
        if not events:
            return FlushOutcome.EMPTY
        payload = encode_batch(events)

        try:
            self.transport.send(payload)
            return FlushOutcome.SENT
        except TransportError as exc:
            logger.warning(
                "agent.transport_failed",
                extra={"events": len(events), "status_code": exc.status_code, "error": str(exc)},
            )

        if self._dispatch_beacon(payload):
            logger.info("agent.beacon_fallback", extra={"events": len(events)})
            return FlushOutcome.BEACON

        self.queue.requeue_front(events)
        logger.error("agent.delivery_failed", extra={"events": len(events), "queued": len(self.queue)})
        return FlushOutcome.REQUEUED

    def flush_on_unload(self) -> bool:
        """Single beacon attempt for whatever is left; nothing can be retried afterwards."""
        events = self.queue.drain()
        if not events:
            return True
        dispatched = self._dispatch_beacon(encode_batch(events))
        if not dispatched:
            logger.warning("agent.unload_dropped", extra={"events": len(events)})
        return dispatched


class HttpxTransport(Transport):
    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    def send(self, payload: str) -> None:
        try:
            resp = self._client.post(
                self.endpoint,
                content=payload.encode("utf-8"),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise TransportError("Request timed out") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Request failed: {exc}") from exc
        if not resp.is_success:
            raise TransportError(f"HTTP {resp.status_code}", status_code=resp.status_code)

    def close(self) -> None:
        self._client.close()


class HttpxBeaconSender(BestEffortSender):
    """Posts on a background worker and never waits for the response."""

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
        max_bytes: int = BEACON_MAX_BYTES,
    ) -> None:
        self.endpoint = endpoint
        self.max_bytes = max_bytes
        self._client = client or httpx.Client(timeout=timeout)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="beacon")

    def send(self, payload: str) -> bool:
        body = payload.encode("utf-8")
        if len(body) > self.max_bytes:
            logger.warning("agent.beacon_too_large", extra={"bytes": len(body), "limit": self.max_bytes})
            return False
        try:
            self._executor.submit(self._post, body)
        except RuntimeError:
            # Executor already shut down.
            return False
        return True

    def _post(self, body: bytes) -> None:
        try:
            self._client.post(
                self.endpoint,
                content=body,
                headers={"Content-Type": "text/plain;charset=UTF-8"},
            )
        except httpx.HTTPError as exc:
            logger.warning("agent.beacon_post_failed", extra={"error": str(exc)})

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        self._client.close()
