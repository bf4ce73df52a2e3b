"""Webhook subscriptions and asynchronous event delivery.

Emitting an event only enqueues one delivery per matching subscriber; a pool
of worker tasks performs the HTTP calls. Failed deliveries are retried with
exponential backoff up to a fixed ceiling, then logged and written to the
dead-letter store. Nothing here ever raises back into the request that
produced the event.
"""

import asyncio
import hashlib
import hmac
import json
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from task_service.core.errors import NotFound
from task_service.models import Event, EventType, WebhookSubscription
from task_service.storage.dead_letters import DeadLetterStore
from task_service.utils.logging import get_logger
from task_service.utils.metrics import get_metrics

logger = get_logger(__name__)
metrics = get_metrics()

USER_AGENT = "task-service-webhooks/1"


class SubscriptionRegistry:
    """In-memory set of webhook subscriptions indexed by event type."""

    def __init__(self) -> None:
        self._subscriptions: dict[int, WebhookSubscription] = {}
        self._next_id = 1

    def create(
        self,
        url: str,
        events: list[EventType],
        secret: str | None = None,
        active: bool = True,
    ) -> WebhookSubscription:
        subscription = WebhookSubscription(
            id=self._next_id,
            url=url,
            events=frozenset(events),
            secret=secret,
            active=active,
        )
        self._next_id += 1
        self._subscriptions[subscription.id] = subscription
        logger.info(
            "webhook_subscription_created",
            subscription_id=subscription.id,
            url=url,
            events=sorted(e.value for e in subscription.events),
        )
        return subscription

    def get(self, subscription_id: int) -> WebhookSubscription:
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            raise NotFound("Webhook", subscription_id)
        return subscription

    def delete(self, subscription_id: int) -> None:
        if self._subscriptions.pop(subscription_id, None) is None:
            raise NotFound("Webhook", subscription_id)
        logger.info("webhook_subscription_deleted", subscription_id=subscription_id)

    def all(self) -> list[WebhookSubscription]:
        return sorted(self._subscriptions.values(), key=lambda s: s.id)

    def subscribers_for(self, event: EventType) -> list[WebhookSubscription]:
        """Active subscriptions that receive ``event``."""
        return [s for s in self.all() if s.wants(event)]


@dataclass
class Delivery:
    """One event destined for one subscriber."""

    subscription: WebhookSubscription
    event: EventType
    payload: dict[str, Any]
    delivery_id: str = field(default_factory=lambda: uuid.uuid4().hex)


def sign_payload(secret: str, body: bytes) -> str:
    """``sha256=<hex>`` HMAC signature of the request body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class WebhookDispatcher:
    """Queue plus worker pool delivering events to subscribers.

    Lifecycle:
        await dispatcher.start()
        dispatcher.emit(event)   # non-blocking
        await dispatcher.stop()
    """

    def __init__(
        self,
        registry: SubscriptionRegistry | None = None,
        dead_letters: DeadLetterStore | None = None,
        workers: int = 4,
        queue_size: int = 10000,
        timeout: float = 10.0,
        max_retries: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize webhook dispatcher.

        Args:
            registry: Subscription registry (new empty one if None)
            dead_letters: Store for deliveries that exhaust retries
            workers: Number of concurrent delivery workers
            queue_size: Maximum pending deliveries
            timeout: Per-attempt request timeout in seconds
            max_retries: Retries after the first attempt
            base_delay: Backoff delay before the first retry
            max_delay: Backoff ceiling
            transport: Optional httpx transport (tests)
            sleep: Backoff sleep function (tests)
        """
        self.registry = registry or SubscriptionRegistry()
        self.dead_letters = dead_letters
        self.worker_count = workers
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._transport = transport
        self._sleep = sleep

        self._queue: asyncio.Queue[Delivery] = asyncio.Queue(maxsize=queue_size)
        self._workers: list[asyncio.Task[None]] = []
        self._in_flight = 0
        self._client: httpx.AsyncClient | None = None

        logger.info(
            "webhook_dispatcher_initialized",
            workers=workers,
            queue_size=queue_size,
            max_retries=max_retries,
        )

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.max_delay, self.base_delay * (2**attempt))

    async def start(self) -> None:
        """Open the HTTP client and spawn the worker pool."""
        if self.running:
            return
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
            headers={"User-Agent": USER_AGENT},
        )
        self._workers = [
            asyncio.create_task(self._run_worker(n), name=f"webhook-worker-{n}")
            for n in range(self.worker_count)
        ]
        logger.info("webhook_dispatcher_started", workers=self.worker_count)

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """Stop the workers, giving queued deliveries ``drain_timeout`` seconds to finish.

        Deliveries still queued or mid-retry after that are dead-lettered.
        """
        if not self.running:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "webhook_dispatcher_drain_timeout",
                pending=self._queue.qsize(),
                in_flight=self._in_flight,
            )

        # Cancelled workers dead-letter the delivery they were holding
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        while True:
            try:
                delivery = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            await self._dead_letter(delivery, 0, "shutdown: not attempted", None)
            self._queue.task_done()
        metrics.webhook_queue_depth.set(0)

        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("webhook_dispatcher_stopped")

    async def drain(self) -> None:
        """Wait until every queued delivery has been attempted to completion."""
        await self._queue.join()

    def emit(self, event: Event) -> int:
        """Queue ``event`` for every active subscriber of its type.

        Never blocks and never raises; a full queue drops the delivery with an
        error log.

        Returns:
            Number of deliveries queued
        """
        metrics.webhook_events_total.labels(event=event.event.value).inc()
        payload = event.to_payload()
        queued = 0

        for subscription in self.registry.subscribers_for(event.event):
            delivery = Delivery(subscription=subscription, event=event.event, payload=payload)
            try:
                self._queue.put_nowait(delivery)
                queued += 1
            except asyncio.QueueFull:
                metrics.webhook_deliveries_total.labels(event=event.event.value, outcome="dropped").inc()
                logger.error(
                    "webhook_queue_full",
                    event_type=event.event.value,
                    subscription_id=subscription.id,
                    delivery_id=delivery.delivery_id,
                )

        metrics.webhook_queue_depth.set(self._queue.qsize())
        if queued:
            logger.debug("webhook_event_queued", event_type=event.event.value, deliveries=queued)
        return queued

    async def _run_worker(self, number: int) -> None:
        while True:
            delivery = await self._queue.get()
            metrics.webhook_queue_depth.set(self._queue.qsize())
            self._in_flight += 1
            try:
                await self.deliver(delivery)
            except Exception as e:
                logger.exception(
                    "webhook_worker_error",
                    worker=number,
                    delivery_id=delivery.delivery_id,
                    error=str(e),
                )
            finally:
                self._in_flight -= 1
                self._queue.task_done()

    async def _attempt(self, delivery: Delivery, body: bytes) -> httpx.Response:
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Event": delivery.event.value,
            "X-Webhook-Delivery": delivery.delivery_id,
        }
        if delivery.subscription.secret:
            headers["X-Webhook-Signature"] = sign_payload(delivery.subscription.secret, body)

        if self._client is None:
            raise RuntimeError("WebhookDispatcher.start() has not been called")
        return await self._client.post(delivery.subscription.url, content=body, headers=headers)

    async def deliver(self, delivery: Delivery) -> bool:
        """Deliver with retry.

        Args:
            delivery: Delivery to perform

        Returns:
            True if a subscriber acknowledged with 2xx, False once the delivery
            has been dead-lettered
        """
        body = json.dumps(delivery.payload, separators=(",", ":")).encode("utf-8")
        event = delivery.event.value
        last_error: str | None = None
        last_status: int | None = None
        attempts = 0

        try:
            for attempt in range(self.max_retries + 1):
                attempts = attempt + 1
                start_time = time.perf_counter()
                retryable = True

                try:
                    response = await self._attempt(delivery, body)
                    last_status = response.status_code

                    if 200 <= response.status_code < 300:
                        metrics.record_webhook_delivery(event, "delivered", time.perf_counter() - start_time)
                        logger.info(
                            "webhook_delivered",
                            event_type=event,
                            delivery_id=delivery.delivery_id,
                            subscription_id=delivery.subscription.id,
                            status=response.status_code,
                            attempts=attempts,
                        )
                        return True

                    last_error = f"HTTP {response.status_code}"
                    # Rate limited or server error - retry; other client errors are final
                    retryable = response.status_code == 429 or response.status_code >= 500

                except httpx.TransportError as e:
                    last_status = None
                    last_error = f"{type(e).__name__}: {e}"

                metrics.record_webhook_delivery(
                    event,
                    "retry" if retryable and attempt < self.max_retries else "failed",
                    time.perf_counter() - start_time,
                )

                if not retryable or attempt >= self.max_retries:
                    break

                delay = self.backoff(attempt)
                logger.warning(
                    "webhook_delivery_retry",
                    event_type=event,
                    delivery_id=delivery.delivery_id,
                    subscription_id=delivery.subscription.id,
                    attempt=attempts,
                    retry_in=delay,
                    error=last_error,
                )
                await self._sleep(delay)
        except asyncio.CancelledError:
            await self._dead_letter(delivery, attempts, f"shutdown: {last_error or 'interrupted'}", last_status)
            raise

        await self._dead_letter(delivery, attempts, last_error, last_status)
        return False

    async def _dead_letter(
        self,
        delivery: Delivery,
        attempts: int,
        last_error: str | None,
        last_status: int | None,
    ) -> None:
        metrics.webhook_dead_letters_total.labels(event=delivery.event.value).inc()
        logger.error(
            "webhook_delivery_failed",
            event_type=delivery.event.value,
            delivery_id=delivery.delivery_id,
            subscription_id=delivery.subscription.id,
            url=delivery.subscription.url,
            attempts=attempts,
            error=last_error,
            status=last_status,
        )
        if self.dead_letters is None:
            return
        try:
            await self.dead_letters.record(
                delivery_id=delivery.delivery_id,
                subscription_id=delivery.subscription.id,
                url=delivery.subscription.url,
                event=delivery.event.value,
                payload=delivery.payload,
                attempts=attempts,
                last_error=last_error,
                last_status=last_status,
            )
        except Exception as e:
            logger.error("dead_letter_record_failed", delivery_id=delivery.delivery_id, error=str(e))
