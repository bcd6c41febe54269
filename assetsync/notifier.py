"""Update notifications to in-process observers and webhooks."""

import logging
import threading
import time
from collections.abc import Callable

import requests

from .config import NotifyConfig, WebhookConfig
from .models import UpdateEvent

logger = logging.getLogger(__name__)

Observer = Callable[[UpdateEvent], None]


class Notifier:
    """Broadcasts "update applied" events after a committed generation swap."""

    def __init__(self, config: NotifyConfig | None = None, max_retries: int = 3, retry_delay: int = 2):
        """Initialize notifier with configuration.

        Args:
            config: Notification configuration with webhooks
            max_retries: Maximum number of retry attempts for failed webhooks
            retry_delay: Base delay in seconds between retries (increases exponentially)
        """
        self._config = config or NotifyConfig()
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._observers: list[Observer] = []
        self._lock = threading.Lock()
        self._last_event: UpdateEvent | None = None

    @property
    def last_event(self) -> UpdateEvent | None:
        return self._last_event

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer.

        Returns:
            A callable that unsubscribes the observer.
        """
        with self._lock:
            self._observers.append(observer)
        return lambda: self.unsubscribe(observer)

    def unsubscribe(self, observer: Observer) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def broadcast(self, event: UpdateEvent) -> None:
        """Deliver an event to every observer and enabled webhook.

        A failing observer is logged and does not stop delivery to the others.
        """
        with self._lock:
            self._last_event = event
            observers = list(self._observers)

        logger.info(
            "Update applied: generation=%s version=%s changed=%s",
            event.generation,
            event.version,
            event.changed_count,
        )

        for observer in observers:
            try:
                observer(event)
            except Exception as e:
                logger.error("Update observer failed: %s", e)

        for webhook in self._config.webhooks:
            if webhook.enabled:
                self._send_webhook(webhook, event)

    def _send_webhook(self, webhook: WebhookConfig, event: UpdateEvent) -> bool:
        """Send an event to a webhook (with retries).

        Returns:
            True if the webhook accepted the event.
        """
        payload = event.to_dict()
        retry_count = 0

        while retry_count <= self._max_retries:
            try:
                response = requests.post(
                    webhook.url,
                    json=payload,
                    timeout=10,
                )
                response.raise_for_status()

                logger.info("Update notification sent to %s", webhook.url)
                return True

            except requests.RequestException as e:
                retry_count += 1
                if retry_count <= self._max_retries:
                    delay = self._retry_delay * (2 ** (retry_count - 1))
                    logger.warning(
                        "Webhook failed for %s (attempt %d/%d, retrying in %ds): %s",
                        webhook.url,
                        retry_count,
                        self._max_retries + 1,
                        delay,
                        e,
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        "Webhook failed for %s after %d attempts: %s",
                        webhook.url,
                        retry_count,
                        e,
                    )
        return False
