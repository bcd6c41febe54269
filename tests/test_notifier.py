"""Tests for the update notifier module."""

from unittest.mock import MagicMock, patch

import requests

from assetsync.config import NotifyConfig, WebhookConfig
from assetsync.models import UpdateEvent
from assetsync.notifier import Notifier


def make_event(version: str | None = "1.2.0", changed: int | None = None) -> UpdateEvent:
    return UpdateEvent(generation="app-v1", version=version, changed_count=changed)


class TestUpdateEvent:
    """Tests for the UpdateEvent payload."""

    def test_to_dict(self) -> None:
        payload = make_event(changed=4).to_dict()
        assert payload["type"] == "UPDATE_AVAILABLE"
        assert payload["version"] == "1.2.0"
        assert payload["changed"] == 4
        assert payload["generation"] == "app-v1"
        assert "applied_at" in payload


class TestObservers:
    """Tests for in-process observers."""

    def test_broadcast_reaches_all_observers(self) -> None:
        notifier = Notifier()
        first, second = MagicMock(), MagicMock()
        notifier.subscribe(first)
        notifier.subscribe(second)
        event = make_event()

        notifier.broadcast(event)

        first.assert_called_once_with(event)
        second.assert_called_once_with(event)
        assert notifier.last_event is event

    def test_unsubscribe(self) -> None:
        notifier = Notifier()
        observer = MagicMock()
        unsubscribe = notifier.subscribe(observer)

        unsubscribe()
        notifier.broadcast(make_event())

        observer.assert_not_called()

    def test_failing_observer_does_not_stop_delivery(self) -> None:
        notifier = Notifier()
        notifier.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        healthy = MagicMock()
        notifier.subscribe(healthy)

        notifier.broadcast(make_event())

        healthy.assert_called_once()

    def test_last_event_none_initially(self) -> None:
        assert Notifier().last_event is None


class TestWebhooks:
    """Tests for webhook delivery."""

    def test_posts_event_payload(self) -> None:
        config = NotifyConfig(webhooks=[WebhookConfig(url="https://hooks.example.com/update")])
        notifier = Notifier(config)
        event = make_event()

        with patch("assetsync.notifier.requests.post") as mock_post:
            mock_post.return_value = MagicMock(status_code=200)
            notifier.broadcast(event)

        mock_post.assert_called_once()
        assert mock_post.call_args.args[0] == "https://hooks.example.com/update"
        assert mock_post.call_args.kwargs["json"] == event.to_dict()

    def test_disabled_webhook_skipped(self) -> None:
        config = NotifyConfig(webhooks=[WebhookConfig(url="https://hooks.example.com/update", enabled=False)])
        notifier = Notifier(config)

        with patch("assetsync.notifier.requests.post") as mock_post:
            notifier.broadcast(make_event())

        mock_post.assert_not_called()

    def test_retries_with_backoff(self) -> None:
        config = NotifyConfig(webhooks=[WebhookConfig(url="https://hooks.example.com/update")])
        notifier = Notifier(config, max_retries=2, retry_delay=1)

        with patch("assetsync.notifier.requests.post") as mock_post, patch(
            "assetsync.notifier.time.sleep"
        ) as mock_sleep:
            mock_post.side_effect = [
                requests.ConnectionError("refused"),
                requests.ConnectionError("refused"),
                MagicMock(status_code=200),
            ]
            sent = notifier._send_webhook(config.webhooks[0], make_event())

        assert sent is True
        assert mock_post.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1, 2]

    def test_gives_up_after_max_retries(self) -> None:
        config = NotifyConfig(webhooks=[WebhookConfig(url="https://hooks.example.com/update")])
        notifier = Notifier(config, max_retries=1, retry_delay=1)

        with patch("assetsync.notifier.requests.post") as mock_post, patch("assetsync.notifier.time.sleep"):
            mock_post.side_effect = requests.Timeout("slow")
            sent = notifier._send_webhook(config.webhooks[0], make_event())

        assert sent is False
        assert mock_post.call_count == 2
