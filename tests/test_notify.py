"""Tests for webhook notifications."""

from unittest.mock import MagicMock

import httpx
import pytest

from backup_drill.config import WebhookConfig
from backup_drill.notify import NotificationEvent, Notifier, Status
from backup_drill.scrub import Scrubber

URL = "https://hooks.example.com/backup"


@pytest.fixture
def client():
    client = MagicMock()
    client.post.return_value = MagicMock(status_code=200)
    return client


def make_notifier(client, sleep=None, **webhook):
    return Notifier(
        WebhookConfig(url=webhook.pop("url", URL), **webhook),
        service="postgres-backup",
        host="db.internal:5432",
        client=client,
        scrubber=Scrubber(["hunter22", "AKIAEXAMPLE"]),
        sleep=sleep or MagicMock(),
    )


class TestToggles:
    """Tests for notification toggles."""

    def test_failure_sent_by_default(self, client):
        assert make_notifier(client).notify(NotificationEvent(Status.FAILURE, "dump failed")) is True
        client.post.assert_called_once()

    def test_success_not_sent_by_default(self, client):
        assert make_notifier(client).notify(NotificationEvent(Status.SUCCESS, "ok")) is False
        client.post.assert_not_called()

    def test_success_sent_when_enabled(self, client):
        notifier = make_notifier(client, on_success=True)
        assert notifier.notify(NotificationEvent(Status.SUCCESS, "ok")) is True

    def test_error_follows_failure_toggle(self, client):
        notifier = make_notifier(client, on_failure=False)
        assert notifier.notify(NotificationEvent(Status.ERROR, "no backups")) is False
        assert notifier.notify(NotificationEvent(Status.FAILURE, "restore failed")) is False
        client.post.assert_not_called()

    def test_no_url_disables(self, client):
        notifier = make_notifier(client, url="")
        assert notifier.notify(NotificationEvent(Status.FAILURE, "x")) is False
        client.post.assert_not_called()


class TestPayload:
    """Tests for the webhook payload."""

    def test_fields(self, client):
        notifier = make_notifier(client)
        notifier.notify(
            NotificationEvent(
                Status.FAILURE,
                "Upload failed",
                backup_file="postgres-backups/backup_20240115_030000.sql.gz",
                duration_seconds=12,
                timestamp="2024-01-15T03:00:12+00:00",
            )
        )
        payload = client.post.call_args.kwargs["json"]
        assert payload == {
            "status": "failure",
            "message": "Upload failed",
            "backup_file": "postgres-backups/backup_20240115_030000.sql.gz",
            "duration_seconds": 12,
            "timestamp": "2024-01-15T03:00:12+00:00",
            "service": "postgres-backup",
            "host": "db.internal:5432",
        }
        assert client.post.call_args.args[0] == URL

    def test_secrets_scrubbed(self, client):
        notifier = make_notifier(client)
        notifier.notify(
            NotificationEvent(
                Status.FAILURE,
                "pg_dump: connection to postgresql://app:hunter22@db:5432/appdb failed; key AKIAEXAMPLE",
            )
        )
        message = client.post.call_args.kwargs["json"]["message"]
        assert "hunter22" not in message
        assert "AKIAEXAMPLE" not in message
        assert "***" in message


class TestDelivery:
    """Tests for retry and failure handling."""

    def test_retries_then_gives_up(self, client, caplog):
        sleep = MagicMock()
        client.post.side_effect = httpx.ConnectError("connection refused")
        notifier = make_notifier(client, sleep=sleep)

        assert notifier.notify(NotificationEvent(Status.FAILURE, "x")) is False
        assert client.post.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [2, 4]
        assert "Failed to send webhook" in caplog.text

    def test_http_error_status_retried(self, client):
        bad = MagicMock()
        bad.raise_for_status.side_effect = httpx.HTTPStatusError(
            "500", request=httpx.Request("POST", URL), response=httpx.Response(500)
        )
        good = MagicMock()
        client.post.side_effect = [bad, good]

        assert make_notifier(client).notify(NotificationEvent(Status.FAILURE, "x")) is True
        assert client.post.call_count == 2
