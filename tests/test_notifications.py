"""Tests for notification scheduling, recipients and delivery."""

import pytest
from datetime import datetime
from unittest.mock import MagicMock, patch

import requests

from erpinsight.engine.insights import run_all_insight_checks
from erpinsight.errors import ValidationError
from erpinsight.models.notification import NotificationConfig, Recipient
from erpinsight.notifications.dispatcher import (
    LoggingTransport,
    NotificationDispatcher,
    WebhookTransport,
    get_notification_config,
    get_recipients,
    load_users,
    save_notification_config,
    should_send_daily_summary,
    should_send_weekly_report,
)


class FailingTransport:
    def __init__(self):
        self.attempts = 0

    def send(self, subject, body, recipients):
        self.attempts += 1
        raise requests.ConnectionError("relay unreachable")


@pytest.fixture
def transport():
    return LoggingTransport()


@pytest.fixture
def dispatcher(transport, metrics_registry):
    return NotificationDispatcher(transport, metrics_registry)


class TestWindows:
    """Test the daily and weekly send windows."""

    @pytest.mark.parametrize("hour,minute,expected", [
        (7, 0, True), (7, 4, True), (7, 5, False), (6, 59, False), (8, 0, False),
    ])
    def test_daily_window(self, hour, minute, expected):
        assert should_send_daily_summary(NotificationConfig(), datetime(2026, 3, 10, hour, minute)) is expected

    def test_daily_custom_time(self):
        config = NotificationConfig(daily_summary_time="18:30")
        assert should_send_daily_summary(config, datetime(2026, 3, 10, 18, 32))
        assert not should_send_daily_summary(config, datetime(2026, 3, 10, 18, 29))

    def test_daily_disabled(self):
        config = NotificationConfig(daily_summary_enabled=False)
        assert not should_send_daily_summary(config, datetime(2026, 3, 10, 7, 0))

    @pytest.mark.parametrize("when,expected", [
        (datetime(2026, 3, 9, 8, 0), True),    # Monday
        (datetime(2026, 3, 9, 8, 4), True),
        (datetime(2026, 3, 9, 8, 5), False),
        (datetime(2026, 3, 9, 7, 59), False),
        (datetime(2026, 3, 10, 8, 0), False),  # Tuesday
    ])
    def test_weekly_window(self, when, expected):
        assert should_send_weekly_report(NotificationConfig(), when) is expected

    def test_weekly_on_sunday(self):
        config = NotificationConfig(weekly_report_day=0)
        assert should_send_weekly_report(config, datetime(2026, 3, 8, 8, 1))


class TestConfig:
    """Test notification configuration storage."""

    def test_defaults_when_nothing_stored(self, db_session):
        assert get_notification_config(db_session) == NotificationConfig()

    def test_partial_update_merges(self, db_session):
        save_notification_config(db_session, {"daily_summary_time": "06:15"}, updated_by="admin-1")
        save_notification_config(db_session, {"recipient_user_ids": ["operator-1"]}, updated_by="admin-1")

        config = get_notification_config(db_session)
        assert config.daily_summary_time == "06:15"
        assert config.recipient_user_ids == ["operator-1"]
        assert config.recipient_roles == ["admin", "ceo"]

    @pytest.mark.parametrize("partial", [
        {"daily_summary_time": "25:00"},
        {"daily_summary_time": "7h"},
        {"weekly_report_day": 7},
        {"recipient_roles": "admin"},
    ])
    def test_invalid_config_rejected(self, db_session, partial):
        with pytest.raises(ValidationError):
            save_notification_config(db_session, partial)
        assert get_notification_config(db_session) == NotificationConfig()


class TestRecipients:
    """Test recipient selection."""

    def test_roles_and_explicit_users(self):
        users = [
            Recipient(user_id="1", role="ceo"),
            Recipient(user_id="2", role="manager"),
            Recipient(user_id="3", role="operator"),
        ]
        config = NotificationConfig(recipient_roles=["ceo"], recipient_user_ids=["3"])
        assert [u.user_id for u in get_recipients(config, users)] == ["1", "3"]

    def test_loaded_from_user_table(self, db_session, erp_data):
        users = {u.user_id: u for u in load_users(db_session)}
        assert set(users) == {"ceo-1", "admin-1", "operator-1"}
        assert users["ceo-1"].email == "ceo@example.com"


class TestDispatcher:
    """Test formatting and delivery."""

    def test_critical_alerts_sent_once(self, db_session, erp_data, now, dispatcher, transport, metrics_registry):
        """One alert per insight type; already-notified insights are not resent."""
        run_all_insight_checks(db_session, now=now, metrics=metrics_registry)

        assert dispatcher.check_and_send_critical_alerts(db_session, now) == 3
        assert len(transport.sent) == 3
        assert {len(m["recipients"]) for m in transport.sent} == {2}
        assert all(m["body"].startswith("ALERTA CRÍTICO") for m in transport.sent)

        assert dispatcher.check_and_send_critical_alerts(db_session, now) == 0
        assert len(transport.sent) == 3
        assert metrics_registry.get_metric_sum("notifications_sent", {"kind": "critical_alert"}) == 3

    def test_notified_marker_survives_next_check_run(self, db_session, erp_data, now, dispatcher, transport,
                                                     metrics_registry):
        run_all_insight_checks(db_session, now=now, metrics=metrics_registry)
        dispatcher.check_and_send_critical_alerts(db_session, now)

        run_all_insight_checks(db_session, now=now, metrics=metrics_registry)
        assert dispatcher.check_and_send_critical_alerts(db_session, now) == 0

    def test_transport_failure_is_reported(self, db_session, erp_data, now, metrics_registry):
        run_all_insight_checks(db_session, now=now, metrics=metrics_registry)
        failing = FailingTransport()
        dispatcher = NotificationDispatcher(failing, metrics_registry)

        assert dispatcher.check_and_send_critical_alerts(db_session, now) == 0
        assert failing.attempts == 3
        assert metrics_registry.get_error_counts() == {"notification_failure": 3}

        # Nothing was marked, so a working transport sends them all later.
        retry = NotificationDispatcher(LoggingTransport(), metrics_registry)
        assert retry.check_and_send_critical_alerts(db_session, now) == 3

    def test_critical_alerts_disabled(self, db_session, erp_data, now, dispatcher, transport, metrics_registry):
        run_all_insight_checks(db_session, now=now, metrics=metrics_registry)
        save_notification_config(db_session, {"critical_alerts_enabled": False})
        assert dispatcher.check_and_send_critical_alerts(db_session, now) == 0
        assert transport.sent == []

    def test_no_recipients(self, db_session, now, dispatcher, transport):
        assert dispatcher.send_critical_alert(db_session, "t", "s", []) is False
        assert dispatcher.send_daily_summary(db_session, now) is False
        assert transport.sent == []

    def test_daily_summary(self, db_session, erp_data, now, dispatcher, transport, metrics_registry):
        run_all_insight_checks(db_session, now=now, metrics=metrics_registry)
        assert dispatcher.send_daily_summary(db_session, now) is True

        message = transport.sent[0]
        assert message["subject"] == "Resumo Diário - 10/03/2026"
        assert "Insights gerados hoje: 6" in message["body"]
        assert "Insights críticos ativos: 3" in message["body"]

    def test_weekly_report(self, db_session, erp_data, now, dispatcher, transport, metrics_registry):
        run_all_insight_checks(db_session, now=now, metrics=metrics_registry)
        assert dispatcher.send_weekly_report(db_session, now) is True

        body = transport.sent[0]["body"]
        assert "Insights gerados na semana: 6" in body
        assert "- suggested: 2" in body

    def test_scheduled_digest_sent_once_per_day(self, db_session, erp_data, dispatcher, transport):
        first = dispatcher.run_scheduled(db_session, datetime(2026, 3, 10, 7, 1))
        second = dispatcher.run_scheduled(db_session, datetime(2026, 3, 10, 7, 3))
        assert first["daily_summary"] is True
        assert "daily_summary" not in second
        assert [m["subject"] for m in transport.sent] == ["Resumo Diário - 10/03/2026"]

    def test_scheduled_outside_windows(self, db_session, erp_data, now, dispatcher, transport):
        assert dispatcher.run_scheduled(db_session, now) == {"critical_alerts": 0}


class TestWebhookTransport:
    """Test the webhook transport."""

    def test_posts_json(self):
        response = MagicMock()
        with patch("erpinsight.notifications.dispatcher.requests.post", return_value=response) as post:
            WebhookTransport("https://hooks.example.com/erp", timeout=3).send(
                "Assunto", "Corpo", [Recipient(user_id="ceo-1", role="ceo", email="ceo@example.com")],
            )

        post.assert_called_once()
        args, kwargs = post.call_args
        assert args == ("https://hooks.example.com/erp",)
        assert kwargs["timeout"] == 3
        assert kwargs["json"]["subject"] == "Assunto"
        assert kwargs["json"]["recipients"][0]["email"] == "ceo@example.com"
        response.raise_for_status.assert_called_once()

    def test_http_error_becomes_failed_send(self, db_session, erp_data, metrics_registry):
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("502 Bad Gateway")
        dispatcher = NotificationDispatcher(WebhookTransport("https://hooks.example.com/erp"), metrics_registry)

        with patch("erpinsight.notifications.dispatcher.requests.post", return_value=response):
            assert dispatcher.send_critical_alert(db_session, "t", "s", []) is False
        assert metrics_registry.get_error_counts() == {"notification_failure": 1}
