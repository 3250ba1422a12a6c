"""Outbound notifications: critical alerts, daily summary, weekly report.

Sends never raise. A transport failure is logged, recorded as an
observability error, and reported to the caller as False.
"""

import logging
import os
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol

import requests
from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from erpinsight.errors import ValidationError
from erpinsight.models.constants import (
    DEFAULT_NOTIFICATION_TIMEOUT_SEC,
    NOTIFICATION_CONFIG_KEY,
    NOTIFICATION_WINDOW_MINUTES,
    WEEKLY_REPORT_HOUR,
)
from erpinsight.models.insight import Insight
from erpinsight.models.notification import NotificationConfig, Recipient
from erpinsight.database.config_repository import ConfigRepository
from erpinsight.database.insight_repository import InsightRepository
from erpinsight.database.action_repository import ActionRepository
from erpinsight.database.erp_models import UserDB
from erpinsight.database.models import InsightDB
from erpinsight.observability.metrics import ErrorRecord, MetricsRegistry, metrics as default_metrics

load_dotenv()

logger = logging.getLogger(__name__)

NOTIFICATION_WEBHOOK_URL = os.getenv("NOTIFICATION_WEBHOOK_URL", "")
NOTIFICATION_TIMEOUT_SEC = float(os.getenv("NOTIFICATION_TIMEOUT_SEC", str(DEFAULT_NOTIFICATION_TIMEOUT_SEC)))


class NotificationTransport(Protocol):
    def send(self, subject: str, body: str, recipients: List[Recipient]) -> None:
        """Deliver a message; raise on failure."""
        ...


class WebhookTransport:
    """POSTs notifications as JSON to a webhook (mail relay, chat integration)."""

    def __init__(self, url: str, timeout: float = NOTIFICATION_TIMEOUT_SEC):
        self.url = url
        self.timeout = timeout

    def send(self, subject: str, body: str, recipients: List[Recipient]) -> None:
        response = requests.post(
            self.url,
            json={
                "subject": subject,
                "body": body,
                "recipients": [r.model_dump() for r in recipients],
            },
            timeout=self.timeout,
        )
        response.raise_for_status()


class LoggingTransport:
    """Writes notifications to the log; for development."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    def send(self, subject: str, body: str, recipients: List[Recipient]) -> None:
        self.sent.append({"subject": subject, "body": body, "recipients": recipients})
        logger.info(f"Notification to {len(recipients)} recipient(s): {subject}")


def transport_from_env() -> NotificationTransport:
    if NOTIFICATION_WEBHOOK_URL:
        return WebhookTransport(NOTIFICATION_WEBHOOK_URL, NOTIFICATION_TIMEOUT_SEC)
    return LoggingTransport()


# Configuration

def get_notification_config(db: Session) -> NotificationConfig:
    """Stored config merged over defaults."""
    stored = ConfigRepository(db).get(NOTIFICATION_CONFIG_KEY) or {}
    try:
        return NotificationConfig(**{**NotificationConfig().model_dump(), **stored})
    except PydanticValidationError:
        logger.warning("Stored notification config is invalid, using defaults")
        return NotificationConfig()


def save_notification_config(db: Session, partial: Dict[str, Any], updated_by: Optional[str] = None) -> bool:
    """Merge `partial` into the stored config.

    Raises:
        ValidationError: the merged config is invalid
    """
    current = get_notification_config(db).model_dump()
    try:
        merged = NotificationConfig(**{**current, **partial})
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationError(f"Invalid notification config ({fields})") from e
    ConfigRepository(db).set(NOTIFICATION_CONFIG_KEY, merged.model_dump(), updated_by)
    return True


# Scheduling windows

def should_send_daily_summary(config: NotificationConfig, now: datetime) -> bool:
    if not config.daily_summary_enabled:
        return False
    hour, minute = config.daily_summary_hour_minute()
    return now.hour == hour and minute <= now.minute < minute + NOTIFICATION_WINDOW_MINUTES


def should_send_weekly_report(config: NotificationConfig, now: datetime) -> bool:
    if not config.weekly_report_enabled:
        return False
    # Python weekday() is Monday=0; config counts from Sunday=0.
    sunday_based = (now.weekday() + 1) % 7
    return (
        sunday_based == config.weekly_report_day
        and now.hour == WEEKLY_REPORT_HOUR
        and now.minute < NOTIFICATION_WINDOW_MINUTES
    )


def get_recipients(config: NotificationConfig, users: List[Recipient]) -> List[Recipient]:
    """Users listed by id, plus users whose role is configured."""
    return [
        user for user in users
        if user.user_id in config.recipient_user_ids or user.role in config.recipient_roles
    ]


def load_users(db: Session) -> List[Recipient]:
    return [
        Recipient(user_id=str(row.id), role=row.role or "user", email=row.email or "", name=row.name or "")
        for row in db.query(UserDB).all()
    ]


def _shorten(text: str, size: int = 100) -> str:
    return text if len(text) <= size else text[:size] + "..."


class NotificationDispatcher:
    """Formats and sends notifications through a transport."""

    def __init__(self, transport: Optional[NotificationTransport] = None,
                 metrics: Optional[MetricsRegistry] = None):
        self.transport = transport if transport is not None else transport_from_env()
        self.metrics = metrics or default_metrics
        self._last_daily: Optional[date] = None
        self._last_weekly: Optional[date] = None

    def _deliver(self, kind: str, subject: str, body: str, recipients: List[Recipient]) -> bool:
        try:
            self.transport.send(subject, body, recipients)
        except Exception as e:
            logger.error(f"Failed to send {kind} notification: {type(e).__name__}: {str(e)}")
            self.metrics.log_error(ErrorRecord(
                type="notification_failure",
                message=f"{kind}: {type(e).__name__}: {str(e)}",
                context={"subject": subject},
            ))
            return False
        self.metrics.increment_counter("notifications_sent", {"kind": kind})
        logger.info(f"Sent {kind} notification to {len(recipients)} recipient(s)")
        return True

    def _recipients(self, db: Session, config: NotificationConfig) -> List[Recipient]:
        return get_recipients(config, load_users(db))

    def send_critical_alert(self, db: Session, title: str, summary: str,
                            items: List[Dict[str, str]]) -> bool:
        try:
            config = get_notification_config(db)
            if not config.critical_alerts_enabled:
                logger.info("Critical alerts disabled")
                return False
            recipients = self._recipients(db, config)
        except Exception as e:
            logger.error(f"Failed to prepare critical alert: {type(e).__name__}: {str(e)}")
            return False
        if not recipients:
            logger.info("No notification recipients configured")
            return False

        lines = ["ALERTA CRÍTICO", "", title, "", summary, "", "Detalhes:"]
        lines.extend(
            f"- {item.get('title', '')} ({item.get('severity', 'critical')}): {item.get('description', '')}"
            for item in items
        )
        return self._deliver("critical_alert", title, "\n".join(lines), recipients)

    def send_daily_summary(self, db: Session, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        try:
            config = get_notification_config(db)
            if not config.daily_summary_enabled:
                logger.info("Daily summary disabled")
                return False
            recipients = self._recipients(db, config)
            today = now.replace(hour=0, minute=0, second=0, microsecond=0)
            generated = db.query(InsightDB).filter(InsightDB.generated_at >= today).all()
            critical = InsightRepository(db).list_active_critical(now)
        except Exception as e:
            logger.error(f"Failed to prepare daily summary: {type(e).__name__}: {str(e)}")
            return False
        if not recipients:
            logger.info("No notification recipients configured")
            return False

        lines = [f"RESUMO DIÁRIO - {today:%d/%m/%Y}", "", f"Insights gerados hoje: {len(generated)}"]
        lines.extend(f"- {row.title} ({row.severity}): {_shorten(row.summary)}" for row in generated[:5])
        lines.extend(["", f"Insights críticos ativos: {len(critical)}"])
        lines.extend(f"- {insight.title}: {_shorten(insight.summary)}" for insight in critical[:5])
        lines.append("")
        lines.append("Existem alertas críticos que requerem atenção imediata." if critical
                     else "Nenhuma ação urgente necessária.")
        return self._deliver("daily_summary", f"Resumo Diário - {today:%d/%m/%Y}", "\n".join(lines), recipients)

    def send_weekly_report(self, db: Session, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        try:
            config = get_notification_config(db)
            if not config.weekly_report_enabled:
                logger.info("Weekly report disabled")
                return False
            recipients = self._recipients(db, config)
            since = now - timedelta(days=7)
            week = db.query(InsightDB).filter(InsightDB.generated_at >= since).all()
            actions = ActionRepository(db).count_by_status()
            active = InsightRepository(db).count_active_by_severity(now)
        except Exception as e:
            logger.error(f"Failed to prepare weekly report: {type(e).__name__}: {str(e)}")
            return False
        if not recipients:
            logger.info("No notification recipients configured")
            return False

        by_severity: Dict[str, int] = {}
        for row in week:
            by_severity[row.severity] = by_severity.get(row.severity, 0) + 1
        lines = [
            f"RELATÓRIO SEMANAL - {since:%d/%m/%Y} a {now:%d/%m/%Y}",
            "",
            f"Insights gerados na semana: {len(week)}",
        ]
        lines.extend(f"- {severity}: {count}" for severity, count in sorted(by_severity.items()))
        lines.extend(["", "Insights ativos:"])
        lines.extend(f"- {severity}: {count}" for severity, count in active.items())
        lines.extend(["", "Ações:"])
        lines.extend(f"- {status}: {count}" for status, count in sorted(actions.items()))
        return self._deliver("weekly_report", f"Relatório Semanal - {now:%d/%m/%Y}", "\n".join(lines), recipients)

    def check_and_send_critical_alerts(self, db: Session, now: Optional[datetime] = None) -> int:
        """Send one alert per insight type for active critical insights not yet notified.

        Returns the number of insights covered by successful sends.
        """
        now = now or datetime.utcnow()
        try:
            repo = InsightRepository(db)
            pending = [i for i in repo.list_active_critical(now) if not i.details.get("notified_at")]
        except Exception as e:
            logger.error(f"Failed to load critical insights: {type(e).__name__}: {str(e)}")
            return 0
        if not pending:
            return 0

        by_type: Dict[str, List[Insight]] = {}
        for insight in pending:
            by_type.setdefault(insight.insight_type, []).append(insight)

        sent = 0
        for insight_type, insights in by_type.items():
            ok = self.send_critical_alert(
                db,
                f"{len(insights)} alerta(s) crítico(s) - {insight_type}",
                f"Foram detectados {len(insights)} alerta(s) crítico(s) que requerem atenção imediata.",
                [{"title": i.title, "description": i.summary, "severity": "critical"} for i in insights],
            )
            if not ok:
                continue
            try:
                repo.mark_notified([i.id for i in insights], now)
            except Exception as e:
                logger.error(f"Failed to mark insights notified: {type(e).__name__}: {str(e)}")
            sent += len(insights)
        return sent

    def run_scheduled(self, db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Called on each scheduler tick: critical alerts plus any due digest."""
        now = now or datetime.utcnow()
        result: Dict[str, Any] = {"critical_alerts": self.check_and_send_critical_alerts(db, now)}
        config = get_notification_config(db)
        # One digest per day at most, however often the ticker fires inside the window.
        if should_send_daily_summary(config, now) and self._last_daily != now.date():
            result["daily_summary"] = self.send_daily_summary(db, now)
            if result["daily_summary"]:
                self._last_daily = now.date()
        if should_send_weekly_report(config, now) and self._last_weekly != now.date():
            result["weekly_report"] = self.send_weekly_report(db, now)
            if result["weekly_report"]:
                self._last_weekly = now.date()
        return result
