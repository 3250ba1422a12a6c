"""Insight engine: events, rules, insights, actions and context."""

from erpinsight.engine.events import emit_event, emit_events, get_recent_events
from erpinsight.engine.insights import (
    run_all_insight_checks,
    dismiss_insight,
    resolve_insight,
    list_insights,
    expire_stale_insights,
)
from erpinsight.engine.actions import propose_action, approve_action, reject_action, execute_action, list_actions
from erpinsight.engine.context import build_context, format_context_for_prompt
from erpinsight.engine.scheduler import InsightCheckScheduler

__all__ = [
    "emit_event",
    "emit_events",
    "get_recent_events",
    "run_all_insight_checks",
    "dismiss_insight",
    "resolve_insight",
    "list_insights",
    "expire_stale_insights",
    "propose_action",
    "approve_action",
    "reject_action",
    "execute_action",
    "list_actions",
    "build_context",
    "format_context_for_prompt",
    "InsightCheckScheduler",
]
