"""Constants for the ERP insight engine.

This module centralizes the thresholds and limits used throughout the application.
"""

# Event store
MAX_EVENT_LIMIT = 500
DEFAULT_EVENT_LIMIT = 50

# Insight rules
STOCK_CRITICAL_RATIO = 0.5
PRODUCER_PAYMENT_CRITICAL_DAYS = 7
EXPIRY_WINDOW_DAYS = 30
EXPIRY_WARNING_DAYS = 7
PAYABLE_CRITICAL_DAYS = 7
NC_MIN_OPEN_DAYS = 7
NC_CRITICAL_DAYS = 14
PURCHASE_MIN_PENDING_DAYS = 3
PURCHASE_WARNING_DAYS = 5
RELATED_EVENT_LOOKBACK = 10
DEFAULT_INSIGHT_LIMIT = 50
MAX_INSIGHT_LIMIT = 200

# Context builder
MAX_CONTEXT_EVENTS = 50
MAX_CONTEXT_INSIGHTS = 20
DEFAULT_CONTEXT_MAX_CHARS = 24000
CHARS_PER_TOKEN = 4

# Observability buffers
MAX_METRIC_SAMPLES = 10000
MAX_LATENCY_RECORDS = 5000
MAX_ERROR_RECORDS = 1000

# Rate limits (requests per window)
RATE_LIMIT_WINDOW_SECONDS = 60
RATE_LIMITS = {
    "chat": 30,
    "insights": 60,
    "actions": 20,
    "config": 10,
    "default": 100,
}

# Scheduling
DEFAULT_INSIGHT_CHECK_INTERVAL_SEC = 900
DEFAULT_NOTIFICATION_CHECK_INTERVAL_SEC = 60
WEEKLY_REPORT_HOUR = 8
NOTIFICATION_WINDOW_MINUTES = 5
DEFAULT_NOTIFICATION_TIMEOUT_SEC = 5

# Stats
STATS_EVENT_WINDOW_DAYS = 30

# Config keys
NOTIFICATION_CONFIG_KEY = "email_notifications"
