"""
SCADA Protocol Layer Configuration
==================================

Default settings shared by every driver, the polling engine and the event bus.

Values here are defaults only. Drivers take a DriverConfig and the polling
engine takes a PollingConfig, both of which fall back to these dictionaries
when a field is not given explicitly. Deploy-time values can be overridden
through environment variables.
"""

import os

# ==================== DRIVER DEFAULTS ====================

DRIVER_CONFIG = {
    "connect_timeout_s": float(os.getenv("SCADA_CONNECT_TIMEOUT_S", 5.0)),
    "response_timeout_s": float(os.getenv("SCADA_RESPONSE_TIMEOUT_S", 2.0)),
    "disconnect_timeout_s": 2.0,
}

# ==================== POLLING ENGINE ====================

POLLING_CONFIG = {
    "default_interval_s": 1.0,
    "stop_grace_period_s": float(os.getenv("SCADA_POLL_STOP_GRACE_S", 5.0)),
    "default_max_retries": 3,
    "default_retry_delay_s": 0.0,
}

# ==================== EVENT DISTRIBUTION ====================

EVENT_BUS_CONFIG = {
    "subscriber_queue_size": int(os.getenv("SCADA_EVENT_QUEUE_SIZE", 1024)),
    # Inline handler budget. Exceeding it is logged, never enforced.
    "handler_budget_s": 0.010,
}

# ==================== DIAGNOSTICS ====================

DIAGNOSTICS_CONFIG = {
    "latency_window": 256,   # Samples kept for rolling latency statistics
    "latency_percentile": 95.0,
}

# ==================== DATA QUALITY ====================

# Consecutive missed polls before a last-known value is degraded
DATA_QUALITY = {
    "uncertain_after_missed_polls": 3,
    "stale_after_missed_polls": 10,
}

# ==================== LOGGING CONFIGURATION ====================

LOGGING_CONFIG = {
    "level": os.getenv("LOG_LEVEL", "INFO"),
    "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    "file_path": os.getenv("SCADA_LOG_FILE"),
}
