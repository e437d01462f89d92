from .analytics import (
    PerformanceSummary,
    format_duration,
    per_stop_timing,
    performance_summary,
    route_metrics,
    route_stop_timings,
    route_time_breakdown,
)
from .arrival import auto_detect_arrival, detect_arrival, nearest_stop
from .status import (
    is_significantly_delayed,
    next_stop_eta,
    schedule_status,
    schedule_summary,
    status_message,
)
from .transitions import advance_stop, apply_pause, apply_stop_update, pause_stop, resume_stop

__all__ = [
    "PerformanceSummary",
    "advance_stop",
    "apply_pause",
    "apply_stop_update",
    "auto_detect_arrival",
    "detect_arrival",
    "format_duration",
    "is_significantly_delayed",
    "nearest_stop",
    "next_stop_eta",
    "pause_stop",
    "per_stop_timing",
    "performance_summary",
    "resume_stop",
    "route_metrics",
    "route_stop_timings",
    "route_time_breakdown",
    "schedule_status",
    "schedule_summary",
    "status_message",
]
