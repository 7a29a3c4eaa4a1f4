import threading
import time
from typing import Any

from interview_room.core.state import FailureCause


_lock = threading.Lock()
_metrics: dict[str, float] = {
    "sessions_created": 0.0,
    "sessions_active": 0.0,
    "sessions_started": 0.0,
    "sessions_connected": 0.0,
    "sessions_failed_total": 0.0,
    "transcript_messages": 0.0,
    "ws_connections_active": 0.0,
    **{f"sessions_failed_{cause.value}": 0.0 for cause in FailureCause},
    "sessions_failed_other": 0.0,
}


def increment_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = float(_metrics.get(key, 0.0)) + float(amount)


def decrement_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        next_value = float(_metrics.get(key, 0.0)) - float(amount)
        _metrics[key] = max(0.0, next_value)


def set_metric(name: str, value: float) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = max(0.0, float(value))


def record_session_failure(cause: str) -> None:
    normalized = str(cause or "").strip().lower().replace(" ", "_").replace("-", "_")
    known = {c.value for c in FailureCause}
    metric_key = f"sessions_failed_{normalized}" if normalized in known else "sessions_failed_other"
    with _lock:
        _metrics["sessions_failed_total"] = float(_metrics.get("sessions_failed_total", 0.0)) + 1.0
        _metrics[metric_key] = float(_metrics.get(metric_key, 0.0)) + 1.0


def get_metrics_snapshot(extra: dict[str, Any] | None = None) -> dict[str, Any]:
    with _lock:
        data = dict(_metrics)

    payload: dict[str, Any] = {"generated_at": time.time()}
    payload.update({key: int(value) for key, value in data.items()})

    if extra:
        payload.update(extra)
    return payload
