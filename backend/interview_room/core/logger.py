import json
import logging
from enum import Enum
from typing import Any

logger = logging.getLogger("interview_room.events")

# Conversation content and candidate data never reach the logs verbatim.
REDACTED_FIELDS = frozenset({
	"text",
	"transcript",
	"candidate_name",
	"candidate_resume",
	"job_description",
})


def _redact(value: Any) -> dict:
	return {"redacted": True, "length": len(str(value or ""))}


def _sanitize_value(key: str, value: Any) -> Any:
	if str(key or "").lower() in REDACTED_FIELDS:
		return _redact(value)
	if isinstance(value, Enum):
		return value.value
	if isinstance(value, (str, int, float, bool)) or value is None:
		return value
	if isinstance(value, dict):
		return {str(k): _sanitize_value(str(k), v) for k, v in value.items()}
	if isinstance(value, (list, tuple, set)):
		return [_sanitize_value(key, item) for item in value]
	return str(value)


def log_event(component: str, event: str, session_id: str, level: int = logging.INFO, **fields) -> None:
	"""One JSON line per lifecycle event, keyed by interview session."""
	payload = {
		"component": str(component or "interview_room"),
		"event": str(event or "unknown"),
		"session_id": str(session_id or ""),
	}
	for key, value in fields.items():
		payload[str(key)] = _sanitize_value(str(key), value)
	logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))
