"""
Structured event emission for the import pipeline.

The pipeline never logs its milestones directly; it calls
``emitter.emit(event, correlation_id, **fields)`` on whatever emitter the
caller passed in. The API uses LoggingEventEmitter; tests use
RecordingEventEmitter to assert on what happened.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

IMPORT_STARTED = "IMPORT_STARTED"
HEADERS_MAPPED = "HEADERS_MAPPED"
ROW_FAILED = "ROW_FAILED"
IMPORT_TIMEOUT = "IMPORT_TIMEOUT"
IMPORT_DIAGNOSTICS = "IMPORT_DIAGNOSTICS"
IMPORT_FINISHED = "IMPORT_FINISHED"


class ImportEventEmitter:
    """Base emitter: drops every event."""

    def emit(self, event: str, correlation_id: Optional[str], **fields: Any) -> None:
        return None


class LoggingEventEmitter(ImportEventEmitter):
    """Writes each event as one log line: ``EVENT {json}``."""

    def __init__(self, log: Optional[logging.Logger] = None, level: int = logging.INFO):
        self.log = log or logger
        self.level = level

    def emit(self, event: str, correlation_id: Optional[str], **fields: Any) -> None:
        payload = {"correlationId": correlation_id, **fields}
        self.log.log(self.level, "%s %s", event, json.dumps(payload, default=str, sort_keys=True))


@dataclass
class EmittedEvent:
    event: str
    correlation_id: Optional[str]
    fields: Dict[str, Any]


@dataclass
class RecordingEventEmitter(ImportEventEmitter):
    events: List[EmittedEvent] = field(default_factory=list)

    def emit(self, event: str, correlation_id: Optional[str], **fields: Any) -> None:
        self.events.append(EmittedEvent(event, correlation_id, dict(fields)))

    def named(self, event: str) -> List[EmittedEvent]:
        return [item for item in self.events if item.event == event]
