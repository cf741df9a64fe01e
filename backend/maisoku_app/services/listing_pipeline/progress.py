"""
Pipeline progress events.

Each stage publishes structured events (stage, processed, total) to a
per-session channel. Presentation code (the SSE endpoint) reads them by
index; stages never touch presentation state directly.
"""

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from maisoku_app.config import Config

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    UPLOAD = "upload"
    DETECT = "detect"
    GROUP = "group"
    EXTRACT = "extract"
    IMAGES = "images"
    PUBLISH = "publish"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    """One immutable progress update."""
    session_id: str
    stage: str
    processed: int = 0
    total: int = 0
    message: str = ""
    level: str = "info"  # info | warn | error | success
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def is_terminal(self) -> bool:
        return self.stage in (Stage.COMPLETE.value, Stage.ERROR.value)

    def to_dict(self) -> Dict:
        return asdict(self)

    def to_sse(self) -> str:
        return f"event: {self.stage}\ndata: {json.dumps(self.to_dict(), ensure_ascii=False)}\n\n"


class ProgressChannel:
    """
    Thread-safe, append-only event log keyed by session.

    Producers call `publish`; consumers poll `events_since` with the
    index they last saw. A finished session's log is kept for
    `retention_seconds` after its terminal event so late readers can
    still replay it, then dropped the next time a session is opened or
    published to.
    """

    def __init__(self, retention_seconds: Optional[float] = None):
        self.retention_seconds = (
            Config.PROGRESS_RETENTION_SECONDS if retention_seconds is None else retention_seconds
        )
        self._events: Dict[str, List[ProgressEvent]] = {}
        self._closed_at: Dict[str, float] = {}  # session -> monotonic time of close
        self._lock = threading.Lock()

    def _expire(self):
        """Drop logs closed longer than the retention period. Caller holds the lock."""
        now = time.monotonic()
        expired = [
            session_id for session_id, closed_at in self._closed_at.items()
            if now - closed_at >= self.retention_seconds
        ]
        for session_id in expired:
            self._events.pop(session_id, None)
            self._closed_at.pop(session_id, None)
        if expired:
            logger.debug(f"Released progress logs of {len(expired)} finished session(s)")

    def open(self, session_id: str):
        """Start a fresh log for a new batch under `session_id`."""
        with self._lock:
            self._expire()
            self._events[session_id] = []
            self._closed_at.pop(session_id, None)

    def publish(
        self,
        session_id: str,
        stage: str,
        processed: int = 0,
        total: int = 0,
        message: str = "",
        level: str = "info"
    ) -> ProgressEvent:
        stage_value = stage.value if isinstance(stage, Stage) else stage
        event = ProgressEvent(
            session_id=session_id,
            stage=stage_value,
            processed=processed,
            total=total,
            message=message,
            level=level
        )
        with self._lock:
            self._expire()
            self._events.setdefault(session_id, []).append(event)
            if event.is_terminal:
                self._closed_at[session_id] = time.monotonic()
        return event

    def events_since(self, session_id: str, index: int = 0) -> List[ProgressEvent]:
        with self._lock:
            return list(self._events.get(session_id, [])[index:])

    def close(self, session_id: str):
        """Mark a session finished without publishing a terminal event."""
        with self._lock:
            self._events.setdefault(session_id, [])
            self._closed_at[session_id] = time.monotonic()

    def is_closed(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._closed_at

    def has_session(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._events


class NullProgressChannel(ProgressChannel):
    """Channel that drops every event."""

    def publish(self, session_id: str, stage: str, processed: int = 0, total: int = 0,
                message: str = "", level: str = "info") -> Optional[ProgressEvent]:
        return None
