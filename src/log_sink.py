import logging
from datetime import datetime
from typing import Callable, List, Literal, Optional

from pydantic import BaseModel, Field

# The parser and structure builder report every decision through an injected
# sink instead of a module logger. Callers choose what to do with the narrative.

LogLevel = Literal["log", "info", "warn", "error", "debug"]
LogSink = Callable[..., None]

_STDLIB_LEVELS = {
    "log": logging.INFO,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "debug": logging.DEBUG,
}


def no_op_sink(message: str, level: LogLevel = "log") -> None:
    pass


def logger_sink(target: logging.Logger, stacklevel: int = 2) -> LogSink:
    """
    Adapts a stdlib logger to the sink signature.

    Records are attributed to the caller of the sink. Pass stacklevel=3 when the
    sink sits behind a CollectingSink, so records skip the forwarding frame too.
    """
    def sink(message: str, level: LogLevel = "log") -> None:
        target.log(_STDLIB_LEVELS.get(level, logging.INFO), message, stacklevel=stacklevel)
    return sink


class LogEntry(BaseModel):
    timestamp: datetime = Field(default_factory=datetime.now)
    level: LogLevel = "log"
    message: str

    def format(self) -> str:
        return f"[{self.timestamp.strftime('%H:%M:%S')}] [{self.level.upper()}] {self.message}"


class CollectingSink:
    """
    Buffers log entries for later display, keeping only the most recent `limit` entries.
    Optionally forwards every call to another sink (e.g. a stdlib logger).
    """

    def __init__(self, limit: int = 1000, forward_to: Optional[LogSink] = None):
        self.limit = limit
        self.forward_to = forward_to
        self._entries: List[LogEntry] = []

    def __call__(self, message: str, level: LogLevel = "log") -> None:
        self._entries.append(LogEntry(level=level, message=message))
        if len(self._entries) > self.limit:
            del self._entries[:len(self._entries) - self.limit]
        if self.forward_to:
            self.forward_to(message, level)

    @property
    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def messages(self, level: Optional[LogLevel] = None) -> List[str]:
        return [e.message for e in self._entries if level is None or e.level == level]

    def formatted(self) -> List[str]:
        return [e.format() for e in self._entries]

    def clear(self):
        self._entries.clear()
