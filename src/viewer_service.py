import logging
import os
import threading
import time
from typing import Callable, List, Optional, Union

from pydantic import BaseModel, Field

from cdm import CdmNode, ParseResult
from edi_parser import format_edi_segments, parse_edi
from edi_schema_models import TransactionSchema
from log_sink import CollectingSink, logger_sink
from schema_manager import SchemaManager
from structure_builder import build_hierarchical_data

logger = logging.getLogger(__name__)


class ViewerSettings(BaseModel):
    schema_dir: str = "schemas"
    debounce_seconds: float = 0.5
    log_limit: int = 1000

    @classmethod
    def from_env(cls) -> "ViewerSettings":
        """Environment variables override the defaults."""
        overrides = {}
        for field, env_var in (
            ("schema_dir", "EDI_VIEWER_SCHEMA_DIR"),
            ("debounce_seconds", "EDI_VIEWER_DEBOUNCE_SECONDS"),
            ("log_limit", "EDI_VIEWER_LOG_LIMIT"),
        ):
            value = os.environ.get(env_var)
            if value:
                overrides[field] = value
        return cls.model_validate(overrides)


class ViewerResult(BaseModel):
    """Container for one parse-and-build pass."""
    parse_result: ParseResult
    nodes: List[CdmNode] = Field(default_factory=list)
    formatted_edi: str = ''
    log_lines: List[str] = Field(default_factory=list)
    parse_ms: float = 0.0
    build_ms: float = 0.0

    @property
    def error(self) -> Optional[str]:
        return self.parse_result.error


class EdiViewerService:
    """Runs the parse → build → format pipeline for the viewer, one pass at a time."""

    def __init__(self, settings: Optional[ViewerSettings] = None, schema_manager: Optional[SchemaManager] = None):
        self.settings = settings or ViewerSettings()
        self.schema_manager = schema_manager or SchemaManager(self.settings.schema_dir)
        self._in_flight = threading.Lock()

    @property
    def is_processing(self) -> bool:
        return self._in_flight.locked()

    def process(self, edi_content: str, schema: Union[TransactionSchema, str, None]) -> Optional[ViewerResult]:
        """
        Parse EDI content and build its hierarchical view.

        Args:
            edi_content: Raw EDI text
            schema: A loaded schema, or the key of one known to the schema manager

        Returns:
            ViewerResult, or None when another pass is already running
        """
        if not self._in_flight.acquire(blocking=False):
            logger.warning("Processing already in progress, skipping.")
            return None
        try:
            return self._run(edi_content, schema)
        finally:
            self._in_flight.release()
            logger.debug("Processing pipeline finished.")

    def _run(self, edi_content: str, schema: Union[TransactionSchema, str, None]) -> ViewerResult:
        sink = CollectingSink(limit=self.settings.log_limit, forward_to=logger_sink(logger, stacklevel=3))
        try:
            if isinstance(schema, str):
                key = schema
                schema = self.schema_manager.get_schema(key)
                if schema is None:
                    error_msg = f"Schema not found: {key}"
                    sink(error_msg, 'error')
                    return ViewerResult(parse_result=ParseResult(error=error_msg), log_lines=sink.formatted())
            if schema is None:
                sink("Cannot parse: Schema not loaded.", 'error')
                return ViewerResult(parse_result=ParseResult(error="Cannot parse: Schema not loaded."), log_lines=sink.formatted())

            sink("Phase 1: Parsing raw EDI content", 'info')
            started = time.perf_counter()
            parse_result = parse_edi(edi_content, sink)
            parse_ms = (time.perf_counter() - started) * 1000
            sink(f"Parsing completed in {parse_ms:.2f}ms", 'debug')

            if not parse_result.data:
                sink("Skipping structure build: No data from parsing.", 'warn')
                return ViewerResult(parse_result=parse_result, log_lines=sink.formatted(), parse_ms=parse_ms)

            sink("Phase 2: Building hierarchical structure", 'info')
            started = time.perf_counter()
            nodes = build_hierarchical_data(parse_result.data, schema, sink)
            build_ms = (time.perf_counter() - started) * 1000
            sink(f"Structure built in {build_ms:.2f}ms", 'debug')

            sink("Phase 3: Formatting EDI display string", 'info')
            formatted = format_edi_segments(parse_result.data.segments, parse_result.data.delimiters.segment)
            return ViewerResult(
                parse_result=parse_result,
                nodes=nodes,
                formatted_edi=formatted,
                log_lines=sink.formatted(),
                parse_ms=parse_ms,
                build_ms=build_ms,
            )
        except Exception as e:
            error_msg = f"Unexpected error during processing: {e}"
            logger.error(error_msg, exc_info=True)
            sink(error_msg, 'error')
            return ViewerResult(parse_result=ParseResult(error=error_msg), log_lines=sink.formatted())


class Debouncer:
    """
    Collapses bursts of submissions into a single trailing call.

    Each submit() restarts the timer; only the last submitted value reaches the callback.
    """

    def __init__(self, delay: float, callback: Callable[[str], None]):
        self.delay = delay
        self.callback = callback
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._pending: Optional[str] = None

    def submit(self, text: str):
        with self._lock:
            if self._timer:
                self._timer.cancel()
            self._pending = text
            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()
        logger.debug(f"Input detected, debouncing operation ({int(self.delay * 1000)}ms)...")

    def _fire(self):
        with self._lock:
            text, self._pending, self._timer = self._pending, None, None
        if text is not None:
            logger.debug("Debounce finished, triggering parse & build...")
            self.callback(text)

    def flush(self):
        """Runs the pending call now, if any."""
        with self._lock:
            if self._timer:
                self._timer.cancel()
        self._fire()

    def cancel(self):
        with self._lock:
            if self._timer:
                self._timer.cancel()
            self._timer = None
            self._pending = None

    @property
    def pending(self) -> bool:
        return self._pending is not None
