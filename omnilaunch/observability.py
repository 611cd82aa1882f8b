"""
OMNILAUNCH Observability

Structured logging and message tracing for the launchpad.

Every log line is tagged with the component layer that wrote it and with the
launch context in force at the time: the chain doing the work, the sale it
concerns, the guid of the cross-chain message being handled and the
correlation id of the transaction that started the flow.

Traces are keyed by message guid. All spans opened for a guid share one trace
id on whichever chain they run, so a launch can be followed from the origin
chain into every mirror by the guids of the messages it sent.

    LaunchContext ──bind()──▶ LaunchLogger ──▶ StructuredHandler ──▶ stream
          │
          └──────────────────▶ Tracer.span(guid=...) ──▶ exporters

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextlib
import contextvars
import functools
import json
import logging
import sys
import threading
import time
import traceback
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, TypeVar


class LogLevel(Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class LaunchLayer(Enum):
    """Component that produced a log line or span."""
    CURVE = "curve"
    LEDGER = "ledger"
    POOL = "pool"
    PEERS = "peers"
    CODEC = "codec"
    TRANSPORT = "transport"
    MESSENGER = "messenger"
    SECURITY = "security"
    CONFIG = "config"
    CLI = "cli"


# =============================================================================
# LAUNCH CONTEXT
# =============================================================================

@dataclass(frozen=True)
class LaunchContext:
    """What the current thread of work is acting on."""
    correlation_id: str = ""
    chain_id: Optional[int] = None
    sale: str = ""
    guid: str = ""


_context: contextvars.ContextVar[LaunchContext] = contextvars.ContextVar(
    "omnilaunch_context", default=LaunchContext()
)


def current_context() -> LaunchContext:
    return _context.get()


@contextlib.contextmanager
def bind(**changes: Any) -> Iterator[LaunchContext]:
    """
    Narrow the launch context for the duration of a block.

    Unset keyword values are ignored, so callers can pass optional fields
    straight through.

    Example:
        with bind(chain_id=1, sale=str(sale.key)):
            logger.info("Sale created")
    """
    changes = {k: v for k, v in changes.items() if v is not None}
    token = _context.set(replace(_context.get(), **changes))
    try:
        yield _context.get()
    finally:
        _context.reset(token)


def generate_correlation_id() -> str:
    return f"corr-{uuid.uuid4().hex[:12]}"


def get_correlation_id() -> str:
    """The current correlation id. One is created and bound if none is set."""
    ctx = _context.get()
    if not ctx.correlation_id:
        ctx = replace(ctx, correlation_id=generate_correlation_id())
        _context.set(ctx)
    return ctx.correlation_id


# =============================================================================
# LOG EVENTS
# =============================================================================

@dataclass
class LogEvent:
    """One structured log line."""
    timestamp: str
    level: str
    logger: str
    message: str
    layer: str = ""
    operation: str = ""
    chain_id: Optional[int] = None
    sale: str = ""
    guid: str = ""
    correlation_id: str = ""
    trace_id: str = ""
    duration_ms: Optional[float] = None
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    @classmethod
    def from_record(cls, record: logging.LogRecord) -> "LogEvent":
        ctx = current_context()
        span = _active_span.get()
        event = cls(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            level=record.levelname.lower(),
            logger=record.name,
            message=record.getMessage(),
            layer=getattr(record, "layer", ""),
            operation=getattr(record, "operation", ""),
            chain_id=ctx.chain_id,
            sale=ctx.sale,
            guid=ctx.guid,
            correlation_id=ctx.correlation_id,
            trace_id=span.trace_id if span else "",
            duration_ms=getattr(record, "duration_ms", None),
            error_code=getattr(record, "error_code", ""),
            context=getattr(record, "context", {}),
        )
        if record.exc_info:
            event.exception = "".join(traceback.format_exception(*record.exc_info))
        return event

    def to_dict(self) -> Dict[str, Any]:
        """Fields that carry a value."""
        return {k: v for k, v in asdict(self).items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def to_text(self) -> str:
        where = f"@{self.chain_id}" if self.chain_id is not None else ""
        code = f" [{self.error_code}]" if self.error_code else ""
        extras = " ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.timestamp} {self.level.upper():8} {self.logger}{where}{code}: {self.message} {extras}".rstrip()


class StructuredHandler(logging.Handler):
    """Writes each record as a JSON object or a text line."""

    def __init__(self, stream: Any = None, fmt: str = "json"):
        super().__init__()
        self.stream = stream
        self.fmt = fmt

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent.from_record(record)
            line = event.to_json() if self.fmt == "json" else event.to_text()
            # Resolved per record so pytest's capture of stderr is honoured.
            stream = self.stream or sys.stderr
            stream.write(line + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)


class LaunchLogger:
    """
    Logger for one launchpad component.

    Keyword arguments to the logging methods become the line's ``context``;
    the launch context (chain, sale, guid, correlation id) is added by the
    handler from whatever is bound when the line is written.
    """

    def __init__(
        self,
        name: str,
        layer: LaunchLayer,
        level: Optional[LogLevel] = None,
        fmt: Optional[str] = None,
    ):
        from omnilaunch.config import get_config

        settings = get_config().observability
        level = level or LogLevel(settings.log_level.get())

        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"omnilaunch.{layer.value}.{name}")
        self._logger.setLevel(level.value.upper())
        if not any(isinstance(h, StructuredHandler) for h in self._logger.handlers):
            self._logger.addHandler(StructuredHandler(fmt=fmt or settings.log_format.get()))

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(level, message, exc_info=exc_info, extra={
            "layer": self.layer.value,
            "operation": operation,
            "error_code": error_code,
            "duration_ms": duration_ms,
            "context": context,
        })

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, **context)

    def error(self, message: str, error_code: str = "", exc_info: bool = False, **context: Any) -> None:
        self._log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)


def get_logger(name: str, layer: LaunchLayer) -> LaunchLogger:
    return LaunchLogger(name, layer)


# =============================================================================
# MESSAGE TRACING
# =============================================================================

@dataclass
class Span:
    """A timed unit of work inside a message trace."""
    trace_id: str
    span_id: str
    name: str
    layer: str
    chain_id: Optional[int] = None
    parent_span_id: str = ""
    start_time: float = field(default_factory=time.monotonic)
    end_time: Optional[float] = None
    status: str = "ok"
    attributes: Dict[str, Any] = field(default_factory=dict)

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def fail(self, exc: BaseException) -> None:
        self.status = "error"
        self.attributes["exception_type"] = type(exc).__name__
        self.attributes["error_code"] = getattr(exc, "code", "")
        self.attributes["status_message"] = str(exc)

    @property
    def duration_ms(self) -> float:
        return ((self.end_time or time.monotonic()) - self.start_time) * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "parent_span_id": self.parent_span_id,
            "name": self.name,
            "layer": self.layer,
            "chain_id": self.chain_id,
            "duration_ms": round(self.duration_ms, 2),
            "status": self.status,
            "attributes": self.attributes,
        }


_active_span: contextvars.ContextVar[Optional[Span]] = contextvars.ContextVar(
    "omnilaunch_span", default=None
)


def trace_id_for(guid: str) -> str:
    """Trace id shared by every span that handles the message ``guid``."""
    return guid[2:34] if guid.startswith("0x") else guid[:32]


class Tracer:
    """
    Records spans and keeps the most recent ones per trace.

    A span opened with a ``guid`` joins that message's trace. Without one it
    joins the enclosing span's trace, or starts a fresh one.
    """

    def __init__(self, history: int = 1000):
        self._lock = threading.RLock()
        self._active: Dict[str, Span] = {}
        self._finished: Deque[Span] = deque(maxlen=history)
        self._exporters: List[Callable[[Span], None]] = []

    def add_exporter(self, exporter: Callable[[Span], None]) -> None:
        self._exporters.append(exporter)

    @contextlib.contextmanager
    def span(self, name: str, layer: LaunchLayer, guid: str = "", **attributes: Any) -> Iterator[Span]:
        parent = _active_span.get()
        if guid:
            trace_id = trace_id_for(guid)
            attributes["guid"] = guid
        elif parent is not None:
            trace_id = parent.trace_id
        else:
            trace_id = uuid.uuid4().hex

        span = Span(
            trace_id=trace_id,
            span_id=uuid.uuid4().hex[:16],
            name=name,
            layer=layer.value,
            chain_id=current_context().chain_id,
            parent_span_id=parent.span_id if parent else "",
            attributes=attributes,
        )
        with self._lock:
            self._active[span.span_id] = span
        token = _active_span.set(span)
        try:
            yield span
        except BaseException as e:
            span.fail(e)
            raise
        finally:
            _active_span.reset(token)
            self._finish(span)

    def _finish(self, span: Span) -> None:
        span.end_time = time.monotonic()
        with self._lock:
            self._active.pop(span.span_id, None)
            self._finished.append(span)
            exporters = list(self._exporters)
        for exporter in exporters:
            exporter(span)

    def active_spans(self) -> List[Span]:
        with self._lock:
            return list(self._active.values())

    def trace(self, guid: str) -> List[Span]:
        """Finished spans of a message's trace, oldest first."""
        trace_id = trace_id_for(guid)
        with self._lock:
            return [s for s in self._finished if s.trace_id == trace_id]


_tracer: Optional[Tracer] = None


def get_tracer() -> Tracer:
    global _tracer
    if _tracer is None:
        _tracer = Tracer()
    return _tracer


T = TypeVar("T")


def timed_operation(
    logger: LaunchLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Time and log a ledger or messenger method.

    When the decorated function is a method of an object with a ``chain_id``,
    that chain is bound for the call so nested log lines carry it. A call
    made with no correlation id bound gets a fresh one, shared by everything
    it logs and emits. A failure is logged with the exception's error code
    and re-raised.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            chain_id = getattr(args[0], "chain_id", None) if args else None
            correlation_id = current_context().correlation_id or generate_correlation_id()
            with bind(chain_id=chain_id, correlation_id=correlation_id):
                start = time.monotonic()
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    logger._log(
                        logging.WARNING,
                        f"Operation {operation_name} failed: {e}",
                        operation=operation_name,
                        error_code=getattr(e, "code", type(e).__name__),
                        duration_ms=(time.monotonic() - start) * 1000,
                    )
                    raise
                logger._log(
                    logging.DEBUG,
                    f"Operation {operation_name} completed",
                    operation=operation_name,
                    duration_ms=(time.monotonic() - start) * 1000,
                )
                return result
        return wrapper
    return decorator
