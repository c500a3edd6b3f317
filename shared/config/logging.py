"""
Centralized structured logging for the relay.
Uses Python's standard logging with JSON formatting for production.

Each peer's receive loop binds its peer id to a context variable, so every
record emitted while handling that peer carries the id without threading it
through every call.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

from shared.config.settings import Settings, settings

# Peer id bound to the current task (empty outside a receive loop)
peer_id_var: ContextVar[str] = ContextVar("peer_id", default="")


def bind_peer_id(peer_id: str):
    """Bind a peer id to the current context. Returns the reset token."""
    return peer_id_var.set(peer_id)


def unbind_peer_id(token) -> None:
    """Restore the peer id context saved by bind_peer_id()."""
    peer_id_var.reset(token)


class PeerContextFilter(logging.Filter):
    """Copies the bound peer id onto every record passing the handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.peer_id = peer_id_var.get() or "-"
        return True


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Structured keyword data attached by StructuredLogger, if any."""
    return getattr(record, "extra_data", None) or {}


def _bound_peer(record: logging.LogRecord) -> str | None:
    peer_id = getattr(record, "peer_id", None)
    return peer_id if peer_id and peer_id != "-" else None


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per line, for log shippers.

    Keys: ts, level, logger, msg, plus peer (bound peer id), data (keyword
    fields), exc and src when present.
    """

    service = "signal-relay"

    def __init__(self, include_source: bool = False) -> None:
        super().__init__()
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": self.service,
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        peer_id = _bound_peer(record)
        if peer_id:
            entry["peer"] = peer_id

        data = _extra_fields(record)
        if data:
            entry["data"] = data

        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)

        if self.include_source:
            entry["src"] = f"{record.module}:{record.lineno}"

        return json.dumps(entry, default=str, ensure_ascii=False)


class DevelopmentFormatter(logging.Formatter):
    """
    Colored single-line output for a terminal.

    HH:MM:SS.mmm LEVEL [peer] logger: message  key=value key=value
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"
    DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]

        parts = [f"{self.DIM}{clock}{self.RESET}", f"{color}{record.levelname:<8}{self.RESET}"]

        peer_id = _bound_peer(record)
        if peer_id:
            # Short prefix is enough to tell peers apart in a small mesh
            parts.append(f"{self.DIM}[{peer_id[:8]}]{self.RESET}")

        parts.append(f"{record.name}: {record.getMessage()}")

        data = _extra_fields(record)
        if data:
            parts.append(" ".join(f"{self.DIM}{k}={self.RESET}{v}" for k, v in data.items()))

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger(logging.Logger):
    """
    Custom logger that supports structured data.

    Keyword arguments passed to the level methods are attached to the
    record as ``extra_data``.
    """

    def _log_with_data(
        self,
        level: int,
        msg: str,
        args: tuple,
        exc_info: Any = None,
        extra: dict | None = None,
        **kwargs: Any,
    ) -> None:
        """Log with optional structured data."""
        if not self.isEnabledFor(level):
            return
        if extra is None:
            extra = {}
        extra["extra_data"] = kwargs if kwargs else None
        super()._log(level, msg, args, exc_info=exc_info, extra=extra, stacklevel=3)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.DEBUG, msg, args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.INFO, msg, args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.WARNING, msg, args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        exc_info = kwargs.pop("exc_info", None)
        self._log_with_data(logging.ERROR, msg, args, exc_info=exc_info, **kwargs)

    def critical(self, msg: str, *args: Any, **kwargs: Any) -> None:
        exc_info = kwargs.pop("exc_info", None)
        self._log_with_data(logging.CRITICAL, msg, args, exc_info=exc_info, **kwargs)


# Set custom logger class
logging.setLoggerClass(StructuredLogger)


def setup_logging(config: Settings | None = None) -> None:
    """
    Configure logging for the application.
    Call this once at application startup.

    Args:
        config: Settings to configure from. Defaults to the environment
            settings.
    """
    config = config or settings
    log_level = logging.DEBUG if config.debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(PeerContextFilter())

    # Use appropriate formatter based on environment
    if config.environment == "production":
        formatter = StructuredFormatter(include_source=config.debug)
    else:
        formatter = DevelopmentFormatter()

    handler.setFormatter(formatter)

    # Configure root logger
    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()
    root.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """
    Get a logger instance with the given name.

    Usage:
        from shared.config.logging import get_logger
        logger = get_logger(__name__)

        logger.info("Peer admitted", peer_id=peer_id, total=3)
        logger.error("Send failed", peer_id=peer_id, exc_info=True)
    """
    return logging.getLogger(name)  # type: ignore


def mask_address(address: str | None) -> str:
    """
    Mask a remote address for logging.

    Keeps the first two octets of an IPv4 host ("10.1.x.x") so operators can
    still tell networks apart. Anything else is shortened to its first 8
    characters.
    """
    if not address:
        return "<unknown>"

    host = address.rsplit(":", 1)[0] if address.count(":") == 1 else address
    parts = host.split(".")
    if len(parts) == 4 and all(p.isdigit() for p in parts):
        return f"{parts[0]}.{parts[1]}.x.x"
    return f"{host[:8]}..." if len(host) > 8 else host


# Pre-configured loggers for common modules
relay_logger = get_logger("relay_gateway")

# Dedicated security audit logger
security_audit_logger = get_logger("security.audit")


def audit_ws_connection(
    event_type: str,
    endpoint: str,
    peer_id: str | None = None,
    remote_address: str | None = None,
    reason: str | None = None,
    **extra: Any,
) -> None:
    """
    Log WebSocket connection lifecycle events.

    Args:
        event_type: CONNECT, DISCONNECT, CONNECT_REJECTED, EVICTED
        endpoint: WebSocket path the peer connected on
        peer_id: Assigned peer id (absent for rejected handshakes)
        remote_address: Remote address (masked automatically)
        reason: Reason for event (especially for failures)
        **extra: Additional context data
    """
    log_level = logging.WARNING if event_type in ("CONNECT_REJECTED", "EVICTED") else logging.INFO

    security_audit_logger._log_with_data(
        log_level,
        f"WS_AUDIT: {event_type}",
        args=(),
        event_type=event_type,
        endpoint=endpoint,
        peer_id=peer_id,
        remote_address=mask_address(remote_address) if remote_address else None,
        reason=reason,
        **extra,
    )
