"""
Structured logging configuration for shell-descriptor.

Every record is emitted as a single JSON object on stderr so stdout stays
free for command output.
"""

import json
import logging
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

_RESERVED_RECORD_FIELDS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "getMessage",
    "exc_info",
    "exc_text",
    "stack_info",
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_FIELDS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class DescriptorLogger:
    """Structured logger for descriptor loading events."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(f"shell_descriptor.{name}")
        self.logger.propagate = False
        self._setup_logger()
        self.context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.WARNING)

    def set_context(self, source: Optional[str] = None, **kwargs) -> None:
        """Set context fields attached to every following event."""
        self.context = {k: v for k, v in kwargs.items() if v is not None}
        if source:
            self.context["source"] = source

    def clear_context(self) -> None:
        self.context.clear()

    def _log(self, level: str, event_type: str, **kwargs) -> None:
        log_data = {"event_type": event_type, **self.context, **kwargs}
        getattr(self.logger, level)(event_type, extra=log_data)

    def info(self, event_type: str, **kwargs) -> None:
        self._log("info", event_type, **kwargs)

    def warning(self, event_type: str, **kwargs) -> None:
        self._log("warning", event_type, **kwargs)

    def debug(self, event_type: str, **kwargs) -> None:
        self._log("debug", event_type, **kwargs)


# Global logger instances
_loader_logger = DescriptorLogger("loader")
_pins_logger = DescriptorLogger("pins")
_provisioning_logger = DescriptorLogger("provisioning")

_ALL_LOGGERS: List[DescriptorLogger] = [
    _loader_logger,
    _pins_logger,
    _provisioning_logger,
]


@contextmanager
def descriptor_context(source: str) -> Iterator[None]:
    """Tag loader and pin events with the descriptor being loaded."""
    for descriptor_logger in (_loader_logger, _pins_logger):
        descriptor_logger.set_context(source=source)
    try:
        yield
    finally:
        for descriptor_logger in (_loader_logger, _pins_logger):
            descriptor_logger.clear_context()


def log_descriptor_loaded(
    source: str, source_format: str, dependency_count: int, toolchain_pin: str
) -> None:
    """Log a successfully loaded descriptor."""
    _loader_logger.info(
        "descriptor_loaded",
        source=source,
        source_format=source_format,
        dependency_count=dependency_count,
        toolchain_pin=toolchain_pin,
    )


def log_duplicates_collapsed(source: str, duplicates: List[str]) -> None:
    """Duplicate names are harmless, so this is informational only."""
    _loader_logger.info(
        "duplicate_dependencies_collapsed",
        source=source,
        duplicates=duplicates,
        duplicate_count=len(duplicates),
    )


def log_pin_resolved(reference: str, kind: str, location: str) -> None:
    _pins_logger.debug(
        "toolchain_pin_resolved", reference=reference, kind=kind, location=location
    )


def log_environment_provisioned(
    provisioner: str, dependency_count: int, toolchain_pin: str, success: bool
) -> None:
    log_data = {
        "provisioner": provisioner,
        "dependency_count": dependency_count,
        "toolchain_pin": toolchain_pin,
        "success": success,
    }
    if success:
        _provisioning_logger.info("environment_provisioned", **log_data)
    else:
        _provisioning_logger.warning("environment_provisioning_failed", **log_data)


def configure_logging(log_level: str = "WARNING") -> None:
    """Set the level of every shell-descriptor logger."""
    level = getattr(logging, log_level.upper(), logging.WARNING)
    for descriptor_logger in _ALL_LOGGERS:
        descriptor_logger.logger.setLevel(level)
