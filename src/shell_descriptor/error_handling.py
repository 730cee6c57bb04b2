"""
Error handling for shell-descriptor.

Defines the exception types raised while loading environment descriptors and
the central error handler that logs failures and dispatches error callbacks.
"""

import json
import logging
import re
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional


class DescriptorError(ValueError):
    """Base class for descriptor loading failures."""


class ConfigParseError(DescriptorError):
    """The descriptor source is malformed or missing a required declaration."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        line_number: Optional[int] = None,
    ):
        self.source = source
        self.line_number = line_number
        location = ""
        if source:
            location = f" ({Path(source).name}"
            if line_number is not None:
                location += f", line {line_number}"
            location += ")"
        super().__init__(f"{message}{location}")


class MissingPinError(DescriptorError):
    """The toolchain pin reference is absent or cannot be found."""

    def __init__(
        self,
        message: str,
        reference: Optional[str] = None,
        source: Optional[str] = None,
    ):
        self.reference = reference
        self.source = source
        super().__init__(message)


class ErrorLevel(Enum):
    """Severity of a reported error."""

    WARNING = "WARNING"
    ERROR = "ERROR"


class ErrorCategory(Enum):
    """Which stage of loading or provisioning failed."""

    PARSING = "PARSING"
    VALIDATION = "VALIDATION"
    PIN_RESOLUTION = "PIN_RESOLUTION"
    PROVISIONING = "PROVISIONING"
    CONFIGURATION = "CONFIGURATION"
    FILESYSTEM = "FILESYSTEM"


@dataclass
class ErrorContext:
    """A single reported failure, as handed to callbacks."""

    level: ErrorLevel
    category: ErrorCategory
    message: str
    module: str
    function: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[Exception] = None
    traceback_info: Optional[str] = None
    hint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "where": f"{self.module}.{self.function}",
            "details": self.details,
        }
        if self.exception is not None:
            data["exception"] = type(self.exception).__name__
        if self.hint:
            data["hint"] = self.hint
        return data


# Pin sources may carry private fetch URLs with embedded credentials
_SENSITIVE_PATTERNS = [
    (re.compile(r"(https?://[^@\s/]+:)[^@\s]+@", re.I), r"\1[REDACTED]@"),
    (re.compile(r'(token["\s]*[:=]["\s]*)[A-Za-z0-9_\-+=/.]{8,}', re.I), r"\1[REDACTED]"),
    (re.compile(r'(password["\s]*[:=]["\s]*)[^\s"\']+', re.I), r"\1[REDACTED]"),
]
_SENSITIVE_KEYS = ("token", "password", "secret", "credential", "auth")


def redact(value: Any) -> Any:
    """Mask credentials in strings and (nested) mappings."""
    if isinstance(value, str):
        for pattern, replacement in _SENSITIVE_PATTERNS:
            value = pattern.sub(replacement, value)
        return value
    if isinstance(value, dict):
        return {
            key: "[REDACTED]"
            if any(s in str(key).lower() for s in _SENSITIVE_KEYS)
            else redact(item)
            for key, item in value.items()
        }
    return value


class SecureLogger:
    """Writes error contexts to stderr, redacted unless masking is off."""

    def __init__(
        self,
        name: str,
        level: int = logging.WARNING,
        mask: bool = True,
        log_format: str = "%(levelname)s %(name)s: %(message)s",
    ):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.mask = mask

        if not self.logger.handlers:
            self.logger.addHandler(logging.StreamHandler(sys.stderr))
        # Reconfiguring the handler must also change the format
        for handler in self.logger.handlers:
            handler.setFormatter(logging.Formatter(log_format))

    def log_error_context(self, context: ErrorContext):
        data = context.to_dict()
        if self.mask:
            data = redact(data)
        message = data.pop("message")
        self.logger.log(
            getattr(logging, context.level.value),
            f"{message} | {json.dumps(data, default=str)}",
        )


# Error callback type
ErrorCallback = Callable[[ErrorContext], None]


class ErrorHandler:
    """
    Central sink for loader, pin and provisioning failures.

    Every reported error is counted, logged through a SecureLogger and
    passed to the callbacks registered for its category. Callbacks
    registered without a category receive everything.
    """

    def __init__(
        self,
        logger_name: str = "shell_descriptor",
        log_level: int = logging.WARNING,
        enable_callbacks: bool = True,
        mask_sensitive_data: bool = True,
        log_format: Optional[str] = None,
    ):
        logger_options = {"log_format": log_format} if log_format else {}
        self.logger = SecureLogger(
            logger_name, log_level, mask_sensitive_data, **logger_options
        )
        self.enable_callbacks = enable_callbacks
        self.error_callbacks: Dict[Optional[ErrorCategory], List[ErrorCallback]] = {}
        self.error_stats: Dict[str, int] = {}

    def register_callback(
        self, callback: ErrorCallback, category: Optional[ErrorCategory] = None
    ):
        """
        Register a callback for one category, or for all of them when
        category is None. Registering the same callback twice is a no-op.
        """
        if not self.enable_callbacks:
            return
        callbacks = self.error_callbacks.setdefault(category, [])
        if callback not in callbacks:
            callbacks.append(callback)

    def unregister_callback(
        self, callback: ErrorCallback, category: Optional[ErrorCategory] = None
    ):
        callbacks = self.error_callbacks.get(category, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def _notify(self, context: ErrorContext):
        targets = self.error_callbacks.get(context.category, []) + self.error_callbacks.get(
            None, []
        )
        for callback in targets:
            try:
                callback(context)
            except Exception as cb_error:
                # The original error still propagates to the caller
                self.logger.logger.error(f"Error callback failed: {cb_error}")

    def handle_error(
        self,
        level: ErrorLevel,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        exception: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
        hint: Optional[str] = None,
    ) -> ErrorContext:
        """
        Record, log and dispatch one failure.

        Args:
            level: Severity
            category: Stage that failed
            message: Human readable description
            module: Reporting module
            function: Reporting function
            exception: Exception that caused the failure, if any
            details: Extra structured fields (file name, pin reference, ...)
            hint: What the user can do about it

        Returns:
            ErrorContext: The context passed to callbacks
        """
        context = ErrorContext(
            level=level,
            category=category,
            message=message,
            module=module,
            function=function,
            details=details or {},
            exception=exception,
            traceback_info=(
                "".join(traceback.format_exception(exception)) if exception else None
            ),
            hint=hint,
        )

        stat_key = f"{category.value}_{level.value}"
        self.error_stats[stat_key] = self.error_stats.get(stat_key, 0) + 1

        self.logger.log_error_context(context)
        if self.enable_callbacks:
            self._notify(context)
        return context

    def warning(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        return self.handle_error(
            ErrorLevel.WARNING, category, message, module, function, **kwargs
        )

    def error(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        return self.handle_error(
            ErrorLevel.ERROR, category, message, module, function, **kwargs
        )

    def get_error_stats(self) -> Dict[str, int]:
        """Counts keyed by '<CATEGORY>_<LEVEL>'."""
        return dict(self.error_stats)


_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def setup_error_handling(
    log_level: int = logging.WARNING,
    enable_callbacks: bool = True,
    logger_name: str = "shell_descriptor",
    mask_sensitive_data: bool = True,
    log_format: Optional[str] = None,
) -> ErrorHandler:
    """Replace the global error handler with a freshly configured one."""
    global _global_error_handler
    _global_error_handler = ErrorHandler(
        logger_name, log_level, enable_callbacks, mask_sensitive_data, log_format
    )
    return _global_error_handler


def reset_error_handler() -> None:
    """Drop the global error handler (useful for testing)."""
    global _global_error_handler
    _global_error_handler = None


def _descriptor_details(file_path: Optional[str], **fields: Any) -> Dict[str, Any]:
    details = {key: value for key, value in fields.items() if value is not None}
    if file_path is not None:
        # File name only; full paths may reveal home directories
        details["file_path"] = Path(file_path).name
    return details


_DESCRIPTOR_HINTS = {
    ErrorCategory.PARSING: "A descriptor needs a 'toolchainPin' and a 'dependencies' list",
    ErrorCategory.VALIDATION: "Dependencies are Nix attribute names such as openssl "
    "or python3Packages.pip",
    ErrorCategory.FILESYSTEM: "Check the path, its permissions and loader.max_file_size_mb",
}


def log_parsing_error(
    message: str,
    module: str,
    function: str,
    line_number: Optional[int] = None,
    file_path: Optional[str] = None,
    exception: Optional[Exception] = None,
    category: ErrorCategory = ErrorCategory.PARSING,
) -> ErrorContext:
    """
    Report a descriptor or pin sources file that cannot be loaded.

    category separates unreadable files (FILESYSTEM) and bad dependency
    names (VALIDATION) from malformed syntax (PARSING). All three surface
    to callers as ConfigParseError.
    """
    return get_error_handler().error(
        category,
        message,
        module,
        function,
        details=_descriptor_details(file_path, line_number=line_number),
        exception=exception,
        hint=_DESCRIPTOR_HINTS.get(category),
    )


def log_pin_error(
    message: str,
    module: str,
    function: str,
    reference: Optional[str] = None,
    file_path: Optional[str] = None,
    exception: Optional[Exception] = None,
) -> ErrorContext:
    """Report a toolchain pin that is missing or cannot be found."""
    return get_error_handler().error(
        ErrorCategory.PIN_RESOLUTION,
        message,
        module,
        function,
        details=_descriptor_details(file_path, reference=reference),
        exception=exception,
        hint="Path pins are relative to the descriptor; named pins come from "
        "inline 'pins' or sources.json ('niv show' lists them)",
    )
