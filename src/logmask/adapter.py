"""Integration adapter between the stdlib logging pipeline and the engine.

The adapter is the only place where masking failures are caught. Depending on
the configured FailureMode a failed event is either passed through unmasked
(logging stays available, but sensitive data may leak) or dropped (nothing
leaks, but the line is lost). Either way a warning is written to the
diagnostics logger, which must not carry the masking filter itself.
"""

import logging
from collections.abc import Mapping
from typing import Any, Optional

from logmask.engine import MaskingEngine
from logmask.metrics import DROPPED_EVENTS, MASKING_FAILURES
from logmask.models import FailureMode

DIAGNOSTICS_LOGGER = "logmask.diagnostics"
DROPPED_TEXT = "<log event dropped: masking failed>"


def format_message(raw_message: Any, arguments: Any = None) -> str:
    """Merge a message with its arguments the way LogRecord.getMessage does."""
    message = str(raw_message)
    if arguments:
        message = message % arguments
    return message


def _as_text(raw_message: Any) -> str:
    try:
        return str(raw_message)
    except Exception:
        return object.__repr__(raw_message)


class MaskingAdapter:
    """Synchronous, never-raising entry point used by the host logging pipeline."""

    def __init__(
        self,
        engine: MaskingEngine,
        failure_mode: FailureMode = FailureMode.PASS_THROUGH,
        enabled: bool = True,
        diagnostics: Optional[logging.Logger] = None,
    ) -> None:
        """
        Initialize adapter.

        Args:
            engine: Engine that performs the masking
            failure_mode: PASS_THROUGH or DROP on masking failure
            enabled: When False messages are formatted but not masked
            diagnostics: Logger for internal warnings
        """
        self.engine = engine
        self.failure_mode = FailureMode(failure_mode)
        self.enabled = enabled
        self.diagnostics = diagnostics or logging.getLogger(DIAGNOSTICS_LOGGER)

    def transform(self, raw_message: Any, arguments: Any = None) -> Optional[str]:
        """
        Format and mask one log message.

        Args:
            raw_message: Message or format string
            arguments: %-style arguments (tuple or mapping)

        Returns:
            Masked message, or None when the event must be dropped
        """
        message: Optional[str] = None
        try:
            message = format_message(raw_message, arguments)
            if not self.enabled:
                return message
            if isinstance(arguments, Mapping):
                # Field rules match argument names, which formatting drops.
                message = self._format_masked(raw_message, arguments, message)
            return self.engine.apply(message).redacted_text
        except Exception as e:
            return self._recover(e, message if message is not None else _as_text(raw_message))

    def transform_payload(self, payload: Any) -> Any:
        """
        Mask a structured payload, keys untouched.

        Returns:
            Masked payload, or None when the event must be dropped
        """
        try:
            if not self.enabled:
                return payload
            return self.engine.mask(payload)
        except Exception as e:
            return self._recover(e, payload)

    def is_diagnostic(self, record: logging.LogRecord) -> bool:
        """Check if a record was emitted on the diagnostics channel."""
        name = self.diagnostics.name
        return record.name == name or record.name.startswith(name + ".")

    def _format_masked(self, raw_message: Any, arguments: Mapping, formatted: str) -> str:
        masked_args = self.engine.mask(arguments)
        try:
            return format_message(raw_message, masked_args)
        except (TypeError, ValueError):
            # A masked number no longer fits a numeric conversion.
            return formatted

    def _recover(self, error: Exception, original: Any) -> Any:
        MASKING_FAILURES.labels(mode=self.failure_mode.value).inc()
        # Diagnostics carry the error type and rule id, never the message text.
        reason = type(error).__name__
        rule_id = getattr(error, "rule_id", None)
        if rule_id:
            reason += f" in rule {rule_id}"

        if self.failure_mode == FailureMode.DROP:
            DROPPED_EVENTS.inc()
            self.diagnostics.warning(f"Masking failed, log event dropped: {reason}")
            return None

        self.diagnostics.warning(f"Masking failed, log event passed through unmasked: {reason}")
        return original


class MaskingFilter(logging.Filter):
    """Masks records in place; returns False for dropped events."""

    def __init__(self, adapter: MaskingAdapter, name: str = "") -> None:
        super().__init__(name)
        self.adapter = adapter

    def filter(self, record: logging.LogRecord) -> bool:
        if self.adapter.is_diagnostic(record):
            return True

        if isinstance(record.msg, Mapping):
            masked = self.adapter.transform_payload(record.msg)
            if masked is None:
                return False
            record.msg = masked
            if record.args:
                args = self.adapter.transform_payload(record.args)
                if args is None:
                    return False
                record.args = args
            return True

        message = self.adapter.transform(record.msg, record.args)
        if message is None:
            return False
        record.msg = message
        record.args = None
        return True


class MaskingFormatter(logging.Formatter):
    """Formatter that masks the message part of every record it renders."""

    def __init__(
        self,
        adapter: MaskingAdapter,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        style: str = "%",
        dropped_text: str = DROPPED_TEXT,
    ) -> None:
        super().__init__(fmt, datefmt, style)
        self.adapter = adapter
        self.dropped_text = dropped_text

    def format(self, record: logging.LogRecord) -> str:
        if self.adapter.is_diagnostic(record):
            return super().format(record)

        message = self.adapter.transform(record.msg, record.args)
        if message is None:
            message = self.dropped_text

        # Leave the original record alone for other handlers.
        masked = logging.makeLogRecord(record.__dict__)
        masked.msg = message
        masked.args = None
        return super().format(masked)


def install_filter(adapter: MaskingAdapter, logger: Optional[logging.Logger] = None) -> MaskingFilter:
    """
    Attach a MaskingFilter to every handler of a logger.

    Handler filters also see records propagated from child loggers. When the
    logger has no handlers the filter is attached to the logger itself.

    Args:
        adapter: Adapter used by the filter
        logger: Target logger, root logger if None

    Returns:
        The installed filter
    """
    target = logger if logger is not None else logging.getLogger()
    mask_filter = MaskingFilter(adapter)
    if target.handlers:
        for handler in target.handlers:
            handler.addFilter(mask_filter)
    else:
        target.addFilter(mask_filter)
    return mask_filter
