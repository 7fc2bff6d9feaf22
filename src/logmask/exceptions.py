"""Exceptions raised by logmask."""

from typing import Optional


class MaskingError(Exception):
    """Base class for all masking errors."""


class InvalidPatternError(MaskingError, ValueError):
    """A rule specification could not be compiled into a usable rule."""

    def __init__(self, rule_id: str, pattern: Optional[str], reason: str) -> None:
        self.rule_id = rule_id
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid rule {rule_id!r}: {reason}")


class MaskingRuntimeError(MaskingError):
    """Masking failed while transforming a payload."""

    def __init__(self, message: str, rule_id: Optional[str] = None) -> None:
        self.rule_id = rule_id
        super().__init__(message)
