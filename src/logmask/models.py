"""Data models for logmask."""

import hashlib
from dataclasses import dataclass, field
from enum import Enum


class MaskStrategy(str, Enum):
    """Strategy for replacing matched text."""

    FULL = "full"
    PARTIAL = "partial"
    HASH = "hash"


class SelectorKind(str, Enum):
    """How a rule locates sensitive values."""

    REGEX = "regex"
    JSON_FIELD = "json_field"
    FORM_FIELD = "form_field"


class FailureMode(str, Enum):
    """What the adapter emits when masking fails at runtime."""

    PASS_THROUGH = "pass_through"
    DROP = "drop"


class InvalidRulePolicy(str, Enum):
    """What the loader does with a rule that cannot be compiled."""

    SKIP = "skip"
    FAIL = "fail"


LENGTH_PLACEHOLDER = "{length}"


@dataclass(frozen=True)
class Replacement:
    """Replacement policy applied to every span a rule matches."""

    strategy: MaskStrategy = MaskStrategy.FULL
    token: str = "***"
    keep_prefix: int = 0
    keep_suffix: int = 0
    mask_char: str = "*"
    hash_algorithm: str = "sha256"
    hash_length: int = 16

    def apply(self, value: str) -> str:
        """
        Build the replacement text for a matched value.

        Args:
            value: The matched text

        Returns:
            Masked text
        """
        if self.strategy == MaskStrategy.PARTIAL:
            length = len(value)
            if length <= self.keep_prefix + self.keep_suffix:
                return self.mask_char * length
            tail = value[length - self.keep_suffix :] if self.keep_suffix else ""
            hidden = length - self.keep_prefix - self.keep_suffix
            return value[: self.keep_prefix] + self.mask_char * hidden + tail

        if self.strategy == MaskStrategy.HASH:
            hasher = hashlib.new(self.hash_algorithm)
            hasher.update(value.encode("utf-8"))
            return f"[HASH:{hasher.hexdigest()[: self.hash_length]}]"

        return self.token.replace(LENGTH_PLACEHOLDER, str(len(value)))


@dataclass(frozen=True)
class Span:
    """Half-open region of text matched by a rule."""

    start: int
    end: int
    rule_id: str
    priority: int = 0

    @property
    def length(self) -> int:
        return self.end - self.start

    def overlaps(self, other: "Span") -> bool:
        """Check if two spans share at least one character."""
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True)
class MaskResult:
    """Result of masking a single string."""

    original_length: int
    redacted_text: str
    matched_rule_ids: tuple[str, ...] = ()
    spans: tuple[Span, ...] = field(default_factory=tuple)

    @property
    def redaction_count(self) -> int:
        """Return number of replaced spans."""
        return len(self.spans)

    @property
    def changed(self) -> bool:
        """Return True if any span was replaced."""
        return len(self.spans) > 0
