"""Compiled masking rules backed by the RE2 linear-time regex engine."""

import hashlib
import logging
from typing import Any, Iterable, Optional

import re2

from logmask.exceptions import InvalidPatternError, MaskingRuntimeError
from logmask.models import MaskStrategy, Replacement, SelectorKind, Span

logger = logging.getLogger(__name__)

_INLINE_FLAGS = {
    "IGNORECASE": "i",
    "MULTILINE": "m",
    "DOTALL": "s",
}

_KEYS = "{keys}"

# Group 1 is the field name, group 2 the value that gets masked.
_JSON_TEMPLATES = (
    # int, float, bool, null
    r'"({keys})"\s*:\s*([+-]?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?|true|false|null)\s*[,}]',
    # string, escaped quotes included
    r'"({keys})"\s*:\s*"((?:\\.|[^"\\])*)"',
    # flat array
    r'"({keys})"\s*:\s*\[([^\[\]]*)\]',
    # object, one nesting level
    r'"({keys})"\s*:\s*\{([^{}]*(?:\{[^{}]*\}[^{}]*)*)\}',
)
_FORM_TEMPLATES = (r"\b({keys})=([^&\s]*)",)

_FIELD_VALUE_GROUP = 2


def _compile(rule_id: str, source: str, flags: Iterable[str]) -> Any:
    """Compile a pattern with RE2, translating named flags to inline flags."""
    inline = ""
    for flag_name in flags:
        if flag_name not in _INLINE_FLAGS:
            raise InvalidPatternError(rule_id, source, f"unknown flag {flag_name!r}")
        inline += _INLINE_FLAGS[flag_name]

    if inline:
        source = f"(?{inline}){source}"

    try:
        return re2.compile(source)
    except re2.error as e:
        raise InvalidPatternError(rule_id, source, f"failed to compile: {e}") from e


def _check_replacement(rule_id: str, replacement: Replacement) -> None:
    if not isinstance(replacement.strategy, MaskStrategy):
        raise InvalidPatternError(rule_id, None, f"unknown strategy {replacement.strategy!r}")
    if replacement.keep_prefix < 0 or replacement.keep_suffix < 0:
        raise InvalidPatternError(rule_id, None, "keep_prefix and keep_suffix must be >= 0")
    if not replacement.mask_char:
        raise InvalidPatternError(rule_id, None, "mask_char must not be empty")
    if replacement.hash_length <= 0:
        raise InvalidPatternError(rule_id, None, "hash_length must be positive")
    if replacement.strategy == MaskStrategy.HASH:
        try:
            hashlib.new(replacement.hash_algorithm)
        except ValueError as e:
            raise InvalidPatternError(
                rule_id, None, f"unsupported hash algorithm {replacement.hash_algorithm!r}"
            ) from e


class PatternRule:
    """
    A single compiled matcher plus its replacement policy.

    A rule is either a plain regular expression (``SelectorKind.REGEX``) or a
    named-field selector that masks the values of JSON keys
    (``SelectorKind.JSON_FIELD``) or of ``name=value`` parameters in URIs and
    form bodies (``SelectorKind.FORM_FIELD``). Everything is compiled once in
    the constructor; a rule is read-only afterwards and may be shared between
    threads.
    """

    def __init__(
        self,
        rule_id: str,
        pattern: Optional[str] = None,
        replacement: Optional[Replacement] = None,
        priority: int = 0,
        kind: SelectorKind = SelectorKind.REGEX,
        fields: Optional[Iterable[str]] = None,
        group: int = 0,
        flags: Iterable[str] = (),
        description: str = "",
    ) -> None:
        """
        Compile a rule.

        Args:
            rule_id: Unique identifier of the rule
            pattern: Regular expression (regex rules only)
            replacement: Replacement policy, defaults to full ``***``
            priority: Higher priorities win overlapping spans
            kind: Selector kind
            fields: Field names (field selector rules only)
            group: Capture group to mask, 0 for the whole match (regex rules only)
            flags: Named regex flags (IGNORECASE, MULTILINE, DOTALL)
            description: Free-form description

        Raises:
            InvalidPatternError: If the rule cannot be compiled
        """
        if not isinstance(rule_id, str) or not rule_id:
            raise InvalidPatternError(str(rule_id), pattern, "rule id must be a non-empty string")
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise InvalidPatternError(rule_id, pattern, "priority must be an integer")
        if not isinstance(kind, SelectorKind):
            raise InvalidPatternError(rule_id, pattern, f"unknown kind {kind!r}")

        self.id = rule_id
        self.kind = kind
        self.priority = priority
        self.replacement = replacement or Replacement()
        self.flags = tuple(flags)
        self.description = description
        _check_replacement(rule_id, self.replacement)

        if kind == SelectorKind.REGEX:
            if not isinstance(pattern, str) or not pattern:
                raise InvalidPatternError(rule_id, pattern, "regex rules need a non-empty pattern")
            self.pattern = pattern
            self.fields: tuple[str, ...] = ()
            self._compiled = (_compile(rule_id, pattern, self.flags),)
            if isinstance(group, bool) or not isinstance(group, int) or group < 0:
                raise InvalidPatternError(rule_id, pattern, "group must be a non-negative integer")
            if group > self._compiled[0].groups:
                raise InvalidPatternError(
                    rule_id,
                    pattern,
                    f"group {group} out of range, pattern has {self._compiled[0].groups} groups",
                )
            self.group = group
            self._needles: tuple[str, ...] = ()
        else:
            self.fields = tuple(fields or ())
            if not self.fields or not all(isinstance(f, str) and f for f in self.fields):
                raise InvalidPatternError(rule_id, pattern, "field rules need a non-empty list of field names")
            keys = "|".join(re2.escape(f) for f in self.fields)
            templates = _JSON_TEMPLATES if kind == SelectorKind.JSON_FIELD else _FORM_TEMPLATES
            self.pattern = keys
            self._compiled = tuple(
                _compile(rule_id, template.replace(_KEYS, keys), self.flags) for template in templates
            )
            self.group = _FIELD_VALUE_GROUP
            # Cheap substring check before running the field patterns.
            if "IGNORECASE" in self.flags:
                self._needles = ()
            elif kind == SelectorKind.JSON_FIELD:
                self._needles = tuple(f'"{f}"' for f in self.fields)
            else:
                self._needles = tuple(f"{f}=" for f in self.fields)

        logger.debug(f"Compiled rule {rule_id} ({kind.value}, priority {priority})")

    def matches(self, text: str) -> list[Span]:
        """
        Find every span of text this rule would mask.

        Matches of a single pattern never overlap each other. Zero-length
        spans are dropped.

        Args:
            text: Text to scan

        Returns:
            Spans sorted by start offset

        Raises:
            MaskingRuntimeError: If the regex engine fails while scanning
        """
        if self._needles and not any(needle in text for needle in self._needles):
            return []

        spans: list[Span] = []
        try:
            for compiled in self._compiled:
                for match in compiled.finditer(text):
                    start, end = match.span(self.group)
                    if start < 0 or start == end:
                        continue
                    spans.append(Span(start, end, self.id, self.priority))
        except re2.error as e:
            raise MaskingRuntimeError(f"Rule {self.id} failed while scanning: {e}", rule_id=self.id) from e

        spans.sort(key=lambda s: (s.start, s.end))
        return spans

    def mask(self, value: str) -> str:
        """Return the replacement for a matched value."""
        return self.replacement.apply(value)

    def __repr__(self) -> str:
        return f"PatternRule(id={self.id!r}, kind={self.kind.value}, priority={self.priority})"
