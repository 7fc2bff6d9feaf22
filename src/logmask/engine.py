"""Core masking engine."""

import logging
from collections.abc import Mapping
from typing import Any, Optional

from logmask.exceptions import MaskingError, MaskingRuntimeError
from logmask.metrics import REDACTIONS
from logmask.models import MaskResult, SelectorKind
from logmask.registry import RuleSet
from logmask.rules import PatternRule

logger = logging.getLogger(__name__)


class MaskingEngine:
    """
    Applies a RuleSet to plain strings and structured payloads.

    The engine holds no mutable state besides the Prometheus counters, so a
    single instance can serve every thread of the host application.
    """

    def __init__(self, rule_set: RuleSet, max_depth: int = 32) -> None:
        """
        Initialize engine with a rule set.

        Args:
            rule_set: Rules to apply
            max_depth: Deepest nesting accepted in structured payloads
        """
        self.rule_set = rule_set
        self.max_depth = max_depth

        # Field selectors also apply to mapping keys; rules arrive in
        # priority order, so the first rule naming a field owns it.
        self._fields: dict[str, PatternRule] = {}
        self._folded_fields: dict[str, PatternRule] = {}
        for rule in rule_set:
            if rule.kind == SelectorKind.REGEX:
                continue
            folded = "IGNORECASE" in rule.flags
            for name in rule.fields:
                self._fields.setdefault(name, rule)
                if folded:
                    self._folded_fields.setdefault(name.lower(), rule)

    def apply(self, text: str) -> MaskResult:
        """
        Mask a single string.

        Args:
            text: Text to mask

        Returns:
            MaskResult with the redacted text and the rules that fired

        Raises:
            MaskingRuntimeError: If a rule fails while scanning
        """
        try:
            _, result = self.rule_set.apply(text)
        except MaskingError:
            raise
        except Exception as e:
            raise MaskingRuntimeError(f"Masking failed: {type(e).__name__}") from e

        for span in result.spans:
            REDACTIONS.labels(rule_id=span.rule_id).inc()
        return result

    def mask(self, payload: Any) -> Any:
        """
        Mask a string or a structured payload.

        Strings are masked as a whole. Numbers are masked through their text
        form and come back as strings only when a rule fired. Mappings become
        dicts with the same keys in the same order; a value whose key is named
        by a json_field or form_field rule is replaced entirely by that rule,
        other values are masked recursively. Keys are never masked. Lists and
        tuples (named tuples included) keep their type. Other values are
        returned as is.

        Args:
            payload: String, number, mapping, list or tuple

        Returns:
            Masked copy of the payload

        Raises:
            MaskingRuntimeError: On excessive nesting, reference cycles or
                                 rule failures
        """
        return self._mask(payload, 0, set())

    def field_rule(self, key: Any) -> Optional[PatternRule]:
        """Return the field rule that owns a mapping key, if any."""
        if not isinstance(key, str):
            return None
        rule = self._fields.get(key)
        if rule is None and self._folded_fields:
            rule = self._folded_fields.get(key.lower())
        return rule

    def _mask_field(self, rule: PatternRule, value: Any) -> Any:
        text = value if isinstance(value, str) else str(value)
        if not text:
            return value
        REDACTIONS.labels(rule_id=rule.id).inc()
        return rule.mask(text)

    def _mask(self, value: Any, depth: int, seen: set[int]) -> Any:
        if isinstance(value, str):
            return self.apply(value).redacted_text

        if isinstance(value, (int, float)) and not isinstance(value, bool):
            text = str(value)
            masked = self.apply(text).redacted_text
            return value if masked == text else masked

        if not isinstance(value, (Mapping, list, tuple)):
            return value

        if depth >= self.max_depth:
            raise MaskingRuntimeError(f"Payload nesting exceeds {self.max_depth} levels")

        obj_id = id(value)
        if obj_id in seen:
            raise MaskingRuntimeError("Payload contains a reference cycle")
        seen.add(obj_id)

        try:
            if isinstance(value, Mapping):
                masked_items = {}
                for key, item in value.items():
                    rule = self.field_rule(key)
                    if rule is not None:
                        masked_items[key] = self._mask_field(rule, item)
                    else:
                        masked_items[key] = self._mask(item, depth + 1, seen)
                return masked_items

            items = [self._mask(item, depth + 1, seen) for item in value]
            if type(value) in (list, tuple):
                return type(value)(items)
            if hasattr(value, "_fields"):
                return type(value)(*items)
            return type(value)(items)
        finally:
            seen.discard(obj_id)
