"""Rule sets: loading, validation and overlap resolution."""

import bisect
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

import yaml
import jsonschema
from jsonschema.exceptions import best_match

from logmask.exceptions import InvalidPatternError
from logmask.models import (
    InvalidRulePolicy,
    MaskResult,
    MaskStrategy,
    Replacement,
    SelectorKind,
    Span,
)
from logmask.rules import PatternRule

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).parent
DEFAULT_RULES_PATH = PACKAGE_DIR / "patterns" / "default.yml"
SCHEMA_PATH = PACKAGE_DIR / "schemas" / "rule-schema.json"


def _rank(span: Span) -> tuple[int, int, int, str]:
    """Higher priority first, then earliest start, longest span, rule id."""
    return (-span.priority, span.start, -span.length, span.rule_id)


class RuleSet:
    """
    Ordered, immutable collection of pattern rules.

    Rules are kept in descending priority order (ties ordered by id). A rule
    set is built once and then shared read-only by every thread that logs.
    """

    def __init__(
        self,
        rules: Iterable[PatternRule] = (),
        rejected: Iterable[InvalidPatternError] = (),
    ) -> None:
        """
        Initialize rule set.

        Args:
            rules: Compiled rules, ids must be unique
            rejected: Errors for rule specifications that were skipped

        Raises:
            InvalidPatternError: If two rules share an id
        """
        by_id: dict[str, PatternRule] = {}
        for rule in rules:
            if rule.id in by_id:
                raise InvalidPatternError(rule.id, rule.pattern, "duplicate rule id")
            by_id[rule.id] = rule

        self._rules: tuple[PatternRule, ...] = tuple(
            sorted(by_id.values(), key=lambda r: (-r.priority, r.id))
        )
        self._by_id = by_id
        self.rejected: tuple[InvalidPatternError, ...] = tuple(rejected)

    def find(self, text: str) -> list[Span]:
        """
        Resolve the spans that would be masked in text.

        Every rule scans the original text. Candidate spans are ranked by
        priority, start offset, length and rule id, and accepted greedily
        unless they overlap an already accepted span.

        Args:
            text: Text to scan

        Returns:
            Non-overlapping spans sorted by start offset
        """
        candidates: list[Span] = []
        for rule in self._rules:
            candidates.extend(rule.matches(text))

        if not candidates:
            return []

        starts: list[int] = []
        accepted: list[Span] = []
        for span in sorted(candidates, key=_rank):
            if span.length == 0:
                continue
            index = bisect.bisect_left(starts, span.start)
            if index > 0 and accepted[index - 1].end > span.start:
                continue
            if index < len(accepted) and accepted[index].start < span.end:
                continue
            starts.insert(index, span.start)
            accepted.insert(index, span)

        return accepted

    def apply(self, text: str) -> tuple[str, MaskResult]:
        """
        Mask text with every rule in the set.

        Args:
            text: Text to mask

        Returns:
            Tuple of redacted text and the MaskResult describing it
        """
        spans = self.find(text)
        if not spans:
            return text, MaskResult(original_length=len(text), redacted_text=text)

        # Replace from the end so earlier offsets stay valid.
        chunks: list[str] = []
        cursor = len(text)
        for span in reversed(spans):
            chunks.append(text[span.end : cursor])
            chunks.append(self._by_id[span.rule_id].mask(text[span.start : span.end]))
            cursor = span.start
        chunks.append(text[:cursor])
        redacted = "".join(reversed(chunks))

        matched_rule_ids = tuple(dict.fromkeys(span.rule_id for span in spans))
        result = MaskResult(
            original_length=len(text),
            redacted_text=redacted,
            matched_rule_ids=matched_rule_ids,
            spans=tuple(spans),
        )
        return redacted, result

    def get(self, rule_id: str) -> Optional[PatternRule]:
        """Get rule by id."""
        return self._by_id.get(rule_id)

    @property
    def rules(self) -> tuple[PatternRule, ...]:
        """Rules in evaluation order."""
        return self._rules

    @property
    def ids(self) -> list[str]:
        """Rule ids in evaluation order."""
        return [rule.id for rule in self._rules]

    def __iter__(self) -> Iterator[PatternRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        """Return number of rules."""
        return len(self._rules)

    def __repr__(self) -> str:
        """String representation."""
        return f"RuleSet(rules={self.ids}, rejected={len(self.rejected)})"


def build_rule(data: dict[str, Any]) -> PatternRule:
    """
    Compile a single rule specification.

    Args:
        data: Rule specification as found in a rule file

    Returns:
        Compiled PatternRule

    Raises:
        InvalidPatternError: If the specification is invalid
    """
    if not isinstance(data, dict):
        raise InvalidPatternError(str(data), None, "rule specification must be a mapping")

    rule_id = str(data.get("id") or "")
    pattern = data.get("pattern")

    try:
        kind = SelectorKind(data.get("kind", SelectorKind.REGEX.value))
        strategy = MaskStrategy(data.get("strategy", MaskStrategy.FULL.value))
    except ValueError as e:
        raise InvalidPatternError(rule_id, pattern, str(e)) from e

    defaults = Replacement()
    try:
        replacement = Replacement(
            strategy=strategy,
            token=str(data.get("token", defaults.token)),
            keep_prefix=int(data.get("keep_prefix", defaults.keep_prefix)),
            keep_suffix=int(data.get("keep_suffix", defaults.keep_suffix)),
            mask_char=str(data.get("mask_char", defaults.mask_char)),
            hash_algorithm=str(data.get("hash_algorithm", defaults.hash_algorithm)),
            hash_length=int(data.get("hash_length", defaults.hash_length)),
        )
    except (TypeError, ValueError) as e:
        raise InvalidPatternError(rule_id, pattern, f"invalid replacement: {e}") from e

    rule = PatternRule(
        rule_id,
        pattern=pattern,
        replacement=replacement,
        priority=data.get("priority", 0),
        kind=kind,
        fields=data.get("fields"),
        group=data.get("group", 0),
        flags=data.get("flags", []),
        description=data.get("description", ""),
    )

    examples = data.get("examples")
    if examples:
        _validate_examples(rule, examples)

    return rule


def build_rule_set(
    specs: Iterable[dict[str, Any]],
    on_invalid: InvalidRulePolicy = InvalidRulePolicy.SKIP,
    validate_schema: bool = True,
) -> RuleSet:
    """
    Compile rule specifications into a RuleSet.

    Args:
        specs: Rule specifications, in configuration order
        on_invalid: SKIP excludes and reports bad rules, FAIL raises the first error
        validate_schema: Whether to check each specification against the rule schema

    Returns:
        RuleSet with every valid rule

    Raises:
        InvalidPatternError: On the first bad rule when on_invalid is FAIL
    """
    on_invalid = InvalidRulePolicy(on_invalid)
    rules: list[PatternRule] = []
    rejected: list[InvalidPatternError] = []
    seen: set[str] = set()

    for spec in specs:
        try:
            if validate_schema:
                _check_spec(spec)
            rule = build_rule(spec)
            if rule.id in seen:
                raise InvalidPatternError(rule.id, rule.pattern, "duplicate rule id")
        except InvalidPatternError as e:
            if on_invalid == InvalidRulePolicy.FAIL:
                raise
            logger.warning(f"Skipping rule: {e}")
            rejected.append(e)
            continue

        seen.add(rule.id)
        rules.append(rule)

    return RuleSet(rules, rejected=rejected)


def load_rule_set(
    paths: Optional[list[str]] = None,
    inline: Optional[list[dict[str, Any]]] = None,
    include_defaults: Optional[bool] = None,
    on_invalid: InvalidRulePolicy = InvalidRulePolicy.SKIP,
    validate_schema: bool = True,
) -> RuleSet:
    """
    Load rules from YAML files into a RuleSet.

    Args:
        paths: Rule files to load
        inline: Extra rule specifications appended after the files
        include_defaults: Load the packaged default rules first. If None,
                          defaults are loaded only when no paths and no
                          inline rules are given.
        on_invalid: What to do with rules that fail to compile
        validate_schema: Whether to validate files and rules against the JSON schema

    Returns:
        RuleSet with loaded rules

    Raises:
        ValueError: If a rule file is not a mapping with a rules list
        InvalidPatternError: If a rule is invalid and on_invalid is FAIL
    """
    paths = list(paths or [])
    if include_defaults is None:
        include_defaults = not paths and not inline
    if include_defaults:
        paths.insert(0, str(DEFAULT_RULES_PATH))

    specs: list[dict[str, Any]] = []
    for path_str in paths:
        path = Path(path_str)
        if not path.exists():
            logger.warning(f"Rule file not found: {path}")
            continue

        logger.info(f"Loading rules from {path}")
        data = _load_yaml_file(path)

        if validate_schema:
            _validate_schema(data)

        specs.extend(data.get("rules", []) if data else [])

    specs.extend(inline or [])

    rule_set = build_rule_set(specs, on_invalid=on_invalid, validate_schema=validate_schema)
    logger.info(f"Loaded {len(rule_set)} rules ({len(rule_set.rejected)} rejected)")
    return rule_set


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Load YAML file."""
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


@lru_cache(maxsize=1)
def _load_schema() -> Optional[dict[str, Any]]:
    """Load the rule file schema, None if it is not installed."""
    if not SCHEMA_PATH.exists():
        logger.warning("Rule schema not found, skipping validation")
        return None

    with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def _validate_schema(data: dict[str, Any]) -> None:
    """Validate the shape of a rule file; entries are checked one by one later."""
    schema = _load_schema()
    if schema is None:
        return

    file_schema = {key: value for key, value in schema.items() if key != "definitions"}
    try:
        jsonschema.validate(data, file_schema)
    except jsonschema.ValidationError as e:
        raise ValueError(f"Rule schema validation failed: {e.message}") from e


def _check_spec(data: Any) -> None:
    """
    Validate one rule entry against the rule schema.

    Raises:
        InvalidPatternError: If the entry does not conform
    """
    schema = _load_schema()
    if schema is None or not isinstance(data, dict):
        return

    validator = jsonschema.Draft7Validator(schema["definitions"]["rule"])
    error = best_match(validator.iter_errors(data))
    if error is not None:
        location = ".".join(str(p) for p in error.absolute_path)
        reason = f"{location}: {error.message}" if location else error.message
        raise InvalidPatternError(str(data.get("id") or ""), data.get("pattern"), reason)


def _validate_examples(rule: PatternRule, examples: dict[str, Any]) -> None:
    """Check that match examples are masked and nomatch examples are not."""
    errors = []

    for example in examples.get("match", []):
        if not rule.matches(example):
            errors.append(f"example should match but doesn't: '{example}'")

    for example in examples.get("nomatch", []):
        if rule.matches(example):
            errors.append(f"example should NOT match but does: '{example}'")

    if errors:
        raise InvalidPatternError(rule.id, rule.pattern, "; ".join(errors))

    logger.debug(f"Rule {rule.id} examples validated successfully")
