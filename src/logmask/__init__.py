"""
logmask: mask sensitive data in log output with linear-time RE2 patterns.

Rules are compiled once into an immutable RuleSet, applied by the
MaskingEngine and wired into the stdlib logging pipeline by the
MaskingAdapter, its MaskingFilter and MaskingFormatter.
"""

__version__ = "0.1.0"

from logmask.models import FailureMode, MaskResult, MaskStrategy, Replacement, SelectorKind, Span
from logmask.exceptions import InvalidPatternError, MaskingError, MaskingRuntimeError
from logmask.rules import PatternRule
from logmask.registry import RuleSet, build_rule, build_rule_set, load_rule_set
from logmask.engine import MaskingEngine
from logmask.adapter import MaskingAdapter, MaskingFilter, MaskingFormatter, install_filter
from logmask.config import MaskingSettings, build_adapter, load_settings, load_settings_file

__all__ = [
    "FailureMode",
    "MaskResult",
    "MaskStrategy",
    "Replacement",
    "SelectorKind",
    "Span",
    "InvalidPatternError",
    "MaskingError",
    "MaskingRuntimeError",
    "PatternRule",
    "RuleSet",
    "build_rule",
    "build_rule_set",
    "load_rule_set",
    "MaskingEngine",
    "MaskingAdapter",
    "MaskingFilter",
    "MaskingFormatter",
    "install_filter",
    "MaskingSettings",
    "build_adapter",
    "load_settings",
    "load_settings_file",
]
