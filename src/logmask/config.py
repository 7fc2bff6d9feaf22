"""Settings for building a masking adapter from YAML or a plain dict.

Example YAML:

    masking:
      enabled: true
      failure_mode: pass_through    # or drop
      on_invalid_rule: skip         # or fail
      max_depth: 32
      diagnostics_logger: logmask.diagnostics
    rules:
      include_defaults: true
      paths:
        - my-rules.yml
      inline:
        - id: email
          pattern: '[\\w.+-]+@[\\w-]+\\.[\\w.]+'
          token: '[EMAIL]'
          priority: 10

The whole document may also be nested under a ``logmask`` key. Environment
variables LOGMASK_ENABLED, LOGMASK_FAILURE_MODE, LOGMASK_ON_INVALID_RULE and
LOGMASK_RULE_PATHS override the file.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml

from logmask.adapter import DIAGNOSTICS_LOGGER, MaskingAdapter
from logmask.engine import MaskingEngine
from logmask.models import FailureMode, InvalidRulePolicy
from logmask.registry import RuleSet, load_rule_set

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass
class MaskingSettings:
    """Configuration for the masking pipeline."""

    enabled: bool = True
    failure_mode: FailureMode = FailureMode.PASS_THROUGH
    on_invalid_rule: InvalidRulePolicy = InvalidRulePolicy.SKIP
    max_depth: int = 32
    diagnostics_logger: str = DIAGNOSTICS_LOGGER
    rule_paths: list[str] = field(default_factory=list)
    inline_rules: list[dict[str, Any]] = field(default_factory=list)
    # None loads the defaults only when no other rules are configured
    include_defaults: Optional[bool] = None


def _parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"Invalid boolean for {name}: {value!r}")


def load_settings(
    data: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> MaskingSettings:
    """
    Build settings from a config dict and environment overrides.

    Args:
        data: Parsed configuration, optionally nested under "logmask"
        environ: Environment to read overrides from (os.environ if None)

    Returns:
        MaskingSettings

    Raises:
        ValueError: If an option has an invalid value
    """
    data = dict(data or {})
    if "logmask" in data:
        data = dict(data["logmask"] or {})
    environ = os.environ if environ is None else environ

    masking = data.get("masking") or {}
    rules = data.get("rules") or {}

    settings = MaskingSettings(
        enabled=_parse_bool(masking.get("enabled", True), "masking.enabled"),
        failure_mode=FailureMode(masking.get("failure_mode", FailureMode.PASS_THROUGH.value)),
        on_invalid_rule=InvalidRulePolicy(
            masking.get("on_invalid_rule", InvalidRulePolicy.SKIP.value)
        ),
        max_depth=int(masking.get("max_depth", 32)),
        diagnostics_logger=masking.get("diagnostics_logger", DIAGNOSTICS_LOGGER),
        rule_paths=[str(p) for p in rules.get("paths", [])],
        inline_rules=list(rules.get("inline", [])),
        include_defaults=rules.get("include_defaults"),
    )

    if "LOGMASK_ENABLED" in environ:
        settings.enabled = _parse_bool(environ["LOGMASK_ENABLED"], "LOGMASK_ENABLED")
    if "LOGMASK_FAILURE_MODE" in environ:
        settings.failure_mode = FailureMode(environ["LOGMASK_FAILURE_MODE"])
    if "LOGMASK_ON_INVALID_RULE" in environ:
        settings.on_invalid_rule = InvalidRulePolicy(environ["LOGMASK_ON_INVALID_RULE"])
    if environ.get("LOGMASK_RULE_PATHS"):
        settings.rule_paths = [
            p for p in environ["LOGMASK_RULE_PATHS"].split(os.pathsep) if p
        ]

    if settings.max_depth <= 0:
        raise ValueError(f"max_depth must be positive, got {settings.max_depth}")

    return settings


def load_settings_file(
    path: Union[str, Path],
    environ: Optional[Mapping[str, str]] = None,
) -> MaskingSettings:
    """Load settings from a YAML file."""
    with open(path, "r", encoding="utf-8") as f:
        return load_settings(yaml.safe_load(f) or {}, environ=environ)


def build_rule_set_from_settings(settings: MaskingSettings) -> RuleSet:
    """Load the rules the settings point at."""
    return load_rule_set(
        paths=settings.rule_paths,
        inline=settings.inline_rules,
        include_defaults=settings.include_defaults,
        on_invalid=settings.on_invalid_rule,
    )


def build_adapter(settings: Optional[MaskingSettings] = None) -> MaskingAdapter:
    """
    Create a fully configured adapter.

    Args:
        settings: Masking settings, defaults if None

    Returns:
        MaskingAdapter wrapping an engine over the configured rules
    """
    settings = settings or MaskingSettings()
    rule_set = build_rule_set_from_settings(settings)
    engine = MaskingEngine(rule_set, max_depth=settings.max_depth)
    logger.info(
        f"Masking adapter ready: {len(rule_set)} rules, "
        f"failure_mode={settings.failure_mode.value}, enabled={settings.enabled}"
    )
    return MaskingAdapter(
        engine,
        failure_mode=settings.failure_mode,
        enabled=settings.enabled,
        diagnostics=logging.getLogger(settings.diagnostics_logger),
    )
