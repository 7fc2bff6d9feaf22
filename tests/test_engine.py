"""Tests for the core engine."""

from collections import namedtuple

import pytest
from prometheus_client import REGISTRY

from logmask import MaskingEngine, MaskingRuntimeError, PatternRule, Replacement, RuleSet, load_rule_set
from logmask.models import MaskStrategy, SelectorKind

CARD = Replacement(strategy=MaskStrategy.PARTIAL, keep_prefix=4, keep_suffix=4)


@pytest.fixture
def rule_set():
    """Create a small rule set."""
    return RuleSet(
        [
            PatternRule("card", r"\d{16}", CARD, priority=5),
            PatternRule("email", r"[\w.+-]+@[\w-]+\.[\w.]+", Replacement(token="[EMAIL]"), priority=10),
        ]
    )


@pytest.fixture
def engine(rule_set):
    """Create engine instance."""
    return MaskingEngine(rule_set)


class BrokenRuleSet:
    """Rule set stand-in that fails on every call."""

    def __iter__(self):
        return iter(())

    def apply(self, text):
        raise RuntimeError(f"boom on {text}")


def redactions(rule_id: str) -> float:
    return REGISTRY.get_sample_value("logmask_redactions_total", {"rule_id": rule_id}) or 0.0


class TestApply:
    """Tests for masking plain strings."""

    def test_apply_string(self, engine):
        """Test masking a single string."""
        result = engine.apply("card 1234567812345678 ok")

        assert result.redacted_text == "card 1234********5678 ok"
        assert result.matched_rule_ids == ("card",)

    def test_apply_counts_redactions(self, engine):
        """Test that every applied span increments the counter."""
        before = redactions("email")
        engine.apply("a@b.com and c@d.com")

        assert redactions("email") == before + 2

    def test_unexpected_error_wrapped(self):
        """Test that unexpected failures surface as MaskingRuntimeError."""
        engine = MaskingEngine(BrokenRuleSet())

        with pytest.raises(MaskingRuntimeError, match="RuntimeError") as exc_info:
            engine.apply("secret text")

        assert "secret text" not in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, RuntimeError)


class TestMaskPayload:
    """Tests for masking structured payloads."""

    def test_mask_string_payload(self, engine):
        """Test plain string payload."""
        assert engine.mask("mail a@b.com") == "mail [EMAIL]"

    def test_mask_dict_values_only(self, engine):
        """Test that keys are kept and values masked."""
        payload = {"user": "bob", "card": "1234567812345678", "contact": "a@b.com"}
        masked = engine.mask(payload)

        assert list(masked) == ["user", "card", "contact"]
        assert masked == {"user": "bob", "card": "1234********5678", "contact": "[EMAIL]"}

    def test_keys_never_masked(self, engine):
        """Test sensitive-looking keys are left alone."""
        masked = engine.mask({"a@b.com": "a@b.com"})
        assert masked == {"a@b.com": "[EMAIL]"}

    def test_nested_structures(self, engine):
        """Test nested dicts, lists and tuples."""
        payload = {
            "order": {"cards": ["1234567812345678", "no card"], "meta": ("a@b.com", 3)},
            "count": 2,
        }
        masked = engine.mask(payload)

        assert masked["order"]["cards"] == ["1234********5678", "no card"]
        assert masked["order"]["meta"] == ("[EMAIL]", 3)
        assert isinstance(masked["order"]["meta"], tuple)
        assert masked["count"] == 2
        assert list(masked) == ["order", "count"]

    def test_original_payload_untouched(self, engine):
        """Test that masking returns a copy."""
        payload = {"card": "1234567812345678"}
        engine.mask(payload)
        assert payload == {"card": "1234567812345678"}

    def test_other_values_unchanged(self, engine):
        """Test leaves no rule matches."""
        assert engine.mask(42) == 42
        assert engine.mask(None) is None
        assert engine.mask({"n": 1.5, "flag": True}) == {"n": 1.5, "flag": True}

    def test_numbers_masked_as_text(self, engine):
        """Test that numeric leaves are scanned like strings."""
        masked = engine.mask({"card": 1234567812345678, "qty": 2, "ratio": 0.5, "ok": True})

        assert masked == {"card": "1234********5678", "qty": 2, "ratio": 0.5, "ok": True}

    def test_named_tuple_keeps_type(self, engine):
        """Test tuple subclasses are rebuilt with their own type."""
        Contact = namedtuple("Contact", ["name", "email"])

        masked = engine.mask([Contact("bob", "a@b.com")])

        assert masked == [Contact("bob", "[EMAIL]")]
        assert type(masked[0]) is Contact

    def test_depth_limit(self, rule_set):
        """Test excessive nesting."""
        engine = MaskingEngine(rule_set, max_depth=2)

        with pytest.raises(MaskingRuntimeError, match="nesting"):
            engine.mask({"a": {"b": {"c": "x"}}})

    def test_reference_cycle(self, engine):
        """Test self-referencing payload."""
        payload = {"name": "loop"}
        payload["self"] = payload

        with pytest.raises(MaskingRuntimeError, match="cycle"):
            engine.mask(payload)

    def test_shared_reference_is_not_cycle(self, engine):
        """Test the same list used twice."""
        shared = ["a@b.com"]
        assert engine.mask({"a": shared, "b": shared}) == {"a": ["[EMAIL]"], "b": ["[EMAIL]"]}

    def test_idempotent_payload(self):
        """Test masking masked payloads changes nothing."""
        engine = MaskingEngine(load_rule_set())
        payload = {
            "request": "GET /login?password=hunter2&user=bob",
            "body": '{"token": "abc", "n": 1}',
        }
        once = engine.mask(payload)

        assert once["request"] == "GET /login?password=<MASKED>&user=bob"
        assert once["body"] == '{"token": "<MASKED>", "n": 1}'
        assert engine.mask(once) == once


class TestFieldRules:
    """Tests for field selectors applied to mapping keys."""

    @pytest.fixture
    def default_engine(self):
        """Create engine over the packaged rules."""
        return MaskingEngine(load_rule_set())

    def test_flat_mapping(self, default_engine):
        """Test values of sensitive keys are replaced whole."""
        masked = default_engine.mask({"password": "hunter2", "token": 12345, "user": "bob"})

        assert masked == {"password": "<MASKED>", "token": "<MASKED>", "user": "bob"}
        assert list(masked) == ["password", "token", "user"]

    def test_nested_mapping(self, default_engine):
        """Test sensitive keys at any depth, including container values."""
        payload = {
            "request": {"auth": {"client_secret": "s3cr3t", "scope": "read"}},
            "items": [{"api_key": "k-1"}, {"name": "x"}],
            "secret": {"a": 1},
        }
        masked = default_engine.mask(payload)

        assert masked["request"] == {"auth": {"client_secret": "<MASKED>", "scope": "read"}}
        assert masked["items"] == [{"api_key": "<MASKED>"}, {"name": "x"}]
        assert masked["secret"] == "<MASKED>"

    def test_empty_value_untouched(self, default_engine):
        """Test empty strings are left alone, as in text."""
        assert default_engine.mask({"password": ""}) == {"password": ""}

    def test_field_rule_replacement_used(self):
        """Test the owning rule's replacement and counter."""
        rule_set = RuleSet(
            [
                PatternRule(
                    "pin_field",
                    kind=SelectorKind.JSON_FIELD,
                    fields=["pin"],
                    replacement=Replacement(strategy=MaskStrategy.PARTIAL, keep_suffix=1),
                )
            ]
        )
        engine = MaskingEngine(rule_set)
        before = redactions("pin_field")

        assert engine.mask({"pin": 1234}) == {"pin": "***4"}
        assert redactions("pin_field") == before + 1

    def test_ignorecase_field(self):
        """Test case-insensitive field rules match keys in any case."""
        rule_set = RuleSet(
            [
                PatternRule(
                    "auth",
                    kind=SelectorKind.FORM_FIELD,
                    fields=["authorization"],
                    flags=["IGNORECASE"],
                    replacement=Replacement(token="<MASKED>"),
                )
            ]
        )
        engine = MaskingEngine(rule_set)

        assert engine.mask({"Authorization": "Bearer x"}) == {"Authorization": "<MASKED>"}

    def test_key_matching_is_exact(self, default_engine):
        """Test keys merely containing a field name are scanned normally."""
        assert default_engine.mask({"password_hint": "pet"}) == {"password_hint": "pet"}


class TestEdgeCases:
    """Tests for edge cases."""

    def test_empty_text(self, engine):
        """Test with empty text."""
        result = engine.apply("")
        assert result.redacted_text == ""
        assert result.redaction_count == 0

    def test_very_long_text(self, engine):
        """Test with very long text."""
        text = "Plain text. " * 10000 + " 1234567812345678"
        result = engine.apply(text)
        assert result.redaction_count == 1
        assert result.redacted_text.endswith(" 1234********5678")

    def test_unicode_text(self, engine):
        """Test with unicode characters."""
        result = engine.apply("카드: 1234567812345678 입니다")
        assert result.redacted_text == "카드: 1234********5678 입니다"
