"""Unit tests for gwt_compiler.registry."""

from pathlib import Path
from typing import Any

import pytest

from gwt_compiler.errors import RegistryError
from gwt_compiler.models import Comparison, Parameter, StepKind
from gwt_compiler.registry import compile_pattern, load_registry, registry_from_dict


def _registry(*templates: dict[str, Any], **extra: Any) -> dict[str, Any]:
    return {"module": "shop.operations", "templates": list(templates), **extra}


class TestLoadRegistry:
    def test_load_sample(self, tmp_path: Path, registry_yaml: str) -> None:
        path = tmp_path / "operations.yaml"
        path.write_text(registry_yaml)
        registry = load_registry(path)
        assert registry.module == "accounts.operations"
        assert registry.setup == "reset"
        assert registry.teardown == "reset"
        assert len(registry.templates) == 7
        assert registry.path == str(path)

    def test_templates_keep_file_order(self, registry) -> None:
        whens = registry.templates_for(StepKind.WHEN)
        assert [t.operation_id for t in whens] == ["register_user"]
        givens = registry.templates_for(StepKind.GIVEN)
        assert [t.operation_id for t in givens] == ["clear_users", "register_user"]

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(RegistryError, match="Cannot read registry"):
            load_registry(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "operations.yaml"
        path.write_text("module: [unclosed\n")
        with pytest.raises(RegistryError, match="Invalid YAML"):
            load_registry(path)

    def test_not_a_mapping(self) -> None:
        with pytest.raises(RegistryError, match="expected mapping"):
            registry_from_dict(["a"])

    def test_missing_module(self) -> None:
        with pytest.raises(RegistryError, match="Missing required key 'module'"):
            registry_from_dict({"templates": []})

    def test_module_must_be_dotted_name(self) -> None:
        with pytest.raises(RegistryError, match="dotted Python name"):
            registry_from_dict({"module": "shop/operations", "templates": []})

    def test_empty_template_list_is_valid(self) -> None:
        registry = registry_from_dict(_registry())
        assert registry.templates == ()
        assert registry.setup is None


class TestTemplates:
    def test_trailing_period_and_whitespace_normalized(self) -> None:
        registry = registry_from_dict(_registry(
            {"kind": "GIVEN", "pattern": "an  empty   cart.", "operation": "empty_cart"},
        ))
        assert registry.templates[0].pattern == "an empty cart"

    def test_unknown_kind(self) -> None:
        with pytest.raises(RegistryError, match="invalid kind 'IF'"):
            registry_from_dict(_registry({"kind": "IF", "pattern": "x", "operation": "x"}))

    def test_unknown_key(self) -> None:
        with pytest.raises(RegistryError, match="unknown key"):
            registry_from_dict(_registry(
                {"kind": "WHEN", "pattern": "x", "operation": "x", "priority": 1},
            ))

    def test_duplicate_pattern(self) -> None:
        template = {"kind": "WHEN", "pattern": "x", "operation": "x"}
        with pytest.raises(RegistryError, match="duplicate WHEN pattern"):
            registry_from_dict(_registry(template, dict(template, operation="y")))

    def test_same_pattern_different_kind_allowed(self) -> None:
        registry = registry_from_dict(_registry(
            {"kind": "GIVEN", "pattern": "x", "operation": "x"},
            {"kind": "WHEN", "pattern": "x", "operation": "x"},
        ))
        assert len(registry.templates) == 2

    def test_then_only_keys_rejected_elsewhere(self) -> None:
        with pytest.raises(RegistryError, match="only applies to THEN"):
            registry_from_dict(_registry(
                {"kind": "WHEN", "pattern": "x", "operation": "x", "compare": "eq"},
            ))

    def test_param_types(self) -> None:
        registry = registry_from_dict(_registry({
            "kind": "WHEN",
            "pattern": 'I add {qty} of "{sku}"',
            "operation": "add_item",
            "params": {"qty": "number"},
        }))
        template = registry.templates[0]
        assert template.param_types == (("qty", "number"), ("sku", "any"))
        assert template.placeholders == ["qty", "sku"]
        assert template.type_of("qty") == "number"

    def test_unknown_param_type(self) -> None:
        with pytest.raises(RegistryError, match="unknown type 'int'"):
            registry_from_dict(_registry({
                "kind": "WHEN", "pattern": "I add {qty}", "operation": "add",
                "params": {"qty": "int"},
            }))

    def test_params_not_in_pattern(self) -> None:
        with pytest.raises(RegistryError, match="params not in pattern: sku"):
            registry_from_dict(_registry({
                "kind": "WHEN", "pattern": "I add {qty}", "operation": "add",
                "params": {"sku": "string"},
            }))

    def test_repeated_placeholder(self) -> None:
        with pytest.raises(RegistryError, match="repeated: x"):
            registry_from_dict(_registry(
                {"kind": "WHEN", "pattern": "{x} and {x}", "operation": "add"},
            ))

    def test_keyword_placeholder(self) -> None:
        with pytest.raises(RegistryError, match="Python keywords: class"):
            registry_from_dict(_registry(
                {"kind": "WHEN", "pattern": "a {class} item", "operation": "add"},
            ))


class TestThenTemplates:
    def test_single_placeholder_is_expected(self) -> None:
        registry = registry_from_dict(_registry({
            "kind": "THEN", "pattern": "the cart has {count} items", "operation": "item_count",
        }))
        template = registry.templates[0]
        assert template.expected == "count"
        assert template.comparison is Comparison.EQ

    def test_no_placeholder_defaults_to_truthy(self) -> None:
        registry = registry_from_dict(_registry({
            "kind": "THEN", "pattern": "the cart is empty", "operation": "cart_is_empty",
        }))
        assert registry.templates[0].comparison is Comparison.TRUTHY

    def test_several_placeholders_need_expected(self) -> None:
        with pytest.raises(RegistryError, match="needs 'expected'"):
            registry_from_dict(_registry({
                "kind": "THEN",
                "pattern": 'the price of "{sku}" is "{price}"',
                "operation": "price_of",
            }))

    def test_explicit_expected(self) -> None:
        registry = registry_from_dict(_registry({
            "kind": "THEN",
            "pattern": 'the price of "{sku}" is "{price}"',
            "operation": "price_of",
            "expected": "price",
        }))
        assert registry.templates[0].expected == "price"

    def test_expected_must_be_placeholder(self) -> None:
        with pytest.raises(RegistryError, match="not in the pattern"):
            registry_from_dict(_registry({
                "kind": "THEN", "pattern": "the total is {total}", "operation": "total",
                "expected": "amount",
            }))

    def test_expected_value_constant(self) -> None:
        registry = registry_from_dict(_registry({
            "kind": "THEN", "pattern": "the cart is empty", "operation": "item_count",
            "expected_value": 0,
        }))
        template = registry.templates[0]
        assert template.expected_value == Parameter("expected", 0, "number")
        assert template.comparison is Comparison.EQ

    def test_expected_and_expected_value_conflict(self) -> None:
        with pytest.raises(RegistryError, match="either 'expected' or 'expected_value'"):
            registry_from_dict(_registry({
                "kind": "THEN", "pattern": "the total is {total}", "operation": "total",
                "expected": "total", "expected_value": 3,
            }))

    def test_truthy_takes_no_expected(self) -> None:
        with pytest.raises(RegistryError, match="takes no expected value"):
            registry_from_dict(_registry({
                "kind": "THEN", "pattern": "the total is {total}", "operation": "total",
                "expected": "total", "compare": "truthy",
            }))

    def test_unknown_comparison(self) -> None:
        with pytest.raises(RegistryError, match="unknown comparison 'approx'"):
            registry_from_dict(_registry({
                "kind": "THEN", "pattern": "the total is {total}", "operation": "total",
                "compare": "approx",
            }))

    def test_explicit_compare_without_placeholder_needs_expected(self) -> None:
        with pytest.raises(RegistryError, match="needs 'expected'"):
            registry_from_dict(_registry({
                "kind": "THEN", "pattern": "the cart is empty", "operation": "count",
                "compare": "eq",
            }))

    def test_result_reserved_with_pass_result(self) -> None:
        with pytest.raises(RegistryError, match="'result' is reserved"):
            registry_from_dict(_registry({
                "kind": "THEN", "pattern": "the outcome is {result}", "operation": "check",
                "pass_result": True,
            }))


class TestCompilePattern:
    def test_literal_text_is_escaped(self) -> None:
        matcher = compile_pattern("the total is $5 (approx)")
        assert matcher.fullmatch("the total is $5 (approx)")
        assert not matcher.fullmatch("the total is $55 (approx)")

    def test_quoted_placeholder_stops_at_quote(self) -> None:
        matcher = compile_pattern('a user "{name}" exists')
        m = matcher.fullmatch('a user "bob smith" exists')
        assert m is not None
        assert m.group("name") == "bob smith"
        assert matcher.fullmatch('a user "bob" and "x" exists') is None

    def test_bare_placeholder_is_non_empty(self) -> None:
        matcher = compile_pattern("there are {count} items")
        assert matcher.fullmatch("there are  items") is None
        m = matcher.fullmatch("there are 12 items")
        assert m is not None
        assert m.group("count") == "12"

    def test_quoted_placeholder_may_be_empty(self) -> None:
        matcher = compile_pattern('the note is "{text}"')
        m = matcher.fullmatch('the note is ""')
        assert m is not None
        assert m.group("text") == ""
