from __future__ import annotations

from doc_detective.expressions import (
    contains_operators,
    evaluate_assertion,
    get_meta_value,
    replace_meta_values,
    resolve_expression,
)

CONTEXT = {
    "name": "World",
    "count": 3,
    "stdio": {"stdout": "version v42 ready", "stderr": ""},
    "response": {"body": {"items": [{"name": "first"}, {"name": "second"}]}},
}


def test_embedded_reference_is_substituted() -> None:
    assert resolve_expression("Hello {{$$name}}", {"name": "World"}) == "Hello World"


def test_missing_reference_is_left_unchanged() -> None:
    assert resolve_expression("$$missing", {}) == "$$missing"
    assert resolve_expression("value: $$nope", CONTEXT) == "value: $$nope"


def test_non_string_is_returned_as_is() -> None:
    assert resolve_expression(5, CONTEXT) == 5
    assert resolve_expression({"a": "$$name"}, CONTEXT) == {"a": "$$name"}


def test_plain_references_are_stringified() -> None:
    assert resolve_expression("$$count items", CONTEXT) == "3 items"
    assert replace_meta_values("$$response.body", CONTEXT) == '{"items": [{"name": "first"}, {"name": "second"}]}'


def test_extract_returns_first_group() -> None:
    assert resolve_expression('extract($$stdio.stdout, "v([0-9]+)")', CONTEXT) == "42"


def test_extract_without_match_is_none() -> None:
    assert resolve_expression('extract($$stdio.stdout, "nothing-here")', CONTEXT) is None


def test_jq_queries_structured_values() -> None:
    assert resolve_expression('jq($$response.body, ".items[1].name")', CONTEXT) == "second"
    assert resolve_expression('jq($$response.body, ".items | length")', CONTEXT) == 2


def test_jq_object_results_are_serialized() -> None:
    assert resolve_expression('jq($$response.body, ".items[0]")', CONTEXT) == '{"name": "first"}'


def test_meta_value_paths() -> None:
    assert get_meta_value("response.body.items[0].name", CONTEXT) == "first"
    assert get_meta_value("response.body#/items/1/name", CONTEXT) == "second"
    assert get_meta_value("response.body.items[5]", CONTEXT) is None
    assert get_meta_value("name", {}) is None


def test_contains_operators() -> None:
    assert contains_operators('jq($$a, ".b")')
    assert contains_operators("extract($$a, x)")
    assert not contains_operators("$$a == 1")


def test_assertions() -> None:
    assert evaluate_assertion('jq($$response.body, ".items | length") == 2', CONTEXT) is True
    assert evaluate_assertion('jq($$response.body, ".items | length") > 5', CONTEXT) is False
    assert evaluate_assertion("true", CONTEXT) is True
    assert evaluate_assertion("false", CONTEXT) is False
    assert evaluate_assertion("", CONTEXT) is False
    assert evaluate_assertion("$$unresolved", CONTEXT) is True


def test_plain_comparison_without_operator_call_is_not_evaluated() -> None:
    assert resolve_expression("$$code == 200", {"code": 404}) == "404 == 200"
    assert evaluate_assertion("$$code == 200", {"code": 404}) is True
