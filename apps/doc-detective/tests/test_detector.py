from __future__ import annotations

from typing import Any

from doc_detective.detector import (
    MAX_PATTERN_LENGTH,
    detect_tests,
    parse_object,
    parse_xml_attributes,
    replace_numeric_variables,
    safe_regex,
)
from doc_detective.file_types import get_default_file_type

MARKDOWN = """# Greeting

<!-- test {"testId": "greet"} -->
<!-- step {"runShell": "echo hello"} -->
<!-- test ignore start -->
<!-- step {"runShell": "echo ignored"} -->
<!-- test ignore end -->
<!-- step {"wait": 100} -->
<!-- test end -->

Some prose between tests.

<!-- step {"checkLink": "https://example.com"} -->
"""


def _detect(content: str, config: dict[str, Any] | None = None) -> list[dict[str, Any]]:
    return detect_tests(
        content=content,
        file_path="docs/greeting.md",
        file_type=get_default_file_type("markdown"),
        config=config if config is not None else {"detectSteps": False},
    )


def _without_ids(tests: list[dict[str, Any]]) -> list[list[dict[str, Any]]]:
    return [test["steps"] for test in tests]


def test_inline_statements_build_tests() -> None:
    tests = _detect(MARKDOWN)

    assert len(tests) == 2
    assert tests[0]["testId"] == "greet"
    assert tests[0]["steps"] == [{"runShell": "echo hello"}, {"wait": 100}]
    assert tests[1]["steps"] == [{"checkLink": "https://example.com"}]
    assert tests[1]["testId"] != "greet"


def test_detection_is_deterministic() -> None:
    first = _detect(MARKDOWN)
    second = _detect(MARKDOWN)

    assert _without_ids(first) == _without_ids(second)
    assert first[0]["testId"] == second[0]["testId"]


def test_ignored_steps_never_appear() -> None:
    for test in _detect(MARKDOWN):
        assert {"runShell": "echo ignored"} not in test["steps"]


def test_invalid_steps_are_dropped() -> None:
    content = '<!-- step {"wait": 100, "goTo": "https://example.com"} -->\n<!-- step {"wait": 50} -->\n'

    tests = _detect(content)

    assert len(tests) == 1
    assert tests[0]["steps"] == [{"wait": 50}]


def test_tests_without_steps_are_dropped() -> None:
    assert _detect('<!-- test {"testId": "empty"} -->\n<!-- test end -->\n') == []


def test_attribute_test_start_and_yaml_step() -> None:
    content = '<!-- test testId="yaml-test" detectSteps=false -->\n<!-- step runShell: echo yaml -->\n'

    tests = _detect(content)

    assert tests[0]["testId"] == "yaml-test"
    assert tests[0]["detectSteps"] is False
    assert tests[0]["steps"] == [{"runShell": "echo yaml"}]


def test_legacy_test_start_is_migrated() -> None:
    content = '<!-- test {"id": "legacy"} -->\n<!-- step {"wait": 10} -->\n'

    tests = _detect(content)

    assert tests[0]["testId"] == "legacy"
    assert tests[0]["steps"] == [{"wait": 10}]


def test_invalid_legacy_test_start_is_dropped() -> None:
    content = (
        '<!-- test {"id": "current-steps", "steps": [{"goTo": "https://example.com"}]} -->\n'
        "<!-- test end -->\n"
        '<!-- test {"id": "not-a-list", "steps": "oops"} -->\n'
        "<!-- test end -->\n"
        '<!-- test {"testId": "valid"} -->\n'
        '<!-- step {"wait": 10} -->\n'
        "<!-- test end -->\n"
    )

    tests = _detect(content)

    assert [test["testId"] for test in tests] == ["valid"]
    assert tests[0]["steps"] == [{"wait": 10}]


def test_markup_detects_steps_from_prose() -> None:
    file_type = {
        "name": "custom",
        "extensions": ["txt"],
        "inlineStatements": {},
        "markup": [
            {"name": "link", "regex": [r"visit <(https?://[^>]+)>"], "actions": ["checkLink"]},
            {
                "name": "command",
                "regex": [r"run `([^`]+)` in (\S+)"],
                "actions": [{"runShell": {"command": "$1", "workingDirectory": "$2"}}],
            },
        ],
    }
    content = "First visit <https://example.com/docs> then run `ls -la` in /tmp for details."

    tests = detect_tests(content=content, file_path="notes.txt", file_type=file_type, config={"origin": None})

    assert tests[0]["steps"] == [
        {"checkLink": "https://example.com/docs"},
        {"runShell": {"command": "ls -la", "workingDirectory": "/tmp"}},
    ]


def test_markup_batch_matches_combine_into_one_step() -> None:
    file_type = {
        "name": "custom",
        "extensions": ["txt"],
        "markup": [{"name": "cmd", "regex": r"\$ (.+)", "actions": ["runShell"], "batchMatches": True}],
    }

    tests = detect_tests(content="$ echo one\n$ echo two\n", file_path="a.txt", file_type=file_type, config={})

    assert tests[0]["steps"] == [{"runShell": "echo one\necho two"}]


def test_origin_is_attached_to_links() -> None:
    file_type = {"name": "custom", "extensions": ["txt"], "markup": [{"name": "go", "regex": r"go (/\S+)", "actions": ["goTo"]}]}

    tests = detect_tests(
        content="go /login", file_path="a.txt", file_type=file_type, config={"origin": "https://example.com"}
    )

    assert tests[0]["steps"] == [{"goTo": {"url": "/login", "origin": "https://example.com"}}]


def test_parse_object_formats() -> None:
    assert parse_object('{"a": 1}') == {"a": 1}
    assert parse_object("a: 1\nb: two") == {"a": 1, "b": "two"}
    assert parse_object('name="x" count=3 ratio=0.5 on=true nested.key=v') == {
        "name": "x",
        "count": 3,
        "ratio": 0.5,
        "on": True,
        "nested": {"key": "v"},
    }
    assert parse_object("just words") is None
    assert parse_object("[1, 2]") is None


def test_reserved_attribute_keys_are_ignored() -> None:
    assert parse_xml_attributes('__proto__.polluted=yes safe=1') == {"safe": 1}


def test_replace_numeric_variables() -> None:
    values = {"0": "full", "1": "first"}

    assert replace_numeric_variables("$1!", values) == "first!"
    assert replace_numeric_variables("$2", values) is None
    assert replace_numeric_variables({"keep": "$1", "drop": "$2", "list": ["$1", "$3"]}, values) == {
        "keep": "first",
        "list": ["first"],
    }


def test_safe_regex_rejects_bad_patterns() -> None:
    assert safe_regex("a+") is not None
    assert safe_regex("") is None
    assert safe_regex("(") is None
    assert safe_regex("a" * (MAX_PATTERN_LENGTH + 1)) is None
