from __future__ import annotations

from typing import Any

import pytest

from doc_detective.errors import ConfigurationError
from doc_detective.resolver import (
    is_browser_required,
    merge_openapi,
    normalize_context,
    resolve_contexts,
    resolve_tests,
)


@pytest.fixture
def config() -> dict[str, Any]:
    return {
        "environment": {
            "platform": "linux",
            "apps": [{"name": "chrome"}, {"name": "firefox"}],
        }
    }


def _spec(*tests: dict[str, Any], **extra: Any) -> dict[str, Any]:
    return {"specId": "spec", "tests": list(tests), **extra}


def test_nothing_detected_resolves_to_none(config: dict[str, Any]) -> None:
    assert resolve_tests(config, []) is None


def test_test_without_contexts_gets_single_empty_context(config: dict[str, Any]) -> None:
    resolved = resolve_tests(config, [_spec({"testId": "shell", "steps": [{"runShell": "echo hi"}]})])

    assert resolved["resolvedTestsId"]
    assert resolved["config"] is config
    test = resolved["specs"][0]["tests"][0]
    assert "steps" not in test
    assert len(test["contexts"]) == 1
    context = test["contexts"][0]
    assert context["contextId"]
    assert "platform" not in context
    assert context["unsafe"] is False
    assert context["steps"] == [{"runShell": "echo hi"}]


def test_declared_contexts_expand_per_platform_and_browser(config: dict[str, Any]) -> None:
    test = {
        "testId": "browse",
        "runOn": [{"platforms": ["linux", "mac"], "browsers": ["safari", "chrome"]}],
        "steps": [{"goTo": "https://example.com"}],
    }

    contexts = resolve_tests(config, [_spec(test)])["specs"][0]["tests"][0]["contexts"]

    assert [(context["platform"], context["browser"]["name"]) for context in contexts] == [
        ("linux", "webkit"),
        ("linux", "chrome"),
        ("mac", "webkit"),
        ("mac", "chrome"),
    ]
    assert len({context["contextId"] for context in contexts}) == 4


def test_browser_test_without_browsers_uses_installed_ones(config: dict[str, Any]) -> None:
    contexts = resolve_contexts([{"platforms": "linux"}], [{"find": "#title"}], config)

    assert contexts == [
        {"platform": "linux", "browser": {"name": "firefox"}},
        {"platform": "linux", "browser": {"name": "chrome"}},
    ]


def test_non_browser_test_expands_per_platform_only(config: dict[str, Any]) -> None:
    contexts = resolve_contexts(
        [{"platforms": ["linux", "windows"], "browsers": "chrome"}], [{"runShell": "echo hi"}], config
    )

    assert contexts == [{"platform": "linux"}, {"platform": "windows"}]


def test_duplicate_contexts_are_removed(config: dict[str, Any]) -> None:
    contexts = resolve_contexts(
        [{"platforms": "linux", "browsers": "chrome"}, {"platforms": ["linux"], "browsers": [{"name": "chrome"}]}],
        [{"click": "Submit"}],
        config,
    )

    assert contexts == [{"platform": "linux", "browser": {"name": "chrome"}}]


def test_contexts_without_platforms_use_current_platform(config: dict[str, Any]) -> None:
    assert resolve_contexts([{"browsers": "firefox"}], [{"goTo": "https://example.com"}], config) == [
        {"platform": "linux", "browser": {"name": "firefox"}}
    ]


def test_spec_run_on_applies_to_tests(config: dict[str, Any]) -> None:
    spec = _spec({"steps": [{"runShell": "echo hi"}]}, runOn=[{"platforms": "windows"}])

    test = resolve_tests(config, [spec])["specs"][0]["tests"][0]

    assert test["testId"]
    assert test["contexts"][0]["platform"] == "windows"


def test_unsafe_steps_mark_the_context(config: dict[str, Any]) -> None:
    test = {"steps": [{"runShell": "echo hi"}, {"runShell": "rm -rf build", "unsafe": True}]}

    context = resolve_tests(config, [_spec(test)])["specs"][0]["tests"][0]["contexts"][0]

    assert context["unsafe"] is True


def test_spec_without_valid_tests_is_an_error(config: dict[str, Any]) -> None:
    with pytest.raises(ConfigurationError, match="no valid tests"):
        resolve_tests(config, [_spec({"steps": [{"bogus": True}]})])


def test_openapi_definitions_merge_by_name() -> None:
    config = {"integrations": {"openApi": [{"name": "api", "definition": {"info": "config"}}]}}

    merged = merge_openapi(
        config,
        [{"name": "api", "definition": {"info": "spec"}}],
        [{"name": "other", "definition": {"info": "test"}}],
    )

    assert [(item["name"], item["definition"]["info"]) for item in merged] == [("api", "spec"), ("other", "test")]


def test_normalize_context() -> None:
    assert normalize_context({"platforms": "mac", "browsers": ["safari", {"name": "chrome", "headless": False}]}) == {
        "platforms": ["mac"],
        "browsers": [{"name": "webkit"}, {"name": "chrome", "headless": False}],
    }


def test_is_browser_required() -> None:
    assert is_browser_required([{"runShell": "ls"}, {"screenshot": True}])
    assert not is_browser_required([{"runShell": "ls"}, {"checkLink": "https://example.com"}])
