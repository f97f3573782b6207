from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import pytest

from doc_detective.file_types import get_default_file_type
from doc_detective.files import (
    fetch_file,
    generate_spec_id,
    parse_tests,
    qualify_files,
    read_file,
    resolve_path,
    resolve_paths,
)


@pytest.fixture
def config() -> dict[str, Any]:
    return {
        "fileTypes": [get_default_file_type("markdown")],
        "detectSteps": False,
        "relativePathBase": "file",
        "recursive": True,
    }


def _write(path: Path, content: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content if isinstance(content, str) else json.dumps(content), encoding="utf-8")
    return path


def test_read_file_parses_by_extension(tmp_path: Path) -> None:
    assert read_file(str(_write(tmp_path / "a.json", {"a": 1}))) == {"a": 1}
    assert read_file(str(_write(tmp_path / "b.yaml", "b: 2\n"))) == {"b": 2}
    assert read_file(str(_write(tmp_path / "c.md", "# Title\n"))) == "# Title\n"
    assert read_file(str(_write(tmp_path / "d.json", "{broken"))) == "{broken"
    assert read_file(str(tmp_path / "missing.md")) is None


def test_read_file_requires_a_path() -> None:
    with pytest.raises(ValueError):
        read_file("")


def test_read_file_from_url(http_server) -> None:
    http_server.route("GET", "/spec.json", body={"tests": []})

    assert read_file(f"{http_server.url}/spec.json") == {"tests": []}
    assert read_file(f"{http_server.url}/missing.json") is None


def test_fetch_file_downloads_into_temp_dir(http_server) -> None:
    http_server.route("GET", "/guide.md", body="# Guide\n", headers={"Content-Type": "text/markdown"})

    local = fetch_file(f"{http_server.url}/guide.md")

    assert local is not None
    assert local.endswith("_guide.md")
    assert Path(local).read_text(encoding="utf-8") == "# Guide\n"


def test_resolve_path(tmp_path: Path) -> None:
    spec_file = str(tmp_path / "spec.json")

    assert resolve_path("file", "https://example.com/a", spec_file) == "https://example.com/a"
    assert resolve_path("file", "/abs/path", spec_file) == "/abs/path"
    assert resolve_path("file", "shots/a.png", spec_file) == os.path.abspath(tmp_path / "shots" / "a.png")
    assert resolve_path("file", "docs", str(tmp_path)) == os.path.abspath(tmp_path / "docs")
    assert resolve_path("cwd", "docs", spec_file) == os.path.abspath("docs")


def test_resolve_paths_for_spec(tmp_path: Path) -> None:
    spec = {
        "tests": [
            {
                "steps": [
                    {"screenshot": {"path": "a.png", "directory": "shots"}},
                    {"httpRequest": {"url": "https://example.com", "request": {"body": {"path": "keep"}}}},
                ]
            }
        ]
    }

    resolved = resolve_paths({}, spec, str(tmp_path / "spec.json"), object_type="spec")
    steps = resolved["tests"][0]["steps"]

    assert steps[0]["screenshot"]["directory"] == os.path.abspath(tmp_path / "shots")
    assert steps[0]["screenshot"]["path"] == os.path.abspath(tmp_path / "shots" / "a.png")
    assert steps[1]["httpRequest"]["request"]["body"] == {"path": "keep"}


def test_resolve_paths_rejects_unknown_type() -> None:
    with pytest.raises(ValueError):
        resolve_paths({}, {}, "x.json", object_type="step")


def test_qualify_files_walks_directories(tmp_path: Path, config: dict[str, Any]) -> None:
    docs = tmp_path / "docs"
    expected = [
        _write(docs / "a.md", "# A\n"),
        _write(docs / "spec.json", {"tests": [{"steps": [{"runShell": "echo hi"}]}]}),
        _write(docs / "sub" / "e.md", "# E\n"),
    ]
    _write(docs / "b.txt", "ignored")
    _write(docs / "bad.json", {"not": "a spec"})
    _write(docs / ".hidden" / "c.md", "# C\n")
    _write(docs / "node_modules" / "d.md", "# D\n")
    config["input"] = [str(docs)]

    assert qualify_files(config) == [str(path.resolve()) for path in expected]

    config["recursive"] = False
    assert qualify_files(config) == [str(path.resolve()) for path in expected[:2]]


def test_qualify_files_requires_hook_files(tmp_path: Path, config: dict[str, Any]) -> None:
    spec_file = _write(tmp_path / "spec.json", {"tests": [{"before": "setup.json", "steps": [{"wait": 1}]}]})
    config["input"] = [str(spec_file)]

    assert qualify_files(config) == []

    _write(tmp_path / "setup.json", {"tests": [{"steps": [{"runShell": "echo setup"}]}]})
    assert qualify_files(config) == [str(spec_file.resolve())]


def test_parse_tests_from_markdown(tmp_path: Path, config: dict[str, Any], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    doc = _write(tmp_path / "docs" / "intro guide.md", '<!-- step {"runShell": "echo hi"} -->\n# Intro\n')
    _write(tmp_path / "docs" / "empty.md", "# Nothing to test\n")

    specs = parse_tests(config, [str(doc), str(tmp_path / "docs" / "empty.md")])

    assert len(specs) == 1
    assert specs[0]["specId"] == "docs/intro_guide.md"
    assert specs[0]["contentPath"] == str(doc)
    assert specs[0]["tests"][0]["steps"] == [{"runShell": "echo hi"}]


def test_parse_tests_adds_hook_steps(tmp_path: Path, config: dict[str, Any]) -> None:
    _write(tmp_path / "setup.json", {"tests": [{"steps": [{"runShell": "echo setup"}]}]})
    _write(tmp_path / "cleanup.json", {"tests": [{"steps": [{"runShell": "echo cleanup"}]}]})
    spec_file = _write(
        tmp_path / "spec.json",
        {
            "specId": "json-spec",
            "tests": [{"before": "setup.json", "after": "cleanup.json", "steps": [{"runShell": "echo main"}]}],
        },
    )

    specs = parse_tests(config, [str(spec_file)])
    test = specs[0]["tests"][0]

    assert specs[0]["specId"] == "json-spec"
    assert test["before"] == os.path.abspath(tmp_path / "setup.json")
    assert test["steps"] == [{"runShell": "echo setup"}, {"runShell": "echo main"}, {"runShell": "echo cleanup"}]


def test_parse_tests_with_runshell_file_type(tmp_path: Path) -> None:
    script = _write(tmp_path / "check.sh", "echo ok\n")
    config = {"fileTypes": [{"name": "script", "extensions": ["sh"], "runShell": {"command": "bash $1"}}]}

    specs = parse_tests(config, [str(script)])

    assert specs[0]["tests"][0]["steps"] == [{"runShell": {"command": f"bash {script}"}}]


def test_generate_spec_id(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    assert generate_spec_id(str(tmp_path / "docs" / "my file!.md")) == "docs/my_file_.md"
