"""Built-in file type definitions keyed by name."""

from __future__ import annotations

import copy
from typing import Any

ASCIIDOC_1_0: dict[str, Any] = {
    "name": "asciidoc",
    "extensions": ["adoc", "asciidoc", "asc"],
    "inlineStatements": {
        "testStart": [r"\/\/\s+\(\s*test\s+([\s\S]*?)\s*\)"],
        "testEnd": [r"\/\/\s+\(\s*test end\s*\)"],
        "ignoreStart": [r"\/\/\s+\(\s*test ignore start\s*\)"],
        "ignoreEnd": [r"\/\/\s+\(\s*test ignore end\s*\)"],
        "step": [r"\/\/\s+\(\s*step\s+([\s\S]*?)\s*\)"],
    },
    "markup": [],
}

DITA_1_0: dict[str, Any] = {
    "name": "dita",
    "extensions": ["dita", "ditamap", "xml"],
    "inlineStatements": {
        "testStart": [r"<\?doc-detective\s+test([\s\S]*?)\?>", r"<!--\s*test([\s\S]+?)-->"],
        "testEnd": [r"<\?doc-detective\s+test\s+end\s*\?>", r"<!--\s*test end([\s\S]+?)-->"],
        "ignoreStart": [
            r"<\?doc-detective\s+test\s+ignore\s+start\s*\?>",
            r"<!--\s*test ignore\s+start\s*-->",
        ],
        "ignoreEnd": [
            r"<\?doc-detective\s+test\s+ignore\s+end\s*\?>",
            r"<!--\s*test ignore\s+end\s*-->",
        ],
        "step": [
            r"<\?doc-detective\s+step\s+([\s\S]*?)\s*\?>",
            r"<!--\s*step([\s\S]+?)-->",
            r'<data\s+name="step"\s*>([\s\S]*?)<\/data>',
        ],
    },
    "markup": [
        {
            "name": "clickUiControl",
            "regex": [
                r"(?:[Cc]lick|[Tt]ap|[Ss]elect|[Pp]ress|[Cc]hoose)\s+(?:the\s+)?<uicontrol>([^<]+)<\/uicontrol>"
            ],
            "actions": ["click"],
        },
        {
            "name": "typeIntoUiControl",
            "regex": [
                r"(?:[Tt]ype|[Ee]nter|[Ii]nput)\s+<userinput>([^<]+)<\/userinput>\s+(?:in|into)(?:\s+the)?\s+"
                r"<uicontrol>([^<]+)<\/uicontrol>"
            ],
            "actions": [{"type": {"keys": "$1", "selector": "$2"}}],
        },
        {
            "name": "navigateToXref",
            "regex": [
                r"(?:[Nn]avigate\s+to|[Oo]pen|[Gg]o\s+to|[Vv]isit|[Bb]rowse\s+to)\s+"
                r'<xref\s+[^>]*href="(https?:\/\/[^"]+)"[^>]*>'
            ],
            "actions": ["goTo"],
        },
        {"name": "findUiControl", "regex": [r"<uicontrol>([^<]+)<\/uicontrol>"], "actions": ["find"]},
        {"name": "verifyWindowTitle", "regex": [r"<wintitle>([^<]+)<\/wintitle>"], "actions": ["find"]},
        {
            "name": "checkExternalXref",
            "regex": [
                r'<xref\s+[^>]*scope="external"[^>]*href="(https?:\/\/[^"]+)"[^>]*>',
                r'<xref\s+[^>]*href="(https?:\/\/[^"]+)"[^>]*scope="external"[^>]*>',
            ],
            "actions": ["checkLink"],
        },
        {"name": "checkHyperlink", "regex": [r'<xref\s+href="(https?:\/\/[^"]+)"[^>]*>'], "actions": ["checkLink"]},
        {"name": "checkLinkElement", "regex": [r'<link\s+href="(https?:\/\/[^"]+)"[^>]*>'], "actions": ["checkLink"]},
        {
            "name": "clickOnscreenText",
            "regex": [r"\b(?:[Cc]lick|[Tt]ap|[Ll]eft-click|[Cc]hoose|[Ss]elect|[Cc]heck)\b\s+<b>((?:(?!<\/b>).)+)<\/b>"],
            "actions": ["click"],
        },
        {"name": "findOnscreenText", "regex": [r"<b>((?:(?!<\/b>).)+)<\/b>"], "actions": ["find"]},
        {
            "name": "goToUrl",
            "regex": [
                r"\b(?:[Gg]o\s+to|[Oo]pen|[Nn]avigate\s+to|[Vv]isit|[Aa]ccess|[Pp]roceed\s+to|[Ll]aunch)\b\s+"
                r'<xref\s+href="(https?:\/\/[^"]+)"[^>]*>'
            ],
            "actions": ["goTo"],
        },
        {"name": "typeText", "regex": [r'\b(?:[Pp]ress|[Ee]nter|[Tt]ype)\b\s+"([^"]+)"'], "actions": ["type"]},
    ],
}

HTML_1_0: dict[str, Any] = {
    "name": "html",
    "extensions": ["html", "htm"],
    "inlineStatements": {
        "testStart": [r"<!--\s*test\s+?([\s\S]*?)\s*-->"],
        "testEnd": [r"<!--\s*test end\s*([\s\S]*?)\s*-->"],
        "ignoreStart": [r"<!--\s*test ignore start\s*-->"],
        "ignoreEnd": [r"<!--\s*test ignore end\s*-->"],
        "step": [r"<!--\s*step\s+?([\s\S]*?)\s*-->"],
    },
    "markup": [],
}

MARKDOWN_1_0: dict[str, Any] = {
    "name": "markdown",
    "extensions": ["md", "markdown", "mdx"],
    "inlineStatements": {
        "testStart": [
            r"{\/\*\s*test\s+?([\s\S]*?)\s*\*\/}",
            r"<!--\s*test\s*([\s\S]*?)\s*-->",
            r"\[comment\]:\s+#\s+\(test\s*(.*?)\s*\)",
            r"\[comment\]:\s+#\s+\(test start\s*(.*?)\s*\)",
            r"\[comment\]:\s+#\s+'test\s*(.*?)\s*'",
            r"\[comment\]:\s+#\s+'test start\s*(.*?)\s*'",
            r'\[comment\]:\s+#\s+"test\s*((?:[^"\\]|\\.)*)\s*"',
            r'\[comment\]:\s+#\s+"test start\s*((?:[^"\\]|\\.)*)\s*"',
        ],
        "testEnd": [
            r"{\/\*\s*test end\s*\*\/}",
            r"<!--\s*test end\s*([\s\S]*?)\s*-->",
            r"\[comment\]:\s+#\s+\(test end\)",
            r"\[comment\]:\s+#\s+'test end'",
            r'\[comment\]:\s+#\s+"test end"',
        ],
        "ignoreStart": [
            r"{\/\*\s*test ignore start\s*\*\/}",
            r"<!--\s*test ignore start\s*-->",
            r"\[comment\]:\s+#\s+\(test ignore start\)",
            r"\[comment\]:\s+#\s+'test ignore start'",
            r'\[comment\]:\s+#\s+"test ignore start"',
        ],
        "ignoreEnd": [
            r"{\/\*\s*test ignore end\s*\*\/}",
            r"<!--\s*test ignore end\s*-->",
            r"\[comment\]:\s+#\s+\(test ignore end\)",
            r"\[comment\]:\s+#\s+'test ignore end'",
            r'\[comment\]:\s+#\s+"test ignore end"',
        ],
        "step": [
            r"{\/\*\s*step\s+?([\s\S]*?)\s*\*\/}",
            r"<!--\s*step\s*([\s\S]*?)\s*-->",
            r"\[comment\]:\s+#\s+\(step\s*(.*?)\s*\)",
            r"\[comment\]:\s+#\s+'step\s*(.*?)\s*'",
            r'\[comment\]:\s+#\s+"step\s*((?:[^"\\]|\\.)*)\s*"',
        ],
    },
    "markup": [
        {
            "name": "checkHyperlink",
            "regex": [r'(?<!\!)\[[^\]]+\]\(\s*(https?:\/\/[^\s)]+)(?:\s+"[^"]*")?\s*\)'],
            "actions": ["checkLink"],
        },
        {
            "name": "clickOnscreenText",
            "regex": [r"\b(?:[Cc]lick|[Tt]ap|[Ll]eft-click|[Cc]hoose|[Ss]elect|[Cc]heck)\b\s+\*\*((?:(?!\*\*).)+)\*\*"],
            "actions": ["click"],
        },
        {"name": "findOnscreenText", "regex": [r"\*\*((?:(?!\*\*).)+)\*\*"], "actions": ["find"]},
        {
            "name": "goToUrl",
            "regex": [
                r"\b(?:[Gg]o\s+to|[Oo]pen|[Nn]avigate\s+to|[Vv]isit|[Aa]ccess|[Pp]roceed\s+to|[Ll]aunch)\b\s+"
                r'\[[^\]]+\]\(\s*(https?:\/\/[^\s)]+)(?:\s+"[^"]*")?\s*\)'
            ],
            "actions": ["goTo"],
        },
        {
            "name": "screenshotImage",
            "regex": [r'!\[[^\]]*\]\(\s*([^\s)]+)(?:\s+"[^"]*")?\s*\)\s*\{(?=[^}]*\.screenshot)[^}]*\}'],
            "actions": ["screenshot"],
        },
        {"name": "typeText", "regex": [r'\b(?:press|enter|type)\b\s+"([^"]+)"'], "actions": ["type"]},
        {
            "name": "httpRequestFormat",
            "regex": [
                r"```(?:http)?\r?\n([A-Z]+)\s+([^\s]+)(?:\s+HTTP\/[\d.]+)?\r?\n((?:[^\s]+:\s+[^\s]+\r?\n)*)?"
                r"(?:\s+([\s\S]*?)\r?\n+)?```"
            ],
            "actions": [
                {"httpRequest": {"method": "$1", "url": "$2", "request": {"headers": "$3", "body": "$4"}}}
            ],
        },
        {
            "name": "runCode",
            "regex": [r"```(bash|python|py|javascript|js)(?![^\r\n]*testIgnore)[^\r\n]*\r?\n([\s\S]*?)\r?\n```"],
            "actions": [{"unsafe": True, "runCode": {"language": "$1", "code": "$2"}}],
        },
    ],
}

DEFAULT_FILE_TYPES: dict[str, dict[str, Any]] = {
    "asciidoc_1_0": ASCIIDOC_1_0,
    "dita_1_0": DITA_1_0,
    "html_1_0": HTML_1_0,
    "markdown_1_0": MARKDOWN_1_0,
    "asciidoc": ASCIIDOC_1_0,
    "dita": DITA_1_0,
    "html": HTML_1_0,
    "markdown": MARKDOWN_1_0,
}


def get_default_file_type(name: str) -> dict[str, Any] | None:
    file_type = DEFAULT_FILE_TYPES.get(name)
    return copy.deepcopy(file_type) if file_type is not None else None
