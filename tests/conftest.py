# File: tests/conftest.py

import copy
import json

import pytest

INDENT = 4


# Lines the exporter writes between a suite's metadata block and its describe
CONTEXT_SETUP = [
    "",
    "// Test context for this group",
    "let context: ApicizeContext;",
    "let response: ApicizeResponse;",
    "// eslint-disable-next-line @typescript-eslint/no-unused-vars",
    "let $: Record<string, any>;",
    "",
    "// eslint-disable-next-line @typescript-eslint/no-unused-vars",
    "const output = (key: string, value: any): void => {",
    "  context?.output(key, value);",
    "};",
    "",
]


def _quote(label):
    return "'" + label.replace("\\", "\\\\").replace("'", "\\'") + "'"


def metadata_block(kind, payload, indent=0):
    """Comment-embedded metadata block lines, the way exported files carry them."""
    pad = " " * indent
    lines = [f"{pad}/* @apicize-{kind}-metadata"]
    lines.extend(pad + line for line in json.dumps(payload, indent=INDENT).splitlines())
    lines.append(f"{pad}@apicize-{kind}-metadata-end */")
    return lines


def _has_own_structure(test):
    return test.lstrip().startswith(("describe(", "it("))


def _test_lines(test, inner):
    """Test code is embedded as-is when it brings its own describe/it, else wrapped."""
    if _has_own_structure(test):
        return [f"{inner}{line}" if line else "" for line in test.splitlines()]
    return [
        f"{inner}it('passes', () => {{",
        *(f"{inner}    {line}" for line in test.splitlines()),
        f"{inner}}});",
    ]


def _before_each(item, inner, exported):
    if not exported:
        return [
            f"{inner}beforeEach(async function () {{",
            f"{inner}    response = await context.execute({{ id: {_quote(item['id'])} }});",
            f"{inner}}});",
        ]
    return [
        f"{inner}beforeEach(async function () {{",
        f"{inner}    this.timeout({item.get('timeout', 30000)});",
        "",
        f"{inner}    response = await context.execute({{",
        f"{inner}        id: {_quote(item['id'])},",
        f"{inner}        method: {_quote(item['method'])},",
        f"{inner}        url: {_quote(item['url'])},",
        f"{inner}    }});",
        "",
        f"{inner}    $ = context.$;",
        f"{inner}}});",
    ]


def render_item(item, indent=0, layout="compact", top_level=True):
    """Lines for one workbook item.

    ``compact`` puts each block right above its describe. ``exported``
    follows the exporter: a suite's top-level block sits above the context
    setup, nested blocks open their describe body, groups start with a
    ``before`` hook and requests with a multi-line ``beforeEach``.
    """
    pad = " " * indent
    inner = " " * (indent + INDENT)
    exported = layout == "exported"
    kind = "group" if "children" in item else "request"
    payload = {k: v for k, v in item.items() if k != "children"}

    lines = []
    if not exported:
        lines.extend(metadata_block(kind, payload, indent))
    elif top_level:
        lines.extend(metadata_block(kind, payload, indent))
        lines.extend(CONTEXT_SETUP)
    lines.append(f"{pad}describe({_quote(item['name'])}, function () {{")
    if exported and not top_level:
        lines.append(f"{inner}// Metadata included")
        lines.extend(metadata_block(kind, payload, indent + INDENT))
        lines.append("")

    if kind == "group":
        if exported:
            lines.extend([
                f"{inner}before(async function () {{",
                f"{inner}    const helper = new TestHelper();",
                f"{inner}    context = await helper.setupGroup({_quote(item['id'])});",
                f"{inner}    $ = context.$;",
                f"{inner}}});",
                "",
            ])
        for child in item["children"]:
            lines.extend(render_item(child, indent + INDENT, layout, top_level=False))
            lines.append("")
    else:
        lines.extend(_before_each(item, inner, exported))
        if item.get("test"):
            lines.append("")
            lines.extend(_test_lines(item["test"], inner))
    lines.append(f"{pad}}});")
    return lines


def render_suite(item, layout="compact"):
    kind = "request group" if "children" in item else "individual request"
    header = [
        f"// Auto-generated {kind}: {item['name']}",
        "import { describe, it, beforeEach, before } from 'mocha';",
        "import { expect } from 'chai';",
        "",
    ]
    return "\n".join(header + render_item(item, layout=layout)) + "\n"


def render_index(workbook, source_name):
    suites = "\n".join(
        f"import './suites/{name}';" for name in _suite_names(workbook)
    )
    lines = [
        f"// Auto-generated from {source_name}",
        "import { describe, before } from 'mocha';",
        "",
        *metadata_block("file", {"version": 1, "source": source_name}),
        "",
        "describe('API Tests', function () {",
        "    this.timeout(30000);",
        "});",
        "",
        suites,
    ]
    return "\n".join(lines) + "\n"


def _suite_names(workbook):
    return [
        f"{index:02d}-{item['name'].replace(' ', '-')}.spec"
        for index, item in enumerate(workbook.get("requests", []))
    ]


def render_project(root, workbook, snapshot=False, layout="compact"):
    """Write a generated test project for a workbook under root."""
    tests = root / "tests"
    suites = tests / "suites"
    suites.mkdir(parents=True, exist_ok=True)

    (tests / "index.spec.ts").write_text(
        render_index(workbook, f"{root.name}.apicize"), encoding="utf-8"
    )
    for name, item in zip(_suite_names(workbook), workbook.get("requests", [])):
        (suites / f"{name}.ts").write_text(render_suite(item, layout), encoding="utf-8")

    if snapshot:
        metadata = root / "metadata"
        metadata.mkdir(exist_ok=True)
        (metadata / "workbook.json").write_text(json.dumps(workbook, indent=2), encoding="utf-8")
    return root


SAMPLE_WORKBOOK = {
    "version": 1.0,
    "requests": [
        {
            "id": "group-users",
            "name": "Users",
            "execution": "SEQUENTIAL",
            "children": [
                {
                    "id": "req-list",
                    "name": "List users",
                    "url": "https://api.example.com/users",
                    "method": "GET",
                    "test": "expect(response.status).to.equal(200);",
                },
                {
                    "id": "req-create",
                    "name": "Create user",
                    "url": "https://api.example.com/users",
                    "method": "POST",
                    "test": "expect(response.status).to.equal(201);\nexpect($.id).to.exist;",
                    "headers": [{"name": "Content-Type", "value": "application/json"}],
                    "body": {"type": "JSON", "data": {"name": "Ada"}},
                },
                {
                    "id": "group-admin",
                    "name": "Admin",
                    "children": [
                        {
                            "id": "req-delete",
                            "name": "Delete user",
                            "url": "https://api.example.com/users/1",
                            "method": "DELETE",
                            "test": (
                                "describe('status', () => {\n"
                                "    it('is 204', () => {\n"
                                "        expect(response.status).to.equal(204);\n"
                                "    });\n"
                                "});"
                            ),
                        },
                    ],
                },
            ],
        },
        {
            "id": "req-health",
            "name": "Health check",
            "url": "https://api.example.com/health",
            "method": "GET",
            "test": "expect(response.status).to.equal(200);",
            "timeout": 5000,
        },
    ],
    "scenarios": [{"id": "scenario-default", "name": "Default", "variables": []}],
    "defaults": {"selectedScenario": {"id": "scenario-default", "name": "Default"}},
}


@pytest.fixture
def sample_workbook():
    return copy.deepcopy(SAMPLE_WORKBOOK)


@pytest.fixture
def make_project(tmp_path):
    """Factory rendering a workbook into a project directory."""

    def _make(workbook, snapshot=False, name="exported-tests", layout="compact"):
        return render_project(tmp_path / name, workbook, snapshot=snapshot, layout=layout)

    return _make


@pytest.fixture
def write_spec(tmp_path):
    """Write a single test file from raw text and return its path."""

    def _write(text, relative="tests/suites/00-sample.spec.ts", root=None):
        path = (root or tmp_path / "project") / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write
