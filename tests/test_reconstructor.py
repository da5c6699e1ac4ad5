import json

from conftest import metadata_block, render_item

from spec2workbook.exceptions import InvalidMetadataJsonError, MissingRequiredFieldError
from spec2workbook.models import ReconstructedRequest, ReconstructedRequestGroup, WarningCode
from spec2workbook.reconstructor import HierarchyReconstructor


def _request(request_id, name, **extra):
    return {
        "id": request_id,
        "name": name,
        "url": f"https://api.example.com/{request_id}",
        "method": "GET",
        **extra,
    }


def _reconstruct(lines, source_file="suite.spec.ts"):
    return HierarchyReconstructor().reconstruct(lines, source_file)


# --- TESTS ---


def test_rendered_group_round_trips(sample_workbook):
    group = sample_workbook["requests"][0]
    result = _reconstruct(render_item(group))

    assert result.errors == []
    assert result.warnings == []
    assert [item.to_dict() for item in result.items] == [group]


def test_inferred_group_from_plain_describe():
    lines = [
        "describe('Smoke', function () {",
        *metadata_block("request", _request("r1", "One"), 4),
        "    describe('One', function () {});",
        *metadata_block("request", _request("r2", "Two"), 4),
        "    describe('Two', function () {});",
        "});",
    ]
    result = _reconstruct(lines)

    assert len(result.items) == 1
    group = result.items[0]
    assert isinstance(group, ReconstructedRequestGroup)
    assert group.inferred
    assert group.name == "Smoke"
    assert group.id.startswith("generated-")
    assert [c.id for c in group.children] == ["r1", "r2"]


def test_inferred_group_id_is_deterministic():
    lines = [
        "describe('Smoke', function () {",
        *metadata_block("request", _request("r1", "One"), 4),
        "    describe('One', function () {});",
        "});",
    ]

    assert _reconstruct(lines).items[0].id == _reconstruct(lines).items[0].id


def test_plain_describe_without_children_is_dropped():
    result = _reconstruct(["describe('Nothing here', function () {", "    it('x', () => {});", "});"])

    assert result.items == []
    assert not result.has_metadata


def test_metadata_far_above_declaration_binds_late():
    lines = [
        "// Auto-generated individual request: Far",
        *metadata_block("request", _request("r1", "Far")),
    ]
    lines += ["let context;"] * 12
    lines += ["describe('Far', function () {", "});"]
    result = _reconstruct(lines)

    assert [item.id for item in result.items] == ["r1"]
    assert result.warnings == []


def test_orphaned_block_is_kept_at_its_enclosing_level():
    lines = [
        "describe('Suite', function () {",
        "    it('plain test', () => {});",
        *metadata_block("request", _request("r1", "Orphan"), 4),
        "});",
    ]
    result = _reconstruct(lines)

    group = result.items[0]
    assert group.inferred
    assert [c.id for c in group.children] == ["r1"]
    assert [w.code for w in result.warnings] == [WarningCode.ORPHANED_METADATA]


def test_request_children_are_hoisted():
    lines = [
        *metadata_block("request", _request("r1", "Parent")),
        "describe('Parent', function () {",
        *metadata_block("request", _request("r2", "Nested"), 4),
        "    describe('Nested', function () {});",
        "});",
    ]
    result = _reconstruct(lines)

    assert [item.id for item in result.items] == ["r1", "r2"]
    assert [w.code for w in result.warnings] == [WarningCode.REQUEST_HAS_CHILDREN]


def test_name_mismatch_keeps_metadata_name():
    lines = [
        *metadata_block("request", _request("r1", "Metadata name")),
        "describe('Edited label', function () {});",
    ]
    result = _reconstruct(lines)

    assert result.items[0].name == "Metadata name"
    assert [w.code for w in result.warnings] == [WarningCode.NAME_MISMATCH]


def test_test_code_taken_from_body_when_metadata_has_none():
    lines = [
        *metadata_block("request", _request("r1", "One")),
        "describe('One', function () {",
        "    it('returns 200', () => {",
        "        expect(response.status).to.equal(200);",
        "    });",
        "});",
    ]
    request = _reconstruct(lines).items[0]

    assert request.test == (
        "it('returns 200', () => {\n"
        "    expect(response.status).to.equal(200);\n"
        "});"
    )


def test_edited_test_code_wins_with_drift_warning():
    payload = _request("r1", "One", test="expect(response.status).to.equal(200);")
    lines = [
        *metadata_block("request", payload),
        "describe('One', function () {",
        "    it('passes', () => {",
        "        expect(response.status).to.equal(404);",
        "    });",
        "});",
    ]
    result = _reconstruct(lines)

    assert "404" in result.items[0].test
    assert [w.code for w in result.warnings] == [WarningCode.TEST_CODE_DRIFT]


def test_wrapped_metadata_test_code_is_kept_verbatim():
    payload = _request("r1", "One", test="expect(response.status).to.equal(200);")
    lines = [
        *metadata_block("request", payload),
        "describe('One', function () {",
        "    it('passes', () => {",
        "        expect(response.status).to.equal(200);",
        "    });",
        "});",
    ]
    result = _reconstruct(lines)

    assert result.items[0].test == "expect(response.status).to.equal(200);"
    assert result.warnings == []


def test_bad_blocks_do_not_affect_neighbours():
    lines = [
        "/* @apicize-request-metadata",
        '{"id": "broken",',
        "@apicize-request-metadata-end */",
        "describe('Broken', function () {});",
        *metadata_block("request", {"id": "r2", "name": "No url", "method": "GET"}),
        "describe('No url', function () {});",
        *metadata_block("request", _request("r3", "Fine")),
        "describe('Fine', function () {});",
    ]
    result = _reconstruct(lines)

    assert [item.id for item in result.items] == ["r3"]
    assert isinstance(result.items[0], ReconstructedRequest)
    assert [type(e) for e in result.errors] == [InvalidMetadataJsonError, MissingRequiredFieldError]
    assert result.errors[1].field == "url"


def test_file_metadata_is_collected():
    lines = ['/* @apicize-file-metadata {"version": 1, "source": "a.apicize"} @apicize-file-metadata-end */']
    result = _reconstruct(lines)

    assert result.file_metadata == [json.loads('{"version": 1, "source": "a.apicize"}')]
    assert result.has_metadata
    assert result.items == []


STATUS_TEST = (
    "describe('status', () => {\n"
    "    it('is 200', () => {\n"
    "        expect(response.status).to.equal(200);\n"
    "    });\n"
    "});"
)


def test_describe_wrapped_test_code_is_kept_whole():
    payload = _request("r1", "One", test=STATUS_TEST)
    result = _reconstruct(render_item(payload, layout="exported"))

    (request,) = result.items
    assert request.test == STATUS_TEST
    assert result.warnings == []


def test_edited_describe_wrapped_test_code_drifts():
    payload = _request("r1", "One", test=STATUS_TEST)
    # Edit the assertion in the body only; the metadata keeps the old one
    lines = [
        line if '"test"' in line else line.replace("equal(200)", "equal(201)")
        for line in render_item(payload, layout="exported")
    ]
    result = _reconstruct(lines)

    assert result.items[0].test == STATUS_TEST.replace("equal(200)", "equal(201)")
    assert [w.code for w in result.warnings] == [WarningCode.TEST_CODE_DRIFT]


def test_block_opening_a_describe_body_belongs_to_it():
    lines = [
        "describe('Group', function () {",
        "    describe('One', function () {",
        "        // Metadata included",
        *metadata_block("request", _request("r1", "One"), 8),
        "",
        "        beforeEach(async function () {",
        "            response = await context.execute({ id: 'r1' });",
        "        });",
        "",
        "        describe('status', () => {",
        "            it('is 200', () => {",
        "                expect(response.status).to.equal(200);",
        "            });",
        "        });",
        "    });",
        "});",
    ]
    result = _reconstruct(lines)

    (group,) = result.items
    assert group.inferred
    (request,) = group.children
    assert request.id == "r1"
    assert request.test.startswith("describe('status', () => {")
    assert result.warnings == []


def test_hook_keeps_group_block_from_the_next_declaration():
    group = {"id": "g1", "name": "Outer", "children": [_request("r1", "Inner")]}
    lines = render_item({**group, "children": []}, layout="exported", top_level=False)[:-1]
    lines += render_item(group["children"][0], indent=4, layout="exported", top_level=False)
    lines.append("});")
    result = _reconstruct(lines)

    (outer,) = result.items
    assert isinstance(outer, ReconstructedRequestGroup)
    assert outer.id == "g1"
    assert [c.id for c in outer.children] == ["r1"]
    assert result.warnings == []


def test_exported_layout_round_trips(sample_workbook):
    group = sample_workbook["requests"][0]
    result = _reconstruct(render_item(group, layout="exported"))

    assert result.errors == []
    assert result.warnings == []
    assert [item.to_dict() for item in result.items] == [group]
