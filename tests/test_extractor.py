from spec2workbook.exceptions import IncompleteMetadataBlockError, InvalidMetadataJsonError
from spec2workbook.extractor import extract_blocks, extract_from_text
from spec2workbook.models import BlockKind

# --- TESTS ---


def test_multiline_request_block():
    text = "\n".join([
        "/* @apicize-request-metadata",
        "{",
        '    "id": "r1",',
        '    "name": "Get User"',
        "}",
        "@apicize-request-metadata-end */",
        "describe('Get User', function () {});",
    ])
    result = extract_from_text(text, "a.spec.ts")

    assert result.errors == []
    assert len(result.blocks) == 1
    block = result.blocks[0]
    assert block.kind == BlockKind.REQUEST
    assert block.payload == {"id": "r1", "name": "Get User"}
    assert (block.line, block.end_line) == (1, 6)
    assert block.source_file == "a.spec.ts"
    assert result.ranges == [(1, 6)]


def test_single_line_block_and_unprefixed_markers():
    lines = [
        '/* @group-metadata {"id": "g1", "name": "G"} @group-metadata-end */',
        '// @apicize-request-metadata {"id": "r1"} @apicize-request-metadata-end',
    ]
    result = extract_blocks(lines)

    assert [b.kind for b in result.blocks] == [BlockKind.GROUP, BlockKind.REQUEST]
    assert result.blocks[0].payload == {"id": "g1", "name": "G"}
    assert result.blocks[1].line == result.blocks[1].end_line == 2


def test_star_continuation_prefixes_are_stripped():
    lines = [
        "/**",
        " * @apicize-group-metadata",
        ' * {"id": "g1",',
        ' *  "name": "Users"}',
        " * @apicize-group-metadata-end",
        " */",
    ]
    result = extract_blocks(lines)

    assert result.errors == []
    assert result.blocks[0].payload == {"id": "g1", "name": "Users"}


def test_file_blocks_are_kept_apart_from_entity_blocks():
    lines = [
        '/* @apicize-file-metadata {"version": 1} @apicize-file-metadata-end */',
        '/* @apicize-request-metadata {"id": "r1"} @apicize-request-metadata-end */',
    ]
    result = extract_blocks(lines)

    assert [b.payload for b in result.file_blocks] == [{"version": 1}]
    assert [b.payload for b in result.entity_blocks] == [{"id": "r1"}]


def test_invalid_json_is_isolated_to_its_block():
    lines = [
        "/* @apicize-request-metadata",
        '{"id": "broken", "name": }',
        "@apicize-request-metadata-end */",
        "/* @apicize-request-metadata",
        '{"id": "ok"}',
        "@apicize-request-metadata-end */",
    ]
    result = extract_blocks(lines, "x.spec.ts")

    assert [b.payload["id"] for b in result.blocks] == ["ok"]
    assert len(result.errors) == 1
    error = result.errors[0]
    assert isinstance(error, InvalidMetadataJsonError)
    assert error.line == 1
    assert error.detail
    # The failed block still occupies its lines
    assert result.ranges == [(1, 3), (4, 6)]


def test_missing_end_marker_is_incomplete():
    lines = [
        "/* @apicize-request-metadata",
        '{"id": "r1"}',
        "describe('x', function () {});",
    ]
    result = extract_blocks(lines, "x.spec.ts")

    assert result.blocks == []
    assert len(result.errors) == 1
    assert isinstance(result.errors[0], IncompleteMetadataBlockError)
    assert result.errors[0].line == 1


def test_nested_open_marker_restarts_at_inner_block():
    lines = [
        "/* @apicize-group-metadata",
        '{"id": "outer"',
        "/* @apicize-request-metadata",
        '{"id": "inner"}',
        "@apicize-request-metadata-end */",
    ]
    result = extract_blocks(lines)

    assert [b.payload for b in result.blocks] == [{"id": "inner"}]
    assert result.blocks[0].line == 3
    assert len(result.errors) == 1
    assert isinstance(result.errors[0], IncompleteMetadataBlockError)
    assert result.errors[0].line == 1


def test_mismatched_end_marker_is_incomplete():
    lines = [
        '/* @apicize-group-metadata {"id": "g"}',
        "@apicize-request-metadata-end */",
    ]
    result = extract_blocks(lines)

    assert result.blocks == []
    assert isinstance(result.errors[0], IncompleteMetadataBlockError)


def test_stray_end_marker_is_ignored():
    result = extract_blocks(["@apicize-request-metadata-end */", "const x = 1;"])

    assert result.blocks == []
    assert result.errors == []


def test_extraction_does_not_interpret_payload():
    result = extract_blocks(['/* @apicize-request-metadata [1, 2, 3] @apicize-request-metadata-end */'])

    assert result.blocks[0].payload == [1, 2, 3]
