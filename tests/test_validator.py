from spec2workbook.models import HttpMethod, ReconstructedRequest, ReconstructedRequestGroup, SourceLocation, WarningCode
from spec2workbook.validator import build_provenance, validate_workbook


def _codes(warnings):
    return [w.code for w in warnings]


# --- TESTS ---


def test_valid_workbook_has_no_findings(sample_workbook):
    assert validate_workbook(sample_workbook) == []


def test_duplicate_ids_across_requests_and_sections():
    workbook = {
        "version": 1.0,
        "requests": [
            {"id": "x", "name": "Group", "children": [
                {"id": "y", "name": "R", "url": "u", "method": "GET"},
            ]},
        ],
        "scenarios": [{"id": "y", "name": "Scenario"}],
    }

    warnings = validate_workbook(workbook)

    assert _codes(warnings) == [WarningCode.DUPLICATE_ID]
    assert warnings[0].message.startswith("scenarios[0]:")
    assert "requests[0].children[0]" in warnings[0].message


def test_structural_problems():
    workbook = {
        "version": "1",
        "requests": [
            {"id": "r1", "name": "No url", "method": "GET"},
            {"name": "No id", "url": "u", "method": "GET"},
            {"id": "g1", "name": "Bad children", "children": {}},
            "not an item",
        ],
    }

    codes = _codes(validate_workbook(workbook))

    assert codes.count(WarningCode.INVALID_STRUCTURE) == 3
    assert codes.count(WarningCode.MISSING_FIELD) == 2


def test_requests_must_be_a_list():
    assert _codes(validate_workbook({"version": 1.0, "requests": {}})) == [WarningCode.INVALID_STRUCTURE]


def test_default_references_must_exist():
    workbook = {
        "version": 1.0,
        "requests": [],
        "defaults": {"selectedScenario": {"id": "missing", "name": "Gone"}},
    }

    (warning,) = validate_workbook(workbook)

    assert warning.code == WarningCode.INVALID_REFERENCE
    assert "defaults.selectedScenario.id" in warning.message


def test_provenance_locates_findings():
    location = SourceLocation(file="tests/suites/a.spec.ts", line=12)
    items = [
        ReconstructedRequestGroup(id="g1", name="G", source=SourceLocation("tests/suites/a.spec.ts", 1), children=[
            ReconstructedRequest(id="dup", name="A", url="u", method=HttpMethod.GET, source=SourceLocation("x", 3)),
            ReconstructedRequest(id="dup", name="B", url="u", method=HttpMethod.GET, source=location),
        ]),
    ]
    workbook = {"version": 1.0, "requests": [item.to_dict() for item in items]}

    (warning,) = validate_workbook(workbook, build_provenance(items), default_file="project")

    assert warning.code == WarningCode.DUPLICATE_ID
    assert (warning.file, warning.line) == ("tests/suites/a.spec.ts", 12)


def test_unlocated_findings_use_default_file():
    (warning,) = validate_workbook({"requests": []}, default_file="metadata/workbook.json")

    assert warning.file == "metadata/workbook.json"
    assert warning.line is None
