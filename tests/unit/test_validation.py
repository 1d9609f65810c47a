from pydantic import BaseModel, Field

from analyst_agent.agent.analyser import AnalysisOutput, unique_key_fields
from analyst_agent.agent.validation import format_issues_for_prompt, validate_output
from analyst_agent.errors import Err, Ok, ValidationIssue


class Score(BaseModel):
    label: str = Field(min_length=2)
    value: int = Field(ge=0, le=10)


def _no_reserved_label(output: Score) -> list[ValidationIssue]:
    if output.label == "none":
        return [ValidationIssue(path="label", message="label is reserved", type="reserved")]
    return []


def _valid_analysis() -> dict[str, object]:
    return {
        "data_type": "User Records",
        "description": "Customer accounts with contact and location details.",
        "key_fields": [{"path": "id", "label": "Identifier"}, {"path": "city", "label": "City"}],
        "recommended_visualisation": "table",
        "rationale": "Flat records with uniform columns read best as rows.",
    }


def test_valid_payload_returns_model() -> None:
    result = validate_output({"label": "ok", "value": 3}, Score)

    assert isinstance(result, Ok)
    assert result.value == Score(label="ok", value=3)


def test_schema_errors_carry_paths_and_messages() -> None:
    result = validate_output({"label": "x", "value": 11}, Score)

    assert isinstance(result, Err)
    paths = sorted(issue.path for issue in result.error)
    assert paths == ["label", "value"]
    assert all(issue.message for issue in result.error)


def test_custom_validators_run_after_schema_passes() -> None:
    calls: list[Score] = []

    def _spy(output: Score) -> list[ValidationIssue]:
        calls.append(output)
        return []

    invalid = validate_output({"label": "x", "value": 1}, Score, [_spy])
    reserved = validate_output({"label": "none", "value": 1}, Score, [_spy, _no_reserved_label])

    assert isinstance(invalid, Err)
    assert len(calls) == 1
    assert isinstance(reserved, Err)
    assert reserved.error == [ValidationIssue(path="label", message="label is reserved", type="reserved")]


def test_format_issues_for_prompt() -> None:
    text = format_issues_for_prompt(
        [ValidationIssue(path="a.0", message="too short"), ValidationIssue(path="b", message="missing")]
    )

    assert text == "- a.0: too short\n- b: missing"


def test_analysis_schema_bounds() -> None:
    assert isinstance(validate_output(_valid_analysis(), AnalysisOutput), Ok)

    payload = _valid_analysis()
    payload["recommended_visualisation"] = "pie"
    payload["data_type"] = "X"
    payload["key_fields"] = [{"path": f"f{i}", "label": "L"} for i in range(6)]
    result = validate_output(payload, AnalysisOutput)

    assert isinstance(result, Err)
    paths = {issue.path for issue in result.error}
    assert {"recommended_visualisation", "data_type", "key_fields"} <= paths


def test_duplicate_key_field_paths_rejected() -> None:
    payload = _valid_analysis()
    payload["key_fields"] = [{"path": "id", "label": "Identifier"}, {"path": "id", "label": "Again"}]

    result = validate_output(payload, AnalysisOutput, [unique_key_fields])

    assert isinstance(result, Err)
    assert [issue.path for issue in result.error] == ["key_fields.1.path"]


def test_raising_validator_becomes_an_issue() -> None:
    def _lookup(output: Score) -> list[ValidationIssue]:
        raise KeyError("missing")

    result = validate_output({"label": "ok", "value": 3}, Score, [_lookup, _no_reserved_label])

    assert isinstance(result, Err)
    assert len(result.error) == 1
    issue = result.error[0]
    assert issue.path == "$"
    assert issue.type == "validator_error"
    assert "_lookup raised KeyError" in issue.message
