import pytest

from app.core.errors import ConfigurationError
from app.crud.workflow import (
    StepConfig, get_definition, list_definitions, seed_definitions, upsert_definition, validate_steps,
)


def test_seed_ships_all_request_types(db, workflows):
    assert sorted(workflows) == ["business_trip", "loan", "time_off"]
    d = get_definition(db, "time_off")
    assert d.is_active
    assert d.steps == [StepConfig(1, "manager", fallback="hr"), StepConfig(2, "hr")]
    assert get_definition(db, "loan").steps == [StepConfig(1, "hr")]


def test_seed_does_not_overwrite_admin_edits(db, workflows):
    upsert_definition(db, "loan", "u-adam", is_active=False)
    assert seed_definitions(db) == []
    assert get_definition(db, "loan").is_active is False


def test_seed_from_custom_file(db, tmp_path):
    f = tmp_path / "wf.yaml"
    f.write_text(
        "workflows:\n"
        "  loan:\n"
        "    is_active: true\n"
        "    default_hr_approver_id: u-payroll\n"
        "    steps:\n"
        "      - {step: 1, approver: specific_user, specific_user_id: u-cfo}\n",
        encoding="utf-8",
    )
    assert seed_definitions(db, f) == ["loan"]
    d = get_definition(db, "loan")
    assert d.default_hr_approver_id == "u-payroll"
    assert d.steps[0].specific_user_id == "u-cfo"


def test_missing_definition(db):
    with pytest.raises(ConfigurationError):
        get_definition(db, "loan")


def test_unknown_request_type(db):
    with pytest.raises(ValueError):
        get_definition(db, "sabbatical")


@pytest.mark.parametrize("steps", [
    {"step": 1, "approver": "hr"},
    [{"step": 0, "approver": "hr"}],
    [{"step": 2, "approver": "hr"}],
    [{"step": 1, "approver": "hr"}, {"step": 1, "approver": "manager"}],
    [{"step": 1, "approver": "hr"}, {"step": "2", "approver": "manager"}],
    [{"step": True, "approver": "hr"}],
    [{"step": 1, "approver": "ceo"}],
    [{"step": 1, "approver": "manager", "fallback": "specific_user"}],
    [{"step": 1, "approver": "hr", "fallback": "hr"}],
    [{"step": 1, "approver": "specific_user"}],
    ["hr"],
])
def test_malformed_steps_rejected(steps):
    with pytest.raises(ConfigurationError):
        validate_steps(steps)


def test_gaps_in_numbering_are_allowed():
    steps = validate_steps([{"step": 1, "approver": "manager"}, {"step": 3, "approver": "hr"}])
    assert [s.step for s in steps] == [1, 3]


def test_bad_update_writes_nothing(db, workflows):
    with pytest.raises(ConfigurationError):
        upsert_definition(db, "time_off", "u-adam", steps=[{"step": 1, "approver": "nobody"}])
    db.rollback()
    assert len(get_definition(db, "time_off").steps) == 2


def test_update_and_clear_default_hr(db, workflows):
    row = upsert_definition(db, "time_off", "u-adam", steps=[{"step": 1, "approver": "HR"}],
                            default_hr_approver_id="u-hana")
    assert row.steps == [{"step": 1, "approver": "hr"}]
    assert row.updated_by == "u-adam"
    assert get_definition(db, "time_off").default_hr_approver_id == "u-hana"

    upsert_definition(db, "time_off", "u-adam", clear_default_hr_approver=True)
    assert get_definition(db, "time_off").default_hr_approver_id is None
    assert [w.request_type for w in list_definitions(db)] == ["business_trip", "loan", "time_off"]


def test_stored_definition_gone_bad(db, workflows):
    from app.models import ApprovalWorkflow
    row = db.query(ApprovalWorkflow).filter(ApprovalWorkflow.request_type == "loan").one()
    row.steps = [{"step": 5, "approver": "hr"}]
    db.commit()
    with pytest.raises(ConfigurationError):
        get_definition(db, "loan")
