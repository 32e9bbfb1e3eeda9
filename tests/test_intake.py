import pytest

from lve360_shared import intake
from lve360_shared.intake import PostgresIntakeLoader, SubmissionNotFound, normalize_submission, parse_list, rows_to_names
from conftest import FakeConnection


SUBMISSION_ROW = {
    "id": "sub-1",
    "user_email": "sam@example.com",
    "name": "Sam",
    "goals": ["Sleep", "Energy"],
    "health_conditions": "Hypertension; GERD",
    "medications": "should be ignored",
    "allergy_details": "fish, soy",
    "pregnant": "No",
    "dob": "1990-06-15",
    "sex_at_birth": "female",
    "weight": "150",
    "sleep_rating": None,
    "brand_pref": "budget",
    "tier": "Premium",
}


def test_parse_list():
    assert parse_list("a, b;c|d\ne") == ["a", "b", "c", "d", "e"]
    assert parse_list(["x", {"name": "y"}, " ", None]) == ["x", "y"]
    assert parse_list(None) == []


def test_rows_to_names():
    rows = [{"med_name": "Lisinopril"}, {"name": "Metformin"}, "Aspirin", {"other": "x"}]
    assert rows_to_names(rows, "med_name", "name") == ["Lisinopril", "Metformin", "Aspirin"]


def test_normalize_submission_child_rows_win():
    sub = normalize_submission(SUBMISSION_ROW, medications=[{"med_name": "Lisinopril"}], supplements=["Vitamin D"])
    assert sub.email == "sam@example.com"
    assert sub.medications == ["Lisinopril"]
    assert sub.supplements == ["Vitamin D"]
    assert sub.conditions == ["Hypertension", "GERD"]
    assert sub.allergies == ["fish", "soy"]
    assert sub.pregnant is False
    assert sub.sex == "female"
    assert sub.weight == 150.0
    assert sub.sleep_rating is None
    assert sub.tier == "premium"


def test_normalize_submission_parent_columns_as_fallback():
    row = dict(SUBMISSION_ROW, medications="Metformin, Levothyroxine", pregnant="Yes, currently")
    sub = normalize_submission(row)
    assert sub.medications == ["Metformin", "Levothyroxine"]
    assert sub.pregnant is True


def _responder(sql, params):
    if "FROM submissions" in sql:
        return [SUBMISSION_ROW] if params == ("sub-1",) else []
    if "submission_medications" in sql:
        return [{"submission_id": "sub-1", "med_name": "Lisinopril"}]
    if "submission_hormones" in sql:
        return [{"submission_id": "sub-1", "hormone_name": "Estradiol"}]
    return []


def test_loader_fetch(monkeypatch):
    conn = FakeConnection(responder=_responder)
    monkeypatch.setattr(intake, "get_db_connection", lambda dsn=None: conn)

    sub = PostgresIntakeLoader(dsn="postgresql://test").fetch("sub-1")
    assert sub.id == "sub-1"
    assert sub.medications == ["Lisinopril"]
    assert sub.hormones == ["Estradiol"]
    assert sub.supplements == []


def test_loader_unknown_submission(monkeypatch):
    conn = FakeConnection(responder=_responder)
    monkeypatch.setattr(intake, "get_db_connection", lambda dsn=None: conn)

    with pytest.raises(SubmissionNotFound):
        PostgresIntakeLoader(dsn="postgresql://test").fetch("missing")
    with pytest.raises(ValueError):
        PostgresIntakeLoader(dsn="postgresql://test").fetch("")
