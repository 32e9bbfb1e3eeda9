import pytest

from lve360_shared import db_writer
from lve360_shared.config import ConfigurationError
from lve360_shared.db_writer import PostgresStackWriter, fetch_stack_items, get_db_connection, prepare_item_rows
from lve360_shared.types import DoseParsed, Stack, StackItem
from conftest import FakeConnection


def _stack():
    return Stack(submission_id="sub-1", user_email="sam@example.com", generation_id="gen-1", model_used="gpt-4o-mini")


def _returning_id(sql, params):
    if "RETURNING id" in sql:
        return [{"id": "stack-42"}]
    return []


def test_get_db_connection_requires_dsn(monkeypatch):
    monkeypatch.delenv("LVE360_DB_DSN", raising=False)
    with pytest.raises(ConfigurationError):
        get_db_connection()


def test_writer_ensure_configured(monkeypatch):
    monkeypatch.delenv("LVE360_DB_DSN", raising=False)
    with pytest.raises(ConfigurationError):
        PostgresStackWriter().ensure_configured()
    PostgresStackWriter(dsn="postgresql://localhost/lve360").ensure_configured()


def test_prepare_item_rows_skips_placeholders():
    items = [StackItem(name="Zinc"), StackItem(name="See Dosing & Notes"), StackItem(name="**"), StackItem(name="Item 3")]
    rows, skipped = prepare_item_rows(items)
    assert [i.name for i in rows] == ["Zinc"]
    assert skipped == 3


def test_save_replaces_children_in_one_transaction(monkeypatch):
    conn = FakeConnection(responder=_returning_id)
    monkeypatch.setattr(db_writer, "get_db_connection", lambda dsn=None: conn)

    items = [
        StackItem(name="Magnesium", dose="200 mg", dose_parsed=DoseParsed(amount=200, unit="mg"), citations=["https://pubmed.ncbi.nlm.nih.gov/1/"]),
        StackItem(name="Zinc"),
        StackItem(name="Analysis"),
    ]
    result = PostgresStackWriter(dsn="postgresql://test").save(_stack(), items)

    assert result.saved
    assert result.stack_id == "stack-42"
    assert result.items_inserted == 2
    assert result.items_skipped == 1

    events = conn.events
    assert events[0] == "begin"
    assert events[-1] == "commit"
    delete_at = next(i for i, e in enumerate(events) if e.startswith("DELETE FROM stacks_items"))
    insert_at = next(i for i, e in enumerate(events) if e.startswith("INSERT INTO stacks_items"))
    assert delete_at < insert_at

    _, rows = conn.executed_many[0]
    assert len(rows) == 2
    first = rows[0]
    assert first[0] == "stack-42"
    assert first[3] == "Magnesium"
    assert first[5] == 200
    assert first[6] == "mg"


def test_save_with_no_items_still_clears_children(monkeypatch):
    conn = FakeConnection(responder=_returning_id)
    monkeypatch.setattr(db_writer, "get_db_connection", lambda dsn=None: conn)

    result = PostgresStackWriter(dsn="postgresql://test").save(_stack(), [])
    assert result.saved
    assert result.items_inserted == 0
    assert any(e.startswith("DELETE FROM stacks_items") for e in conn.events)
    assert conn.executed_many == []


def test_save_failure_rolls_back_and_reports(monkeypatch):
    conn = FakeConnection(responder=_returning_id, fail_on_executemany=True)
    monkeypatch.setattr(db_writer, "get_db_connection", lambda dsn=None: conn)

    result = PostgresStackWriter(dsn="postgresql://test").save(_stack(), [StackItem(name="Zinc")])
    assert not result.saved
    assert "insert failed" in result.error
    assert conn.events[-1] == "rollback"


def test_fetch_stack_items(monkeypatch):
    conn = FakeConnection(responder=lambda sql, params: [{"name": "Zinc", "stack_id": "stack-42"}])
    monkeypatch.setattr(db_writer, "get_db_connection", lambda dsn=None: conn)

    items = fetch_stack_items("sub-1")
    assert items == [{"name": "Zinc", "stack_id": "stack-42"}]
    assert conn.executed[0][1] == ("sub-1",)
