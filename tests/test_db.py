from __future__ import annotations

import sqlite3
from pathlib import Path

from conftest import run

from agencysync.db import CustomerRepository


def test_queries_are_scoped_to_the_owner(repository, user_id) -> None:
    other = repository.add_user_sync("other@jobanputra.com")
    mine = run(repository.insert(user_id, {"name": "Asha", "vertical": "motor"}))
    theirs = run(repository.insert(other, {"name": "Ravi", "vertical": "motor"}))

    assert [record["name"] for record in run(repository.find_by_user(user_id))] == ["Asha"]
    assert run(repository.get(user_id, theirs)) is None
    assert run(repository.update(user_id, theirs, {"name": "Hijacked"})) is False
    assert run(repository.delete(user_id, theirs)) is False
    assert run(repository.get(other, theirs))["name"] == "Ravi"
    assert run(repository.get(user_id, mine))["name"] == "Asha"


def test_vertical_filter_and_defaults(repository, user_id) -> None:
    run(repository.insert(user_id, {"name": "A", "vertical": "motor"}))
    run(repository.insert(user_id, {"name": "B", "vertical": "life"}))
    run(repository.insert(user_id, {"name": "C"}))

    general = run(repository.find_by_user(user_id, ["motor", "health", "non-motor"]))
    life = run(repository.find_by_user(user_id, ["life"]))

    assert [record["name"] for record in general] == ["A", "C"]
    assert [record["name"] for record in life] == ["B"]
    assert general[1]["status"] == "due"
    assert general[1]["premium"] == 0


def test_find_by_composite_key_ignores_case(repository, user_id) -> None:
    record_id = run(
        repository.insert(user_id, {"name": "A", "current_policy_no": "POL-1", "product_type": "Private Car"})
    )

    found = run(repository.find_by_composite_key(user_id, " pol-1", "private car"))

    assert found["id"] == record_id
    assert run(repository.find_by_composite_key(user_id, "POL-1", "Bike")) is None


def test_unknown_columns_are_ignored_on_write(repository, user_id) -> None:
    record_id = run(repository.insert(user_id, {"name": "A", "user_id": 999, "bogus": "x"}))

    record = run(repository.get(user_id, record_id))

    assert record["user_id"] == user_id
    assert "bogus" not in record


def test_missing_columns_are_added_to_existing_database(tmp_path: Path) -> None:
    path = tmp_path / "legacy.db"
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE customers (id INTEGER PRIMARY KEY AUTOINCREMENT, user_id INTEGER NOT NULL, name TEXT)")
    conn.execute("INSERT INTO customers (user_id, name) VALUES (1, 'Old Timer')")
    conn.commit()
    conn.close()

    repository = CustomerRepository(path)
    repository.initialize()

    [record] = run(repository.find_by_user(1))
    assert record["name"] == "Old Timer"
    assert record["status"] == "due"
    assert "sheet_row_number" in record


def test_user_email_lookup(repository, user_id) -> None:
    assert run(repository.user_email(user_id)) == "agent@kmginsurance.in"
    assert run(repository.user_email(12345)) is None
    assert repository.add_user_sync("agent@kmginsurance.in") == user_id
