from __future__ import annotations

from pathlib import Path

from quest_archiver.adapters.failure_ledger import FailureLedger


def test_ledger_appends_and_lists_records(tmp_path: Path) -> None:
    ledger = FailureLedger(tmp_path / "out" / "fat_quests.jsonl", clock=lambda: "t0")

    ledger.record("q1", "chapters failed")
    ledger.record("q2", "metadata failed")
    ledger.record("q1", "chapters failed again")

    records = ledger.list()
    assert [(record.story_id, record.reason) for record in records] == [
        ("q1", "chapters failed"),
        ("q2", "metadata failed"),
        ("q1", "chapters failed again"),
    ]
    assert all(record.recorded_at == "t0" for record in records)


def test_ledger_survives_reopen_and_skips_unreadable_lines(tmp_path: Path) -> None:
    path = tmp_path / "fat_quests.jsonl"
    FailureLedger(path).record("q1", "boom")
    with path.open("a", encoding="utf-8") as handle:
        handle.write("not json\n\n")
    FailureLedger(path).record("q2", "bang")

    assert [record.story_id for record in FailureLedger(path).list()] == ["q1", "q2"]


def test_empty_ledger_lists_nothing(tmp_path: Path) -> None:
    assert FailureLedger(tmp_path / "missing.jsonl").list() == []
