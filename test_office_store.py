"""
test_office_store.py - Local office state persistence tests

Checks for:
- empty default when no file exists
- save/load roundtrip and atomic writes (no temp leftovers)
- corrupt file fallback
- update() saves on success, keeps disk untouched on error, serializes writers
- exam and order window helpers

Usage: python test_office_store.py
"""

from __future__ import annotations

import json
import os
import sys
import tempfile
import threading
from pathlib import Path

# Ensure local imports resolve from project root.
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from models import OrderSummary
from office_store import OfficeState, OfficeStore


def _configure_output_symbols() -> tuple[str, str, str]:
    try:
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    except Exception:
        pass

    try:
        "✓✗═".encode(sys.stdout.encoding or "utf-8")
        return "✓", "✗", "═"
    except Exception:
        return "[OK]", "[FAIL]", "="


PASS, FAIL, LINE = _configure_output_symbols()


def test_missing_file_loads_empty_state() -> None:
    with tempfile.TemporaryDirectory(prefix="office-store-") as tmp_dir:
        store = OfficeStore(str(Path(tmp_dir) / "nested" / "state.json"))
        state = store.load()
        assert state.exams == []
        assert state.orders == []
        assert state.updated_at is None


def test_roundtrip_and_no_temp_leftovers() -> None:
    with tempfile.TemporaryDirectory(prefix="office-store-") as tmp_dir:
        store = OfficeStore(str(Path(tmp_dir) / "nested" / "state.json"))
        state = store.load()
        state.add_exams("B1", ["15.03.2025", "12.04.2025"])
        state.upsert_orders([OrderSummary(id=1, number="4821", customer_name="Jürgen Groß")])
        state.add_statement("auszug.pdf")
        store.save(state)

        loaded = store.load()
        assert [exam.id for exam in loaded.exams] == [1, 2]
        assert loaded.orders[0].customer_name == "Jürgen Groß"
        assert loaded.statements[0].filename == "auszug.pdf"
        assert loaded.updated_at is not None

        raw = store.path.read_text(encoding="utf-8")
        assert "Jürgen Groß" in raw
        leftovers = [path.name for path in store.path.parent.iterdir() if path.suffix == ".tmp"]
        assert leftovers == []


def test_corrupt_or_odd_file_falls_back() -> None:
    with tempfile.TemporaryDirectory(prefix="office-store-") as tmp_dir:
        path = Path(tmp_dir) / "state.json"
        path.write_text("{not json", encoding="utf-8")
        assert OfficeStore(str(path)).load().exams == []

        path.write_text(json.dumps({"exams": "oops", "orders": None, "extra": 1}), encoding="utf-8")
        state = OfficeStore(str(path)).load()
        assert state.exams == []
        assert state.orders == []


def test_update_saves_only_on_success() -> None:
    with tempfile.TemporaryDirectory(prefix="office-store-") as tmp_dir:
        store = OfficeStore(str(Path(tmp_dir) / "state.json"))
        with store.update() as state:
            state.add_exams("B1", ["15.03.2025"])
        assert [exam.id for exam in store.load().exams] == [1]

        try:
            with store.update() as state:
                state.add_exams("B2", ["10.05.2025"])
                raise KeyError("stop")
            raised = False
        except KeyError:
            raised = True
        assert raised
        assert [exam.kind for exam in store.load().exams] == ["B1"]


def test_concurrent_updates_keep_every_write() -> None:
    with tempfile.TemporaryDirectory(prefix="office-store-") as tmp_dir:
        store = OfficeStore(str(Path(tmp_dir) / "state.json"))

        def add_one(day: int) -> None:
            with store.update() as state:
                state.add_exams("B1", [f"{day:02d}.03.2025"])

        workers = [threading.Thread(target=add_one, args=(day,)) for day in range(1, 9)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        exams = store.load().exams
        assert len(exams) == 8
        assert sorted(exam.id for exam in exams) == list(range(1, 9))


def test_exam_helpers() -> None:
    state = OfficeState()
    state.add_exams("B2", ["10.05.2025"])
    state.add_exams(" b1 ", ["15.03.2025", "01.03.2025"])
    assert [exam.date for exam in state.list_exams("B1")] == ["01.03.2025", "15.03.2025"]
    assert len(state.list_exams()) == 3

    assert state.remove_exams([2, 99]) == 1
    assert [exam.id for exam in state.list_exams()] == [1, 3]
    assert state.add_exams("C1", ["01.06.2025"])[0].id == 4


def test_order_window_helpers() -> None:
    state = OfficeState()
    state.upsert_orders(
        [
            OrderSummary(id=1, created_at="2025-01-01T00:00:00"),
            OrderSummary(id=2, created_at="2025-03-01T00:00:00"),
            OrderSummary(id=3, created_at="2025-02-01T00:00:00"),
        ]
    )
    state.upsert_orders([OrderSummary(id=1, number="X", created_at="2025-04-01T00:00:00")])
    assert len(state.orders) == 3
    assert [order.id for order in state.recent_orders(2)] == [1, 2]
    assert state.recent_orders(1)[0].number == "X"
    assert state.recent_orders(0) == []


def main() -> None:
    tests = [(name, func) for name, func in globals().items() if name.startswith("test_") and callable(func)]
    passed = 0
    failed = 0

    print(LINE * 62)
    print("  Office State Store Tests")
    print(LINE * 62)

    for name, func in tests:
        try:
            func()
        except AssertionError as exc:
            failed += 1
            print(f"    {FAIL} {name} {exc}")
        else:
            passed += 1
            print(f"    {PASS} {name}")

    print(f"\n{LINE * 62}")
    print(f"  Results: {passed}/{passed + failed} passed")
    print(f"{LINE * 62}")
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
