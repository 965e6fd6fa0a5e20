import datetime
import json
import math

import pytest

from splitcat.ledger import IdGenerator, SplitLedger, round_cents, utc_today
from splitcat.models import ExpensePatch, LedgerState, Participant
from splitcat.storage import MemorySlot, SnapshotStorage, STORAGE_KEY


def make_ledger(state=None, **kwargs):
    slot = MemorySlot()
    if state is not None:
        slot.set_item(STORAGE_KEY, json.dumps(state))
    return SplitLedger(storage=SnapshotStorage(slot), **kwargs)


def saved_state(ledger):
    return json.loads(ledger.storage.slot.get_item(STORAGE_KEY))


def test_starts_empty_without_snapshot():
    ledger = make_ledger()
    assert ledger.participants == []
    assert ledger.expenses == []
    assert ledger.current_session_id == ""
    assert ledger.total_amount == 0


def test_add_participant():
    ledger = make_ledger()
    pid = ledger.add_participant("Alice")
    assert [p.name for p in ledger.participants] == ["Alice"]
    assert ledger.participants[0].id == pid
    assert saved_state(ledger)["participants"] == [{"id": pid, "name": "Alice"}]


def test_ids_are_unique_even_after_removal():
    ledger = make_ledger(id_factory=IdGenerator(clock=lambda: 1000.0))
    first = ledger.add_participant("Alice")
    ledger.remove_participant(first)
    second = ledger.add_participant("Bob")
    expense = ledger.add_expense("Taxi", 10.0)
    assert len({first, second, expense}) == 3


def test_ids_continue_above_loaded_ids():
    state = {"participants": [{"id": "9999999999999", "name": "A"}], "expenses": [], "currentSessionId": ""}
    ledger = make_ledger(state, id_factory=IdGenerator(clock=lambda: 1.0))
    assert int(ledger.add_participant("B")) > 9999999999999


def test_two_way_split():
    state = {
        "participants": [{"id": "1", "name": "A"}, {"id": "2", "name": "B"}],
        "expenses": [{"id": "10", "name": "Dinner", "amount": 100, "participants": ["1", "2"], "payerId": "1"}],
        "currentSessionId": "s1",
    }
    ledger = make_ledger(state)
    assert ledger.total_amount == 100
    results = ledger.split_results
    assert [(r.name, r.total_amount) for r in results] == [("A", 50.0), ("B", 50.0)]
    assert results[0].items[0].item_name == "Dinner"
    assert results[0].items[0].amount == 50.0


def test_excluded_participant_not_charged():
    state = {
        "participants": [{"id": "1", "name": "A"}, {"id": "2", "name": "B"}],
        "expenses": [
            {"id": "10", "name": "Dinner", "amount": 100, "participants": ["1", "2"]},
            {"id": "11", "name": "Drinks", "amount": 30, "participants": ["1"]},
        ],
        "currentSessionId": "",
    }
    ledger = make_ledger(state)
    a, b = ledger.split_results
    assert a.total_amount == 80.0
    assert b.total_amount == 50.0
    assert [i.item_name for i in b.items] == ["Dinner"]


def test_add_expense_defaults_to_current_participants_snapshot():
    ledger = make_ledger(today=lambda: datetime.date(2024, 3, 5))
    a = ledger.add_participant("Alice")
    b = ledger.add_participant("Bob")
    eid = ledger.add_expense("Pizza", 30.0)
    ledger.add_participant("Carol")
    expense = ledger.get_expense(eid)
    assert expense.participants == [a, b]
    assert expense.date == "2024-03-05"
    assert [r.total_amount for r in ledger.split_results] == [15.0, 15.0, 0.0]


def test_add_expense_with_explicit_participants():
    ledger = make_ledger()
    a = ledger.add_participant("Alice")
    ledger.add_participant("Bob")
    eid = ledger.add_expense("Book", 12.5, [a], payer_id=a, category="Gifts")
    expense = ledger.get_expense(eid)
    assert expense.participants == [a]
    assert expense.payer_id == a
    assert expense.category == "Gifts"
    assert saved_state(ledger)["expenses"][0]["payerId"] == a


def test_total_tracks_adds_and_removes():
    ledger = make_ledger()
    ledger.add_participant("Alice")
    ids = [ledger.add_expense(f"e{n}", amount) for n, amount in enumerate([10.0, 2.5, 7.25])]
    assert ledger.total_amount == pytest.approx(19.75)
    ledger.remove_expense(ids[1])
    assert ledger.total_amount == pytest.approx(17.25)
    assert len(saved_state(ledger)["expenses"]) == 2


def test_remove_participant_prunes_expenses():
    ledger = make_ledger()
    a = ledger.add_participant("Alice")
    b = ledger.add_participant("Bob")
    eid = ledger.add_expense("Taxi", 20.0)
    ledger.remove_participant(b)
    assert [p.id for p in ledger.participants] == [a]
    assert ledger.get_expense(eid).participants == [a]
    assert ledger.split_results[0].total_amount == 20.0
    assert saved_state(ledger)["expenses"][0]["participants"] == [a]


def test_expense_without_participants_contributes_nothing():
    ledger = make_ledger()
    a = ledger.add_participant("Alice")
    b = ledger.add_participant("Bob")
    ledger.add_expense("Solo", 40.0, [b])
    ledger.remove_participant(b)
    assert len(ledger.expenses) == 1
    assert ledger.expenses[0].participants == []
    assert ledger.total_amount == 40.0
    assert [(r.participant_id, r.total_amount, r.items) for r in ledger.split_results] == [(a, 0.0, [])]


def test_unknown_ids_are_noops():
    ledger = make_ledger()
    ledger.add_participant("Alice")
    ledger.add_expense("Taxi", 5.0)
    before = saved_state(ledger)
    ledger.remove_participant("nope")
    ledger.remove_expense("nope")
    ledger.update_expense("nope", ExpensePatch(amount=1.0))
    assert saved_state(ledger) == before


def test_update_expense_applies_only_given_fields():
    ledger = make_ledger()
    a = ledger.add_participant("Alice")
    b = ledger.add_participant("Bob")
    eid = ledger.add_expense("Taxi", 10.0, category="Transport")
    ledger.update_expense(eid, ExpensePatch(amount=30.0, participants=[a]))
    expense = ledger.get_expense(eid)
    assert expense.amount == 30.0
    assert expense.participants == [a]
    assert expense.name == "Taxi"
    assert expense.category == "Transport"
    assert [r.total_amount for r in ledger.split_results] == [30.0, 0.0]
    assert b not in saved_state(ledger)["expenses"][0]["participants"]


def test_duplicate_participant_ids_are_collapsed():
    ledger = make_ledger()
    a = ledger.add_participant("Alice")
    b = ledger.add_participant("Bob")
    eid = ledger.add_expense("Taxi", 9.0, [a, a, b])
    assert ledger.get_expense(eid).participants == [a, b]


def test_totals_are_rounded_per_participant():
    ledger = make_ledger()
    for name in ("A", "B", "C"):
        ledger.add_participant(name)
    ledger.add_expense("Cake", 10.0)
    totals = [r.total_amount for r in ledger.split_results]
    assert totals == [3.33, 3.33, 3.33]
    assert ledger.total_amount == 10.0


def test_round_cents_rounds_half_away_from_zero():
    assert round_cents(0.125) == 0.13
    assert round_cents(2.5) == 2.5
    assert round_cents(-0.125) == -0.13
    assert round_cents(1.005 + 1e-9) == 1.01


def test_clear_all():
    ledger = make_ledger()
    ledger.start_new_session()
    ledger.add_participant("Alice")
    ledger.add_expense("Taxi", 5.0)
    ledger.clear_all()
    assert ledger.participants == []
    assert ledger.expenses == []
    assert ledger.current_session_id == ""
    assert saved_state(ledger) == {"participants": [], "expenses": [], "currentSessionId": ""}


def test_start_new_session():
    ledger = make_ledger()
    first = ledger.start_new_session()
    ledger.add_participant("Alice")
    ledger.add_expense("Taxi", 5.0)
    second = ledger.start_new_session()
    assert ledger.participants == []
    assert ledger.expenses == []
    assert second and second != first
    assert ledger.current_session_id == second
    assert saved_state(ledger)["currentSessionId"] == second


def test_state_survives_reload():
    slot = MemorySlot()
    ledger = SplitLedger(storage=SnapshotStorage(slot))
    ledger.start_new_session()
    a = ledger.add_participant("Alice")
    ledger.add_participant("Bob")
    ledger.add_expense("Dinner", 60.0, payer_id=a)

    reloaded = SplitLedger(storage=SnapshotStorage(slot))
    assert reloaded.state().to_dict() == ledger.state().to_dict()
    assert [r.total_amount for r in reloaded.split_results] == [30.0, 30.0]


def test_participants_property_is_a_copy():
    ledger = make_ledger()
    ledger.add_participant("Alice")
    ledger.participants.append(Participant(id="x", name="Mallory"))
    assert len(ledger.participants) == 1


def test_mutations_continue_when_save_fails():
    class BrokenSlot(MemorySlot):
        def set_item(self, key, value):
            raise OSError("disk full")

    ledger = SplitLedger(storage=SnapshotStorage(BrokenSlot()))
    ledger.add_participant("Alice")
    ledger.add_expense("Taxi", 5.0)
    assert len(ledger.participants) == 1
    assert ledger.total_amount == 5.0


def test_balances_and_settle_suggestions():
    ledger = make_ledger()
    a = ledger.add_participant("Alice")
    b = ledger.add_participant("Bob")
    ledger.add_expense("Dinner", 100.0, payer_id=a)
    ledger.add_expense("Taxi", 50.0, payer_id=b)
    ledger.add_expense("Snacks", 8.0)
    assert ledger.balances() == {a: 25.0, b: -25.0}
    assert ledger.settle_suggestions() == ["Bob pays Alice 25.00"]


def test_nothing_to_settle_when_even():
    ledger = make_ledger()
    a = ledger.add_participant("Alice")
    b = ledger.add_participant("Bob")
    ledger.add_expense("Dinner", 40.0, payer_id=a)
    ledger.add_expense("Taxi", 40.0, payer_id=b)
    assert ledger.settle_suggestions() == []


def test_export_on_empty_ledger_does_nothing():
    calls = []
    ledger = make_ledger(export_sink=lambda name, payload: calls.append(name))
    assert ledger.export_results() is None
    assert calls == []


def test_export_results_document():
    calls = []
    ledger = make_ledger(today=lambda: datetime.date(2024, 3, 5))
    a = ledger.add_participant("Alice")
    ledger.add_participant("Bob")
    ledger.add_expense("Dinner", 100.0, payer_id=a)

    doc = ledger.export_results(lambda name, payload: calls.append((name, payload)))
    assert doc["title"] == "Split Results"
    assert doc["date"] == "2024/3/5"
    assert doc["totalAmount"] == 100.0
    assert doc["participantCount"] == 2
    assert doc["expenseCount"] == 1
    assert [r["totalAmount"] for r in doc["results"]] == [50.0, 50.0]
    assert doc["results"][0]["items"] == [{"itemName": "Dinner", "amount": 50.0}]
    assert doc["expenses"][0]["name"] == "Dinner"

    name, payload = calls[0]
    assert name == "split_results_2024-03-05.json"
    assert json.loads(payload) == doc


def test_export_with_participants_but_no_expenses():
    ledger = make_ledger()
    ledger.add_participant("Alice")
    doc = ledger.export_results()
    assert doc["expenseCount"] == 0
    assert doc["results"][0]["totalAmount"] == 0.0


def test_loaded_state_is_independent_of_empty_default():
    ledger = make_ledger(LedgerState(current_session_id="abc").to_dict())
    assert ledger.current_session_id == "abc"


def test_round_cents_leaves_unscalable_values_alone():
    assert round_cents(1e307) == 1e307
    assert round_cents(float("inf")) == float("inf")
    assert math.isnan(round_cents(float("nan")))


def test_huge_amount_does_not_break_results():
    ledger = make_ledger()
    ledger.add_participant("A")
    ledger.add_expense("Yacht", 1e307)
    assert ledger.split_results[0].total_amount == 1e307
    assert ledger.export_results()["totalAmount"] == 1e307


def test_infinite_amount_survives_reload():
    slot = MemorySlot()
    ledger = SplitLedger(storage=SnapshotStorage(slot))
    a = ledger.add_participant("A")
    ledger.add_participant("B")
    ledger.add_expense("Oops", float("inf"), payer_id=a)

    reloaded = SplitLedger(storage=SnapshotStorage(slot))
    assert len(reloaded.expenses) == 1
    assert [r.total_amount for r in reloaded.split_results] == [float("inf"), float("inf")]
    assert reloaded.export_results()["expenseCount"] == 1
    assert reloaded.settle_suggestions() == []


def test_expenses_are_stamped_with_utc_date():
    before = datetime.datetime.now(datetime.timezone.utc).date()
    ledger = make_ledger()
    ledger.add_participant("A")
    eid = ledger.add_expense("Taxi", 5.0)
    after = datetime.datetime.now(datetime.timezone.utc).date()
    assert ledger.get_expense(eid).date in (before.isoformat(), after.isoformat())
    assert utc_today() in (before, after, after + datetime.timedelta(days=1))
