"""
ledger.py - core application logic

Responsibilities:
 - own the participants, expenses and current session id of the active session
 - expose the mutation API used by the UI (add/remove participants and
   expenses, update, clear, new session); every mutation ends by saving the
   full snapshot through SnapshotStorage
 - derive totals and per-participant split results on every read
 - build the export document and hand it to an export sink
"""

from typing import Callable, Dict, List, Optional
import datetime
import json
import logging
import math
import time

from splitcat.models import Expense, ExpensePatch, LedgerState, Participant, SplitItem, SplitResult
from splitcat.storage import SnapshotStorage

EXPORT_TITLE = "Split Results"

# ensure a logger is available
logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def round_cents(value: float) -> float:
    """
    Round to 2 decimals, halves away from zero (round(x*100)/100).
    Values too large to scale (and inf/nan) are returned unchanged.
    """
    if not math.isfinite(value * 100):
        return value
    return math.copysign(math.floor(abs(value) * 100 + 0.5), value) / 100


def utc_today() -> datetime.date:
    """Calendar date in UTC, used to stamp expenses and name exports."""
    return datetime.datetime.now(datetime.timezone.utc).date()


class IdGenerator:
    """
    Time-based ids (milliseconds since epoch, as strings) that are strictly
    increasing, so an id is never handed out twice even when two calls land
    in the same millisecond or the clock goes backwards.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._last = 0

    def observe(self, ids):
        """Make sure future ids are above every numeric id in `ids`."""
        for raw in ids:
            try:
                self._last = max(self._last, int(raw))
            except (TypeError, ValueError):
                continue

    def __call__(self) -> str:
        now = int(self._clock() * 1000)
        self._last = max(now, self._last + 1)
        return str(self._last)


class SplitLedger:
    """
    Single owned instance per session. The UI creates one SplitLedger and
    passes it to whatever needs it.
    """

    def __init__(self,
                 storage: Optional[SnapshotStorage] = None,
                 id_factory: Optional[IdGenerator] = None,
                 today: Callable[[], datetime.date] = utc_today,
                 export_sink: Optional[Callable[[str, str], None]] = None):
        self.storage = storage if storage is not None else SnapshotStorage()
        self._new_id = id_factory if id_factory is not None else IdGenerator()
        self._today = today
        self.export_sink = export_sink

        self._participants: List[Participant] = []
        self._expenses: List[Expense] = []
        self.current_session_id = ""
        self.load()

    # -----------------------
    # State access
    # -----------------------
    @property
    def participants(self) -> List[Participant]:
        """Copy of the participant list; mutate through the ledger methods."""
        return list(self._participants)

    @property
    def expenses(self) -> List[Expense]:
        return list(self._expenses)

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        return next((p for p in self._participants if p.id == participant_id), None)

    def get_expense(self, expense_id: str) -> Optional[Expense]:
        return next((e for e in self._expenses if e.id == expense_id), None)

    def participant_name(self, participant_id: str) -> str:
        p = self.get_participant(participant_id)
        return p.name if p else ""

    def state(self) -> LedgerState:
        return LedgerState(
            participants=list(self._participants),
            expenses=list(self._expenses),
            current_session_id=self.current_session_id,
        )

    # -----------------------
    # Persistence
    # -----------------------
    def load(self):
        """Replace the in-memory state with the stored snapshot (empty if none)."""
        state = self.storage.load() or LedgerState()
        self._participants = state.participants
        self._expenses = state.expenses
        self.current_session_id = state.current_session_id
        self._new_id.observe(p.id for p in self._participants)
        self._new_id.observe(e.id for e in self._expenses)
        self._new_id.observe([self.current_session_id])
        logger.info("Loaded ledger (participants=%d, expenses=%d, session=%r)",
                    len(self._participants), len(self._expenses), self.current_session_id)

    def save(self) -> bool:
        return self.storage.save(self.state())

    # -----------------------
    # Participants
    # -----------------------
    def add_participant(self, name: str, avatar: Optional[str] = None) -> str:
        participant_id = self._new_id()
        self._participants.append(Participant(id=participant_id, name=name, avatar=avatar))
        self.save()
        return participant_id

    def remove_participant(self, participant_id: str):
        """
        Remove a participant and drop its id from every expense. Expenses are
        kept even when their participant list ends up empty.
        """
        participant = self.get_participant(participant_id)
        if participant is None:
            logger.debug("Participant id=%s not found", participant_id)
            return
        self._participants.remove(participant)
        for e in self._expenses:
            e.participants = [pid for pid in e.participants if pid != participant_id]
        self.save()

    # -----------------------
    # Expenses
    # -----------------------
    def add_expense(self,
                    name: str,
                    amount: float,
                    participant_ids: Optional[List[str]] = None,
                    payer_id: str = "",
                    category: Optional[str] = None) -> str:
        """
        Append a new expense dated today. Without participant_ids the expense is
        shared by everyone currently in the ledger (later participants are not
        added to it).
        """
        if not participant_ids:
            participant_ids = [p.id for p in self._participants]
        expense_id = self._new_id()
        self._expenses.append(Expense(
            id=expense_id,
            name=name,
            amount=amount,
            participants=list(participant_ids),
            payer_id=payer_id,
            category=category,
            date=self._today().isoformat(),
        ))
        self.save()
        return expense_id

    def remove_expense(self, expense_id: str):
        expense = self.get_expense(expense_id)
        if expense is None:
            logger.debug("Expense id=%s not found", expense_id)
            return
        self._expenses.remove(expense)
        self.save()

    def update_expense(self, expense_id: str, patch: ExpensePatch):
        expense = self.get_expense(expense_id)
        if expense is None:
            logger.debug("Expense id=%s not found", expense_id)
            return
        patch.apply_to(expense)
        self.save()

    # -----------------------
    # Session
    # -----------------------
    def clear_all(self):
        self._participants = []
        self._expenses = []
        self.current_session_id = ""
        self.save()

    def start_new_session(self) -> str:
        self.clear_all()
        self.current_session_id = self._new_id()
        self.save()
        logger.info("Started session %s", self.current_session_id)
        return self.current_session_id

    # -----------------------
    # Derived views
    # -----------------------
    @property
    def total_amount(self) -> float:
        return sum(e.amount for e in self._expenses)

    @property
    def split_results(self) -> List[SplitResult]:
        """
        One result per participant. Each expense is split equally between the
        participants listed on it; the per-participant total is rounded to
        cents on its own, so the totals may drift from total_amount by a cent.
        An expense with no participants is in nobody's breakdown.
        """
        results: List[SplitResult] = []
        for p in self._participants:
            items: List[SplitItem] = []
            total = 0.0
            for e in self._expenses:
                if p.id not in e.participants:
                    continue
                share = e.amount / len(e.participants)
                total += share
                items.append(SplitItem(item_name=e.name, amount=share))
            results.append(SplitResult(
                participant_id=p.id,
                name=p.name,
                total_amount=round_cents(total),
                items=items,
            ))
        return results

    def balances(self) -> Dict[str, float]:
        """
        Net balance per participant id.

        The payer is credited the full amount of each expense, every listed
        participant is debited their equal share. Expenses without a known
        payer or without participants are skipped.
        Positive balance => participant should receive money.
        """
        bal: Dict[str, float] = {p.id: 0.0 for p in self._participants}
        for e in self._expenses:
            if e.payer_id not in bal or not e.participants:
                continue
            share = e.amount / len(e.participants)
            for pid in e.participants:
                if pid in bal:
                    bal[pid] -= share
            bal[e.payer_id] += e.amount
        for pid, v in bal.items():
            bal[pid] = 0.0 if abs(v) < 0.005 else round_cents(v)
        return bal

    def settle_suggestions(self) -> List[str]:
        """
        Greedily match the largest creditor with the largest debtor, producing
        lines like "Bob pays Alice 12.34".
        """
        bal = self.balances()
        # inf/nan balances cannot be settled
        finite = {pid: amt for pid, amt in bal.items() if math.isfinite(amt)}
        creditors = [(pid, amt) for pid, amt in finite.items() if amt > 0]
        debtors = [(pid, -amt) for pid, amt in finite.items() if amt < 0]
        creditors.sort(key=lambda x: x[1], reverse=True)
        debtors.sort(key=lambda x: x[1], reverse=True)
        i = j = 0
        suggestions: List[str] = []
        while i < len(debtors) and j < len(creditors):
            d_id, d_amt = debtors[i]
            c_id, c_amt = creditors[j]
            pay = round_cents(min(d_amt, c_amt))
            suggestions.append(f"{self.participant_name(d_id)} pays {self.participant_name(c_id)} {pay:.2f}")
            d_amt -= pay
            c_amt -= pay
            if d_amt <= 0.005:
                i += 1
            else:
                debtors[i] = (d_id, d_amt)
            if c_amt <= 0.005:
                j += 1
            else:
                creditors[j] = (c_id, c_amt)
        return suggestions

    # -----------------------
    # Export
    # -----------------------
    def export_filename(self) -> str:
        return f"split_results_{self._today().isoformat()}.json"

    def build_export_document(self) -> Optional[Dict]:
        results = self.split_results
        if not results:
            return None
        d = self._today()
        return {
            "title": EXPORT_TITLE,
            "date": f"{d.year}/{d.month}/{d.day}",
            "totalAmount": self.total_amount,
            "participantCount": len(self._participants),
            "expenseCount": len(self._expenses),
            "results": [r.to_dict() for r in results],
            "expenses": [e.to_dict() for e in self._expenses],
        }

    def export_results(self, sink: Optional[Callable[[str, str], None]] = None) -> Optional[Dict]:
        """
        Hand the export document to `sink(filename, json_text)`. Does nothing
        and returns None when there are no split results.
        """
        doc = self.build_export_document()
        if doc is None:
            logger.info("Nothing to export")
            return None
        sink = sink or self.export_sink
        if sink is not None:
            sink(self.export_filename(), json.dumps(doc, indent=2, ensure_ascii=False))
        return doc
