"""
models.py - Data model definitions

Participants, expenses and the persisted LedgerState are plain dataclasses that
serialize to/from dicts so the whole state can be stored as one JSON snapshot.
Split results are derived from the other two and are never persisted.

JSON keys use the camelCase names of the snapshot format (payerId,
currentSessionId, ...). Python attributes use snake_case.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any


def _unique(ids) -> List[str]:
    # participants behave as a set; keep first-seen order
    return list(dict.fromkeys(str(i) for i in ids))


@dataclass
class Participant:
    """A person taking part in the current session."""
    id: str
    name: str
    avatar: Optional[str] = None

    def to_dict(self) -> Dict:
        d = {"id": self.id, "name": self.name}
        if self.avatar is not None:
            d["avatar"] = self.avatar
        return d

    @staticmethod
    def from_dict(d: Dict) -> "Participant":
        return Participant(
            id=str(d.get("id", "")),
            name=d.get("name", "") or "",
            avatar=d.get("avatar"),
        )


@dataclass
class Expense:
    """
    A single shared expense.

    Fields:
      - id: string id assigned by the ledger
      - name: label shown in the breakdown of every participant
      - amount: total amount of the expense
      - participants: ids of the participants sharing it (equal split)
      - payer_id: id of the participant who paid ("" when unknown)
      - category: optional free-form category
      - date: ISO date string "YYYY-MM-DD", stamped on creation
    """
    id: str
    name: str
    amount: float
    participants: List[str] = field(default_factory=list)
    payer_id: str = ""
    category: Optional[str] = None
    date: Optional[str] = None

    def __post_init__(self):
        self.participants = _unique(self.participants)

    def to_dict(self) -> Dict:
        d = {
            "id": self.id,
            "name": self.name,
            "amount": self.amount,
            "participants": list(self.participants),
            "payerId": self.payer_id,
        }
        if self.category is not None:
            d["category"] = self.category
        if self.date is not None:
            d["date"] = self.date
        return d

    @staticmethod
    def from_dict(d: Dict) -> "Expense":
        """
        Inverse of to_dict. Missing keys fall back to defaults so older
        snapshots are tolerated.
        """
        return Expense(
            id=str(d.get("id", "")),
            name=d.get("name", "") or "",
            amount=float(d.get("amount", 0.0) or 0.0),
            participants=d.get("participants", []) or [],
            payer_id=str(d.get("payerId", "") or ""),
            category=d.get("category"),
            date=d.get("date"),
        )


@dataclass
class ExpensePatch:
    """Partial update for an Expense: only fields that are not None are applied."""
    name: Optional[str] = None
    amount: Optional[float] = None
    participants: Optional[List[str]] = None
    payer_id: Optional[str] = None
    category: Optional[str] = None
    date: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}

    def apply_to(self, expense: Expense) -> Expense:
        for key, value in self.changes().items():
            if key == "participants":
                value = _unique(value)
            setattr(expense, key, value)
        return expense


@dataclass
class SplitItem:
    item_name: str
    amount: float

    def to_dict(self) -> Dict:
        return {"itemName": self.item_name, "amount": self.amount}


@dataclass
class SplitResult:
    """What one participant owes: rounded total plus the per-expense shares."""
    participant_id: str
    name: str
    total_amount: float
    items: List[SplitItem] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "participantId": self.participant_id,
            "name": self.name,
            "totalAmount": self.total_amount,
            "items": [i.to_dict() for i in self.items],
        }


@dataclass
class LedgerState:
    """The persisted aggregate: everything the ledger owns."""
    participants: List[Participant] = field(default_factory=list)
    expenses: List[Expense] = field(default_factory=list)
    current_session_id: str = ""

    def to_dict(self) -> Dict:
        return {
            "participants": [p.to_dict() for p in self.participants],
            "expenses": [e.to_dict() for e in self.expenses],
            "currentSessionId": self.current_session_id,
        }

    @staticmethod
    def from_dict(d: Dict) -> "LedgerState":
        if not isinstance(d, dict):
            raise ValueError("ledger snapshot must be a JSON object")
        return LedgerState(
            participants=[Participant.from_dict(p) for p in d.get("participants", []) or []],
            expenses=[Expense.from_dict(e) for e in d.get("expenses", []) or []],
            current_session_id=str(d.get("currentSessionId", "") or ""),
        )
