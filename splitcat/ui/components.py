"""
components.py - reusable Streamlit components / forms / displays

Pure-UI helpers used by the dashboard. Each helper receives the SplitLedger
instance (or data derived from it) and calls ledger methods for mutations.

The expense forms enforce the input rules the ledger itself does not check:
 - amount > 0
 - name not empty
"""

from dataclasses import dataclass
from io import BytesIO
from typing import Callable, List, Optional
import streamlit as st
import pandas as pd
import altair as alt

from splitcat.export import FileExportSink
from splitcat.ledger import SplitLedger
from splitcat.models import ExpensePatch, SplitResult


# Trigger a Streamlit rerun in a way compatible with multiple Streamlit versions.
def _trigger_rerun():
    if hasattr(st, "rerun"):
        st.rerun()
    elif hasattr(st, "experimental_rerun"):
        st.experimental_rerun()


@dataclass
class ExpenseInput:
    """Lightweight container passed to the on_submit callback."""
    name: str
    amount: float
    participants: List[str]
    payer_id: str
    category: Optional[str]


class DownloadSink:
    """Export sink that keeps the last payload so the page can offer it as a download."""

    def __init__(self):
        self.filename = None
        self.payload = None

    def __call__(self, filename: str, payload: str):
        self.filename = filename
        self.payload = payload


NO_PAYER = ""


def participant_options(ledger: SplitLedger) -> List[str]:
    """Participant ids, used as widget options so equal names never collide."""
    return [p.id for p in ledger.participants]


def participant_label_func(ledger: SplitLedger) -> Callable[[str], str]:
    names = {p.id: p.name for p in ledger.participants}

    def label(participant_id: str) -> str:
        if participant_id == NO_PAYER:
            return "(nobody)"
        return f"{names.get(participant_id, '?')} (#{participant_id})"
    return label


def display_participants(ledger: SplitLedger):
    st.header("Participants")
    with st.form(key="participant_form", clear_on_submit=True):
        name = st.text_input("Name")
        if st.form_submit_button("Add participant"):
            if not name.strip():
                st.error("Name is required.")
            else:
                ledger.add_participant(name.strip())
                _trigger_rerun()

    if not ledger.participants:
        st.info("No participants yet.")
        return
    for p in ledger.participants:
        col1, col2 = st.columns([4, 1])
        col1.write(p.name)
        if col2.button("Remove", key=f"remove_participant_{p.id}"):
            ledger.remove_participant(p.id)
            _trigger_rerun()


def display_expense_form(ledger: SplitLedger):
    """Display the 'Add Expense' form; participants default to everyone."""
    st.header("Add Expense")
    ids = participant_options(ledger)
    label = participant_label_func(ledger)
    if not ids:
        st.info("Add participants first.")
        return

    with st.form(key="expense_form", clear_on_submit=True):
        name = st.text_input("Item")
        amount = st.number_input("Amount", min_value=0.0, format="%.2f")
        payer_id = st.selectbox("Paid by", options=[NO_PAYER] + ids, format_func=label)
        selected = st.multiselect("Participants", options=ids, default=ids, format_func=label)
        category = st.text_input("Category (optional)")
        submit_button = st.form_submit_button("Add Expense")

        if submit_button:
            if not name.strip():
                st.error("Item name is required.")
                return
            if amount <= 0:
                st.error("Amount must be greater than 0.")
                return
            exp_input = ExpenseInput(
                name=name.strip(),
                amount=round(amount, 2),
                participants=list(selected),
                payer_id=payer_id,
                category=category.strip() or None,
            )
            ledger.add_expense(
                exp_input.name,
                exp_input.amount,
                exp_input.participants,
                payer_id=exp_input.payer_id,
                category=exp_input.category,
            )
            st.success("Expense added.")


def display_expense_list(ledger: SplitLedger):
    """Render expenses as a table."""
    st.header("Expenses")
    expenses = ledger.expenses
    if not expenses:
        st.write("No expenses recorded.")
        return

    rows = []
    for e in expenses:
        rows.append({
            "date": e.date or "",
            "item": e.name,
            "amount": float(e.amount),
            "paid by": ledger.participant_name(e.payer_id),
            "participants": ", ".join(ledger.participant_name(pid) for pid in e.participants),
            "category": e.category or "",
        })
    df = pd.DataFrame(rows, columns=["date", "item", "amount", "paid by", "participants", "category"])
    st.dataframe(df.style.format({"amount": "{:.2f}"}), use_container_width=True)
    st.markdown(f"**Total: {ledger.total_amount:.2f}**")


def display_manage_expenses(ledger: SplitLedger):
    """UI to select, edit and delete an existing expense."""
    st.header("Edit / Delete Expense")
    exs = ledger.expenses
    if not exs:
        st.info("No expenses recorded.")
        return

    expense_id = st.selectbox(
        "Select expense",
        options=[e.id for e in exs],
        format_func=lambda eid: next(f"{e.name} {e.amount:.2f} {e.date or ''} (#{e.id})" for e in exs if e.id == eid),
    )
    expense = ledger.get_expense(expense_id)
    if not expense:
        st.error("Selected expense not found.")
        return

    ids = participant_options(ledger)
    with st.form(key=f"edit_expense_{expense.id}"):
        name = st.text_input("Item", value=expense.name)
        amount = st.number_input("Amount", min_value=0.0, format="%.2f", value=float(expense.amount))
        selected = st.multiselect("Participants", options=ids,
                                  default=[pid for pid in expense.participants if pid in ids],
                                  format_func=participant_label_func(ledger))
        category = st.text_input("Category", value=expense.category or "")

        if st.form_submit_button("Save changes"):
            if amount <= 0:
                st.error("Amount must be > 0")
            elif not name.strip():
                st.error("Item name is required.")
            else:
                ledger.update_expense(expense.id, ExpensePatch(
                    name=name.strip(),
                    amount=round(amount, 2),
                    participants=list(selected),
                    category=category.strip(),
                ))
                st.success("Expense updated.")
                _trigger_rerun()

    # Delete UI (separate to avoid accidental deletes)
    st.markdown("---")
    delete_confirm = st.checkbox("I confirm I want to delete this expense")
    if st.button("Delete expense") and delete_confirm:
        ledger.remove_expense(expense.id)
        st.success("Expense deleted.")
        _trigger_rerun()


def _results_frame(results: List[SplitResult]) -> pd.DataFrame:
    return pd.DataFrame(
        [{"name": r.name, "total": r.total_amount, "items": len(r.items)} for r in results],
        columns=["name", "total", "items"],
    )


def display_split_results(ledger: SplitLedger):
    """Per-participant totals, breakdown, bar chart, balances and settle suggestions."""
    st.header("Split Results")
    results = ledger.split_results
    if not results:
        st.write("No results to display.")
        return

    st.markdown(f"**Total spent: {ledger.total_amount:.2f}**")
    df = _results_frame(results)
    st.dataframe(df.style.format({"total": "{:.2f}"}), use_container_width=True)

    if df["total"].sum() > 0:
        chart = alt.Chart(df).mark_bar().encode(
            x=alt.X("name:N", title="Participant", sort=list(df["name"])),
            y=alt.Y("total:Q", title="Owes"),
            tooltip=[
                alt.Tooltip("name:N", title="Participant"),
                alt.Tooltip("total:Q", title="Owes", format=".2f"),
            ],
        ).properties(width="container", height=300)
        st.altair_chart(chart, use_container_width=True)

    for r in results:
        with st.expander(f"{r.name}: {r.total_amount:.2f}"):
            if not r.items:
                st.write("  No expenses.")
            for item in r.items:
                st.write(f"  {item.item_name}: {item.amount:.2f}")

    st.subheader("Balances")
    for pid, balance in ledger.balances().items():
        st.write(f"  {ledger.participant_name(pid)}: {balance:.2f}")
    suggestions = ledger.settle_suggestions()
    if suggestions:
        for s in suggestions:
            st.write(f"  {s}")
    else:
        st.write("Nothing to settle.")


def display_export(ledger: SplitLedger):
    """Offer the export document as JSON and the results table as XLSX, or save the JSON under exports/."""
    st.header("Export")
    sink = DownloadSink()
    if ledger.export_results(sink) is None:
        st.info("Nothing to export yet.")
        return

    st.download_button(
        label="Download results (JSON)",
        data=sink.payload.encode("utf-8"),
        file_name=sink.filename,
        mime="application/json",
    )

    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        _results_frame(ledger.split_results).to_excel(writer, index=False, sheet_name="results")
    buffer.seek(0)
    st.download_button(
        label="Download results (XLSX)",
        data=buffer.getvalue(),
        file_name=sink.filename.replace(".json", ".xlsx"),
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )

    file_sink = FileExportSink()
    if st.button(f"Save to {file_sink.directory}"):
        try:
            ledger.export_results(file_sink)
        except OSError as exc:
            st.error(f"Could not write export: {exc}")
        else:
            st.success(f"Saved {file_sink.last_path}")
