"""
dashboard.py - Streamlit UI entrypoint and orchestration

This module wires the UI components (splitcat.ui.components) with the business
logic (splitcat.ledger). The main() function builds the sidebar menu and routes
actions to components and ledger methods.

Design notes:
 - The dashboard only orchestrates presentation; all rules live in splitcat.ledger.
 - One SplitLedger is created per browser session and kept in st.session_state.
"""

import streamlit as st

from splitcat.ledger import SplitLedger
from splitcat.ui import components


def get_ledger() -> SplitLedger:
    if "ledger" not in st.session_state:
        st.session_state["ledger"] = SplitLedger()
    return st.session_state["ledger"]


def main():
    st.title("SplitCat")
    ledger = get_ledger()
    st.sidebar.caption(f"Saving to {ledger.storage.slot.describe()}")
    if ledger.current_session_id:
        st.sidebar.caption(f"Session {ledger.current_session_id}")

    menu = [
        "Participants",
        "Add Expense",
        "Expenses",
        "Edit Expense",
        "Split Results",
        "Export",
        "New Session",
    ]
    choice = st.sidebar.selectbox("Select an option", menu)

    if choice == "Participants":
        components.display_participants(ledger)
    elif choice == "Add Expense":
        components.display_expense_form(ledger)
    elif choice == "Expenses":
        components.display_expense_list(ledger)
    elif choice == "Edit Expense":
        components.display_manage_expenses(ledger)
    elif choice == "Split Results":
        components.display_split_results(ledger)
    elif choice == "Export":
        components.display_export(ledger)
    elif choice == "New Session":
        # simple confirm buttons to avoid accidental data loss
        col1, col2 = st.columns(2)
        if col1.button("Confirm New Session"):
            ledger.start_new_session()
            st.success("New session started.")
        if col2.button("Clear All"):
            ledger.clear_all()
            st.success("All data cleared.")


if __name__ == "__main__":
    main()
