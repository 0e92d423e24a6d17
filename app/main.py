"""
Streamlit Frontend for SumBook

The screens people use every day: sign in, record income and
expenses, manage categories, participants and books, and read the
reports.

DESIGN PRINCIPLES:
1. Balances always come from the live session, never from a form
2. Forms validate before anything is written
3. Failed background writes show up as a toast on the next rerun
4. Destructive actions ask for the account password again

Streamlit reruns this script on every interaction. The ledger lives
on one long-lived event loop thread (LoopRunner), so subscriptions
stay attached between reruns.
"""

import logging
from collections import deque
from datetime import date, datetime, time, timezone

import streamlit as st
from pydantic import ValidationError

from sumbook.auth import AuthError, user_facing_message
from sumbook.config import get_settings, validate_all_settings
from sumbook.ledger import (
    LastStoreError,
    LedgerError,
    category_name,
    expense_by_category,
    format_currency,
)
from sumbook.models import (
    AppUserForm,
    CategoryForm,
    CategoryIcon,
    CredentialsForm,
    PreferencesForm,
    StoreForm,
    TransactionForm,
    TransactionType,
)
from sumbook.orchestrator import (
    AppComponents,
    LoopRunner,
    create_app_components,
    create_auth_provider,
    create_store,
)
from sumbook.storage import StorageError
from sumbook.transfer import CsvFormatError


logging.basicConfig(level=logging.DEBUG if get_settings().app.debug_mode else logging.INFO)

# Page configuration
st.set_page_config(
    page_title="SumBook",
    page_icon="📒",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
    .big-number {
        font-size: 2.5em;
        font-weight: bold;
    }
    .income { color: #28a745; }
    .expense { color: #dc3545; }
</style>
""", unsafe_allow_html=True)


# =============================================================================
# RUNTIME
# =============================================================================

@st.cache_resource
def get_runner() -> LoopRunner:
    """One event loop thread for the whole server process."""
    return LoopRunner()


@st.cache_resource
def get_shared_backends():
    """Store and auth provider shared by every browser session."""
    settings = get_settings()
    return create_store(settings), create_auth_provider(settings)


def get_components() -> AppComponents:
    """Per-browser-session components (each visitor has their own ledger session)."""
    if "components" not in st.session_state:
        store, provider = get_shared_backends()
        toasts = deque(maxlen=20)
        st.session_state.toasts = toasts
        st.session_state.components = create_app_components(
            store=store,
            auth_provider=provider,
            notifier=lambda title, description: toasts.append((title, description)),
        )
    return st.session_state.components


def show_pending_toasts() -> None:
    toasts = st.session_state.get("toasts")
    while toasts:
        title, description = toasts.popleft()
        st.toast(f"**{title}** {description}", icon="⚠️")


def show_validation_error(error: ValidationError) -> None:
    for issue in error.errors():
        field = ".".join(str(part) for part in issue["loc"]) or "form"
        st.error(f"{field}: {issue['msg']}")


def to_datetime(day: date) -> datetime:
    return datetime.combine(day, time(12, 0), tzinfo=timezone.utc)


# =============================================================================
# MAIN
# =============================================================================

def main():
    """Main application entry point."""
    runner = get_runner()
    try:
        components = get_components()
    except StorageError as e:
        st.error(f"Could not connect to storage: {e}")
        st.stop()
    show_pending_toasts()

    if components.session.user is None:
        render_login_page(runner, components)
        return

    session = components.session

    st.sidebar.title("📒 SumBook")
    st.sidebar.caption(session.user.email)
    render_store_switcher(runner, components)
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["🏠 Dashboard", "🏷️ Categories", "👥 Users", "📊 Reports", "⚙️ Settings"],
        index=0,
    )

    st.sidebar.markdown("---")
    if st.sidebar.button("Sign out"):
        runner.call(session.teardown)
        st.rerun()

    if session.loading:
        st.info("Loading your books...")
        if st.button("Refresh"):
            st.rerun()
        return

    if page == "🏠 Dashboard":
        render_dashboard_page(runner, components)
    elif page == "🏷️ Categories":
        render_categories_page(runner, components)
    elif page == "👥 Users":
        render_users_page(runner, components)
    elif page == "📊 Reports":
        render_reports_page(runner, components)
    elif page == "⚙️ Settings":
        render_settings_page(runner, components)


def render_login_page(runner: LoopRunner, components: AppComponents):
    """Sign in, or sign up with an invite token."""
    st.title("📒 SumBook")
    sign_in_tab, sign_up_tab = st.tabs(["Sign in", "Sign up"])

    with sign_in_tab:
        with st.form("sign_in"):
            email = st.text_input("Email")
            password = st.text_input("Password", type="password")
            submitted = st.form_submit_button("Sign in", type="primary")

        if submitted:
            if not email or not password:
                st.error("Please enter both email and password.")
                return
            try:
                user = runner.run(components.auth.sign_in(email, password))
                runner.run(components.session.init(user))
                st.rerun()
            except AuthError as e:
                st.error(user_facing_message(e))

    with sign_up_tab:
        with st.form("sign_up"):
            name = st.text_input("Your name")
            email = st.text_input("Email", key="signup_email")
            password = st.text_input("Password", type="password", key="signup_password")
            invite = st.text_input(
                "Invite token",
                value=st.query_params.get("invite", ""),
                type="password",
            )
            submitted = st.form_submit_button("Create account", type="primary")

        if submitted:
            try:
                credentials = CredentialsForm(email=email, password=password)
            except ValidationError as e:
                show_validation_error(e)
                return
            try:
                user = runner.run(
                    components.auth.sign_up(
                        credentials.email,
                        credentials.password,
                        invite,
                        display_name=name.strip() or None,
                    )
                )
                runner.run(components.session.init(user))
                st.rerun()
            except AuthError as e:
                st.error(user_facing_message(e))


def render_store_switcher(runner: LoopRunner, components: AppComponents):
    session = components.session
    if not session.stores:
        return

    ids = [s.id for s in session.stores]
    names = {s.id: s.name for s in session.stores}
    current = session.active_store_id if session.active_store_id in ids else ids[0]

    selected = st.sidebar.selectbox(
        "Book",
        options=ids,
        index=ids.index(current),
        format_func=lambda sid: names[sid],
    )
    if selected != session.active_store_id:
        runner.run(components.actions.set_active_store(selected))
        runner.run(components.actions.flush())
        st.rerun()


# =============================================================================
# DASHBOARD
# =============================================================================

def render_dashboard_page(runner: LoopRunner, components: AppComponents):
    session = components.session
    currency = session.preferences.currency
    summary = session.financial_summary

    st.title(f"🏠 {session.active_store.name if session.active_store else 'Dashboard'}")

    col1, col2, col3 = st.columns(3)
    col1.metric("Total Balance", format_currency(summary.total_balance, currency))
    col2.metric("Total Income", format_currency(summary.total_income, currency))
    col3.metric("Total Expense", format_currency(summary.total_expense, currency))

    if summary.user_balances:
        st.markdown("### Balance by user")
        cols = st.columns(min(len(summary.user_balances), 4))
        for i, entry in enumerate(summary.user_balances):
            cols[i % len(cols)].metric(entry.name, format_currency(entry.balance, currency))

    st.markdown("---")
    render_transaction_form(runner, components)

    st.markdown("### Recent Transactions")
    recent = session.recent_transactions()
    if not recent:
        st.info("No transactions yet. Add your first one above.")
        return

    for tx in recent:
        cols = st.columns([2, 2, 2, 2, 1, 1])
        cols[0].write(tx.date.strftime("%d %b %Y"))
        cols[1].write(tx.user_name)
        cols[2].write(category_name(tx.category_id, session.categories) if tx.is_expense else "Income")
        sign = "-" if tx.is_expense else "+"
        cols[3].write(f"{sign}{format_currency(tx.amount, currency)}")
        if cols[4].button("✏️", key=f"edit_{tx.id}"):
            st.session_state.editing_transaction = tx.id
            st.rerun()
        if cols[5].button("🗑️", key=f"delete_{tx.id}"):
            runner.run(components.actions.delete_transaction(tx.id, tx.type))
            runner.run(components.actions.flush())
            st.rerun()


def render_transaction_form(runner: LoopRunner, components: AppComponents):
    """Add a transaction, or edit the one selected in the list."""
    session = components.session
    editing = session.find_transaction(st.session_state.get("editing_transaction", ""))

    user_names = [u.name for u in session.app_users]
    if not user_names:
        st.warning("Add a user on the Users page before recording transactions.")
        return

    category_ids = [c.id for c in session.categories]
    category_names = {c.id: c.name for c in session.categories}
    types = [TransactionType.EXPENSE, TransactionType.INCOME]

    with st.expander("✏️ Edit transaction" if editing else "➕ New transaction", expanded=bool(editing)):
        with st.form("transaction_form", clear_on_submit=not editing):
            tx_type = st.radio(
                "Type",
                options=types,
                index=types.index(editing.type) if editing else 0,
                format_func=lambda t: t.value.title(),
                horizontal=True,
            )
            user_index = user_names.index(editing.user_name) if editing and editing.user_name in user_names else 0
            user_name = st.selectbox("User", options=user_names, index=user_index)
            amount = st.number_input(
                "Amount",
                min_value=0.0,
                value=float(editing.amount) if editing else 0.0,
                step=1.0,
            )
            category_id = st.selectbox(
                "Category (expenses only)",
                options=[""] + category_ids,
                index=(category_ids.index(editing.category_id) + 1)
                if editing and editing.category_id in category_ids else 0,
                format_func=lambda cid: category_names.get(cid, "Uncategorized"),
            )
            day = st.date_input("Date", value=editing.date.date() if editing else date.today())

            col1, col2 = st.columns(2)
            submitted = col1.form_submit_button("Save", type="primary")
            cancelled = col2.form_submit_button("Cancel") if editing else False

        if cancelled:
            st.session_state.editing_transaction = None
            st.rerun()

        if not submitted:
            return

        try:
            form = TransactionForm(
                user_name=user_name,
                amount=amount,
                type=tx_type,
                category_id=category_id if tx_type == TransactionType.EXPENSE else None,
                date=to_datetime(day),
            )
        except ValidationError as e:
            show_validation_error(e)
            return

        try:
            if editing:
                runner.run(components.actions.update_transaction(editing.id, form, editing.type))
                st.session_state.editing_transaction = None
            else:
                runner.run(components.actions.add_transaction(form))
            runner.run(components.actions.flush())
        except (LedgerError, StorageError) as e:
            st.error(f"Could not save transaction: {e}")
            return
        st.rerun()


# =============================================================================
# CATEGORIES AND USERS
# =============================================================================

def render_categories_page(runner: LoopRunner, components: AppComponents):
    st.title("🏷️ Categories")
    session = components.session
    actions = components.actions

    with st.form("add_category", clear_on_submit=True):
        name = st.text_input("Name")
        icon = st.selectbox("Icon", options=list(CategoryIcon), format_func=lambda i: i.value)
        if st.form_submit_button("Add category", type="primary"):
            try:
                runner.run(actions.add_category(CategoryForm(name=name, icon=icon)))
                runner.run(actions.flush())
                st.rerun()
            except ValidationError as e:
                show_validation_error(e)

    categories = list(session.categories)
    for index, category in enumerate(categories):
        cols = st.columns([4, 2, 1, 1, 1])
        new_name = cols[0].text_input("Name", value=category.name, key=f"cat_name_{category.id}", label_visibility="collapsed")
        cols[1].write(category.icon)
        if new_name != category.name:
            try:
                runner.run(actions.update_category(category.id, CategoryForm(name=new_name, icon=category.icon)))
                runner.run(actions.flush())
                st.rerun()
            except ValidationError as e:
                show_validation_error(e)
        if cols[2].button("⬆️", key=f"cat_up_{category.id}", disabled=index == 0):
            categories[index - 1], categories[index] = categories[index], categories[index - 1]
            runner.run(actions.update_category_order(categories))
            st.rerun()
        if cols[3].button("⬇️", key=f"cat_down_{category.id}", disabled=index == len(categories) - 1):
            categories[index + 1], categories[index] = categories[index], categories[index + 1]
            runner.run(actions.update_category_order(categories))
            st.rerun()
        if cols[4].button("🗑️", key=f"cat_delete_{category.id}"):
            runner.run(actions.delete_category(category.id))
            runner.run(actions.flush())
            st.rerun()


def render_users_page(runner: LoopRunner, components: AppComponents):
    st.title("👥 Users")
    st.caption("Renaming a user does not change the name on transactions already recorded.")
    session = components.session
    actions = components.actions

    with st.form("add_user", clear_on_submit=True):
        name = st.text_input("Name")
        if st.form_submit_button("Add user", type="primary"):
            try:
                runner.run(actions.add_app_user(AppUserForm(name=name)))
                runner.run(actions.flush())
                st.rerun()
            except ValidationError as e:
                show_validation_error(e)

    users = list(session.app_users)
    for index, user in enumerate(users):
        cols = st.columns([5, 1, 1, 1])
        new_name = cols[0].text_input("Name", value=user.name, key=f"user_name_{user.id}", label_visibility="collapsed")
        if new_name != user.name:
            try:
                runner.run(actions.update_app_user(user.id, AppUserForm(name=new_name)))
                runner.run(actions.flush())
                st.rerun()
            except ValidationError as e:
                show_validation_error(e)
        if cols[1].button("⬆️", key=f"user_up_{user.id}", disabled=index == 0):
            users[index - 1], users[index] = users[index], users[index - 1]
            runner.run(actions.update_app_user_order(users))
            st.rerun()
        if cols[2].button("⬇️", key=f"user_down_{user.id}", disabled=index == len(users) - 1):
            users[index + 1], users[index] = users[index], users[index + 1]
            runner.run(actions.update_app_user_order(users))
            st.rerun()
        if cols[3].button("🗑️", key=f"user_delete_{user.id}"):
            runner.run(actions.delete_app_user(user.id))
            runner.run(actions.flush())
            st.rerun()


# =============================================================================
# REPORTS
# =============================================================================

def render_reports_page(runner: LoopRunner, components: AppComponents):
    st.title("📊 Reports")
    session = components.session
    currency = session.preferences.currency

    totals = expense_by_category(session.transactions, session.categories)
    if totals:
        st.markdown("### Expenses by category")
        st.bar_chart({t.name: t.value for t in totals})
        for t in totals:
            st.write(f"**{t.name}**: {format_currency(t.value, currency)}")
    else:
        st.info("No expenses recorded in this book yet.")

    st.markdown("---")
    st.markdown("### AI spending insights")
    if components.insights is None:
        st.warning("AI insights are not configured. Set GEMINI_API_KEY to enable them.")
        return

    if st.button("✨ Generate insights", type="primary"):
        with st.spinner("Analyzing your spending..."):
            text = runner.run(
                components.insights.generate(
                    session.transactions,
                    session.categories,
                    user_id=session.uid,
                ),
                timeout=120,
            )
        st.markdown(text)


# =============================================================================
# SETTINGS
# =============================================================================

def render_settings_page(runner: LoopRunner, components: AppComponents):
    st.title("⚙️ Settings")
    session = components.session
    actions = components.actions

    st.markdown("### Books")
    with st.form("add_store", clear_on_submit=True):
        name = st.text_input("New book name")
        if st.form_submit_button("Add book", type="primary"):
            try:
                runner.run(actions.add_store(StoreForm(name=name)))
                runner.run(actions.flush())
                st.rerun()
            except ValidationError as e:
                show_validation_error(e)

    for store in session.stores:
        cols = st.columns([5, 1])
        cols[0].write(f"**{store.name}**" + (" (active)" if store.id == session.active_store_id else ""))
        if cols[1].button("🗑️", key=f"store_delete_{store.id}", disabled=len(session.stores) <= 1):
            try:
                removed = runner.run(actions.delete_store(store.id), timeout=120)
                st.success(f"Book deleted ({removed} documents removed).")
                st.rerun()
            except LastStoreError:
                st.error("You must have at least one book.")
            except (LedgerError, StorageError) as e:
                st.error(f"Could not delete book: {e}")

    st.markdown("---")
    st.markdown("### Account")
    with st.form("preferences"):
        currency = st.text_input("Currency (ISO code)", value=session.preferences.currency)
        address = st.text_area("Address", value=session.preferences.address)
        if st.form_submit_button("Save"):
            try:
                runner.run(actions.update_preferences(PreferencesForm(currency=currency, address=address)))
                runner.run(actions.flush())
                st.success("Settings saved.")
            except ValidationError as e:
                show_validation_error(e)

    st.markdown("---")
    st.markdown("### Data")
    if session.active_store is not None:
        filename, text = actions.export_csv()
        st.download_button("⬇️ Export CSV", data=text, file_name=filename, mime="text/csv")

    uploaded = st.file_uploader("Import CSV", type=["csv"])
    if uploaded is not None and st.button("⬆️ Import"):
        try:
            added = runner.run(actions.import_csv(uploaded.getvalue().decode("utf-8")), timeout=120)
            runner.run(actions.flush(), timeout=120)
            st.success(f"{added} new transaction(s) were successfully imported.")
        except CsvFormatError as e:
            st.error(f"An error occurred while parsing the CSV file: {e}")
        except UnicodeDecodeError:
            st.error("The file is not UTF-8 text.")

    if session.active_layout.name == "split":
        if st.button("Move transactions to the unified layout"):
            try:
                moved = runner.run(actions.migrate_to_unified_layout(), timeout=120)
                st.success(f"Moved {moved} transaction(s).")
            except (LedgerError, StorageError) as e:
                st.error(f"Could not move transactions: {e}")

    with st.expander("🧨 Clear all transactions"):
        st.warning("This deletes every transaction in the active book. It cannot be undone.")
        password = st.text_input("Confirm with your password", type="password", key="clear_password")
        if st.button("Delete all transactions"):
            try:
                count = runner.run(actions.clear_all_transactions(password), timeout=120)
                st.success(f"Deleted {count} transaction(s).")
            except AuthError as e:
                st.error(user_facing_message(e))
            except (LedgerError, StorageError) as e:
                st.error(f"Could not clear transactions: {e}")

    st.markdown("---")
    st.markdown("### Connection Status")
    status = validate_all_settings()
    services = [
        ("Firebase (Storage + Auth)", "firebase"),
        ("Gemini (AI)", "gemini"),
    ]
    for name, key in services:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")


if __name__ == "__main__":
    main()
