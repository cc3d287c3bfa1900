"""
app.py — Streamlit dashboard for SubTrack

Talks to the API through SubTrackClient; all state transitions live in
dashboard.Dashboard, this file only renders them.

Design system: Stripe-inspired
  Background:      #f6f9fc
  Surface:         #ffffff
  Border:          #e3e8ee
  Text primary:    #32325d
  Text muted:      #8898aa
  Accent:          #635bff
  Success:         #2dce89
  Warning:         #fb6340
  Danger:          #f5365c
"""

from datetime import date, timedelta

import streamlit as st

import analyzer
import config
from client import SubTrackClient, SubTrackError, ValidationFailed
from dashboard import Dashboard, Failed, Ready
from models import BillingFrequency, SubscriptionStatus
from providers import get_cancellation_link

st.set_page_config(
    page_title="SubTrack — Subscription Manager",
    page_icon="💳",
    layout="centered",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
#MainMenu, footer { display: none !important; }
.stDeployButton, [data-testid="stToolbar"] { display: none !important; }

html, body, [data-testid="stAppViewContainer"], [data-testid="stMain"] {
    background: #f6f9fc !important;
    color: #32325d;
    font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, "Helvetica Neue", sans-serif;
}
.block-container { padding-top: 2.5rem !important; max-width: 920px !important; }

.app-logo { display: flex; align-items: center; gap: 0.6rem; margin-bottom: 0.2rem; }
.app-logo-icon {
    width: 36px; height: 36px; background: #635bff; border-radius: 10px;
    display: flex; align-items: center; justify-content: center;
    font-size: 1.1rem; box-shadow: 0 4px 12px rgba(99,91,255,0.35);
}
.app-title { font-size: 1.6rem; font-weight: 700; color: #32325d; letter-spacing: -0.3px; }
.app-subtitle { color: #8898aa; font-size: 0.88rem; margin-bottom: 1.5rem; }

.card {
    background: #ffffff; border: 1px solid #e3e8ee; border-radius: 12px;
    padding: 1rem 1.2rem; box-shadow: 0 2px 5px rgba(50,50,93,.1), 0 1px 2px rgba(0,0,0,.06);
}
.stat-label { color: #8898aa; font-size: 0.75rem; text-transform: uppercase; letter-spacing: 0.5px; }
.stat-value { color: #32325d; font-size: 1.45rem; font-weight: 700; }

.sub-row { display: flex; justify-content: space-between; align-items: center; }
.sub-name { font-weight: 600; color: #32325d; }
.sub-meta { color: #8898aa; font-size: 0.8rem; }
.badge { border-radius: 999px; padding: 0.15rem 0.6rem; font-size: 0.72rem; font-weight: 600; }
.badge-active    { background: #e6f9f0; color: #2dce89; }
.badge-due_soon  { background: #fff2eb; color: #fb6340; }
.badge-overdue   { background: #fdebef; color: #f5365c; }
.badge-paused    { background: #eef0f4; color: #525f7f; }
.badge-cancelled { background: #eef0f4; color: #8898aa; }
</style>
""", unsafe_allow_html=True)


# ── Session state defaults ────────────────────────────────────────────────────
DEFAULTS = {
    "client": None,
    "dashboard": None,
    "scan_session": None,
    "edit_id": None,
    "cancel_id": None,
    "checkout_url": None,
    "field_errors": [],
}
for k, v in DEFAULTS.items():
    if k not in st.session_state:
        st.session_state[k] = v

STATUS_LABELS = {
    "active": "Active",
    "due_soon": "Due soon",
    "overdue": "Overdue",
    "paused": "Paused",
    "cancelled": "Cancelled",
}
TAB_LABELS = {"all": "All", **STATUS_LABELS}


def fmt(amount: float) -> str:
    return f"${amount:,.2f}"


def dashboard() -> Dashboard:
    return st.session_state.dashboard


def flush_notifications():
    dash = dashboard()
    for note in dash.notifications:
        icon = "⚠️" if note.variant == "destructive" else "✅"
        st.toast(f"**{note.title}** · {note.description}", icon=icon)
    dash.notifications.clear()


def render_header():
    st.markdown(
        '<div class="app-logo">'
        '<div class="app-logo-icon">💳</div>'
        '<span class="app-title">SubTrack</span>'
        '</div>'
        '<div class="app-subtitle">Every recurring payment in one place</div>',
        unsafe_allow_html=True,
    )


# ── Auth ──────────────────────────────────────────────────────────────────────
def render_login():
    login_tab, register_tab = st.tabs(["Sign in", "Create account"])
    with login_tab:
        with st.form("login"):
            email = st.text_input("Email", placeholder="you@example.com")
            password = st.text_input("Password", type="password")
            submitted = st.form_submit_button("Sign in", type="primary", use_container_width=True)
        if submitted:
            client = SubTrackClient()
            try:
                client.login(email, password)
            except SubTrackError as exc:
                st.error(exc.message)
            else:
                st.session_state.client = client
                st.session_state.dashboard = Dashboard(client)
                st.session_state.dashboard.load()
                st.rerun()
    with register_tab:
        with st.form("register"):
            email = st.text_input("Email", placeholder="you@example.com", key="reg_email")
            password = st.text_input(
                f"Password (min {config.MIN_PASSWORD_LENGTH} characters)", type="password", key="reg_pw"
            )
            submitted = st.form_submit_button("Create account", use_container_width=True)
        if submitted:
            try:
                SubTrackClient().register(email, password)
            except SubTrackError as exc:
                st.error(exc.message)
            else:
                st.success("Account created. Sign in to continue.")


def logout():
    try:
        st.session_state.client.logout()
    except SubTrackError:
        pass
    for k, v in DEFAULTS.items():
        st.session_state[k] = v
    st.rerun()


# ── Dialogs (modals) ──────────────────────────────────────────────────────────
def subscription_form(key: str, initial=None) -> dict:
    c1, c2 = st.columns(2)
    with c1:
        name = st.text_input("Name", value=initial.name if initial else "", key=f"{key}_name")
        cost = st.number_input("Cost", min_value=0.01, step=0.01, format="%.2f",
                               value=float(initial.cost) if initial else 9.99, key=f"{key}_cost")
        category = st.text_input("Category", value=initial.category if initial else "Entertainment",
                                 key=f"{key}_category")
    with c2:
        frequencies = [f.value for f in BillingFrequency]
        frequency = st.selectbox(
            "Billing frequency", frequencies, key=f"{key}_freq",
            index=frequencies.index(initial.billing_frequency.value) if initial else 1,
        )
        next_date = st.date_input(
            "Next payment date", key=f"{key}_date",
            value=initial.next_payment_date if initial else date.today() + timedelta(days=30),
        )
        payment_method = st.text_input("Payment method (optional)", key=f"{key}_pm",
                                       value=(initial.payment_method or "") if initial else "")
    description = st.text_area("Description (optional)", key=f"{key}_desc",
                               value=(initial.description or "") if initial else "")
    for err in st.session_state.field_errors:
        st.error(f"{err.get('field')}: {err.get('message')}")
    return {
        "name": name,
        "cost": round(float(cost), 2),
        "billingFrequency": frequency,
        "nextPaymentDate": next_date.isoformat(),
        "category": category,
        "paymentMethod": payment_method or None,
        "description": description or None,
    }


def _submit(action, *args):
    try:
        result = action(*args)
    except ValidationFailed as exc:
        st.session_state.field_errors = exc.field_errors
        return None
    st.session_state.field_errors = []
    return result


@st.dialog("➕ Add Subscription", width="large")
def dialog_add():
    data = subscription_form("add")
    if st.button("Add Subscription", type="primary", use_container_width=True):
        try:
            if _submit(dashboard().api.add_subscription, data) is not None:
                dashboard().notify("Success", "Subscription added successfully")
                dashboard().load()
                st.rerun()
        except SubTrackError as exc:
            st.error(exc.message)


@st.dialog("✏️ Edit Subscription", width="large")
def dialog_edit():
    sub = next((s for s in dashboard().subscriptions if s.id == st.session_state.edit_id), None)
    if sub is None:
        st.warning("This subscription no longer exists.")
        return
    data = subscription_form("edit", sub)
    if st.button("Save changes", type="primary", use_container_width=True):
        try:
            if _submit(dashboard().api.update_subscription, sub.id, data) is not None:
                dashboard().notify("Success", "Subscription updated successfully")
                dashboard().load()
                st.session_state.edit_id = None
                st.rerun()
        except SubTrackError as exc:
            st.error(exc.message)


@st.dialog("📬 Scan Gmail for Subscriptions", width="large")
def dialog_scan():
    dash = dashboard()
    session = st.session_state.scan_session
    if session is None:
        bar = st.progress(0, text="Connecting to your inbox…")
        session = dash.run_scan(on_progress=lambda p: bar.progress(int(p.percent), text=p.label))
        if session is None:
            st.rerun()
        st.session_state.scan_session = session

    if not session.candidates:
        st.info("No new subscriptions found.")
        return
    st.markdown("Select the subscriptions to add:")
    for i, cand in enumerate(session.candidates):
        found = cand.found
        checked = st.checkbox(
            f"**{found.name}** · {fmt(found.cost)}/mo · {round(found.confidence * 100)}% confidence",
            value=cand.selected, key=f"scan_pick_{i}",
        )
        if checked != cand.selected:
            session.toggle(i)
    if st.button(f"Add {len(session.selected())} selected", type="primary", use_container_width=True,
                 disabled=not session.selected()):
        dash.add_scanned(session)
        st.session_state.scan_session = None
        st.rerun()


@st.dialog("🤖 AI Cancellation", width="large")
def dialog_ai_cancel():
    dash = dashboard()
    sub = next((s for s in dash.subscriptions if s.id == st.session_state.cancel_id), None)
    if sub is None:
        return
    st.markdown(f"Cancelling **{sub.name}** on your behalf.")
    bar = st.progress(0, text="Starting…")
    steps_box = st.empty()
    seen = []

    def on_progress(progress):
        seen.append(progress.label)
        bar.progress(int(progress.percent), text=progress.label)
        steps_box.markdown("\n".join(f"- ✅ {label}" for label in seen))

    session = dash.ai_cancel(sub.id, on_progress=on_progress)
    if session.estimated_time:
        st.caption(f"Estimated time: {session.estimated_time}")
    st.markdown(f"[Manage directly at the provider]({session.cancellation_url or get_cancellation_link(sub.name)})")
    st.session_state.cancel_id = None
    st.rerun()


@st.dialog("⭐ Upgrade to Premium", width="small")
def dialog_upgrade():
    used, limit = dashboard().scan_usage()
    st.markdown(
        f"You've used **{used}/{limit}** scans today. Premium unlocks "
        f"{config.PREMIUM_DAILY_SCANS} daily scans and SMS reminders."
    )
    plan = st.radio("Plan", config.PLAN_TYPES, horizontal=True)
    if st.button("Continue to checkout", type="primary", use_container_width=True):
        url = dashboard().upgrade(plan)
        if url:
            st.session_state.checkout_url = url
            st.rerun()


@st.dialog("⚙️ Notification Settings", width="small")
def dialog_settings():
    profile = dashboard().state.profile
    prefs = profile.preferences
    email_on = st.toggle("Email reminders", value=prefs.email_notifications)
    sms_on = st.toggle("SMS reminders (premium)", value=prefs.sms_notifications,
                       disabled=not profile.is_premium)
    days = st.slider("Remind me this many days before", 1, 7, prefs.reminder_days)
    if st.button("Save", type="primary", use_container_width=True):
        if dashboard().update_preferences(
            {"emailNotifications": email_on, "smsNotifications": sms_on, "reminderDays": days}
        ) is not None:
            st.rerun()


# ── Dashboard ─────────────────────────────────────────────────────────────────
def render_stats(state: Ready):
    stats = state.stats
    cards = [
        ("Monthly", fmt(stats.total_monthly_spending)),
        ("Yearly", fmt(stats.total_yearly_spending)),
        ("Active", str(stats.active_subscriptions)),
        ("Due in 7 days", str(stats.upcoming_payments)),
    ]
    for col, (label, value) in zip(st.columns(4), cards):
        with col:
            st.markdown(
                f'<div class="card"><div class="stat-label">{label}</div>'
                f'<div class="stat-value">{value}</div></div>',
                unsafe_allow_html=True,
            )
    top = dashboard().top_category()
    if top:
        st.caption(f"Top category: **{top}**")


def render_subscription(sub):
    status = sub.status.value
    st.markdown(
        f'<div class="card sub-row"><div>'
        f'<div class="sub-name">{sub.name}</div>'
        f'<div class="sub-meta">{fmt(sub.cost)} / {sub.billing_frequency.value} · {sub.category}'
        f' · {sub.payment_label}</div></div>'
        f'<span class="badge badge-{status}">{STATUS_LABELS[status]}</span></div>',
        unsafe_allow_html=True,
    )
    if sub.status is SubscriptionStatus.CANCELLED:
        if st.button("🗑 Delete", key=f"del_{sub.id}"):
            dashboard().delete(sub.id)
            st.rerun()
        return

    c1, c2, c3, c4 = st.columns(4)
    with c1:
        if st.button("✏️ Edit", key=f"edit_{sub.id}", use_container_width=True):
            st.session_state.edit_id = sub.id
            st.session_state.field_errors = []
    with c2:
        label = "▶ Resume" if sub.status is SubscriptionStatus.PAUSED else "⏸ Pause"
        if st.button(label, key=f"pause_{sub.id}", use_container_width=True):
            dashboard().toggle_pause(sub)
            st.rerun()
    with c3:
        if st.button("🤖 AI Cancel", key=f"ai_{sub.id}", use_container_width=True):
            st.session_state.cancel_id = sub.id
    with c4:
        if st.button("🗑 Delete", key=f"del_{sub.id}", use_container_width=True):
            dashboard().delete(sub.id)
            st.rerun()


def render_sidebar(state: Ready):
    dash = dashboard()
    with st.sidebar:
        st.markdown(f"**{state.profile.email}**" + (" ⭐" if state.profile.is_premium else ""))
        used, limit = dash.scan_usage()
        st.progress(min(used / limit, 1.0) if limit else 1.0, text=f"Scans today: {used}/{limit}")
        if st.button("📬 Scan Gmail", use_container_width=True):
            st.session_state.scan_session = None
            dash.request_scan()
        if not state.profile.is_premium and st.button("⭐ Upgrade", use_container_width=True):
            dash.open_modal("upgrade")
        if st.button("⚙️ Settings", use_container_width=True):
            dash.open_modal("settings")
        if st.button("Sign out", type="secondary", use_container_width=True):
            logout()

        st.markdown("#### Upcoming payments")
        upcoming = dash.upcoming()
        if not upcoming:
            st.caption("Nothing due in the next 30 days.")
        for sub in upcoming:
            st.markdown(f"**{sub.name}** · {fmt(sub.cost)}  \n"
                        f"<span class='sub-meta'>{sub.next_payment_date:%b %d} · {sub.payment_label}</span>",
                        unsafe_allow_html=True)

        if st.session_state.checkout_url:
            st.link_button("Open checkout", st.session_state.checkout_url, use_container_width=True)


def render_dashboard():
    dash = dashboard()
    state = dash.state
    if isinstance(state, Failed):
        st.error(state.message)
        if st.button("Retry", type="primary"):
            dash.load()
            st.rerun()
        return
    if not isinstance(state, Ready):
        with st.spinner("Loading your subscriptions…"):
            dash.load()
        st.rerun()

    render_sidebar(state)
    render_stats(state)
    st.markdown("<br>", unsafe_allow_html=True)

    if st.button("➕ Add Subscription", type="primary"):
        st.session_state.field_errors = []
        dash.open_modal("add")

    counts = dash.counts()
    tabs = st.tabs([f"{TAB_LABELS[t]} ({counts[t]})" for t in analyzer.TABS])
    for tab, name in zip(tabs, analyzer.TABS):
        with tab:
            subs = dash.visible(name)
            if not subs:
                st.caption("No subscriptions here.")
            for sub in subs:
                render_subscription(sub)

    # One dialog per run.
    modal = dash.modal.name if dash.modal else None
    if st.session_state.edit_id:
        dialog_edit()
    elif st.session_state.cancel_id:
        dialog_ai_cancel()
    elif modal == "add":
        dash.close_modal()
        dialog_add()
    elif modal == "scan":
        dialog_scan()
    elif modal == "upgrade":
        dash.close_modal()
        dialog_upgrade()
    elif modal == "settings":
        dash.close_modal()
        dialog_settings()


# ── Router ────────────────────────────────────────────────────────────────────
render_header()
if st.session_state.dashboard is None:
    render_login()
else:
    render_dashboard()
    flush_notifications()
