"""
scheduler.py — SubTrack background jobs

Two daily jobs share the API's store:
  - scan quota reset  (QUOTA_RESET_TIME, default 00:00): every user's
    dailyScansUsed goes back to 0.
  - payment reminders (REMINDER_TIME, default 09:00): one message per
    subscription falling due within the user's reminderDays, deduplicated
    through sent_reminders.json. Messages go to outbox.jsonl; a mail/SMS
    gateway picks them up from there.

The API starts this in a daemon thread. It can also run on its own:

    python scheduler.py           # check reminders now, then run on schedule
    python scheduler.py --once    # check reminders once, then exit
"""

import json
import logging
import sys
import time
from datetime import date, datetime, timezone
from typing import Optional

import schedule

import analyzer
import config
from store import Store

log = logging.getLogger(__name__)


# ── Sent-reminder bookkeeping ─────────────────────────────────────────────────
def _sent_file(store: Store):
    return store.data_dir / "sent_reminders.json"


def _outbox_file(store: Store):
    return store.data_dir / "outbox.jsonl"


def load_sent(store: Store) -> dict:
    path = _sent_file(store)
    if path.exists():
        try:
            return json.loads(path.read_text())
        except json.JSONDecodeError:
            log.warning("sent_reminders.json is corrupt; starting fresh.")
    return {}


def prune_sent(sent: dict, today: date) -> int:
    """Drop dedup keys whose payment date has already passed."""
    stale = []
    for key in sent:
        try:
            payment_date = date.fromisoformat(key.rsplit("_", 2)[1])
        except (IndexError, ValueError):
            payment_date = None
        if payment_date is None or payment_date < today:
            stale.append(key)
    for key in stale:
        del sent[key]
    return len(stale)


def reminder_text(reminder: dict) -> str:
    days = reminder["days_until"]
    day_word = "day" if days == 1 else "days"
    return (
        f"Payment reminder: {reminder['name']} renews in {days} {day_word} "
        f"({reminder['payment_date']}). Amount: ${reminder['cost']:,.2f}"
    )


def deliver(store: Store, channel: str, recipient: str, text: str):
    entry = {
        "channel": channel,
        "to": recipient,
        "text": text,
        "queued_at": datetime.now(timezone.utc).isoformat(),
    }
    path = _outbox_file(store)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a") as f:
        f.write(json.dumps(entry) + "\n")


# ── Jobs ──────────────────────────────────────────────────────────────────────
def reset_scan_quotas(store: Store, today: Optional[date] = None) -> int:
    count = store.reset_all_scan_quotas(today)
    log.info(f"Scan quotas reset for {count} user(s).")
    return count


def send_payment_reminders(store: Store, now: Optional[datetime] = None) -> int:
    """Queue reminders for every user who has a notification channel enabled."""
    now = now or datetime.now()
    sent = load_sent(store)
    count = 0

    for user in store.list_users():
        prefs = user["preferences"]
        channels = []
        if prefs.get("email_notifications"):
            channels.append("email")
        if prefs.get("sms_notifications") and user.get("is_premium"):
            channels.append("sms")
        if not channels:
            continue

        subs = [analyzer.present(s, now) for s in store.list_subscriptions(user["id"])]
        for reminder in analyzer.due_reminders(subs, prefs.get("reminder_days", 3), now):
            key = f"{user['id']}_{reminder['key']}"
            if key in sent:
                continue
            text = reminder_text(reminder)
            for channel in channels:
                deliver(store, channel, user["email"], text)
            sent[key] = now.date().isoformat()
            count += 1
            log.info(f"Reminder queued: {reminder['name']} in {reminder['days_until']}d for {user['email']}")

    pruned = prune_sent(sent, now.date())
    if count or pruned:
        path = _sent_file(store)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(sent, indent=2))
    return count


def purge_tokens(store: Store) -> int:
    purged = store.purge_expired_tokens()
    if purged:
        log.info(f"Purged {purged} expired token(s).")
    return purged


def run_job(job, *args):
    """Run one scheduled job; a failure is logged and the loop keeps going."""
    try:
        return job(*args)
    except Exception as exc:
        log.error(f"Job {job.__name__} failed: {exc}", exc_info=True)
        return None


def build_scheduler(store: Store) -> schedule.Scheduler:
    jobs = schedule.Scheduler()
    jobs.every().day.at(config.QUOTA_RESET_TIME).do(run_job, reset_scan_quotas, store)
    jobs.every().day.at(config.REMINDER_TIME).do(run_job, send_payment_reminders, store)
    jobs.every().hour.do(run_job, purge_tokens, store)
    return jobs


def run_scheduler(store: Store):
    """Background loop: quota reset, reminders and token cleanup."""
    jobs = build_scheduler(store)
    log.info(f"Scheduler started: quota reset {config.QUOTA_RESET_TIME}, reminders {config.REMINDER_TIME}")

    run_job(send_payment_reminders, store)

    while True:
        jobs.run_pending()
        time.sleep(30)


# ── Entry point ────────────────────────────────────────────────────────────────
if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT, datefmt="%H:%M:%S")
    store = Store()

    if "--once" in sys.argv[1:]:
        send_payment_reminders(store)
    else:
        run_scheduler(store)
