"""
seed_test_data.py — creates a demo account with realistic subscriptions.
Run this to try the API and dashboard without adding anything by hand.

    python seed_test_data.py                      # demo@example.com / demo1234
    python seed_test_data.py --email me@example.com --password secret1
    python seed_test_data.py --premium            # demo account on the premium plan
"""
import argparse
from datetime import date, timedelta
from typing import Optional

import auth
from models import SubscriptionCreate
from store import EmailTaken, Store

DEMO_EMAIL = "demo@example.com"
DEMO_PASSWORD = "demo1234"


def make_subscriptions(today: Optional[date] = None) -> list[SubscriptionCreate]:
    today = today or date.today()

    subs = [
        # (name, cost, category, days_until_due, logo, payment_method, description, cancel_url, support_email)
        ("Netflix",              15.99, "Entertainment",    12, "🎬", "Visa ****1234",       "Premium streaming service", "https://netflix.com/cancel",          "support@netflix.com"),
        ("Spotify",               9.99, "Entertainment",     2, "🎵", "Mastercard ****5678", "Music streaming premium",   "https://spotify.com/cancel",          "support@spotify.com"),  # due soon
        ("Adobe Creative Cloud", 52.99, "Software",         17, "🎨", "Visa ****1234",       "Creative software suite",   "https://adobe.com/cancel",            "support@adobe.com"),
        ("GitHub Pro",            4.00, "Software",         22, "💻", "Visa ****1234",       "Code repository hosting",   "https://github.com/settings/billing", "support@github.com"),
        ("Gym Membership",       29.99, "Health & Fitness", -3, "💪", "Mastercard ****5678", "Local gym membership",      None,                                  "info@localgym.com"),    # overdue
    ]

    records = []
    for name, cost, category, due_in, logo, method, description, cancel_url, support in subs:
        next_payment = today + timedelta(days=due_in)
        records.append(SubscriptionCreate(
            name=name,
            cost=cost,
            billing_frequency="monthly",
            next_payment_date=next_payment,
            category=category,
            logo=logo,
            payment_method=method,
            description=description,
            last_payment_date=next_payment - timedelta(days=30),
            cancellation_url=cancel_url,
            support_email=support,
        ))
    return records


def seed(store: Store, email: str = DEMO_EMAIL, password: str = DEMO_PASSWORD,
         today: Optional[date] = None, premium: bool = False) -> dict:
    """Create (or reuse) the account and add the demo subscriptions it lacks."""
    try:
        user = store.create_user(email, auth.hash_password(password), name="Demo User")
    except EmailTaken:
        user = store.find_user_by_email(email)

    if premium and not user["is_premium"]:
        user = store.set_premium(user["id"], premium)

    existing = {s.name for s in store.list_subscriptions(user["id"])}
    for sub in make_subscriptions(today):
        if sub.name not in existing:
            store.add_subscription(user["id"], sub)
    return user


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed a SubTrack demo account.")
    parser.add_argument("--email", default=DEMO_EMAIL)
    parser.add_argument("--password", default=DEMO_PASSWORD)
    parser.add_argument("--premium", action="store_true", help="put the account on the premium plan")
    args = parser.parse_args()

    store = Store()
    user = seed(store, args.email, args.password, premium=args.premium)
    count = len(store.list_subscriptions(user["id"]))
    plan = "premium" if user["is_premium"] else "free"
    print(f"Seeded {user['email']} ({plan}) with {count} subscriptions in {store.data_dir}/")
