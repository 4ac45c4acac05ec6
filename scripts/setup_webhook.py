"""
Register (or re-register) the Stripe webhook endpoint for this server.

Removes any existing endpoint with the same URL, creates a new one for the events
POST /webhook handles, and prints the signing secret for STRIPE_WEBHOOK_SECRET.

Usage (from project root):
  python scripts/setup_webhook.py --url https://api.churchfeed.app/webhook
"""
import os
import sys
import argparse

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import stripe

from churchfeed.config import get_settings

WEBHOOK_EVENTS = [
    "checkout.session.completed",
    "customer.subscription.updated",
    "customer.subscription.deleted",
]


def main():
    parser = argparse.ArgumentParser(description="Register the ChurchFeed Stripe webhook endpoint")
    parser.add_argument("--url", type=str, required=True, help="Public URL of POST /webhook")
    args = parser.parse_args()

    settings = get_settings()
    if not settings.stripe_secret_key:
        print("STRIPE_SECRET_KEY is not set in .env")
        return 1
    stripe.api_key = settings.stripe_secret_key

    try:
        existing = stripe.WebhookEndpoint.list(limit=100)
        for endpoint in existing.auto_paging_iter():
            if endpoint.url == args.url:
                print(f"Deleting existing endpoint {endpoint.id}")
                stripe.WebhookEndpoint.delete(endpoint.id)
        endpoint = stripe.WebhookEndpoint.create(url=args.url, enabled_events=WEBHOOK_EVENTS)
    except stripe.StripeError as e:
        print(f"Failed: {e}")
        return 1

    print(f"Webhook endpoint created: {endpoint.id}")
    print(f"  URL: {endpoint.url}")
    print(f"  Events: {', '.join(WEBHOOK_EVENTS)}")
    print("\nAdd this to .env and restart the server:")
    print(f"STRIPE_WEBHOOK_SECRET={endpoint.secret}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
