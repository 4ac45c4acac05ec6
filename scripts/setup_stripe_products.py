"""
Create the ChurchFeed subscription products and monthly prices in Stripe.

One product + recurring USD price per tier (New Church, Growing, Established, Mega).
Prints the STRIPE_PRICE_TIER* lines to paste into .env.

Usage (from project root, STRIPE_SECRET_KEY set in .env):
  python scripts/setup_stripe_products.py
  python scripts/setup_stripe_products.py --dry-run
"""
import os
import sys
import argparse

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import stripe

from churchfeed.config import get_settings
from churchfeed.services.payments import SUBSCRIPTION_TIERS


def main():
    parser = argparse.ArgumentParser(description="Create ChurchFeed Stripe products and prices")
    parser.add_argument("--dry-run", action="store_true", help="Only print what would be created")
    args = parser.parse_args()

    settings = get_settings()
    if not settings.stripe_secret_key and not args.dry_run:
        print("STRIPE_SECRET_KEY is not set in .env")
        return 1
    stripe.api_key = settings.stripe_secret_key

    price_ids = {}
    for tier, info in SUBSCRIPTION_TIERS.items():
        name = f"ChurchFeed {info.name} Plan"
        print(f"Product: {name} ({info.member_range}) ${info.price_usd}/month")
        if args.dry_run:
            continue
        try:
            product = stripe.Product.create(
                name=name,
                description=f"For churches with {info.member_range}",
                metadata={"tier": tier.value, "member_range": info.member_range},
            )
            price = stripe.Price.create(
                product=product.id,
                unit_amount=info.price_usd * 100,
                currency="usd",
                recurring={"interval": "month"},
                metadata={"tier": tier.value},
            )
        except stripe.StripeError as e:
            print(f"  Failed: {e}")
            return 1
        price_ids[tier.value] = price.id
        print(f"  product={product.id} price={price.id}")

    if args.dry_run:
        print("\nDry run: nothing was created.")
        return 0

    print("\nAdd these to .env:")
    for key, price_id in price_ids.items():
        print(f"STRIPE_PRICE_{key.upper()}={price_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
