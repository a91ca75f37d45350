"""Donation tier catalog.

Named tiers map to a fixed USD amount and a monthly recurring Stripe
price. Only recurring prices exist: a one-time tier donation resolves
no price id and is rejected by checkout.
"""

from decimal import Decimal

TIER_AMOUNTS = {
    "bronze": Decimal("10"),
    "silver": Decimal("50"),
    "gold": Decimal("100"),
}

# Tier name -> config key holding its monthly recurring price ID
TIER_PRICE_CONFIG_KEYS = {
    "bronze": "STRIPE_BRONZE_PRICE_ID",
    "silver": "STRIPE_SILVER_PRICE_ID",
    "gold": "STRIPE_GOLD_PRICE_ID",
}


def get_tier_amount(tier):
    """Return the donation amount for a tier, or None if unknown."""
    if not isinstance(tier, str):
        return None
    return TIER_AMOUNTS.get(tier)


def get_tier_price_id(tier, recurring, app_config):
    """Return the Stripe price ID for a tier.

    Returns None for unknown tiers and for one-time (non-recurring)
    donations, which have no catalog price.
    """
    if not isinstance(tier, str) or not recurring:
        return None
    config_key = TIER_PRICE_CONFIG_KEYS.get(tier)
    if config_key is None:
        return None
    return app_config.get(config_key) or None

