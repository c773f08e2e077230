"""Reads the subscription tier the billing system assigned to a user."""

from app.db.helpers import fetch_val, with_db_retry
from app.features.contact_intelligence.domain.subscriptions import SubscriptionTier, parse_tier


class SubscriptionRepository:
    @classmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_tier(cls, user_id: str) -> SubscriptionTier:
        """Users without a subscription row are on the base tier."""
        tier = await fetch_val("SELECT tier FROM user_subscriptions WHERE user_id = %s", (user_id,))
        return parse_tier(tier)
