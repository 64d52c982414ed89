"""Credit gate for paid image generation."""
import logging
from dataclasses import dataclass
from typing import Optional

from config import DEFAULT_IMAGE_COST, DEFAULT_IMAGE_MODEL

logger = logging.getLogger(__name__)


@dataclass
class CreditDecision:
    """
    Outcome of a credit check.

    Attributes:
        proceed: Whether generation may start
        model: Image model the decision applies to
        cost: Credits charged (0 for privileged users)
        message: Explanation shown to the user when not proceeding
    """
    proceed: bool
    model: str
    cost: int = 0
    message: Optional[str] = None


class CreditGate:
    """Checks and debits credits before an image is generated."""

    def __init__(self, store):
        """
        Args:
            store: Storage collaborator providing fetch_profile,
                fetch_cost_settings and deduct_credits
        """
        self.store = store

    async def authorize(self, user_id: str, model_choice: Optional[str] = None) -> CreditDecision:
        """
        Authorize an image generation for a user.

        The profile is fetched fresh on every call. Privileged users bypass
        the check. Otherwise the cost is deducted before returning, and it is
        not refunded if generation later fails.

        Args:
            user_id: Requesting user
            model_choice: Image model; defaults to the user's preference

        Returns:
            CreditDecision; a shortfall is a normal outcome, not an error

        Raises:
            StoreError: If the profile or the cost settings cannot be loaded
        """
        profile = await self.store.fetch_profile(user_id)
        model = model_choice or profile.model_preference or DEFAULT_IMAGE_MODEL

        if profile.is_privileged:
            logger.info(f"Privileged user {user_id} bypasses credit check for {model}")
            return CreditDecision(proceed=True, model=model)

        costs = await self.store.fetch_cost_settings()
        cost = costs.get(model) or DEFAULT_IMAGE_COST

        if profile.balance < cost:
            logger.info(f"Insufficient credits for {user_id}: balance={profile.balance}, cost={cost}")
            return CreditDecision(
                proceed=False,
                model=model,
                cost=cost,
                message=(
                    f"Oops! You need {cost} credits to generate an image, "
                    f"but you only have {profile.balance}."
                ),
            )

        await self.store.deduct_credits(user_id, cost)
        return CreditDecision(proceed=True, model=model, cost=cost)
