"""Unit tests for CreditGate."""
import sys
sys.path.insert(0, 'backend')

import pytest
from unittest.mock import AsyncMock, Mock
from models.profile import Profile
from services.credit_gate import CreditGate
from services.supabase_store import StoreError


def make_store(balance=5, role="user", preference=None, costs=None):
    """Create a mock store with a profile and cost table."""
    store = Mock()
    store.fetch_profile = AsyncMock(return_value=Profile(
        user_id="user-1", balance=balance, role=role, model_preference=preference,
    ))
    store.fetch_cost_settings = AsyncMock(return_value=costs if costs is not None else {"nano_banana": 1})
    store.deduct_credits = AsyncMock()
    return store


class TestCreditGate:
    """Test suite for CreditGate."""

    @pytest.mark.asyncio
    async def test_insufficient_balance_returns_message(self):
        """Test the shortfall notice and that nothing is deducted."""
        store = make_store(balance=0)
        gate = CreditGate(store)

        decision = await gate.authorize("user-1")

        assert decision.proceed is False
        assert decision.message == "Oops! You need 1 credits to generate an image, but you only have 0."
        store.deduct_credits.assert_not_called()

    @pytest.mark.asyncio
    async def test_sufficient_balance_deducts_cost(self):
        """Test that the cost is deducted before proceeding."""
        store = make_store(balance=10, preference="imagen_4", costs={"imagen_4": 3})
        gate = CreditGate(store)

        decision = await gate.authorize("user-1")

        assert decision.proceed is True
        assert decision.model == "imagen_4"
        assert decision.cost == 3
        store.deduct_credits.assert_awaited_once_with("user-1", 3)

    @pytest.mark.asyncio
    async def test_cost_defaults_to_one(self):
        """Test the default cost for models missing from the cost table."""
        store = make_store(balance=1, preference="unknown_model", costs={})
        gate = CreditGate(store)

        decision = await gate.authorize("user-1")

        assert decision.proceed is True
        store.deduct_credits.assert_awaited_once_with("user-1", 1)

    @pytest.mark.asyncio
    async def test_model_choice_overrides_preference(self):
        """Test that an explicit model choice is used for the cost lookup."""
        store = make_store(balance=1, preference="imagen_4", costs={"imagen_4": 5, "nano_banana": 1})
        gate = CreditGate(store)

        decision = await gate.authorize("user-1", model_choice="nano_banana")

        assert decision.proceed is True
        assert decision.model == "nano_banana"

    @pytest.mark.asyncio
    async def test_privileged_user_bypasses_check(self):
        """Test that admins skip cost lookup and deduction."""
        store = make_store(balance=0, role="admin")
        gate = CreditGate(store)

        decision = await gate.authorize("user-1")

        assert decision.proceed is True
        store.fetch_cost_settings.assert_not_called()
        store.deduct_credits.assert_not_called()

    @pytest.mark.asyncio
    async def test_profile_is_fetched_every_time(self):
        """Test that balance is never cached between calls."""
        store = make_store(balance=5)
        gate = CreditGate(store)

        await gate.authorize("user-1")
        await gate.authorize("user-1")

        assert store.fetch_profile.await_count == 2

    @pytest.mark.asyncio
    async def test_settings_failure_propagates(self):
        """Test that a settings fetch failure is fatal."""
        store = make_store()
        store.fetch_cost_settings.side_effect = StoreError("Could not load credit cost settings.")
        gate = CreditGate(store)

        with pytest.raises(StoreError):
            await gate.authorize("user-1")
