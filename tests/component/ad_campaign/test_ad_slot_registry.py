"""
Component Tests for SlotRegistry

Slot occupancy derived from campaign state, and per-owner slot locks.
"""

import asyncio
import pytest
from datetime import timedelta

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.ad_campaign_service.models import AdCampaignStatus, AdType
from microservices.ad_campaign_service.protocols import (
    InvalidAdTypeError,
    NotSlotBasedError,
    UnauthorizedError,
)
from microservices.ad_campaign_service.slot_registry import SlotRegistry
from tests.contracts.ad_campaign.data_contract import REFERENCE_NOW

NOW = REFERENCE_NOW


@pytest.fixture
def registry(mock_repository) -> SlotRegistry:
    return SlotRegistry(mock_repository)


@pytest.fixture
def populated(mock_repository, factory, owner_id, other_owner_id):
    """Owner holds slot 2 (active) and 4 (pending); other states do not hold a slot"""
    mock_repository.add(
        factory.make_campaign(owner_id=owner_id, slot_number=2),
        factory.make_campaign(owner_id=owner_id, slot_number=4, status=AdCampaignStatus.PENDING),
        factory.make_campaign(
            owner_id=owner_id, slot_number=5, status=AdCampaignStatus.EXPIRED,
            start_date=NOW - timedelta(days=40), end_date=NOW - timedelta(days=9),
        ),
        factory.make_campaign(owner_id=owner_id, slot_number=6, status=AdCampaignStatus.AWAITING_PAYMENT),
        factory.make_campaign(owner_id=owner_id, slot_number=3, end_date=NOW - timedelta(hours=2)),
        factory.make_campaign(owner_id=other_owner_id, slot_number=1),
        factory.make_campaign(owner_id=other_owner_id, slot_number=2),
        factory.make_campaign(owner_id=owner_id, ad_type=AdType.LEADERBOARD, slot_number=1),
    )
    return mock_repository


class TestAvailability:

    @pytest.mark.asyncio
    async def test_available_slots_for_owner(self, registry, populated, owner_id):
        slots = await registry.available_slots(AdType.TOP_SIDEBAR, owner_id, NOW)

        # Overdue-but-unswept campaign in slot 3 no longer holds it
        assert slots == [1, 3, 5, 6]

    @pytest.mark.asyncio
    async def test_fresh_owner_sees_every_slot(self, registry, populated):
        assert await registry.available_slots(AdType.TOP_SIDEBAR, "shop_new", NOW) == [1, 2, 3, 4, 5, 6]

    @pytest.mark.asyncio
    async def test_is_occupied(self, registry, populated, owner_id, other_owner_id):
        assert await registry.is_occupied(AdType.TOP_SIDEBAR, 1, NOW) is True
        assert await registry.is_occupied(AdType.TOP_SIDEBAR, 1, NOW, owner_id=owner_id) is False
        assert await registry.is_occupied(AdType.TOP_SIDEBAR, 4, NOW, owner_id=owner_id) is True
        assert await registry.is_occupied(AdType.TOP_SIDEBAR, 6, NOW) is False

    @pytest.mark.asyncio
    async def test_overview(self, registry, populated, owner_id):
        overview = await registry.slot_overview("top_sidebar", owner_id, NOW)

        by_slot = {s.slot: s for s in overview.slots}
        assert by_slot[1].ads_count == 1 and by_slot[1].available is True
        assert by_slot[2].ads_count == 2 and by_slot[2].owner_has_ad is True
        assert by_slot[2].available is False
        assert by_slot[4].owner_has_ad is True
        assert by_slot[6].ads_count == 0
        assert overview.available_slots == [1, 3, 5, 6]
        assert overview.total_active_ads == 4

    @pytest.mark.asyncio
    async def test_non_slot_type(self, registry):
        with pytest.raises(NotSlotBasedError):
            await registry.available_slots(AdType.EDITORIAL_WRITEUP, "shop_a", NOW)

    @pytest.mark.asyncio
    async def test_unknown_type(self, registry):
        with pytest.raises(InvalidAdTypeError):
            await registry.slot_overview("billboard", "shop_a", NOW)

    def test_slot_count_follows_config(self, mock_repository):
        assert SlotRegistry(mock_repository, slot_count=3).slot_numbers == [1, 2, 3]


class TestServiceSlotQueries:

    @pytest.mark.asyncio
    async def test_owner_required(self, service):
        with pytest.raises(UnauthorizedError):
            await service.available_slots(AdType.TOP_SIDEBAR, "")

    @pytest.mark.asyncio
    async def test_service_overview(self, service, populated, owner_id):
        overview = await service.slot_overview(AdType.TOP_SIDEBAR, owner_id, now=NOW)
        assert overview.available_slots == [1, 3, 5, 6]


class TestSlotLock:

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self, registry):
        order = []

        async def worker(name):
            async with registry.slot_lock("shop_a", AdType.TOP_SIDEBAR, 1):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_different_keys_interleave(self, registry):
        order = []

        async def worker(name, slot):
            async with registry.slot_lock("shop_a", AdType.TOP_SIDEBAR, slot):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a", 1), worker("b", 2))

        assert order == ["a-in", "b-in", "a-out", "b-out"]

    @pytest.mark.asyncio
    async def test_lock_dropped_once_released(self, registry):
        async with registry.slot_lock("shop_a", AdType.TOP_SIDEBAR, 1):
            assert len(registry._locks) == 1

        assert len(registry._locks) == 0

    @pytest.mark.asyncio
    async def test_many_keys_leave_nothing_behind(self, registry):
        for slot in registry.slot_numbers:
            async with registry.slot_lock(f"shop_{slot}", AdType.LEADERBOARD, slot):
                pass

        assert len(registry._locks) == 0
