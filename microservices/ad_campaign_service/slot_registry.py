"""
Slot Registry

Answers capacity questions for slot-based ad types. Occupancy is derived from
campaign state (status pending/active with end_date in the future); nothing
is stored separately.

Several shops may rotate through the same slot. The hard rule is that one
owner holds at most one live campaign per (ad type, slot).
"""

import asyncio
import logging
import weakref
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional, Tuple, Union

from .models import AdType, SlotInfo, SlotOverviewResponse
from .pricing import DEFAULT_SLOTS_PER_TYPE
from .protocols import (
    AdCampaignRepositoryProtocol,
    AdCampaignValidationError,
    InvalidAdTypeError,
    NotSlotBasedError,
)

logger = logging.getLogger(__name__)


class SlotRegistry:
    """Derived slot occupancy plus per-owner slot locks"""

    def __init__(
        self,
        repository: AdCampaignRepositoryProtocol,
        slot_count: int = DEFAULT_SLOTS_PER_TYPE,
    ):
        self.repository = repository
        self.slot_count = slot_count
        # Entries disappear once no coroutine holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[Tuple[str, AdType, int], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    @property
    def slot_numbers(self) -> List[int]:
        return list(range(1, self.slot_count + 1))

    def require_slot_based(self, ad_type: Union[AdType, str]) -> AdType:
        try:
            ad_type = AdType(ad_type)
        except ValueError:
            raise InvalidAdTypeError(f"Unknown ad type: {ad_type}", ad_type=str(ad_type))
        if not ad_type.is_slot_based:
            raise NotSlotBasedError(f"Ad type {ad_type.value} does not use slots")
        return ad_type

    def validate_slot_number(self, slot_number: Optional[int]) -> int:
        if slot_number is None:
            raise AdCampaignValidationError("slot_number is required for this ad type", field="slot_number")
        if isinstance(slot_number, bool) or not 1 <= slot_number <= self.slot_count:
            raise AdCampaignValidationError(
                f"slot_number must be between 1 and {self.slot_count}", field="slot_number"
            )
        return slot_number

    async def is_occupied(
        self,
        ad_type: Union[AdType, str],
        slot_number: int,
        now: datetime,
        owner_id: Optional[str] = None,
    ) -> bool:
        """
        True when the slot holds a live campaign.

        With owner_id only that owner's campaigns count, which is the check
        that guards new bookings.
        """
        ad_type = self.require_slot_based(ad_type)
        live = await self.repository.list_live_campaigns(
            ad_type, now, slot_number=slot_number, owner_id=owner_id
        )
        return len(live) > 0

    async def available_slots(
        self, ad_type: Union[AdType, str], owner_id: str, now: datetime
    ) -> List[int]:
        """Ordered slot numbers in which the owner holds no live campaign"""
        ad_type = self.require_slot_based(ad_type)
        live = await self.repository.list_live_campaigns(ad_type, now, owner_id=owner_id)
        held = {c.slot_number for c in live}
        return [slot for slot in self.slot_numbers if slot not in held]

    async def slot_overview(
        self, ad_type: Union[AdType, str], owner_id: str, now: datetime
    ) -> SlotOverviewResponse:
        """Per-slot rotation size and whether the owner can still book it"""
        ad_type = self.require_slot_based(ad_type)
        live = await self.repository.list_live_campaigns(ad_type, now)

        per_slot = defaultdict(list)
        for campaign in live:
            per_slot[campaign.slot_number].append(campaign)

        slots = []
        for slot in self.slot_numbers:
            owner_has_ad = any(c.owner_id == owner_id for c in per_slot[slot])
            slots.append(SlotInfo(
                slot=slot,
                ads_count=len(per_slot[slot]),
                owner_has_ad=owner_has_ad,
                available=not owner_has_ad,
            ))

        return SlotOverviewResponse(
            ad_type=ad_type,
            slots=slots,
            available_slots=[s.slot for s in slots if s.available],
            total_active_ads=len(live),
        )

    @asynccontextmanager
    async def slot_lock(self, owner_id: str, ad_type: AdType, slot_number: int):
        """Serialize check-then-write for one (owner, ad type, slot)"""
        key = (owner_id, AdType(ad_type), slot_number)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        async with lock:
            yield
