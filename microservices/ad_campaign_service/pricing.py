"""
Ad Campaign Pricing Engine

Pure price computation: (ad type, duration) -> price breakdown.

Rates and duration discounts come from an immutable PricingConfig passed in
at construction; plan changes produce a new config instead of mutating one.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal, ROUND_HALF_UP
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Union

from .models import (
    AD_IMAGE_DIMENSIONS,
    AdType,
    DurationOption,
    PriceBreakdown,
    PricingPlan,
)
from .protocols import InvalidAdTypeError, InvalidDurationError

CENT = Decimal("0.01")

DEFAULT_MONTHLY_RATES: Dict[AdType, Decimal] = {
    AdType.LEADERBOARD: Decimal("600"),
    AdType.TOP_SIDEBAR: Decimal("200"),
    AdType.RIGHT_SIDEBAR_TOP: Decimal("300"),
    AdType.RIGHT_SIDEBAR_MIDDLE: Decimal("250"),
    AdType.RIGHT_SIDEBAR_BOTTOM: Decimal("200"),
    AdType.FEATURED_STORE: Decimal("100"),
    AdType.FEATURED_PRODUCT: Decimal("50"),
    AdType.NEWSLETTER_INCLUSION: Decimal("100"),
    AdType.EDITORIAL_WRITEUP: Decimal("300"),
}

# months -> discount percent
DEFAULT_DURATION_DISCOUNTS: Dict[int, int] = {1: 0, 3: 10, 6: 15, 12: 20}

DEFAULT_SLOTS_PER_TYPE = 6


def round_money(value: Decimal) -> Decimal:
    """Round to cents, half up"""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def duration_label(months: int) -> str:
    return "1 Month" if months == 1 else f"{months} Months"


@dataclass(frozen=True)
class PricingConfig:
    """
    Immutable ad plan configuration.

    Discounts must not decrease as the duration grows, so a longer booking is
    never more expensive per month than a shorter one.
    """
    monthly_rates: Mapping[AdType, Decimal] = field(default_factory=lambda: dict(DEFAULT_MONTHLY_RATES))
    duration_discounts: Mapping[int, int] = field(default_factory=lambda: dict(DEFAULT_DURATION_DISCOUNTS))
    slots_per_type: int = DEFAULT_SLOTS_PER_TYPE
    inactive_types: FrozenSet[AdType] = frozenset()
    free_types: FrozenSet[AdType] = frozenset()

    def __post_init__(self):
        rates = {}
        for ad_type, rate in self.monthly_rates.items():
            rate = Decimal(str(rate))
            if rate < 0:
                raise ValueError(f"Monthly rate for {ad_type} cannot be negative")
            rates[AdType(ad_type)] = rate

        discounts = {}
        for months, percent in self.duration_discounts.items():
            months, percent = int(months), int(percent)
            if months < 1:
                raise ValueError(f"Duration must be at least one month, got {months}")
            if not 0 <= percent <= 100:
                raise ValueError(f"Discount for {months} months must be within 0-100, got {percent}")
            discounts[months] = percent

        previous = 0
        for months in sorted(discounts):
            if discounts[months] < previous:
                raise ValueError("Duration discounts must not decrease for longer durations")
            previous = discounts[months]

        if self.slots_per_type < 1:
            raise ValueError("slots_per_type must be positive")

        object.__setattr__(self, "monthly_rates", MappingProxyType(rates))
        object.__setattr__(self, "duration_discounts", MappingProxyType(dict(sorted(discounts.items()))))
        object.__setattr__(self, "inactive_types", frozenset(AdType(t) for t in self.inactive_types))
        object.__setattr__(self, "free_types", frozenset(AdType(t) for t in self.free_types))

    def is_active(self, ad_type: AdType) -> bool:
        return ad_type in self.monthly_rates and ad_type not in self.inactive_types

    def is_free(self, ad_type: AdType) -> bool:
        return ad_type in self.free_types

    def with_rate(self, ad_type: AdType, rate: Union[Decimal, int, str]) -> "PricingConfig":
        return replace(self, monthly_rates={**self.monthly_rates, AdType(ad_type): Decimal(str(rate))})

    def with_discounts(self, discounts: Mapping[int, int]) -> "PricingConfig":
        return replace(self, duration_discounts=dict(discounts))

    def with_plan_active(self, ad_type: AdType, active: bool) -> "PricingConfig":
        ad_type = AdType(ad_type)
        inactive = set(self.inactive_types)
        if active:
            inactive.discard(ad_type)
        else:
            inactive.add(ad_type)
        return replace(self, inactive_types=frozenset(inactive))

    def with_plan_free(self, ad_type: AdType, free: bool) -> "PricingConfig":
        """Free mode books a plan at no charge, for testing placements"""
        ad_type = AdType(ad_type)
        free_types = set(self.free_types)
        if free:
            free_types.add(ad_type)
        else:
            free_types.discard(ad_type)
        return replace(self, free_types=frozenset(free_types))


class PricingEngine:
    """Computes campaign prices from a PricingConfig"""

    def __init__(self, config: PricingConfig = None):
        self._config = config or PricingConfig()

    @property
    def config(self) -> PricingConfig:
        return self._config

    @property
    def allowed_durations(self) -> List[int]:
        return list(self._config.duration_discounts)

    def resolve_ad_type(self, ad_type: Union[AdType, str]) -> AdType:
        try:
            resolved = AdType(ad_type)
        except ValueError:
            raise InvalidAdTypeError(f"Unknown ad type: {ad_type}", ad_type=str(ad_type))
        if resolved not in self._config.monthly_rates:
            raise InvalidAdTypeError(f"No rate configured for ad type: {resolved.value}", ad_type=resolved.value)
        return resolved

    def validate_duration(self, duration: int) -> int:
        if isinstance(duration, bool) or not isinstance(duration, int) \
                or duration not in self._config.duration_discounts:
            raise InvalidDurationError(
                f"Invalid duration {duration!r}; allowed: {self.allowed_durations}",
                duration=duration if isinstance(duration, int) else None,
            )
        return duration

    def price(self, ad_type: Union[AdType, str], duration: int) -> PriceBreakdown:
        """
        Price an ad type for a number of months.

        total = monthly_rate * duration * (1 - discount/100), rounded half up to cents.
        A plan in free mode is quoted at zero.
        """
        ad_type = self.resolve_ad_type(ad_type)
        duration = self.validate_duration(duration)

        base_price = self._config.monthly_rates[ad_type]
        discount_percent = self._config.duration_discounts[duration]
        subtotal = round_money(base_price * duration)
        total_price = round_money(subtotal * (100 - discount_percent) / Decimal(100))
        total_price = max(total_price, Decimal("0.00"))
        is_free = self._config.is_free(ad_type)
        if is_free:
            total_price = Decimal("0.00")

        return PriceBreakdown(
            ad_type=ad_type,
            duration=duration,
            base_price=base_price,
            discount_percent=discount_percent,
            subtotal=subtotal,
            discount_amount=subtotal - total_price,
            total_price=total_price,
            is_free=is_free,
        )

    def quote_new_campaign(self, ad_type: Union[AdType, str], duration: int) -> PriceBreakdown:
        """Like price(), but refuses plans an admin has switched off"""
        resolved = self.resolve_ad_type(ad_type)
        if not self._config.is_active(resolved):
            raise InvalidAdTypeError(
                f"Ad type {resolved.value} is not currently offered", ad_type=resolved.value
            )
        return self.price(resolved, duration)

    def list_plans(self) -> List[PricingPlan]:
        plans = []
        for ad_type, rate in self._config.monthly_rates.items():
            dimensions = AD_IMAGE_DIMENSIONS.get(ad_type)
            plans.append(PricingPlan(
                ad_type=ad_type,
                monthly_rate=rate,
                is_slot_based=ad_type.is_slot_based,
                slots=self._config.slots_per_type if ad_type.is_slot_based else 0,
                is_active=self._config.is_active(ad_type),
                is_free=self._config.is_free(ad_type),
                dimensions={"width": dimensions[0], "height": dimensions[1]} if dimensions else None,
            ))
        return plans

    def duration_options(self) -> List[DurationOption]:
        return [
            DurationOption(months=months, discount_percent=percent, label=duration_label(months))
            for months, percent in self._config.duration_discounts.items()
        ]


__all__ = [
    "CENT",
    "DEFAULT_MONTHLY_RATES",
    "DEFAULT_DURATION_DISCOUNTS",
    "DEFAULT_SLOTS_PER_TYPE",
    "PricingConfig",
    "PricingEngine",
    "round_money",
]
