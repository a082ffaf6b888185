from decimal import Decimal
from typing import Optional, Sequence

from .models import Tier, TierProgress


DEFAULT_TIERS = (
    Tier(
        id="bronze", name="Bronze", min_points=0, max_points=999,
        multiplier=Decimal("1.0"),
        benefits=["Earn 1 point per $1 spent", "Basic rewards access"],
        color="#CD7F32", icon="medal-outline",
    ),
    Tier(
        id="silver", name="Silver", min_points=1000, max_points=4999,
        multiplier=Decimal("1.2"),
        benefits=["Earn 1.2 points per $1 spent", "Priority customer support", "Exclusive rewards"],
        color="#C0C0C0", icon="medal",
    ),
    Tier(
        id="gold", name="Gold", min_points=5000, max_points=14999,
        multiplier=Decimal("1.5"),
        benefits=["Earn 1.5 points per $1 spent", "Free shipping", "Early access to sales", "Birthday bonus"],
        color="#FFD700", icon="trophy",
    ),
    Tier(
        id="platinum", name="Platinum", min_points=15000,
        multiplier=Decimal("2.0"),
        benefits=["Earn 2 points per $1 spent", "VIP customer support", "Exclusive products", "Personal shopper"],
        color="#E5E4E2", icon="diamond",
    ),
)


class TierTable:
    """Ordered, contiguous tier configuration.

    Tiers are sorted by ``min_points``; the first starts at zero, each
    ``max_points`` is one below the next tier's ``min_points`` and only the
    last tier is open-ended.
    """

    def __init__(self, tiers: Sequence[Tier]):
        if not tiers:
            raise ValueError("Tier table needs at least one tier")
        ordered = sorted(tiers, key=lambda t: t.min_points)
        if ordered[0].min_points != 0:
            raise ValueError("Lowest tier must start at 0 points")
        for lower, upper in zip(ordered, ordered[1:]):
            if lower.max_points is None:
                raise ValueError(f"Only the top tier may be open-ended, got {lower.id}")
            if upper.min_points != lower.max_points + 1:
                raise ValueError(f"Tiers {lower.id} and {upper.id} are not contiguous")
        top = ordered[-1]
        if top.max_points is not None and top.max_points < top.min_points:
            raise ValueError(f"Tier {top.id} has an empty range")
        if len({t.id for t in ordered}) != len(ordered):
            raise ValueError("Tier ids must be unique")
        self._tiers = tuple(ordered)
        self._by_id = {t.id: t for t in ordered}

    @classmethod
    def default(cls) -> "TierTable":
        return cls(DEFAULT_TIERS)

    def __iter__(self):
        return iter(self._tiers)

    def __len__(self) -> int:
        return len(self._tiers)

    @property
    def lowest(self) -> Tier:
        return self._tiers[0]

    def get(self, tier_id: str) -> Tier:
        return self._by_id[tier_id]

    def as_list(self) -> list[Tier]:
        return list(self._tiers)


class TierCalculator:
    def __init__(self, table: Optional[TierTable] = None):
        self.table = table or TierTable.default()

    def tier_for(self, total_points: int) -> Tier:
        for tier in reversed(self.table.as_list()):
            if total_points >= tier.min_points:
                return tier
        return self.table.lowest

    def next_tier(self, total_points: int) -> Optional[Tier]:
        return next((t for t in self.table if t.min_points > total_points), None)

    def next_tier_points(self, total_points: int) -> int:
        upcoming = self.next_tier(total_points)
        return upcoming.min_points if upcoming else total_points

    def progress(self, total_points: int) -> TierProgress:
        current = self.tier_for(total_points)
        upcoming = self.next_tier(total_points)
        if upcoming is None:
            return TierProgress(current=current, next=None, percent=100.0, points_to_next=0)

        span = upcoming.min_points - current.min_points
        percent = (total_points - current.min_points) / span * 100
        return TierProgress(
            current=current,
            next=upcoming,
            percent=max(0.0, min(100.0, percent)),
            points_to_next=upcoming.min_points - total_points,
        )
