"""Funding aggregation over gift items and their contributions.

All functions here are pure: they take already-loaded rows (ORM objects or
anything exposing the same attributes) and never touch the database, so the
numbers can be recomputed on every read.
"""
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal
import math
from typing import Any

from giftregistry.core.contributors import contributor_key

_CENT = Decimal("0.01")


def _as_float(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, Decimal):
        value = float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def item_target(price: Any, quantity: Any) -> float:
    qty = _as_float(quantity)
    return round(_as_float(price) * qty, 2)


def funding_percent(contributed: Any, target: Any) -> float:
    """Percentage of ``target`` covered, clamped to [0, 100]; 0 when target <= 0."""
    target_value = _as_float(target)
    if target_value <= 0:
        return 0.0
    percent = _as_float(contributed) / target_value * 100.0
    clamped = max(0.0, min(percent, 100.0))
    # Truncate so a partly funded item never displays as 100.
    return float(Decimal(repr(clamped)).quantize(_CENT, rounding=ROUND_DOWN))


def sum_amounts(contributions: Iterable[Any]) -> float:
    return round(sum(_as_float(getattr(c, "amount", 0)) for c in contributions), 2)


def count_unique_contributors(contributions: Iterable[Any]) -> int:
    return len({contributor_key(c) for c in contributions})


def _created_at(contribution: Any) -> datetime:
    value = getattr(contribution, "created_at", None)
    if value is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        # SQLite drops tzinfo on the way back; stored values are UTC.
        return value.replace(tzinfo=timezone.utc)
    return value


def most_recent(contributions: Iterable[Any], limit: int | None = None) -> list[Any]:
    """Newest first; equal timestamps keep their input order."""
    ordered = sorted(contributions, key=_created_at, reverse=True)
    if limit is not None:
        return ordered[: max(0, limit)]
    return ordered


@dataclass(frozen=True)
class ItemFunding:
    item_id: int | None
    contributed: float
    target: float
    percent_funded: float
    contribution_count: int

    @property
    def remaining(self) -> float:
        return round(max(self.target - self.contributed, 0.0), 2)

    @property
    def is_fully_funded(self) -> bool:
        return self.target > 0 and self.contributed >= self.target

    @property
    def is_partially_funded(self) -> bool:
        return self.contributed > 0 and not self.is_fully_funded

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["remaining"] = self.remaining
        data["is_fully_funded"] = self.is_fully_funded
        return data


@dataclass(frozen=True)
class RegistryFunding:
    total_amount: float
    total_target: float
    percent_funded: float
    contribution_count: int
    unique_contributors: int
    items_total: int
    items_purchased: int
    items_funded: int
    items_partially_funded: int
    items: list[ItemFunding] = field(default_factory=list)

    @property
    def average_contribution(self) -> float:
        if not self.contribution_count:
            return 0.0
        return round(self.total_amount / self.contribution_count, 2)

    def as_dict(self, include_items: bool = False) -> dict[str, Any]:
        data = {
            "total_amount": self.total_amount,
            "total_target": self.total_target,
            "percent_funded": self.percent_funded,
            "contribution_count": self.contribution_count,
            "unique_contributors": self.unique_contributors,
            "average_contribution": self.average_contribution,
            "items": {
                "total": self.items_total,
                "purchased": self.items_purchased,
                "funded": self.items_funded,
                "partially_funded": self.items_partially_funded,
            },
        }
        if include_items:
            data["item_breakdown"] = [item.as_dict() for item in self.items]
        return data


@dataclass(frozen=True)
class UserFunding:
    registries: int
    contribution_count: int
    total_amount: float
    total_target: float
    percent_funded: float

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def group_by_item(contributions: Iterable[Any]) -> dict[Any, list[Any]]:
    grouped: dict[Any, list[Any]] = defaultdict(list)
    for contribution in contributions:
        grouped[getattr(contribution, "gift_item_id", None)].append(contribution)
    return grouped


def compute_item_funding(item: Any, contributions: Sequence[Any]) -> ItemFunding:
    contributed = sum_amounts(contributions)
    target = item_target(getattr(item, "price", 0), getattr(item, "quantity", 1))
    return ItemFunding(
        item_id=getattr(item, "id", None),
        contributed=contributed,
        target=target,
        percent_funded=funding_percent(contributed, target),
        contribution_count=len(contributions),
    )


def compute_registry_funding(
    items: Sequence[Any],
    contributions: Sequence[Any],
) -> RegistryFunding:
    by_item = group_by_item(contributions)
    item_funding = [
        compute_item_funding(item, by_item.get(getattr(item, "id", None), []))
        for item in items
    ]
    total_amount = sum_amounts(contributions)
    total_target = round(sum(f.target for f in item_funding), 2)
    return RegistryFunding(
        total_amount=total_amount,
        total_target=total_target,
        percent_funded=funding_percent(total_amount, total_target),
        contribution_count=len(contributions),
        unique_contributors=count_unique_contributors(contributions),
        items_total=len(items),
        items_purchased=sum(1 for item in items if getattr(item, "is_purchased", False)),
        items_funded=sum(1 for f in item_funding if f.is_fully_funded),
        items_partially_funded=sum(1 for f in item_funding if f.is_partially_funded),
        items=item_funding,
    )


def compute_user_funding(
    registries: Sequence[Any],
    items: Sequence[Any],
    contributions: Sequence[Any],
) -> UserFunding:
    """Cross-registry totals for a single owner."""
    total_amount = sum_amounts(contributions)
    total_target = round(
        sum(item_target(getattr(i, "price", 0), getattr(i, "quantity", 1)) for i in items),
        2,
    )
    return UserFunding(
        registries=len(registries),
        contribution_count=len(contributions),
        total_amount=total_amount,
        total_target=total_target,
        percent_funded=funding_percent(total_amount, total_target),
    )


@dataclass(frozen=True)
class ContributorTotal:
    key: str
    total_amount: float
    contribution_count: int
    sample: Any


def rank_contributors(contributions: Iterable[Any], limit: int | None = 5) -> list[ContributorTotal]:
    """Contributors by total given, largest first; ties keep first-seen order."""
    grouped: dict[str, list[Any]] = {}
    for contribution in contributions:
        grouped.setdefault(contributor_key(contribution), []).append(contribution)
    totals = [
        ContributorTotal(
            key=key,
            total_amount=sum_amounts(rows),
            contribution_count=len(rows),
            sample=rows[0],
        )
        for key, rows in grouped.items()
    ]
    totals.sort(key=lambda t: t.total_amount, reverse=True)
    if limit is not None:
        return totals[: max(0, limit)]
    return totals
