"""
Funding aggregation: item targets, percentages, registry and user totals.
"""
import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

from giftregistry.core.funding import (
    compute_item_funding,
    compute_registry_funding,
    compute_user_funding,
    count_unique_contributors,
    funding_percent,
    item_target,
    most_recent,
    rank_contributors,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _item(item_id, price, quantity=1, is_purchased=False):
    return SimpleNamespace(id=item_id, price=price, quantity=quantity, is_purchased=is_purchased)


def _contribution(item_id, amount, user_id=None, name=None, created_at=T0, cid=None):
    return SimpleNamespace(
        id=cid,
        gift_item_id=item_id,
        amount=amount,
        user_id=user_id,
        contributor_name=name,
        created_at=created_at,
    )


class TestFundingPercent:
    """Percentage guard rails."""

    def test_zero_target_is_zero(self):
        assert funding_percent(100, 0) == 0
        assert funding_percent(0, 0) == 0

    def test_negative_target_is_zero(self):
        assert funding_percent(50, -10) == 0

    def test_clamped_to_hundred(self):
        assert funding_percent(1500, 1000) == 100

    def test_never_nan_or_infinite(self):
        for contributed, target in [(float("nan"), 100), (100, float("nan")), (float("inf"), 100), (1, float("inf"))]:
            value = funding_percent(contributed, target)
            assert not math.isnan(value)
            assert not math.isinf(value)
            assert 0 <= value <= 100

    def test_decimal_inputs(self):
        assert funding_percent(Decimal("125.00"), Decimal("500.00")) == 25

    def test_truncates_instead_of_rounding_up(self):
        assert funding_percent(9999.6, 10000) == 99.99
        assert funding_percent(2, 3) == 66.66

    def test_nearly_funded_item_never_shows_hundred(self):
        funding = compute_item_funding(_item(1, 10000), [_contribution(1, Decimal("9999.60"))])
        assert funding.percent_funded == 99.99
        assert funding.is_fully_funded is False

    def test_item_target_multiplies_price_and_quantity(self):
        assert item_target(Decimal("250.00"), 2) == 500
        assert item_target(None, 3) == 0


class TestItemFunding:
    """Per-item aggregation."""

    def test_single_contribution_quarter_funded(self):
        item = _item(1, 250, 2)
        funding = compute_item_funding(item, [_contribution(1, 125)])

        assert funding.target == 500
        assert funding.contributed == 125
        assert funding.percent_funded == 25
        assert funding.remaining == 375
        assert funding.is_fully_funded is False
        assert funding.contribution_count == 1

    def test_zero_price_item(self):
        funding = compute_item_funding(_item(1, 0, 3), [_contribution(1, 10)])
        assert funding.percent_funded == 0
        assert funding.is_fully_funded is False

    def test_overfunded_item_clamps_percent_but_keeps_total(self):
        funding = compute_item_funding(_item(1, 100), [_contribution(1, 80), _contribution(1, 70)])
        assert funding.contributed == 150
        assert funding.percent_funded == 100
        assert funding.remaining == 0
        assert funding.is_fully_funded is True


class TestRegistryFunding:
    """Registry-level aggregation."""

    def test_two_items_weighted_percentage(self):
        items = [_item(1, 1000), _item(2, 500)]
        contributions = [
            _contribution(1, 500, user_id=1),
            _contribution(1, 250, name="Bob"),
            _contribution(2, 500, user_id=2),
        ]
        funding = compute_registry_funding(items, contributions)

        assert funding.total_amount == 1250
        assert funding.total_target == 1500
        assert funding.percent_funded == 83.33
        assert funding.contribution_count == 3
        assert funding.unique_contributors == 3
        assert funding.items_total == 2
        assert funding.items_funded == 1
        assert funding.items_partially_funded == 1

    def test_purchased_items_counted(self):
        items = [_item(1, 10, is_purchased=True), _item(2, 10)]
        funding = compute_registry_funding(items, [])
        assert funding.items_purchased == 1
        assert funding.percent_funded == 0
        assert funding.average_contribution == 0

    def test_as_dict_shape(self):
        funding = compute_registry_funding([_item(1, 100)], [_contribution(1, 40), _contribution(1, 20)])
        data = funding.as_dict(include_items=True)

        assert data["average_contribution"] == 30
        assert data["items"] == {"total": 1, "purchased": 0, "funded": 0, "partially_funded": 1}
        assert data["item_breakdown"][0]["percent_funded"] == 60

    def test_empty_registry(self):
        funding = compute_registry_funding([], [])
        assert funding.total_target == 0
        assert funding.percent_funded == 0
        assert funding.unique_contributors == 0


class TestUniqueContributors:
    """Distinct contributor identity."""

    def test_profile_and_names_are_distinct(self):
        contributions = [
            _contribution(1, 10, user_id=7),
            _contribution(1, 10, user_id=7),
            _contribution(1, 10, name="Alice"),
            _contribution(1, 10, name="  alice "),
        ]
        assert count_unique_contributors(contributions) == 2

    def test_anonymous_contributions_share_sentinel(self):
        contributions = [
            _contribution(1, 10),
            _contribution(1, 10, name="   "),
            _contribution(1, 10, name="Anonymous"),
        ]
        assert count_unique_contributors(contributions) == 1

    def test_anonymous_not_merged_with_named(self):
        contributions = [_contribution(1, 10), _contribution(1, 10, name="Carol")]
        assert count_unique_contributors(contributions) == 2


class TestMostRecent:
    """Newest-first ordering."""

    def test_sorted_descending_with_limit(self):
        rows = [
            _contribution(1, 1, created_at=T0, cid=1),
            _contribution(1, 1, created_at=T0 + timedelta(minutes=2), cid=2),
            _contribution(1, 1, created_at=T0 + timedelta(minutes=1), cid=3),
        ]
        assert [c.id for c in most_recent(rows, 2)] == [2, 3]

    def test_ties_keep_input_order(self):
        rows = [_contribution(1, 1, created_at=T0, cid=i) for i in (5, 3, 9)]
        assert [c.id for c in most_recent(rows)] == [5, 3, 9]

    def test_naive_and_aware_timestamps_mix(self):
        rows = [
            _contribution(1, 1, created_at=datetime(2024, 5, 1, 12, 30), cid=1),
            _contribution(1, 1, created_at=T0, cid=2),
        ]
        assert [c.id for c in most_recent(rows)] == [1, 2]


class TestUserFunding:
    """Cross-registry totals."""

    def test_totals_across_registries(self):
        registries = [SimpleNamespace(id=1), SimpleNamespace(id=2)]
        items = [_item(1, 100), _item(2, 300)]
        contributions = [_contribution(1, 100), _contribution(2, 100)]
        funding = compute_user_funding(registries, items, contributions)

        assert funding.registries == 2
        assert funding.contribution_count == 2
        assert funding.total_amount == 200
        assert funding.total_target == 400
        assert funding.percent_funded == 50


class TestRankContributors:
    """Top contributor ranking."""

    def test_grouped_and_sorted_by_total(self):
        contributions = [
            _contribution(1, 10, name="Dan"),
            _contribution(1, 50, user_id=3),
            _contribution(1, 15, name="dan"),
            _contribution(1, 5),
        ]
        ranked = rank_contributors(contributions, limit=2)

        assert [r.key for r in ranked] == ["profile:3", "name:dan"]
        assert ranked[1].total_amount == 25
        assert ranked[1].contribution_count == 2
