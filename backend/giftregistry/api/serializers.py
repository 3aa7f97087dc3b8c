from collections.abc import Sequence

from giftregistry.core.contributors import ANONYMOUS_NAME, resolve_display_name
from giftregistry.core.funding import (
    ItemFunding,
    RegistryFunding,
    compute_item_funding,
    compute_registry_funding,
    group_by_item,
    most_recent,
)
from giftregistry.core.permissions import RegistryAccess
from giftregistry.core.reservations import active_holder
from giftregistry.models.models import Contribution, GiftItem, Profile, Registry
from giftregistry.schemas.registry import (
    ContributionPublic,
    FundingSummary,
    GiftItemPublic,
    ItemFundingPublic,
    RegistryPublic,
)


def should_mask_names(registry: Registry, access: RegistryAccess) -> bool:
    return not registry.show_contributor_names and not access.is_manager


def serialize_contribution(
    contribution: Contribution,
    profiles: dict[int, Profile],
    *,
    mask_names: bool = False,
) -> ContributionPublic:
    if mask_names:
        name = ANONYMOUS_NAME
        user_id = None
    else:
        profile = profiles.get(contribution.user_id) if contribution.user_id is not None else None
        name = resolve_display_name(contribution, profile)
        user_id = contribution.user_id
    return ContributionPublic(
        id=contribution.id,
        gift_item_id=contribution.gift_item_id,
        registry_id=contribution.registry_id,
        user_id=user_id,
        contributor_name=name,
        is_anonymous=bool(contribution.is_anonymous),
        amount=float(contribution.amount),
        message=contribution.message,
        status=contribution.status,
        created_at=contribution.created_at,
    )


def serialize_item_funding(funding: ItemFunding) -> ItemFundingPublic:
    return ItemFundingPublic(**funding.as_dict())


def serialize_gift_item(
    item: GiftItem,
    contributions: Sequence[Contribution],
    *,
    is_favorite: bool = False,
) -> GiftItemPublic:
    funding = compute_item_funding(item, contributions)
    holder = active_holder(item)
    return GiftItemPublic(
        id=item.id,
        registry_id=item.registry_id,
        user_id=item.user_id,
        name=item.name,
        description=item.description,
        price=float(item.price),
        quantity=item.quantity,
        url=item.url,
        image_url=item.image_url,
        is_purchased=bool(item.is_purchased),
        is_favorite=is_favorite,
        created_at=item.created_at,
        updated_at=item.updated_at,
        contributed=funding.contributed,
        target=funding.target,
        remaining=funding.remaining,
        percent_funded=funding.percent_funded,
        is_fully_funded=funding.is_fully_funded,
        contribution_count=funding.contribution_count,
        is_reserved=holder is not None,
        reserved_by=holder,
        reservation_expires_at=item.reservation_expires_at if holder is not None else None,
    )


def funding_summary(funding: RegistryFunding) -> FundingSummary:
    return FundingSummary(**funding.as_dict())


def serialize_registry(
    registry: Registry,
    access: RegistryAccess,
    items: Sequence[GiftItem],
    contributions: Sequence[Contribution],
    profiles: dict[int, Profile],
    *,
    favorite_ids: set[int] | None = None,
    include_details: bool = True,
    recent_limit: int = 10,
) -> RegistryPublic:
    """Registry with funding; items and recent contributions only when ``include_details``."""
    favorite_ids = favorite_ids or set()
    funding = compute_registry_funding(items, contributions)
    gift_items: list[GiftItemPublic] = []
    recent: list[ContributionPublic] = []
    if include_details:
        by_item = group_by_item(contributions)
        gift_items = [
            serialize_gift_item(item, by_item.get(item.id, []), is_favorite=item.id in favorite_ids)
            for item in items
        ]
        mask = should_mask_names(registry, access)
        recent = [
            serialize_contribution(c, profiles, mask_names=mask)
            for c in most_recent(contributions, recent_limit)
        ]
    return RegistryPublic(
        id=registry.id,
        user_id=registry.user_id,
        title=registry.title,
        description=registry.description,
        occasion=registry.occasion,
        event_date=registry.event_date,
        is_private=bool(registry.is_private),
        show_contributor_names=bool(registry.show_contributor_names),
        allow_anonymous=bool(registry.allow_anonymous),
        currency=registry.currency,
        status=registry.status,
        created_at=registry.created_at,
        updated_at=registry.updated_at,
        role=access.role.value,
        funding=funding_summary(funding),
        gift_items=gift_items,
        recent_contributions=recent,
    )
