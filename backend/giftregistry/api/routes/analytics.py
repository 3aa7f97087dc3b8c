import logging

from fastapi import APIRouter, Query
from sqlalchemy import select

from giftregistry.api.deps import CurrentUserDep, DbSessionDep, OptionalUserDep
from giftregistry.api.loaders import load_contributions, load_items, load_profiles
from giftregistry.api.serializers import (
    funding_summary,
    serialize_contribution,
    serialize_item_funding,
    should_mask_names,
)
from giftregistry.core.config import settings
from giftregistry.core.contributors import ANONYMOUS_KEY, ANONYMOUS_NAME, resolve_display_name
from giftregistry.core.errors import BadRequest, Forbidden, NotFound
from giftregistry.core.funding import (
    compute_registry_funding,
    compute_user_funding,
    count_unique_contributors,
    most_recent,
    rank_contributors,
    sum_amounts,
)
from giftregistry.core.permissions import load_registry
from giftregistry.models.models import GiftItem, Profile, Registry
from giftregistry.schemas.registry import (
    AnalyticsResponse,
    ContributionStats,
    RegistryAnalytics,
    TopContributor,
    UserAnalytics,
)

router = APIRouter(prefix="/api/analytics", tags=["analytics"])
logger = logging.getLogger("giftregistry.analytics")


async def _registry_analytics(db: DbSessionDep, registry: Registry) -> RegistryAnalytics:
    items = await load_items(db, [registry.id])
    contributions = await load_contributions(db, registry_ids=[registry.id])
    profiles = await load_profiles(db, (c.user_id for c in contributions))
    funding = compute_registry_funding(items, contributions)

    top = []
    for ranked in rank_contributors(contributions):
        if ranked.key == ANONYMOUS_KEY:
            name = ANONYMOUS_NAME
        else:
            name = resolve_display_name(ranked.sample, profiles.get(ranked.sample.user_id))
        top.append(
            TopContributor(
                name=name,
                total_amount=ranked.total_amount,
                contribution_count=ranked.contribution_count,
            )
        )

    return RegistryAnalytics(
        registry_id=registry.id,
        title=registry.title,
        currency=registry.currency,
        funding=funding_summary(funding),
        item_breakdown=[serialize_item_funding(f) for f in funding.items],
        top_contributors=top,
        recent_contributions=[
            serialize_contribution(c, profiles)
            for c in most_recent(contributions, settings.recent_contributions_limit)
        ],
    )


async def _user_analytics(db: DbSessionDep, user: Profile) -> UserAnalytics:
    registries = list(
        (await db.execute(select(Registry).where(Registry.user_id == user.id))).scalars()
    )
    registry_ids = [r.id for r in registries]
    items = await load_items(db, registry_ids)
    contributions = await load_contributions(db, registry_ids=registry_ids)
    funding = compute_user_funding(registries, items, contributions)
    return UserAnalytics(user_id=user.id, **funding.as_dict())


@router.get("", response_model=AnalyticsResponse)
async def get_analytics(
    db: DbSessionDep,
    current_user: CurrentUserDep,
    registry_id: int | None = Query(default=None),
    user_id: int | None = Query(default=None),
) -> AnalyticsResponse:
    if registry_id is None and user_id is None:
        raise BadRequest("Registry ID or User ID is required", field="registry_id")

    response = AnalyticsResponse()
    if registry_id is not None:
        registry, access = await load_registry(db, registry_id, current_user)
        if not access.is_manager:
            raise Forbidden("Only registry owners can view analytics")
        response.registry = await _registry_analytics(db, registry)

    if user_id is not None:
        if user_id != current_user.id:
            raise Forbidden("You can only view your own analytics")
        response.user = await _user_analytics(db, current_user)

    return response


@router.get("/contributions", response_model=ContributionStats)
async def contribution_stats(
    db: DbSessionDep,
    current_user: OptionalUserDep,
    registry_id: int | None = Query(default=None),
    gift_item_id: int | None = Query(default=None),
) -> ContributionStats:
    """Contribution totals for one gift item or a whole registry."""
    if gift_item_id is not None:
        item = await db.get(GiftItem, gift_item_id)
        if item is None or (registry_id is not None and item.registry_id != registry_id):
            raise NotFound("Gift item not found")
        registry, access = await load_registry(db, item.registry_id, current_user)
        contributions = await load_contributions(db, gift_item_ids=[item.id])
        scope, scope_id = "gift_item", item.id
    elif registry_id is not None:
        registry, access = await load_registry(db, registry_id, current_user)
        contributions = await load_contributions(db, registry_ids=[registry.id])
        scope, scope_id = "registry", registry.id
    else:
        raise BadRequest("gift_item_id or registry_id is required", field="registry_id")

    mask = should_mask_names(registry, access)
    profiles = {} if mask else await load_profiles(db, (c.user_id for c in contributions))
    total = sum_amounts(contributions)
    count = len(contributions)
    return ContributionStats(
        scope=scope,
        scope_id=scope_id,
        total_amount=total,
        contribution_count=count,
        unique_contributors=count_unique_contributors(contributions),
        average_contribution=round(total / count, 2) if count else 0.0,
        largest_contribution=max((float(c.amount) for c in contributions), default=0.0),
        recent_contributions=[
            serialize_contribution(c, profiles, mask_names=mask)
            for c in most_recent(contributions, settings.recent_contributions_limit)
        ],
    )
