import logging

from fastapi import APIRouter, Query, Request, status

from giftregistry.api.deps import DbSessionDep, OptionalUserDep
from giftregistry.api.loaders import load_contributions, load_profiles
from giftregistry.api.serializers import serialize_contribution, should_mask_names
from giftregistry.core.audit import audit_contribution
from giftregistry.core.contributions import (
    ContributionInput,
    ensure_contribution_allowed,
    load_item_in_registry,
    record_contribution,
)
from giftregistry.core.errors import BadRequest, NotFound
from giftregistry.core.notifications import notify_contribution_received
from giftregistry.core.permissions import load_registry
from giftregistry.core.rate_limit import check_rate_limit
from giftregistry.models.models import GiftItem
from giftregistry.schemas.registry import ContributionCreate, ContributionPublic

router = APIRouter(prefix="/api/contributions", tags=["contributions"])
logger = logging.getLogger("giftregistry.contributions")


@router.get("", response_model=list[ContributionPublic])
async def list_contributions(
    db: DbSessionDep,
    current_user: OptionalUserDep,
    gift_item_id: int | None = Query(default=None),
    registry_id: int | None = Query(default=None),
) -> list[ContributionPublic]:
    if gift_item_id is None and registry_id is None:
        raise BadRequest("gift_item_id or registry_id is required", field="gift_item_id")

    if gift_item_id is not None:
        item = await db.get(GiftItem, gift_item_id)
        if item is None or (registry_id is not None and item.registry_id != registry_id):
            raise NotFound("Gift item not found")
        registry, access = await load_registry(db, item.registry_id, current_user)
        contributions = await load_contributions(db, gift_item_ids=[item.id])
    else:
        registry, access = await load_registry(db, registry_id, current_user)
        contributions = await load_contributions(db, registry_ids=[registry.id])

    mask = should_mask_names(registry, access)
    profiles = {} if mask else await load_profiles(db, (c.user_id for c in contributions))
    return [serialize_contribution(c, profiles, mask_names=mask) for c in contributions]


@router.post("", response_model=ContributionPublic, status_code=status.HTTP_201_CREATED)
async def create_contribution(
    payload: ContributionCreate,
    request: Request,
    db: DbSessionDep,
    current_user: OptionalUserDep,
) -> ContributionPublic:
    check_rate_limit(request, "contribution")

    contributor_id = current_user.id if current_user else None
    data = ContributionInput(
        gift_item_id=payload.gift_item_id,
        registry_id=payload.registry_id,
        amount=payload.amount,
        message=payload.message,
        contributor_name=payload.contributor_name,
        is_anonymous=payload.is_anonymous,
    )

    registry, access = await load_registry(db, payload.registry_id, current_user)
    ensure_contribution_allowed(registry, data, contributor_id, access)
    await load_item_in_registry(db, payload.gift_item_id, registry.id)

    contribution = await record_contribution(db, data, contributor_id)
    audit_contribution(
        request,
        contributor_id,
        contribution.id,
        contribution.gift_item_id,
        float(contribution.amount),
    )

    profiles = {current_user.id: current_user} if current_user else {}
    response = serialize_contribution(contribution, profiles)

    result = await notify_contribution_received(db, contribution)
    if not result:
        logger.warning("Contribution notification failed contribution_id=%s", response.id)

    return response
