import logging

from fastapi import APIRouter, Query, Request, status
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from giftregistry.api.deps import CurrentUserDep, DbSessionDep, OptionalUserDep
from giftregistry.api.loaders import (
    load_co_owner_grants,
    load_contributions,
    load_favorite_ids,
    load_items,
    load_managed_registries,
    load_profiles,
)
from giftregistry.api.serializers import serialize_registry
from giftregistry.core.audit import AuditAction, audit_registry_action
from giftregistry.core.config import settings
from giftregistry.core.contributors import profile_display_name
from giftregistry.core.errors import BadRequest, Forbidden, InternalError, NotFound
from giftregistry.core.permissions import (
    OWNER_ACCESS,
    RegistryAccess,
    RegistryRole,
    ensure_can_delete,
    ensure_can_edit,
    ensure_is_owner,
    load_registry,
)
from giftregistry.models.models import Comment, Profile, Registry, RegistryCoOwner
from giftregistry.schemas.registry import (
    CoOwnerCreate,
    CoOwnerPublic,
    CoOwnerUpdate,
    CommentCreate,
    CommentPublic,
    RegistryCreate,
    RegistryPublic,
    RegistrySearchResult,
    RegistrySort,
    RegistryUpdate,
)

router = APIRouter(prefix="/api/registries", tags=["registries"])
logger = logging.getLogger("giftregistry.registries")

_CLEARABLE_FIELDS = {"description", "occasion", "event_date"}


async def _registry_view(
    db: DbSessionDep,
    registry: Registry,
    access: RegistryAccess,
    viewer: Profile | None,
) -> RegistryPublic:
    items = await load_items(db, [registry.id])
    contributions = await load_contributions(db, registry_ids=[registry.id])
    profiles = await load_profiles(db, (c.user_id for c in contributions))
    favorite_ids = await load_favorite_ids(db, viewer, (item.id for item in items))
    return serialize_registry(
        registry,
        access,
        items,
        contributions,
        profiles,
        favorite_ids=favorite_ids,
        recent_limit=settings.recent_contributions_limit,
    )


async def _commit(db: DbSessionDep, action: str, registry_id: int | None = None) -> None:
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Registry %s failed registry_id=%s", action, registry_id)
        raise InternalError(f"Failed to {action} registry")


@router.get("", response_model=list[RegistryPublic])
async def list_registries(db: DbSessionDep, current_user: CurrentUserDep) -> list[RegistryPublic]:
    registries = await load_managed_registries(db, current_user)
    if not registries:
        return []
    grants = await load_co_owner_grants(db, current_user)
    registry_ids = [r.id for r in registries]
    items = await load_items(db, registry_ids)
    contributions = await load_contributions(db, registry_ids=registry_ids)

    result: list[RegistryPublic] = []
    for registry in registries:
        if registry.user_id == current_user.id:
            access = OWNER_ACCESS
        else:
            grant = grants[registry.id]
            access = RegistryAccess(
                role=RegistryRole.CO_OWNER,
                can_edit=bool(grant.can_edit),
                can_delete=bool(grant.can_delete),
            )
        result.append(
            serialize_registry(
                registry,
                access,
                [i for i in items if i.registry_id == registry.id],
                [c for c in contributions if c.registry_id == registry.id],
                {},
                include_details=False,
            )
        )
    return result


@router.post("", response_model=RegistryPublic, status_code=status.HTTP_201_CREATED)
async def create_registry(
    payload: RegistryCreate,
    request: Request,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> RegistryPublic:
    registry = Registry(
        user_id=current_user.id,
        title=payload.title,
        description=payload.description,
        occasion=payload.occasion,
        event_date=payload.event_date,
        is_private=payload.is_private,
        show_contributor_names=payload.show_contributor_names,
        allow_anonymous=payload.allow_anonymous,
        currency=payload.currency or settings.default_currency.upper(),
    )
    db.add(registry)
    await _commit(db, "create")
    await db.refresh(registry)
    audit_registry_action(AuditAction.REGISTRY_CREATE, request, current_user.id, registry.id)
    return serialize_registry(registry, OWNER_ACCESS, [], [], {})


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


_SEARCH_ORDER = {
    RegistrySort.DATE_NEWEST: (Registry.event_date.desc(), Registry.id.desc()),
    RegistrySort.DATE_OLDEST: (Registry.event_date.asc(), Registry.id.asc()),
    RegistrySort.TITLE_ASC: (Registry.title.asc(), Registry.id.asc()),
    RegistrySort.TITLE_DESC: (Registry.title.desc(), Registry.id.desc()),
    RegistrySort.RELEVANCE: (Registry.created_at.desc(), Registry.id.desc()),
}


@router.get("/search", response_model=list[RegistrySearchResult])
async def search_registries(
    db: DbSessionDep,
    q: str | None = Query(default=None, max_length=100),
    occasion: str | None = Query(default=None, max_length=80),
    sort: RegistrySort = Query(default=RegistrySort.RELEVANCE),
) -> list[RegistrySearchResult]:
    """Public registries matching ``q`` in title, description or occasion."""
    query = select(Registry).where(Registry.is_private.is_(False))
    term = (q or "").strip()
    if term:
        pattern = _like_pattern(term)
        query = query.where(
            or_(
                Registry.title.ilike(pattern, escape="\\"),
                Registry.description.ilike(pattern, escape="\\"),
                Registry.occasion.ilike(pattern, escape="\\"),
            )
        )
    occasion = (occasion or "").strip()
    if occasion:
        query = query.where(func.lower(Registry.occasion) == occasion.lower())
    query = query.order_by(*_SEARCH_ORDER[sort]).limit(settings.search_results_limit)

    registries = list((await db.execute(query)).scalars())
    owners = await load_profiles(db, (r.user_id for r in registries))
    return [
        RegistrySearchResult(
            id=registry.id,
            user_id=registry.user_id,
            owner_name=profile_display_name(owners.get(registry.user_id)),
            title=registry.title,
            description=registry.description,
            occasion=registry.occasion,
            event_date=registry.event_date,
            currency=registry.currency,
            status=registry.status,
            created_at=registry.created_at,
        )
        for registry in registries
    ]


@router.get("/occasions", response_model=list[str])
async def list_occasions(db: DbSessionDep) -> list[str]:
    result = await db.execute(
        select(Registry.occasion)
        .where(Registry.is_private.is_(False), Registry.occasion.is_not(None))
        .distinct()
        .order_by(Registry.occasion)
    )
    return [occasion for occasion in result.scalars() if occasion]


@router.get("/{registry_id}", response_model=RegistryPublic)
async def get_registry(
    registry_id: int,
    db: DbSessionDep,
    current_user: OptionalUserDep,
) -> RegistryPublic:
    registry, access = await load_registry(db, registry_id, current_user)
    return await _registry_view(db, registry, access, current_user)


@router.put("/{registry_id}", response_model=RegistryPublic)
async def update_registry(
    registry_id: int,
    payload: RegistryUpdate,
    request: Request,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> RegistryPublic:
    registry, access = await load_registry(db, registry_id, current_user)
    ensure_can_edit(access)

    update_data = {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or key in _CLEARABLE_FIELDS
    }
    for key, value in update_data.items():
        if key == "status":
            value = value.value
        setattr(registry, key, value)

    await _commit(db, "update", registry.id)
    await db.refresh(registry)
    audit_registry_action(
        AuditAction.REGISTRY_UPDATE,
        request,
        current_user.id,
        registry.id,
        details={"fields": sorted(update_data)},
    )
    return await _registry_view(db, registry, access, current_user)


@router.delete("/{registry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_registry(
    registry_id: int,
    request: Request,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> None:
    registry, access = await load_registry(db, registry_id, current_user)
    ensure_can_delete(access)
    # Cascades to gift items, contributions, co-owner grants and comments.
    await db.delete(registry)
    await _commit(db, "delete", registry_id)
    audit_registry_action(AuditAction.REGISTRY_DELETE, request, current_user.id, registry_id)


def _serialize_co_owner(grant: RegistryCoOwner, profile: Profile) -> CoOwnerPublic:
    return CoOwnerPublic(
        profile_id=profile.id,
        email=profile.email,
        name=profile_display_name(profile),
        can_edit=bool(grant.can_edit),
        can_delete=bool(grant.can_delete),
        created_at=grant.created_at,
    )


async def _get_grant(db: DbSessionDep, registry_id: int, profile_id: int) -> RegistryCoOwner:
    grant = (
        await db.execute(
            select(RegistryCoOwner).where(
                RegistryCoOwner.registry_id == registry_id,
                RegistryCoOwner.profile_id == profile_id,
            )
        )
    ).scalar_one_or_none()
    if grant is None:
        raise NotFound("Co-owner not found")
    return grant


@router.get("/{registry_id}/co-owners", response_model=list[CoOwnerPublic])
async def list_co_owners(
    registry_id: int,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> list[CoOwnerPublic]:
    registry, access = await load_registry(db, registry_id, current_user)
    if not access.is_manager:
        raise Forbidden("Only registry owners can view co-owners")
    grants = list(
        (
            await db.execute(
                select(RegistryCoOwner)
                .where(RegistryCoOwner.registry_id == registry.id)
                .order_by(RegistryCoOwner.created_at.asc(), RegistryCoOwner.id.asc())
            )
        ).scalars()
    )
    profiles = await load_profiles(db, (g.profile_id for g in grants))
    return [
        _serialize_co_owner(grant, profiles[grant.profile_id])
        for grant in grants
        if grant.profile_id in profiles
    ]


@router.post(
    "/{registry_id}/co-owners",
    response_model=CoOwnerPublic,
    status_code=status.HTTP_201_CREATED,
)
async def add_co_owner(
    registry_id: int,
    payload: CoOwnerCreate,
    request: Request,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> CoOwnerPublic:
    registry, access = await load_registry(db, registry_id, current_user)
    ensure_is_owner(access)

    profile = (
        await db.execute(select(Profile).where(Profile.email == payload.email.lower()))
    ).scalar_one_or_none()
    if profile is None:
        raise NotFound("No user with that email", field="email")
    if profile.id == registry.user_id:
        raise BadRequest("The owner cannot be added as a co-owner", field="email")

    existing = (
        await db.execute(
            select(RegistryCoOwner).where(
                RegistryCoOwner.registry_id == registry.id,
                RegistryCoOwner.profile_id == profile.id,
            )
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise BadRequest("User is already a co-owner", field="email")

    grant = RegistryCoOwner(
        registry_id=registry.id,
        profile_id=profile.id,
        can_edit=payload.can_edit,
        can_delete=payload.can_delete,
    )
    db.add(grant)
    await _commit(db, "share", registry.id)
    await db.refresh(grant)
    audit_registry_action(
        AuditAction.CO_OWNER_ADD,
        request,
        current_user.id,
        registry.id,
        details={"profile_id": profile.id},
    )
    return _serialize_co_owner(grant, profile)


@router.put("/{registry_id}/co-owners/{profile_id}", response_model=CoOwnerPublic)
async def update_co_owner(
    registry_id: int,
    profile_id: int,
    payload: CoOwnerUpdate,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> CoOwnerPublic:
    registry, access = await load_registry(db, registry_id, current_user)
    ensure_is_owner(access)
    grant = await _get_grant(db, registry.id, profile_id)
    for key, value in payload.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(grant, key, value)
    await _commit(db, "update", registry.id)
    await db.refresh(grant)
    profile = await db.get(Profile, profile_id)
    if profile is None:
        raise NotFound("Co-owner not found")
    return _serialize_co_owner(grant, profile)


@router.delete("/{registry_id}/co-owners/{profile_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_co_owner(
    registry_id: int,
    profile_id: int,
    request: Request,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> None:
    registry, access = await load_registry(db, registry_id, current_user)
    # Co-owners may remove themselves.
    if profile_id != current_user.id:
        ensure_is_owner(access)
    grant = await _get_grant(db, registry.id, profile_id)
    await db.delete(grant)
    await _commit(db, "update", registry.id)
    audit_registry_action(
        AuditAction.CO_OWNER_REMOVE,
        request,
        current_user.id,
        registry.id,
        details={"profile_id": profile_id},
    )


@router.get("/{registry_id}/comments", response_model=list[CommentPublic])
async def list_comments(
    registry_id: int,
    db: DbSessionDep,
    current_user: OptionalUserDep,
) -> list[CommentPublic]:
    registry, _ = await load_registry(db, registry_id, current_user)
    comments = list(
        (
            await db.execute(
                select(Comment)
                .where(Comment.registry_id == registry.id)
                .order_by(Comment.created_at.asc(), Comment.id.asc())
            )
        ).scalars()
    )
    authors = await load_profiles(db, (c.user_id for c in comments))
    return [
        CommentPublic(
            id=comment.id,
            registry_id=comment.registry_id,
            user_id=comment.user_id,
            author_name=profile_display_name(authors.get(comment.user_id)),
            content=comment.content,
            created_at=comment.created_at,
        )
        for comment in comments
    ]


@router.post(
    "/{registry_id}/comments",
    response_model=CommentPublic,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(
    registry_id: int,
    payload: CommentCreate,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> CommentPublic:
    registry, _ = await load_registry(db, registry_id, current_user)
    comment = Comment(registry_id=registry.id, user_id=current_user.id, content=payload.content)
    db.add(comment)
    await _commit(db, "comment on", registry.id)
    await db.refresh(comment)
    return CommentPublic(
        id=comment.id,
        registry_id=comment.registry_id,
        user_id=comment.user_id,
        author_name=profile_display_name(current_user),
        content=comment.content,
        created_at=comment.created_at,
    )
