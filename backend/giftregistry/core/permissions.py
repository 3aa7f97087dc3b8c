from dataclasses import dataclass
from enum import Enum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from giftregistry.core.errors import Forbidden, NotFound
from giftregistry.models.models import Profile, Registry, RegistryCoOwner


class RegistryRole(str, Enum):
    OWNER = "owner"
    CO_OWNER = "co_owner"
    VIEWER = "viewer"


@dataclass(frozen=True)
class RegistryAccess:
    role: RegistryRole
    can_edit: bool = False
    can_delete: bool = False

    @property
    def is_owner(self) -> bool:
        return self.role == RegistryRole.OWNER

    @property
    def is_manager(self) -> bool:
        """Owner or co-owner: sees private registries and real contributor names."""
        return self.role in (RegistryRole.OWNER, RegistryRole.CO_OWNER)


VIEWER_ACCESS = RegistryAccess(role=RegistryRole.VIEWER)
OWNER_ACCESS = RegistryAccess(role=RegistryRole.OWNER, can_edit=True, can_delete=True)


async def get_registry_access(
    db: AsyncSession,
    registry: Registry,
    viewer: Profile | None,
) -> RegistryAccess:
    if viewer is None:
        return VIEWER_ACCESS
    if registry.user_id == viewer.id:
        return OWNER_ACCESS
    grant = (
        await db.execute(
            select(RegistryCoOwner).where(
                RegistryCoOwner.registry_id == registry.id,
                RegistryCoOwner.profile_id == viewer.id,
            )
        )
    ).scalar_one_or_none()
    if grant is None:
        return VIEWER_ACCESS
    return RegistryAccess(
        role=RegistryRole.CO_OWNER,
        can_edit=bool(grant.can_edit),
        can_delete=bool(grant.can_delete),
    )


def can_view(registry: Registry, access: RegistryAccess) -> bool:
    return not registry.is_private or access.is_manager


def ensure_can_view(registry: Registry, access: RegistryAccess) -> None:
    # Private registries are indistinguishable from missing ones.
    if not can_view(registry, access):
        raise NotFound("Registry not found")


def ensure_can_edit(access: RegistryAccess) -> None:
    if not access.can_edit:
        raise Forbidden("You do not have permission to edit this registry")


def ensure_can_delete(access: RegistryAccess) -> None:
    if not access.can_delete:
        raise Forbidden("You do not have permission to delete this registry")


def ensure_is_owner(access: RegistryAccess) -> None:
    if not access.is_owner:
        raise Forbidden("Only the registry owner can do this")


async def load_registry(
    db: AsyncSession,
    registry_id: int,
    viewer: Profile | None,
) -> tuple[Registry, RegistryAccess]:
    """Fetch a registry the viewer is allowed to see, plus their access level."""
    registry = (
        await db.execute(select(Registry).where(Registry.id == registry_id))
    ).scalar_one_or_none()
    if registry is None:
        raise NotFound("Registry not found")
    access = await get_registry_access(db, registry, viewer)
    ensure_can_view(registry, access)
    return registry, access
