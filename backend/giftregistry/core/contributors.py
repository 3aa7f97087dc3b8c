"""Display-name resolution for contributions.

Every surface that shows who contributed (contributions API, registry view,
analytics, notification emails) goes through ``resolve_display_name`` so the
same contribution never shows different names in different places.
"""
from typing import Any

ANONYMOUS_NAME = "Anonymous"
ANONYMOUS_KEY = "anonymous"


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def profile_display_name(profile: Any | None) -> str:
    """Full name, then "first last", then email, then ``Anonymous``."""
    if profile is None:
        return ANONYMOUS_NAME
    full_name = _clean(getattr(profile, "full_name", None))
    if full_name:
        return full_name
    joined = " ".join(
        part
        for part in (
            _clean(getattr(profile, "first_name", None)),
            _clean(getattr(profile, "last_name", None)),
        )
        if part
    )
    if joined:
        return joined
    email = _clean(getattr(profile, "email", None))
    if email:
        return email
    return ANONYMOUS_NAME


def resolve_display_name(contribution: Any, profile: Any | None = None) -> str:
    contributor_name = _clean(getattr(contribution, "contributor_name", None))
    if contributor_name:
        return contributor_name
    return profile_display_name(profile)


def normalize_contributor_name(name: str | None) -> str:
    return " ".join(_clean(name).split()).casefold()


def contributor_key(contribution: Any) -> str:
    """Identity used when counting distinct contributors.

    Profile-linked contributions are keyed by profile id. Guest contributions
    are keyed by their normalised name. Nameless or default-named
    contributions all share the ``anonymous`` sentinel.
    """
    user_id = getattr(contribution, "user_id", None)
    if user_id is not None:
        return f"profile:{user_id}"
    name = normalize_contributor_name(getattr(contribution, "contributor_name", None))
    if name and name != ANONYMOUS_KEY:
        return f"name:{name}"
    return ANONYMOUS_KEY
