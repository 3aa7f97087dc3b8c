from types import SimpleNamespace

import pytest

from giftregistry.core.contributors import (
    ANONYMOUS_KEY,
    contributor_key,
    profile_display_name,
    resolve_display_name,
)


def _profile(full_name=None, first_name=None, last_name=None, email=None):
    return SimpleNamespace(full_name=full_name, first_name=first_name, last_name=last_name, email=email)


def _contribution(contributor_name=None, user_id=None):
    return SimpleNamespace(contributor_name=contributor_name, user_id=user_id)


class TestResolveDisplayName:
    """Display-name fallback chain."""

    def test_contributor_name_wins(self):
        profile = _profile(full_name="Profile Name")
        assert resolve_display_name(_contribution("Aunt May"), profile) == "Aunt May"

    def test_full_name_when_no_contributor_name(self):
        profile = _profile(full_name="Jane Doe", first_name="J", last_name="D")
        assert resolve_display_name(_contribution(None, 1), profile) == "Jane Doe"

    def test_first_and_last_name_joined(self):
        profile = _profile(full_name="  ", first_name=" Jane ", last_name="Doe")
        assert resolve_display_name(_contribution("", 1), profile) == "Jane Doe"

    def test_only_first_name(self):
        profile = _profile(first_name="Jane", last_name=" ")
        assert resolve_display_name(_contribution(None, 1), profile) == "Jane"

    def test_email_fallback(self):
        profile = _profile(email="jane@example.com")
        assert resolve_display_name(_contribution(None, 1), profile) == "jane@example.com"

    def test_all_blank_profile_is_anonymous(self):
        profile = _profile(full_name="", first_name=None, last_name="  ", email=None)
        assert resolve_display_name(_contribution("   ", 1), profile) == "Anonymous"

    def test_no_profile_no_name_is_anonymous(self):
        assert resolve_display_name(_contribution()) == "Anonymous"

    @pytest.mark.parametrize(
        "profile",
        [None, _profile(), _profile(full_name="X"), _profile(email="a@b.c")],
    )
    def test_never_empty(self, profile):
        assert resolve_display_name(_contribution(), profile).strip()

    def test_profile_display_name_without_contribution(self):
        assert profile_display_name(_profile(first_name="Sam")) == "Sam"
        assert profile_display_name(None) == "Anonymous"


class TestContributorKey:
    """Identity used for distinct counts."""

    def test_profile_key(self):
        assert contributor_key(_contribution("Ignored", user_id=4)) == "profile:4"

    def test_normalized_name_key(self):
        assert contributor_key(_contribution("  Mary   Ann ")) == "name:mary ann"

    def test_blank_and_default_names_use_sentinel(self):
        assert contributor_key(_contribution()) == ANONYMOUS_KEY
        assert contributor_key(_contribution(" ")) == ANONYMOUS_KEY
        assert contributor_key(_contribution("ANONYMOUS")) == ANONYMOUS_KEY
