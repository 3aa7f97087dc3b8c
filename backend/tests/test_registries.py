"""
Registry CRUD, privacy, sharing and comments.
"""
from fastapi.testclient import TestClient

from conftest import create_item, create_registry, register
from giftregistry.main import app
from giftregistry.models.models import Comment, Contribution, GiftItem, Registry, RegistryCoOwner


def _contribute(client: TestClient, registry_id: int, item_id: int, amount: float = 100, **fields):
    payload = {"registry_id": registry_id, "gift_item_id": item_id, "amount": amount}
    payload.update(fields)
    res = client.post("/api/contributions", json=payload)
    assert res.status_code == 201, res.text
    return res.json()


class TestRegistryCrud:
    """Create, read, update, delete."""

    def test_create_requires_auth(self):
        res = TestClient(app).post("/api/registries", json={"title": "Nope"})
        assert res.status_code == 401

    def test_create_defaults(self):
        client = TestClient(app)
        profile = register(client)

        data = create_registry(client, title="  Baby Shower  ", currency="eur")

        assert data["title"] == "Baby Shower"
        assert data["user_id"] == profile["id"]
        assert data["currency"] == "EUR"
        assert data["status"] == "active"
        assert data["role"] == "owner"
        assert data["allow_anonymous"] is True
        assert data["funding"]["percent_funded"] == 0

    def test_default_currency(self):
        client = TestClient(app)
        register(client)
        assert create_registry(client)["currency"] == "INR"

    def test_invalid_currency(self):
        client = TestClient(app)
        register(client)
        res = client.post("/api/registries", json={"title": "Trip", "currency": "euro"})
        assert res.status_code == 400
        assert res.json()["field"] == "currency"

    def test_get_includes_items_and_funding(self):
        owner = TestClient(app)
        register(owner)
        registry = create_registry(owner)
        big = create_item(owner, registry["id"], name="Sofa", price=1000, quantity=1)
        small = create_item(owner, registry["id"], name="Lamp", price=500, quantity=1)
        _contribute(TestClient(app), registry["id"], big["id"], 500, contributor_name="A")
        _contribute(TestClient(app), registry["id"], big["id"], 250, contributor_name="B")
        _contribute(TestClient(app), registry["id"], small["id"], 500, contributor_name="C")

        data = TestClient(app).get(f"/api/registries/{registry['id']}").json()

        assert data["role"] == "viewer"
        assert [i["name"] for i in data["gift_items"]] == ["Lamp", "Sofa"]
        funding = data["funding"]
        assert funding["total_amount"] == 1250
        assert funding["total_target"] == 1500
        assert funding["percent_funded"] == 83.33
        assert funding["unique_contributors"] == 3
        assert funding["items"]["funded"] == 1
        assert funding["items"]["partially_funded"] == 1
        assert [c["contributor_name"] for c in data["recent_contributions"]] == ["C", "B", "A"]

    def test_list_returns_owned_and_shared(self):
        owner = TestClient(app)
        register(owner)
        create_registry(owner, title="Mine")
        other = TestClient(app)
        register(other)
        shared = create_registry(other, title="Theirs")

        helper = TestClient(app)
        helper_profile = register(helper)
        other.post(f"/api/registries/{shared['id']}/co-owners", json={"email": helper_profile["email"]})
        create_registry(helper, title="Helper's own")

        titles = {r["title"]: r["role"] for r in helper.get("/api/registries").json()}
        assert titles == {"Theirs": "co_owner", "Helper's own": "owner"}
        assert [r["title"] for r in owner.get("/api/registries").json()] == ["Mine"]

    def test_update_fields(self):
        client = TestClient(app)
        register(client)
        registry = create_registry(client, description="Old")

        res = client.put(
            f"/api/registries/{registry['id']}",
            json={"title": "Renamed", "description": None, "show_contributor_names": False},
        )

        assert res.status_code == 200
        data = res.json()
        assert data["title"] == "Renamed"
        assert data["description"] is None
        assert data["show_contributor_names"] is False
        assert data["currency"] == registry["currency"]

    def test_update_by_stranger_is_forbidden(self):
        owner = TestClient(app)
        register(owner)
        registry = create_registry(owner)
        stranger = TestClient(app)
        register(stranger)

        res = stranger.put(f"/api/registries/{registry['id']}", json={"title": "Hijacked"})
        assert res.status_code == 403

    def test_delete_cascades(self, count_rows):
        owner = TestClient(app)
        register(owner)
        registry = create_registry(owner)
        item = create_item(owner, registry["id"])
        _contribute(TestClient(app), registry["id"], item["id"], contributor_name="Guest")
        owner.post(f"/api/registries/{registry['id']}/comments", json={"content": "Thanks all"})

        res = owner.delete(f"/api/registries/{registry['id']}")

        assert res.status_code == 204
        assert owner.get(f"/api/registries/{registry['id']}").status_code == 404
        for model in (Registry, GiftItem, Contribution, Comment):
            assert count_rows(model) == 0

    def test_missing_registry(self):
        res = TestClient(app).get("/api/registries/999999")
        assert res.status_code == 404
        assert res.json() == {"error": "Registry not found"}


class TestPrivacy:
    """Private registries and hidden contributor names."""

    def test_private_registry_hidden_from_others(self):
        owner = TestClient(app)
        register(owner)
        registry = create_registry(owner, is_private=True)
        stranger = TestClient(app)
        register(stranger)

        assert owner.get(f"/api/registries/{registry['id']}").status_code == 200
        assert stranger.get(f"/api/registries/{registry['id']}").status_code == 404
        assert TestClient(app).get(f"/api/registries/{registry['id']}").status_code == 404
        assert TestClient(app).get("/api/gift-items", params={"registry_id": registry["id"]}).status_code == 404

    def test_private_registry_visible_to_co_owner(self):
        owner = TestClient(app)
        register(owner)
        registry = create_registry(owner, is_private=True)
        helper = TestClient(app)
        helper_profile = register(helper)
        owner.post(f"/api/registries/{registry['id']}/co-owners", json={"email": helper_profile["email"]})

        res = helper.get(f"/api/registries/{registry['id']}")
        assert res.status_code == 200
        assert res.json()["role"] == "co_owner"

    def test_hidden_names_masked_for_viewers_only(self):
        owner = TestClient(app)
        register(owner)
        registry = create_registry(owner, show_contributor_names=False)
        item = create_item(owner, registry["id"])
        _contribute(TestClient(app), registry["id"], item["id"], contributor_name="Cousin Vinny")

        public = TestClient(app).get(f"/api/registries/{registry['id']}").json()
        managed = owner.get(f"/api/registries/{registry['id']}").json()

        assert public["recent_contributions"][0]["contributor_name"] == "Anonymous"
        assert managed["recent_contributions"][0]["contributor_name"] == "Cousin Vinny"

    def test_archived_registry_rejects_contributions(self):
        owner = TestClient(app)
        register(owner)
        registry = create_registry(owner)
        item = create_item(owner, registry["id"])
        owner.put(f"/api/registries/{registry['id']}", json={"status": "archived"})

        res = TestClient(app).post(
            "/api/contributions",
            json={"registry_id": registry["id"], "gift_item_id": item["id"], "amount": 10, "contributor_name": "Late"},
        )
        assert res.status_code == 400


class TestCoOwners:
    """Sharing a registry."""

    def _shared(self, **grant):
        owner = TestClient(app)
        register(owner)
        registry = create_registry(owner)
        helper = TestClient(app)
        helper_profile = register(helper, full_name="Helper Person")
        res = owner.post(
            f"/api/registries/{registry['id']}/co-owners",
            json={"email": helper_profile["email"], **grant},
        )
        assert res.status_code == 201, res.text
        return owner, helper, helper_profile, registry, res.json()

    def test_add_and_list(self):
        owner, _, helper_profile, registry, grant = self._shared()

        assert grant["profile_id"] == helper_profile["id"]
        assert grant["name"] == "Helper Person"
        assert grant["can_edit"] is True
        assert grant["can_delete"] is False
        listed = owner.get(f"/api/registries/{registry['id']}/co-owners").json()
        assert [g["profile_id"] for g in listed] == [helper_profile["id"]]

    def test_unknown_email(self):
        owner = TestClient(app)
        register(owner)
        registry = create_registry(owner)
        res = owner.post(f"/api/registries/{registry['id']}/co-owners", json={"email": "nobody@example.com"})
        assert res.status_code == 404
        assert res.json()["field"] == "email"

    def test_duplicate_grant(self):
        owner, _, helper_profile, registry, _ = self._shared()
        res = owner.post(f"/api/registries/{registry['id']}/co-owners", json={"email": helper_profile["email"]})
        assert res.status_code == 400

    def test_owner_cannot_be_co_owner(self):
        owner = TestClient(app)
        owner_profile = register(owner)
        registry = create_registry(owner)
        res = owner.post(f"/api/registries/{registry['id']}/co-owners", json={"email": owner_profile["email"]})
        assert res.status_code == 400

    def test_co_owner_can_edit_but_not_delete(self):
        _, helper, _, registry, _ = self._shared()

        assert helper.put(f"/api/registries/{registry['id']}", json={"title": "Edited"}).status_code == 200
        assert helper.delete(f"/api/registries/{registry['id']}").status_code == 403

    def test_read_only_co_owner(self):
        _, helper, _, registry, _ = self._shared(can_edit=False)
        assert helper.put(f"/api/registries/{registry['id']}", json={"title": "Edited"}).status_code == 403

    def test_co_owner_cannot_manage_co_owners(self):
        _, helper, _, registry, _ = self._shared()
        third = TestClient(app)
        third_profile = register(third)
        res = helper.post(f"/api/registries/{registry['id']}/co-owners", json={"email": third_profile["email"]})
        assert res.status_code == 403

    def test_update_permissions(self):
        owner, helper, helper_profile, registry, _ = self._shared()
        res = owner.put(
            f"/api/registries/{registry['id']}/co-owners/{helper_profile['id']}",
            json={"can_delete": True},
        )
        assert res.status_code == 200
        assert res.json()["can_delete"] is True
        assert helper.delete(f"/api/registries/{registry['id']}").status_code == 204

    def test_co_owner_removes_self(self, count_rows):
        _, helper, helper_profile, registry, _ = self._shared()
        res = helper.delete(f"/api/registries/{registry['id']}/co-owners/{helper_profile['id']}")
        assert res.status_code == 204
        assert count_rows(RegistryCoOwner) == 0


class TestComments:
    """Registry comments."""

    def test_add_and_list(self):
        owner = TestClient(app)
        register(owner)
        registry = create_registry(owner)
        guest = TestClient(app)
        register(guest, first_name="Gina", last_name="Guest")

        res = guest.post(f"/api/registries/{registry['id']}/comments", json={"content": "  Lovely list!  "})
        assert res.status_code == 201
        assert res.json()["author_name"] == "Gina Guest"
        assert res.json()["content"] == "Lovely list!"

        comments = TestClient(app).get(f"/api/registries/{registry['id']}/comments").json()
        assert [c["content"] for c in comments] == ["Lovely list!"]

    def test_blank_comment_rejected(self):
        owner = TestClient(app)
        register(owner)
        registry = create_registry(owner)
        res = owner.post(f"/api/registries/{registry['id']}/comments", json={"content": "   "})
        assert res.status_code == 400

    def test_comment_requires_auth(self):
        owner = TestClient(app)
        register(owner)
        registry = create_registry(owner)
        res = TestClient(app).post(f"/api/registries/{registry['id']}/comments", json={"content": "Hi"})
        assert res.status_code == 401


class TestRegistrySearch:
    """GET /api/registries/search and /occasions."""

    def _seed(self):
        owner = TestClient(app)
        profile = register(owner, full_name="Maya Patel")
        create_registry(owner, title="Maya & Sam Wedding", occasion="Wedding")
        create_registry(owner, title="Baby Arjun", description="Our first baby shower", occasion="Baby Shower")
        create_registry(owner, title="Secret Wedding Fund", occasion="Wedding", is_private=True)
        return profile

    def test_matches_title_description_and_occasion(self):
        self._seed()
        client = TestClient(app)

        by_title = client.get("/api/registries/search", params={"q": "arjun"}).json()
        by_description = client.get("/api/registries/search", params={"q": "SHOWER"}).json()
        by_occasion = client.get("/api/registries/search", params={"q": "wedd"}).json()

        assert [r["title"] for r in by_title] == ["Baby Arjun"]
        assert [r["title"] for r in by_description] == ["Baby Arjun"]
        assert [r["title"] for r in by_occasion] == ["Maya & Sam Wedding"]

    def test_private_registries_never_listed(self):
        self._seed()
        res = TestClient(app).get("/api/registries/search", params={"q": "Secret"})
        assert res.status_code == 200
        assert res.json() == []

    def test_occasion_filter_and_owner_name(self):
        profile = self._seed()

        data = TestClient(app).get("/api/registries/search", params={"occasion": "wedding"}).json()

        assert len(data) == 1
        assert data[0]["occasion"] == "Wedding"
        assert data[0]["owner_name"] == "Maya Patel"
        assert data[0]["user_id"] == profile["id"]

    def test_empty_query_lists_public_newest_first(self):
        self._seed()
        data = TestClient(app).get("/api/registries/search").json()
        assert [r["title"] for r in data] == ["Baby Arjun", "Maya & Sam Wedding"]

    def test_title_sort(self):
        self._seed()
        data = TestClient(app).get("/api/registries/search", params={"sort": "title_desc"}).json()
        assert [r["title"] for r in data] == ["Maya & Sam Wedding", "Baby Arjun"]

    def test_wildcards_are_literal(self):
        self._seed()
        assert TestClient(app).get("/api/registries/search", params={"q": "%"}).json() == []

    def test_unknown_sort_rejected(self):
        res = TestClient(app).get("/api/registries/search", params={"sort": "random"})
        assert res.status_code == 400
        assert res.json()["field"] == "sort"

    def test_occasions_from_public_registries(self):
        self._seed()
        assert TestClient(app).get("/api/registries/occasions").json() == ["Baby Shower", "Wedding"]


class TestRegistryUpdateValidation:
    def test_blank_title_rejected(self):
        client = TestClient(app)
        register(client)
        registry = create_registry(client)

        res = client.put(f"/api/registries/{registry['id']}", json={"title": "   "})

        assert res.status_code == 400
        assert res.json()["field"] == "title"
        assert client.get(f"/api/registries/{registry['id']}").json()["title"] == "Wedding Registry"

    def test_title_and_description_are_trimmed(self):
        client = TestClient(app)
        register(client)
        registry = create_registry(client, description="Old")

        res = client.put(
            f"/api/registries/{registry['id']}",
            json={"title": "  Housewarming  ", "description": "   "},
        )

        assert res.status_code == 200
        assert res.json()["title"] == "Housewarming"
        assert res.json()["description"] is None
