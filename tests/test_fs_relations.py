"""Tests for KfgFS collections and many/join relations."""

import json

import pytest

from kfg import AsyncFileKfg, FileKfg, KfgFS, async_json_driver, c, join, json_driver, many
from kfg.errors import DriverCapabilityError, KfgValidationError, StructuralError


@pytest.fixture
def users(tmp_path):
    return KfgFS(json_driver(), {"name": c.string(), "email": c.optional(c.email())}).init(
        lambda id: tmp_path / "users" / f"{id}.json"
    )


@pytest.fixture
def posts(tmp_path, users):
    schema = {
        "title": c.string(),
        "author_id": c.optional(c.string()),
        "author": join(users, fk="author_id"),
        "editors": many(users),
    }
    return KfgFS(json_driver(), schema).init(lambda id: tmp_path / "posts" / f"{id}.json")


class TestCollection:
    def test_path_requires_init(self):
        fs = KfgFS(json_driver(), {"name": c.string()})
        with pytest.raises(StructuralError, match=r"Call init\(\) first"):
            fs.path("1")

    def test_create_writes_file_with_defaults(self, tmp_path, posts):
        entity = posts.create("p1", {"title": "Hello"})

        assert isinstance(entity, FileKfg)
        assert posts.exists("p1")
        assert json.loads((tmp_path / "posts" / "p1.json").read_text()) == {
            "title": "Hello",
            "editors": [],
        }

    def test_create_existing_fails(self, users):
        users.create("ann", {"name": "Ann"})
        with pytest.raises(StructuralError, match="already exists"):
            users.create("ann", {"name": "Other"})

    def test_create_invalid_data_fails(self, users):
        with pytest.raises(KfgValidationError):
            users.create("bad", {"email": "not-an-email"})
        assert not users.exists("bad")

    def test_file_opens_entity(self, users):
        users.create("ann", {"name": "Ann"})

        entity = users.file("ann")
        entity.set("email", "ann@example.com")

        assert users.to_json("ann") == {"name": "Ann", "email": "ann@example.com"}
        assert str(entity).endswith("ann.json")

    def test_copy_and_delete(self, users):
        users.create("ann", {"name": "Ann"})

        users.copy("ann", "ann-copy")
        assert users.file("ann-copy").get("name") == "Ann"

        users.delete("ann-copy")
        assert not users.exists("ann-copy")
        users.delete("ann-copy")

    def test_only_importants(self, tmp_path):
        fs = KfgFS(
            json_driver(),
            {"name": c.string(), "token": c.string(important=True)},
            only_importants=True,
        ).init(lambda id: tmp_path / f"{id}.json")

        assert fs.create("svc", {"token": "t"}).get("token") == "t"

    @pytest.mark.asyncio
    async def test_sync_collection_rejects_open(self, users):
        with pytest.raises(DriverCapabilityError, match="use file"):
            await users.open("ann")


class TestRelations:
    @pytest.fixture
    def post(self, users, posts):
        users.create("ann", {"name": "Ann"})
        users.create("bob", {"name": "Bob"})
        posts.create("p1", {"title": "Hi", "author_id": "ann", "editors": ["bob", "ann"]})
        return posts.file("p1")

    def test_get_join(self, post):
        author = post.get_join("author")
        assert isinstance(author, FileKfg)
        assert author.get("name") == "Ann"

    def test_get_join_without_key(self, posts):
        posts.create("p2", {"title": "Draft"})
        assert posts.file("p2").get_join("author") is None

    def test_get_many_keeps_order(self, post):
        editors = post.get_many("editors")
        assert [editor.get("name") for editor in editors] == ["Bob", "Ann"]

    def test_relation_kind_is_checked(self, post):
        with pytest.raises(StructuralError, match="not a many-relation"):
            post.get_many("author")
        with pytest.raises(StructuralError, match="not a join-relation"):
            post.get_join("title")

    def test_relations_store_only_ids(self, tmp_path, post):
        document = json.loads((tmp_path / "posts" / "p1.json").read_text())
        assert document["editors"] == ["bob", "ann"]
        assert "author" not in document


class TestAsyncCollection:
    @pytest.fixture
    def async_users(self, tmp_path):
        return KfgFS(async_json_driver(), {"name": c.string()}).init(
            lambda id: tmp_path / "users" / f"{id}.json"
        )

    @pytest.fixture
    def async_posts(self, tmp_path, async_users):
        schema = {
            "title": c.string(),
            "author_id": c.optional(c.string()),
            "author": join(async_users, fk="author_id"),
            "editors": many(async_users),
        }
        return KfgFS(async_json_driver(), schema).init(lambda id: tmp_path / "posts" / f"{id}.json")

    @pytest.mark.asyncio
    async def test_create_open_and_relations(self, async_users, async_posts):
        await async_users.create("ann", {"name": "Ann"})
        await async_users.create("bob", {"name": "Bob"})
        await async_posts.create("p1", {"title": "Hi", "author_id": "ann", "editors": ["bob"]})

        post = await async_posts.open("p1")
        assert isinstance(post, AsyncFileKfg)

        author = await post.get_join("author")
        editors = await post.get_many("editors")

        assert await author.get("name") == "Ann"
        assert [await editor.get("name") for editor in editors] == ["Bob"]
        assert await async_posts.to_json("p1") == {
            "title": "Hi",
            "author_id": "ann",
            "editors": ["bob"],
        }

    @pytest.mark.asyncio
    async def test_create_existing_fails(self, async_users):
        await async_users.create("ann", {"name": "Ann"})
        with pytest.raises(StructuralError):
            await async_users.create("ann", {"name": "Again"})

    def test_async_collection_rejects_file(self, async_users):
        with pytest.raises(DriverCapabilityError, match="use await open"):
            async_users.file("ann")
