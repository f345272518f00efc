"""
Tests for the hosted search client, search service and indexer.
"""

import json
from urllib.parse import parse_qs

import httpx
import pytest

from openforum.models.forum import Category, Post, Tag, ThreadTag
from openforum.modules.search.client import AlgoliaClient, SearchServiceError
from openforum.modules.search.indexer import INDEX_SETTINGS, SearchIndexer, chunked
from openforum.modules.search.service import (
    SearchService,
    build_facet_filters,
    hit_to_thread,
    thread_index_for,
)

THREAD_HIT = {
    "objectID": "12",
    "title": "Async SQLAlchemy tips",
    "slug": "async-sqlalchemy-tips",
    "categoryId": 1,
    "categoryName": "General Discussion",
    "categorySlug": "general",
    "authorId": 3,
    "authorName": "Ada",
    "authorUsername": "ada",
    "isPinned": True,
    "viewCount": 40,
    "replyCount": 2,
    "tags": ["python"],
}


class FakeAlgolia:
    """Answers Algolia REST calls and records the request bodies."""

    def __init__(self, results=None, status_code: int = 200) -> None:
        self.results = results or []
        self.status_code = status_code
        self.calls: list[tuple[str, str, dict]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        self.calls.append((request.method, str(request.url), body))
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"message": "boom"})
        if request.url.path.endswith("/queries"):
            return httpx.Response(200, json={"results": self.results})
        return httpx.Response(200, json={"taskID": 1})

    def client(self) -> AlgoliaClient:
        return AlgoliaClient(app_id="APPID", api_key="KEY", transport=httpx.MockTransport(self))

    def params(self, call: int = 0) -> list[dict[str, list[str]]]:
        return [parse_qs(r["params"]) for r in self.calls[call][2]["requests"]]


class TestFacetFilters:
    """Tests for facet filter building."""

    def test_empty(self):
        assert build_facet_filters() == []

    def test_all_filters(self):
        assert build_facet_filters(
            category_name="General",
            author_name="ada",
            tags=["a", "b"],
            is_pinned=True,
            is_locked=False,
        ) == [
            ["categoryName:General"],
            ["authorName:ada"],
            ["tags:a", "tags:b"],
            ["isPinned:true"],
            ["isLocked:false"],
        ]

    def test_sort_indices(self):
        assert thread_index_for("recent") == "threads"
        assert thread_index_for(None) == "threads"
        assert thread_index_for("views") == "threads_viewCount_desc"
        assert thread_index_for("replies") == "threads_replyCount_desc"


class TestAlgoliaClient:
    """Tests for the REST client."""

    async def test_multiple_queries_request(self):
        fake = FakeAlgolia(results=[{"hits": []}])
        client = fake.client()

        await client.multiple_queries(
            [{"indexName": "threads", "query": "orm", "page": 0, "facetFilters": [["tags:a"]]}]
        )

        method, url, body = fake.calls[0]
        assert method == "POST"
        assert url == "https://APPID-dsn.algolia.net/1/indexes/*/queries"
        assert body["requests"][0]["indexName"] == "threads"
        params = fake.params()[0]
        assert params["query"] == ["orm"]
        assert json.loads(params["facetFilters"][0]) == [["tags:a"]]

    async def test_not_configured(self):
        client = AlgoliaClient(app_id="", api_key="")
        with pytest.raises(SearchServiceError, match="Search service not configured"):
            await client.multiple_queries([{"indexName": "threads", "query": "x"}])

    async def test_http_error(self):
        client = FakeAlgolia(status_code=403).client()
        with pytest.raises(SearchServiceError, match="Search service returned 403"):
            await client.multiple_queries([{"indexName": "threads", "query": "x"}])

    async def test_write_endpoints(self):
        fake = FakeAlgolia()
        client = fake.client()

        await client.save_objects("tags", [{"objectID": "1", "name": "python"}])
        await client.set_settings("tags", {"searchableAttributes": ["name"]})

        assert fake.calls[0][:2] == ("POST", "https://APPID.algolia.net/1/indexes/tags/batch")
        assert fake.calls[0][2]["requests"] == [
            {"action": "updateObject", "body": {"objectID": "1", "name": "python"}}
        ]
        assert fake.calls[1][:2] == ("PUT", "https://APPID.algolia.net/1/indexes/tags/settings")


class TestSearchService:
    """Tests for thread search and the database fallback."""

    def test_hit_to_thread(self):
        thread = hit_to_thread(THREAD_HIT)
        assert thread["id"] == 12
        assert thread["author"]["name"] == "Ada"
        assert thread["category"]["slug"] == "general"
        assert thread["is_pinned"] is True
        assert thread["is_locked"] is False
        assert thread["tags"] == [{"name": "python"}]

    async def test_blank_query(self):
        fake = FakeAlgolia()
        result = await SearchService(client=fake.client()).search_forum_threads("   ", per_page=5)

        assert result["success"]
        assert result["threads"] == []
        assert result["pagination"]["per_page"] == 5
        assert fake.calls == []

    async def test_search_threads_paging(self, db, category):
        fake = FakeAlgolia(
            results=[
                {
                    "hits": [THREAD_HIT],
                    "nbHits": 11,
                    "page": 1,
                    "hitsPerPage": 10,
                    "nbPages": 2,
                    "processingTimeMS": 3,
                }
            ]
        )
        service = SearchService(db, client=fake.client())

        result = await service.search_forum_threads(
            "sqlalchemy",
            page=2,
            sort_by="views",
            filters={"category_slug": "general", "is_locked": False},
        )

        assert result["success"]
        assert [t["slug"] for t in result["threads"]] == ["async-sqlalchemy-tips"]
        assert result["pagination"] == {"total": 11, "page": 2, "per_page": 10, "total_pages": 2}
        assert result["processing_time"] == 3

        request = fake.calls[0][2]["requests"][0]
        assert request["indexName"] == "threads_viewCount_desc"
        params = fake.params()[0]
        assert params["page"] == ["1"]
        assert json.loads(params["facetFilters"][0]) == [
            ["categoryName:General Discussion"],
            ["isLocked:false"],
        ]

    async def test_search_error_reported(self):
        service = SearchService(client=FakeAlgolia(status_code=500).client())
        result = await service.search_forum_threads("anything")

        assert not result["success"]
        assert result["error"] == "Search service returned 500"
        assert result["threads"] == []

    async def test_search_all_page_sizes(self):
        fake = FakeAlgolia(results=[{"hits": []}] * 5)
        results = await SearchService(client=fake.client()).search_all("x", hits_per_page=10)

        assert set(results) == {"threads", "posts", "users", "categories", "tags"}
        sizes = {
            r["indexName"]: parse_qs(r["params"])["hitsPerPage"][0]
            for r in fake.calls[0][2]["requests"]
        }
        assert sizes == {
            "threads": "10",
            "posts": "5",
            "users": "3",
            "categories": "3",
            "tags": "3",
        }

    async def test_single_index_searches(self):
        fake = FakeAlgolia(results=[{"hits": [{"objectID": "1"}]}])
        service = SearchService(client=fake.client())

        await service.search_posts("orm", hits_per_page=5)
        await service.search_users("ada")
        await service.search_categories("general")
        result = await service.search_tags("py", page=2)

        assert result == {"hits": [{"objectID": "1"}]}
        assert [call[2]["requests"][0]["indexName"] for call in fake.calls] == [
            "posts",
            "users",
            "categories",
            "tags",
        ]
        assert fake.params(0)[0]["hitsPerPage"] == ["5"]
        assert fake.params(3)[0]["page"] == ["2"]

    async def test_fallback_to_database(self, db, user, make_thread):
        await make_thread(user, "Python packaging")
        await make_thread(user, "Rust lifetimes")
        service = SearchService(db, client=AlgoliaClient(app_id="", api_key=""))

        result = await service.search_threads_with_fallback("python")

        assert result["success"]
        assert [t["title"] for t in result["threads"]] == ["Python packaging"]
        assert result["pagination"]["total"] == 1

    async def test_fallback_keeps_hosted_results(self, db):
        fake = FakeAlgolia(results=[{"hits": [THREAD_HIT], "nbHits": 1, "page": 0, "nbPages": 1}])
        result = await SearchService(db, client=fake.client()).search_threads_with_fallback("x")
        assert result["threads"][0]["id"] == 12


class TestIndexer:
    """Tests for search record building and upload."""

    def test_chunked(self):
        records = [{"objectID": str(i)} for i in range(5)]
        assert [len(batch) for batch in chunked(records, 2)] == [2, 2, 1]
        assert chunked([], 2) == []

    async def test_thread_records_skip_hidden_and_banned(self, db, user, make_user, make_thread):
        banned = await make_user(banned=True)
        await make_thread(user, "Visible thread")
        await make_thread(user, "Hidden thread", is_hidden=True)
        await make_thread(banned, "Banned author thread")

        records = await SearchIndexer(db, FakeAlgolia().client()).build_thread_records()

        assert [r["title"] for r in records] == ["Visible thread"]
        record = records[0]
        assert record["content"] == "Opening post content"
        assert record["categoryName"] == "General Discussion"
        assert record["categoryColor"] == "#3498db"
        assert record["categoryIcon"] == "MessageSquare"

    async def test_post_records_skip_deleted(self, db, user, make_thread):
        thread = await make_thread(user)
        db.add(Post(thread_id=thread.id, author_id=user.id, content="gone", is_deleted=True))
        await db.commit()

        records = await SearchIndexer(db, FakeAlgolia().client()).build_post_records()
        assert [r["content"] for r in records] == ["Opening post content"]
        assert records[0]["threadTitle"] == thread.title

    async def test_user_records_omit_email(self, db, user, make_thread):
        await make_thread(user)
        records = await SearchIndexer(db, FakeAlgolia().client()).build_user_records()

        assert len(records) == 1
        assert "email" not in records[0]
        assert records[0]["threadCount"] == 1
        assert records[0]["postCount"] == 1

    async def test_category_and_tag_records(self, db, user, category, make_thread):
        thread = await make_thread(user)
        db.add(Category(name="Staff", slug="staff", is_hidden=True))
        tag = Tag(name="Python", slug="python")
        db.add(tag)
        await db.flush()
        db.add(ThreadTag(thread_id=thread.id, tag_id=tag.id))
        await db.commit()

        indexer = SearchIndexer(db, FakeAlgolia().client())
        categories = await indexer.build_category_records()
        tags = await indexer.build_tag_records()

        assert [(c["slug"], c["threadCount"], c["postCount"]) for c in categories] == [
            ("general", 1, 1)
        ]
        assert [(t["slug"], t["threadCount"]) for t in tags] == [("python", 1)]

    async def test_upload_batches_then_settings(self):
        fake = FakeAlgolia()
        indexer = SearchIndexer(None, fake.client())
        records = [{"objectID": str(i)} for i in range(3)]

        assert await indexer.upload("tags", records) == 3
        assert [call[0] for call in fake.calls] == ["POST", "PUT"]
        assert fake.calls[1][2] == INDEX_SETTINGS["tags"]

    async def test_settings_failure_is_logged(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.method)
            if request.method == "PUT":
                return httpx.Response(400, json={"message": "bad settings"})
            return httpx.Response(200, json={"taskID": 1})

        client = AlgoliaClient(app_id="APPID", api_key="KEY", transport=httpx.MockTransport(handler))
        assert await SearchIndexer(None, client).upload("users", [{"objectID": "1"}]) == 1
        assert calls == ["POST", "PUT"]
