"""
Behaviour every backend must share. Each test runs against the local SQLite
store and the remote backend over an in-memory pool.
"""

import asyncio
import uuid

import pytest

from safeguard.storage.errors import CredentialConflictError, CredentialNotFoundError
from safeguard.storage.validation import validate_update
from tests.utils import credential_payload


class TestCreateAndGet:
    @pytest.mark.asyncio
    async def test_create_then_get_returns_every_field(self, backend):
        created = await backend.create(
            credential_payload(url="https://mail.google.com", notes="personal")
        )

        fetched = await backend.get_by_id(created.id)

        assert uuid.UUID(fetched.id)
        assert fetched.service == "Gmail"
        assert fetched.username == "a@x.com"
        assert fetched.secret == "p1"
        assert fetched.url == "https://mail.google.com"
        assert fetched.notes == "personal"
        assert fetched.created_at is not None
        assert fetched.updated_at == fetched.created_at
        assert fetched == created

    @pytest.mark.asyncio
    async def test_duplicate_service_and_username_conflicts(self, backend):
        await backend.create(credential_payload())
        with pytest.raises(CredentialConflictError):
            await backend.create(credential_payload(secret="different"))

    @pytest.mark.asyncio
    async def test_same_username_on_another_service_is_allowed(self, backend):
        await backend.create(credential_payload())
        other = await backend.create(credential_payload(service="Outlook"))
        assert other.service == "Outlook"

    @pytest.mark.asyncio
    async def test_get_missing_id_is_not_found(self, backend):
        with pytest.raises(CredentialNotFoundError):
            await backend.get_by_id(str(uuid.uuid4()))

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_creates_exactly_one_wins(self, backend):
        results = await asyncio.gather(
            backend.create(credential_payload(secret="first")),
            backend.create(credential_payload(secret="second")),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, CredentialConflictError)]
        created = [r for r in results if not isinstance(r, Exception)]
        assert len(created) == 1
        assert len(conflicts) == 1
        assert (await backend.list()).total == 1


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_changes_only_supplied_fields(self, backend):
        created = await backend.create(credential_payload(notes="keep me"))

        await backend.update(created.id, validate_update({"secret": "p2"}))
        fetched = await backend.get_by_id(created.id)

        assert fetched.secret == "p2"
        assert fetched.service == created.service
        assert fetched.username == created.username
        assert fetched.notes == "keep me"
        assert fetched.created_at == created.created_at
        assert fetched.updated_at > created.updated_at

    @pytest.mark.asyncio
    async def test_updated_at_strictly_increases_on_rapid_updates(self, backend):
        created = await backend.create(credential_payload())

        stamps = [created.updated_at]
        for n in range(5):
            updated = await backend.update(created.id, {"notes": f"edit {n}"})
            stamps.append(updated.updated_at)

        assert all(later > earlier for earlier, later in zip(stamps, stamps[1:]))

    @pytest.mark.asyncio
    async def test_empty_update_still_refreshes_updated_at(self, backend):
        created = await backend.create(credential_payload())
        updated = await backend.update(created.id, {})
        assert updated.updated_at > created.updated_at

    @pytest.mark.asyncio
    async def test_update_missing_id_is_not_found(self, backend):
        with pytest.raises(CredentialNotFoundError):
            await backend.update(str(uuid.uuid4()), {"secret": "x"})

    @pytest.mark.asyncio
    async def test_rename_onto_existing_pair_conflicts(self, backend):
        await backend.create(credential_payload(service="Gmail"))
        other = await backend.create(credential_payload(service="Outlook"))

        with pytest.raises(CredentialConflictError):
            await backend.update(other.id, {"service": "Gmail"})

        assert (await backend.get_by_id(other.id)).service == "Outlook"


class TestDelete:
    @pytest.mark.asyncio
    async def test_second_delete_is_not_found(self, backend):
        created = await backend.create(credential_payload())

        await backend.delete(created.id)
        with pytest.raises(CredentialNotFoundError):
            await backend.delete(created.id)
        with pytest.raises(CredentialNotFoundError):
            await backend.get_by_id(created.id)

    @pytest.mark.asyncio
    async def test_delete_frees_the_service_username_pair(self, backend):
        created = await backend.create(credential_payload())
        await backend.delete(created.id)
        assert (await backend.create(credential_payload())).id != created.id


class TestList:
    @pytest.mark.asyncio
    async def test_pages_partition_the_set(self, backend):
        for n in range(5):
            await backend.create(credential_payload(username=f"user{n}@x.com"))

        pages = [await backend.list(page=n, page_size=2) for n in (1, 2, 3)]

        assert [len(p.records) for p in pages] == [2, 2, 1]
        assert all(p.total == 5 for p in pages)
        ids = [r.id for p in pages for r in p.records]
        assert len(set(ids)) == 5
        assert pages[0].has_next and not pages[2].has_next
        assert pages[2].total_pages == 3

    @pytest.mark.asyncio
    async def test_page_past_the_end_is_empty(self, backend):
        await backend.create(credential_payload())
        page = await backend.list(page=4, page_size=2)
        assert page.records == []
        assert page.total == 1

    @pytest.mark.asyncio
    async def test_page_beyond_any_sql_offset_is_empty(self, backend):
        await backend.create(credential_payload())
        page = await backend.list(page=10**20, page_size=10)
        assert page.records == []
        assert page.total == 1

    @pytest.mark.asyncio
    async def test_ordered_by_most_recently_updated(self, backend):
        first = await backend.create(credential_payload(username="first"))
        second = await backend.create(credential_payload(username="second"))
        await backend.update(first.id, {"notes": "touched"})

        page = await backend.list()

        assert [r.id for r in page.records] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_search_is_case_insensitive_on_service(self, backend):
        await backend.create(credential_payload(service="Gmail"))
        await backend.create(credential_payload(service="Dropbox"))

        page = await backend.list(search_term="GMAIL")

        assert [r.service for r in page.records] == ["Gmail"]
        assert page.total == 1

    @pytest.mark.asyncio
    async def test_search_matches_username_substring(self, backend):
        await backend.create(credential_payload(service="Bank", username="Alice.Smith"))
        await backend.create(credential_payload(service="Shop", username="bob"))

        page = await backend.list(search_term="smith")

        assert [r.username for r in page.records] == ["Alice.Smith"]

    @pytest.mark.asyncio
    async def test_search_treats_wildcards_literally(self, backend):
        await backend.create(credential_payload(service="100% Bank"))
        await backend.create(credential_payload(service="Other"))

        page = await backend.list(search_term="%")

        assert [r.service for r in page.records] == ["100% Bank"]


class TestStats:
    @pytest.mark.asyncio
    async def test_empty_store(self, backend):
        stats = await backend.stats()
        assert stats.total == 0
        assert stats.recent_count == 0
        assert stats.per_service == []
        assert stats.has_credentials is False

    @pytest.mark.asyncio
    async def test_counts_per_service(self, backend):
        for username in ("a", "b", "c"):
            await backend.create(credential_payload(service="Gmail", username=username))
        await backend.create(credential_payload(service="Dropbox"))

        stats = await backend.stats(window_days=7)

        assert stats.total == 4
        assert stats.recent_count == 4
        assert stats.window_days == 7
        assert [(s.service, s.count) for s in stats.per_service] == [("Gmail", 3), ("Dropbox", 1)]
        assert stats.per_service[0].last_updated is not None


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_check_reports_backend(self, backend):
        health = await backend.health_check()
        assert health["status"] == "healthy"
        assert health["backend"] == backend.kind.value
        assert health["response_time_ms"] >= 0
