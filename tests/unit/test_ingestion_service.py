"""
Unit tests for the fan-out policy, the ingestion service and user storage.
"""

import pytest

from docchat.exceptions import IngestionFailed, InvalidDocument, ProviderUnavailable, UserNotFound
from docchat.ingestion.fanout import FanOutPolicy
from docchat.users.directory import UserDirectory, UserId
from docchat.users.files import normalize_filename
from docchat.vector.registry import StoreKey, StoreScope


class TestFanOutPolicy:
    """Test cases for target store selection."""

    def test_user_document_defaults(self):
        """Test the individual and owner-combined targets of a user document."""
        policy = FanOutPolicy()

        assert policy.targets("alice", "policy.txt") == [
            StoreKey.user("alice", "alice_policy"),
            StoreKey.user("alice", "alice_combined"),
        ]

    def test_system_combined_added(self):
        """Test that user documents can also feed the system combined store."""
        policy = FanOutPolicy(system_combined=True)

        assert policy.targets("alice", "policy.txt")[-1] == StoreKey.system("combined")

    def test_system_document(self):
        """Test targets of a document without an owner."""
        policy = FanOutPolicy(system_combined=True)

        assert policy.targets(None, "handbook.md") == [
            StoreKey.system("handbook"),
            StoreKey.system("combined"),
        ]

    def test_store_names(self):
        """Test derivation of store names from filenames."""
        policy = FanOutPolicy(combined_name="all")

        assert policy.individual_store_name("alice", "Q3 report.txt") == "alice_Q3_report"
        assert policy.combined_store_name("alice") == "alice_all"
        assert policy.combined_store_name(None) == "all"

    def test_disabled_targets(self):
        """Test that switching every target off selects nothing."""
        policy = FanOutPolicy(individual=False, owner_combined=False)

        assert policy.targets("alice", "policy.txt") == []


class TestUserDirectory:
    """Test cases for the user registry."""

    @pytest.mark.asyncio
    async def test_create_is_idempotent_and_persisted(self, users):
        """Test user creation and reload from disk."""
        first = await users.create("alice")
        second = await users.create("alice")
        await users.create("bob")

        assert first == second
        reloaded = UserDirectory(path=users.path)
        assert [r.user_id.value for r in await reloaded.list_users()] == ["alice", "bob"]
        assert await reloaded.exists("alice")

    @pytest.mark.asyncio
    async def test_require(self, users):
        """Test lookup of unknown and invalid users."""
        await users.create("alice")

        assert await users.require("alice") == UserId("alice")
        with pytest.raises(UserNotFound):
            await users.require("carol")
        with pytest.raises(UserNotFound):
            await users.require("../alice")
        assert not await users.exists("../alice")

    @pytest.mark.asyncio
    async def test_invalid_user_id(self, users):
        """Test that a user id unusable as a path component is rejected."""
        with pytest.raises(ValueError):
            await users.create("alice/bob")


class TestUserFiles:
    """Test cases for upload storage."""

    def test_normalize_filename(self):
        """Test that filenames are made safe and text-typed."""
        assert normalize_filename("policy.txt") == "policy.txt"
        assert normalize_filename("notes.md") == "notes.md"
        assert normalize_filename("../../etc/passwd") == "passwd.txt"
        assert normalize_filename("Q3 report.pdf") == "Q3_report.pdf.txt"
        with pytest.raises(InvalidDocument):
            normalize_filename("   ")

    @pytest.mark.asyncio
    async def test_save_and_read(self, files):
        """Test storing and reading back an upload."""
        alice = UserId("alice")
        record = await files.save(alice, "policy.txt", "Employees must badge in by 9am.")

        assert record.size_bytes == len("Employees must badge in by 9am.")
        assert not record.vectorized
        assert await files.read_content(alice, "policy.txt") == "Employees must badge in by 9am."
        assert [r.filename for r in await files.list_files(alice)] == ["policy.txt"]

    @pytest.mark.asyncio
    async def test_oversize_and_empty_uploads(self, files):
        """Test rejection of empty and oversize content."""
        alice = UserId("alice")

        with pytest.raises(InvalidDocument) as exc_info:
            await files.save(alice, "big.txt", "x" * (files.max_upload_chars + 1))
        assert exc_info.value.oversize

        with pytest.raises(InvalidDocument) as exc_info:
            await files.save(alice, "empty.txt", "  \n ")
        assert not exc_info.value.oversize

        with pytest.raises(InvalidDocument):
            await files.read_content(alice, "missing.txt")


class TestIngestionService:
    """Test cases for upload, vectorize and direct ingest."""

    @pytest.mark.asyncio
    async def test_upload_then_vectorize(self, users, files, ingestion, registry):
        """Test the two-step flow and the vectorized flag."""
        await users.create("alice")

        record = await ingestion.upload("alice", "policy.txt", "Employees must badge in by 9am.")
        assert not record.vectorized
        assert await registry.list_stores(StoreScope.USER, "alice") == []

        result = await ingestion.vectorize("alice", "policy.txt")

        assert result.stores == ["alice_policy", "alice_combined"]
        assert result.chunks == 1
        updated = await files.get_record(UserId("alice"), "policy.txt")
        assert updated.vectorized
        assert updated.stores == ("alice_combined", "alice_policy")

    @pytest.mark.asyncio
    async def test_unknown_user(self, ingestion, registry):
        """Test that uploads for unregistered users are rejected."""
        with pytest.raises(UserNotFound):
            await ingestion.ingest("mallory", "policy.txt", "Employees must badge in by 9am.")
        with pytest.raises(UserNotFound):
            await ingestion.vectorize("mallory", "policy.txt")

        assert await registry.list_stores(StoreScope.USER, "mallory") == []

    @pytest.mark.asyncio
    async def test_reingest_is_idempotent(self, users, ingestion, registry):
        """Test that ingesting the same document twice keeps one copy of its chunks."""
        await users.create("alice")
        await ingestion.ingest("alice", "policy.txt", "Employees must badge in by 9am.")
        await ingestion.ingest("alice", "policy.txt", "Employees must badge in by 9am.")

        handle = await registry.open(StoreKey.user("alice", "alice_combined"))
        assert handle.descriptor.chunk_count == 1
        assert handle.descriptor.generation == 2

    @pytest.mark.asyncio
    async def test_combined_store_collects_documents(self, users, ingestion, registry):
        """Test that the owner's combined store holds every document."""
        await users.create("alice")
        await ingestion.ingest("alice", "policy.txt", "Employees must badge in by 9am.")
        await ingestion.ingest("alice", "lunch.txt", "Lunch is served at noon.")

        combined = await registry.open(StoreKey.user("alice", "alice_combined"))
        assert combined.descriptor.member_documents == frozenset({"policy.txt", "lunch.txt"})
        assert [d.name for d in await registry.list_stores(StoreScope.USER, "alice")] == [
            "alice_combined",
            "alice_lunch",
            "alice_policy",
        ]

    @pytest.mark.asyncio
    async def test_failed_embedding_touches_no_store(self, users, files, ingestion, registry, embedder):
        """Test that a document that cannot be embedded reaches no store."""
        await users.create("alice")
        embedder.fail_on("badge", ProviderUnavailable("fake", "invalid api key"))

        with pytest.raises(IngestionFailed):
            await ingestion.ingest("alice", "policy.txt", "Employees must badge in by 9am.")

        assert await registry.list_stores(StoreScope.USER, "alice") == []
        record = await files.get_record(UserId("alice"), "policy.txt")
        assert record is not None
        assert not record.vectorized

    @pytest.mark.asyncio
    async def test_system_ingest(self, ingestion, registry):
        """Test ingesting a document without an owner."""
        result = await ingestion.ingest(None, "handbook.txt", "Lunch is served at noon.")

        assert result.stores == ["handbook", "combined"]
        assert [d.name for d in await registry.list_stores(StoreScope.SYSTEM)] == ["combined", "handbook"]

        with pytest.raises(InvalidDocument) as exc_info:
            await ingestion.ingest(None, "big.txt", "x" * (ingestion.files.max_upload_chars + 1))
        assert exc_info.value.oversize
