"""Tests for the journal-backed timeline store."""

import asyncio

import pytest
from fakes import at, make_message, make_thread

from repodb.config import TimelineConfig
from repodb.errors import Conflict, EncodingError
from repodb.models import RemoteFile
from repodb.timeline import EntityFileTimelineStore, JournalTimelineStore, build_timeline_store
from repodb.timeline.format import Journal


async def seed(journal: JournalTimelineStore, *stamps) -> None:
    await journal.upsert_thread(make_thread())
    for i, stamp in enumerate(stamps, start=1):
        role = "user" if i % 2 else "assistant"
        await journal.append_message(make_message(f"m{i}", role=role, text=f"msg {i}", created_at=stamp))


class TestThreads:
    @pytest.mark.asyncio
    async def test_upsert_then_list_exactly_once(self, journal):
        for _ in range(3):
            await journal.upsert_thread(make_thread())
        threads = await journal.list_threads()
        assert [t.id for t in threads] == ["t1"]
        assert threads[0].title == "Trip planning"

    @pytest.mark.asyncio
    async def test_one_section_after_repeated_upserts(self, journal, store, files):
        for title in ["a", "b", "c"]:
            await journal.upsert_thread(make_thread(title=title))
        parsed = Journal.parse(store.content(files.repo, "timeline/2026-10.md"), "timeline/2026-10.md")
        assert len(parsed.sections_for("t1")) == 1

    @pytest.mark.asyncio
    async def test_list_sorted_by_activity_and_limited(self, journal):
        await journal.upsert_thread(make_thread("t1", created_at=at(1)))
        await journal.upsert_thread(make_thread("t2", created_at=at(2)))
        await journal.upsert_thread(make_thread("t3", created_at=at(3)))
        await journal.append_message(make_message("m1", thread_id="t1", created_at=at(4)))

        threads = await journal.list_threads()
        assert [t.id for t in threads] == ["t1", "t3", "t2"]
        assert threads[0].last_message_at == at(4)
        assert [t.id for t in await journal.list_threads(limit=2)] == ["t1", "t3"]

    @pytest.mark.asyncio
    async def test_owner_filter(self, journal):
        await journal.upsert_thread(make_thread("t1", owner_id="alice"))
        await journal.upsert_thread(make_thread("t2", owner_id="bob"))
        assert [t.id for t in await journal.list_threads(owner_id="bob")] == ["t2"]

    @pytest.mark.asyncio
    async def test_scan_limit_skips_old_journals(self, files):
        journal = JournalTimelineStore(files, scan_limit=2)
        for month in (8, 9, 10):
            await journal.upsert_thread(make_thread(f"t{month}", created_at=at(1, month=month)))
        assert {t.id for t in await journal.list_threads()} == {"t9", "t10"}
        assert {t.id for t in await journal.list_threads(scan_all=True)} == {"t8", "t9", "t10"}
        # Direct lookups are not bounded by the scan window
        assert await journal.get_thread("t8") is not None

    @pytest.mark.asyncio
    async def test_soft_delete_keeps_history(self, journal, store, files):
        await seed(journal, at(1, 13))
        assert await journal.delete_thread("t1") is True

        assert await journal.list_threads() == []
        assert await journal.get_thread("t1") is None
        assert await journal.list_messages("t1") == []
        content = store.content(files.repo, "timeline/2026-10.md")
        assert "- Status: Deleted" in content
        assert "msg 1" in content

    @pytest.mark.asyncio
    async def test_delete_unknown_thread(self, journal):
        assert await journal.delete_thread("nope") is False

    @pytest.mark.asyncio
    async def test_empty_repository_reads_as_empty(self, journal):
        assert await journal.list_threads() == []
        assert await journal.list_messages("t1") == []
        assert await journal.get_thread("t1") is None


class TestMessages:
    @pytest.mark.asyncio
    async def test_returned_in_timestamp_order(self, journal):
        await journal.upsert_thread(make_thread())
        for message_id, hour in [("m3", 15), ("m1", 13), ("m2", 14)]:
            await journal.append_message(make_message(message_id, created_at=at(1, hour)))
        assert [m.id for m in await journal.list_messages("t1")] == ["m1", "m2", "m3"]

    @pytest.mark.asyncio
    async def test_month_boundary(self, journal, store, files):
        await journal.upsert_thread(make_thread(created_at=at(31, 23)))
        await journal.append_message(make_message("m1", created_at=at(31, 23, 30)))
        await journal.append_message(make_message("m2", created_at=at(1, 0, 15, month=11)))

        assert [m.id for m in await journal.list_messages("t1")] == ["m1", "m2"]
        assert "(m2)" in store.content(files.repo, "timeline/2026-11.md")
        assert "(m2)" not in store.content(files.repo, "timeline/2026-10.md")

        threads = await journal.list_threads()
        assert len(threads) == 1
        assert threads[0].title == "Trip planning"
        assert threads[0].created_at == at(31, 23)
        assert threads[0].last_message_at == at(1, 0, 15, month=11)

    @pytest.mark.asyncio
    async def test_upsert_message_edits_in_place(self, journal):
        await seed(journal, at(1, 13), at(1, 14))
        edited = make_message("m1", text="edited", created_at=at(9))
        await journal.upsert_message(edited)

        messages = await journal.list_messages("t1")
        assert [m.id for m in messages] == ["m1", "m2"]
        assert messages[0].text == "edited"
        assert messages[0].created_at == at(1, 13)

    @pytest.mark.asyncio
    async def test_upsert_message_appends_new(self, journal):
        await seed(journal, at(1, 13))
        await journal.upsert_message(make_message("m2", created_at=at(1, 14)))
        assert [m.id for m in await journal.list_messages("t1")] == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_delete_message(self, journal):
        await seed(journal, at(1, 13), at(1, 14))
        assert await journal.delete_message("m1") is True
        assert await journal.delete_message("missing") is False
        assert [m.id for m in await journal.list_messages("t1")] == ["m2"]

    @pytest.mark.asyncio
    async def test_delete_after_across_months(self, journal):
        await journal.upsert_thread(make_thread(created_at=at(30)))
        await journal.append_message(make_message("m1", created_at=at(30, 13)))
        await journal.append_message(make_message("m2", created_at=at(31, 13)))
        await journal.append_message(make_message("m3", created_at=at(1, 13, month=11)))

        assert await journal.delete_messages_after("m1") == 2
        assert [m.id for m in await journal.list_messages("t1")] == ["m1"]

    @pytest.mark.asyncio
    async def test_delete_after_unknown_message(self, journal):
        await seed(journal, at(1, 13))
        assert await journal.delete_messages_after("missing") == 0

    @pytest.mark.asyncio
    async def test_rejects_unsafe_ids(self, journal):
        with pytest.raises(ValueError):
            await journal.append_message(make_message("m(1)"))


class TestFailures:
    @pytest.mark.asyncio
    async def test_corrupt_journal_is_surfaced_not_overwritten(self, journal, store, files):
        await seed(journal, at(1, 13))
        path = "timeline/2026-10.md"
        # Drop the block terminator so the message never ends
        broken = store.content(files.repo, path).replace("msg 1\n\n---\n", "msg 1\n\n")
        store.files[files.repo][path] = RemoteFile(path=path, content=broken, hash="deadbeef")

        with pytest.raises(EncodingError):
            await journal.list_messages("t1")
        with pytest.raises(EncodingError):
            await journal.append_message(make_message("m2", created_at=at(1, 14)))
        assert store.content(files.repo, path) == broken

    @pytest.mark.asyncio
    async def test_write_failure_propagates(self, journal, store):
        await journal.upsert_thread(make_thread())
        store.fail_next_put = RuntimeError("boom")
        with pytest.raises(RuntimeError):
            await journal.append_message(make_message("m1"))
        assert await journal.list_messages("t1") == []


class TestScenarios:
    @pytest.mark.asyncio
    async def test_a_create_and_reply(self, journal):
        await journal.upsert_thread(make_thread(title="Trip planning"))
        await journal.append_message(make_message("m1", role="user", text="Plan a trip", created_at=at(1, 13)))
        await journal.append_message(
            make_message("m2", role="assistant", text="Where to?", created_at=at(1, 13, 1))
        )

        messages = await journal.list_messages("t1")
        assert len(messages) == 2
        assert [m.role for m in messages] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_b_rename(self, journal):
        await seed(journal, at(1, 13), at(1, 14))
        thread = await journal.get_thread("t1")
        thread.title = "Summer Trip"
        await journal.upsert_thread(thread)

        threads = await journal.list_threads()
        assert [(t.id, t.title) for t in threads] == [("t1", "Summer Trip")]
        assert len(await journal.list_messages("t1")) == 2

    @pytest.mark.asyncio
    async def test_c_delete_after(self, journal):
        await seed(journal, at(1, 13), at(1, 14), at(1, 15), at(1, 16))
        assert await journal.delete_messages_after("m2") == 2
        assert [m.id for m in await journal.list_messages("t1")] == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_d_concurrent_upserts_one_conflict(self, journal):
        await journal.upsert_thread(make_thread(title="Start"))
        results = await asyncio.gather(
            journal.upsert_thread(make_thread(title="Left")),
            journal.upsert_thread(make_thread(title="Right")),
            return_exceptions=True,
        )
        conflicts = [r for r in results if isinstance(r, Conflict)]
        assert len(conflicts) == 1
        assert len(await journal.list_threads()) == 1

    @pytest.mark.asyncio
    async def test_d_with_retries_both_apply(self, files):
        journal = JournalTimelineStore(files, conflict_retries=2)
        await journal.upsert_thread(make_thread(title="Start"))
        await asyncio.gather(
            journal.upsert_thread(make_thread(title="Left")),
            journal.append_message(make_message("m1", created_at=at(1, 13))),
        )
        threads = await journal.list_threads()
        assert [t.title for t in threads] == ["Left"]
        assert [m.id for m in await journal.list_messages("t1")] == ["m1"]


class TestFactory:
    def test_selects_encoding(self, files):
        assert isinstance(build_timeline_store(files, TimelineConfig()), JournalTimelineStore)
        store = build_timeline_store(files, TimelineConfig(encoding="entity_files"))
        assert isinstance(store, EntityFileTimelineStore)

    def test_unknown_encoding(self, files):
        with pytest.raises(ValueError):
            build_timeline_store(files, TimelineConfig(encoding="sqlite"))
