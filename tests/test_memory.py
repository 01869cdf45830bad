"""Tests for MemoryManager – the main high-level API."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

import pytest

from nelson_memory.memory import MemoryManager
from nelson_memory.models import MemoryEntry
from conftest import FailingBlobStore, FakeClock


class TestSessions:
    def test_start_session_sets_current(self, memory_manager: MemoryManager, clock: FakeClock):
        session_id = memory_manager.start_session()
        assert session_id.startswith("session_")
        assert memory_manager.get_current_session_id() == session_id
        history = memory_manager.get_conversation_history()
        assert len(history) == 1
        assert history[0].start_time == history[0].last_activity == clock.now
        assert history[0].messages == []

    def test_new_session_keeps_the_old_one(self, memory_manager: MemoryManager):
        first = memory_manager.start_session()
        second = memory_manager.start_session()
        assert first != second
        assert memory_manager.get_current_session_id() == second
        assert memory_manager.get_memory_stats()["total_conversations"] == 2

    def test_add_message_starts_session_implicitly(self, memory_manager: MemoryManager):
        assert memory_manager.get_current_session_id() is None
        memory_manager.add_message("user", "hello")
        assert memory_manager.get_current_session_id() is not None

    def test_add_message_records_memory_ids(self, memory_manager: MemoryManager):
        ids = memory_manager.add_message("user", "I prefer oral over IV antibiotics for this patient")
        assert len(ids) == 2
        message = memory_manager.get_conversation_history()[0].messages[0]
        assert message.role == "user"
        assert message.memory_ids == ids

    def test_last_activity_tracks_latest_message(self, memory_manager: MemoryManager, clock: FakeClock):
        memory_manager.start_session()
        clock.advance(minutes=5)
        memory_manager.add_message("user", "hello")
        assert memory_manager.get_conversation_history()[0].last_activity == clock.now

    def test_history_sorted_by_last_activity(self, memory_manager: MemoryManager, clock: FakeClock):
        first = memory_manager.start_session()
        clock.advance(hours=1)
        second = memory_manager.start_session()
        clock.advance(hours=1)
        # Reactivate the first session by writing to it directly.
        memory_manager._state.current_session_id = first
        memory_manager.add_message("user", "back again")
        order = [c.session_id for c in memory_manager.get_conversation_history()]
        assert order == [first, second]


class TestSummary:
    def test_summary_fires_on_every_tenth_message(self, memory_manager: MemoryManager):
        memory_manager.start_session()
        for _ in range(9):
            memory_manager.add_message("user", "fever since yesterday")
        conversation = memory_manager.get_conversation_history()[0]
        assert conversation.summary == ""

        memory_manager.add_message("user", "and now a cough")
        assert conversation.summary == "Recent discussion about fever, cough"
        assert conversation.key_topics == ["fever", "cough"]

    def test_summary_not_recomputed_between_intervals(self, memory_manager: MemoryManager):
        memory_manager.start_session()
        for _ in range(10):
            memory_manager.add_message("user", "fever")
        conversation = memory_manager.get_conversation_history()[0]
        for _ in range(9):
            memory_manager.add_message("user", "seizure")
        assert conversation.summary == "Recent discussion about fever"

        memory_manager.add_message("user", "seizure")
        assert conversation.summary == "Recent discussion about seizure"
        # Topics cover the whole history, not only the recent window.
        assert conversation.key_topics == ["fever", "seizure"]


class TestSearch:
    def test_search_empty_store(self, memory_manager: MemoryManager):
        assert memory_manager.search_memories("anything") == []

    def test_search_returns_entries(self, memory_manager: MemoryManager):
        memory_manager.add_message("assistant", "First-line treatment for asthma is an inhaled steroid.")
        results = memory_manager.search_memories("asthma")
        assert len(results) == 1
        assert isinstance(results[0], MemoryEntry)
        assert results[0].category == "medical_fact"

    def test_search_limit(self, memory_manager: MemoryManager):
        for i in range(6):
            memory_manager.add_message("user", f"patient {i} has a rash")
        assert len(memory_manager.search_memories("rash", limit=3)) == 3

    def test_older_memories_rank_lower(self, memory_manager: MemoryManager, clock: FakeClock):
        memory_manager.add_message("user", "patient with asthma, first visit")
        clock.advance(days=39)
        memory_manager.add_message("user", "patient with asthma, second visit")
        clock.advance(days=1)
        results = memory_manager.search_memories("asthma")
        assert [r.content for r in results] == [
            "patient with asthma, second visit",
            "patient with asthma, first visit",
        ]

    def test_relevant_memories_without_summary(self, memory_manager: MemoryManager):
        for i in range(7):
            memory_manager.add_message("user", f"case {i}: toddler with seizure")
        relevant = memory_manager.get_relevant_memories("seizure")
        assert len(relevant) == 5
        assert all("seizure" in r for r in relevant)

    def test_relevant_memories_prepend_summary(self, memory_manager: MemoryManager):
        memory_manager.start_session()
        for i in range(10):
            memory_manager.add_message("user", f"patient {i} with fever")
        relevant = memory_manager.get_relevant_memories("fever")
        assert relevant[0] == "Recent discussion about fever"
        assert len(relevant) == 6


class TestStats:
    def test_stats_counts_categories(self, memory_manager: MemoryManager):
        memory_manager.add_message("user", "I always want doses per kg for this patient")
        memory_manager.add_message("assistant", "The medication dose is 10 mg/kg.")
        assert memory_manager.get_memory_stats() == {
            "total_memories": 3,
            "total_conversations": 1,
            "categories": {"user_preference": 1, "case_context": 1, "medical_fact": 1},
        }

    def test_stats_are_idempotent(self, memory_manager: MemoryManager):
        memory_manager.add_message("user", "patient case")
        assert memory_manager.get_memory_stats() == memory_manager.get_memory_stats()

    def test_clear(self, memory_manager: MemoryManager):
        memory_manager.add_message("user", "patient case")
        memory_manager.clear_memories()
        assert memory_manager.get_memory_stats() == {
            "total_memories": 0,
            "total_conversations": 0,
            "categories": {},
        }
        assert memory_manager.get_current_session_id() is None
        assert memory_manager.get_conversation_history() == []


class TestPersistence:
    def test_state_survives_restart(self, memory_manager, blob_store, clock):
        memory_manager.add_message("user", "A 3 year old patient with a rash")
        clock.advance(days=2)
        memory_manager.add_message("assistant", "Treatment depends on the diagnosis.")

        reloaded = MemoryManager(_store=blob_store, _clock=clock)
        assert reloaded.get_memory_stats() == memory_manager.get_memory_stats()
        assert reloaded.get_current_session_id() == memory_manager.get_current_session_id()
        before = [(m.id, m.timestamp) for m in memory_manager.search_memories("rash treatment")]
        after = [(m.id, m.timestamp) for m in reloaded.search_memories("rash treatment")]
        assert before == after

    def test_clear_is_persisted(self, memory_manager, blob_store, clock):
        memory_manager.add_message("user", "patient case")
        memory_manager.clear_memories()
        reloaded = MemoryManager(_store=blob_store, _clock=clock)
        assert reloaded.get_memory_stats()["total_memories"] == 0
        assert reloaded.get_current_session_id() is None

    def test_blob_with_offsetless_timestamps_is_usable(self, blob_store, clock):
        payload = {
            "memories": [
                [
                    "memory_1",
                    {
                        "id": "memory_1",
                        "content": "Child with asthma on inhaled steroids",
                        "category": "case_context",
                        "importance": 0.7,
                        "timestamp": "2024-03-01T08:00:00",
                        "tags": ["child"],
                        "metadata": {},
                    },
                ]
            ],
            "conversations": [
                [
                    "session_old",
                    {
                        "sessionId": "session_old",
                        "messages": [],
                        "summary": "",
                        "keyTopics": [],
                        "startTime": "2024-02-28T10:00:00",
                        "lastActivity": "2024-02-28T10:00:00Z",
                    },
                ]
            ],
            "currentSessionId": "session_old",
        }
        blob_store.set("nelson-gpt-memory", json.dumps(payload))

        manager = MemoryManager(_store=blob_store, _clock=clock)
        results = manager.search_memories("asthma")
        assert [m.id for m in results] == ["memory_1"]
        assert results[0].timestamp == datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)

        new_session = manager.start_session()
        history = manager.get_conversation_history()
        assert [c.session_id for c in history] == [new_session, "session_old"]

    def test_storage_failure_is_swallowed(self, clock, caplog):
        with caplog.at_level(logging.ERROR):
            manager = MemoryManager(_store=FailingBlobStore(), _clock=clock)
            ids = manager.add_message("user", "I prefer liquid formulations")
        assert len(ids) == 1
        assert manager.get_memory_stats()["total_memories"] == 1
        assert "Failed to save memory" in caplog.text


class TestMalformedInput:
    def test_non_string_content(self, memory_manager: MemoryManager):
        assert memory_manager.add_message("user", None) == []
        message = memory_manager.get_conversation_history()[0].messages[0]
        assert message.content == ""

    def test_unknown_role(self, memory_manager: MemoryManager):
        assert memory_manager.add_message("system", "I prefer this treatment") == []

    def test_broken_extractor_degrades(self, blob_store, clock):
        class Exploding:
            def extract(self, content, role):
                raise RuntimeError("boom")

        manager = MemoryManager(extractor=Exploding(), _store=blob_store, _clock=clock)
        assert manager.add_message("user", "patient case") == []
        assert len(manager.get_conversation_history()[0].messages) == 1


@pytest.mark.parametrize("role", ["user", "assistant"])
def test_case_context_for_either_role(memory_manager: MemoryManager, role):
    ids = memory_manager.add_message(role, "New case: 18 month old with cough")
    entry = memory_manager.search_memories("cough")[0]
    assert entry.id in ids
    assert entry.metadata["patient_age"] == "18 months old"
