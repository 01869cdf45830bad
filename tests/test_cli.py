"""Tests for the CLI entry point."""

from __future__ import annotations

import io
import json

import pytest

import nelson_memory.cli as cli_module
from nelson_memory.cli import main
from nelson_memory.memory import MemoryManager


@pytest.fixture()
def patched_manager(memory_manager: MemoryManager, monkeypatch) -> MemoryManager:
    """
    Make the CLI use our ephemeral in-memory manager instead of touching
    the filesystem.
    """
    monkeypatch.setattr(cli_module, "MemoryManager", lambda **kwargs: memory_manager)
    return memory_manager


class TestCLI:
    def test_start_prints_session_id(self, patched_manager, capsys):
        rc = main(["start"])
        assert rc == 0
        out = capsys.readouterr().out.strip()
        assert out == patched_manager.get_current_session_id()

    def test_add_reports_extracted_memories(self, patched_manager, capsys):
        rc = main(["add", "user", "I prefer syrups for this patient"])
        assert rc == 0
        out = capsys.readouterr().out
        assert "extracted 2 memory(s)" in out

    def test_add_reads_stdin(self, patched_manager, capsys, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("The diagnosis is croup."))
        rc = main(["add", "assistant"])
        assert rc == 0
        assert patched_manager.get_memory_stats()["categories"] == {"medical_fact": 1}

    def test_add_missing_text_returns_error(self, patched_manager, capsys, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO(""))
        rc = main(["add", "user"])
        assert rc == 1

    def test_add_rejects_unknown_role(self, patched_manager):
        with pytest.raises(SystemExit):
            main(["add", "system", "hello"])

    def test_search_empty_store(self, patched_manager, capsys):
        rc = main(["search", "anything"])
        assert rc == 0
        assert "No memories found" in capsys.readouterr().out

    def test_search_json_output(self, patched_manager, capsys):
        main(["add", "user", "Case: 4 year old with wheeze"])
        capsys.readouterr()

        main(["search", "--json", "wheeze"])
        results = json.loads(capsys.readouterr().out)
        assert isinstance(results, list)
        assert results[0]["category"] == "case_context"
        assert results[0]["metadata"]["patient_age"] == "4 years old"

    def test_relevant(self, patched_manager, capsys):
        main(["add", "user", "patient with a febrile seizure"])
        capsys.readouterr()
        rc = main(["relevant", "seizure"])
        assert rc == 0
        assert "1. patient with a febrile seizure" in capsys.readouterr().out

    def test_stats_json(self, patched_manager, capsys):
        main(["add", "user", "I never use codeine in children"])
        capsys.readouterr()
        main(["stats", "--json"])
        stats = json.loads(capsys.readouterr().out)
        assert stats == {
            "total_memories": 1,
            "total_conversations": 1,
            "categories": {"user_preference": 1},
        }

    def test_history(self, patched_manager, capsys):
        main(["history"])
        assert "No conversations stored" in capsys.readouterr().out
        main(["start"])
        session_id = capsys.readouterr().out.strip()
        main(["history"])
        assert f"* {session_id} messages=0" in capsys.readouterr().out

    def test_context_includes_memories(self, patched_manager, capsys):
        main(["add", "user", "patient allergic to penicillin"])
        capsys.readouterr()
        main(["context", "penicillin"])
        out = capsys.readouterr().out
        assert "RELEVANT CONVERSATION HISTORY:" in out
        assert "1. patient allergic to penicillin" in out

    def test_clear(self, patched_manager, capsys):
        main(["add", "user", "patient case"])
        rc = main(["clear"])
        assert rc == 0
        assert patched_manager.get_memory_stats()["total_memories"] == 0
