"""Tests for decision memory: recording, matching and upkeep."""

from unittest.mock import patch

from luxloop.memory import DecisionMemory, JsonFileStore, MemoryStore, extract_keywords
from luxloop.memory.decisions import DEFAULT_KEY

DAY = 86400.0


def _learn(memory, task, tools, success=True, summary=""):
    memory.start_sequence(task)
    for name, ok in tools:
        memory.record_tool(name, ok)
    return memory.end_sequence(success, summary)


class TestKeywords:
    def test_short_numeric_and_common_words_dropped(self):
        assert extract_keywords("Add a spawn point to the lobby, 2024 please") == {
            "spawn",
            "point",
            "lobby",
        }


class TestRecording:
    def test_sequence_stored_as_pattern(self):
        store = MemoryStore()
        memory = DecisionMemory(store)

        pattern = _learn(
            memory,
            "Add a spawn point to the lobby",
            [("create_instance", True), ("set_instance_properties", False)],
            summary="Spawn point added",
        )

        assert pattern.tools == ("create_instance", "set_instance_properties")
        assert pattern.keywords == ("lobby", "point", "spawn")
        assert pattern.tool_success_rate == 0.5
        assert not memory.recording
        saved = store.load(DEFAULT_KEY)["patterns"]
        assert saved["successful"][0]["summary"] == "Spawn point added"
        assert saved["failed"] == []

    def test_task_without_tools_is_not_stored(self):
        store = MemoryStore()
        memory = DecisionMemory(store)
        memory.start_sequence("Just chatting about lobbies")

        assert memory.end_sequence(True) is None
        assert store.load(DEFAULT_KEY) is None

    def test_tools_outside_a_sequence_are_ignored(self):
        memory = DecisionMemory(MemoryStore())
        memory.record_tool("get_instance", True)

        assert memory.end_sequence(True) is None

    def test_new_sequence_drops_unfinished_one(self):
        memory = DecisionMemory(MemoryStore())
        memory.start_sequence("Build the lobby doors")
        memory.record_tool("get_instance", True)
        memory.start_sequence("Paint the lobby walls")
        memory.record_tool("set_instance_properties", True)

        assert memory.end_sequence(True).tools == ("set_instance_properties",)


class TestSuggestions:
    def test_similar_task_gets_proven_tools(self):
        memory = DecisionMemory(MemoryStore())
        _learn(
            memory,
            "Add a spawn point to the lobby",
            [("create_instance", True), ("set_instance_properties", True)],
        )

        suggestions, warnings = memory.suggestions("Add another spawn point in the lobby")

        (suggestion,) = suggestions
        assert suggestion.tools == ("create_instance", "set_instance_properties")
        assert "high confidence" in suggestion.message
        assert "create_instance -> set_instance_properties" in suggestion.message
        assert warnings == []
        assert memory.statistics()["successful_patterns"] == 1

    def test_best_match_counts_as_used(self):
        store = MemoryStore()
        memory = DecisionMemory(store)
        _learn(memory, "Add a spawn point to the lobby", [("create_instance", True)])

        memory.suggestions("Another spawn point for the lobby")

        assert store.load(DEFAULT_KEY)["patterns"]["successful"][0]["use_count"] == 2

    def test_failed_approach_becomes_warning(self):
        memory = DecisionMemory(MemoryStore())
        _learn(
            memory,
            "Rewrite the lobby spawn point script",
            [("edit_script", False), ("edit_script", False)],
            success=False,
        )

        suggestions, warnings = memory.suggestions("Fix the lobby spawn point script")

        assert suggestions == []
        (warning,) = warnings
        assert warning.startswith("A similar approach failed before")
        assert warning.endswith("Avoid: edit_script -> edit_script")

    def test_one_shared_keyword_is_not_enough(self):
        memory = DecisionMemory(MemoryStore())
        _learn(memory, "Add a spawn point to the lobby", [("create_instance", True)])

        assert memory.format_for_prompt("Spawn enemies at night") == ""

    def test_prompt_block(self):
        memory = DecisionMemory(MemoryStore())
        _learn(memory, "Add a spawn point to the lobby", [("create_instance", True)])
        _learn(
            memory,
            "Move the lobby spawn point",
            [("delete_instance", False)],
            success=False,
        )

        block = memory.format_for_prompt("Add a second lobby spawn point")

        assert block.startswith("## Past Experience")
        assert "**What worked before:**" in block
        assert "**What to avoid:**" in block
        assert "Avoid: delete_instance" in block


class TestUpkeep:
    def test_unused_patterns_decay_on_load(self):
        store = MemoryStore()
        with patch("luxloop.memory.decisions.time.time", return_value=1000.0):
            _learn(DecisionMemory(store), "Add a spawn point to the lobby", [("create_instance", True)])

        with patch("luxloop.memory.decisions.time.time", return_value=1000.0 + 31 * DAY):
            memory = DecisionMemory(store)
            stats = memory.statistics()

        assert stats["total_patterns"] == 0
        assert store.load(DEFAULT_KEY)["patterns"]["successful"] == []

    def test_least_recently_used_success_evicted(self):
        memory = DecisionMemory(MemoryStore(), max_patterns=2)
        for n, summary in enumerate(["first", "second", "third"]):
            with patch("luxloop.memory.decisions.time.time", return_value=1000.0 + n):
                _learn(memory, f"Task {summary} lobby door", [("get_instance", True)], summary=summary)

        with patch("luxloop.memory.decisions.time.time", return_value=1010.0):
            summaries = [m.pattern.summary for m in memory.find_matches("lobby door task")[0]]

        assert sorted(summaries) == ["second", "third"]

    def test_patterns_survive_restart(self, tmp_path):
        _learn(
            DecisionMemory(JsonFileStore(tmp_path)),
            "Add a spawn point to the lobby",
            [("create_instance", True)],
        )

        assert (tmp_path / f"{DEFAULT_KEY}.json").exists()
        reloaded = DecisionMemory(JsonFileStore(tmp_path))
        suggestions, _ = reloaded.suggestions("Another spawn point in the lobby")
        assert suggestions[0].tools == ("create_instance",)

    def test_statistics(self):
        memory = DecisionMemory(MemoryStore())
        _learn(memory, "Add a spawn point to the lobby", [("get_instance", True), ("create_instance", True)])
        _learn(memory, "Add a door to the lobby", [("create_instance", True)])
        _learn(memory, "Delete the lobby", [("delete_instance", False)], success=False)

        stats = memory.statistics()

        assert stats["successful_patterns"] == 2
        assert stats["failed_patterns"] == 1
        assert stats["total_patterns"] == 3
        assert stats["most_used_tools"][0] == {"tool": "create_instance", "count": 2}
        assert stats["average_tools_per_task"] == 1.5

    def test_clear(self):
        store = MemoryStore()
        memory = DecisionMemory(store)
        _learn(memory, "Add a spawn point to the lobby", [("create_instance", True)])
        memory.start_sequence("Unfinished lobby work")

        memory.clear()

        assert store.load(DEFAULT_KEY) is None
        assert not memory.recording
        assert memory.statistics()["total_patterns"] == 0
