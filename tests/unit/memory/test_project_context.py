"""Tests for persisted project memory."""

import pytest

from luxloop.memory import Anchor, ContextType, MemoryStore, ProjectContext


class TestEntries:
    def test_add_persists_across_instances(self):
        store = MemoryStore()
        ProjectContext(store).add_entry(ContextType.CONVENTION, "  Modules return a table  ")

        entries = ProjectContext(store).entries()

        assert [e.content for e in entries] == ["Modules return a table"]
        assert entries[0].type is ContextType.CONVENTION

    def test_rejects_bad_input(self):
        context = ProjectContext(MemoryStore())
        context.add_entry("warning", "Never yield in RenderStepped")

        with pytest.raises(ValueError, match="Invalid context type"):
            context.add_entry("rumour", "x")
        with pytest.raises(ValueError, match="empty"):
            context.add_entry("warning", "   ")
        with pytest.raises(ValueError, match="Duplicate"):
            context.add_entry("warning", "Never yield in RenderStepped")

    def test_long_content_truncated(self):
        context = ProjectContext(MemoryStore(), max_content_chars=10)
        entry = context.add_entry("architecture", "a" * 50)
        assert entry.content == "a" * 10 + "..."

    def test_eviction_prefers_stale(self):
        context = ProjectContext(MemoryStore(), max_entries=2)
        context.add_entry("architecture", "first entry", Anchor("instance_exists", "Workspace.Gone"))
        context.add_entry("architecture", "second entry")
        context.validate_all(lambda anchor: False)

        context.add_entry("architecture", "third entry")

        assert [e.content for e in context.entries(include_stale=True)] == [
            "second entry", "third entry",
        ]

    def test_remove_and_clear_stale(self):
        context = ProjectContext(MemoryStore())
        context.add_entry("dependency", "Uses ProfileService", Anchor("script_exists", "X"))
        context.add_entry("dependency", "Uses Knit")

        context.validate_all(lambda anchor: anchor.path != "X")
        assert context.clear_stale() == 1
        assert context.remove_entry(5) is False
        assert context.remove_entry(0) is True
        assert context.entries(include_stale=True) == []


class TestValidation:
    def test_old_entries_go_stale(self):
        context = ProjectContext(MemoryStore(), stale_after_seconds=100)
        entry = context.add_entry("architecture", "Map loads from ServerStorage")
        entry.last_verified -= 200

        report = context.validate_all()

        assert report.stale == 1
        assert report.stale_entries[0]["reason"] == "Not verified in 0 days"
        assert context.format_for_prompt() == ""

    def test_valid_entries_are_reverified(self):
        context = ProjectContext(MemoryStore())
        context.add_entry("architecture", "Map loads from ServerStorage", Anchor("instance_exists", "A"))

        report = context.validate_all(lambda anchor: True)

        assert report.valid == 1
        assert report.stale == 0

    def test_format_groups_by_type(self):
        context = ProjectContext(MemoryStore())
        context.add_entry("warning", "Do not rename the Map folder")
        context.add_entry("architecture", "Round logic lives in ServerScriptService.Rounds")

        text = context.format_for_prompt()

        assert text.index("### Architecture") < text.index("### Warnings")
        assert "- Do not rename the Map folder" in text

    def test_malformed_entries_are_skipped(self):
        store = MemoryStore()
        store.save("project-context", {"entries": [{"type": "nope", "content": "x"}, {"content": "y"}]})
        assert ProjectContext(store).entries() == []

    def test_session_info(self):
        context = ProjectContext(MemoryStore())
        assert context.session_info()["is_new"] is True

        context.add_entry("convention", "Use PascalCase for modules")
        info = context.session_info()
        assert info["total_entries"] == 1
        assert info["has_context"] is True
