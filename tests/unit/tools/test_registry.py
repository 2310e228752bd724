"""Tests for tool registration."""

import pytest

from luxloop.config import LoopConfig
from luxloop.errors import RegistrationError
from luxloop.tools import ToolCategory, ToolRegistry, ToolSpec
from luxloop.tools.builtin import DANGEROUS_OPERATIONS, FEEDBACK_OPERATIONS, InstanceTree, create_default_registry


async def _handler(args, ctx):
    return {}


async def _applier(data):
    return {}


def _sync_handler(args, ctx):
    return {}


class TestRegistration:
    def test_register_and_lookup(self):
        registry = ToolRegistry()
        registry.register(ToolSpec("get_thing", ToolCategory.READ, _handler))

        assert "get_thing" in registry
        assert registry.get("get_thing").category is ToolCategory.READ
        assert len(registry) == 1

    def test_duplicate_rejected(self):
        registry = ToolRegistry()
        registry.register(ToolSpec("get_thing", ToolCategory.READ, _handler))
        with pytest.raises(RegistrationError, match="already registered"):
            registry.register(ToolSpec("get_thing", ToolCategory.READ, _handler))

    @pytest.mark.parametrize("name", ["", "has space", "class", "1abc"])
    def test_invalid_names(self, name):
        with pytest.raises(RegistrationError, match="Invalid tool name"):
            ToolRegistry().register(ToolSpec(name, ToolCategory.READ, _handler))

    def test_sync_handler_rejected(self):
        with pytest.raises(RegistrationError, match="async"):
            ToolRegistry().register(ToolSpec("get_thing", ToolCategory.READ, _sync_handler))

    def test_async_callable_objects_accepted(self):
        class Handler:
            async def __call__(self, args, ctx):
                return {}

        class Applier:
            async def __call__(self, data):
                return {}

        registry = ToolRegistry()
        registry.register(ToolSpec("get_thing", ToolCategory.READ, Handler()))
        registry.register(ToolSpec("make_thing", ToolCategory.WRITE, Handler(), Applier()))
        assert len(registry) == 2

    def test_sync_callable_object_rejected(self):
        class Handler:
            def __call__(self, args, ctx):
                return {}

        with pytest.raises(RegistrationError, match="async"):
            ToolRegistry().register(ToolSpec("get_thing", ToolCategory.READ, Handler()))

    def test_write_tool_needs_applier(self):
        with pytest.raises(RegistrationError, match="need an applier"):
            ToolRegistry().register(ToolSpec("make_thing", ToolCategory.WRITE, _handler))

    def test_read_tool_cannot_have_applier(self):
        with pytest.raises(RegistrationError, match="only write tools"):
            ToolRegistry().register(ToolSpec("get_thing", ToolCategory.READ, _handler, _applier))

    def test_feedback_tool_must_be_write(self):
        with pytest.raises(RegistrationError, match="feedback tools"):
            ToolRegistry().register(
                ToolSpec("ask", ToolCategory.READ, _handler, awaits_feedback=True)
            )

    def test_feedback_tool_needs_no_applier(self):
        registry = ToolRegistry()
        registry.register(ToolSpec("ask", ToolCategory.WRITE, _handler, awaits_feedback=True))
        assert "ask" in registry

    def test_names_by_category(self):
        registry = ToolRegistry()
        registry.register(ToolSpec("get_thing", ToolCategory.READ, _handler))
        registry.register(ToolSpec("make_thing", ToolCategory.WRITE, _handler, _applier))

        assert registry.names(ToolCategory.WRITE) == frozenset({"make_thing"})
        assert registry.names() == frozenset({"get_thing", "make_thing"})


class TestDefaultRegistry:
    def test_builtin_tools(self):
        registry = create_default_registry(InstanceTree())

        assert len(registry) == 13
        assert DANGEROUS_OPERATIONS | FEEDBACK_OPERATIONS <= registry.names(ToolCategory.WRITE)
        assert registry.names(ToolCategory.PROJECT) == frozenset(
            {"update_project_context", "get_project_context"}
        )

    def test_default_config_matches_builtin_sets(self):
        config = LoopConfig()
        assert frozenset(config.dangerous_operations) == DANGEROUS_OPERATIONS
        assert frozenset(config.feedback_operations) == FEEDBACK_OPERATIONS
