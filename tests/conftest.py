"""Pytest fixtures for Luxloop tests."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from luxloop.agent import AgenticLoop, AgentSession, create_session
from luxloop.config import LuxloopConfig, reset_config
from luxloop.memory import MemoryStore
from luxloop.models import MockModel, ModelResponse
from luxloop.tools.builtin import InstanceTree


@pytest.fixture(autouse=True)
def _fresh_config():
    """Every test starts from built-in defaults."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config() -> LuxloopConfig:
    """Default config with zero retry delay so tests never sleep."""
    cfg = LuxloopConfig()
    cfg.resilience.retry_backoff_ms = [0]
    return cfg


@pytest.fixture
def tree() -> InstanceTree:
    """Instance tree with a folder and one script under Workspace."""
    tree = InstanceTree()
    tree.create("Workspace", "Level", "Folder")
    tree.create(
        "ServerScriptService",
        "Main",
        "Script",
        source='local Players = game:GetService("Players")\nprint("ready")\n',
    )
    return tree


@pytest.fixture
def session(tree: InstanceTree, config: LuxloopConfig) -> AgentSession:
    return create_session("test-conv", tree, config, project_store=MemoryStore())


@pytest.fixture
def make_loop(session: AgentSession) -> Callable[..., tuple[AgenticLoop, MockModel]]:
    """Build a loop over `session` driven by a scripted model."""

    def _make(*responses: ModelResponse) -> tuple[AgenticLoop, MockModel]:
        model = MockModel(list(responses))
        return AgenticLoop(model, session, summarize=False), model

    return _make
