"""Pytest configuration and fixtures."""

import pytest

from conductor.config.manager import ConfigManager
from conductor.config.schema import ConductorConfig, CoordinatorConfig
from conductor.execution.protocol import Reviewer, Worker
from conductor.orchestration.models import (
    AgentContext,
    AgentResult,
    CodeChange,
    CodePatch,
    FileSnapshot,
    ReviewResult,
    WorkerRole,
)

THEME_CSS = ".header { color: red; }\n.footer { color: red; }\n"
HEADER_LIQUID = "<header>\n  {{ shop.name }}\n</header>\n"


class ScriptedWorker(Worker):
    """Worker driven by ``behaviour(task, tools, attempt) -> AgentResult``."""

    def __init__(self, role: WorkerRole, behaviour):
        self._role = role
        self.behaviour = behaviour
        self.tasks = []

    @property
    def role(self) -> WorkerRole:
        return self._role

    async def execute(self, task, tools):
        self.tasks.append(task)
        return await self.behaviour(task, tools, len(self.tasks))


class StaticReviewer(Reviewer):
    """Reviewer returning a fixed result, or raising it if it is an exception."""

    def __init__(self, outcome):
        self.outcome = outcome
        self.seen = []

    async def review(self, changes):
        self.seen.append(list(changes))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def css_change(search=".header { color: red; }", replace=".header { color: blue; }", confidence=0.9):
    return CodeChange(
        file_id="theme.css",
        file_name="theme.css",
        original_content=THEME_CSS,
        proposed_content=THEME_CSS.replace(search, replace),
        patches=[CodePatch(search, replace)],
        reasoning="recolor",
        confidence=confidence,
    )


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keep user and project config files out of every test."""
    ConfigManager.reset()
    monkeypatch.setattr("conductor.config.manager.get_config_file", lambda: tmp_path / "no-config.toml")
    monkeypatch.chdir(tmp_path)
    yield
    ConfigManager.reset()


@pytest.fixture
def fast_config():
    """Config with millisecond backoff and short timeouts."""
    return ConductorConfig(
        coordinator=CoordinatorConfig(retry_delay_ms=1, tool_call_timeout_s=1.0, execution_timeout_s=5.0)
    )


@pytest.fixture
def theme_context():
    return AgentContext(
        files=(
            FileSnapshot("theme.css", "theme.css", THEME_CSS),
            FileSnapshot("header.liquid", "header.liquid", HEADER_LIQUID),
        )
    )


@pytest.fixture
def make_worker():
    return ScriptedWorker


@pytest.fixture
def make_reviewer():
    return StaticReviewer


@pytest.fixture
def edits_css():
    """Behaviour that proposes one patch to theme.css."""

    async def behaviour(task, tools, attempt):
        return AgentResult(role=task.role, success=True, changes=[css_change()], analysis="recolored")

    return behaviour


@pytest.fixture
def approving_review():
    return ReviewResult(approved=True, summary="Looks good")


@pytest.fixture
def make_css_change():
    return css_change
