"""
Pytest configuration and fixtures for SoulCanvas tests.

Everything here is offline: HTTP goes through httpx.MockTransport, adapters
are scripted fakes and backoff/poll sleeps are replaced by a recorder.
"""
import logging

import pytest

from soulcanvas.config import Settings
from soulcanvas.core import retry as retry_module
from soulcanvas.core.adapters import AdapterPool, ImageAdapter
from soulcanvas.core.adapters import jobs as jobs_module
from soulcanvas.core.health import HealthTracker
from soulcanvas.core.nodes import Node, NodeMode, NodeRegistry

logger = logging.getLogger(__name__)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "fast: Fast unit tests (no external API calls)"
    )
    config.addinivalue_line(
        "markers", "slow: Slow tests (long-running operations)"
    )


# ============================================
# Settings & Nodes
# ============================================

@pytest.fixture
def test_settings() -> Settings:
    """Settings with credentials for both nodes and no .env file."""
    return Settings(
        _env_file=None,
        KIE_API_KEY="kie-test-key",
        OPENROUTER_API_KEY="sk-or-test-key",
        S3_REGION=None,
        S3_BUCKET=None,
        S3_ACCESS_KEY_ID=None,
        S3_SECRET_ACCESS_KEY=None,
    )


def make_node(node_id: str, priority: int, mode: NodeMode = NodeMode.SYNC, **overrides) -> Node:
    """Build a test node."""
    data = {
        "id": node_id,
        "name": node_id.upper(),
        "base_url": f"https://{node_id}.example.com/api",
        "health_path": "/health",
        "priority": priority,
        "mode": mode,
        "model": f"{node_id}-image-model",
    }
    data.update(overrides)
    return Node(**data)


@pytest.fixture
def node_factory():
    """Factory for test nodes."""
    return make_node


@pytest.fixture
def node_a() -> Node:
    return make_node("a", 1)


@pytest.fixture
def node_b() -> Node:
    return make_node("b", 2)


@pytest.fixture
def registry(node_a, node_b) -> NodeRegistry:
    """Two enabled nodes with credentials."""
    return NodeRegistry([node_b, node_a], {"a": "key-a", "b": "key-b"})


# ============================================
# Scripted adapters
# ============================================

class ScriptedAdapter(ImageAdapter):
    """Adapter that replays scripted generate/probe outcomes.

    Each outcome is either a value to return or an exception to raise. The
    last outcome repeats once the script runs out.
    """

    mode = NodeMode.SYNC

    def __init__(self, node, results=None, probes=None):
        super().__init__(node, api_key="test-key")
        self.results = list(results or ["https://img/ok.png"])
        self.probes = list(probes or [12.5])
        self.generate_calls = 0
        self.probe_calls = 0

    @staticmethod
    def _next(script):
        outcome = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def generate(self, request):
        self.generate_calls += 1
        if request.token is not None:
            request.token.raise_if_cancelled()
        return self._next(self.results)

    async def probe(self):
        self.probe_calls += 1
        return self._next(self.probes)


@pytest.fixture
def scripted_adapter():
    """Factory for scripted adapters."""
    return ScriptedAdapter


@pytest.fixture
def adapter_pool(registry) -> AdapterPool:
    """Empty pool; tests register scripted adapters."""
    return AdapterPool(registry)


@pytest.fixture
def tracker(registry, adapter_pool) -> HealthTracker:
    return HealthTracker(registry, adapter_pool)


# ============================================
# Timers
# ============================================

class SleepRecorder:
    """Replacement for cancellable_sleep that records delays without waiting."""

    def __init__(self):
        self.delays = []
        self.hooks = []

    async def __call__(self, seconds, token=None):
        self.delays.append(seconds)
        for hook in self.hooks:
            hook(seconds)
        if token is not None:
            token.raise_if_cancelled()


@pytest.fixture
def no_sleep(monkeypatch) -> SleepRecorder:
    """Patch retry backoff and job polling sleeps."""
    recorder = SleepRecorder()
    monkeypatch.setattr(retry_module, "cancellable_sleep", recorder)
    monkeypatch.setattr(jobs_module, "cancellable_sleep", recorder)
    return recorder

