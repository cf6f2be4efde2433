"""Tests for soulcanvas.service.

Covers:
    - wiring from settings
    - generate() results and display prompts
    - end-to-end failover through the real adapters (mock HTTP)
    - startup probing and cleanup
"""

import re

import httpx
import pytest

from soulcanvas.core.adapters import (
    AdapterPool,
    ChatCompletionsAdapter,
    JobQueueAdapter,
    create_adapter,
)
from soulcanvas.core.errors import NetworkError, ValidationError
from soulcanvas.core.health import SelectionStrategy
from soulcanvas.core.nodes import NodeMode
from soulcanvas.service import (
    GenerationResult,
    ImageGenerationService,
    display_prompt,
    generation_id,
)

SKETCH = "data:image/png;base64,iVBORw0KGgo="
IMAGE_URL = "https://img/ok.png"


def chat_ok(request: httpx.Request) -> httpx.Response:
    if request.method == "GET":
        return httpx.Response(200, json={"data": {"total_credits": 10}})
    return httpx.Response(
        200,
        json={"choices": [{"message": {"images": [{"image_url": {"url": IMAGE_URL}}]}}]},
    )


@pytest.fixture
def service(test_settings):
    return ImageGenerationService.from_settings(test_settings)


@pytest.mark.fast
class TestHelpers:
    """Tests for module helpers."""

    def test_generation_id_format(self):
        assert re.fullmatch(r"gen_\d{13}_[0-9a-f]{9}", generation_id())

    def test_generation_ids_unique(self):
        assert generation_id() != generation_id()

    def test_display_prompt(self):
        assert display_prompt("watercolor") == "watercolor"
        assert display_prompt("watercolor", "a cat") == "a cat (style: watercolor)"


@pytest.mark.fast
class TestServiceWiring:
    """Tests for ImageGenerationService.from_settings()."""

    def test_from_settings(self, service):
        assert [node.id for node in service.registry.enabled()] == ["kie", "openrouter"]
        assert service.uploader is None
        assert service.tracker.strategy == SelectionStrategy.PRIORITY

    def test_adapters_match_node_mode(self, service):
        assert isinstance(service.adapters.get(service.registry.get("kie")), JobQueueAdapter)
        assert isinstance(service.adapters.get(service.registry.get("openrouter")), ChatCompletionsAdapter)

    def test_adapter_pool_caches(self, service):
        node = service.registry.get("openrouter")
        assert service.adapters.get(node) is service.adapters.get(node)

    def test_create_adapter_uses_mode(self, test_settings, node_factory):
        node = node_factory("x", 1, mode=NodeMode.ASYNC_JOB)
        adapter = create_adapter(node, "key", test_settings)
        assert isinstance(adapter, JobQueueAdapter)
        assert adapter.uploader is None
        assert adapter.poll_timeout == test_settings.POLL_TIMEOUT

    def test_pool_requires_credentials(self, node_a, test_settings):
        from soulcanvas.core.nodes import NodeRegistry

        registry = NodeRegistry([node_a], {})
        pool = AdapterPool(registry, settings=test_settings)
        with pytest.raises(ValidationError):
            pool.get(node_a)


@pytest.mark.fast
class TestGenerate:
    """Tests for ImageGenerationService.generate()."""

    @pytest.mark.asyncio
    async def test_generate_result(self, service, scripted_adapter):
        for node in service.registry.enabled():
            service.adapters.register(node.id, scripted_adapter(node, results=[IMAGE_URL]))

        result = await service.generate(SKETCH, "watercolor", "a cat")

        assert isinstance(result, GenerationResult)
        assert result.image_url == IMAGE_URL
        assert result.node_id == "kie"
        assert result.node_name == "kie.ai"
        assert result.sketch == SKETCH
        assert result.prompt == "a cat (style: watercolor)"
        assert result.style_prompt == "watercolor"
        assert result.id.startswith("gen_")
        assert result.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_missing_uploader_fails_over_to_chat(self, service, test_settings, no_sleep):
        """Test the job node fails fast without an uploader and the chat node answers."""
        openrouter = service.registry.get("openrouter")
        service.adapters.register(
            "openrouter",
            ChatCompletionsAdapter.from_settings(
                openrouter, "sk-or-test-key", test_settings, transport=httpx.MockTransport(chat_ok)
            ),
        )

        result = await service.generate(SKETCH, "ukiyo-e")

        assert result.node_id == "openrouter"
        assert result.image_url == IMAGE_URL
        assert service.health()["kie"].consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_single_node_retry_budget_surfaces_last_error(self, test_settings, no_sleep):
        """Test one node failing every internal attempt raises its final retryable error."""
        settings = test_settings.model_copy(update={"KIE_API_KEY": None})
        service = ImageGenerationService.from_settings(settings)
        requests = []

        def overloaded(request):
            requests.append(request)
            return httpx.Response(503, text=f"overloaded #{len(requests)}")

        node = service.registry.get("openrouter")
        service.adapters.register(
            "openrouter",
            ChatCompletionsAdapter.from_settings(
                node, "sk-or-test-key", settings, transport=httpx.MockTransport(overloaded)
            ),
        )

        with pytest.raises(NetworkError) as exc_info:
            await service.generate(SKETCH, "oil")

        assert len(requests) == 3
        assert "overloaded #3" in exc_info.value.message
        await service.close()


@pytest.mark.fast
class TestLifecycle:
    """Tests for initialize(), select_node() and close()."""

    @pytest.mark.asyncio
    async def test_initialize_probes_all(self, service, scripted_adapter):
        adapters = {}
        for node in service.registry.enabled():
            adapters[node.id] = scripted_adapter(node, probes=[30.0])
            service.adapters.register(node.id, adapters[node.id])

        records = await service.initialize()

        assert set(records) == {"kie", "openrouter"}
        assert all(adapter.probe_calls == 1 for adapter in adapters.values())
        assert service.health()["kie"].latency_ms == 30.0

    @pytest.mark.asyncio
    async def test_select_node(self, service, scripted_adapter):
        for node in service.registry.enabled():
            service.adapters.register(node.id, scripted_adapter(node))

        node = await service.select_node("priority")
        assert node.id == "kie"

    @pytest.mark.asyncio
    async def test_context_manager_closes_adapters(self, test_settings):
        async with ImageGenerationService.from_settings(test_settings) as service:
            adapter = service.adapters.get(service.registry.get("openrouter"))
            client = adapter.client
        assert client.is_closed
