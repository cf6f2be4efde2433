"""Tests for the soulcanvas CLI.

Commands run through click's CliRunner; the service is replaced where a
command would reach the network.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from click.testing import CliRunner
from rich.console import Console

from soulcanvas import cli
from soulcanvas.core.errors import APIError, CancellationError
from soulcanvas.service import GenerationResult


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Avoid table wrapping in captured output."""
    monkeypatch.setattr(cli, "console", Console(width=200))


@pytest.fixture
def settings(monkeypatch, test_settings):
    monkeypatch.setattr(cli, "get_settings", lambda: test_settings)
    return test_settings


@pytest.fixture
def sketch_file(tmp_path):
    path = tmp_path / "cat.png"
    path.write_bytes(b"\x89PNG\r\n\x1a\nfake")
    return path


def fake_service(monkeypatch, generate):
    service = MagicMock()
    service.generate = generate
    service.__aenter__ = AsyncMock(return_value=service)
    service.__aexit__ = AsyncMock(return_value=None)
    monkeypatch.setattr(cli.ImageGenerationService, "from_settings", MagicMock(return_value=service))
    return service


@pytest.mark.fast
class TestNodesCommand:
    """Tests for `soulcanvas nodes`."""

    def test_lists_nodes(self, runner, settings):
        result = runner.invoke(cli.main, ["nodes"])
        assert result.exit_code == 0
        assert "kie.ai" in result.output
        assert "OpenRouter" in result.output

    def test_warns_without_keys(self, runner, monkeypatch, test_settings):
        keyless = test_settings.model_copy(update={"KIE_API_KEY": None, "OPENROUTER_API_KEY": None})
        monkeypatch.setattr(cli, "get_settings", lambda: keyless)

        result = runner.invoke(cli.main, ["nodes"])

        assert result.exit_code == 0
        assert "No enabled nodes" in result.output


@pytest.mark.fast
class TestGenerateCommand:
    """Tests for `soulcanvas generate`."""

    def test_read_sketch(self, sketch_file):
        assert cli.read_sketch(sketch_file).startswith("data:image/png;base64,")

    def test_generate_success(self, runner, settings, monkeypatch, sketch_file):
        result_model = GenerationResult(
            image_url="https://img/ok.png",
            sketch="data:image/png;base64,AAAA",
            prompt="watercolor",
            style_prompt="watercolor",
            node_id="openrouter",
            node_name="OpenRouter",
        )
        service = fake_service(monkeypatch, AsyncMock(return_value=result_model))

        result = runner.invoke(cli.main, ["generate", str(sketch_file), "--style", "watercolor"])

        assert result.exit_code == 0, result.output
        assert "https://img/ok.png" in result.output
        assert "OpenRouter" in result.output
        args, kwargs = service.generate.call_args
        assert args[0].startswith("data:image/png;base64,")
        assert args[1] == "watercolor"
        assert kwargs["token"] is not None

    def test_generate_failure(self, runner, settings, monkeypatch, sketch_file):
        fake_service(monkeypatch, AsyncMock(side_effect=APIError("no image", node_id="openrouter")))

        result = runner.invoke(cli.main, ["generate", str(sketch_file), "--style", "oil"])

        assert result.exit_code == 1
        assert "Generation failed" in result.output

    def test_generate_cancelled_is_quiet(self, runner, settings, monkeypatch, sketch_file):
        fake_service(monkeypatch, AsyncMock(side_effect=CancellationError("Cancelled by user")))

        result = runner.invoke(cli.main, ["generate", str(sketch_file), "--style", "oil"])

        assert result.exit_code == 130
        assert "Cancelled by user" in result.output
        assert "Generation failed" not in result.output

    def test_rejects_unsupported_sketch(self, runner, settings, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("not an image")

        result = runner.invoke(cli.main, ["generate", str(path), "--style", "oil"])

        assert result.exit_code != 0
        assert "Unsupported sketch type" in result.output
