"""Tests for mlx_bridge.cli module.

Commands run against a mock provider registered in the registry;
`main()` tests patch out environment-driven registration.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mlx_bridge.adapters.mlx_lm import MlxGenerationError, MlxServerError, RequestAborted
from mlx_bridge.config import Message
from mlx_bridge.registry import register_provider


# ─────────────────────────────────────────────────────────────────────
# FIXTURES
# ─────────────────────────────────────────────────────────────────────


@pytest.fixture
def mock_provider(clean_registry):
    """Register a mock provider for CLI tests."""
    provider = MagicMock()
    provider.provider_name = "mlx_lm"
    provider.api_base = "http://localhost:8000/"
    provider.model = "mlx-community/Llama-3.2-3B-Instruct-4bit"
    provider.context_length = 8192
    provider.supports_chat.return_value = True
    provider.supports_fim.return_value = False
    provider.wait_ready = AsyncMock()
    provider.aclose = AsyncMock()
    provider.calls = []

    async def stream_complete(prompt, signal=None, options=None):
        provider.calls.append((prompt, options))
        for chunk in ["Hel", "lo"]:
            yield chunk

    async def stream_chat(messages, signal=None, options=None):
        provider.calls.append((messages, options))
        for chunk in ["Hi", "!"]:
            yield Message(role="assistant", content=chunk)

    provider.stream_complete = stream_complete
    provider.stream_chat = stream_chat

    register_provider(provider, name="mlx_lm")
    return provider


def run_cli(argv: list[str]) -> int:
    """Run main() with registration and .env loading patched out."""
    from mlx_bridge.cli import main

    with patch("mlx_bridge.registry.register_default_provider"), \
            patch("dotenv.load_dotenv"):
        with pytest.raises(SystemExit) as exc_info:
            main(argv)
    return exc_info.value.code


# ─────────────────────────────────────────────────────────────────────
# INFO COMMAND
# ─────────────────────────────────────────────────────────────────────


class TestInfoCommand:
    def test_plain_output(self, mock_provider, capsys):
        code = run_cli(["info"])

        assert code == 0
        out = capsys.readouterr().out
        assert "mlx-community/Llama-3.2-3B-Instruct-4bit" in out
        assert "8192" in out
        mock_provider.wait_ready.assert_awaited_once()

    def test_json_output(self, mock_provider, capsys):
        code = run_cli(["info", "--json"])

        assert code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["provider"] == "mlx_lm"
        assert data["context_length"] == 8192
        assert data["supports_chat"] is True
        assert data["supports_fim"] is False


# ─────────────────────────────────────────────────────────────────────
# COMPLETE / CHAT COMMANDS
# ─────────────────────────────────────────────────────────────────────


class TestCompleteCommand:
    def test_streams_to_stdout(self, mock_provider, capsys):
        code = run_cli(["complete", "Once upon a time"])

        assert code == 0
        assert capsys.readouterr().out == "Hello\n"
        assert mock_provider.calls[0][0] == "Once upon a time"

    def test_sampling_options(self, mock_provider):
        run_cli([
            "complete", "x",
            "--max-tokens", "64",
            "--temperature", "0.1",
            "--top-p", "0.9",
            "--top-k", "20",
            "--stop", "\n\n",
            "--stop", "END",
        ])

        options = mock_provider.calls[0][1]
        assert options.max_tokens == 64
        assert options.temperature == 0.1
        assert options.top_p == 0.9
        assert options.top_k == 20
        assert options.stop == ["\n\n", "END"]

    def test_unset_temperature_left_to_adapter(self, mock_provider):
        run_cli(["complete", "x"])

        assert mock_provider.calls[0][1].temperature is None

    def test_server_error_exits_1(self, mock_provider, capsys):
        async def failing(prompt, signal=None, options=None):
            raise MlxServerError(400, "bad request")
            yield  # pragma: no cover

        mock_provider.stream_complete = failing

        code = run_cli(["complete", "x"])

        assert code == 1
        assert "bad request" in capsys.readouterr().err

    def test_generation_error_after_partial_output(self, mock_provider, capsys):
        async def partial(prompt, signal=None, options=None):
            yield "Hel"
            raise MlxGenerationError("MLX generation error: oom")

        mock_provider.stream_complete = partial

        code = run_cli(["complete", "x"])

        captured = capsys.readouterr()
        assert code == 1
        assert captured.out.startswith("Hel")
        assert "oom" in captured.err

    def test_abort_exits_130(self, mock_provider, capsys):
        async def aborted(prompt, signal=None, options=None):
            yield "Hel"
            raise RequestAborted("MLX request aborted")

        mock_provider.stream_complete = aborted

        code = run_cli(["complete", "x"])

        assert code == 130
        assert "Aborted" in capsys.readouterr().err

    def test_closes_provider_after_command(self, mock_provider):
        run_cli(["complete", "x"])

        mock_provider.aclose.assert_awaited_once()

    def test_closes_provider_after_error(self, mock_provider):
        async def failing(prompt, signal=None, options=None):
            raise MlxServerError(500, "boom")
            yield  # pragma: no cover

        mock_provider.stream_complete = failing

        assert run_cli(["complete", "x"]) == 1
        mock_provider.aclose.assert_awaited_once()


class TestChatCommand:
    def test_builds_messages_with_system(self, mock_provider, capsys):
        code = run_cli(["chat", "hello", "--system", "be brief"])

        assert code == 0
        assert capsys.readouterr().out == "Hi!\n"
        messages = mock_provider.calls[0][0]
        assert [(m.role, m.content) for m in messages] == [
            ("system", "be brief"),
            ("user", "hello"),
        ]

    def test_without_system(self, mock_provider):
        run_cli(["chat", "hello"])

        messages = mock_provider.calls[0][0]
        assert [m.role for m in messages] == ["user"]


# ─────────────────────────────────────────────────────────────────────
# ENTRY POINT
# ─────────────────────────────────────────────────────────────────────


class TestEntryPoint:
    def test_no_command_prints_help(self, capsys):
        from mlx_bridge.cli import main

        with pytest.raises(SystemExit) as exc_info:
            main([])

        assert exc_info.value.code == 1
        assert "usage" in capsys.readouterr().out.lower()

    def test_cli_flags_passed_to_registration(self, mock_provider):
        from mlx_bridge.cli import main

        with patch("mlx_bridge.registry.register_default_provider") as register, \
                patch("dotenv.load_dotenv"):
            with pytest.raises(SystemExit):
                main(["--api-base", "http://mac-studio:8080/", "--api-key", "k", "info"])

        register.assert_called_once_with(api_base="http://mac-studio:8080/", api_key="k")

    def test_keyboard_interrupt_exits_130(self, mock_provider, capsys):
        from mlx_bridge.cli import main

        def interrupted(coro):
            coro.close()
            raise KeyboardInterrupt

        with patch("mlx_bridge.registry.register_default_provider"), \
                patch("dotenv.load_dotenv"), \
                patch.object(asyncio, "run", side_effect=interrupted):
            with pytest.raises(SystemExit) as exc_info:
                main(["complete", "x"])

        assert exc_info.value.code == 130
