"""CLI entry point for mlx-bridge.

Thin terminal front end over MlxLmAdapter, for checking a server by hand.

Entry point:
    mlx-bridge info [--json]
    mlx-bridge complete "Once upon a time" [--max-tokens N] [--temperature T]
    mlx-bridge chat "Hello" [--system "You are terse."]
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# ARGUMENT PARSING
# ─────────────────────────────────────────────────────────────────────


def _add_sampling_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--max-tokens", type=int, default=None, help="Max tokens to generate")
    parser.add_argument("--temperature", type=float, default=None, help="Sampling temperature (default 0.7)")
    parser.add_argument("--top-p", type=float, default=None, help="Nucleus sampling mass")
    parser.add_argument("--top-k", type=int, default=None, help="Top-k sampling cutoff")
    parser.add_argument("--stop", action="append", default=None, help="Stop sequence (repeatable)")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mlx-bridge",
        description="Stream completions from an MLX-LM server.",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--api-base", default=None, help="Server base URL (env: MLX_API_BASE)")
    parser.add_argument("--api-key", default=None, help="Bearer token (env: MLX_API_KEY)")
    sub = parser.add_subparsers(dest="command")

    # info
    info_p = sub.add_parser("info", help="Show the model the server reports")
    info_p.add_argument(
        "--json", action="store_true", dest="json_output", help="JSON output"
    )

    # complete
    complete_p = sub.add_parser("complete", help="Stream a raw completion")
    complete_p.add_argument("prompt", help="Prompt text")
    _add_sampling_args(complete_p)

    # chat
    chat_p = sub.add_parser("chat", help="Stream a single-turn chat reply")
    chat_p.add_argument("message", help="User message")
    chat_p.add_argument("--system", default=None, help="System message")
    _add_sampling_args(chat_p)

    return parser


def _options_from_args(args: argparse.Namespace):
    from mlx_bridge.adapters.schema import CompletionOptions

    return CompletionOptions(
        max_tokens=args.max_tokens,
        temperature=args.temperature,
        top_p=args.top_p,
        top_k=args.top_k,
        stop=args.stop,
    )


# ─────────────────────────────────────────────────────────────────────
# COMMANDS
# ─────────────────────────────────────────────────────────────────────


async def _cmd_info(json_output: bool = False) -> int:
    """Print server-reported model metadata. Returns exit code."""
    from mlx_bridge.registry import get_provider

    provider = get_provider()
    await provider.wait_ready()

    if json_output:
        json.dump(
            {
                "provider": provider.provider_name,
                "api_base": provider.api_base,
                "model": provider.model,
                "context_length": provider.context_length,
                "supports_chat": provider.supports_chat(),
                "supports_fim": provider.supports_fim(),
            },
            sys.stdout,
            indent=2,
        )
        sys.stdout.write("\n")
    else:
        print(f"{provider.model} (context length {provider.context_length})")
    return 0


async def _cmd_complete(prompt: str, options) -> int:
    from mlx_bridge.registry import get_provider

    provider = get_provider()
    async for chunk in provider.stream_complete(prompt, options=options):
        sys.stdout.write(chunk)
        sys.stdout.flush()
    sys.stdout.write("\n")
    return 0


async def _cmd_chat(message: str, system: Optional[str], options) -> int:
    from mlx_bridge.config import Message
    from mlx_bridge.registry import get_provider

    provider = get_provider()
    messages = []
    if system:
        messages.append(Message(role="system", content=system))
    messages.append(Message(role="user", content=message))

    async for turn in provider.stream_chat(messages, options=options):
        sys.stdout.write(turn.get_text())
        sys.stdout.flush()
    sys.stdout.write("\n")
    return 0


async def _run(args: argparse.Namespace) -> int:
    """Dispatch a parsed command, mapping adapter errors to exit codes."""
    from mlx_bridge.adapters.mlx_lm import MlxLmError, RequestAborted
    from mlx_bridge.registry import get_provider

    try:
        if args.command == "info":
            return await _cmd_info(json_output=args.json_output)
        if args.command == "complete":
            return await _cmd_complete(args.prompt, _options_from_args(args))
        if args.command == "chat":
            return await _cmd_chat(args.message, args.system, _options_from_args(args))
    except RequestAborted:
        print("\nAborted.", file=sys.stderr)
        return 130
    except MlxLmError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except httpx.HTTPError as e:
        print(f"Error: could not reach MLX server: {e}", file=sys.stderr)
        return 1
    finally:
        # Stop a startup probe still in flight before the loop closes
        await get_provider().aclose()
    return 1


# ─────────────────────────────────────────────────────────────────────
# ENTRY POINT
# ─────────────────────────────────────────────────────────────────────


def main(argv: Optional[list[str]] = None):
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Logging
    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(name)s %(message)s", stream=sys.stderr)

    # Load env
    from dotenv import load_dotenv
    load_dotenv()

    from mlx_bridge.registry import register_default_provider
    provider = register_default_provider(api_base=args.api_base, api_key=args.api_key)
    logger.debug("Using %s provider at %s", provider.provider_name, provider.api_base)

    try:
        code = asyncio.run(_run(args))
    except KeyboardInterrupt:
        print("\nAborted.", file=sys.stderr)
        code = 130

    sys.exit(code)


if __name__ == "__main__":
    main()
