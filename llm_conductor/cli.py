"""Command-line entry point: send a prompt, refine one, or show status.

Usage:
    python -m llm_conductor send "Summarize this" --provider openai
    python -m llm_conductor send "Write a haiku" --stream
    python -m llm_conductor refine --prompt p.txt --response r.txt --spec s.txt
    python -m llm_conductor status
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from llm_conductor.core.config import Settings
from llm_conductor.core.logging import setup_logging
from llm_conductor.gateway.errors import DispatchError
from llm_conductor.gateway.manager import LlmManager
from llm_conductor.gateway.types import GenerationParams, GenerationRequest

logger = logging.getLogger("llm_conductor.cli")


def _read_arg(value: str) -> str:
    """Treat ``@path`` or an existing file path as file contents, else as literal text."""
    if value.startswith("@"):
        return Path(value[1:]).read_text(encoding="utf-8")
    path = Path(value)
    if path.is_file():
        return path.read_text(encoding="utf-8")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="llm-conductor", description="Dispatch prompts to LLM providers")
    sub = parser.add_subparsers(dest="command", required=True)

    send = sub.add_parser("send", help="Send a prompt and print the completion")
    send.add_argument("prompt", help="Prompt text, or @file")
    send.add_argument("--system", default="", help="System prompt text, or @file")
    send.add_argument("--provider", default=None, help="Use only this provider (no fallback)")
    send.add_argument("--task", default="", help="Task name used for provider routing")
    send.add_argument("--label", default="cli", help="Label shown in logs")
    send.add_argument("--temperature", type=float, default=None)
    send.add_argument("--max-tokens", type=int, default=None)
    send.add_argument("--stream", action="store_true", help="Print output chunks as they arrive")
    send.add_argument("--json", action="store_true", help="Print the full result as JSON")

    refine = sub.add_parser("refine", help="Ask a model to improve a prompt")
    refine.add_argument("--prompt", required=True, help="Original prompt text, or @file")
    refine.add_argument("--response", required=True, help="Failed response text, or @file")
    refine.add_argument("--spec", required=True, help="Desired output specification, or @file")

    sub.add_parser("status", help="Show configured providers and rate limits")
    return parser


async def _send(manager: LlmManager, args: argparse.Namespace) -> int:
    request = GenerationRequest(
        prompt=_read_arg(args.prompt),
        system_prompt=_read_arg(args.system) if args.system else "",
        params=GenerationParams(temperature=args.temperature, max_tokens=args.max_tokens),
        label=args.label,
        task_name=args.task,
    )

    if args.stream:
        stream = manager.stream_request(request, provider=args.provider)
        async for chunk in stream:
            sys.stdout.write(chunk)
            sys.stdout.flush()
        result = await stream.result()
        sys.stdout.write("\n")
    else:
        result = await manager.send_request(request, provider=args.provider)
        if not args.json:
            print(result.text)

    if args.json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    logger.info(
        "Served by %s/%s in %dms (%d call(s), %d tokens)",
        result.provider,
        result.model,
        result.latency_ms,
        result.attempts,
        result.usage.total_tokens,
    )
    return 0


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    manager = LlmManager.from_settings(settings)
    try:
        if args.command == "status":
            print(json.dumps(manager.get_status(), indent=2))
            return 0
        if args.command == "refine":
            improved = await manager.refine_prompt(
                _read_arg(args.prompt),
                _read_arg(args.response),
                _read_arg(args.spec),
            )
            print(improved)
            return 0
        return await _send(manager, args)
    except DispatchError as e:
        logger.error("%s", e)
        return 1
    finally:
        await manager.aclose()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    setup_logging(settings)
    return asyncio.run(_run(args, settings))


if __name__ == "__main__":
    sys.exit(main())
