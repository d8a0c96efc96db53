"""CLI entry point for Mnemo.

``chat`` is a terminal chat against the web-mode agent for development;
``briefing`` runs the morning briefing job once (a scheduler calls this).
For production chat, use the FastAPI server (mnemo/server.py).

Usage:
    python -m mnemo.main chat --user-id user_123            # quiet
    python -m mnemo.main chat --user-id user_123 --debug    # shows API calls
    python -m mnemo.main briefing
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from langchain_core.messages import HumanMessage

from mnemo.runtime import Runtime, open_runtime

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("mnemo").setLevel(logging.DEBUG if debug else logging.INFO)


def _print_banner(user_id: str) -> None:
    print("\n" + "=" * 60)
    print("  Mnemo - CLI Chat")
    print("=" * 60)
    print(f"  Chatting as {user_id}.")
    print("  Type your message and press Enter. 'quit' to exit.")
    print("=" * 60 + "\n")


async def _chat_loop(runtime: Runtime, user_id: str) -> None:
    while True:
        try:
            user_input = (await asyncio.to_thread(input, "You: ")).strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue
        if user_input.lower() in ("exit", "quit", "q"):
            print("\nGoodbye!")
            break

        try:
            reply = await runtime.assistant.reply(
                user_id, [HumanMessage(content=user_input)], channel="web",
            )
        except Exception as e:
            logger.exception("Error processing message")
            print(f"\nMnemo: Sorry, something went wrong: {e}\n")
            continue

        print(f"\nMnemo: {reply.text or '(no reply)'}\n")


async def run_chat(user_id: str) -> None:
    async with open_runtime() as runtime:
        thread_id = await runtime.db.get_or_create_thread_id(user_id)
        logger.info("Chatting on thread %s", thread_id)
        _print_banner(user_id)
        await _chat_loop(runtime, user_id)


async def run_briefing() -> int:
    """Send today's briefings.  Returns the number of failed deliveries."""
    async with open_runtime() as runtime:
        report = await runtime.briefing.run()
    print(
        f"Briefings sent: {len(report.sent)}, skipped: {len(report.skipped)}, "
        f"failed: {len(report.failed)}"
    )
    return len(report.failed)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Mnemo executive assistant")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    chat = commands.add_parser("chat", help="Chat with the assistant in the terminal")
    chat.add_argument("--user-id", required=True, help="User to chat as")
    commands.add_parser("briefing", help="Send the morning briefing to every eligible user")

    args = parser.parse_args(argv)
    _configure_logging(debug=args.debug)

    if args.command == "chat":
        asyncio.run(run_chat(args.user_id))
        return 0
    return 1 if asyncio.run(run_briefing()) else 0


if __name__ == "__main__":
    raise SystemExit(main())
