"""Simple CLI REPL for the analytics assistant.

Usage:
    python -m src.cli

Lines starting with ``/`` run a follow-up action, e.g. ``/find_anomalies``.
"""

import asyncio
import logging
import sys

from src.api.main import build_engine
from src.assistant.engine import AssistantEngine
from src.assistant.models import AssistantResponse, ConversationContext
from src.config import get_settings

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)


def _print_response(response: AssistantResponse) -> None:
    print(f"\nAssistant: {response.text}\n")
    if response.actions:
        print("Actions: " + ", ".join(f"/{a.action_id} ({a.label})" for a in response.actions))
        print()


async def _turn(engine: AssistantEngine, line: str, context: ConversationContext) -> AssistantResponse:
    if line.startswith("/"):
        return await engine.execute_action(line[1:], context)
    return await engine.process_message(line, context)


def main() -> None:
    """Run the interactive CLI loop."""
    print("Analytics Assistant (type 'quit' or Ctrl+C to exit)")
    print("=" * 50)

    try:
        engine = build_engine()
    except Exception as e:
        print(f"Failed to build engine: {e}")
        print("Check your .env file has a valid GRAFANA_URL.")
        sys.exit(1)

    context = ConversationContext(current_time_range=get_settings().default_time_range)

    while True:
        try:
            line = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\nGoodbye!")
            break

        if not line:
            continue
        if line.lower() in ("quit", "exit", "q"):
            print("Goodbye!")
            break

        _print_response(asyncio.run(_turn(engine, line, context)))


if __name__ == "__main__":
    main()
