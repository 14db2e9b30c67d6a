# src/goalcoach/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..cli.commands import render_list
from ..core.errors import PlannerError
from ..core.state import AppState
from ..llm.client import friendly_llm_error_message

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("/exit", "/quit")


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}")


async def _read_line(prompt: str) -> str:
    # input() blocks; keep the event loop free for snapshot delivery.
    return await asyncio.to_thread(input, prompt)


async def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started (offline_coach=%s).", state.offline_coach)
    planner = state.planner

    def emit(text: str) -> None:
        print(f"[{_ts_local()}] {text}", flush=True)

    _print_ts("[CONSOLE] Type a task to add it, or use /help for commands. Use /exit to quit.\n")

    if planner.loading:
        try:
            await planner.task_store.wait_for_snapshot(timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Initial task snapshot did not arrive in time.")

    if planner.goal is None:
        _print_ts("No goal yet. Set one with /goal <text>.")
    else:
        _print_ts(f"Your goal: {planner.goal.text}")
    print(render_list(state))

    while True:
        try:
            user_input = (await _read_line(">>> ")).strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in EXIT_COMMANDS:
            logger.info("Console exit command received.")
            break

        # Plain text adds a task, like the input form.
        line = user_input if user_input.startswith("/") else f"/add {user_input}"

        try:
            reply = await command_registry.handle(state, line, emit=emit)
        except PlannerError as e:
            reply = f"[ERROR] {friendly_llm_error_message(e)}"
        except Exception:
            logger.exception("Command handler crashed.")
            reply = "Internal error while handling a command."

        if reply is not None:
            print(f"[{_ts_local()}] {reply}")

    logger.info("Console connector finished.")
