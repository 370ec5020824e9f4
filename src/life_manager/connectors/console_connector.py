# src/life_manager/connectors/console_connector.py

from __future__ import annotations

import logging
import sys
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..tasks.task_api import sync_enabled

logger = logging.getLogger(__name__)

EXIT_COMMANDS = frozenset({"/exit", "/quit"})
PROMPT = ">>> "


def _stamp() -> str:
    return datetime.now().astimezone().strftime("%H:%M:%S")


def _say(text: str) -> None:
    print(f"[{_stamp()}] {text}", flush=True)


def _echo_input(line: str) -> None:
    """On a TTY, replace the raw prompt line with a timestamped copy."""
    if not sys.stdout.isatty():
        return
    try:
        sys.stdout.write(f"\033[1A\033[2K\r[{_stamp()}] {PROMPT}{line}\n")
        sys.stdout.flush()
    except OSError:
        pass


def _banner(state: AppState) -> str:
    if sync_enabled(state):
        google = "Google sync on"
    elif getattr(state.settings, "google_configured", False):
        google = "Google not connected (/connect)"
    else:
        google = "Google not configured, local only"
    return f"{state.settings.app_name}: {google}. /start plans today, /help lists commands, /exit quits."


def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started (user_id=%s).", state.engine.user_id)
    _say(_banner(state))

    while True:
        try:
            line = input(PROMPT).strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not line:
            continue
        _echo_input(line)

        if line.lower() in EXIT_COMMANDS:
            break

        try:
            reply = command_registry.handle(state, line, emit=_say)
        except Exception:
            logger.exception("Command %r crashed.", line.split()[0])
            reply = "Internal error while handling a command."

        _say(reply if reply is not None else "Not a command. Use /help to list available commands.")

    logger.info("Console connector finished.")
