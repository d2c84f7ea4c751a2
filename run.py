"""Minimal terminal loop over the operation engine.

Usage (example):
    python run.py [player_id]
Then type commands:
    ops
    scan 10.0.0.5
    connect 10.0.0.5
    rm /var/log/auth.log
"""
from __future__ import annotations
import sys

from game.bootstrap import build_engine, configure_logging
from opsengine.commands import handle_command
from opsengine.persistence import SaveError

PROMPT = "> "


def _print_result(result: dict) -> None:
    for line in result["lines"]:
        print(line)
    for hint in result["hints"]:
        print(f"  hint: {hint}")


def terminal_loop(player_id: str) -> None:
    engine = build_engine()
    activated = engine.open_session(player_id)
    print(f"-- Session opened for {player_id}. Type 'help' for the command list. --")
    if activated:
        print(f"{len(activated)} new message(s) in your inbox.")
    while True:
        try:
            line = input(PROMPT).strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break
        if not line:
            continue
        if line.lower() in ("quit", "exit"):
            break
        try:
            _print_result(handle_command(engine, player_id, line))
        except SaveError as e:
            print(f"[save error] {e}")
    print("Session closed.")


def main() -> None:
    configure_logging()
    player_id = sys.argv[1] if len(sys.argv) > 1 else "operator"
    terminal_loop(player_id)


if __name__ == "__main__":
    main()
