"""Terminal advisor for Pylos: recommends actions for your side and tracks the game."""

from __future__ import annotations

import argparse
import dataclasses
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from pylos_engine import (
    COMPLETED,
    DARK,
    LIGHT,
    MOVE,
    PASS,
    REMOVE_FIRST,
    REMOVE_SECOND,
    Action,
    Board,
    UndoToken,
    apply_action,
    describe_action,
    initial_board,
    parse_action,
    pretty_print,
)
from pylos_solver import (
    PRESETS,
    SearchConfig,
    SearchResult,
    TranspositionTable,
    choose_removal,
    choose_removal_or_pass,
    fallback_placement,
    preset,
    solve_best_move,
)
from pylos_telemetry import JsonlTelemetrySink, TelemetrySink

TOP_SCORES_SHOWN = 5

PHASE_HINTS = {
    MOVE: "place z,x,y or lift z,x,y>z,x,y",
    REMOVE_FIRST: "remove xz,x,y",
    REMOVE_SECOND: "remove xz,x,y or pass",
}


def prompt_yes_no(prompt: str) -> bool:
    while True:
        try:
            raw = input(prompt).strip().lower()
        except EOFError:
            print()
            sys.exit(0)
        if raw in {"y", "yes"}:
            return True
        if raw in {"n", "no"}:
            return False
        print("Please enter 'y' or 'n'.")


def print_help() -> None:
    print("Locations are z,x,y: z is the layer (0 = base), x the row, y the column.")
    print("Actions: z,x,y = place a reserve sphere, z,x,y>z,x,y = lift a sphere,")
    print("         xz,x,y = take back a sphere after a square, pass = skip the second removal.")
    print("Commands: Enter = play the recommendation, u = undo, h = help, q = quit.")


def read_action(prompt: str, allow_enter: bool, default_action: Optional[Action]) -> str:
    while True:
        try:
            raw = input(prompt).strip().lower()
        except EOFError:
            print()
            return "q"
        if raw == "":
            if allow_enter and default_action is not None:
                return ""
            print("Please enter an action, or a command.")
            continue
        return raw


def recommend(
    board: Board,
    config: SearchConfig,
    tt: Optional[TranspositionTable],
    sink: Optional[TelemetrySink] = None,
) -> Tuple[Optional[Action], Optional[SearchResult]]:
    if board.phase == MOVE or config.search_removals:
        result = solve_best_move(board, config=config, tt=tt, telemetry_sink=sink)
        action = result.best_action
        if action is None and board.phase == MOVE:
            action = fallback_placement(board)
        return action, result
    if board.phase == REMOVE_FIRST:
        return choose_removal(board, config, tt), None
    sphere = choose_removal_or_pass(board, config, tt)
    return (PASS if sphere is None else sphere), None


def _print_explain(board: Board, result: SearchResult) -> None:
    ranked = sorted(result.root_scores, key=lambda item: item[1], reverse=True)[:TOP_SCORES_SHOWN]
    if ranked:
        top_str = ", ".join(f"{describe_action(board, action)}:{score:+.2f}" for action, score in ranked)
        print(f"Top: {top_str}")
    print(
        f"Search: depth={result.depth} fallback={result.fallback} "
        f"elapsed_ms={result.elapsed_ms} nodes={result.nodes}"
    )


def build_config(args: argparse.Namespace) -> SearchConfig:
    config = preset(args.preset)
    overrides = {}
    if args.depth is not None:
        overrides["max_depth"] = args.depth
    if args.contempt is not None:
        overrides["contempt"] = args.contempt
    if args.no_tt:
        overrides["use_tt"] = False
    if args.search_removals:
        overrides["search_removals"] = True
    return dataclasses.replace(config, **overrides) if overrides else config


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Pylos CLI advisor")
    parser.add_argument("--preset", choices=sorted(PRESETS), default="classic", help="search preset (default: classic)")
    parser.add_argument("--depth", type=int, default=None, help="override the preset search depth")
    parser.add_argument("--contempt", type=float, default=None, help="override the preset contempt bias")
    parser.add_argument("--no-tt", action="store_true", help="disable the transposition table")
    parser.add_argument("--search-removals", action="store_true", help="search removals instead of the mobility heuristic")
    parser.add_argument("--explain", action="store_true", help="print root scores and search stats")
    parser.add_argument("--telemetry-log", type=Path, default=None, help="append search telemetry as JSON lines")
    args = parser.parse_args(argv)

    if args.depth is not None and args.depth <= 0:
        print("--depth must be > 0")
        return 2
    config = build_config(args)

    you = LIGHT if prompt_yes_no("Do you play LIGHT? (y/n): ") else DARK
    board = initial_board(light_first=prompt_yes_no("Does LIGHT move first? (y/n): "))
    history: List[UndoToken] = []
    tt = TranspositionTable(config.tt_capacity) if config.use_tt else None
    sink = JsonlTelemetrySink(args.telemetry_log) if args.telemetry_log is not None else None

    try:
        while True:
            print()
            print(pretty_print(board))

            if board.phase == COMPLETED:
                print()
                outcome = "you win" if board.winner == you else "you lose"
                print(f"Game over. Winner: {board.winner} ({outcome})")
                return 0

            hint = PHASE_HINTS.get(board.phase, "")
            recommended: Optional[Action] = None
            if board.to_move == you:
                recommended, result = recommend(board, config, tt, sink)
                if recommended is None:
                    print("No legal actions.")
                    return 0
                print()
                label = describe_action(board, recommended)
                if result is not None:
                    print(f"Recommended: {label} (score: {result.score:+.2f})")
                    if args.explain:
                        _print_explain(board, result)
                else:
                    print(f"Recommended: {label} (mobility heuristic)")
                raw = read_action(f"Your action ({hint}, Enter=best, u=undo, h=help, q=quit): ", True, recommended)
            else:
                raw = read_action(f"Opponent action ({hint}, u=undo, h=help, q=quit): ", False, None)

            if raw in {"q", "quit"}:
                return 0
            if raw in {"h", "help"}:
                print_help()
                continue
            if raw in {"u", "undo"}:
                if history:
                    board.undo(history.pop())
                else:
                    print("Nothing to undo.")
                continue

            if raw == "":
                if recommended is None:
                    print("Enter is only available on your turn when a recommendation is shown.")
                    continue
                chosen = recommended
            else:
                try:
                    chosen = parse_action(board, raw)
                except ValueError as exc:
                    print(str(exc))
                    continue

            try:
                history.append(apply_action(board, chosen))
            except ValueError as exc:
                print(str(exc))
                continue
    finally:
        if sink is not None:
            sink.close()


if __name__ == "__main__":
    raise SystemExit(main())
