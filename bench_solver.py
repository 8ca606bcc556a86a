"""Deterministic benchmark harness for the Pylos solver."""

from __future__ import annotations

import argparse
import dataclasses
import platform
import random
import statistics
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from pylos_engine import (
    COMPLETED,
    DARK,
    LIGHT,
    MOVE,
    Board,
    apply_action,
    board_key,
    describe_action,
    initial_board,
    key_to_board,
    legal_actions,
)
from pylos_players import RandomPlayer, SearchPlayer, play_game
from pylos_solver import PRESETS, SearchConfig, TranspositionTable, preset, solve_best_move


def _generate_positions(
    *,
    positions: int,
    max_actions: int,
    seed: int,
) -> List[Board]:
    rng = random.Random(seed)
    out: List[Board] = []
    while len(out) < positions:
        board = initial_board(light_first=bool(rng.getrandbits(1)))
        for _ in range(rng.randint(0, max_actions)):
            actions = legal_actions(board)
            if not actions:
                break
            apply_action(board, rng.choice(actions))
        # Benchmark positions always start a turn.
        if board.phase == MOVE:
            out.append(board)
    return out


def _load_positions(path: Path, limit: int) -> List[Board]:
    boards: List[Board] = []
    with path.open("r", encoding="utf-8") as handle:
        for line_no, raw in enumerate(handle, start=1):
            key = raw.strip()
            if not key:
                continue
            board = key_to_board(key)
            if board is None:
                raise ValueError(f"invalid board key at line {line_no}: {key!r}")
            if board.phase == COMPLETED:
                continue
            boards.append(board)
            if len(boards) >= limit:
                break
    return boards


def _save_positions(path: Path, positions: Sequence[Board]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        for board in positions:
            handle.write(board_key(board) + "\n")


def run_matches(games: int, config: SearchConfig, seed: int, max_actions: int) -> Dict[str, int]:
    """Search player against a seeded random player, alternating colours."""
    tally = {"search": 0, "random": 0, "unfinished": 0}
    for game in range(games):
        search_color = LIGHT if game % 2 == 0 else DARK
        random_color = DARK if search_color == LIGHT else LIGHT
        players = {
            search_color: SearchPlayer(config),
            random_color: RandomPlayer(seed + game),
        }
        record = play_game(players, initial_board(), max_actions=max_actions)
        if record.winner is None:
            tally["unfinished"] += 1
        elif record.winner == search_color:
            tally["search"] += 1
        else:
            tally["random"] += 1
        print(
            f"game {game + 1:03d} search={search_color} winner={record.winner or '-'} "
            f"actions={len(record.actions)}"
        )
    return tally


def run_positions(
    positions: Sequence[Board],
    config: SearchConfig,
    *,
    reuse_tt: bool = False,
    rep: int = 1,
) -> Dict[str, float]:
    """Solve every position once, printing a line each and a summary line.

    A shared table is emptied whenever the side to move differs from the side
    it was last searched for; ``rebinds`` counts those resets.
    """
    shared_tt = TranspositionTable(config.tt_capacity) if config.use_tt and reuse_tt else None
    total_nodes = 0
    total_solver_ms = 0
    probes = 0
    hits = 0
    rebinds = 0
    fallbacks = 0
    wall_start_ns = time.perf_counter_ns()

    for idx, board in enumerate(positions, start=1):
        tt = shared_tt
        if tt is None and config.use_tt:
            tt = TranspositionTable(config.tt_capacity)
        probes_before = hits_before = 0
        if tt is not None:
            if tt.reference is not None and tt.reference != board.to_move:
                rebinds += 1
            else:
                probes_before, hits_before = tt.probes, tt.hits

        start_ns = time.perf_counter_ns()
        result = solve_best_move(board, config=config, tt=tt)
        wall_ms = (time.perf_counter_ns() - start_ns) // 1_000_000

        total_nodes += result.nodes
        total_solver_ms += result.elapsed_ms
        if tt is not None:
            probes += tt.probes - probes_before
            hits += tt.hits - hits_before
        if result.fallback:
            fallbacks += 1
        best = "-" if result.best_action is None else describe_action(board, result.best_action)
        print(
            f"{rep:>3d} {idx:03d} {board.to_move:>5} {result.depth:>5d} {result.nodes:>9d} "
            f"{result.elapsed_ms:>9d} {int(wall_ms):>7d} {best:>11} {result.score:>+9.2f}"
        )

    total_wall_ms = max(1, (time.perf_counter_ns() - wall_start_ns) // 1_000_000)
    summary = {
        "total_nodes": float(total_nodes),
        "total_wall_ms": float(total_wall_ms),
        "nps_wall": float(int(total_nodes * 1000 / total_wall_ms)),
        "avg_nodes": total_nodes / max(1, len(positions)),
        "tt_hit_rate": hits / probes if probes else 0.0,
        "rebinds": float(rebinds),
        "fallbacks": float(fallbacks),
    }
    print(
        "summary "
        f"rep={rep} positions={len(positions)} total_nodes={total_nodes} "
        f"total_solver_ms={total_solver_ms} total_wall_ms={total_wall_ms} "
        f"nps_wall={int(summary['nps_wall'])} avg_nodes={summary['avg_nodes']:.1f} "
        f"tt_hit_rate={summary['tt_hit_rate']:.3f} rebinds={rebinds} fallbacks={fallbacks}"
    )
    return summary


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Deterministic Pylos solver benchmark")
    parser.add_argument("--positions", type=int, default=20, help="number of positions (default: 20)")
    parser.add_argument("--max-actions", type=int, default=12, help="max random actions from start (default: 12)")
    parser.add_argument("--seed", type=int, default=12345, help="random seed for position generation")
    parser.add_argument("--preset", choices=sorted(PRESETS), default="classic", help="search preset (default: classic)")
    parser.add_argument("--depth", type=int, default=None, help="override the preset search depth")
    parser.add_argument("--no-tt", action="store_true", help="disable the transposition table")
    parser.add_argument("--no-pruning", action="store_true", help="disable alpha-beta cutoffs")
    parser.add_argument(
        "--reuse-tt",
        action="store_true",
        help="reuse one TT across all positions (default: fresh TT per position)",
    )
    parser.add_argument("--repeat", type=int, default=1, help="benchmark repeats (default: 1)")
    parser.add_argument(
        "--save-positions",
        type=Path,
        default=None,
        help="write sampled benchmark positions (board keys) to file",
    )
    parser.add_argument(
        "--load-positions",
        type=Path,
        default=None,
        help="load benchmark positions (board keys) from file",
    )
    parser.add_argument(
        "--vs-random",
        type=int,
        default=0,
        metavar="GAMES",
        help="play GAMES search-vs-random games instead of timing positions",
    )
    args = parser.parse_args(argv)

    if args.positions <= 0:
        print("--positions must be > 0")
        return 2
    if args.max_actions < 0:
        print("--max-actions must be >= 0")
        return 2
    if args.repeat <= 0:
        print("--repeat must be > 0")
        return 2
    if args.depth is not None and args.depth <= 0:
        print("--depth must be > 0")
        return 2
    if args.vs_random < 0:
        print("--vs-random must be >= 0")
        return 2
    if args.load_positions is not None and not args.load_positions.exists():
        print(f"--load-positions not found: {args.load_positions}")
        return 2

    config = preset(args.preset)
    overrides = {}
    if args.depth is not None:
        overrides["max_depth"] = args.depth
    if args.no_tt:
        overrides["use_tt"] = False
    if args.no_pruning:
        overrides["use_pruning"] = False
    if overrides:
        config = dataclasses.replace(config, **overrides)

    if args.vs_random:
        tally = run_matches(args.vs_random, config, args.seed, max_actions=400)
        print(
            f"summary games={args.vs_random} search_wins={tally['search']} "
            f"random_wins={tally['random']} unfinished={tally['unfinished']}"
        )
        return 0

    if args.load_positions is not None:
        try:
            positions = _load_positions(args.load_positions, args.positions)
        except ValueError as exc:
            print(f"failed to load positions: {exc}")
            return 2
        if len(positions) < args.positions:
            print(
                f"--load-positions provided only {len(positions)} usable positions; "
                f"need {args.positions}"
            )
            return 2
    else:
        positions = _generate_positions(
            positions=args.positions,
            max_actions=args.max_actions,
            seed=args.seed,
        )
    if args.save_positions is not None:
        _save_positions(args.save_positions, positions)

    print(
        f"python={sys.version.split()[0]} platform={platform.platform()} "
        f"preset={args.preset} depth={config.max_depth} use_tt={config.use_tt} "
        f"pruning={config.use_pruning} repeats={args.repeat} reuse_tt={args.reuse_tt}"
    )
    print(f"rep idx side depth nodes solver_ms wall_ms best score (positions={len(positions)} seed={args.seed})")

    nps_per_rep: List[float] = []
    for rep in range(1, args.repeat + 1):
        summary = run_positions(positions, config, reuse_tt=args.reuse_tt, rep=rep)
        nps_per_rep.append(summary["nps_wall"])

    if args.repeat > 1:
        print(
            f"dist nps_wall min={int(min(nps_per_rep))} median={int(statistics.median(nps_per_rep))} "
            f"max={int(max(nps_per_rep))} mean={int(statistics.fmean(nps_per_rep))}"
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
