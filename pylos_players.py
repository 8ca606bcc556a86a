"""Players and a small game driver built on the Pylos engine and solver."""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pylos_engine import (
    LOCATIONS,
    MOVE,
    PASS,
    REMOVE_FIRST,
    REMOVE_SECOND,
    Action,
    Board,
    Move,
    Sphere,
    UndoToken,
    apply_action,
    describe_action,
    initial_board,
)
from pylos_solver import (
    SearchConfig,
    TranspositionTable,
    choose_move,
    choose_removal,
    choose_removal_or_pass,
)
from pylos_telemetry import TelemetrySink

DEFAULT_MAX_ACTIONS = 400


class Player(ABC):
    """The three decisions the game asks of a player, one per phase."""

    name = "player"

    @abstractmethod
    def do_move(self, board: Board) -> Optional[Move]:
        raise NotImplementedError

    @abstractmethod
    def do_remove(self, board: Board) -> Optional[Sphere]:
        raise NotImplementedError

    @abstractmethod
    def do_remove_or_pass(self, board: Board) -> Optional[Sphere]:
        raise NotImplementedError

    def new_game(self) -> None:
        return


class SearchPlayer(Player):
    name = "search"

    def __init__(
        self,
        config: Optional[SearchConfig] = None,
        telemetry_sink: Optional[TelemetrySink] = None,
    ) -> None:
        self.config = config or SearchConfig()
        self.telemetry_sink = telemetry_sink
        # One table for the whole game; every entry is scored for the same reference side.
        self.tt: Optional[TranspositionTable] = (
            TranspositionTable(self.config.tt_capacity) if self.config.use_tt else None
        )

    def new_game(self) -> None:
        if self.tt is not None:
            self.tt.clear()

    def do_move(self, board: Board) -> Optional[Move]:
        return choose_move(board, self.config, self.tt, self.telemetry_sink)

    def do_remove(self, board: Board) -> Optional[Sphere]:
        return choose_removal(board, self.config, self.tt, self.telemetry_sink)

    def do_remove_or_pass(self, board: Board) -> Optional[Sphere]:
        return choose_removal_or_pass(board, self.config, self.tt, self.telemetry_sink)


class RandomPlayer(Player):
    """Random sphere, random legal destination; never takes the optional second removal."""

    name = "random"

    def __init__(self, seed: Optional[int] = None) -> None:
        self._rng = random.Random(seed)

    def do_move(self, board: Board) -> Optional[Move]:
        mover = board.to_move
        candidates: List[Sphere] = []
        reserve = board.reserve(mover)
        if reserve is not None:
            candidates.append(reserve)
        candidates.extend(s for s in board.spheres_of(mover) if not board.is_reserve(s))
        while candidates:
            sphere = candidates.pop(self._rng.randrange(len(candidates)))
            targets = [loc for loc in LOCATIONS if board.can_move_to(sphere, loc)]
            if targets:
                return Move(sphere, self._rng.choice(targets))
        return None

    def do_remove(self, board: Board) -> Optional[Sphere]:
        spheres = [s for s in board.spheres_of(board.to_move) if board.can_remove(s)]
        if not spheres:
            return None
        return self._rng.choice(spheres)

    def do_remove_or_pass(self, board: Board) -> Optional[Sphere]:
        return None


def decide_action(board: Board, player: Player) -> Optional[Action]:
    """Ask ``player`` for its action in the current phase; ``None`` means it has none."""
    if board.phase == MOVE:
        return player.do_move(board)
    if board.phase == REMOVE_FIRST:
        return player.do_remove(board)
    if board.phase == REMOVE_SECOND:
        sphere = player.do_remove_or_pass(board)
        return PASS if sphere is None else sphere
    return None


def play_turn(board: Board, player: Player) -> Optional[UndoToken]:
    action = decide_action(board, player)
    if action is None:
        return None
    return apply_action(board, action)


@dataclass
class GameRecord:
    winner: Optional[str]
    actions: List[str] = field(default_factory=list)
    board: Optional[Board] = None


def play_game(
    players: Dict[str, Player],
    board: Optional[Board] = None,
    max_actions: int = DEFAULT_MAX_ACTIONS,
) -> GameRecord:
    """Play until the game completes, a player has no action, or ``max_actions`` is reached."""
    board = board or initial_board()
    for player in players.values():
        player.new_game()
    record = GameRecord(winner=None, board=board)
    for _ in range(max_actions):
        if board.winner is not None:
            break
        action = decide_action(board, players[board.to_move])
        if action is None:
            break
        record.actions.append(describe_action(board, action))
        apply_action(board, action)
    record.winner = board.winner
    return record
