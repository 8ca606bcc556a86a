"""Core rules engine for Pylos (4x4 pyramid, 15 spheres per player)."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from itertools import zip_longest
from typing import Dict, Iterator, List, Optional, Tuple, Union

LIGHT = "LIGHT"
DARK = "DARK"
COLORS = (LIGHT, DARK)

MOVE = "MOVE"
REMOVE_FIRST = "REMOVE_FIRST"
REMOVE_SECOND = "REMOVE_SECOND"
COMPLETED = "COMPLETED"
PHASES = (MOVE, REMOVE_FIRST, REMOVE_SECOND, COMPLETED)

PASS = "PASS"

ADD = "ADD"
LIFT = "LIFT"

LAYER_SIZES = (4, 3, 2, 1)
SPHERES_PER_PLAYER = 15


def other(color: str) -> str:
    return DARK if color == LIGHT else LIGHT


@dataclass(frozen=True)
class Location:
    z: int
    x: int
    y: int
    index: int

    def __str__(self) -> str:
        return f"{self.z},{self.x},{self.y}"


@dataclass(frozen=True)
class Sphere:
    id: int
    color: str


@dataclass(frozen=True)
class Move:
    sphere: Sphere
    location: Location


# A player acts with a Move, a Sphere to take back (removal phases) or PASS.
Action = Union[Move, Sphere, str]


@dataclass(frozen=True)
class UndoToken:
    kind: str
    phase: str
    to_move: str
    sphere: Optional[Sphere] = None
    origin: Optional[Location] = None


def _build_locations() -> Tuple[Location, ...]:
    out: List[Location] = []
    for z, size in enumerate(LAYER_SIZES):
        for x in range(size):
            for y in range(size):
                out.append(Location(z, x, y, len(out)))
    return tuple(out)


LOCATIONS: Tuple[Location, ...] = _build_locations()
TOP = LOCATIONS[-1]
_BY_COORD: Dict[Tuple[int, int, int], Location] = {(loc.z, loc.x, loc.y): loc for loc in LOCATIONS}

_CORNERS = ((0, 0), (1, 0), (0, 1), (1, 1))


def location_at(z: int, x: int, y: int) -> Location:
    loc = _BY_COORD.get((z, x, y))
    if loc is None:
        raise ValueError(f"no location at {z},{x},{y}")
    return loc


def _support_cells(loc: Location) -> Tuple[int, ...]:
    if loc.z == 0:
        return ()
    return tuple(_BY_COORD[(loc.z - 1, loc.x + dx, loc.y + dy)].index for dx, dy in _CORNERS)


SUPPORTS: Tuple[Tuple[int, ...], ...] = tuple(_support_cells(loc) for loc in LOCATIONS)


def _resting_on() -> Tuple[Tuple[int, ...], ...]:
    above: List[List[int]] = [[] for _ in LOCATIONS]
    for loc in LOCATIONS:
        for below in SUPPORTS[loc.index]:
            above[below].append(loc.index)
    return tuple(tuple(cells) for cells in above)


RESTING_ON: Tuple[Tuple[int, ...], ...] = _resting_on()


def _unit_squares() -> Tuple[Tuple[int, int, int, int], ...]:
    squares = []
    for z, size in enumerate(LAYER_SIZES):
        for x in range(size - 1):
            for y in range(size - 1):
                squares.append(tuple(_BY_COORD[(z, x + dx, y + dy)].index for dx, dy in _CORNERS))
    return tuple(squares)


SQUARES: Tuple[Tuple[int, int, int, int], ...] = _unit_squares()
SQUARES_AT: Tuple[Tuple[int, ...], ...] = tuple(
    tuple(i for i, square in enumerate(SQUARES) if loc.index in square) for loc in LOCATIONS
)


def _color_of_id(sphere_id: int) -> str:
    return LIGHT if sphere_id < SPHERES_PER_PLAYER else DARK


class Board:
    """Mutable Pylos position.

    Every forward mutator validates the request, raises ``ValueError`` when it
    is illegal and returns an ``UndoToken`` that ``undo`` reverses exactly.
    Spheres are addressed by their stable ``id``; the board never hands out
    per-position copies of them.
    """

    def __init__(self, to_move: str = LIGHT) -> None:
        if to_move not in COLORS:
            raise ValueError(f"unknown colour: {to_move!r}")
        self.spheres: Tuple[Sphere, ...] = tuple(
            Sphere(i, _color_of_id(i)) for i in range(2 * SPHERES_PER_PLAYER)
        )
        self._cells: List[Optional[int]] = [None] * len(LOCATIONS)
        self._where: List[Optional[int]] = [None] * len(self.spheres)
        self.phase = MOVE
        self.to_move = to_move
        self.winner: Optional[str] = None

    @property
    def locations(self) -> Tuple[Location, ...]:
        return LOCATIONS

    def copy(self) -> "Board":
        clone = Board(self.to_move)
        clone._cells = list(self._cells)
        clone._where = list(self._where)
        clone.phase = self.phase
        clone.winner = self.winner
        return clone

    # Queries

    def spheres_of(self, color: str) -> Tuple[Sphere, ...]:
        start = 0 if color == LIGHT else SPHERES_PER_PLAYER
        return self.spheres[start : start + SPHERES_PER_PLAYER]

    def is_reserve(self, sphere: Sphere) -> bool:
        return self._where[sphere.id] is None

    def location_of(self, sphere: Sphere) -> Optional[Location]:
        index = self._where[sphere.id]
        return None if index is None else LOCATIONS[index]

    def sphere_at(self, location: Location) -> Optional[Sphere]:
        sphere_id = self._cells[location.index]
        return None if sphere_id is None else self.spheres[sphere_id]

    def color_at(self, location: Location) -> Optional[str]:
        sphere_id = self._cells[location.index]
        return None if sphere_id is None else _color_of_id(sphere_id)

    def reserve(self, color: str) -> Optional[Sphere]:
        for sphere in self.spheres_of(color):
            if self._where[sphere.id] is None:
                return sphere
        return None

    def reserve_size(self, color: str) -> int:
        return sum(1 for sphere in self.spheres_of(color) if self._where[sphere.id] is None)

    def _supported(self, index: int, ignore: Optional[int] = None) -> bool:
        for below in SUPPORTS[index]:
            if below == ignore or self._cells[below] is None:
                return False
        return True

    def _supports_others(self, index: int) -> bool:
        return any(self._cells[above] is not None for above in RESTING_ON[index])

    def can_move_to(self, sphere: Sphere, location: Location) -> bool:
        if self._cells[location.index] is not None:
            return False
        origin = self._where[sphere.id]
        if origin is None:
            return self._supported(location.index)
        if location.z <= LOCATIONS[origin].z:
            return False
        if self._supports_others(origin):
            return False
        return self._supported(location.index, ignore=origin)

    def can_remove(self, sphere: Sphere) -> bool:
        origin = self._where[sphere.id]
        return origin is not None and not self._supports_others(origin)

    def _completes_square(self, index: int, color: str) -> bool:
        for square_index in SQUARES_AT[index]:
            cells = SQUARES[square_index]
            if all(self._cells[c] is not None and _color_of_id(self._cells[c]) == color for c in cells):
                return True
        return False

    # Forward mutators

    def move_sphere(self, sphere: Sphere, location: Location) -> UndoToken:
        if self.phase != MOVE:
            raise ValueError(f"illegal move: phase is {self.phase}")
        if sphere.color != self.to_move:
            raise ValueError(f"illegal move: {sphere.color} is not to move")
        if not self.can_move_to(sphere, location):
            raise ValueError(f"illegal move: sphere {sphere.id} cannot go to {location}")

        origin = self.location_of(sphere)
        token = UndoToken(ADD if origin is None else LIFT, self.phase, self.to_move, sphere, origin)
        if origin is not None:
            self._cells[origin.index] = None
        self._cells[location.index] = sphere.id
        self._where[sphere.id] = location.index

        if self._completes_square(location.index, sphere.color):
            self.phase = REMOVE_FIRST
        else:
            self._end_turn()
        return token

    def remove_sphere(self, sphere: Sphere) -> UndoToken:
        if self.phase not in (REMOVE_FIRST, REMOVE_SECOND):
            raise ValueError(f"illegal removal: phase is {self.phase}")
        if sphere.color != self.to_move:
            raise ValueError(f"illegal removal: {sphere.color} is not to move")
        if not self.can_remove(sphere):
            raise ValueError(f"illegal removal: sphere {sphere.id} is not free")

        origin = self.location_of(sphere)
        if origin is None:
            raise ValueError(f"illegal removal: sphere {sphere.id} is not on the board")
        token = UndoToken(self.phase, self.phase, self.to_move, sphere, origin)
        self._cells[origin.index] = None
        self._where[sphere.id] = None

        if self.phase == REMOVE_FIRST:
            self.phase = REMOVE_SECOND
        else:
            self._end_turn()
        return token

    def pass_turn(self) -> UndoToken:
        if self.phase != REMOVE_SECOND:
            raise ValueError(f"illegal pass: phase is {self.phase}")
        token = UndoToken(PASS, self.phase, self.to_move)
        self._end_turn()
        return token

    def _end_turn(self) -> None:
        mover = self.to_move
        self.to_move = other(mover)
        top = self._cells[TOP.index]
        if top is not None:
            self.phase = COMPLETED
            self.winner = _color_of_id(top)
        elif self.reserve_size(self.to_move) == 0:
            self.phase = COMPLETED
            self.winner = mover
        else:
            self.phase = MOVE

    # Inverses

    def _restore(self, phase: str, to_move: str) -> None:
        self.phase = phase
        self.to_move = to_move
        self.winner = None

    def _put_back(self, sphere: Sphere, origin: Location) -> None:
        if self._where[sphere.id] is not None or self._cells[origin.index] is not None:
            raise ValueError(f"cannot restore sphere {sphere.id} to {origin}")
        self._cells[origin.index] = sphere.id
        self._where[sphere.id] = origin.index

    def undo_add_sphere(self, sphere: Sphere, phase: str, to_move: str) -> None:
        index = self._where[sphere.id]
        if index is None:
            raise ValueError(f"cannot undo placement: sphere {sphere.id} is in reserve")
        self._cells[index] = None
        self._where[sphere.id] = None
        self._restore(phase, to_move)

    def undo_move_sphere(self, sphere: Sphere, origin: Location, phase: str, to_move: str) -> None:
        index = self._where[sphere.id]
        if index is None:
            raise ValueError(f"cannot undo lift: sphere {sphere.id} is in reserve")
        self._cells[index] = None
        self._where[sphere.id] = None
        self._put_back(sphere, origin)
        self._restore(phase, to_move)

    def undo_remove_first_sphere(self, sphere: Sphere, origin: Location, phase: str, to_move: str) -> None:
        if phase != REMOVE_FIRST:
            raise ValueError(f"first removal cannot restore phase {phase}")
        self._put_back(sphere, origin)
        self._restore(phase, to_move)

    def undo_remove_second_sphere(self, sphere: Sphere, origin: Location, phase: str, to_move: str) -> None:
        if phase != REMOVE_SECOND:
            raise ValueError(f"second removal cannot restore phase {phase}")
        self._put_back(sphere, origin)
        self._restore(phase, to_move)

    def undo_pass(self, phase: str, to_move: str) -> None:
        if phase != REMOVE_SECOND:
            raise ValueError(f"pass cannot restore phase {phase}")
        self._restore(phase, to_move)

    def undo(self, token: UndoToken) -> None:
        if token.kind == ADD:
            self.undo_add_sphere(token.sphere, token.phase, token.to_move)
        elif token.kind == LIFT:
            self.undo_move_sphere(token.sphere, token.origin, token.phase, token.to_move)
        elif token.kind == REMOVE_FIRST:
            self.undo_remove_first_sphere(token.sphere, token.origin, token.phase, token.to_move)
        elif token.kind == REMOVE_SECOND:
            self.undo_remove_second_sphere(token.sphere, token.origin, token.phase, token.to_move)
        elif token.kind == PASS:
            self.undo_pass(token.phase, token.to_move)
        else:
            raise ValueError(f"unknown undo token kind: {token.kind!r}")


@contextmanager
def undoing(board: Board, token: UndoToken) -> Iterator[UndoToken]:
    """Undo ``token`` when the block exits, however it exits."""
    try:
        yield token
    finally:
        board.undo(token)


def initial_board(light_first: bool = True) -> Board:
    return Board(LIGHT if light_first else DARK)


def is_terminal(board: Board) -> bool:
    return board.phase == COMPLETED


def generate_moves(board: Board, color: str) -> List[Move]:
    """Reserve placements first, then lifts of free spheres, in location order."""
    moves: List[Move] = []
    reserve = board.reserve(color)
    if reserve is not None:
        moves.extend(Move(reserve, loc) for loc in LOCATIONS if board.can_move_to(reserve, loc))
    for sphere in board.spheres_of(color):
        if board.is_reserve(sphere):
            continue
        moves.extend(Move(sphere, loc) for loc in LOCATIONS if board.can_move_to(sphere, loc))
    return moves


def legal_actions(board: Board) -> List[Action]:
    mover = board.to_move
    if board.phase == MOVE:
        return list(generate_moves(board, mover))
    if board.phase in (REMOVE_FIRST, REMOVE_SECOND):
        actions = [sphere for sphere in board.spheres_of(mover) if board.can_remove(sphere)]
        if board.phase == REMOVE_SECOND:
            actions.append(PASS)
        return actions
    return []


def is_legal(board: Board, action: Action) -> bool:
    if isinstance(action, Move):
        return (
            board.phase == MOVE
            and action.sphere.color == board.to_move
            and board.can_move_to(action.sphere, action.location)
        )
    if isinstance(action, Sphere):
        return (
            board.phase in (REMOVE_FIRST, REMOVE_SECOND)
            and action.color == board.to_move
            and board.can_remove(action)
        )
    return action == PASS and board.phase == REMOVE_SECOND


def apply_action(board: Board, action: Action) -> UndoToken:
    if isinstance(action, Move):
        return board.move_sphere(action.sphere, action.location)
    if isinstance(action, Sphere):
        return board.remove_sphere(action)
    if action == PASS:
        return board.pass_turn()
    raise ValueError(f"unknown action: {action!r}")


def board_key(board: Board) -> str:
    cells = "".join(
        "." if sphere_id is None else _color_of_id(sphere_id)[0] for sphere_id in board._cells
    )
    return f"{board.to_move}|{board.phase}|{cells}|{board.winner or '-'}"


def key_to_board(key: str) -> Optional[Board]:
    parts = key.strip().split("|")
    if len(parts) != 4:
        return None
    to_move, phase, cells, winner = parts
    if to_move not in COLORS or phase not in PHASES or len(cells) != len(LOCATIONS):
        return None
    if winner != "-" and winner not in COLORS:
        return None

    board = Board(to_move)
    board.phase = phase
    board.winner = None if winner == "-" else winner
    next_id = {LIGHT: 0, DARK: SPHERES_PER_PLAYER}
    for loc, mark in zip(LOCATIONS, cells):
        if mark == ".":
            continue
        if mark == "L":
            color = LIGHT
        elif mark == "D":
            color = DARK
        else:
            return None
        sphere_id = next_id[color]
        if sphere_id >= (SPHERES_PER_PLAYER if color == LIGHT else 2 * SPHERES_PER_PLAYER):
            return None
        next_id[color] += 1
        board._cells[loc.index] = sphere_id
        board._where[sphere_id] = loc.index

    for loc in LOCATIONS:
        if board._cells[loc.index] is not None and not board._supported(loc.index):
            return None
    return board


def parse_location(text: str) -> Location:
    parts = text.strip().split(",")
    if len(parts) != 3:
        raise ValueError(f"location must look like z,x,y: {text!r}")
    try:
        z, x, y = (int(part) for part in parts)
    except ValueError:
        raise ValueError(f"location must look like z,x,y: {text!r}") from None
    return location_at(z, x, y)


def parse_action(board: Board, text: str) -> Action:
    """Parse ``z,x,y`` (place), ``z,x,y>z,x,y`` (lift), ``xz,x,y`` (remove) or ``pass``."""
    raw = text.strip().lower().replace(" ", "")
    if raw in {"pass", "p"}:
        return PASS
    if raw.startswith("x"):
        loc = parse_location(raw[1:])
        sphere = board.sphere_at(loc)
        if sphere is None:
            raise ValueError(f"no sphere at {loc}")
        return sphere
    if ">" in raw:
        src, dst = raw.split(">", 1)
        origin = parse_location(src)
        sphere = board.sphere_at(origin)
        if sphere is None:
            raise ValueError(f"no sphere at {origin}")
        return Move(sphere, parse_location(dst))
    reserve = board.reserve(board.to_move)
    if reserve is None:
        raise ValueError(f"{board.to_move} has no reserve spheres")
    return Move(reserve, parse_location(raw))


def describe_action(board: Board, action: Action) -> str:
    """Render an action in input notation; call before the action is applied."""
    if isinstance(action, Move):
        origin = board.location_of(action.sphere)
        if origin is None:
            return str(action.location)
        return f"{origin}>{action.location}"
    if isinstance(action, Sphere):
        return f"x{board.location_of(action)}"
    return "pass"


def pretty_print(board: Board) -> str:
    """
    Four layers side by side, rows are x and columns are y.

    L/D mark the two colours, '.' an empty cell.
    """
    blocks: List[List[str]] = []
    for z, size in enumerate(LAYER_SIZES):
        lines = [f"layer {z}", "   " + " ".join(str(y) for y in range(size))]
        for x in range(size):
            row = []
            for y in range(size):
                color = board.color_at(_BY_COORD[(z, x, y)])
                row.append("." if color is None else color[0])
            lines.append(f"{x}  " + " ".join(row))
        width = max(len(line) for line in lines)
        blocks.append([line.ljust(width) for line in lines])

    body = []
    for row in zip_longest(*blocks, fillvalue=None):
        cells = [
            part if part is not None else " " * len(blocks[i][0])
            for i, part in enumerate(row)
        ]
        body.append("   ".join(cells).rstrip())

    status = f"Turn: {board.to_move}  Phase: {board.phase}"
    if board.winner is not None:
        status += f"  Winner: {board.winner}"
    lines = [
        status,
        f"Reserve: {LIGHT} {board.reserve_size(LIGHT)}  {DARK} {board.reserve_size(DARK)}",
        "",
        *body,
        "",
        "Actions: z,x,y place | z,x,y>z,x,y lift | xz,x,y remove | pass",
    ]
    return "\n".join(lines)
