"""Negamax alpha-beta solver for Pylos with a fixed-size transposition table."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
import time

from pylos_engine import (
    COLORS,
    COMPLETED,
    LAYER_SIZES,
    LOCATIONS,
    MOVE,
    PASS,
    PHASES,
    REMOVE_FIRST,
    REMOVE_SECOND,
    SQUARES,
    Action,
    Board,
    Location,
    Move,
    Sphere,
    apply_action,
    board_key,
    describe_action,
    generate_moves,
    is_legal,
    other,
    undoing,
)
from pylos_telemetry import (
    IterationDoneEvent,
    IterationStartEvent,
    NodeBatchEvent,
    PVUpdateEvent,
    SearchEndEvent,
    SearchStartEvent,
    TelemetrySink,
    emit_dataclass_event,
)

INF = 1e18
TT_DEFAULT_CAPACITY = 1 << 20
INTERRUPT_POLL_MASK = 0xFF
TELEMETRY_NODE_MASK = 0x3FF
TELEMETRY_EMIT_INTERVAL_MS = 120
PV_MAX_LEN = 16

FNV_OFFSET = 0xCBF29CE484222325
FNV_PRIME = 0x100000001B3
HASH_MASK = (1 << 64) - 1
MOVER_CELL_BASE = 0x9E
MOVER_CELL_STRIDE = 0x1F
OPPONENT_CELL_BASE = 0xA5
OPPONENT_CELL_STRIDE = 0x3B
SIDE_MIX = 0x9E3779B97F4A7C15
PHASE_MIX = 0xBF58476D1CE4E5B9

LIFT_BONUS = 6.0
RAISED_PLACEMENT_BONUS = 4.0
SQUARE_BONUS = 200.2

REMOVAL_HEIGHT_PENALTY = 0.2
REMOVE_OR_PASS_THRESHOLD = -0.1

EXACT = 0
LOWER = 1
UPPER = 2


@dataclass(frozen=True)
class EvalWeights:
    reserve: float = 3.0
    squares: float = 24.0
    threats: float = 8.0
    height: float = 1.2
    mobility: float = 0.15
    win: float = 1000.0


@dataclass(frozen=True)
class SearchConfig:
    max_depth: int = 4
    contempt: float = 0.25
    weights: EvalWeights = field(default_factory=EvalWeights)
    use_tt: bool = True
    use_pruning: bool = True
    tt_capacity: int = TT_DEFAULT_CAPACITY
    iterative_deepening: bool = False
    search_removals: bool = False


PRESETS: Dict[str, SearchConfig] = {
    "classic": SearchConfig(),
    "deep": SearchConfig(max_depth=5, iterative_deepening=True, search_removals=True),
    "fast": SearchConfig(max_depth=2),
    "exhaustive": SearchConfig(use_tt=False, use_pruning=False),
}


def preset(name: str) -> SearchConfig:
    try:
        return PRESETS[name]
    except KeyError:
        raise ValueError(f"unknown preset: {name!r}") from None


@dataclass(frozen=True)
class TTEntry:
    fingerprint: int
    depth: int
    value: float
    bound: int
    best_action: Optional[Action]


@dataclass(frozen=True)
class SearchResult:
    best_action: Optional[Action]
    score: float
    root_scores: Tuple[Tuple[Action, float], ...]
    depth: int
    elapsed_ms: int
    nodes: int
    fallback: bool = False


class SearchInterrupted(Exception):
    """Raised inside the search when the caller asks it to stop."""


class TranspositionTable:
    """Fixed array of slots indexed by ``fingerprint % capacity``.

    A slot holds at most one entry; a different fingerprint at the same index
    is a miss. New entries only replace residents searched no deeper.

    Stored values include the contempt of the side the search ran for, so a
    table is bound to one reference colour at a time (see ``bind``).
    """

    def __init__(self, capacity: int = TT_DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._slots: List[Optional[TTEntry]] = [None] * capacity
        self.reference: Optional[str] = None
        self.occupied = 0
        self.probes = 0
        self.hits = 0
        self.stores = 0
        self.rejected = 0

    def __len__(self) -> int:
        return self.occupied

    def get(self, fingerprint: int) -> Optional[TTEntry]:
        entry = self._slots[fingerprint % self.capacity]
        if entry is None or entry.fingerprint != fingerprint:
            return None
        return entry

    def probe(self, fingerprint: int, depth: int, alpha: float, beta: float) -> Optional[TTEntry]:
        self.probes += 1
        entry = self.get(fingerprint)
        if entry is None or entry.depth < depth:
            return None
        if (
            entry.bound == EXACT
            or (entry.bound == LOWER and entry.value >= beta)
            or (entry.bound == UPPER and entry.value <= alpha)
        ):
            self.hits += 1
            return entry
        return None

    def store(
        self,
        fingerprint: int,
        depth: int,
        value: float,
        alpha_orig: float,
        beta: float,
        best_action: Optional[Action],
    ) -> bool:
        if value <= alpha_orig:
            bound = UPPER
        elif value >= beta:
            bound = LOWER
        else:
            bound = EXACT
        index = fingerprint % self.capacity
        resident = self._slots[index]
        if resident is not None and resident.depth > depth:
            self.rejected += 1
            return False
        if resident is None:
            self.occupied += 1
        self._slots[index] = TTEntry(fingerprint, depth, value, bound, best_action)
        self.stores += 1
        return True

    def best_action(self, fingerprint: int) -> Optional[Action]:
        entry = self.get(fingerprint)
        return None if entry is None else entry.best_action

    def clear(self) -> None:
        self._slots = [None] * self.capacity
        self.reference = None
        self.occupied = 0
        self.probes = 0
        self.hits = 0
        self.stores = 0
        self.rejected = 0

    def bind(self, reference: str) -> bool:
        """Score entries for ``reference`` from now on; returns True if the table was emptied."""
        if self.reference == reference:
            return False
        emptied = self.reference is not None
        if emptied:
            self.clear()
        self.reference = reference
        return emptied


def position_hash(board: Board) -> int:
    """64-bit FNV-1a fingerprint of cells per side, side to move and phase.

    Cells are visited in location order, so sphere ids and the order in which
    spheres were placed do not affect the result.
    """
    mover = board.to_move
    h = FNV_OFFSET
    for color, base, stride in (
        (mover, MOVER_CELL_BASE, MOVER_CELL_STRIDE),
        (other(mover), OPPONENT_CELL_BASE, OPPONENT_CELL_STRIDE),
    ):
        for loc in LOCATIONS:
            if board.color_at(loc) != color:
                continue
            h ^= base + stride * (loc.index + 1)
            h = (h * FNV_PRIME) & HASH_MASK
    h ^= ((COLORS.index(mover) + 1) * SIDE_MIX) & HASH_MASK
    h = (h * FNV_PRIME) & HASH_MASK
    h ^= ((PHASES.index(board.phase) + 1) * PHASE_MIX) & HASH_MASK
    h = (h * FNV_PRIME) & HASH_MASK
    return h


# Move generation and ordering


def center_bonus(location: Location) -> float:
    n = LAYER_SIZES[location.z]
    center = (n - 1) / 2.0
    dx = location.x - center
    dy = location.y - center
    edge = -0.5 if location.x in (0, n - 1) or location.y in (0, n - 1) else 0.0
    return -0.6 * (dx * dx + dy * dy) + edge + (0.7 if location.z == 0 else 0.25)


def _completes_square(board: Board, move: Move) -> bool:
    with undoing(board, board.move_sphere(move.sphere, move.location)):
        return board.phase == REMOVE_FIRST


def ordered_moves(board: Board, color: str) -> List[Move]:
    """Generated moves sorted best-first: squares, then lifts, then centre cells."""
    probe_squares = board.phase == MOVE and color == board.to_move
    scored: List[Tuple[float, Move]] = []
    for move in generate_moves(board, color):
        origin = board.location_of(move.sphere)
        score = 0.0
        if origin is not None:
            if move.location.z > origin.z:
                score += LIFT_BONUS
        elif move.location.z > 0:
            score += RAISED_PLACEMENT_BONUS
        score += center_bonus(move.location)
        if probe_squares and _completes_square(board, move):
            score += SQUARE_BONUS
        scored.append((score, move))
    scored.sort(key=lambda item: item[0], reverse=True)
    return [move for _, move in scored]


def removal_candidates(board: Board, color: str) -> List[Sphere]:
    spheres = [sphere for sphere in board.spheres_of(color) if board.can_remove(sphere)]
    spheres.sort(key=lambda sphere: board.location_of(sphere).z, reverse=True)
    return spheres


def _candidates(board: Board) -> List[Action]:
    mover = board.to_move
    if board.phase == MOVE:
        return list(ordered_moves(board, mover))
    if board.phase == REMOVE_FIRST:
        return list(removal_candidates(board, mover))
    if board.phase == REMOVE_SECOND:
        return [*removal_candidates(board, mover), PASS]
    return []


def _promote(candidates: List[Action], hint: Optional[Action]) -> List[Action]:
    if hint is None or hint not in candidates:
        return candidates
    index = candidates.index(hint)
    if index == 0:
        return candidates
    return [hint, *candidates[:index], *candidates[index + 1 :]]


# Evaluation


def mobility(board: Board, color: str, skip: Optional[int] = None) -> int:
    """Count destinations reachable by placed spheres of ``color``, ignoring sphere id ``skip``."""
    total = 0
    for sphere in board.spheres_of(color):
        if sphere.id == skip or board.is_reserve(sphere):
            continue
        total += sum(1 for loc in LOCATIONS if board.can_move_to(sphere, loc))
    return total


def _square_counts(board: Board, color: str) -> Tuple[int, int]:
    squares = 0
    threats = 0
    for cells in SQUARES:
        colors = [board.color_at(LOCATIONS[i]) for i in cells]
        own = sum(1 for c in colors if c == color)
        if own == 4:
            squares += 1
        elif own == 3 and None in colors:
            threats += 1
    return squares, threats


def _height(board: Board, color: str) -> int:
    total = 0
    for sphere in board.spheres_of(color):
        loc = board.location_of(sphere)
        if loc is not None:
            total += loc.z
    return total


def evaluate(board: Board, reference: str, weights: Optional[EvalWeights] = None) -> float:
    """Static score of ``board`` from ``reference``'s point of view."""
    w = weights or EvalWeights()
    if board.phase == COMPLETED and board.winner is not None:
        return w.win if board.winner == reference else -w.win

    opponent = other(reference)
    my_squares, my_threats = _square_counts(board, reference)
    op_squares, op_threats = _square_counts(board, opponent)
    return (
        w.reserve * (board.reserve_size(opponent) - board.reserve_size(reference))
        + w.squares * (my_squares - op_squares)
        + w.threats * (my_threats - op_threats)
        + w.height * (_height(board, reference) - _height(board, opponent))
        + w.mobility * (mobility(board, reference) - mobility(board, opponent))
    )


def signed_eval(
    board: Board,
    side_to_move: str,
    reference: str,
    weights: Optional[EvalWeights] = None,
    contempt: float = 0.0,
) -> float:
    e = evaluate(board, reference, weights) + contempt
    return e if side_to_move == reference else -e


# Search


@dataclass
class _TelemetryStats:
    sink: TelemetrySink
    solve_start: float
    last_emit: float
    nodes_total: int = 0
    tt_probes: int = 0
    tt_hits: int = 0
    tt_stores: int = 0
    cutoffs: int = 0
    eval_calls: int = 0
    max_ply: int = 0
    branching_sum: int = 0
    branching_samples: int = 0


@dataclass
class _SearchContext:
    config: SearchConfig
    reference: str
    tt: Optional[TranspositionTable]
    interrupt_check: Optional[Callable[[], bool]] = None
    telemetry: Optional[_TelemetryStats] = None
    nodes: int = 0
    ply: int = 0


def _telemetry_maybe_emit_batch(stats: Optional[_TelemetryStats], force: bool = False) -> None:
    if stats is None:
        return
    if not force and (stats.nodes_total & TELEMETRY_NODE_MASK) != 0:
        return
    now = time.perf_counter()
    if not force and (now - stats.last_emit) * 1000 < TELEMETRY_EMIT_INTERVAL_MS:
        return

    elapsed_ms = max(1, int((now - stats.solve_start) * 1000))
    branching = 0.0
    if stats.branching_samples > 0:
        branching = stats.branching_sum / stats.branching_samples
    emit_dataclass_event(
        stats.sink,
        "node_batch",
        NodeBatchEvent(
            nodes_total=stats.nodes_total,
            nps_estimate=int(stats.nodes_total * 1000 / elapsed_ms),
            tt_probes=stats.tt_probes,
            tt_hits=stats.tt_hits,
            tt_stores=stats.tt_stores,
            cutoffs=stats.cutoffs,
            eval_calls=stats.eval_calls,
            max_ply=stats.max_ply,
            branching_factor_estimate=round(branching, 3),
            elapsed_ms=elapsed_ms,
        ),
    )
    stats.last_emit = now


def _enter_node(context: _SearchContext) -> None:
    context.nodes += 1
    if (
        context.interrupt_check is not None
        and (context.nodes & INTERRUPT_POLL_MASK) == 0
        and context.interrupt_check()
    ):
        raise SearchInterrupted()
    stats = context.telemetry
    if stats is not None:
        stats.nodes_total += 1
        if context.ply > stats.max_ply:
            stats.max_ply = context.ply
        _telemetry_maybe_emit_batch(stats)


def _leaf(board: Board, context: _SearchContext) -> float:
    if context.telemetry is not None:
        context.telemetry.eval_calls += 1
    return signed_eval(
        board,
        board.to_move,
        context.reference,
        context.config.weights,
        context.config.contempt,
    )


def _search_child(
    board: Board, action: Action, depth: int, alpha: float, beta: float, context: _SearchContext
) -> float:
    """Apply ``action``, search the child and undo; returns the value for the mover."""
    mover = board.to_move
    context.ply += 1
    try:
        with undoing(board, apply_action(board, action)):
            # Entering a removal is part of the same turn and costs no ply.
            next_depth = depth if board.phase == REMOVE_FIRST else depth - 1
            if board.to_move == mover:
                return _negamax(board, next_depth, alpha, beta, context)
            return -_negamax(board, next_depth, -beta, -alpha, context)
    finally:
        context.ply -= 1


def _negamax(board: Board, depth: int, alpha: float, beta: float, context: _SearchContext) -> float:
    _enter_node(context)
    if depth <= 0 or board.phase not in (MOVE, REMOVE_FIRST, REMOVE_SECOND):
        return _leaf(board, context)

    alpha_orig = alpha
    tt = context.tt
    stats = context.telemetry
    fingerprint = position_hash(board)
    if tt is not None:
        if stats is not None:
            stats.tt_probes += 1
        entry = tt.probe(fingerprint, depth, alpha, beta)
        if entry is not None:
            if stats is not None:
                stats.tt_hits += 1
            return entry.value

    candidates = _candidates(board)
    if stats is not None:
        stats.branching_sum += len(candidates)
        stats.branching_samples += 1
    if not candidates:
        return _leaf(board, context)
    if tt is not None:
        candidates = _promote(candidates, tt.best_action(fingerprint))

    best = -INF
    best_action: Optional[Action] = None
    for action in candidates:
        value = _search_child(board, action, depth, alpha, beta, context)
        if value > best:
            best = value
            best_action = action
        if value > alpha:
            alpha = value
        if context.config.use_pruning and alpha >= beta:
            if stats is not None:
                stats.cutoffs += 1
            break

    if tt is not None:
        if tt.store(fingerprint, depth, best, alpha_orig, beta, best_action) and stats is not None:
            stats.tt_stores += 1
    return best


@dataclass(frozen=True)
class _RootOutcome:
    best_action: Optional[Action]
    score: float
    root_scores: Tuple[Tuple[Action, float], ...]


def _search_root(board: Board, depth: int, context: _SearchContext) -> _RootOutcome:
    """Full-window search of every root candidate.

    Candidates after the first that cannot beat the current best report the
    bound they failed low on, not their exact value.
    """
    _enter_node(context)
    candidates = _candidates(board)
    if not candidates:
        return _RootOutcome(None, _leaf(board, context), ())

    fingerprint = position_hash(board)
    tt = context.tt
    if tt is not None:
        candidates = _promote(candidates, tt.best_action(fingerprint))

    alpha = -INF
    best = -INF
    best_action: Optional[Action] = None
    scored: List[Tuple[Action, float]] = []
    for action in candidates:
        value = _search_child(board, action, depth, alpha, INF, context)
        scored.append((action, value))
        if value > best:
            best = value
            best_action = action
        if value > alpha:
            alpha = value

    if tt is not None:
        tt.store(fingerprint, depth, best, -INF, INF, best_action)
    return _RootOutcome(best_action, best, tuple(scored))


def _extract_pv(board: Board, tt: Optional[TranspositionTable], max_len: int = PV_MAX_LEN) -> List[str]:
    if tt is None:
        return []
    pv: List[str] = []
    tokens = []
    seen = set()
    try:
        for _ in range(max_len):
            if board.phase == COMPLETED:
                break
            fingerprint = position_hash(board)
            if fingerprint in seen:
                break
            seen.add(fingerprint)
            action = tt.best_action(fingerprint)
            if action is None or not is_legal(board, action):
                break
            pv.append(describe_action(board, action))
            tokens.append(apply_action(board, action))
    finally:
        for token in reversed(tokens):
            board.undo(token)
    return pv


def fallback_placement(board: Board) -> Optional[Move]:
    reserve = board.reserve(board.to_move)
    if reserve is None:
        return None
    for loc in LOCATIONS:
        if board.can_move_to(reserve, loc):
            return Move(reserve, loc)
    return None


def _fallback_action(board: Board) -> Optional[Action]:
    if board.phase == MOVE:
        return fallback_placement(board)
    if board.phase == REMOVE_FIRST:
        spheres = removal_candidates(board, board.to_move)
        return spheres[0] if spheres else None
    if board.phase == REMOVE_SECOND:
        return PASS
    return None


def solve_best_move(
    board: Board,
    config: Optional[SearchConfig] = None,
    tt: Optional[TranspositionTable] = None,
    telemetry_sink: Optional[TelemetrySink] = None,
    progress_callback: Optional[Callable[[SearchResult], None]] = None,
    interrupt_check: Optional[Callable[[], bool]] = None,
) -> SearchResult:
    """Search ``board`` for the side to move and return the best action found.

    The board is mutated during the search and restored before returning, also
    when the search is interrupted. With ``iterative_deepening`` every depth
    from 1 to ``max_depth`` runs to completion and seeds the next one through
    the table; an interruption returns the deepest finished iteration.
    """
    config = config or SearchConfig()
    if not config.use_tt:
        tt = None
    elif tt is None:
        tt = TranspositionTable(config.tt_capacity)

    reference = board.to_move
    if tt is not None:
        tt.bind(reference)
    max_depth = max(1, config.max_depth)
    start = time.perf_counter()
    telemetry: Optional[_TelemetryStats] = None
    if telemetry_sink is not None:
        telemetry = _TelemetryStats(sink=telemetry_sink, solve_start=start, last_emit=start)
        emit_dataclass_event(
            telemetry.sink,
            "search_start",
            SearchStartEvent(
                board_key=board_key(board),
                phase=board.phase,
                max_depth=max_depth,
                iterative=config.iterative_deepening,
            ),
        )

    def _label(action: Optional[Action]) -> Optional[str]:
        return None if action is None else describe_action(board, action)

    def _emit_search_end(result: SearchResult, reason: str) -> None:
        if telemetry is None:
            return
        _telemetry_maybe_emit_batch(telemetry, force=True)
        emit_dataclass_event(
            telemetry.sink,
            "search_end",
            SearchEndEvent(
                best_action=_label(result.best_action),
                score=result.score,
                depth=result.depth,
                nodes=result.nodes,
                elapsed_ms=result.elapsed_ms,
                reason=reason,
            ),
        )

    def _emit_iteration_done(depth: int, result: SearchResult) -> None:
        if telemetry is None:
            return
        emit_dataclass_event(
            telemetry.sink,
            "iteration_done",
            IterationDoneEvent(
                depth=depth,
                score=result.score,
                best_action=_label(result.best_action),
                nodes=result.nodes,
                elapsed_ms=result.elapsed_ms,
                max_ply=telemetry.max_ply,
                root_scores=[(describe_action(board, action), value) for action, value in result.root_scores],
            ),
        )
        emit_dataclass_event(
            telemetry.sink,
            "pv_update",
            PVUpdateEvent(depth=depth, pv=_extract_pv(board, tt), score=result.score),
        )

    depths = range(1, max_depth + 1) if config.iterative_deepening else [max_depth]
    best_result: Optional[SearchResult] = None
    total_nodes = 0
    reason = "complete"

    if board.phase == COMPLETED:
        depths = []

    for depth in depths:
        if telemetry is not None:
            emit_dataclass_event(telemetry.sink, "iteration_start", IterationStartEvent(depth=depth))
        context = _SearchContext(
            config=config,
            reference=reference,
            tt=tt,
            interrupt_check=interrupt_check,
            telemetry=telemetry,
        )
        try:
            outcome = _search_root(board, depth, context)
        except SearchInterrupted:
            total_nodes += context.nodes
            reason = "interrupted"
            break

        total_nodes += context.nodes
        result = SearchResult(
            best_action=outcome.best_action,
            score=outcome.score,
            root_scores=outcome.root_scores,
            depth=depth,
            elapsed_ms=int((time.perf_counter() - start) * 1000),
            nodes=total_nodes,
        )
        best_result = result
        _emit_iteration_done(depth, result)
        if progress_callback is not None:
            progress_callback(result)
        if outcome.best_action is None:
            break

    if best_result is None:
        action = _fallback_action(board)
        best_result = SearchResult(
            best_action=action,
            score=signed_eval(board, board.to_move, reference, config.weights, config.contempt),
            root_scores=(),
            depth=0,
            elapsed_ms=int((time.perf_counter() - start) * 1000),
            nodes=total_nodes,
            fallback=action is not None,
        )
    elif reason == "interrupted":
        best_result = SearchResult(
            best_action=best_result.best_action,
            score=best_result.score,
            root_scores=best_result.root_scores,
            depth=best_result.depth,
            elapsed_ms=int((time.perf_counter() - start) * 1000),
            nodes=total_nodes,
            fallback=best_result.fallback,
        )
    _emit_search_end(best_result, reason)
    return best_result


# Decision points


def choose_move(
    board: Board,
    config: Optional[SearchConfig] = None,
    tt: Optional[TranspositionTable] = None,
    telemetry_sink: Optional[TelemetrySink] = None,
) -> Optional[Move]:
    """Best placement or lift for the side to move; ``None`` when it has no action."""
    result = solve_best_move(board, config=config, tt=tt, telemetry_sink=telemetry_sink)
    if isinstance(result.best_action, Move):
        return result.best_action
    return fallback_placement(board)


def _shallow_removal(board: Board) -> Optional[Sphere]:
    mover = board.to_move
    pick: Optional[Sphere] = None
    best = -INF
    for sphere in board.spheres_of(mover):
        if not board.can_remove(sphere):
            continue
        value = mobility(board, mover, skip=sphere.id) - REMOVAL_HEIGHT_PENALTY * board.location_of(sphere).z
        if value > best:
            best = value
            pick = sphere
    return pick


def _shallow_removal_or_pass(board: Board) -> Optional[Sphere]:
    mover = board.to_move
    base = mobility(board, mover)
    pick: Optional[Sphere] = None
    best_gain = REMOVE_OR_PASS_THRESHOLD
    for sphere in board.spheres_of(mover):
        if not board.can_remove(sphere):
            continue
        gain = (
            mobility(board, mover, skip=sphere.id)
            - base
            - REMOVAL_HEIGHT_PENALTY * board.location_of(sphere).z
        )
        if gain > best_gain:
            best_gain = gain
            pick = sphere
    return pick


def choose_removal(
    board: Board,
    config: Optional[SearchConfig] = None,
    tt: Optional[TranspositionTable] = None,
    telemetry_sink: Optional[TelemetrySink] = None,
) -> Optional[Sphere]:
    config = config or SearchConfig()
    if config.search_removals:
        result = solve_best_move(board, config=config, tt=tt, telemetry_sink=telemetry_sink)
        if isinstance(result.best_action, Sphere):
            return result.best_action
    return _shallow_removal(board)


def choose_removal_or_pass(
    board: Board,
    config: Optional[SearchConfig] = None,
    tt: Optional[TranspositionTable] = None,
    telemetry_sink: Optional[TelemetrySink] = None,
) -> Optional[Sphere]:
    """Sphere to take back in the optional second removal, or ``None`` to pass."""
    config = config or SearchConfig()
    if config.search_removals:
        result = solve_best_move(board, config=config, tt=tt, telemetry_sink=telemetry_sink)
        if isinstance(result.best_action, Sphere):
            return result.best_action
        if result.best_action == PASS:
            return None
    return _shallow_removal_or_pass(board)
