"""Telemetry schema and sinks for Pylos search instrumentation."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from queue import Queue
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple, Union
import json
import threading
import time


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class TelemetryEnvelope:
    event: str
    ts_ms: int
    data: Dict[str, Any]


@dataclass(frozen=True)
class SearchStartEvent:
    board_key: str
    phase: str
    max_depth: int
    iterative: bool


@dataclass(frozen=True)
class IterationStartEvent:
    depth: int


@dataclass(frozen=True)
class IterationDoneEvent:
    depth: int
    score: float
    best_action: Optional[str]
    nodes: int
    elapsed_ms: int
    max_ply: int
    root_scores: List[Tuple[str, float]]


@dataclass(frozen=True)
class PVUpdateEvent:
    depth: int
    pv: List[str]
    score: float


@dataclass(frozen=True)
class NodeBatchEvent:
    nodes_total: int
    nps_estimate: int
    tt_probes: int
    tt_hits: int
    tt_stores: int
    cutoffs: int
    eval_calls: int
    max_ply: int
    branching_factor_estimate: float
    elapsed_ms: int


@dataclass(frozen=True)
class SearchEndEvent:
    best_action: Optional[str]
    score: float
    depth: int
    nodes: int
    elapsed_ms: int
    reason: str


class TelemetrySink(Protocol):
    def emit(self, envelope: TelemetryEnvelope) -> None:
        ...

    def close(self) -> None:
        ...


class NullTelemetrySink:
    def emit(self, envelope: TelemetryEnvelope) -> None:
        _ = envelope

    def close(self) -> None:
        return


class CallbackTelemetrySink:
    def __init__(self, callback: Callable[[TelemetryEnvelope], None]) -> None:
        self._callback = callback

    def emit(self, envelope: TelemetryEnvelope) -> None:
        self._callback(envelope)

    def close(self) -> None:
        return


class QueueTelemetrySink:
    def __init__(self, queue: "Queue[TelemetryEnvelope]") -> None:
        self._queue = queue

    def emit(self, envelope: TelemetryEnvelope) -> None:
        self._queue.put(envelope)

    def close(self) -> None:
        return


class JsonlTelemetrySink:
    """Append one JSON object per event to a file; safe to share between threads."""

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = self._path.open("a", encoding="utf-8")
        self._lock = threading.Lock()

    def emit(self, envelope: TelemetryEnvelope) -> None:
        payload = {
            "event": envelope.event,
            "ts_ms": envelope.ts_ms,
            "data": envelope.data,
        }
        line = json.dumps(payload, separators=(",", ":")) + "\n"
        with self._lock:
            if self._handle.closed:
                return
            self._handle.write(line)
            self._handle.flush()

    def close(self) -> None:
        with self._lock:
            if not self._handle.closed:
                self._handle.close()


def emit_event(sink: Optional[TelemetrySink], event: str, payload: Mapping[str, Any]) -> None:
    if sink is None:
        return
    envelope = TelemetryEnvelope(event=event, ts_ms=now_ms(), data=dict(payload))
    try:
        sink.emit(envelope)
    except Exception:
        return


def emit_dataclass_event(sink: Optional[TelemetrySink], event: str, payload_obj: object) -> None:
    emit_event(sink, event, asdict(payload_obj))


def read_jsonl(path: Union[str, Path]) -> List[TelemetryEnvelope]:
    envelopes: List[TelemetryEnvelope] = []
    with Path(path).open("r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            raw = json.loads(line)
            envelopes.append(TelemetryEnvelope(raw["event"], int(raw["ts_ms"]), dict(raw["data"])))
    return envelopes
