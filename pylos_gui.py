"""PySide6 GUI for playing Pylos against the solver."""

from __future__ import annotations

import dataclasses
import multiprocessing as mp
import os
import queue
import sys
from typing import Dict, List, Optional

from PySide6.QtCore import QObject, QSettings, Qt, QTimer, Signal, Slot
from PySide6.QtWidgets import (
    QApplication,
    QCheckBox,
    QComboBox,
    QFrame,
    QGridLayout,
    QHBoxLayout,
    QLabel,
    QMainWindow,
    QPushButton,
    QSpinBox,
    QVBoxLayout,
    QWidget,
)

from pylos_engine import (
    COLORS,
    COMPLETED,
    LAYER_SIZES,
    LIGHT,
    LOCATIONS,
    MOVE,
    PASS,
    REMOVE_FIRST,
    REMOVE_SECOND,
    Action,
    Board,
    Location,
    Move,
    Sphere,
    UndoToken,
    apply_action,
    describe_action,
    initial_board,
)
from pylos_solver import (
    PRESETS,
    SearchConfig,
    TranspositionTable,
    choose_removal,
    choose_removal_or_pass,
    preset,
    solve_best_move,
)
from pylos_telemetry import JsonlTelemetrySink

CELL_SIZE = 52
MAX_DEPTH_SPIN = 6
SOLVER_CLOSE_TIMEOUT_MS = 3_000
EVENT_POLL_MS = 10
TELEMETRY_ENV_VAR = "PYLOS_TELEMETRY_LOG"
SETTINGS_ORG = "prattsm"
SETTINGS_APP = "pylos_solver"


def _solver_process_worker(
    commands: "mp.Queue[dict]",
    events: "mp.Queue[tuple]",
    latest_request_id: "mp.Value",
    telemetry_path: Optional[str],
) -> None:
    tt: Optional[TranspositionTable] = None
    tt_key: Optional[tuple] = None
    telemetry_sink: Optional[JsonlTelemetrySink] = None
    if telemetry_path:
        telemetry_sink = JsonlTelemetrySink(telemetry_path)

    def _put_event(event: tuple) -> None:
        try:
            events.put_nowait(event)
        except queue.Full:
            return

    def _is_interrupted(request_id: int) -> bool:
        return request_id != latest_request_id.value

    try:
        while True:
            cmd = commands.get()
            cmd_type = cmd.get("type")
            if cmd_type == "shutdown":
                break
            if cmd_type != "solve":
                continue
            request_id = int(cmd.get("request_id", 0))
            board = cmd.get("board")
            config = cmd.get("config")
            if not isinstance(board, Board) or not isinstance(config, SearchConfig):
                _put_event(("error", request_id, "Invalid solve payload"))
                continue
            if _is_interrupted(request_id):
                continue

            # One table per game and configuration; entries are scored for the solver's colour.
            key = (cmd.get("game_id"), config)
            if key != tt_key:
                tt = TranspositionTable(config.tt_capacity) if config.use_tt else None
                tt_key = key

            action: Optional[Action]
            try:
                if board.phase == MOVE or config.search_removals:
                    result = solve_best_move(
                        board,
                        config=config,
                        tt=tt,
                        telemetry_sink=telemetry_sink,
                        interrupt_check=lambda rid=request_id: _is_interrupted(rid),
                    )
                    action = result.best_action
                elif board.phase == REMOVE_FIRST:
                    action = choose_removal(board, config, tt)
                else:
                    sphere = choose_removal_or_pass(board, config, tt)
                    action = PASS if sphere is None else sphere
            except Exception as exc:
                if _is_interrupted(request_id):
                    continue
                _put_event(("error", request_id, f"{type(exc).__name__}: {exc}"))
                continue
            if _is_interrupted(request_id):
                continue
            _put_event(("result", request_id, action))
    finally:
        if telemetry_sink is not None:
            telemetry_sink.close()


class SolverWorker(QObject):
    """Front for a solver child process; results come back through a polled event queue."""

    result_ready = Signal(int, object)
    solve_failed = Signal(int, str)

    def __init__(self) -> None:
        super().__init__()
        self.latest_request_id = 0
        self._command_queue: "mp.Queue[dict]" = mp.Queue()
        self._event_queue: "mp.Queue[tuple]" = mp.Queue(maxsize=512)
        self._latest_request_id_value = mp.Value("i", 0, lock=False)
        self._process: Optional[mp.Process] = None
        self._active_request_id: Optional[int] = None
        self._closed = False
        self._allow_process_restart = True
        self._event_timer = QTimer(self)
        self._event_timer.setInterval(EVENT_POLL_MS)
        self._event_timer.timeout.connect(self._drain_events)
        self._event_timer.start()
        self._telemetry_path = os.environ.get(TELEMETRY_ENV_VAR, "").strip() or None

    def _ensure_process(self) -> bool:
        if self._closed:
            return False
        if self._process is not None and self._process.is_alive():
            return True
        if not self._allow_process_restart:
            return False
        if self._process is not None:
            self._process.join(timeout=0.05)
            self._process = None
        try:
            process = mp.Process(
                target=_solver_process_worker,
                args=(
                    self._command_queue,
                    self._event_queue,
                    self._latest_request_id_value,
                    self._telemetry_path,
                ),
                name="pylos-solver",
                daemon=True,
            )
            process.start()
        except Exception:
            self._process = None
            return False
        self._process = process
        return True

    def _send_command(self, cmd: dict) -> bool:
        if not self._ensure_process():
            return False
        try:
            self._command_queue.put_nowait(cmd)
            return True
        except queue.Full:
            return False

    def _drain_events(self) -> None:
        while True:
            try:
                event = self._event_queue.get_nowait()
            except queue.Empty:
                break

            kind = event[0] if event else None
            if kind == "result":
                _, request_id, action = event
                if self._active_request_id == int(request_id):
                    self._active_request_id = None
                self.result_ready.emit(int(request_id), action)
                continue
            if kind == "error":
                _, request_id, text = event
                if self._active_request_id == int(request_id):
                    self._active_request_id = None
                self.solve_failed.emit(int(request_id), str(text))
                continue

    def set_latest_request_id(self, request_id: int) -> None:
        self.latest_request_id = request_id
        self._latest_request_id_value.value = int(request_id)
        if self._active_request_id is not None and self._active_request_id != int(request_id):
            self._active_request_id = None

    @Slot(object, object, int, int)
    def solve(self, board: Board, config: SearchConfig, request_id: int, game_id: int) -> None:
        if request_id != self.latest_request_id:
            return
        if not self._send_command(
            {
                "type": "solve",
                "board": board,
                "config": config,
                "request_id": int(request_id),
                "game_id": int(game_id),
            }
        ):
            self.solve_failed.emit(request_id, "Failed to start solver process")
            return
        self._active_request_id = int(request_id)

    def shutdown(self, timeout_ms: int) -> bool:
        self._allow_process_restart = False
        self._active_request_id = None
        process = self._process
        if process is None:
            return True
        self._event_timer.stop()
        self._send_command({"type": "shutdown"})
        process.join(timeout=max(0, timeout_ms) / 1000.0)
        if process.is_alive():
            process.terminate()
            process.join(timeout=0.25)
        stopped = not process.is_alive()
        self._process = None
        return stopped

    def close(self) -> None:
        self.shutdown(0)
        self._closed = True


class CellButton(QPushButton):
    def __init__(self, location: Location, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.location = location
        self.setProperty("stone", "empty")
        self.setProperty("selected", False)
        self.setProperty("last", False)
        self.setCursor(Qt.PointingHandCursor)
        self.setFixedSize(CELL_SIZE, CELL_SIZE)
        self.setToolTip(str(location))

    def set_look(self, stone: str, selected: bool, last: bool) -> None:
        if (
            self.property("stone") == stone
            and self.property("selected") == selected
            and self.property("last") == last
        ):
            return
        self.setProperty("stone", stone)
        self.setProperty("selected", selected)
        self.setProperty("last", last)
        self.style().unpolish(self)
        self.style().polish(self)


class PylosWindow(QMainWindow):
    solve_requested = Signal(object, object, int, int)

    def __init__(self) -> None:
        super().__init__()
        self.setWindowTitle("Pylos Solver")
        self.setMinimumSize(900, 560)

        self.settings = QSettings(SETTINGS_ORG, SETTINGS_APP)

        self.board: Board = initial_board()
        self.history: List[UndoToken] = []
        self.human_color = LIGHT
        self.selected: Optional[Sphere] = None
        self.last_action_desc = "-"
        self.last_ai_location: Optional[Location] = None

        self.solve_request_id = 0
        self.game_id = 0
        self.solving = False
        self.closing = False
        self.solver_error_text: Optional[str] = None
        self.message_text = ""

        self.cell_buttons: Dict[int, CellButton] = {}

        self._build_ui()
        self._setup_solver()
        self._apply_style()
        self._load_persistent_settings()

        self.reset_game()

    def _build_ui(self) -> None:
        root = QWidget(self)
        self.setCentralWidget(root)
        main_layout = QHBoxLayout(root)
        main_layout.setContentsMargins(18, 18, 18, 18)
        main_layout.setSpacing(16)

        board_layout = QVBoxLayout()
        board_layout.setSpacing(12)

        layers_row = QHBoxLayout()
        layers_row.setSpacing(18)
        for z, size in enumerate(LAYER_SIZES):
            layer_frame = QFrame()
            layer_frame.setObjectName("Layer")
            layer_layout = QVBoxLayout(layer_frame)
            layer_layout.setContentsMargins(10, 10, 10, 10)
            title = QLabel(f"Layer {z}")
            title.setObjectName("LayerTitle")
            title.setAlignment(Qt.AlignCenter)
            layer_layout.addWidget(title)
            grid = QGridLayout()
            grid.setSpacing(6)
            for loc in LOCATIONS:
                if loc.z != z:
                    continue
                button = CellButton(loc)
                button.clicked.connect(lambda _, b=button: self.handle_cell_click(b))
                grid.addWidget(button, loc.x, loc.y)
                self.cell_buttons[loc.index] = button
            layer_layout.addLayout(grid)
            layer_layout.addStretch(1)
            layers_row.addWidget(layer_frame, size)
        board_layout.addLayout(layers_row)

        self.turn_label = QLabel("-")
        self.turn_label.setObjectName("TurnLabel")
        board_layout.addWidget(self.turn_label)

        self.reserve_label = QLabel("-")
        self.reserve_label.setObjectName("ReserveLabel")
        board_layout.addWidget(self.reserve_label)

        self.message_label = QLabel("")
        self.message_label.setObjectName("MessageLabel")
        self.message_label.setWordWrap(True)
        board_layout.addWidget(self.message_label)

        self.pass_button = QPushButton("Pass (keep second sphere)")
        self.pass_button.clicked.connect(self.pass_turn)
        board_layout.addWidget(self.pass_button)
        board_layout.addStretch(1)

        side_widget = QFrame()
        side_widget.setObjectName("SidePanel")
        side_panel = QVBoxLayout(side_widget)
        side_panel.setContentsMargins(12, 12, 12, 12)
        side_panel.setSpacing(12)

        game_header = QLabel("Game")
        game_header.setObjectName("SideHeader")
        side_panel.addWidget(game_header)

        self.color_combo = QComboBox()
        self.color_combo.addItems(list(COLORS))
        side_panel.addWidget(QLabel("You play"))
        side_panel.addWidget(self.color_combo)

        self.light_first_check = QCheckBox("LIGHT moves first")
        self.light_first_check.setChecked(True)
        side_panel.addWidget(self.light_first_check)

        self.reset_button = QPushButton("New Game")
        self.reset_button.clicked.connect(self.reset_game)
        side_panel.addWidget(self.reset_button)

        self.undo_button = QPushButton("Undo")
        self.undo_button.clicked.connect(self.undo_move)
        side_panel.addWidget(self.undo_button)

        solver_header = QLabel("Solver")
        solver_header.setObjectName("SideHeader")
        side_panel.addWidget(solver_header)

        self.preset_combo = QComboBox()
        self.preset_combo.addItems(sorted(PRESETS))
        self.preset_combo.setCurrentText("classic")
        self.preset_combo.currentTextChanged.connect(self._on_preset_changed)
        side_panel.addWidget(QLabel("Preset"))
        side_panel.addWidget(self.preset_combo)

        self.depth_spin = QSpinBox()
        self.depth_spin.setRange(1, MAX_DEPTH_SPIN)
        self.depth_spin.setValue(preset("classic").max_depth)
        side_panel.addWidget(QLabel("Depth"))
        side_panel.addWidget(self.depth_spin)

        self.solve_state_label = QLabel("State: Idle")
        self.solve_state_label.setObjectName("SolveState")
        self.solve_state_label.setWordWrap(True)
        side_panel.addWidget(self.solve_state_label)

        self.last_move_label = QLabel("Last action: -")
        self.last_move_label.setObjectName("LastMove")
        self.last_move_label.setWordWrap(True)
        side_panel.addWidget(self.last_move_label)

        side_panel.addStretch(1)

        main_layout.addLayout(board_layout, 3)
        main_layout.addWidget(side_widget, 1)

    def _setup_solver(self) -> None:
        self.solver_worker = SolverWorker()
        self.solver_worker.set_latest_request_id(self.solve_request_id)
        self.solve_requested.connect(self.solver_worker.solve)
        self.solver_worker.result_ready.connect(self.on_solve_result)
        self.solver_worker.solve_failed.connect(self.on_solve_failed)

    def _set_latest_request_id(self) -> None:
        if hasattr(self, "solver_worker"):
            self.solver_worker.set_latest_request_id(self.solve_request_id)

    def _apply_style(self) -> None:
        self.setStyleSheet(
            """
            QMainWindow { background: #f3efe6; }
            QFrame#Layer { background: #d9c7a3; border-radius: 10px; }
            QFrame#SidePanel { background: #ebe3d3; border-radius: 10px; }
            QLabel#LayerTitle, QLabel#SideHeader { font-weight: bold; }
            QLabel#MessageLabel { color: #9c2f2f; }
            CellButton { border-radius: 26px; border: 2px solid #8a7652; background: #c7b088; }
            CellButton[stone="light"] { background: #fbf8f0; }
            CellButton[stone="dark"] { background: #3b2f25; color: #f3efe6; }
            CellButton[selected="true"] { border: 3px solid #2f7d32; }
            CellButton[last="true"] { border: 3px solid #c06a1b; }
            """
        )

    def current_config(self) -> SearchConfig:
        return dataclasses.replace(preset(self.preset_combo.currentText()), max_depth=self.depth_spin.value())

    def _on_preset_changed(self, name: str) -> None:
        if name in PRESETS:
            self.depth_spin.setValue(min(MAX_DEPTH_SPIN, PRESETS[name].max_depth))

    def _invalidate_solve(self) -> None:
        self.solve_request_id += 1
        self._set_latest_request_id()
        self.solving = False
        self.solver_error_text = None

    def reset_game(self) -> None:
        self._invalidate_solve()
        self.game_id += 1
        self.human_color = self.color_combo.currentText()
        self.board = initial_board(light_first=self.light_first_check.isChecked())
        self.history.clear()
        self.selected = None
        self.last_action_desc = "-"
        self.last_ai_location = None
        self.message_text = ""
        self.refresh_ui()
        self.schedule_solve_if_needed()

    def undo_move(self) -> None:
        if not self.history:
            return
        self._invalidate_solve()
        # Step back to the last position where the human was to move.
        while self.history:
            token = self.history.pop()
            self.board.undo(token)
            if token.to_move == self.human_color:
                break
        self.selected = None
        self.last_action_desc = "-"
        self.last_ai_location = None
        self.message_text = ""
        self.refresh_ui()
        self.schedule_solve_if_needed()

    def _human_to_move(self) -> bool:
        return (
            not self.closing
            and not self.solving
            and self.board.phase != COMPLETED
            and self.board.to_move == self.human_color
        )

    def handle_cell_click(self, button: CellButton) -> None:
        if not self._human_to_move():
            return
        loc = button.location
        sphere = self.board.sphere_at(loc)
        if self.board.phase == MOVE:
            if sphere is not None:
                if sphere.color == self.human_color and any(
                    self.board.can_move_to(sphere, target) for target in LOCATIONS
                ):
                    self.selected = None if self.selected == sphere else sphere
                    self.refresh_ui()
                return
            mover = self.selected if self.selected is not None else self.board.reserve(self.human_color)
            if mover is None:
                return
            self.apply_action(Move(mover, loc))
            return
        if self.board.phase in (REMOVE_FIRST, REMOVE_SECOND) and sphere is not None:
            self.apply_action(sphere)

    def pass_turn(self) -> None:
        if not self._human_to_move() or self.board.phase != REMOVE_SECOND:
            return
        self.apply_action(PASS)

    def apply_action(self, action: Action) -> bool:
        desc = describe_action(self.board, action)
        try:
            token = apply_action(self.board, action)
        except ValueError as exc:
            self.message_text = str(exc)
            self.update_status()
            return False
        self.history.append(token)
        self.selected = None
        self.message_text = ""
        self.last_action_desc = f"{token.to_move}: {desc}"
        self.refresh_ui()
        self.schedule_solve_if_needed()
        return True

    def schedule_solve_if_needed(self) -> None:
        if self.closing or self.solving:
            return
        if self.board.phase == COMPLETED or self.board.to_move == self.human_color:
            self.update_status()
            return
        self.solve_request_id += 1
        self._set_latest_request_id()
        self.solving = True
        self.solver_error_text = None
        self.solve_requested.emit(self.board.copy(), self.current_config(), self.solve_request_id, self.game_id)
        self.update_status()
        self.update_controls()

    @Slot(int, object)
    def on_solve_result(self, request_id: int, action: object) -> None:
        if self.closing or request_id != self.solve_request_id:
            return
        self.solving = False
        if action is None:
            self.solver_error_text = "Solver found no action."
            self.refresh_ui()
            return
        previous = self.last_ai_location
        self.last_ai_location = action.location if isinstance(action, Move) else None
        if not self.apply_action(action):
            self.last_ai_location = previous
            self.solver_error_text = "Solver suggested an illegal action."
            self.refresh_ui()

    @Slot(int, str)
    def on_solve_failed(self, request_id: int, error_text: str) -> None:
        if self.closing or request_id != self.solve_request_id:
            return
        self.solving = False
        self.solver_error_text = error_text
        self.refresh_ui()

    def refresh_ui(self) -> None:
        self.update_board()
        self.update_status()
        self.update_controls()

    def update_board(self) -> None:
        selected_loc = self.board.location_of(self.selected) if self.selected is not None else None
        for loc in LOCATIONS:
            button = self.cell_buttons[loc.index]
            color = self.board.color_at(loc)
            stone = "empty" if color is None else color.lower()
            button.setText("" if color is None else color[0])
            button.set_look(stone, loc == selected_loc, loc == self.last_ai_location)

    def update_status(self) -> None:
        board = self.board
        if board.phase == COMPLETED:
            who = "you" if board.winner == self.human_color else "solver"
            self.turn_label.setText(f"Game over: {board.winner} wins ({who})")
        else:
            who = "you" if board.to_move == self.human_color else "solver"
            self.turn_label.setText(f"Turn: {board.to_move} ({who})  Phase: {board.phase}")
        light, dark = COLORS
        self.reserve_label.setText(
            f"Reserve: {light} {board.reserve_size(light)}  {dark} {board.reserve_size(dark)}"
        )
        self.message_label.setText(self.message_text)
        if self.solver_error_text is not None:
            self.solve_state_label.setText(f"State: Error ({self.solver_error_text})")
        elif self.solving:
            self.solve_state_label.setText("State: Thinking...")
        else:
            self.solve_state_label.setText("State: Idle")
        self.last_move_label.setText(f"Last action: {self.last_action_desc}")

    def update_controls(self) -> None:
        self.undo_button.setEnabled(bool(self.history) and not self.closing)
        self.pass_button.setEnabled(self._human_to_move() and self.board.phase == REMOVE_SECOND)

    @staticmethod
    def _to_bool(value: object, default: bool) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, int):
            return value != 0
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in {"1", "true", "yes", "on"}:
                return True
            if lowered in {"0", "false", "no", "off"}:
                return False
        return default

    def _load_persistent_settings(self) -> None:
        geometry = self.settings.value("window/geometry")
        if geometry is not None:
            self.restoreGeometry(geometry)

        color = self.settings.value("game/human_color")
        if isinstance(color, str) and self.color_combo.findText(color) >= 0:
            self.color_combo.setCurrentText(color)

        light_first = self._to_bool(
            self.settings.value("game/light_first"),
            self.light_first_check.isChecked(),
        )
        self.light_first_check.setChecked(light_first)

        name = self.settings.value("search/preset")
        if isinstance(name, str) and self.preset_combo.findText(name) >= 0:
            self.preset_combo.setCurrentText(name)

        depth = self.settings.value("search/depth")
        try:
            if depth is not None:
                self.depth_spin.setValue(int(depth))
        except (TypeError, ValueError):
            pass

    def _save_persistent_settings(self) -> None:
        self.settings.setValue("window/geometry", self.saveGeometry())
        self.settings.setValue("game/human_color", self.color_combo.currentText())
        self.settings.setValue("game/light_first", self.light_first_check.isChecked())
        self.settings.setValue("search/preset", self.preset_combo.currentText())
        self.settings.setValue("search/depth", self.depth_spin.value())
        self.settings.sync()

    def closeEvent(self, event) -> None:
        if self.closing:
            event.accept()
            return
        self.closing = True
        self._save_persistent_settings()
        self.solve_request_id += 1
        self._set_latest_request_id()
        self.solving = False
        try:
            self.solve_requested.disconnect(self.solver_worker.solve)
        except (RuntimeError, TypeError):
            pass
        self.solver_worker.shutdown(SOLVER_CLOSE_TIMEOUT_MS)
        self.solver_worker.close()
        super().closeEvent(event)


def main() -> int:
    app = QApplication(sys.argv)
    window = PylosWindow()
    window.show()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
