import tempfile
import unittest
from io import StringIO
from pathlib import Path
from unittest.mock import patch

import bench_solver
from pylos_engine import DARK, LIGHT, MOVE, board_key, initial_board, key_to_board
from pylos_solver import SearchConfig


def make_key(to_move, layer0):
    return f"{to_move}|{MOVE}|{layer0 + '.' * (30 - len(layer0))}|-"


class TestBenchmark(unittest.TestCase):
    def _positions(self):
        return [
            key_to_board(make_key(LIGHT, "L..............D")),
            key_to_board(make_key(DARK, "L..............D")),
            key_to_board(make_key(DARK, "LL.............D")),
        ]

    def test_shared_table_resets_when_side_changes(self):
        config = SearchConfig(max_depth=2, tt_capacity=1 << 12)
        with patch("sys.stdout", new=StringIO()) as out:
            shared = bench_solver.run_positions(self._positions(), config, reuse_tt=True)
            fresh = bench_solver.run_positions(self._positions(), config, reuse_tt=False)

        self.assertEqual(shared["rebinds"], 1.0)
        self.assertEqual(fresh["rebinds"], 0.0)
        self.assertEqual(shared["fallbacks"], 0.0)
        self.assertTrue(0.0 <= shared["tt_hit_rate"] <= 1.0)
        lines = [line for line in out.getvalue().splitlines() if line.startswith("  1 ")]
        self.assertEqual(len(lines), 6)
        # Scores do not depend on whether the table was shared.
        scores = [line.split()[-1] for line in lines]
        self.assertEqual(scores[:3], scores[3:])

    def test_no_table_reports_zero_hit_rate(self):
        config = SearchConfig(max_depth=1, use_tt=False)
        with patch("sys.stdout", new=StringIO()):
            summary = bench_solver.run_positions([initial_board()], config, reuse_tt=True)
        self.assertEqual(summary["tt_hit_rate"], 0.0)
        self.assertEqual(summary["rebinds"], 0.0)
        self.assertGreater(summary["total_nodes"], 0.0)

    def test_generated_positions_start_a_turn(self):
        boards = bench_solver._generate_positions(positions=5, max_actions=6, seed=7)
        self.assertEqual(len(boards), 5)
        self.assertTrue(all(board.phase == MOVE for board in boards))
        again = bench_solver._generate_positions(positions=5, max_actions=6, seed=7)
        self.assertEqual([board_key(b) for b in boards], [board_key(b) for b in again])

    def test_main_saves_and_reloads_positions(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "positions.txt"
            with patch("sys.stdout", new=StringIO()) as out:
                rc = bench_solver.main(
                    ["--positions", "2", "--depth", "1", "--repeat", "2", "--save-positions", str(path)]
                )
            self.assertEqual(rc, 0)
            self.assertEqual(len(path.read_text(encoding="utf-8").splitlines()), 2)
            self.assertIn("dist nps_wall", out.getvalue())

            with patch("sys.stdout", new=StringIO()):
                rc = bench_solver.main(["--positions", "2", "--depth", "1", "--load-positions", str(path)])
            self.assertEqual(rc, 0)

    def test_main_rejects_bad_arguments(self):
        with patch("sys.stdout", new=StringIO()):
            self.assertEqual(bench_solver.main(["--positions", "0"]), 2)
            self.assertEqual(bench_solver.main(["--repeat", "0"]), 2)
            self.assertEqual(bench_solver.main(["--load-positions", "/nonexistent/positions.txt"]), 2)


if __name__ == "__main__":
    unittest.main()
