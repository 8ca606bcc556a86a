import argparse
import unittest
from io import StringIO
from unittest.mock import patch

import cli
from pylos_engine import PASS, Move, location_at
from pylos_solver import SearchResult


def _fake_result(board):
    move = Move(board.reserve(board.to_move), location_at(0, 1, 1))
    return SearchResult(
        best_action=move,
        score=1.5,
        root_scores=((move, 1.5),),
        depth=2,
        elapsed_ms=3,
        nodes=42,
    )


class TestCLI(unittest.TestCase):
    def _run(self, answers, argv=None, fake_solve=None):
        inputs = iter(answers)
        calls = []

        def default_solve(board, config=None, tt=None, telemetry_sink=None, **kwargs):
            calls.append(config)
            return _fake_result(board)

        out = StringIO()
        with (
            patch("builtins.input", side_effect=lambda _prompt="": next(inputs)),
            patch.object(cli, "solve_best_move", side_effect=fake_solve or default_solve),
            patch("sys.stdout", new=out),
        ):
            rc = cli.main(argv or [])
        return rc, out.getvalue(), calls

    def test_read_action_opponent_enter_reprompts(self):
        with patch("builtins.input", side_effect=["", "0,1,1"]), patch("sys.stdout", new=StringIO()):
            raw = cli.read_action("Opponent action: ", allow_enter=False, default_action=None)
        self.assertEqual(raw, "0,1,1")

    def test_read_action_you_enter_requires_default(self):
        with patch("builtins.input", side_effect=["", "pass"]), patch("sys.stdout", new=StringIO()):
            raw = cli.read_action("Your action: ", allow_enter=True, default_action=None)
        self.assertEqual(raw, "pass")

    def test_read_action_you_enter_uses_default(self):
        with patch("builtins.input", side_effect=[""]):
            raw = cli.read_action("Your action: ", allow_enter=True, default_action=PASS)
        self.assertEqual(raw, "")

    def test_read_action_eof_quits(self):
        with patch("builtins.input", side_effect=EOFError), patch("sys.stdout", new=StringIO()):
            raw = cli.read_action("Your action: ", allow_enter=True, default_action=PASS)
        self.assertEqual(raw, "q")

    def test_recommendation_shown_and_quit(self):
        rc, output, calls = self._run(["y", "y", "q"], ["--explain"])
        self.assertEqual(rc, 0)
        self.assertIn("Recommended: 0,1,1 (score: +1.50)", output)
        self.assertIn("Top: 0,1,1:+1.50", output)
        self.assertIn("nodes=42", output)
        self.assertEqual(len(calls), 1)

    def test_enter_plays_recommendation(self):
        rc, output, _ = self._run(["y", "y", "", "q"])
        self.assertEqual(rc, 0)
        self.assertIn("Reserve: LIGHT 14  DARK 15", output)
        self.assertIn("Turn: DARK  Phase: MOVE", output)

    def test_opponent_enter_is_not_accepted(self):
        # DARK moves first, so the first prompt belongs to the opponent.
        rc, output, calls = self._run(["y", "n", "", "0,0,0", "q"])
        self.assertEqual(rc, 0)
        self.assertIn("Please enter an action", output)
        self.assertIn("Reserve: LIGHT 15  DARK 14", output)
        self.assertEqual(len(calls), 1)

    def test_invalid_action_is_reported(self):
        rc, output, _ = self._run(["y", "y", "9,9,9", "1,0,0", "q"])
        self.assertEqual(rc, 0)
        self.assertIn("no location at 9,9,9", output)
        self.assertIn("illegal move", output)

    def test_undo(self):
        rc, output, _ = self._run(["y", "y", "u", "0,2,2", "u", "q"])
        self.assertEqual(rc, 0)
        self.assertIn("Nothing to undo.", output)
        # Start, after the empty undo, and after undoing the placement.
        self.assertEqual(output.count("Reserve: LIGHT 15  DARK 15"), 3)
        self.assertEqual(output.count("Reserve: LIGHT 14  DARK 15"), 1)

    def test_flags_reach_search_config(self):
        _, _, calls = self._run(["y", "y", "q"], ["--preset", "fast", "--depth", "3", "--no-tt", "--contempt", "0"])
        config = calls[0]
        self.assertEqual(config.max_depth, 3)
        self.assertFalse(config.use_tt)
        self.assertEqual(config.contempt, 0.0)

    def test_rejects_non_positive_depth(self):
        with patch("sys.stdout", new=StringIO()):
            self.assertEqual(cli.main(["--depth", "0"]), 2)

    def test_build_config_keeps_preset_without_overrides(self):
        args = argparse.Namespace(preset="deep", depth=None, contempt=None, no_tt=False, search_removals=False)
        self.assertIs(cli.build_config(args), cli.preset("deep"))


if __name__ == "__main__":
    unittest.main()
