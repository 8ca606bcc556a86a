import random
import unittest

from pylos_engine import (
    ADD,
    COMPLETED,
    DARK,
    LIFT,
    LIGHT,
    LOCATIONS,
    MOVE,
    PASS,
    REMOVE_FIRST,
    REMOVE_SECOND,
    RESTING_ON,
    SQUARES,
    SUPPORTS,
    TOP,
    Board,
    Move,
    apply_action,
    board_key,
    describe_action,
    generate_moves,
    initial_board,
    is_legal,
    is_terminal,
    key_to_board,
    legal_actions,
    location_at,
    parse_action,
    parse_location,
    pretty_print,
    undoing,
)


def place(board, z, x, y):
    """Place a reserve sphere of the side to move at z,x,y."""
    return board.move_sphere(board.reserve(board.to_move), location_at(z, x, y))


def make_key(to_move, phase, layer0, upper="", winner="-"):
    cells = layer0 + upper
    cells += "." * (len(LOCATIONS) - len(cells))
    return f"{to_move}|{phase}|{cells}|{winner}"


class TestGeometry(unittest.TestCase):
    def test_pyramid_shape(self):
        self.assertEqual(len(LOCATIONS), 30)
        self.assertEqual(TOP, location_at(3, 0, 0))
        self.assertEqual([loc.index for loc in LOCATIONS], list(range(30)))

    def test_supports_and_squares(self):
        base = location_at(0, 0, 0)
        self.assertEqual(SUPPORTS[base.index], ())
        above = location_at(1, 1, 1)
        expected = {location_at(0, x, y).index for x in (1, 2) for y in (1, 2)}
        self.assertEqual(set(SUPPORTS[above.index]), expected)
        # Centre base cell carries four layer-1 cells.
        self.assertEqual(len(RESTING_ON[location_at(0, 1, 1).index]), 4)
        self.assertEqual(len(RESTING_ON[location_at(0, 0, 0).index]), 1)
        self.assertEqual(len(SQUARES), 9 + 4 + 1)

    def test_location_at_rejects_outside_pyramid(self):
        with self.assertRaises(ValueError):
            location_at(1, 3, 0)
        with self.assertRaises(ValueError):
            location_at(4, 0, 0)


class TestRules(unittest.TestCase):
    def test_initial_board(self):
        board = initial_board()
        self.assertEqual(board.to_move, LIGHT)
        self.assertEqual(board.phase, MOVE)
        self.assertEqual(board.reserve_size(LIGHT), 15)
        self.assertEqual(board.reserve_size(DARK), 15)
        self.assertEqual(initial_board(light_first=False).to_move, DARK)
        self.assertEqual(len(legal_actions(board)), 16)

    def test_placement_alternates_turns(self):
        board = initial_board()
        token = place(board, 0, 1, 1)
        self.assertEqual(token.kind, ADD)
        self.assertEqual(board.to_move, DARK)
        self.assertEqual(board.phase, MOVE)
        self.assertEqual(board.color_at(location_at(0, 1, 1)), LIGHT)
        self.assertEqual(board.reserve_size(LIGHT), 14)

    def test_unsupported_placement_is_rejected(self):
        board = initial_board()
        with self.assertRaises(ValueError):
            place(board, 1, 0, 0)
        place(board, 0, 1, 1)
        with self.assertRaises(ValueError):
            place(board, 0, 1, 1)

    def test_wrong_side_and_wrong_phase(self):
        board = initial_board()
        dark = board.reserve(DARK)
        with self.assertRaises(ValueError):
            board.move_sphere(dark, location_at(0, 0, 0))
        with self.assertRaises(ValueError):
            board.remove_sphere(board.reserve(LIGHT))
        with self.assertRaises(ValueError):
            board.pass_turn()

    def test_square_enters_removal_and_pass_ends_turn(self):
        board = key_to_board(make_key(LIGHT, MOVE, "LL..L..........."))
        token = place(board, 0, 1, 1)
        self.assertEqual(token.kind, ADD)
        self.assertEqual(board.phase, REMOVE_FIRST)
        self.assertEqual(board.to_move, LIGHT)
        self.assertNotIn(PASS, legal_actions(board))

        board.remove_sphere(board.sphere_at(location_at(0, 0, 0)))
        self.assertEqual(board.phase, REMOVE_SECOND)
        self.assertEqual(board.to_move, LIGHT)
        self.assertIn(PASS, legal_actions(board))

    def test_reserve_sphere_cannot_be_removed(self):
        board = key_to_board(make_key(LIGHT, MOVE, "LL..L..........."))
        place(board, 0, 1, 1)
        before = board_key(board)
        with self.assertRaises(ValueError):
            board.remove_sphere(board.reserve(LIGHT))
        self.assertEqual(board_key(board), before)

    def test_move_phase_actions_are_generated_moves(self):
        board = key_to_board(make_key(LIGHT, MOVE, "DD..DD.........L"))
        actions = legal_actions(board)
        self.assertEqual(actions, generate_moves(board, LIGHT))
        self.assertTrue(any(not board.is_reserve(action.sphere) for action in actions))

        board.pass_turn()
        self.assertEqual(board.phase, MOVE)
        self.assertEqual(board.to_move, DARK)

    def test_opponent_colours_do_not_complete_a_square(self):
        board = key_to_board(make_key(LIGHT, MOVE, "LD..L..........."))
        place(board, 0, 1, 1)
        self.assertEqual(board.phase, MOVE)
        self.assertEqual(board.to_move, DARK)

    def test_lift_rules(self):
        # DARK square on the corner, LIGHT sphere free elsewhere.
        board = key_to_board(make_key(LIGHT, MOVE, "DD..DD.........L"))
        free = board.sphere_at(location_at(0, 3, 3))
        target = location_at(1, 0, 0)
        self.assertTrue(board.can_move_to(free, target))
        self.assertFalse(board.can_move_to(free, location_at(0, 2, 2)))

        token = board.move_sphere(free, target)
        self.assertEqual(token.kind, LIFT)
        self.assertEqual(token.origin, location_at(0, 3, 3))
        self.assertIsNone(board.sphere_at(location_at(0, 3, 3)))

        # A supporting sphere can neither be lifted nor removed.
        support = board.sphere_at(location_at(0, 0, 0))
        self.assertFalse(board.can_remove(support))
        self.assertFalse(board.can_move_to(support, location_at(1, 2, 2)))

    def test_sphere_cannot_lift_onto_its_own_square(self):
        board = key_to_board(make_key(LIGHT, MOVE, "LL..LL.........."))
        corner = board.sphere_at(location_at(0, 0, 0))
        self.assertFalse(board.can_move_to(corner, location_at(1, 0, 0)))

    def test_top_completes_game(self):
        upper = "LLDDLDDLD" + "LDDL"
        board = key_to_board(make_key(LIGHT, MOVE, "LDLDDLDLLDLDDLDL", upper))
        self.assertIsNotNone(board)
        board.move_sphere(board.reserve(LIGHT), TOP)
        self.assertTrue(is_terminal(board))
        self.assertEqual(board.winner, LIGHT)
        self.assertEqual(legal_actions(board), [])

    def test_empty_reserve_loses(self):
        board = key_to_board(make_key(DARK, MOVE, "DDDDDDDDDDDDDDD."))
        self.assertEqual(board.reserve_size(DARK), 0)
        self.assertEqual(board.reserve_size(LIGHT), 15)
        board.to_move = LIGHT
        place(board, 0, 3, 3)
        self.assertEqual(board.phase, COMPLETED)
        self.assertEqual(board.winner, LIGHT)


class TestUndo(unittest.TestCase):
    def test_undo_restores_every_kind(self):
        board = key_to_board(make_key(LIGHT, MOVE, "LL..L..........."))
        before = board_key(board)
        first = place(board, 0, 1, 1)
        after_square = board_key(board)
        second = board.remove_sphere(board.sphere_at(location_at(0, 1, 1)))
        after_first = board_key(board)
        third = board.remove_sphere(board.sphere_at(location_at(0, 0, 0)))
        self.assertEqual(third.kind, REMOVE_SECOND)

        board.undo(third)
        self.assertEqual(board_key(board), after_first)
        board.undo(second)
        self.assertEqual(board_key(board), after_square)
        board.undo(first)
        self.assertEqual(board_key(board), before)

    def test_undo_clears_winner(self):
        board = key_to_board(make_key(DARK, MOVE, "DDDDDDDDDDDDDDD."))
        board.to_move = LIGHT
        token = place(board, 0, 3, 3)
        self.assertEqual(board.winner, LIGHT)
        board.undo(token)
        self.assertIsNone(board.winner)
        self.assertEqual(board.phase, MOVE)
        self.assertEqual(board.to_move, LIGHT)

    def test_undoing_context_restores_on_exception(self):
        board = initial_board()
        before = board_key(board)
        with self.assertRaises(RuntimeError):
            with undoing(board, place(board, 0, 2, 2)):
                raise RuntimeError("boom")
        self.assertEqual(board_key(board), before)

    def test_random_sequences_unwind_exactly(self):
        rng = random.Random(7)
        for _ in range(20):
            board = initial_board(light_first=bool(rng.getrandbits(1)))
            keys = [board_key(board)]
            tokens = []
            for _ in range(60):
                actions = legal_actions(board)
                if not actions:
                    break
                tokens.append(apply_action(board, rng.choice(actions)))
                keys.append(board_key(board))
            while tokens:
                keys.pop()
                board.undo(tokens.pop())
                self.assertEqual(board_key(board), keys[-1])

    def test_legal_actions_are_legal(self):
        rng = random.Random(3)
        board = initial_board()
        for _ in range(40):
            actions = legal_actions(board)
            if not actions:
                break
            for action in actions:
                self.assertTrue(is_legal(board, action))
            apply_action(board, rng.choice(actions))


class TestKeysAndParsing(unittest.TestCase):
    def test_board_key_round_trip_ignores_sphere_ids(self):
        board = initial_board()
        place(board, 0, 0, 0)
        place(board, 0, 3, 3)
        key = board_key(board)
        self.assertEqual(key, make_key(LIGHT, MOVE, "L..............D"))
        restored = key_to_board(key)
        self.assertEqual(board_key(restored), key)

    def test_key_to_board_rejects_garbage(self):
        self.assertIsNone(key_to_board("nonsense"))
        self.assertIsNone(key_to_board(make_key("BLUE", MOVE, "")))
        self.assertIsNone(key_to_board(make_key(LIGHT, "SLEEP", "")))
        self.assertIsNone(key_to_board(make_key(LIGHT, MOVE, "X")))
        # A floating sphere on layer 1.
        self.assertIsNone(key_to_board(make_key(LIGHT, MOVE, "." * 16, "L")))
        self.assertIsNone(key_to_board(make_key(LIGHT, MOVE, "L" * 16, "L")))

    def test_parse_location(self):
        self.assertEqual(parse_location(" 1,2,0 "), location_at(1, 2, 0))
        with self.assertRaises(ValueError):
            parse_location("1,2")
        with self.assertRaises(ValueError):
            parse_location("a,b,c")

    def test_parse_action_forms(self):
        board = key_to_board(make_key(LIGHT, MOVE, "DD..DD.........L"))
        placement = parse_action(board, "0,2,2")
        self.assertEqual(placement, Move(board.reserve(LIGHT), location_at(0, 2, 2)))

        lift = parse_action(board, "0,3,3 > 1,0,0")
        self.assertEqual(lift, Move(board.sphere_at(location_at(0, 3, 3)), location_at(1, 0, 0)))
        self.assertEqual(describe_action(board, lift), "0,3,3>1,0,0")

        removal = parse_action(board, "x0,3,3")
        self.assertEqual(removal, board.sphere_at(location_at(0, 3, 3)))
        self.assertEqual(describe_action(board, removal), "x0,3,3")

        self.assertEqual(parse_action(board, "PASS"), PASS)
        self.assertEqual(describe_action(board, PASS), "pass")

        with self.assertRaises(ValueError):
            parse_action(board, "x0,1,2")
        with self.assertRaises(ValueError):
            parse_action(board, "0,1,2>1,0,0")

    def test_apply_action_rejects_unknown(self):
        with self.assertRaises(ValueError):
            apply_action(initial_board(), "JUMP")

    def test_pretty_print_layout(self):
        board = initial_board()
        place(board, 0, 1, 2)
        text = pretty_print(board)
        self.assertIn("Turn: DARK  Phase: MOVE", text)
        self.assertIn("Reserve: LIGHT 14  DARK 15", text)
        self.assertIn("layer 3", text)
        self.assertIn("1  . . L .", text)


if __name__ == "__main__":
    unittest.main()
