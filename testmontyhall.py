# testmontyhall.py
import contextlib
import io
import re
import unittest

import numpy as np

from MontyHall import (
    DOOR_COUNT,
    ConfigurationError,
    PlayMontyHall,
    PrintStatus,
    RunConfig,
    RunState,
    SimulateTrials,
    Strategy,
    TrialOutcome,
    WinRate,
    BuildRunConfig,
    FormatTrialLog,
    _choose_host_door,
    _resolve_backend,
    main,
)


def _capture(func, *args, **kwargs):
    buffer = io.StringIO()
    with contextlib.redirect_stdout(buffer):
        result = func(*args, **kwargs)
    return result, buffer.getvalue()


class _FakeClock:
    """Advances by `step` seconds every time it is read."""

    def __init__(self, step):
        self.now = 0.0
        self.step = step

    def __call__(self):
        value = self.now
        self.now += self.step
        return value


class TestBuildRunConfig(unittest.TestCase):

    def test_minimal_arguments(self):
        config = BuildRunConfig(["prog", "10", "STAY"])
        self.assertEqual(config.iteration_target, 10)
        self.assertIs(config.strategy, Strategy.STAY)
        self.assertFalse(config.logging_enabled)
        self.assertIsNone(config.seed)
        self.assertEqual(config.backend, "auto")

    def test_debuglog_enables_logging(self):
        config = BuildRunConfig(["prog", "10", "BOTH", "DEBUGLOG"])
        self.assertIs(config.strategy, Strategy.BOTH)
        self.assertTrue(config.logging_enabled)

    def test_unrecognized_third_argument_is_ignored(self):
        config = BuildRunConfig(["prog", "10", "SWITCH", "VERBOSE"])
        self.assertIs(config.strategy, Strategy.SWITCH)
        self.assertFalse(config.logging_enabled)

    def test_dash_prefixed_third_argument_is_ignored(self):
        for token in ("--verbose", "-h", "--help", "-x"):
            with self.subTest(token=token):
                config = BuildRunConfig(["prog", "10", "STAY", token])
                self.assertEqual(config.iteration_target, 10)
                self.assertFalse(config.logging_enabled)

    def test_debuglog_after_options(self):
        config = BuildRunConfig(["prog", "10", "STAY", "--seed", "3", "DEBUGLOG"])
        self.assertTrue(config.logging_enabled)
        self.assertEqual(config.seed, 3)
        config = BuildRunConfig(["prog", "10", "--seed", "3", "STAY", "DEBUGLOG"])
        self.assertTrue(config.logging_enabled)

    def test_help_flag_is_not_special(self):
        for argv in (["prog", "-h"], ["prog", "--help"], ["prog", "10", "STAY", "DEBUGLOG", "-h"]):
            with self.subTest(argv=argv):
                with self.assertRaises(ConfigurationError):
                    BuildRunConfig(argv)

    def test_iterations_beyond_u128_rejected(self):
        self.assertEqual(BuildRunConfig(["prog", str(2 ** 128 - 1), "STAY"]).iteration_target, 2 ** 128 - 1)
        with self.assertRaisesRegex(ConfigurationError, "Iterations argument failed to parse"):
            BuildRunConfig(["prog", str(2 ** 128), "STAY"])

    def test_zero_iterations_rejected(self):
        with self.assertRaisesRegex(ConfigurationError, "Zero is an invalid number of iterations"):
            BuildRunConfig(["prog", "0", "STAY"])

    def test_unparseable_iterations_rejected(self):
        for token in ("abc", "-5", "1.5", "1_000", ""):
            with self.subTest(token=token):
                with self.assertRaisesRegex(ConfigurationError, "Iterations argument failed to parse"):
                    BuildRunConfig(["prog", token, "STAY"])

    def test_plus_prefixed_iterations_accepted(self):
        self.assertEqual(BuildRunConfig(["prog", "+25", "STAY"]).iteration_target, 25)

    def test_unknown_strategy_rejected(self):
        for token in ("SPIN", "stay", "Switch"):
            with self.subTest(token=token):
                with self.assertRaisesRegex(ConfigurationError, "Strategy failed to parse"):
                    BuildRunConfig(["prog", "10", token])

    def test_wrong_argument_count_rejected(self):
        for argv in (["prog"], ["prog", "10"], ["prog", "10", "STAY", "DEBUGLOG", "extra"]):
            with self.subTest(argv=argv):
                with self.assertRaises(ConfigurationError):
                    BuildRunConfig(argv)

    def test_options(self):
        config = BuildRunConfig(["prog", "500", "BOTH", "--seed", "7", "--backend", "numba", "--chunk-size", "100"])
        self.assertEqual(config.seed, 7)
        self.assertEqual(config.backend, "numba")
        self.assertEqual(config.chunk_size, 100)

    def test_invalid_options_rejected(self):
        for extra in (["--seed", "-1"], ["--chunk-size", "0"], ["--backend", "cuda"]):
            with self.subTest(extra=extra):
                with self.assertRaises(ConfigurationError):
                    BuildRunConfig(["prog", "10", "STAY"] + extra)

    def test_numba_backend_cannot_narrate(self):
        with self.assertRaisesRegex(ConfigurationError, "numba"):
            BuildRunConfig(["prog", "10", "STAY", "DEBUGLOG", "--backend", "numba"])


class TestTrialEngine(unittest.TestCase):

    def test_stay_wins_iff_contestant_holds_car(self):
        self.assertTrue(TrialOutcome(car_door=1, contestant_door=1).stay_wins)
        self.assertFalse(TrialOutcome(car_door=1, contestant_door=1).switch_wins)
        self.assertFalse(TrialOutcome(car_door=0, contestant_door=2).stay_wins)
        self.assertTrue(TrialOutcome(car_door=0, contestant_door=2).switch_wins)

    def test_doors_in_range(self):
        rng = np.random.default_rng(1234)
        for _ in range(300):
            outcome = PlayMontyHall(rng, reveal_host_door=True)
            self.assertIn(outcome.car_door, range(DOOR_COUNT))
            self.assertIn(outcome.contestant_door, range(DOOR_COUNT))
            self.assertEqual(outcome.stay_wins, outcome.car_door == outcome.contestant_door)

    def test_host_never_opens_car_or_contestant_door(self):
        rng = np.random.default_rng(99)
        for _ in range(300):
            outcome = PlayMontyHall(rng, reveal_host_door=True)
            self.assertNotEqual(outcome.host_door, outcome.car_door)
            self.assertNotEqual(outcome.host_door, outcome.contestant_door)
            self.assertIn(outcome.host_door, outcome.goat_doors)

    def test_host_door_not_drawn_without_narration(self):
        outcome = PlayMontyHall(np.random.default_rng(5))
        self.assertIsNone(outcome.host_door)

    def test_host_door_forced_when_contestant_holds_goat(self):
        rng = np.random.default_rng(0)
        self.assertEqual(_choose_host_door(0, 1, rng), 2)
        self.assertEqual(_choose_host_door(2, 0, rng), 1)

    def test_host_picks_either_goat_when_contestant_holds_car(self):
        rng = np.random.default_rng(42)
        opened = {_choose_host_door(1, 1, rng) for _ in range(200)}
        self.assertEqual(opened, {0, 2})

    def test_trial_log_requires_host_door(self):
        outcome = PlayMontyHall(np.random.default_rng(5))
        with self.assertRaisesRegex(ValueError, "reveal_host_door"):
            FormatTrialLog(1, 1, outcome)

    def test_trial_log_uses_one_based_doors(self):
        outcome = TrialOutcome(car_door=0, contestant_door=1, host_door=2)
        self.assertEqual(
            FormatTrialLog(3, 10, outcome),
            "Test 3 of 10: car behind 1, goats behind 2 and 3 | contestant chooses 2 | "
            "Monty opens 3 and reveals a goat",
        )


class TestRunState(unittest.TestCase):

    def test_record_result(self):
        state = RunState(config=RunConfig(3, Strategy.BOTH))
        state.record_result(True)
        state.record_result(False)
        self.assertTrue(state.needs_another_iteration())
        state.record_result(False)
        self.assertFalse(state.needs_another_iteration())
        self.assertEqual(state.stay_wins, 1)
        self.assertEqual(state.switch_wins, 2)

    def test_record_batch_rejects_overshoot(self):
        state = RunState(config=RunConfig(10, Strategy.STAY))
        state.record_batch(6, 2)
        with self.assertRaises(ValueError):
            state.record_batch(5, 1)
        with self.assertRaises(ValueError):
            state.record_batch(2, 3)
        self.assertEqual((state.iterations_performed, state.stay_wins), (6, 2))


class TestReporter(unittest.TestCase):

    def _state(self, strategy, performed=9, stay_wins=3):
        return RunState(config=RunConfig(10, strategy), iterations_performed=performed, stay_wins=stay_wins)

    def test_stay_only(self):
        _, output = _capture(PrintStatus, self._state(Strategy.STAY))
        self.assertEqual(output, "Tested 9 of 10 iterations\n\tSTAY wins 3 times (win rate: 33.3333%)\n")

    def test_switch_only(self):
        _, output = _capture(PrintStatus, self._state(Strategy.SWITCH))
        self.assertEqual(output, "Tested 9 of 10 iterations\n\tSWITCH wins 6 times (win rate: 66.6667%)\n")

    def test_both_prints_stay_first(self):
        _, output = _capture(PrintStatus, self._state(Strategy.BOTH))
        self.assertEqual(
            output.splitlines(),
            [
                "Tested 9 of 10 iterations",
                "\tSTAY wins 3 times (win rate: 33.3333%)",
                "\tSWITCH wins 6 times (win rate: 66.6667%)",
            ],
        )

    def test_win_rate_guards_zero_performed(self):
        self.assertEqual(WinRate(0, 0), 0.0)
        self.assertEqual(WinRate(1, 4), 25.0)
        _, output = _capture(PrintStatus, self._state(Strategy.BOTH, performed=0, stay_wins=0))
        self.assertIn("win rate: 0.0000%", output)


class TestSimulateTrials(unittest.TestCase):

    def test_performs_exactly_the_target(self):
        for target in (1, 2, 17, 1000):
            with self.subTest(target=target):
                state, _ = _capture(SimulateTrials, RunConfig(target, Strategy.BOTH, seed=target))
                self.assertEqual(state.iterations_performed, target)
                self.assertTrue(0 <= state.stay_wins <= state.iterations_performed)
                self.assertEqual(state.stay_wins + state.switch_wins, target)

    def test_same_seed_same_counts(self):
        config = RunConfig(5000, Strategy.BOTH, seed=2024)
        first, _ = _capture(SimulateTrials, config)
        second, _ = _capture(SimulateTrials, config)
        self.assertEqual(first.stay_wins, second.stay_wins)

    def test_debug_log_one_line_per_trial(self):
        config = RunConfig(10, Strategy.BOTH, logging_enabled=True, seed=3)
        state, output = _capture(SimulateTrials, config, clock=_FakeClock(step=5.0))
        lines = output.splitlines()
        self.assertEqual(len(lines), 10)
        self.assertTrue(all(line.startswith("Test ") for line in lines))
        self.assertTrue(lines[-1].startswith("Test 10 of 10:"))
        self.assertNotIn("Tested", output)
        self.assertEqual(state.iterations_performed, 10)

    def test_progress_snapshot_cadence(self):
        config = RunConfig(10, Strategy.STAY, seed=11)
        _, output = _capture(SimulateTrials, config, clock=_FakeClock(step=0.5))
        snapshots = [line for line in output.splitlines() if line.startswith("Tested ")]
        self.assertEqual(len(snapshots), 5)
        self.assertEqual(snapshots[0], "Tested 2 of 10 iterations")
        self.assertEqual(snapshots[-1], "Tested 10 of 10 iterations")

    def test_no_snapshot_on_fast_run(self):
        _, output = _capture(SimulateTrials, RunConfig(50, Strategy.STAY, seed=1), clock=lambda: 0.0)
        self.assertEqual(output, "")

    def test_stay_rate_converges_to_one_third(self):
        state, _ = _capture(SimulateTrials, RunConfig(100_000, Strategy.BOTH, seed=7, backend="python"))
        self.assertAlmostEqual(state.stay_wins / state.iterations_performed, 1 / 3, delta=0.01)
        self.assertAlmostEqual(state.switch_wins / state.iterations_performed, 2 / 3, delta=0.01)

    def test_numba_backend_shards(self):
        config = RunConfig(250_000, Strategy.BOTH, seed=5, backend="numba", chunk_size=100_000)
        state, _ = _capture(SimulateTrials, config, clock=lambda: 0.0)
        self.assertEqual(state.iterations_performed, 250_000)
        self.assertAlmostEqual(state.stay_wins / state.iterations_performed, 1 / 3, delta=0.01)

    def test_invalid_chunk_size(self):
        with self.assertRaises(ValueError):
            SimulateTrials(RunConfig(10, Strategy.STAY, backend="numba", chunk_size=0))

    def test_backend_resolution(self):
        self.assertEqual(_resolve_backend(RunConfig(10, Strategy.STAY)), "python")
        self.assertEqual(_resolve_backend(RunConfig(5_000_000, Strategy.STAY)), "numba")
        self.assertEqual(_resolve_backend(RunConfig(5_000_000, Strategy.STAY, logging_enabled=True)), "python")
        with self.assertRaises(ValueError):
            _resolve_backend(RunConfig(10, Strategy.STAY, backend="cuda"))


class TestMain(unittest.TestCase):

    def test_stay_run(self):
        exit_code, output = _capture(main, ["prog", "10", "STAY"])
        self.assertEqual(exit_code, 0)
        self.assertIn("Begin 10 iterations with strategy STAY", output)
        self.assertIn("Tested 10 of 10 iterations", output)
        self.assertIn("STAY wins", output)
        self.assertNotIn("SWITCH wins", output)

    def test_bad_configuration_exits_non_zero(self):
        for argv in (["prog", "0", "STAY"], ["prog", "abc", "STAY"], ["prog", "10", "SPIN"], ["prog", "10"]):
            with self.subTest(argv=argv):
                exit_code, output = _capture(main, argv)
                self.assertEqual(exit_code, 1)
                self.assertIn("ERROR:", output)
                self.assertIn("USAGE: montyhall [iterations] [strategy]", output)
                self.assertNotIn("Tested", output)

    def test_ignored_third_argument_still_runs(self):
        for token in ("--verbose", "-h"):
            with self.subTest(token=token):
                exit_code, output = _capture(main, ["prog", "10", "STAY", token])
                self.assertEqual(exit_code, 0)
                self.assertIn("Tested 10 of 10 iterations", output)

    def test_lone_help_flag_exits_non_zero(self):
        exit_code, output = _capture(main, ["prog", "-h"])
        self.assertEqual(exit_code, 1)
        self.assertIn("USAGE:", output)
        self.assertNotIn("Tested", output)

    def test_debuglog_both_run(self):
        exit_code, output = _capture(main, ["prog", "10", "BOTH", "DEBUGLOG", "--seed", "8"])
        self.assertEqual(exit_code, 0)
        self.assertEqual(len([line for line in output.splitlines() if line.startswith("Test ")]), 10)
        stay = int(re.search(r"STAY wins (\d+) times", output).group(1))
        switch = int(re.search(r"SWITCH wins (\d+) times", output).group(1))
        self.assertEqual(stay + switch, 10)


if __name__ == '__main__':
    unittest.main()
