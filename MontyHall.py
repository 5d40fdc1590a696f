import argparse
import math
import re
import sys
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

import numpy as np
from numba import njit, prange, get_num_threads


## --- CONFIGURATION ---

DOOR_COUNT = 3
DEBUG_LOG_TOKEN = "DEBUGLOG"
SNAPSHOT_INTERVAL_SECONDS = 1.0

BACKENDS = ("auto", "python", "numba")
# Smallest non-logging run that "auto" hands to the numba backend.
AUTO_NUMBA_THRESHOLD = 1_000_000
DEFAULT_CHUNK_SIZE = 10_000_000
# Iteration counts are read as unsigned 128-bit values.
MAX_ITERATIONS = 2 ** 128 - 1

USAGE = (
    "montyhall [iterations] [strategy] [logging]\n"
    "\t Iterations:\tNumber of tests to run (1 or more)\n"
    "\t Strategy:\tChoose between STAY, SWITCH, or BOTH\n"
    "\t Logging:\tOptional.  Enter DEBUGLOG to enable\n"
    "\t Options:\t--seed N, --backend {auto,python,numba}, --chunk-size N"
)

_ITERATIONS_PATTERN = re.compile(r"\+?[0-9]+")


class Strategy(str, Enum):
    STAY = "STAY"
    SWITCH = "SWITCH"
    BOTH = "BOTH"


class ConfigurationError(ValueError):
    """Raised when the command line cannot be turned into a RunConfig."""


@dataclass(frozen=True)
class RunConfig:
    iteration_target: int
    strategy: Strategy
    logging_enabled: bool = False
    seed: Optional[int] = None
    backend: str = "auto"
    chunk_size: Optional[int] = None


@dataclass(frozen=True)
class TrialOutcome:
    """One game round. Doors are 0-based; host_door is only drawn when narrating."""

    car_door: int
    contestant_door: int
    host_door: Optional[int] = None

    @property
    def stay_wins(self):
        return self.car_door == self.contestant_door

    @property
    def switch_wins(self):
        return not self.stay_wins

    @property
    def goat_doors(self):
        return tuple(door for door in range(DOOR_COUNT) if door != self.car_door)


@dataclass
class RunState:
    """Counters for a single run.

    Every trial is won by exactly one strategy, so only stay wins are stored and
    switch wins are derived from the number of trials performed.
    """

    config: RunConfig
    iterations_performed: int = 0
    stay_wins: int = 0

    @property
    def switch_wins(self):
        return self.iterations_performed - self.stay_wins

    def needs_another_iteration(self):
        return self.iterations_performed < self.config.iteration_target

    def record_result(self, stay_win):
        self.iterations_performed += 1
        if stay_win:
            self.stay_wins += 1

    def record_batch(self, count, stay_wins):
        count = int(count)
        stay_wins = int(stay_wins)
        if count < 0 or not 0 <= stay_wins <= count:
            raise ValueError(f"Invalid batch: {stay_wins} stay wins out of {count} trials")
        if self.iterations_performed + count > self.config.iteration_target:
            raise ValueError(
                f"Batch of {count} would exceed the target of {self.config.iteration_target} iterations"
            )
        self.iterations_performed += count
        self.stay_wins += stay_wins


## --- HELPERS ---

def _format_duration(seconds):
    seconds_int = max(0, int(round(float(seconds))))
    hours, remainder = divmod(seconds_int, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def _format_elapsed(seconds):
    seconds_float = max(0.0, float(seconds))
    if seconds_float < 0.001:
        return "0ms"
    if seconds_float < 1.0:
        return f"{seconds_float * 1000:.0f}ms"
    if seconds_float < 60.0:
        return f"{seconds_float:.2f}s"
    return _format_duration(seconds_float)


def _choose_host_door(car_door, contestant_door, rng):
    goat_doors = [door for door in range(DOOR_COUNT) if door != car_door]
    if contestant_door in goat_doors:
        goat_doors.remove(contestant_door)
        return goat_doors[0]
    # Contestant holds the car: either goat door may be opened.
    return goat_doors[int(rng.integers(0, len(goat_doors)))]


## --- TRIAL ENGINE ---

def PlayMontyHall(rng=None, reveal_host_door=False):
    """Play one round of the three-door game.

    Args:
        rng (np.random.Generator, optional): Source of randomness. A fresh
            generator is created when omitted.
        reveal_host_door (bool): Also draw the door the host opens. This only
            feeds the narration and never changes the outcome.

    Returns:
        TrialOutcome: The doors involved in the round.
    """
    generator = rng if rng is not None else np.random.default_rng()
    car_door, contestant_door = (int(door) for door in generator.integers(0, DOOR_COUNT, size=2))
    host_door = _choose_host_door(car_door, contestant_door, generator) if reveal_host_door else None
    return TrialOutcome(car_door=car_door, contestant_door=contestant_door, host_door=host_door)


def FormatTrialLog(trial_number, total_trials, outcome):
    if outcome.host_door is None:
        raise ValueError("outcome has no host door; play it with reveal_host_door=True")
    goat_a, goat_b = outcome.goat_doors
    return (
        f"Test {trial_number} of {total_trials}: "
        f"car behind {outcome.car_door + 1}, goats behind {goat_a + 1} and {goat_b + 1} | "
        f"contestant chooses {outcome.contestant_door + 1} | "
        f"Monty opens {outcome.host_door + 1} and reveals a goat"
    )


@njit(parallel=True)
def _count_stay_wins_numba(count, seed):
    """
    Plays `count` independent rounds and returns how many of them staying won.

    Each prange worker keeps its own random state, so a seed fixes the trial
    count but not the exact win count.
    """
    np.random.seed(seed)
    stay_wins = 0
    for _ in prange(count):
        car_door = np.random.randint(0, DOOR_COUNT)
        contestant_door = np.random.randint(0, DOOR_COUNT)
        if car_door == contestant_door:
            stay_wins += 1
    return stay_wins


## --- REPORTER ---

def WinRate(wins, performed):
    return 100.0 * wins / performed if performed else 0.0


def FormatStrategyStatus(strategy_name, wins, performed):
    return f"\t{strategy_name} wins {wins} times (win rate: {WinRate(wins, performed):.4f}%)"


def PrintStatus(state: RunState) -> None:
    """Print how many trials ran and the win rate of the configured strategy (or both)."""
    performed = state.iterations_performed
    print(f"Tested {performed} of {state.config.iteration_target} iterations")
    strategy = state.config.strategy
    if strategy == Strategy.STAY:
        print(FormatStrategyStatus("STAY", state.stay_wins, performed))
    elif strategy == Strategy.SWITCH:
        print(FormatStrategyStatus("SWITCH", state.switch_wins, performed))
    else:
        print(FormatStrategyStatus("STAY", state.stay_wins, performed))
        print(FormatStrategyStatus("SWITCH", state.switch_wins, performed))
    sys.stdout.flush()


def _print_run_footer(state: RunState, elapsed_seconds: float, backend: str) -> None:
    throughput = state.iterations_performed / elapsed_seconds if elapsed_seconds > 0 else float("inf")
    print(f"Elapsed time: {_format_elapsed(elapsed_seconds)}")
    if math.isfinite(throughput):
        print(f"Throughput: {throughput:,.0f} trials/s")
    else:
        print("Throughput: n/a")
    if backend == "numba":
        print(f"Backend: numba (threads={get_num_threads()})")
    else:
        print("Backend: python")


## --- RUN LOOP ---

def _resolve_backend(config: RunConfig) -> str:
    backend = config.backend.lower()
    if backend not in BACKENDS:
        raise ValueError("backend must be one of 'auto', 'python', or 'numba'")
    if backend == "auto":
        if config.logging_enabled or config.iteration_target < AUTO_NUMBA_THRESHOLD:
            return "python"
        return "numba"
    if backend == "numba" and config.logging_enabled:
        raise ValueError("The numba backend cannot narrate individual trials")
    return backend


def _maybe_print_snapshot(state, clock, last_snapshot):
    now = clock()
    if now - last_snapshot >= SNAPSHOT_INTERVAL_SECONDS:
        PrintStatus(state)
        return now
    return last_snapshot


def _run_python_backend(state: RunState, clock: Callable[[], float]) -> None:
    config = state.config
    rng = np.random.default_rng(config.seed)
    last_snapshot = clock()

    while state.needs_another_iteration():
        outcome = PlayMontyHall(rng, reveal_host_door=config.logging_enabled)
        state.record_result(outcome.stay_wins)

        if config.logging_enabled:
            print(FormatTrialLog(state.iterations_performed, config.iteration_target, outcome), flush=True)
        else:
            last_snapshot = _maybe_print_snapshot(state, clock, last_snapshot)


def _run_numba_backend(state: RunState, clock: Callable[[], float]) -> None:
    config = state.config
    if config.chunk_size is None:
        chunk_size = min(config.iteration_target, DEFAULT_CHUNK_SIZE)
    else:
        chunk_size = int(config.chunk_size)
    if chunk_size <= 0:
        raise ValueError("chunk_size must be a positive integer")

    seed_sequence = np.random.SeedSequence(config.seed)
    last_snapshot = clock()

    while state.needs_another_iteration():
        batch_size = min(chunk_size, config.iteration_target - state.iterations_performed)
        (child_seed,) = seed_sequence.spawn(1)
        seed = int(child_seed.generate_state(1)[0])
        stay_wins = _count_stay_wins_numba(batch_size, seed)
        state.record_batch(batch_size, stay_wins)
        last_snapshot = _maybe_print_snapshot(state, clock, last_snapshot)


def SimulateTrials(config: RunConfig, clock: Callable[[], float] = time.monotonic) -> RunState:
    """
    Runs exactly `config.iteration_target` trials and returns the filled-in RunState.

    With logging enabled every trial is narrated on its own line. Otherwise a
    progress snapshot is printed whenever at least a second has passed on
    `clock` since the previous one.

    Args:
        config (RunConfig): Validated run configuration.
        clock (callable): Monotonic time source in seconds, replaceable in tests.

    Returns:
        RunState: Counters after the final trial.
    """
    if config.iteration_target <= 0:
        raise ValueError("iteration_target must be a positive integer")

    state = RunState(config=config)
    if _resolve_backend(config) == "numba":
        _run_numba_backend(state, clock)
    else:
        _run_python_backend(state, clock)
    return state


## --- COMMAND LINE ---

class _RunArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        raise ConfigurationError(message)


def _parse_iterations(value):
    if not _ITERATIONS_PATTERN.fullmatch(value):
        raise argparse.ArgumentTypeError(f"Iterations argument failed to parse: {value!r}")
    parsed = int(value)
    if parsed > MAX_ITERATIONS:
        raise argparse.ArgumentTypeError(f"Iterations argument failed to parse: {value!r}")
    if parsed == 0:
        raise argparse.ArgumentTypeError("Zero is an invalid number of iterations")
    return parsed


def _parse_strategy(value):
    try:
        return Strategy(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Strategy failed to parse: {value!r}") from exc


def _parse_positive_int(value):
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected a positive integer, got {value!r}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"Expected a positive integer, got {value!r}")
    return parsed


def _parse_optional_positive_int(value):
    if value.lower() in {"auto", "none"}:
        return None
    return _parse_positive_int(value)


def _parse_seed(value):
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected a non-negative integer seed, got {value!r}") from exc
    if parsed < 0:
        raise argparse.ArgumentTypeError(f"Expected a non-negative integer seed, got {value!r}")
    return parsed


def _build_argument_parser():
    # No -h/--help: every token either configures the run or is a logging token.
    parser = _RunArgumentParser(
        prog="montyhall",
        description="Estimate Monty Hall win rates for the stay and switch strategies.",
        add_help=False,
        allow_abbrev=False,
    )
    parser.add_argument(
        "iterations",
        type=_parse_iterations,
        help="Number of tests to run (1 or more).",
    )
    parser.add_argument(
        "strategy",
        type=_parse_strategy,
        help="STAY, SWITCH, or BOTH.",
    )
    parser.add_argument(
        "logging_flag",
        nargs="?",
        default=None,
        metavar="logging",
        help=f"Optional. Enter {DEBUG_LOG_TOKEN} to narrate every test; other values are ignored.",
    )
    parser.add_argument(
        "--seed",
        type=_parse_seed,
        default=None,
        help="Seed for reproducible runs (default: fresh entropy).",
    )
    parser.add_argument(
        "--backend",
        choices=list(BACKENDS),
        default="auto",
        help="Simulation backend to use (default: auto).",
    )
    parser.add_argument(
        "--chunk-size",
        type=_parse_optional_positive_int,
        default=None,
        help="Trials per numba batch (default: auto). Use 'auto' to pick a default.",
    )
    return parser


def BuildRunConfig(argv: Sequence[str]) -> RunConfig:
    """Turn a full argument list (program name first) into a RunConfig.

    Raises:
        ConfigurationError: If any argument is missing, surplus, or invalid.
    """
    args, leftover = _build_argument_parser().parse_known_args(list(argv[1:]))
    # argparse leaves a dash-prefixed third token, or one that follows an
    # option, unconsumed; it still counts as the logging position.
    if leftover and args.logging_flag is None:
        args.logging_flag = leftover.pop(0)
    if leftover:
        raise ConfigurationError(f"unrecognized arguments: {' '.join(leftover)}")
    logging_enabled = args.logging_flag == DEBUG_LOG_TOKEN
    if args.backend == "numba" and logging_enabled:
        raise ConfigurationError(
            f"The numba backend cannot narrate individual tests; drop {DEBUG_LOG_TOKEN} or use --backend python"
        )
    return RunConfig(
        iteration_target=args.iterations,
        strategy=args.strategy,
        logging_enabled=logging_enabled,
        seed=args.seed,
        backend=args.backend,
        chunk_size=args.chunk_size,
    )


def main(argv=None):
    argv = sys.argv if argv is None else argv
    try:
        config = BuildRunConfig(argv)
    except ConfigurationError as exc:
        print(f"\nERROR: {exc}\n\nUSAGE: {USAGE}")
        return 1

    backend = _resolve_backend(config)
    print(f"Begin {config.iteration_target} iterations with strategy {config.strategy.value}", flush=True)
    start_time = time.perf_counter()
    state = SimulateTrials(config)
    elapsed_seconds = time.perf_counter() - start_time

    PrintStatus(state)
    _print_run_footer(state, elapsed_seconds, backend)
    return 0


if __name__ == "__main__":
    sys.exit(main())
