import argparse
import concurrent.futures
import logging
import math
import os
import sys
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Tuple

import numpy as np
import pandas as pd

from DiceDrop import MaxScore, PlayGame, WarmUp, _simulate_batch_numba

logger = logging.getLogger(__name__)

## --- CONFIGURATION ---

DEFAULT_NUM_DICE = 5
DEFAULT_NUM_SIMULATIONS = 10_000
MIN_AUTO_BATCH_SIZE = 1000
MAX_BATCH_SIZE = 100_000
BACKENDS = ("numba", "python")


class InvalidConfiguration(ValueError):
    """Raised when a run is configured with values it cannot execute."""


def _is_int(value):
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


@dataclass(frozen=True)
class Configuration:
    num_dice: int
    num_simulations: int
    workers: Optional[int] = None
    batch_size: Optional[int] = None
    seed: Optional[int] = None
    backend: str = "numba"
    concurrent: bool = True

    def __post_init__(self):
        if not _is_int(self.num_dice) or self.num_dice <= 0:
            raise InvalidConfiguration(f"num_dice must be a positive integer, got {self.num_dice!r}")
        if not _is_int(self.num_simulations) or self.num_simulations <= 0:
            raise InvalidConfiguration(
                f"num_simulations must be a positive integer, got {self.num_simulations!r}"
            )
        if self.workers is not None and (not _is_int(self.workers) or self.workers <= 0):
            raise InvalidConfiguration(f"workers must be a positive integer, got {self.workers!r}")
        if self.batch_size is not None and (not _is_int(self.batch_size) or self.batch_size <= 0):
            raise InvalidConfiguration(f"batch_size must be a positive integer, got {self.batch_size!r}")
        if self.seed is not None and (not _is_int(self.seed) or self.seed < 0):
            raise InvalidConfiguration(f"seed must be a non-negative integer, got {self.seed!r}")
        if self.backend not in BACKENDS:
            raise InvalidConfiguration(f"backend must be one of {', '.join(BACKENDS)}, got {self.backend!r}")

    @property
    def max_score(self) -> int:
        return MaxScore(self.num_dice)


def Configure(num_dice: int, num_simulations: int, **options) -> Configuration:
    """Validates and freezes a run configuration. Raises InvalidConfiguration."""
    return Configuration(num_dice=num_dice, num_simulations=num_simulations, **options)


## --- WORKERS ---

def _worker_numba_batch(count: int, num_dice: int, seed: int) -> np.ndarray:
    return _simulate_batch_numba(count, num_dice, seed)


def _worker_python_batch(count: int, num_dice: int, seed: int) -> np.ndarray:
    rng = np.random.default_rng(seed)
    score_bins = np.zeros(MaxScore(num_dice) + 1, dtype=np.int64)
    for _ in range(count):
        score = PlayGame(num_dice, rng)
        if score < score_bins.size:
            score_bins[score] += 1
    return score_bins


_WORKERS = {
    "numba": _worker_numba_batch,
    "python": _worker_python_batch,
}


## --- DRIVER LOGIC ---

def _resolve_workers(config: Configuration) -> int:
    cpu_count = os.cpu_count() or 4
    return config.workers if config.workers is not None else cpu_count


def _resolve_batch_size(config: Configuration, workers: int) -> int:
    total_count = config.num_simulations
    batch_size = config.batch_size
    if batch_size is None:
        target_chunks = workers * 4
        batch_size = max(MIN_AUTO_BATCH_SIZE, total_count // target_chunks)
        batch_size = min(batch_size, MAX_BATCH_SIZE)
    return max(1, min(batch_size, total_count))


def _iter_batches(total_count: int, batch_size: int, seed: Optional[int]) -> Iterator[Tuple[int, int]]:
    """
    Yields (games, seed) for every batch in submission order.

    Child seeds are spawned one at a time from a single SeedSequence, so the
    n-th batch always gets the same seed for a given root seed.
    """
    seed_sequence = np.random.SeedSequence(seed)
    submitted = 0
    while submitted < total_count:
        count = min(batch_size, total_count - submitted)
        child = seed_sequence.spawn(1)[0]
        yield count, int(child.generate_state(1)[0])
        submitted += count


def _make_executor(backend: str, workers: int) -> concurrent.futures.Executor:
    # Compiled kernels release the GIL; the interpreted path needs processes.
    if backend == "numba":
        return concurrent.futures.ThreadPoolExecutor(max_workers=workers)
    return concurrent.futures.ProcessPoolExecutor(max_workers=workers)


def RunSimulation(
    config: Configuration,
    progress: Optional[Callable[[int, int], None]] = None,
) -> Tuple[np.ndarray, float]:
    """
    Runs `config.num_simulations` games and returns (histogram, elapsed_seconds).

    Each batch builds its own histogram with its own generator; batches are
    merged in the calling thread as they complete, so no increment is lost
    regardless of how many run at once. The returned histogram is read-only
    and indexed by score from 0 to `config.max_score`.

    Args:
        config (Configuration): A validated run configuration.
        progress (callable, optional): Called as progress(completed, total)
            after every merged batch.

    Returns:
        tuple: (histogram, elapsed_seconds)
    """
    total_count = config.num_simulations
    workers = _resolve_workers(config)
    batch_size = _resolve_batch_size(config, workers)
    batch_count = math.ceil(total_count / batch_size)
    worker_fn = _WORKERS[config.backend]
    run_concurrently = config.concurrent and workers > 1 and batch_count > 1

    logger.debug(
        "Planned %d batch(es) of up to %d games (%s backend, %s)",
        batch_count,
        batch_size,
        config.backend,
        f"{min(workers, batch_count)} workers" if run_concurrently else "sequential",
    )

    WarmUp()

    histogram = np.zeros(config.max_score + 1, dtype=np.int64)
    batches = _iter_batches(total_count, batch_size, config.seed)
    sims_completed = 0

    start_time = time.time()

    if not run_concurrently:
        for count, seed in batches:
            histogram += worker_fn(count, config.num_dice, seed)
            sims_completed += count
            if progress is not None:
                progress(sims_completed, total_count)
    else:
        max_in_flight = min(workers, batch_count) * 2
        with _make_executor(config.backend, min(workers, batch_count)) as executor:
            futures = {}
            pending = True
            while pending or futures:
                # Submit new tasks only if there is capacity
                while pending and len(futures) < max_in_flight:
                    try:
                        count, seed = next(batches)
                    except StopIteration:
                        pending = False
                        break
                    futures[executor.submit(worker_fn, count, config.num_dice, seed)] = count

                if not futures:
                    break

                done, _ = concurrent.futures.wait(futures, return_when=concurrent.futures.FIRST_COMPLETED)
                for future in done:
                    count = futures.pop(future)
                    try:
                        score_bins = future.result()
                    except Exception:
                        logger.exception("Simulation halted by an exception in a worker")
                        for other in futures:
                            other.cancel()
                        raise
                    histogram += score_bins
                    sims_completed += count
                    if progress is not None:
                        progress(sims_completed, total_count)

    elapsed = time.time() - start_time

    histogram.flags.writeable = False
    logger.info(
        "Simulated %d games with %d dice in %.3fs",
        int(histogram.sum()),
        config.num_dice,
        elapsed,
    )
    return histogram, elapsed


## --- SUMMARIES ---

def DistributionFrame(counts) -> pd.DataFrame:
    """One row per observed score, ascending, with its count and share of all games."""
    counts = np.asarray(counts, dtype=np.int64)
    total_games = int(counts.sum())
    scores = np.nonzero(counts)[0]
    df = pd.DataFrame({
        "Score": scores.tolist(),
        "Count": counts[scores].tolist(),
    })
    df["Percent"] = df["Count"] / total_games * 100 if total_games else 0.0
    return df


def ScoreSummary(counts) -> pd.Series:
    """
    Count-weighted statistics of a score histogram.

    Median is the lower median. ZeroPercent is the share of games in which
    every die was lost to a 3 before scoring anything.
    """
    df = DistributionFrame(counts)
    total_games = int(df["Count"].sum())
    if total_games == 0:
        return pd.Series({"Games": 0, "Mean": 0.0, "Std": 0.0, "Median": 0, "Mode": 0, "ZeroPercent": 0.0})

    weights = df["Count"] / total_games
    mean = float((df["Score"] * weights).sum())
    variance = float(((df["Score"] - mean) ** 2 * weights).sum())
    return pd.Series({
        "Games": total_games,
        "Mean": mean,
        "Std": variance ** 0.5,
        "Median": int(df.loc[weights.cumsum() >= 0.5, "Score"].iloc[0]),
        "Mode": int(df.loc[df["Count"].idxmax(), "Score"]),
        "ZeroPercent": float(df.loc[df["Score"] == 0, "Percent"].sum()),
    })


## --- REPORTING ---

def _print_distribution(config: Configuration, histogram: np.ndarray, elapsed: float) -> None:
    print(f"Number of simulations was {config.num_simulations} using {config.num_dice} dice.")
    for row in DistributionFrame(histogram).itertuples(index=False):
        print(f"Total {row.Score} occurs {row.Percent:.2f}% occurred {float(row.Count):.1f} times.")
    print(f"Total simulation took {int(elapsed * 1000)} milliseconds.")


def _print_summary(summary: pd.Series) -> None:
    print()
    print("--- SCORE SUMMARY ---")
    print(f"Mean score: {summary['Mean']:.3f}")
    print(f"Std dev: {summary['Std']:.3f}")
    print(f"Median score: {int(summary['Median'])}")
    print(f"Most common score: {int(summary['Mode'])}")
    print(f"Zero-score games: {summary['ZeroPercent']:.2f}%")


def _parse_int(value):
    try:
        return int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected an integer, got {value!r}") from exc


def _parse_optional_int(value):
    if value.lower() in {"auto", "none"}:
        return None
    return _parse_int(value)


def _build_argument_parser():
    parser = argparse.ArgumentParser(
        prog="dicedrop",
        description="Simulate the DiceDrop elimination game and report the score distribution.",
    )
    parser.add_argument(
        "num_dice",
        nargs="?",
        type=_parse_int,
        default=DEFAULT_NUM_DICE,
        help=f"Number of dice per game (default: {DEFAULT_NUM_DICE}).",
    )
    parser.add_argument(
        "num_simulations",
        nargs="?",
        type=_parse_int,
        default=DEFAULT_NUM_SIMULATIONS,
        help=f"Number of games to simulate (default: {DEFAULT_NUM_SIMULATIONS:,}).",
    )
    parser.add_argument(
        "--workers",
        type=_parse_optional_int,
        default=None,
        help="Worker threads/processes (default: CPU count).",
    )
    parser.add_argument(
        "--batch-size",
        type=_parse_optional_int,
        default=None,
        help="Games per worker batch (default: auto). Use 'auto' to pick a default.",
    )
    parser.add_argument(
        "--seed",
        type=_parse_int,
        default=None,
        help="Root seed for reproducible runs (default: fresh entropy).",
    )
    parser.add_argument(
        "--backend",
        choices=BACKENDS,
        default="numba",
        help="Game implementation to run (default: numba).",
    )
    parser.add_argument(
        "--sequential",
        dest="concurrent",
        action="store_false",
        default=True,
        help="Run every batch in the main thread.",
    )
    parser.add_argument(
        "--progress",
        action="store_true",
        help="Print progress while batches complete.",
    )
    parser.add_argument(
        "--summary",
        action="store_true",
        help="Print mean, std dev and score range after the distribution.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable info logging.",
    )
    return parser


def main(argv=None) -> int:
    args = _build_argument_parser().parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.INFO)

    try:
        config = Configure(
            args.num_dice,
            args.num_simulations,
            workers=args.workers,
            batch_size=args.batch_size,
            seed=args.seed,
            backend=args.backend,
            concurrent=args.concurrent,
        )
    except InvalidConfiguration as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    def show_progress(completed, total):
        print(f"\rPlayed {completed:,} of {total:,} games ({completed / total:.0%})", end="", flush=True)

    histogram, elapsed = RunSimulation(config, progress=show_progress if args.progress else None)
    if args.progress:
        print()  # Newline after progress line

    _print_distribution(config, histogram, elapsed)
    if args.summary:
        _print_summary(ScoreSummary(histogram))
    return 0


if __name__ == "__main__":
    sys.exit(main())
