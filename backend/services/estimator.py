"""Two-phase, reference-calibrated effort estimation.

Phase one (calibration) scores a random sample of commits without any
reference. Those results become the reference set, which stays fixed for
the rest of the run. Phase two scores every other commit relative to a
random subset of the reference set, in fixed-size batches whose calls are
all in flight at the same time.

Failure policy: any scorer failure fails the whole analysis. In phase two a
batch waits for all of its calls before raising, so siblings of a failed
call are allowed to finish (their results are discarded). Other batches,
queued or running, are cancelled.
"""

import asyncio
import logging
import random
from typing import Optional, Sequence

from models.commit import Commit, ScoredCommit
from services.aggregator import merge_analyses
from services.effort_scorer import EffortScorer
from services.errors import BatchScoringError, CalibrationError, ScorerError
from utils.settings import Settings

logger = logging.getLogger(__name__)


def sample_commits(commits: Sequence[Commit], k: int, rng: random.Random) -> list[Commit]:
    """Pick ``min(k, len(commits))`` commits uniformly, without replacement."""
    return rng.sample(list(commits), min(k, len(commits)))


def partition_batches(commits: Sequence[Commit], batch_size: int) -> list[list[Commit]]:
    """Split ``commits`` into consecutive batches, keeping input order."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    return [list(commits[i:i + batch_size]) for i in range(0, len(commits), batch_size)]


def draw_references(
    reference_set: Sequence[ScoredCommit], r: int, rng: random.Random
) -> list[ScoredCommit]:
    """Draw ``min(r, len(reference_set))`` distinct references."""
    return rng.sample(list(reference_set), min(r, len(reference_set)))


def remaining_commits(
    commits: Sequence[Commit], scored: Sequence[ScoredCommit]
) -> list[Commit]:
    """Commits whose id is not in ``scored``, in input order."""
    scored_ids = {s.id for s in scored}
    return [c for c in commits if c.id not in scored_ids]


class EffortEstimator:
    """Runs the calibration and batch phases against an EffortScorer."""

    def __init__(
        self,
        scorer: EffortScorer,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
    ):
        self.scorer = scorer
        self.settings = settings or Settings()
        self.rng = rng or random.Random(self.settings.random_seed)

    async def calibrate(self, commits: Sequence[Commit]) -> tuple[ScoredCommit, ...]:
        """
        Score a random sample of commits without references.

        Returns:
            The reference set, as an immutable tuple.

        Raises:
            CalibrationError: if the scorer fails for the sample.
        """
        sample = sample_commits(commits, self.settings.calibration_sample_size, self.rng)
        if not sample:
            return ()

        try:
            scored = await self.scorer.score(sample)
        except ScorerError as e:
            raise CalibrationError(f"Calibration scoring failed: {e}") from e

        sample_ids = {c.id for c in sample}
        if len(scored) != len(sample) or {s.id for s in scored} != sample_ids:
            raise CalibrationError(
                f"Calibration returned {len(scored)} results for {len(sample)} sampled commits"
            )
        return tuple(scored)

    async def _score_one(
        self, commit: Commit, reference_set: tuple[ScoredCommit, ...]
    ) -> ScoredCommit:
        references = draw_references(reference_set, self.settings.reference_sample_size, self.rng)
        return await self.scorer.score_with_references(commit, references)

    async def score_batch(
        self, batch: Sequence[Commit], reference_set: tuple[ScoredCommit, ...]
    ) -> list[ScoredCommit]:
        """
        Score every commit of ``batch`` concurrently.

        Raises:
            BatchScoringError: for the first commit (in batch order) whose
                scoring failed, once every call of the batch has finished.
        """
        tasks = [self._score_one(commit, reference_set) for commit in batch]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        for commit, result in zip(batch, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                raise BatchScoringError(commit.id, result) from result
        return list(results)

    async def score_remaining(
        self, commits: Sequence[Commit], reference_set: tuple[ScoredCommit, ...]
    ) -> list[ScoredCommit]:
        """Score every commit not in the reference set, batch by batch."""
        remaining = remaining_commits(commits, reference_set)
        batches = partition_batches(remaining, self.settings.batch_size)
        if not batches:
            return []
        if not reference_set:
            # Nothing to compare against, e.g. when calibration was empty.
            raise CalibrationError("No reference commits available for relative scoring")

        logger.info(
            "Scoring %s remaining commits in %s batches", len(remaining), len(batches)
        )
        semaphore = asyncio.Semaphore(self.settings.max_parallel_batches)
        failed = asyncio.Event()

        async def run(batch: list[Commit]) -> list[ScoredCommit]:
            async with semaphore:
                # set before the semaphore is released, so a waiting batch
                # sees it as soon as it acquires
                if failed.is_set():
                    return []
                try:
                    return await self.score_batch(batch, reference_set)
                except BaseException:
                    failed.set()
                    raise

        tasks = [asyncio.ensure_future(run(b)) for b in batches]
        try:
            batch_results = await asyncio.gather(*tasks)
        except BaseException:
            # Batches still queued or running must not keep calling the scorer
            # once the analysis has failed.
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return [scored for batch in batch_results for scored in batch]

    async def analyze(self, commits: Sequence[Commit]) -> list[ScoredCommit]:
        """
        Score every commit in ``commits``.

        Returns:
            Calibration results followed by batch results; one entry per
            input commit.
        """
        logger.info("Total commits to analyze: %s", len(commits))

        logger.info("Analyzing initial sample of commits...")
        reference_set = await self.calibrate(commits)
        logger.info("Completed initial analysis of %s commits", len(reference_set))

        logger.info("Analyzing remaining commits...")
        remaining = await self.score_remaining(commits, reference_set)
        logger.info("Completed analysis of %s remaining commits", len(remaining))

        return merge_analyses(reference_set, remaining)
