"""Aggregation of scored commits into per-contributor effort totals."""

from typing import Sequence

from models.commit import Commit, ContributorSummary, ScoredCommit


def merge_analyses(
    calibration: Sequence[ScoredCommit], batches: Sequence[ScoredCommit]
) -> list[ScoredCommit]:
    """Concatenate both phases. Their id sets are disjoint."""
    return [*calibration, *batches]


def summarize_contributors(
    commits: Sequence[Commit], analyses: Sequence[ScoredCommit]
) -> list[ContributorSummary]:
    """
    Sum effort per author and compute each author's share of the total.

    Authors are looked up by commit id; analyses whose id is not in
    ``commits`` are ignored. When the grand total is zero every proportion
    is zero. Contributors are ordered by descending total effort; ties
    keep the order in which authors were first encountered in ``analyses``.
    """
    author_by_id = {c.id: c.author for c in commits}

    # dicts keep insertion order, which gives first-encountered tie-breaking
    efforts: dict[str, float] = {}
    for analysis in analyses:
        author = author_by_id.get(analysis.id)
        if author is None:
            continue
        efforts[author] = efforts.get(author, 0) + analysis.effort

    grand_total = sum(efforts.values())
    summaries = [
        ContributorSummary(
            author=author,
            total_effort=effort,
            proportion=effort / grand_total if grand_total > 0 else 0.0,
        )
        for author, effort in efforts.items()
    ]
    # sorted() is stable
    return sorted(summaries, key=lambda s: s.total_effort, reverse=True)
