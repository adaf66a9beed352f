"""API route definitions for Repo Rank."""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from models.commit import (
    AnalyzeResponse,
    Commit,
    ContributorEffortResponse,
    ErrorResponse,
    ScoredCommit,
)
from services.aggregator import summarize_contributors
from services.effort_scorer import LLMEffortScorer
from services.errors import RepoRankError, SourceUnavailableError
from services.estimator import EffortEstimator
from utils.git_parser import fetch_commits
from utils.settings import Settings, load_settings

logger = logging.getLogger(__name__)

router = APIRouter()

# Thread pool for blocking git operations. wait_for cannot stop a worker
# thread, so the clone itself is killed by git_parser after
# clone_timeout_seconds; the wait_for below only bounds the whole fetch.
executor = ThreadPoolExecutor(max_workers=2)

ANALYSIS_FAILED = "Failed to analyze repository"
ERROR_RESPONSES = {500: {"model": ErrorResponse}}


@router.get("/health")
async def health_check() -> dict:
    """
    Lightweight endpoint for uptime checks.

    Returns:
        dict: Health status payload.
    """
    return {"status": "healthy"}


def build_estimator(settings: Settings) -> EffortEstimator:
    """Create the estimator for one request. Raises ConfigurationError without an API key."""
    return EffortEstimator(LLMEffortScorer(settings), settings)


async def _load_commits(
    owner: str, repo: str, settings: Settings, max_commits: Optional[int]
) -> list[Commit]:
    # Run the blocking clone in a thread pool to avoid blocking the event loop
    loop = asyncio.get_event_loop()
    try:
        return await asyncio.wait_for(
            loop.run_in_executor(
                executor,
                lambda: fetch_commits(
                    owner,
                    repo,
                    max_commits=max_commits or settings.max_commits,
                    max_patch_chars=settings.max_patch_chars,
                    clone_timeout=settings.clone_timeout_seconds,
                ),
            ),
            timeout=2 * settings.clone_timeout_seconds,
        )
    except asyncio.TimeoutError as e:
        raise SourceUnavailableError(
            f"Reading {owner}/{repo} timed out after {2 * settings.clone_timeout_seconds:g}s"
        ) from e


async def _run_analysis(
    owner: str, repo: str, max_commits: Optional[int]
) -> tuple[list[Commit], list[ScoredCommit]]:
    settings = load_settings()
    # Built before cloning so a missing API key fails without touching git
    estimator = build_estimator(settings)

    logger.info("Analyzing repository %s/%s...", owner, repo)
    commits = await _load_commits(owner, repo, settings, max_commits)
    analyses = await estimator.analyze(commits)
    return commits, analyses


def _error_response(exc: Exception) -> JSONResponse:
    if isinstance(exc, RepoRankError):
        logger.error("Analysis failed: %s", exc)
    else:
        logger.exception("Unexpected error during analysis")
    body = ErrorResponse(error=ANALYSIS_FAILED, message=str(exc) or type(exc).__name__)
    return JSONResponse(status_code=500, content=body.model_dump())


@router.get(
    "/analyze/{owner}/{repo}",
    response_model=AnalyzeResponse,
    responses=ERROR_RESPONSES,
)
async def analyze(
    owner: str,
    repo: str,
    max_commits: Optional[int] = Query(None, ge=1),
):
    """
    Estimate the effort of every commit of a GitHub repository.

    Query parameters:
        max_commits: only the newest ``max_commits`` commits are analyzed
            (defaults to REPO_RANK_MAX_COMMITS).

    Returns:
        AnalyzeResponse: One ScoredCommit per analyzed commit.
        500 with ``{error, message}`` if cloning or scoring fails.
    """
    try:
        commits, analyses = await _run_analysis(owner, repo, max_commits)
    except Exception as e:
        return _error_response(e)

    return AnalyzeResponse(
        repository=f"{owner}/{repo}",
        total_commits=len(commits),
        analyses=analyses,
    )


@router.get(
    "/contributor-effort/{owner}/{repo}",
    response_model=ContributorEffortResponse,
    responses=ERROR_RESPONSES,
)
async def contributor_effort(
    owner: str,
    repo: str,
    max_commits: Optional[int] = Query(None, ge=1),
):
    """
    Sum estimated effort per contributor of a GitHub repository.

    Returns:
        ContributorEffortResponse: Contributors sorted by descending effort,
            each with its share of the repository total.
        500 with ``{error, message}`` if cloning or scoring fails.
    """
    try:
        commits, analyses = await _run_analysis(owner, repo, max_commits)
        contributors = summarize_contributors(commits, analyses)
    except Exception as e:
        return _error_response(e)

    return ContributorEffortResponse(
        repository=f"{owner}/{repo}",
        total_effort=sum(c.total_effort for c in contributors),
        contributors=contributors,
    )
