"""Data models for commit effort estimation.

Commit is produced by the git parser and read by the estimator; ScoredCommit
is produced by an effort scorer. Both are frozen so a reference set can be
shared between concurrent scoring calls without copying.
"""

from pydantic import BaseModel, ConfigDict, Field

MIN_EFFORT = 1
MAX_EFFORT = 10


class Commit(BaseModel):
    """A single commit from the repository history."""

    model_config = ConfigDict(frozen=True)

    id: str  # full commit hash
    title: str  # first line of the commit message
    author: str
    date: str  # ISO-8601 datetime
    patch: str | None = None
    url: str | None = None


class ScoredCommit(BaseModel):
    """Effort judgment for one commit."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    reasoning: str
    description: str
    effort: float = Field(ge=MIN_EFFORT, le=MAX_EFFORT)


class ContributorSummary(BaseModel):
    """Effort total for one author and its share of the repository total."""

    author: str
    total_effort: float
    proportion: float


class AnalyzeResponse(BaseModel):
    """Response model for the analyze endpoint."""

    repository: str
    total_commits: int
    analyses: list[ScoredCommit]


class ContributorEffortResponse(BaseModel):
    """Response model for the contributor-effort endpoint."""

    repository: str
    total_effort: float
    contributors: list[ContributorSummary]


class ErrorResponse(BaseModel):
    error: str
    message: str
