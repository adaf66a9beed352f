"""Exception hierarchy for repository analysis.

Every failure raised by the commit source, the effort scorer or the
estimation workflow derives from RepoRankError, so the API layer can turn
any of them into a single JSON error response.
"""


class RepoRankError(Exception):
    """Base class for analysis failures."""


class ConfigurationError(RepoRankError):
    """Required configuration (e.g. the scorer API key) is missing."""


class SourceUnavailableError(RepoRankError):
    """The repository could not be cloned or its history could not be read."""


class ScorerError(RepoRankError):
    """The effort scorer backend failed (network, rate limit, API error)."""


class MalformedScorerOutputError(ScorerError):
    """The scorer answered, but the answer does not have the expected shape."""


class ScorerTimeoutError(ScorerError):
    """A scoring call did not complete within the configured timeout."""


class CalibrationError(RepoRankError):
    """Scoring the calibration sample failed; no reference set is available."""


class BatchScoringError(RepoRankError):
    """Scoring a commit in a relative-scoring batch failed."""

    def __init__(self, commit_id: str, cause: BaseException):
        self.commit_id = commit_id
        self.cause = cause
        super().__init__(f"Failed to score commit {commit_id}: {cause}")
