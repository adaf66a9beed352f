"""Tests for the HTTP API.

Cloning and scoring are replaced by patching ``api.routes.fetch_commits`` and
``api.routes.build_estimator``, so no network access or API key is needed.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from main import app
from models.commit import Commit, ScoredCommit
from services.effort_scorer import EffortScorer
from services.errors import ScorerError, SourceUnavailableError
from services.estimator import EffortEstimator
from utils.settings import Settings

EFFORTS = {"c1": 2, "c2": 6, "c3": 3, "c4": 8}
AUTHORS = {"c1": "alice", "c2": "bob", "c3": "alice", "c4": "carol"}

COMMITS = [
    Commit(id=cid, title=f"title {cid}", author=AUTHORS[cid], date="2024-01-01T00:00:00+00:00", patch="+x")
    for cid in EFFORTS
]


class TableScorer(EffortScorer):
    """Scores every commit with a fixed effort from EFFORTS."""

    def __init__(self, fail_cold=False):
        self.fail_cold = fail_cold
        self.relative_calls = 0

    def _scored(self, commit):
        return ScoredCommit(
            id=commit.id, title=commit.title, reasoning="r", description="d", effort=EFFORTS[commit.id]
        )

    async def score(self, commits):
        if self.fail_cold:
            raise ScorerError("quota exceeded")
        return [self._scored(c) for c in commits]

    async def score_with_references(self, commit, references):
        self.relative_calls += 1
        return self._scored(commit)


def _estimator(scorer):
    return EffortEstimator(scorer, Settings(calibration_sample_size=2, random_seed=1))


@pytest.fixture
def client():
    return TestClient(app)


def test_root_returns_welcome_text(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text.startswith("Welcome to Repo Rank API!")


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_unknown_path_returns_plain_404(client):
    response = client.get("/nope/at/all/here")
    assert response.status_code == 404
    assert response.text == "Not Found"


def test_unknown_method_returns_plain_405(client):
    response = client.post("/analyze/octo/demo")
    assert response.status_code == 405
    assert response.text == "Method not allowed"


def test_analyze_happy_path(client):
    scorer = TableScorer()
    with patch("api.routes.fetch_commits", return_value=COMMITS) as mock_fetch:
        with patch("api.routes.build_estimator", return_value=_estimator(scorer)):
            response = client.get("/analyze/octo/demo")

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["repository"] == "octo/demo"
    assert data["total_commits"] == 4
    assert sorted(a["id"] for a in data["analyses"]) == ["c1", "c2", "c3", "c4"]
    assert {a["id"]: a["effort"] for a in data["analyses"]} == EFFORTS
    assert scorer.relative_calls == 2
    assert mock_fetch.call_args.args == ("octo", "demo")


def test_analyze_passes_max_commits(client):
    with patch("api.routes.fetch_commits", return_value=COMMITS) as mock_fetch:
        with patch("api.routes.build_estimator", return_value=_estimator(TableScorer())):
            response = client.get("/analyze/octo/demo", params={"max_commits": 3})

    assert response.status_code == 200
    assert mock_fetch.call_args.kwargs["max_commits"] == 3


def test_analyze_passes_clone_timeout(client):
    """The clone is bounded by the configured timeout inside the worker thread."""
    settings = Settings(api_key="k", clone_timeout_seconds=7.0)
    with patch("api.routes.load_settings", return_value=settings):
        with patch("api.routes.fetch_commits", return_value=COMMITS) as mock_fetch:
            with patch("api.routes.build_estimator", return_value=_estimator(TableScorer())):
                response = client.get("/analyze/octo/demo")

    assert response.status_code == 200
    assert mock_fetch.call_args.kwargs["clone_timeout"] == 7.0


def test_analyze_rejects_non_positive_max_commits(client):
    response = client.get("/analyze/octo/demo", params={"max_commits": 0})
    assert response.status_code == 422


def test_contributor_effort_happy_path(client):
    with patch("api.routes.fetch_commits", return_value=COMMITS):
        with patch("api.routes.build_estimator", return_value=_estimator(TableScorer())):
            response = client.get("/contributor-effort/octo/demo")

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["repository"] == "octo/demo"
    assert data["total_effort"] == 19
    assert [c["author"] for c in data["contributors"]] == ["carol", "bob", "alice"]
    assert [c["total_effort"] for c in data["contributors"]] == [8, 6, 5]
    assert data["contributors"][0]["proportion"] == pytest.approx(8 / 19)
    assert sum(c["proportion"] for c in data["contributors"]) == pytest.approx(1.0)


def test_source_failure_returns_500_json(client):
    error = SourceUnavailableError("Repository not found: https://github.com/octo/missing.git")
    with patch("api.routes.fetch_commits", side_effect=error):
        with patch("api.routes.build_estimator", return_value=_estimator(TableScorer())):
            response = client.get("/analyze/octo/missing")

    assert response.status_code == 500
    assert response.json() == {
        "error": "Failed to analyze repository",
        "message": "Repository not found: https://github.com/octo/missing.git",
    }


def test_calibration_failure_returns_500_without_batch_calls(client):
    scorer = TableScorer(fail_cold=True)
    with patch("api.routes.fetch_commits", return_value=COMMITS):
        with patch("api.routes.build_estimator", return_value=_estimator(scorer)):
            response = client.get("/contributor-effort/octo/demo")

    assert response.status_code == 500
    assert "quota exceeded" in response.json()["message"]
    assert scorer.relative_calls == 0


def test_missing_api_key_returns_500(client, monkeypatch, tmp_path):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.chdir(tmp_path)
    with patch("api.routes.fetch_commits", return_value=COMMITS) as mock_fetch:
        response = client.get("/analyze/octo/demo")

    assert response.status_code == 500
    assert "GEMINI_API_KEY" in response.json()["message"]
    mock_fetch.assert_not_called()
