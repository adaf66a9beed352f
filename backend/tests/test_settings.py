"""Tests for environment-driven settings."""

import logging

import pytest

from utils.settings import DEFAULT_MODEL, load_settings, setup_logging

ENV_VARS = [
    "GEMINI_API_KEY",
    "REPO_RANK_LLM_BASE_URL",
    "REPO_RANK_LLM_MODEL",
    "REPO_RANK_CALIBRATION_SAMPLE_SIZE",
    "REPO_RANK_REFERENCE_SAMPLE_SIZE",
    "REPO_RANK_BATCH_SIZE",
    "REPO_RANK_MAX_PARALLEL_BATCHES",
    "REPO_RANK_SCORER_TIMEOUT",
    "REPO_RANK_CLONE_TIMEOUT",
    "REPO_RANK_MAX_COMMITS",
    "REPO_RANK_MAX_PATCH_CHARS",
    "REPO_RANK_RANDOM_SEED",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # keep a developer's .env out of the tests
    monkeypatch.chdir(tmp_path)


def test_defaults(monkeypatch):
    settings = load_settings()
    assert settings.api_key is None
    assert settings.model == DEFAULT_MODEL
    assert settings.calibration_sample_size == 5
    assert settings.reference_sample_size == 4
    assert settings.batch_size == 10
    assert settings.random_seed is None


def test_values_from_environment(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    monkeypatch.setenv("REPO_RANK_LLM_MODEL", "gemini-2.5-pro")
    monkeypatch.setenv("REPO_RANK_CALIBRATION_SAMPLE_SIZE", "8")
    monkeypatch.setenv("REPO_RANK_BATCH_SIZE", " 25 ")
    monkeypatch.setenv("REPO_RANK_SCORER_TIMEOUT", "12.5")
    monkeypatch.setenv("REPO_RANK_RANDOM_SEED", "42")

    settings = load_settings()

    assert settings.api_key == "secret"
    assert settings.model == "gemini-2.5-pro"
    assert settings.calibration_sample_size == 8
    assert settings.batch_size == 25
    assert settings.scorer_timeout_seconds == 12.5
    assert settings.random_seed == 42


@pytest.mark.parametrize("raw", ["abc", "0", "-4", "1.5"])
def test_invalid_int_falls_back_to_default(monkeypatch, raw):
    monkeypatch.setenv("REPO_RANK_BATCH_SIZE", raw)
    assert load_settings().batch_size == 10


def test_invalid_timeout_and_seed_fall_back(monkeypatch):
    monkeypatch.setenv("REPO_RANK_SCORER_TIMEOUT", "soon")
    monkeypatch.setenv("REPO_RANK_RANDOM_SEED", "lucky")
    settings = load_settings()
    assert settings.scorer_timeout_seconds == 60.0
    assert settings.random_seed is None


def test_setup_logging_configures_package_loggers(monkeypatch):
    """Module loggers (services.estimator, ...) inherit from the configured package loggers."""
    monkeypatch.setenv("REPO_RANK_DEBUG", "1")
    setup_logging()

    for name in ("api", "services", "utils"):
        log = logging.getLogger(name)
        assert log.level == logging.DEBUG
        assert len(log.handlers) == 1
    assert logging.getLogger("services.estimator").getEffectiveLevel() == logging.DEBUG

    # calling it again does not stack handlers
    monkeypatch.delenv("REPO_RANK_DEBUG")
    setup_logging()
    assert len(logging.getLogger("services").handlers) == 1
    assert logging.getLogger("services").level == logging.INFO
