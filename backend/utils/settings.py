"""Runtime configuration for Repo Rank.

Settings are read from environment variables (and a local .env file, if
present) into an explicit Settings object that is passed to the scorer and
the estimator. Invalid numeric values are logged and replaced by defaults.
"""

import logging
import os
import sys

import dotenv
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
DEFAULT_MODEL = "gemini-2.0-flash"


class Settings(BaseModel):
    """Configuration for the scorer backend and the estimation workflow."""

    api_key: str | None = None
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL

    # Generation parameters sent with every scoring request
    temperature: float = 1.0
    top_p: float = 0.95
    max_output_tokens: int = 8192

    calibration_sample_size: int = 5
    reference_sample_size: int = 4
    batch_size: int = 10
    max_parallel_batches: int = 4

    scorer_timeout_seconds: float = 60.0
    clone_timeout_seconds: float = 300.0
    max_commits: int = 1000
    max_patch_chars: int = 60_000

    random_seed: int | None = None


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name, "").strip()
    if raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s value '%s'. Falling back to %s.", name, raw, default)
        return default
    if value < minimum:
        logger.warning("%s must be >= %s, got %s. Falling back to %s.", name, minimum, value, default)
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid %s value '%s'. Falling back to %s.", name, raw, default)
        return default
    if value <= 0:
        logger.warning("%s must be positive, got %s. Falling back to %s.", name, value, default)
        return default
    return value


def _env_seed() -> int | None:
    raw = os.getenv("REPO_RANK_RANDOM_SEED", "").strip()
    if raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid REPO_RANK_RANDOM_SEED value '%s'. Using an unseeded generator.", raw)
        return None


def load_settings() -> Settings:
    """Build Settings from the environment.

    Returns:
        Settings: Populated configuration. ``api_key`` is None when
        GEMINI_API_KEY is unset; the scorer refuses to start in that case.
    """
    dotenv.load_dotenv(dotenv.find_dotenv(usecwd=True))

    return Settings(
        api_key=os.getenv("GEMINI_API_KEY") or None,
        base_url=os.getenv("REPO_RANK_LLM_BASE_URL", DEFAULT_BASE_URL).strip() or DEFAULT_BASE_URL,
        model=os.getenv("REPO_RANK_LLM_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL,
        calibration_sample_size=_env_int("REPO_RANK_CALIBRATION_SAMPLE_SIZE", 5),
        reference_sample_size=_env_int("REPO_RANK_REFERENCE_SAMPLE_SIZE", 4),
        batch_size=_env_int("REPO_RANK_BATCH_SIZE", 10),
        max_parallel_batches=_env_int("REPO_RANK_MAX_PARALLEL_BATCHES", 4),
        scorer_timeout_seconds=_env_float("REPO_RANK_SCORER_TIMEOUT", 60.0),
        clone_timeout_seconds=_env_float("REPO_RANK_CLONE_TIMEOUT", 300.0),
        max_commits=_env_int("REPO_RANK_MAX_COMMITS", 1000),
        max_patch_chars=_env_int("REPO_RANK_MAX_PATCH_CHARS", 60_000),
        random_seed=_env_seed(),
    )


def setup_logging(verbose: bool = False) -> None:
    """Attach a stderr handler to the application loggers.

    DEBUG level when REPO_RANK_DEBUG is set or ``verbose`` is True,
    INFO otherwise.
    """
    level = logging.DEBUG if (verbose or os.getenv("REPO_RANK_DEBUG")) else logging.INFO
    for name in ("api", "services", "utils"):
        log = logging.getLogger(name)
        log.setLevel(level)
        if not log.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
            log.addHandler(handler)
