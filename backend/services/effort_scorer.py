"""LLM-backed effort scorer.

The scorer talks to any OpenAI-compatible chat completion endpoint; by
default that is Gemini's compatibility endpoint. Two kinds of request are
made:

- cold scoring: a batch of commits judged without any reference, returned
  as ``{"analyses": [...]}`` in input order;
- relative scoring: one commit judged against reference commits whose
  effort is already known.

The model answers with ``01_reasoning``, ``02_description`` and
``03_effort`` keys. The numeric prefixes make the model write its
reasoning before it commits to a score.
"""

import asyncio
import json
import logging
import textwrap
from typing import Any, Sequence

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from models.commit import MAX_EFFORT, MIN_EFFORT, Commit, ScoredCommit
from services.errors import (
    ConfigurationError,
    MalformedScorerOutputError,
    ScorerError,
    ScorerTimeoutError,
)
from utils.settings import Settings

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = textwrap.dedent("""\
    You estimate the implementation effort of Git commits.
    For EACH commit you receive, in the order received, return an object with:
      - 01_reasoning: the reasoning behind the estimate
      - 02_description: a description of the commit's changes and impact
      - 03_effort: a number from 1 to 10 representing the effort required
    Return ONLY a JSON object of the form {"analyses": [...]}.
""")

RELATIVE_EFFORT_PROMPT = textwrap.dedent("""\
    Given a new commit and reference commits with known effort scores,
    estimate the relative effort for the new commit.
    Consider how the complexity and scope of the new commit compares to the
    reference commits.
    Return ONLY a JSON object with the keys 01_reasoning, 02_description and
    03_effort (a number from 1 to 10).
""")

NO_PATCH = "No patch available"


class RawEffortJudgment(BaseModel):
    """Shape of one judgment as emitted by the model."""

    model_config = ConfigDict(populate_by_name=True)

    reasoning: str = Field(alias="01_reasoning")
    description: str = Field(alias="02_description")
    effort: float = Field(alias="03_effort", ge=MIN_EFFORT, le=MAX_EFFORT)


class RawBatchJudgment(BaseModel):
    analyses: list[RawEffortJudgment]


def _judgment_schema() -> dict:
    return {
        "type": "object",
        "properties": {
            "01_reasoning": {
                "type": "string",
                "description": "The reasoning behind the analysis",
            },
            "02_description": {
                "type": "string",
                "description": "A description of the commit's changes and impact",
            },
            "03_effort": {
                "type": "number",
                "description": "A numerical score (1-10) representing the effort required",
            },
        },
        "required": ["01_reasoning", "02_description", "03_effort"],
    }


def _response_format(name: str, batch: bool) -> dict:
    schema = _judgment_schema()
    if batch:
        schema = {
            "type": "object",
            "properties": {"analyses": {"type": "array", "items": schema}},
            "required": ["analyses"],
        }
    return {"type": "json_schema", "json_schema": {"name": name, "schema": schema}}


def format_commit(commit: Commit) -> str:
    return (
        f"Commit Hash: {commit.id}\n"
        f"Title: {commit.title}\n"
        f"Patch:\n"
        f"{commit.patch or NO_PATCH}\n"
    )


def format_reference(reference: ScoredCommit) -> str:
    return (
        f"Hash: {reference.id}\n"
        f"Title: {reference.title}\n"
        f"Effort: {reference.effort:g}\n"
        f"Description: {reference.description}\n"
    )


def build_batch_prompt(commits: Sequence[Commit]) -> str:
    return "\n".join(format_commit(c) + "---\n" for c in commits)


def build_relative_prompt(commit: Commit, references: Sequence[ScoredCommit]) -> str:
    references_text = "\n".join(format_reference(r) for r in references)
    return (
        "Here is the commit to analyze:\n\n"
        f"{format_commit(commit)}\n"
        "Reference commits for effort comparison:\n"
        f"{references_text}\n"
        "Please analyze this commit relative to the reference commits."
    )


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = "\n".join(text.splitlines()[1:])
    if text.endswith("```"):
        text = "\n".join(text.splitlines()[:-1])
    return text.strip()


def parse_judgment(text: str) -> RawEffortJudgment:
    """Parse a single relative-scoring answer."""
    try:
        return RawEffortJudgment.model_validate(json.loads(_strip_fences(text)))
    except (json.JSONDecodeError, ValidationError) as e:
        raise MalformedScorerOutputError(f"Scorer returned an invalid judgment: {e}") from e


def parse_batch_judgments(text: str, expected: int) -> list[RawEffortJudgment]:
    """
    Parse a cold-scoring answer.

    A bare JSON array is accepted as well as the ``{"analyses": [...]}``
    wrapper. The number of judgments must match the number of commits sent,
    since judgments are matched to commits by position.
    """
    try:
        data = json.loads(_strip_fences(text))
        if isinstance(data, list):
            data = {"analyses": data}
        judgments = RawBatchJudgment.model_validate(data).analyses
    except (json.JSONDecodeError, ValidationError) as e:
        raise MalformedScorerOutputError(f"Scorer returned invalid judgments: {e}") from e

    if len(judgments) != expected:
        raise MalformedScorerOutputError(
            f"Scorer returned {len(judgments)} judgments for {expected} commits"
        )
    return judgments


def _to_scored(commit: Commit, judgment: RawEffortJudgment) -> ScoredCommit:
    return ScoredCommit(
        id=commit.id,
        title=commit.title,
        reasoning=judgment.reasoning,
        description=judgment.description,
        effort=judgment.effort,
    )


class EffortScorer:
    """Interface the estimator depends on.

    Implementations return ScoredCommit objects and raise ScorerError (or a
    subclass) on any failure.
    """

    async def score(self, commits: Sequence[Commit]) -> list[ScoredCommit]:
        raise NotImplementedError

    async def score_with_references(
        self, commit: Commit, references: Sequence[ScoredCommit]
    ) -> ScoredCommit:
        raise NotImplementedError


class LLMEffortScorer(EffortScorer):
    """Effort scorer backed by an OpenAI-compatible chat completion API."""

    def __init__(self, settings: Settings, client: Any = None):
        if client is None:
            if not settings.api_key:
                raise ConfigurationError("GEMINI_API_KEY environment variable is required")
            client = AsyncOpenAI(api_key=settings.api_key, base_url=settings.base_url)
        self.client = client
        self.settings = settings

    async def _complete(self, system: str, prompt: str, response_format: dict) -> str:
        logger.debug("Sending request to %s:\n%s", self.settings.model, prompt)
        try:
            resp = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.settings.model,
                    temperature=self.settings.temperature,
                    top_p=self.settings.top_p,
                    max_tokens=self.settings.max_output_tokens,
                    response_format=response_format,
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": prompt},
                    ],
                ),
                timeout=self.settings.scorer_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ScorerTimeoutError(
                f"Scorer did not answer within {self.settings.scorer_timeout_seconds:g}s"
            ) from e
        except OpenAIError as e:
            raise ScorerError(f"Scorer request failed: {e}") from e

        try:
            text = resp.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise MalformedScorerOutputError("Scorer response has no message content") from e
        if not text:
            raise MalformedScorerOutputError("Scorer returned an empty response")

        logger.debug("Raw scorer response: %s", text)
        return text

    async def score(self, commits: Sequence[Commit]) -> list[ScoredCommit]:
        if not commits:
            return []
        logger.info("Scoring %s commits without references", len(commits))
        text = await self._complete(
            ANALYSIS_PROMPT,
            build_batch_prompt(commits),
            _response_format("commit_effort_batch", batch=True),
        )
        judgments = parse_batch_judgments(text, expected=len(commits))
        return [_to_scored(c, j) for c, j in zip(commits, judgments)]

    async def score_with_references(
        self, commit: Commit, references: Sequence[ScoredCommit]
    ) -> ScoredCommit:
        logger.debug("Scoring commit %s against %s references", commit.id, len(references))
        text = await self._complete(
            RELATIVE_EFFORT_PROMPT,
            build_relative_prompt(commit, references),
            _response_format("commit_effort", batch=False),
        )
        return _to_scored(commit, parse_judgment(text))
