"""Gemini-backed judge that rates how well prompts describe an image.

One call per round covers every non-empty prompt. The call is single-shot:
a failure surfaces as ``UpstreamFailure`` and retrying is left to whoever
invoked scoring.
"""

import json
import logging
import re
from functools import lru_cache
from typing import List, Sequence

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import BaseModel, TypeAdapter, ValidationError, field_validator

import config
from errors import UpstreamFailure
from scoring import Evaluation, clamp_score

logger = logging.getLogger(__name__)

JUDGE_INSTRUCTIONS = """
Task: Given an image and multiple prompts, score each prompt 0-100 based on how well it matches the image.
Rules:
Judge how likely this prompt is to generate a similar image in a text-to-image model.
You must include constructive feedback to improve the prompt.
The feedback must include specific details from the image.
Higher score = closer match.
Return ONLY JSON:
[
  {
    "user_id": "...",
    "prompt_id": "...",
    "score": <0-100>,
    "reason": "<short explanation>"
  }
]
"""

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


class JudgeVerdict(BaseModel):
    user_id: str = ""
    prompt_id: str
    score: int
    reason: str = ""

    @field_validator("score", mode="before")
    @classmethod
    def clamp(cls, v):
        try:
            return clamp_score(round(float(v)))
        except (TypeError, ValueError, OverflowError):
            raise ValueError("score must be a number")


_verdicts = TypeAdapter(List[JudgeVerdict])


def format_prompt_list(prompts: Sequence) -> str:
    return "\n\n".join(
        f'Prompt {i}:\nID: {p.id}\nUser: {p.user_id}\nText: "{p.prompt_text}"'
        for i, p in enumerate(prompts, start=1)
    )


def parse_verdicts(text: str) -> List[JudgeVerdict]:
    cleaned = _FENCE.sub("", text or "").strip()
    try:
        return _verdicts.validate_python(json.loads(cleaned))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("Judge returned unusable output: %s", cleaned[:500])
        raise UpstreamFailure("Judge did not return valid JSON") from e


def match_verdicts(prompts: Sequence, verdicts: Sequence[JudgeVerdict]) -> List[Evaluation]:
    """Pair verdicts with the prompts that were sent, in submission order."""
    by_id = {}
    for verdict in verdicts:
        by_id.setdefault(verdict.prompt_id, verdict)

    missing = [p.id for p in prompts if p.id not in by_id]
    if missing:
        raise UpstreamFailure(f"Judge skipped {len(missing)} prompt(s)")

    return [
        Evaluation(
            prompt_id=p.id,
            user_id=p.user_id,
            score=by_id[p.id].score,
            justification=by_id[p.id].reason,
        )
        for p in prompts
    ]


class Judge:
    async def evaluate(self, image_url: str, prompts: Sequence) -> List[Evaluation]:
        raise NotImplementedError


class GeminiJudge(Judge):
    def __init__(self, api_key: str = config.GEMINI_API_KEY, model_name: str = config.GEMINI_MODEL):
        self.client = genai.Client(api_key=api_key)
        self.model_name = model_name

    async def evaluate(self, image_url: str, prompts: Sequence) -> List[Evaluation]:
        if not prompts:
            return []

        image = await self._fetch_image(image_url)
        contents = [
            types.Part.from_text(text=JUDGE_INSTRUCTIONS),
            image,
            types.Part.from_text(text="Prompts:\n" + format_prompt_list(prompts)),
        ]

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model_name,
                contents=contents,
                config=types.GenerateContentConfig(response_mime_type="application/json"),
            )
        except (genai_errors.APIError, httpx.HTTPError) as e:
            logger.error("Gemini call failed: %s", e)
            raise UpstreamFailure(f"Gemini API call failed: {e}") from e

        logger.info("Judge scored %d prompt(s) with %s", len(prompts), self.model_name)
        return match_verdicts(prompts, parse_verdicts(response.text))

    async def _fetch_image(self, image_url: str) -> types.Part:
        try:
            async with httpx.AsyncClient(timeout=20.0, follow_redirects=True) as client:
                res = await client.get(image_url)
                res.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Could not fetch round image %s: %s", image_url, e)
            raise UpstreamFailure("Could not fetch the round image") from e

        mime_type = res.headers.get("content-type", "image/jpeg").split(";")[0].strip()
        return types.Part.from_bytes(data=res.content, mime_type=mime_type)


@lru_cache
def get_judge() -> Judge:
    return GeminiJudge()
