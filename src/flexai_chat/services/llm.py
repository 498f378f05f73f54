"""Streaming generator backed by Google's Gemini models."""

import os
from typing import AsyncIterator, Dict, Optional

import google.generativeai as genai
import structlog
from google.api_core import exceptions

from ..config import GEMINI_MODELS
from ..domain.errors import GenerationFailedError
from ..domain.models import AIModel

logger = structlog.get_logger()

COACH_INSTRUCTION = (
    "You are FlexAI Coach, a knowledgeable and encouraging personal trainer. "
    "Answer questions about training, nutrition, recovery, sleep, mobility and "
    "supplements with practical, evidence-based advice. Format answers in "
    "Markdown with short sections and bullet points."
)


class GeminiResponseGenerator:
    """Streams coach replies from Gemini, one fragment per response chunk."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        models: Optional[Dict[AIModel, str]] = None,
        fallback=None,
    ):
        """Configure the SDK.

        fallback is another generator used when the Gemini quota is exhausted
        before any text was produced.
        """
        api_key = api_key or os.getenv("GEMINI_API_KEY")
        if not api_key:
            raise ValueError("GEMINI_API_KEY is not set")
        genai.configure(api_key=api_key)
        self.model_names = models or GEMINI_MODELS
        self.fallback = fallback
        self._models: Dict[AIModel, genai.GenerativeModel] = {}
        logger.info(
            "gemini_generator_init",
            models={profile.value: name for profile, name in self.model_names.items()},
            has_fallback=fallback is not None,
        )

    def _model(self, profile: AIModel) -> genai.GenerativeModel:
        if profile not in self._models:
            self._models[profile] = genai.GenerativeModel(
                self.model_names[profile],
                system_instruction=COACH_INSTRUCTION,
            )
        return self._models[profile]

    async def generate(self, message: str, *, model: Optional[AIModel] = None) -> AsyncIterator[str]:
        profile = AIModel(model) if model is not None else AIModel.PRO
        produced = False
        try:
            response = await self._model(profile).generate_content_async(message, stream=True)
            async for chunk in response:
                text = chunk.text
                if text:
                    produced = True
                    yield text
        except exceptions.ResourceExhausted as e:
            if produced or self.fallback is None:
                logger.error("gemini_quota_exhausted", model=profile.value, error=str(e))
                raise GenerationFailedError("Gemini quota exhausted") from e
            logger.warning("gemini_quota_exhausted", model=profile.value, fallback="canned")
            async for fragment in self.fallback.generate(message, model=profile):
                yield fragment
        except exceptions.GoogleAPIError as e:
            logger.error("gemini_request_failed", model=profile.value, error=str(e))
            raise GenerationFailedError(str(e)) from e
        except ValueError as e:
            # chunk.text raises when the candidate was blocked
            logger.error("gemini_response_blocked", model=profile.value, error=str(e))
            raise GenerationFailedError(str(e)) from e
