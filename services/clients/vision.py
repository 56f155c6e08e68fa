"""
Vision model client.

Wraps the OpenAI chat completions API for single-image prompts and adds a
usage-tracking wrapper that records latency, token counts and estimated cost
of every call in the ``ai_usage_log`` table.
"""

import asyncio
import base64
import time
from typing import Optional

from loguru import logger
from openai import OpenAI

from shared.errors import ConfigurationError
from shared.schemas import AIUsageEntry, VisionResponse

# USD per million tokens
COST_TABLE: dict[str, dict[str, float]] = {
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4.1": {"input": 2.00, "output": 8.00},
    "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
}


def estimate_cost(
    model: str, tokens_input: Optional[int], tokens_output: Optional[int]
) -> Optional[float]:
    """Estimated USD cost of a call, None for unknown models or missing counts."""
    rates = COST_TABLE.get(model)
    if not rates or tokens_input is None or tokens_output is None:
        return None
    return (tokens_input * rates["input"] + tokens_output * rates["output"]) / 1_000_000


class OpenAIVisionClient:
    """Sends one image plus a text prompt to an OpenAI vision model."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o",
        client: Optional[OpenAI] = None,
        max_tokens: int = 2000,
    ):
        self.model = model
        self.max_tokens = max_tokens
        if client is not None:
            self.openai_client = client
        elif api_key:
            self.openai_client = OpenAI(api_key=api_key)
        else:
            logger.warning("OPENAI_API_KEY not configured, vision client disabled")
            self.openai_client = None

    def is_configured(self) -> bool:
        return self.openai_client is not None

    async def generate_content(
        self, prompt: str, image_bytes: bytes, mime_type: str = "image/jpeg"
    ) -> VisionResponse:
        """
        Run a prompt against one image.

        Args:
            prompt: Instruction text
            image_bytes: Raw image data
            mime_type: Media type of the image

        Returns:
            VisionResponse with the model text and token counts
        """
        if not self.is_configured():
            raise ConfigurationError("Vision model not configured")

        base64_image = base64.b64encode(image_bytes).decode("utf-8")
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {
                        "type": "image_url",
                        "image_url": {
                            "url": f"data:{mime_type};base64,{base64_image}",
                            "detail": "high",
                        },
                    },
                ],
            }
        ]

        response = await asyncio.to_thread(
            self.openai_client.chat.completions.create,
            model=self.model,
            messages=messages,
            max_tokens=self.max_tokens,
            temperature=0.1,
        )

        usage = getattr(response, "usage", None)
        text = response.choices[0].message.content if response.choices else None
        return VisionResponse(
            text=text,
            model=self.model,
            tokens_input=getattr(usage, "prompt_tokens", None),
            tokens_output=getattr(usage, "completion_tokens", None),
        )


class TrackedVisionClient:
    """
    Vision client wrapper that logs every call to the usage table.

    The log write is best-effort: a failing insert is logged and never
    reaches the caller. Errors of the wrapped call are logged and re-raised.
    """

    def __init__(self, client: OpenAIVisionClient, usage_repository, feature: str, auth=None):
        self.client = client
        self.usage_repository = usage_repository
        self.feature = feature
        self.auth = auth

    @property
    def model(self) -> str:
        return self.client.model

    def is_configured(self) -> bool:
        return self.client.is_configured()

    async def generate_content(
        self, prompt: str, image_bytes: bytes, mime_type: str = "image/jpeg"
    ) -> VisionResponse:
        start_time = time.time()
        try:
            response = await self.client.generate_content(prompt, image_bytes, mime_type)
        except Exception as e:
            await self._log_usage(start_time, None, None, success=False, error_message=str(e) or "Unknown error")
            raise

        await self._log_usage(start_time, response.tokens_input, response.tokens_output, success=True)
        return response

    async def _log_usage(
        self,
        start_time: float,
        tokens_input: Optional[int],
        tokens_output: Optional[int],
        success: bool,
        error_message: Optional[str] = None,
    ) -> None:
        try:
            user_id = await self.auth.get_user_id() if self.auth else None
            entry = AIUsageEntry(
                user_id=user_id,
                feature=self.feature,
                model_used=self.model,
                tokens_input=tokens_input,
                tokens_output=tokens_output,
                latency_ms=int((time.time() - start_time) * 1000),
                cost_usd=estimate_cost(self.model, tokens_input, tokens_output),
                success=success,
                error_message=error_message,
            )
            await self.usage_repository.log_ai_usage(entry)
        except Exception as e:
            logger.warning("AI usage log insert failed", feature=self.feature, error=str(e))
