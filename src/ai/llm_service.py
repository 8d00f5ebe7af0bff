"""Vision classifier client for an OpenAI-compatible endpoint (LM Studio by default)."""

import base64
import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from openai import AsyncOpenAI

from src.config import settings

logger = logging.getLogger(__name__)


class LLMService:
    """
    Service for vision model interactions.

    Features:
    - OpenAI-compatible chat completions with an inline image
    - Model listing and connectivity check
    - Call and latency statistics
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
    ):
        self.base_url = (base_url or settings.llm_base_url).rstrip("/")
        self.api_key = api_key or settings.llm_api_key
        self.model = model or settings.llm_model
        self._client: Optional[AsyncOpenAI] = None
        self._call_count: int = 0
        self._error_count: int = 0
        self._total_latency: float = 0.0

    async def _get_client(self) -> AsyncOpenAI:
        """Get or create the OpenAI client."""
        if self._client is None:
            self._client = AsyncOpenAI(
                base_url=self.base_url,
                api_key=self.api_key,
                timeout=settings.llm_timeout_seconds,
            )
        return self._client

    @staticmethod
    def _image_content(image: bytes) -> Dict[str, Any]:
        encoded = base64.b64encode(image).decode("ascii")
        return {
            "type": "image_url",
            "image_url": {"url": f"data:image/png;base64,{encoded}"},
        }

    async def classify(
        self,
        image: bytes,
        instruction: str,
        context: str = "",
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ) -> str:
        """
        Send a screenshot and instruction to the vision model.

        Args:
            image: PNG bytes
            instruction: System instruction describing the task
            context: Extra user text sent with the image
            temperature: Temperature (defaults to settings.llm_temperature)
            model: Model name (defaults to the service model)

        Returns:
            Raw response text (may be empty)
        """
        model = model or self.model
        temperature = temperature if temperature is not None else settings.llm_temperature

        user_content: List[Dict[str, Any]] = []
        if context:
            user_content.append({"type": "text", "text": context})
        user_content.append(self._image_content(image))

        started = time.monotonic()
        try:
            client = await self._get_client()
            response = await client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": instruction},
                    {"role": "user", "content": user_content},
                ],
                temperature=temperature,
                max_tokens=settings.llm_max_tokens,
            )
        except Exception as e:
            self._error_count += 1
            logger.error(f"Vision classifier call failed: {e}")
            raise
        finally:
            self._total_latency += time.monotonic() - started

        self._call_count += 1
        result = response.choices[0].message.content if response.choices else None
        if result is None:
            result = ""
        logger.debug(f"Classifier returned {len(result)} chars")
        return result

    async def list_models(self) -> List[str]:
        """Return the model ids the endpoint advertises."""
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(
                f"{self.base_url}/models",
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
            data = response.json()
        return [m.get("id") for m in data.get("data", []) if m.get("id")]

    async def test_connection(self) -> bool:
        """Check whether the classifier endpoint is reachable."""
        try:
            models = await self.list_models()
            logger.info(f"Classifier reachable at {self.base_url} ({len(models)} models)")
            return True
        except Exception as e:
            logger.warning(f"Classifier not reachable at {self.base_url}: {e}")
            return False

    def get_stats(self) -> Dict[str, Any]:
        """Get service statistics."""
        avg = self._total_latency / self._call_count if self._call_count else 0.0
        return {
            "call_count": self._call_count,
            "error_count": self._error_count,
            "avg_latency_seconds": round(avg, 3),
            "model": self.model,
        }

    async def close(self):
        """Close the client."""
        if self._client:
            await self._client.close()
            self._client = None


llm_service = LLMService()
