import asyncio
import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class LLMProvider(str, Enum):
    CLAUDE = "claude"
    OPENAI = "openai"
    OLLAMA = "ollama"


class LLMClient:
    def __init__(
        self,
        provider: LLMProvider,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        vision_model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
    ):
        self.provider = provider
        self.api_key = api_key
        self.model = model or self._default_model()
        self.vision_model = vision_model or self._default_vision_model()
        self.base_url = base_url
        self.timeout = timeout
        self._client = None

    def _default_model(self) -> str:
        if self.provider == LLMProvider.CLAUDE:
            return "claude-sonnet-4-20250514"
        if self.provider == LLMProvider.OLLAMA:
            return "qwen2.5-coder:7b"
        return "gpt-4o-mini"

    def _default_vision_model(self) -> str:
        if self.provider == LLMProvider.CLAUDE:
            return "claude-sonnet-4-20250514"
        if self.provider == LLMProvider.OLLAMA:
            return "llava:7b"
        return "gpt-4o"

    def _get_client(self):
        if self._client is None:
            if self.provider == LLMProvider.CLAUDE:
                import anthropic
                self._client = anthropic.AsyncAnthropic(api_key=self.api_key, timeout=self.timeout)
            elif self.provider == LLMProvider.OPENAI:
                import openai
                self._client = openai.AsyncOpenAI(api_key=self.api_key, timeout=self.timeout)
            elif self.provider == LLMProvider.OLLAMA:
                import httpx
                self._client = httpx.AsyncClient(base_url=self.base_url or "http://localhost:11434", timeout=self.timeout)
        return self._client

    async def _with_retry(self, call, label: str) -> str:
        for attempt in range(3):
            try:
                return await call()
            except Exception as e:
                logger.warning(f"LLM {label} request failed (attempt {attempt + 1}): {e}")
                if attempt < 2:
                    await asyncio.sleep(2 ** attempt)
                else:
                    raise

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.3,
    ) -> str:
        """Send a completion request and return the response text."""
        client = self._get_client()

        async def call() -> str:
            if self.provider == LLMProvider.CLAUDE:
                kwargs = {
                    "model": self.model,
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                    "messages": [{"role": "user", "content": prompt}],
                }
                if system:
                    kwargs["system"] = system
                response = await client.messages.create(**kwargs)
                return response.content[0].text

            messages = []
            if system:
                messages.append({"role": "system", "content": system})
            messages.append({"role": "user", "content": prompt})

            if self.provider == LLMProvider.OPENAI:
                response = await client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                )
                return response.choices[0].message.content

            response = await client.post("/api/chat", json={
                "model": self.model,
                "messages": messages,
                "stream": False,
                "options": {
                    "temperature": temperature,
                }
            })
            response.raise_for_status()
            return response.json()["message"]["content"]

        return await self._with_retry(call, "completion")

    async def complete_with_image(
        self,
        prompt: str,
        image_b64: str,
        max_tokens: int = 1024,
        media_type: str = "image/png",
    ) -> str:
        """Send a prompt plus one base64 image to the vision model."""
        client = self._get_client()

        async def call() -> str:
            if self.provider == LLMProvider.CLAUDE:
                response = await client.messages.create(
                    model=self.vision_model,
                    max_tokens=max_tokens,
                    messages=[{
                        "role": "user",
                        "content": [
                            {
                                "type": "image",
                                "source": {"type": "base64", "media_type": media_type, "data": image_b64},
                            },
                            {"type": "text", "text": prompt},
                        ],
                    }],
                )
                return response.content[0].text

            if self.provider == LLMProvider.OPENAI:
                response = await client.chat.completions.create(
                    model=self.vision_model,
                    max_tokens=max_tokens,
                    messages=[{
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            {"type": "image_url", "image_url": {"url": f"data:{media_type};base64,{image_b64}"}},
                        ],
                    }],
                )
                return response.choices[0].message.content

            response = await client.post("/api/chat", json={
                "model": self.vision_model,
                "messages": [{"role": "user", "content": prompt, "images": [image_b64]}],
                "stream": False,
            })
            response.raise_for_status()
            return response.json()["message"]["content"]

        return await self._with_retry(call, "vision")


def get_llm_client() -> Optional[LLMClient]:
    """Retrieve LLM client based on application settings."""
    from scrape_governor.config import settings

    provider_str = settings.llm_provider.lower()

    if provider_str == "ollama":
        return LLMClient(
            provider=LLMProvider.OLLAMA,
            model=settings.llm_model or "qwen2.5-coder:7b",
            vision_model=settings.llm_vision_model,
            base_url=settings.ollama_base_url,
            timeout=settings.llm_timeout_seconds,
        )

    api_key = settings.anthropic_api_key if provider_str == "claude" else settings.openai_api_key

    if not api_key:
        logger.warning(f"No API key found for LLM provider: {provider_str}")
        return None

    return LLMClient(
        provider=LLMProvider.CLAUDE if provider_str == "claude" else LLMProvider.OPENAI,
        api_key=api_key,
        model=settings.llm_model,
        vision_model=settings.llm_vision_model,
        timeout=settings.llm_timeout_seconds,
    )
