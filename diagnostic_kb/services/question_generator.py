"""
Clarifying question generation for diagnostic search.

This module handles interactions with the LLM providers that turn a complaint
into 2-3 multiple-choice questions, and maps provider failures (rate limit,
exhausted credits, unparseable output) onto the question generation errors.
"""
import json
import logging
import os
from typing import List, Optional

import anthropic
import httpx
import openai
from dotenv import load_dotenv
from openai import AsyncOpenAI
from pydantic import ValidationError

from diagnostic_kb.schemas.questions import DiagnosticQuestion, GeneratedQuestions
from diagnostic_kb.services.error_handler import (
    MalformedResponseError,
    ProviderNotConfiguredError,
    QuestionGenerationError,
    QuotaExceededError,
    RateLimitError,
)

load_dotenv()

logger = logging.getLogger(__name__)

LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "2"))
DEEPSEEK_URL = "https://api.deepseek.com/v1/chat/completions"

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "deepseek": "deepseek-chat",
    "anthropic": "claude-3-5-haiku-latest",
}

SYSTEM_PROMPT = """Kamu adalah asisten diagnostik kendaraan yang ahli. Berdasarkan keluhan user, buatkan 2-3 pertanyaan klarifikasi yang paling relevan untuk membantu mempersempit diagnosa.

Aturan:
1. Pertanyaan harus spesifik dan relevan dengan keluhan
2. Setiap pertanyaan harus memiliki 3-4 opsi pilihan
3. Fokus pada informasi yang membantu diagnosa: kapan terjadi, kondisi, gejala tambahan
4. Gunakan bahasa Indonesia yang mudah dipahami teknisi

Kembalikan dalam format JSON:
{
  "questions": [
    {
      "id": "q1",
      "question": "Pertanyaan...",
      "options": [
        { "value": "opt1", "label": "Opsi 1" },
        { "value": "opt2", "label": "Opsi 2" },
        { "value": "opt3", "label": "Opsi 3" }
      ]
    }
  ]
}"""


def get_llm_provider() -> str:
    provider = os.getenv("LLM_PROVIDER")
    if provider:
        return provider.lower()
    # Auto-detect from the configured API keys
    if os.getenv("OPENAI_API_KEY", "").strip():
        return "openai"
    if os.getenv("ANTHROPIC_API_KEY", "").strip():
        return "anthropic"
    if os.getenv("DEEPSEEK_API_KEY", "").strip():
        return "deepseek"
    raise ProviderNotConfiguredError(
        "No LLM API key found. Please set at least one of: "
        "OPENAI_API_KEY, ANTHROPIC_API_KEY, DEEPSEEK_API_KEY"
    )


def build_user_message(user_query: str) -> str:
    return f'Keluhan user: "{user_query}"'


def parse_questions(content: Optional[str]) -> List[DiagnosticQuestion]:
    """
    Parse generator output into questions.

    Args:
        content: Raw message content, optionally wrapped in a ```json fence

    Returns:
        The questions (possibly empty, meaning no clarification is needed)

    Raises:
        MalformedResponseError: If the content is not a valid question payload
    """
    if not content or not content.strip():
        raise MalformedResponseError()
    text = content.strip()
    if text.startswith("```"):
        text = text.replace("```json", "").replace("```", "").strip()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        logger.error("Failed to parse AI response: %s", content[:200])
        raise MalformedResponseError()
    if not isinstance(payload, dict):
        raise MalformedResponseError()
    try:
        return GeneratedQuestions.model_validate(payload).questions
    except ValidationError as e:
        logger.error("AI response does not match the question schema: %s", e)
        raise MalformedResponseError()


def _raise_for_status_code(provider: str, status_code: int, body: str = "") -> None:
    if status_code == 429:
        raise RateLimitError()
    if status_code == 402:
        raise QuotaExceededError()
    logger.error("%s error: %s %s", provider, status_code, body[:200])
    raise QuestionGenerationError(f"AI gateway error: {status_code}")


class QuestionGenerator:
    """Generates clarifying questions with the configured LLM provider."""

    def __init__(
        self,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._provider = provider
        self._model = model
        # Only used by providers called over raw HTTP
        self._transport = transport

    @property
    def provider(self) -> str:
        return self._provider or get_llm_provider()

    def model_for(self, provider: str) -> str:
        return self._model or os.getenv("QUESTION_MODEL") or DEFAULT_MODELS.get(provider, "")

    async def generate(self, user_query: str) -> List[DiagnosticQuestion]:
        """Ask the provider for clarifying questions about ``user_query``."""
        provider = self.provider
        logger.info("Requesting clarifying questions from %s", provider)
        if provider == "openai":
            content = await self._openai_completion(user_query)
        elif provider == "deepseek":
            content = await self._deepseek_completion(user_query)
        elif provider == "anthropic":
            content = await self._anthropic_completion(user_query)
        else:
            raise ProviderNotConfiguredError(f"Unknown provider: {provider}")
        questions = parse_questions(content)
        logger.info("%s returned %d clarifying questions", provider, len(questions))
        return questions

    async def _openai_completion(self, user_query: str) -> Optional[str]:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ProviderNotConfiguredError("OPENAI_API_KEY is not set in environment variables.")
        client = AsyncOpenAI(
            api_key=api_key,
            base_url=os.getenv("OPENAI_BASE_URL") or None,
            max_retries=LLM_MAX_RETRIES,
            http_client=httpx.AsyncClient(timeout=LLM_TIMEOUT_SECONDS, transport=self._transport),
        )
        try:
            response = await client.chat.completions.create(
                model=self.model_for("openai"),
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_user_message(user_query)},
                ],
                response_format={"type": "json_object"},
            )
        except openai.APIStatusError as e:
            _raise_for_status_code("openai", e.status_code, str(e))
        except openai.APIError as e:
            raise QuestionGenerationError(f"openai error: {e}")
        finally:
            await client.close()
        return response.choices[0].message.content

    async def _deepseek_completion(self, user_query: str) -> Optional[str]:
        api_key = os.getenv("DEEPSEEK_API_KEY")
        if not api_key:
            raise ProviderNotConfiguredError("DEEPSEEK_API_KEY is not set in environment variables.")
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        data = {
            "model": self.model_for("deepseek"),
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_message(user_query)},
            ],
            "response_format": {"type": "json_object"},
        }
        try:
            async with httpx.AsyncClient(timeout=LLM_TIMEOUT_SECONDS, transport=self._transport) as client:
                response = await client.post(DEEPSEEK_URL, headers=headers, json=data)
        except httpx.HTTPError as e:
            raise QuestionGenerationError(f"deepseek error: {e}")
        if response.is_error:
            _raise_for_status_code("deepseek", response.status_code, response.text)
        try:
            return response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            raise MalformedResponseError()

    async def _anthropic_completion(self, user_query: str) -> Optional[str]:
        api_key = os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise ProviderNotConfiguredError("ANTHROPIC_API_KEY is not set in environment variables.")
        client = anthropic.AsyncAnthropic(api_key=api_key, timeout=LLM_TIMEOUT_SECONDS, max_retries=LLM_MAX_RETRIES)
        try:
            response = await client.messages.create(
                model=self.model_for("anthropic"),
                max_tokens=1000,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": build_user_message(user_query)}],
            )
        except anthropic.APIStatusError as e:
            _raise_for_status_code("anthropic", e.status_code, str(e))
        except anthropic.APIError as e:
            raise QuestionGenerationError(f"anthropic error: {e}")
        finally:
            await client.close()
        return response.content[0].text if response.content else None
