import json
import logging
import os
import re
from typing import AsyncIterator, Optional

from pydantic import ValidationError as PydanticValidationError

from errors import UpstreamServiceFailure
from models import IntentAction, IntentResult
from prompts import INTENT_PROMPT, INTENT_SYSTEM_PROMPT, PLUTO_SYSTEM_PROMPT

logger = logging.getLogger(__name__)

# Below this, a classified action is ignored and Pluto just chats
CONFIDENCE_THRESHOLD = 0.7

MAX_TOKENS = 500
TEMPERATURE = 0.7

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def actionable_intent(result: Optional[IntentResult]) -> Optional[IntentResult]:
    """Keep a classification only if it names an action with enough confidence."""
    if result is None or result.action == IntentAction.NONE:
        return None
    if result.confidence < CONFIDENCE_THRESHOLD:
        return None
    return result


def parse_intent(raw: str) -> IntentResult:
    """Parse the model's JSON reply; tolerates code fences around it."""
    m = _JSON_OBJECT.search(raw or "")
    if not m:
        raise ValueError("No JSON object in classification reply")
    payload = json.loads(m.group(0))
    if isinstance(payload.get("action"), str):
        payload["action"] = payload["action"].strip().upper()
    if payload.get("parameters") is None:
        payload["parameters"] = {}
    return IntentResult.model_validate(payload)


class PlutoAssistant:
    """Pluto persona backed by OpenAI, Anthropic or Gemini."""

    def __init__(self, provider: Optional[str] = None):
        self.provider = (provider or os.getenv("AI_PROVIDER", "openai")).lower()

        if self.provider == "openai":
            self._init_openai()
        elif self.provider == "anthropic":
            self._init_anthropic()
        elif self.provider == "gemini":
            self._init_gemini()
        else:
            raise ValueError(
                f"Unknown AI_PROVIDER '{self.provider}'. "
                "Set AI_PROVIDER to 'openai', 'anthropic', or 'gemini'."
            )

    # ── Provider Init ─────────────────────────────────────────────────────

    def _init_openai(self):
        from openai import AsyncOpenAI

        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise EnvironmentError(
                "OPENAI_API_KEY environment variable is not set. "
                "Please add it to your .env file."
            )
        self.client = AsyncOpenAI(api_key=api_key)
        self.model = os.getenv("OPENAI_MODEL", "gpt-3.5-turbo")
        logger.info("AI Provider: OpenAI | Model: %s", self.model)

    def _init_anthropic(self):
        import anthropic

        api_key = os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise EnvironmentError("ANTHROPIC_API_KEY is not set.")
        self.client = anthropic.AsyncAnthropic(api_key=api_key)
        self.model = os.getenv("CLAUDE_MODEL", "claude-sonnet-4-6")
        logger.info("AI Provider: Anthropic | Model: %s", self.model)

    def _init_gemini(self):
        import google.generativeai as genai

        api_key = os.getenv("GEMINI_API_KEY")
        if not api_key:
            raise EnvironmentError("GEMINI_API_KEY is not set.")
        genai.configure(api_key=api_key)
        self.model = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
        self.client = genai.GenerativeModel(self.model)
        logger.info("AI Provider: Gemini | Model: %s", self.model)

    # ── Public API ────────────────────────────────────────────────────────

    async def reply(self, text: str) -> str:
        """Pluto's conversational answer to *text*."""
        try:
            content = await self._complete(PLUTO_SYSTEM_PROMPT, text, TEMPERATURE)
        except Exception as exc:
            logger.error("Error calling %s API: %s", self.provider, exc)
            raise UpstreamServiceFailure(f"Assistant service error: {exc}") from exc

        if not content or not content.strip():
            raise UpstreamServiceFailure("No response received from the assistant")
        return content.strip()

    async def classify(self, text: str) -> Optional[IntentResult]:
        """Wallet action the user asked for, or None to fall back to chat."""
        try:
            raw = await self._complete(
                INTENT_SYSTEM_PROMPT, INTENT_PROMPT.format(text=text), 0.0
            )
            result = parse_intent(raw)
        except (ValueError, PydanticValidationError) as exc:
            logger.warning("Malformed intent classification: %s", exc)
            return None
        except Exception as exc:
            logger.warning("Intent classification failed: %s", exc)
            return None

        logger.info(
            "Intent classified: action=%s, confidence=%.2f",
            result.action.value, result.confidence,
        )
        return actionable_intent(result)

    async def stream_reply(self, text: str) -> AsyncIterator[str]:
        """Stream Pluto's answer as text deltas."""
        if self.provider == "openai":
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": PLUTO_SYSTEM_PROMPT},
                    {"role": "user", "content": text},
                ],
                max_tokens=MAX_TOKENS,
                temperature=TEMPERATURE,
                stream=True,
            )
            async for chunk in stream:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content

        elif self.provider == "anthropic":
            async with self.client.messages.stream(
                model=self.model,
                max_tokens=MAX_TOKENS,
                system=PLUTO_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": text}],
                temperature=TEMPERATURE,
            ) as stream:
                async for delta in stream.text_stream:
                    yield delta

        elif self.provider == "gemini":
            response = await self.client.generate_content_async(
                f"{PLUTO_SYSTEM_PROMPT}\n\n{text}", stream=True
            )
            async for chunk in response:
                if chunk.text:
                    yield chunk.text

    # ── Provider Calls ────────────────────────────────────────────────────

    async def _complete(self, system: str, prompt: str, temperature: float) -> str:
        if self.provider == "openai":
            return await self._call_openai(system, prompt, temperature)
        elif self.provider == "anthropic":
            return await self._call_anthropic(system, prompt, temperature)
        elif self.provider == "gemini":
            return await self._call_gemini(system, prompt, temperature)
        return ""

    async def _call_openai(self, system: str, prompt: str, temperature: float) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            max_tokens=MAX_TOKENS,
            temperature=temperature,
            top_p=1,
            frequency_penalty=0,
            presence_penalty=0,
        )
        return response.choices[0].message.content or ""

    async def _call_anthropic(self, system: str, prompt: str, temperature: float) -> str:
        message = await self.client.messages.create(
            model=self.model,
            max_tokens=MAX_TOKENS,
            system=system,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
        )
        return message.content[0].text

    async def _call_gemini(self, system: str, prompt: str, temperature: float) -> str:
        response = await self.client.generate_content_async(
            f"{system}\n\n{prompt}",
            generation_config={"temperature": temperature, "max_output_tokens": MAX_TOKENS},
        )
        return response.text
