import json
import logging
import re
from typing import TypeVar

from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from codeforegx.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

ChatMessages = list[dict[str, str]]


def _extract_fenced_block(text: str) -> str | None:
    blocks = re.findall(r"```(?:json)?\s*(.*?)\s*```", text, re.DOTALL | re.IGNORECASE)
    return blocks[0].strip() if blocks else None


def _extract_balanced_json_object(text: str) -> str | None:
    """Best-effort extraction of the first balanced top-level JSON object."""
    start_idx = text.find("{")
    if start_idx == -1:
        return None

    depth = 0
    in_string = False
    escape = False
    for i in range(start_idx, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start_idx:i + 1]
    return None


def structured_text_candidates(raw_text: str) -> list[str]:
    """Candidate JSON payloads from a model reply, most specific first, without duplicates."""
    text = (raw_text or "").strip()
    if not text:
        return []

    candidates: list[str] = []
    fenced = _extract_fenced_block(text)
    if fenced:
        candidates.append(fenced)
    candidates.append(text)
    balanced = _extract_balanced_json_object(text)
    if balanced:
        candidates.append(balanced)

    return list(dict.fromkeys(c.strip() for c in candidates if c.strip()))


class LLMClient:
    """OpenAI-compatible chat client returning validated Pydantic objects."""

    def __init__(
        self,
        model_name: str | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
    ):
        self.model_name = model_name or settings.MODEL_DEFAULT
        self.client = AsyncOpenAI(
            base_url=base_url or settings.LLM_BASE_URL,
            api_key=api_key or settings.LLM_API_KEY,
        )

    async def _complete(self, messages: ChatMessages, temperature: float) -> str:
        response = await self.client.chat.completions.create(
            model=self.model_name,
            messages=messages,
            temperature=temperature,
        )
        if not getattr(response, "choices", None):
            logger.error("Received no choices from %s: %s", self.model_name, response)
            raise ValueError(f"Provider {self.model_name} returned no output")
        return response.choices[0].message.content or ""

    async def generate_structured(
        self,
        system_prompt: str,
        messages: ChatMessages,
        response_schema: type[T],
        *,
        temperature: float = 0.2,
    ) -> T:
        """
        Run a conversation and parse the final reply into `response_schema`.

        The JSON schema is appended to the system prompt; one retry with
        stricter instructions is made when the reply does not parse.
        """
        schema_json = json.dumps(response_schema.model_json_schema())
        augmented_system_prompt = (
            f"{system_prompt}\n\n"
            "Respond with ONLY a JSON object matching this JSON Schema, "
            "with no markdown fences or prose around it.\n\n"
            f"SCHEMA:\n{schema_json}"
        )
        attempt_prompts = [
            augmented_system_prompt,
            f"{augmented_system_prompt}\n\nYour previous reply was not valid JSON for the schema. Return only the JSON object.",
        ]

        for attempt_idx, system_prompt_attempt in enumerate(attempt_prompts, start=1):
            logger.info(
                "Issuing structured request to model %s (attempt %s/%s)",
                self.model_name,
                attempt_idx,
                len(attempt_prompts),
            )
            text_response = await self._complete(
                [{"role": "system", "content": system_prompt_attempt}, *messages],
                temperature=0 if attempt_idx > 1 else temperature,
            )

            parse_errors: list[str] = []
            for candidate in structured_text_candidates(text_response):
                try:
                    return response_schema.model_validate(json.loads(candidate, strict=False))
                except (json.JSONDecodeError, ValidationError) as candidate_error:
                    parse_errors.append(str(candidate_error))

            if attempt_idx < len(attempt_prompts):
                logger.warning(
                    "Structured parsing failed for %s on attempt %s: %s. Retrying...",
                    self.model_name,
                    attempt_idx,
                    " | ".join(parse_errors[:2]) or "empty reply",
                )
                continue
            logger.error("Could not parse structured reply from %s", self.model_name)
            raise ValueError(
                "Unable to parse structured response: " + (" | ".join(parse_errors[:3]) or "empty reply")
            )

        raise RuntimeError("Structured generation failed without a captured error")
