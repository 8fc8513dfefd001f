import re
from typing import Literal

from pydantic import BaseModel, Field

from codeforegx.agent.base import BaseAgent
from codeforegx.agent.prompts.assistant import ASSISTANT_SYSTEM_PROMPT


class AssistantContextMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., min_length=1)


class AssistantRequest(BaseModel):
    message: str = Field(..., min_length=1)
    history: list[AssistantContextMessage] = Field(default_factory=list)
    system_prompt: str = ASSISTANT_SYSTEM_PROMPT


class AssistantReply(BaseModel):
    reply: str = Field(..., description="Conversational answer shown in the chat window.")
    code: str | None = Field(default=None, description="Generated source code, if any.")
    language: str | None = Field(default=None, description="Language of `code`, e.g. python.")


_SOCIAL_ONLY = re.compile(
    r"^\s*(hi|hello|hey|thanks|thank you|thx|ok|okay|cool|great)[\s!.]*$",
    re.IGNORECASE,
)


class CodeAssistantAgent(BaseAgent[AssistantRequest, AssistantReply]):
    """Answers chat messages and writes trading-bot code on request."""

    @staticmethod
    def quick_reply(message: str) -> AssistantReply | None:
        """Canned answer for greetings and acknowledgements; skips the model call."""
        if _SOCIAL_ONLY.match(message or ""):
            return AssistantReply(
                reply=(
                    "Hi! Tell me which market, timeframe and strategy you have in mind "
                    "and I'll draft the trading bot code."
                )
            )
        return None

    async def run(self, input_data: AssistantRequest) -> AssistantReply:
        canned = self.quick_reply(input_data.message)
        if canned:
            return canned

        messages = [{"role": m.role, "content": m.content} for m in input_data.history]
        messages.append({"role": "user", "content": input_data.message})
        reply = await self.llm.generate_structured(
            system_prompt=input_data.system_prompt.strip(),
            messages=messages,
            response_schema=AssistantReply,
        )
        if reply.code is not None and not reply.code.strip():
            reply.code = None
            reply.language = None
        return reply
