from unittest.mock import AsyncMock, MagicMock

import pytest

from codeforegx.agent.assistant import (
    AssistantContextMessage,
    AssistantReply,
    AssistantRequest,
    CodeAssistantAgent,
)


def _agent(reply: AssistantReply | None = None):
    llm = MagicMock()
    llm.generate_structured = AsyncMock(return_value=reply)
    return CodeAssistantAgent(llm=llm), llm


@pytest.mark.asyncio
async def test_greeting_skips_the_model():
    agent, llm = _agent()

    reply = await agent.run(AssistantRequest(message="Hello!"))

    assert "trading bot" in reply.reply
    assert reply.code is None
    llm.generate_structured.assert_not_called()


@pytest.mark.asyncio
async def test_run_sends_history_and_system_prompt():
    agent, llm = _agent(AssistantReply(reply="Done", code="def on_tick(): pass", language="python"))
    request = AssistantRequest(
        message="Add a stop loss",
        history=[
            AssistantContextMessage(role="user", content="Write an EMA crossover bot"),
            AssistantContextMessage(role="assistant", content="Here it is"),
        ],
        system_prompt="  You write bots.  ",
    )

    reply = await agent.run(request)

    assert reply.code == "def on_tick(): pass"
    kwargs = llm.generate_structured.call_args.kwargs
    assert kwargs["system_prompt"] == "You write bots."
    assert kwargs["response_schema"] is AssistantReply
    assert kwargs["messages"] == [
        {"role": "user", "content": "Write an EMA crossover bot"},
        {"role": "assistant", "content": "Here it is"},
        {"role": "user", "content": "Add a stop loss"},
    ]


@pytest.mark.asyncio
async def test_blank_code_is_dropped():
    agent, _ = _agent(AssistantReply(reply="No code needed", code="   ", language="python"))

    reply = await agent.run(AssistantRequest(message="What is RSI?"))

    assert reply.code is None
    assert reply.language is None
