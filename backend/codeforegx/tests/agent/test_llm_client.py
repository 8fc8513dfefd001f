from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import BaseModel

from codeforegx.agent.llm_client import LLMClient, structured_text_candidates


class DummyModel(BaseModel):
    name: str
    age: int


def _mock_openai(*contents):
    # Mock response objects mapping the OpenAI API response structure
    responses = []
    for content in contents:
        mock_message = MagicMock()
        mock_message.content = content
        mock_choice = MagicMock()
        mock_choice.message = mock_message
        mock_response = MagicMock()
        mock_response.choices = [mock_choice]
        responses.append(mock_response)

    mock_completions = MagicMock()
    mock_completions.create = AsyncMock(side_effect=responses)
    mock_chat = MagicMock()
    mock_chat.completions = mock_completions
    mock_client_instance = AsyncMock()
    mock_client_instance.chat = mock_chat
    return mock_client_instance, mock_completions


@pytest.mark.asyncio
async def test_llm_client_json_parsing():
    mock_client_instance, mock_completions = _mock_openai('{"name": "Alice", "age": 30}')

    with patch("codeforegx.agent.llm_client.AsyncOpenAI", return_value=mock_client_instance):
        with patch("codeforegx.agent.llm_client.settings.LLM_API_KEY", "dummy_key"):
            client = LLMClient(model_name="test-model")

            result = await client.generate_structured(
                system_prompt="You are a helpful assistant.",
                messages=[{"role": "user", "content": "Give me Alice's details"}],
                response_schema=DummyModel,
            )

            assert isinstance(result, DummyModel)
            assert result.name == "Alice"
            assert result.age == 30
            mock_completions.create.assert_called_once()
            sent = mock_completions.create.call_args.kwargs["messages"]
            assert sent[0]["role"] == "system"
            assert "SCHEMA" in sent[0]["content"]
            assert sent[1] == {"role": "user", "content": "Give me Alice's details"}


@pytest.mark.asyncio
async def test_llm_client_retries_once_on_bad_json():
    mock_client_instance, mock_completions = _mock_openai(
        "Sure! Here you go: name Alice",
        '```json\n{"name": "Alice", "age": 31}\n```',
    )

    with patch("codeforegx.agent.llm_client.AsyncOpenAI", return_value=mock_client_instance):
        client = LLMClient(model_name="test-model", api_key="dummy_key")
        result = await client.generate_structured("sys", [{"role": "user", "content": "hi"}], DummyModel)

    assert result.age == 31
    assert mock_completions.create.call_count == 2
    assert mock_completions.create.call_args.kwargs["temperature"] == 0


@pytest.mark.asyncio
async def test_llm_client_gives_up_after_two_attempts():
    mock_client_instance, _ = _mock_openai("nope", "still nope")

    with patch("codeforegx.agent.llm_client.AsyncOpenAI", return_value=mock_client_instance):
        client = LLMClient(model_name="test-model", api_key="dummy_key")
        with pytest.raises(ValueError, match="Unable to parse structured response"):
            await client.generate_structured("sys", [{"role": "user", "content": "hi"}], DummyModel)


def test_structured_text_candidates():
    raw = 'Result:\n```json\n{"a": {"b": 1}}\n```\nthanks'
    candidates = structured_text_candidates(raw)

    assert candidates[0] == '{"a": {"b": 1}}'
    assert structured_text_candidates("") == []
    assert structured_text_candidates('x {"k": "}"} y')[-1] == '{"k": "}"}'
