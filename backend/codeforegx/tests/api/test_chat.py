import json
from unittest.mock import AsyncMock

import pytest
import sse_starlette.sse as sse

from codeforegx.agent.assistant import AssistantReply
from codeforegx.core.config import settings

CHAT = f"{settings.API_V1_STR}/chat"


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    # sse-starlette keeps a process-wide exit event bound to the first event loop
    if hasattr(sse, "AppStatus"):
        sse.AppStatus.should_exit_event = None
    yield


def _new_session(client, headers, title=None):
    body = {"title": title} if title else {}
    response = client.post(f"{CHAT}/sessions", headers=headers, json=body)
    assert response.status_code == 201, response.text
    return response.json()


def _sse_events(text):
    events = []
    current = {}
    for line in text.splitlines():
        if line.startswith("event:"):
            current["event"] = line.split(":", 1)[1].strip()
        elif line.startswith("data:"):
            current["data"] = json.loads(line.split(":", 1)[1].strip())
        elif not line.strip() and current:
            events.append(current)
            current = {}
    if current:
        events.append(current)
    return events


def test_session_crud(client, user_headers, developer_headers):
    created = _new_session(client, user_headers, title="Scalper")

    sessions = client.get(f"{CHAT}/sessions", headers=user_headers).json()
    assert [s["id"] for s in sessions] == [created["id"]]
    assert client.get(f"{CHAT}/sessions", headers=developer_headers).json() == []

    detail = client.get(f"{CHAT}/sessions/{created['id']}", headers=user_headers).json()
    assert detail["title"] == "Scalper"
    assert detail["messages"] == []

    assert client.get(f"{CHAT}/sessions/{created['id']}", headers=developer_headers).status_code == 403
    assert client.delete(f"{CHAT}/sessions/{created['id']}", headers=user_headers).status_code == 200
    assert client.get(f"{CHAT}/sessions/{created['id']}", headers=user_headers).status_code == 404


def test_send_message_stores_both_sides(client, user_headers, assistant_agent):
    assistant_agent.run = AsyncMock(
        return_value=AssistantReply(reply="Here is a grid bot.", code="print('grid')", language="python")
    )
    chat_session = _new_session(client, user_headers)

    response = client.post(
        f"{CHAT}/sessions/{chat_session['id']}/messages",
        headers=user_headers,
        json={"content": "Write a grid bot for BTCUSDT"},
    )

    assert response.status_code == 200, response.text
    exchange = response.json()
    assert exchange["user_message"]["role"] == "user"
    assert exchange["assistant_message"]["role"] == "assistant"
    assert exchange["assistant_message"]["code"] == "print('grid')"
    assert exchange["assistant_message"]["details"] == {"type": "code"}

    messages = client.get(f"{CHAT}/sessions/{chat_session['id']}/messages", headers=user_headers).json()
    assert [m["role"] for m in messages] == ["user", "assistant"]
    detail = client.get(f"{CHAT}/sessions/{chat_session['id']}", headers=user_headers).json()
    assert detail["title"] == "Write a grid bot for BTCUSDT"


def test_history_and_system_prompt_are_forwarded(client, user_headers, developer_headers, assistant_agent):
    client.post(
        f"{settings.API_V1_STR}/prompts/",
        headers=developer_headers,
        json={"name": "chat-assistant", "category": "chat", "content": "You help {{user_name}} write bots."},
    )
    assistant_agent.run = AsyncMock(return_value=AssistantReply(reply="Sure."))
    chat_session = _new_session(client, user_headers)
    url = f"{CHAT}/sessions/{chat_session['id']}/messages"

    client.post(url, headers=user_headers, json={"content": "first question"})
    client.post(url, headers=user_headers, json={"content": "second question"})

    request = assistant_agent.run.call_args.args[0]
    assert request.message == "second question"
    assert [(m.role, m.content) for m in request.history] == [("user", "first question"), ("assistant", "Sure.")]
    assert request.system_prompt == "You help trader@codeforegx.dev write bots."


def test_assistant_failure_becomes_error_message(client, user_headers, assistant_agent):
    assistant_agent.run = AsyncMock(side_effect=RuntimeError("provider timeout"))
    chat_session = _new_session(client, user_headers)

    exchange = client.post(
        f"{CHAT}/sessions/{chat_session['id']}/messages", headers=user_headers, json={"content": "hello bot"}
    ).json()

    assistant = exchange["assistant_message"]
    assert assistant["details"]["type"] == "error"
    assert assistant["details"]["error"] == "provider timeout"
    assert "provider timeout" in assistant["content"]


def test_stream_emits_events(client, user_headers, assistant_agent):
    assistant_agent.run = AsyncMock(return_value=AssistantReply(reply="Streaming reply"))
    chat_session = _new_session(client, user_headers)

    response = client.post(
        f"{CHAT}/sessions/{chat_session['id']}/stream", headers=user_headers, json={"content": "stream it"}
    )

    assert response.status_code == 200
    events = _sse_events(response.text)
    assert [e["event"] for e in events] == ["message_started", "assistant_message", "done"]
    assert events[0]["data"]["message"]["content"] == "stream it"
    assert events[1]["data"]["message"]["content"] == "Streaming reply"

    messages = client.get(f"{CHAT}/sessions/{chat_session['id']}/messages", headers=user_headers).json()
    assert [m["content"] for m in messages] == ["stream it", "Streaming reply"]


def test_stream_reports_errors(client, user_headers, assistant_agent):
    assistant_agent.run = AsyncMock(side_effect=ValueError("bad json"))
    chat_session = _new_session(client, user_headers)

    response = client.post(
        f"{CHAT}/sessions/{chat_session['id']}/stream", headers=user_headers, json={"content": "stream it"}
    )

    events = _sse_events(response.text)
    assert [e["event"] for e in events] == ["message_started", "assistant_message", "error"]
    assert events[-1]["data"]["message"] == "bad json"
