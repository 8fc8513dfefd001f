import json
import logging
import uuid
from collections.abc import AsyncIterator
from typing import Annotated, Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from sqlmodel import Session, col, func, select
from sse_starlette.sse import EventSourceResponse

from codeforegx.agent.assistant import AssistantRequest, CodeAssistantAgent
from codeforegx.api.deps import CurrentUser, SessionDep, session_for
from codeforegx.crud import add_chat_message, create_chat_session
from codeforegx.models import (
    ChatExchange,
    ChatMessage,
    ChatMessagePublic,
    ChatMessageRequest,
    ChatRole,
    ChatSession,
    ChatSessionCreate,
    ChatSessionPublic,
    ChatSessionWithMessages,
    Message,
    User,
)
from codeforegx.services.chat import build_request, generate_reply, send_message

router = APIRouter()
logger = logging.getLogger(__name__)


def get_assistant_agent() -> CodeAssistantAgent:
    return CodeAssistantAgent()


AgentDep = Annotated[CodeAssistantAgent, Depends(get_assistant_agent)]


def _get_owned_session(session: Session, id: uuid.UUID, user: User) -> ChatSession:
    chat_session = session.get(ChatSession, id)
    if not chat_session:
        raise HTTPException(status_code=404, detail="Chat session not found")
    if chat_session.owner_id != user.id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Not enough permissions")
    return chat_session


def _chat_event(event: str, **payload: Any) -> dict[str, str]:
    return {"event": event, "data": json.dumps({"status": event, **payload})}


@router.get("/sessions", response_model=list[ChatSessionPublic])
def read_chat_sessions(
    session: SessionDep, current_user: CurrentUser, skip: int = 0, limit: int = 100
) -> Any:
    statement = (
        select(ChatSession)
        .where(ChatSession.owner_id == current_user.id)
        .order_by(col(ChatSession.updated_at).desc())
        .offset(skip)
        .limit(limit)
    )
    return session.exec(statement).all()


@router.post("/sessions", response_model=ChatSessionPublic, status_code=201)
def create_new_chat_session(
    *, session: SessionDep, current_user: CurrentUser, session_in: ChatSessionCreate
) -> Any:
    return create_chat_session(session=session, session_in=session_in, owner_id=current_user.id)


@router.get("/sessions/{id}", response_model=ChatSessionWithMessages)
def read_chat_session(id: uuid.UUID, session: SessionDep, current_user: CurrentUser) -> Any:
    chat_session = _get_owned_session(session, id, current_user)
    messages = session.exec(
        select(ChatMessage)
        .where(ChatMessage.session_id == chat_session.id)
        .order_by(col(ChatMessage.created_at))
    ).all()
    return ChatSessionWithMessages(
        **ChatSessionPublic.model_validate(chat_session).model_dump(),
        messages=[ChatMessagePublic.model_validate(message) for message in messages],
    )


@router.delete("/sessions/{id}")
def delete_chat_session(id: uuid.UUID, session: SessionDep, current_user: CurrentUser) -> Message:
    chat_session = _get_owned_session(session, id, current_user)
    session.delete(chat_session)
    session.commit()
    return Message(message="Chat session deleted successfully")


@router.get("/sessions/{id}/messages", response_model=list[ChatMessagePublic])
def read_chat_messages(
    id: uuid.UUID,
    session: SessionDep,
    current_user: CurrentUser,
    skip: int = 0,
    limit: int = 100,
) -> Any:
    chat_session = _get_owned_session(session, id, current_user)
    return session.exec(
        select(ChatMessage)
        .where(ChatMessage.session_id == chat_session.id)
        .order_by(col(ChatMessage.created_at))
        .offset(skip)
        .limit(limit)
    ).all()


@router.post("/sessions/{id}/messages", response_model=ChatExchange)
async def send_chat_message(
    *,
    id: uuid.UUID,
    session: SessionDep,
    current_user: CurrentUser,
    agent: AgentDep,
    message_in: ChatMessageRequest,
) -> Any:
    """
    Send a message and wait for the assistant's full reply.
    """
    chat_session = _get_owned_session(session, id, current_user)
    if _message_count(session, chat_session.id) == 0:
        _title_from_first_message(session, chat_session, message_in.content)
    user_message, assistant_message = await send_message(
        session, chat_session, current_user, message_in.content, agent=agent
    )
    return ChatExchange(
        user_message=ChatMessagePublic.model_validate(user_message),
        assistant_message=ChatMessagePublic.model_validate(assistant_message),
    )


async def _stream_reply(
    app: FastAPI,
    chat_session_id: uuid.UUID,
    user_message: ChatMessagePublic,
    request: AssistantRequest,
    agent: CodeAssistantAgent,
) -> AsyncIterator[dict[str, str]]:
    yield _chat_event("message_started", message=user_message.model_dump(mode="json"))

    reply, details = await generate_reply(agent, request)
    with session_for(app) as session:
        chat_session = session.get(ChatSession, chat_session_id)
        if chat_session is None:
            yield _chat_event("error", message="Chat session was deleted")
            return
        assistant_message = add_chat_message(
            session=session,
            chat_session=chat_session,
            role=ChatRole.assistant,
            content=reply.reply,
            code=reply.code,
            language=reply.language,
            details=details,
        )
        payload = ChatMessagePublic.model_validate(assistant_message).model_dump(mode="json")

    yield _chat_event("assistant_message", message=payload)
    if details.get("type") == "error":
        yield _chat_event("error", message=details.get("error", "Assistant failed"))
    else:
        yield _chat_event("done", session_id=str(chat_session_id))


@router.post("/sessions/{id}/stream")
async def stream_chat_message(
    *,
    id: uuid.UUID,
    request: Request,
    session: SessionDep,
    current_user: CurrentUser,
    agent: AgentDep,
    message_in: ChatMessageRequest,
):
    """Store the message, then stream the assistant's reply via SSE."""
    chat_session = _get_owned_session(session, id, current_user)
    if _message_count(session, chat_session.id) == 0:
        _title_from_first_message(session, chat_session, message_in.content)
    assistant_request = build_request(session, chat_session, current_user, message_in.content)
    user_message = add_chat_message(
        session=session, chat_session=chat_session, role=ChatRole.user, content=message_in.content
    )
    return EventSourceResponse(
        _stream_reply(
            request.app,
            chat_session.id,
            ChatMessagePublic.model_validate(user_message),
            assistant_request,
            agent,
        )
    )


def _message_count(session: Session, chat_session_id: uuid.UUID) -> int:
    return session.exec(
        select(func.count()).select_from(ChatMessage).where(ChatMessage.session_id == chat_session_id)
    ).one()


def _title_from_first_message(session: Session, chat_session: ChatSession, content: str) -> None:
    if chat_session.title != ChatSessionCreate().title:
        return
    title = " ".join(content.split())
    chat_session.title = title if len(title) <= 60 else f"{title[:57]}..."
    session.add(chat_session)
    session.commit()
    session.refresh(chat_session)
