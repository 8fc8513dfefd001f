import logging

from sqlmodel import Session, col, select

from codeforegx.agent.assistant import (
    AssistantContextMessage,
    AssistantReply,
    AssistantRequest,
    CodeAssistantAgent,
)
from codeforegx.agent.prompts.assistant import ASSISTANT_SYSTEM_PROMPT
from codeforegx.core.config import settings
from codeforegx.crud import add_chat_message, get_recent_chat_messages
from codeforegx.models import ChatMessage, ChatRole, ChatSession, Prompt, PromptCategory, User
from codeforegx.services.prompts import render_prompt

logger = logging.getLogger(__name__)


def resolve_system_prompt(session: Session, user: User) -> str:
    """Latest active `chat` prompt rendered for the user, else the built-in assistant prompt."""
    prompt = session.exec(
        select(Prompt)
        .where(Prompt.category == PromptCategory.chat, Prompt.is_active == True)  # noqa: E712
        .order_by(col(Prompt.updated_at).desc(), col(Prompt.version).desc())
    ).first()
    content = prompt.content if prompt else ASSISTANT_SYSTEM_PROMPT
    return render_prompt(content, {"user_name": user.full_name or user.email})


def build_request(session: Session, chat_session: ChatSession, user: User, content: str) -> AssistantRequest:
    history = get_recent_chat_messages(
        session=session, session_id=chat_session.id, limit=settings.CHAT_HISTORY_LIMIT
    )
    return AssistantRequest(
        message=content,
        history=[
            AssistantContextMessage(role=message.role.value, content=message.content)
            for message in history
            if message.content
        ],
        system_prompt=resolve_system_prompt(session, user),
    )


async def generate_reply(agent: CodeAssistantAgent, request: AssistantRequest) -> tuple[AssistantReply, dict]:
    try:
        reply = await agent.run(request)
    except Exception as e:
        logger.error("Assistant failed to answer: %s", e)
        return (
            AssistantReply(
                reply=(
                    "I encountered an error processing your message. Please try again "
                    f"or contact support. Error: {e}"
                )
            ),
            {"type": "error", "error": str(e)},
        )
    return reply, {"type": "code" if reply.code else "message"}


async def send_message(
    session: Session,
    chat_session: ChatSession,
    user: User,
    content: str,
    agent: CodeAssistantAgent | None = None,
) -> tuple[ChatMessage, ChatMessage]:
    """Store the user's message, ask the assistant, store and return both messages."""
    request = build_request(session, chat_session, user, content)
    user_message = add_chat_message(
        session=session, chat_session=chat_session, role=ChatRole.user, content=content
    )
    reply, details = await generate_reply(agent or CodeAssistantAgent(), request)
    assistant_message = add_chat_message(
        session=session,
        chat_session=chat_session,
        role=ChatRole.assistant,
        content=reply.reply,
        code=reply.code,
        language=reply.language,
        details=details,
    )
    return user_message, assistant_message
