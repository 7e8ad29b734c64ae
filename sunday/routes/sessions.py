"""Session API routes."""

from typing import List

from fastapi import APIRouter, HTTPException

from ..dependencies import CurrentUserDep, RegistryDep, StoreDep
from ..errors import SessionNotFound
from ..memory import ChatSession
from ..schemas import CompactionResponse, MessageSchema, SessionDetailResponse, SessionResponse

router = APIRouter()


def _session_fields(session: ChatSession) -> dict:
    return {
        "id": session.id,
        "title": session.title,
        "started_at": session.started_at,
        "last_message_at": session.last_message_at,
        "total_messages": session.total_messages,
        "messages_retained": session.messages_retained,
        "summarized_message_count": session.summarized_message_count,
        "is_active": session.is_active,
    }


@router.get("/sessions", response_model=List[SessionResponse])
async def list_sessions(
    store: StoreDep,
    current_user: CurrentUserDep,
) -> List[SessionResponse]:
    """List all sessions of the current user, most recently active first."""
    sessions = await store.list_sessions(current_user.user_id)
    return [SessionResponse(**_session_fields(session)) for session in sessions]


@router.get("/sessions/{session_id}", response_model=SessionDetailResponse)
async def get_session(
    session_id: str,
    registry: RegistryDep,
    store: StoreDep,
    current_user: CurrentUserDep,
) -> SessionDetailResponse:
    """Get a session with the raw messages it still retains.

    Raises:
        HTTPException: 404 if session not found
    """
    session = await store.get_session(current_user.user_id, session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")

    messages = await registry.message_log.tail(session, session.messages_retained)
    return SessionDetailResponse(
        **_session_fields(session),
        messages=[
            MessageSchema(id=msg.id, role=msg.role, content=msg.content, timestamp=msg.timestamp)
            for msg in messages
        ],
    )


@router.post(
    "/sessions/{session_id}/compact",
    response_model=CompactionResponse,
    status_code=202,
)
async def compact_session(
    session_id: str,
    registry: RegistryDep,
    current_user: CurrentUserDep,
) -> CompactionResponse:
    """Force a background compaction of the session's oldest batch.

    Raises:
        HTTPException: 404 if session not found
    """
    try:
        dispatched = await registry.maybe_trigger_compaction(
            current_user.user_id, session_id, force=True
        )
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found")

    return CompactionResponse(session_id=session_id, dispatched=dispatched)
