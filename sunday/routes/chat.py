"""Chat turn API route."""

import logging

from fastapi import APIRouter, HTTPException

from ..dependencies import CurrentUserDep, RegistryDep
from ..errors import InvalidMessage, QuotaExceeded, SessionNotFound
from ..schemas import ChatRequest, ChatResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    registry: RegistryDep,
    current_user: CurrentUserDep,
) -> ChatResponse:
    """Send a message to Sunday.

    Omitting session_id starts a new session, which counts against the
    conversation quota. Memory compaction runs in the background.

    Args:
        body: ChatRequest with the message and optional session ID

    Returns:
        Sunday's reply and the session ID

    Raises:
        HTTPException: 429 if the conversation limit is reached,
            404 if the session does not exist, 400 if the message is empty
            once sanitized, 502 if Sunday cannot reply
    """
    user_id = current_user.user_id

    try:
        result = await registry.handle_turn(user_id, body.session_id, body.message)
    except QuotaExceeded as e:
        raise HTTPException(
            status_code=429,
            detail={
                "code": "CONVERSATION_LIMIT_REACHED",
                "reason": e.reason,
                "limit": e.limit,
                "reset_at": e.reset_at.isoformat() if e.reset_at else None,
            },
        )
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found")
    except InvalidMessage as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Chat turn failed for user {user_id}: {e}")
        raise HTTPException(
            status_code=502,
            detail="Sunday is temporarily unavailable. Please try again later.",
        )

    return ChatResponse(reply_text=result.reply_text, session_id=result.session_id)
