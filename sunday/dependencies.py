"""FastAPI dependency injection functions."""

import base64
import json
import logging
from typing import Annotated

from fastapi import Depends, Header, Request

from .config import Settings, get_settings
from .memory import ChatStore, SessionRegistry
from .schemas import UserInfo

logger = logging.getLogger(__name__)


async def get_store(request: Request) -> ChatStore:
    """Get the chat store from app state.

    Args:
        request: FastAPI request object

    Returns:
        ChatStore instance
    """
    return request.app.state.store


async def get_registry(request: Request) -> SessionRegistry:
    """Get the SessionRegistry from app state."""
    return request.app.state.registry


async def get_current_user(
    settings: Annotated[Settings, Depends(get_settings)],
    x_ms_client_principal_id: Annotated[str | None, Header()] = None,
    x_ms_client_principal_name: Annotated[str | None, Header()] = None,
    x_ms_client_principal: Annotated[str | None, Header()] = None,
) -> UserInfo:
    """Extract user information from Azure Easy Auth SSO headers.

    Supports different modes based on CHAT_STORE_MODE:
    - local_psql, local_redis: Use test credentials from env
    - postgres, redis: Use real SSO headers from Azure Easy Auth

    Args:
        settings: Application settings
        x_ms_client_principal_id: Azure AD client principal ID header
        x_ms_client_principal_name: Azure AD client principal name header
        x_ms_client_principal: Base64-encoded client principal JSON header

    Returns:
        UserInfo with user details
    """
    mode = settings.chat_store_mode

    if mode in ["local_psql", "local_redis"]:
        return UserInfo(
            user_id=settings.local_test_client_id,
            user_name=settings.local_test_username,
            first_name=settings.local_test_username.split()[0] if settings.local_test_username else "User",
            principal_name=None,
            is_authenticated=True,
            mode=mode,
        )

    display_name = "Unknown user"
    first_name = "there"

    if x_ms_client_principal:
        try:
            decoded_principal = json.loads(base64.b64decode(x_ms_client_principal).decode("utf-8"))

            # Find 'name' claim in the claims array
            for claim in decoded_principal.get("claims", []):
                if claim.get("typ") == "name":
                    display_name = claim.get("val", "Unknown user")
                    first_name = display_name.split()[0] if display_name else "there"
                    break
        except (ValueError, AttributeError) as e:
            logger.warning(f"Could not decode client principal header: {e}")

    return UserInfo(
        user_id=x_ms_client_principal_id or "unknown",
        user_name=display_name,
        first_name=first_name,
        principal_name=x_ms_client_principal_name,
        is_authenticated=bool(x_ms_client_principal_id and x_ms_client_principal),
        mode=mode,
    )


# Type aliases for dependency injection
StoreDep = Annotated[ChatStore, Depends(get_store)]
RegistryDep = Annotated[SessionRegistry, Depends(get_registry)]
CurrentUserDep = Annotated[UserInfo, Depends(get_current_user)]
