"""Observability middleware for agent calls.

Logs model, token usage and latency of every agent run.
"""

import logging
import time

from agent_framework import agent_middleware

logger = logging.getLogger(__name__)


def _extract_model_name(agent) -> str | None:
    """Extract model/deployment name from agent's chat client."""
    chat_client = getattr(agent, "chat_client", None)
    return getattr(chat_client, "deployment_name", None)


def _extract_usage(result) -> dict | None:
    """Extract token usage from result's usage_details."""
    usage = getattr(result, "usage_details", None)
    if not usage:
        return None
    return {
        "input_tokens": getattr(usage, "input_token_count", None),
        "output_tokens": getattr(usage, "output_token_count", None),
        "total_tokens": getattr(usage, "total_token_count", None),
    }


@agent_middleware
async def logging_agent_middleware(context, next):  # type: ignore
    """Log agent invocation and completion with usage and timing."""
    agent_name = context.agent.name
    model_name = _extract_model_name(context.agent)
    start_time = time.perf_counter()

    logger.debug(f"Agent {agent_name} invoked (model={model_name})")

    await next(context)

    execution_time_ms = int((time.perf_counter() - start_time) * 1000)
    logger.info(
        f"Agent {agent_name} finished in {execution_time_ms}ms "
        f"(model={model_name}, usage={_extract_usage(context.result)})"
    )
