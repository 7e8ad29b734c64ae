"""Agent factory supporting both env settings and registry modes.

registry=None: Use env settings (AzOpenAIEnvSettings) for local dev
registry provided: Use ModelRegistry for cloud deployment
"""

from typing import Optional

from agent_framework import ChatAgent
from agent_framework.azure import AzureOpenAIChatClient

from .middleware import logging_agent_middleware
from .model_registry import AzOpenAIEnvSettings, ModelRegistry


def create_agent(
    name: str,
    instructions: str,
    registry: Optional[ModelRegistry] = None,
    model_name: Optional[str] = None,
    description: str = "",
) -> ChatAgent:
    """Create ChatAgent with model configuration.

    Args:
        name: Agent name
        instructions: System prompt
        registry: ModelRegistry for cloud mode, None for env settings
        model_name: Model to use (required when registry provided)
        description: Agent description

    Returns:
        Configured ChatAgent instance

    Raises:
        ValueError: If registry is provided but model_name is None
    """
    if registry is None:
        env = AzOpenAIEnvSettings()
        api_key = env.azure_openai_api_key
        endpoint = env.azure_openai_endpoint
        deployment_name = env.azure_openai_deployment_name
    else:
        if model_name is None:
            raise ValueError("model_name is required when registry is provided")
        resolved = registry.get(model_name)
        api_key = resolved.api_key
        endpoint = resolved.endpoint
        deployment_name = resolved.deployment_name

    chat_client = AzureOpenAIChatClient(
        api_key=api_key,
        endpoint=endpoint,
        deployment_name=deployment_name,
    )

    return ChatAgent(
        name=name,
        description=description,
        instructions=instructions,
        chat_client=chat_client,
        middleware=[logging_agent_middleware],
    )
