"""Model registry with centralized, typed model definitions.

This module provides:
- AzOpenAIEnvSettings: Environment-based settings for local dev
- ModelDefinition: Immutable model configuration dataclass
- ModelRegistry: Loads secrets and resolves model configurations
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from sunday.infrastructure.keyvault import AKV

load_dotenv()


# --- Env Settings (local dev) ---
class AzOpenAIEnvSettings(BaseSettings):
    """Azure OpenAI configuration from environment variables.

    Used for local dev when no ModelRegistry is provided.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    azure_openai_api_key: str = ""
    azure_openai_endpoint: str = ""
    azure_openai_deployment_name: str = ""


# --- Model Definition ---
@dataclass(frozen=True)
class ModelDefinition:
    """Immutable model configuration."""

    name: str
    display_name: str
    deployment_name: str
    endpoint: str
    secret_name: str


# --- Available Models ---
GPT41 = ModelDefinition(
    name="gpt-4.1",
    display_name="GPT 4.1",
    deployment_name="gpt-4.1",
    endpoint="https://sunday-ai.cognitiveservices.azure.com/",
    secret_name="AZURE-OPENAI-API-KEY",
)

GPT41_MINI = ModelDefinition(
    name="gpt-4.1-mini",
    display_name="GPT 4.1 Mini",
    deployment_name="gpt-4.1-mini",
    endpoint="https://sunday-ai.cognitiveservices.azure.com/",
    secret_name="AZURE-OPENAI-API-KEY",
)

AVAILABLE_MODELS: list[ModelDefinition] = [GPT41, GPT41_MINI]

# Chat turns run on the mini model, memory synthesis too
DEFAULT_MODEL = GPT41_MINI.name


# --- Resolved Config (with credentials) ---
@dataclass(frozen=True)
class ResolvedModelConfig:
    """Resolved model configuration with API credentials."""

    deployment_name: str
    endpoint: str
    api_key: str


# --- Model Registry ---
class ModelRegistry:
    """Registry that loads secrets at startup and resolves model configurations.

    Initialize once in app lifespan and pass to SundayLLM.
    """

    def __init__(self, akv: "AKV"):
        """Initialize registry and load required secrets.

        Args:
            akv: Key Vault client with pre-loaded secrets
        """
        self._secrets: dict[str, str] = {}
        for model in AVAILABLE_MODELS:
            if model.secret_name not in self._secrets:
                self._secrets[model.secret_name] = akv.get_secret(model.secret_name)
        self._models = {m.name: m for m in AVAILABLE_MODELS}

    def get(self, model_name: str) -> ResolvedModelConfig:
        """Get resolved model config by name.

        Args:
            model_name: Name of the model

        Returns:
            ResolvedModelConfig with deployment_name, endpoint, api_key

        Raises:
            KeyError: If the model is not registered
        """
        model = self._models[model_name]
        return ResolvedModelConfig(
            deployment_name=model.deployment_name,
            endpoint=model.endpoint,
            api_key=self._secrets[model.secret_name],
        )

    def list_models(self) -> list[ModelDefinition]:
        """List all available models."""
        return AVAILABLE_MODELS
