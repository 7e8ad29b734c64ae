"""Secret loading from Azure Key Vault, with an environment fallback for local dev."""

import logging
import os
from typing import Optional

from azure.identity import DefaultAzureCredential
from azure.keyvault.secrets import SecretClient

logger = logging.getLogger(__name__)


def env_name(secret_name: str) -> str:
    """Map a Key Vault secret name to its environment variable name.

    "POSTGRES-ADMIN-PASSWORD" -> "POSTGRES_ADMIN_PASSWORD"
    """
    return secret_name.upper().replace("-", "_")


class AKV:
    """Secret store with pre-loaded secrets.

    All secrets are loaded once at startup and kept in memory for the
    lifetime of the process. With a vault name, secrets come from Azure Key
    Vault via DefaultAzureCredential (Azure CLI locally, Managed Identity in
    production). Without one, they are read from environment variables.
    """

    def __init__(self, vault_name: Optional[str] = None):
        """Initialize the secret store.

        Args:
            vault_name: Key Vault name. Defaults to AZURE_KEYVAULT_NAME env var;
                if neither is set, secrets are read from the environment.
        """
        self.vault_name = vault_name or os.getenv("AZURE_KEYVAULT_NAME")
        self._client: Optional[SecretClient] = None
        if self.vault_name:
            vault_url = f"https://{self.vault_name}.vault.azure.net/"
            self._client = SecretClient(vault_url=vault_url, credential=DefaultAzureCredential())
        else:
            logger.info("No Key Vault configured, reading secrets from environment")
        self._secrets: dict[str, str] = {}

    def _fetch(self, name: str) -> Optional[str]:
        if self._client is None:
            return os.getenv(env_name(name))
        return self._client.get_secret(name).value

    def load_secrets(self, names: list[str], optional: Optional[list[str]] = None) -> None:
        """Pre-load secrets at startup.

        Fails fast if a required secret is missing; optional ones are skipped.

        Args:
            names: Required secret names
            optional: Secret names that may be absent

        Raises:
            ValueError: If a required secret is not found or has no value
        """
        for name in names:
            try:
                value = self._fetch(name)
            except Exception as e:
                raise ValueError(f"Failed to load secret '{name}': {e}") from e
            if value is None:
                raise ValueError(f"Secret '{name}' has no value")
            self._secrets[name] = value
            logger.info(f"Loaded secret: {name}")

        for name in optional or []:
            try:
                value = self._fetch(name)
            except Exception as e:
                logger.warning(f"Optional secret '{name}' unavailable: {e}")
                continue
            if value is not None:
                self._secrets[name] = value
                logger.info(f"Loaded optional secret: {name}")

    def get_secret(self, name: str) -> str:
        """Get a pre-loaded secret by name.

        Raises:
            KeyError: If secret was not pre-loaded
        """
        if name not in self._secrets:
            raise KeyError(
                f"Secret '{name}' not pre-loaded. "
                f"Add it to REQUIRED_SECRETS in lifespan."
            )
        return self._secrets[name]

    def find_secret(self, name: str) -> Optional[str]:
        """Get a pre-loaded secret, or None if it was not loaded."""
        return self._secrets.get(name)
