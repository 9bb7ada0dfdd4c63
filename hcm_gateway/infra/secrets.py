"""Secret references resolved from the environment, Vault or AWS Secrets Manager."""

import json
import logging
import os
from typing import Optional

# Optional backends
try:
    import hvac
    HAS_VAULT = True
except ImportError:
    HAS_VAULT = False

try:
    import boto3
    HAS_AWS = True
except ImportError:
    HAS_AWS = False

logger = logging.getLogger(__name__)

SECRET_SCHEMES = ("vault://", "aws://", "env://")


class SecretsManager:
    """Resolves HCM credentials given as references instead of literal values."""

    def __init__(self):
        self.vault_client = None
        self.aws_client = None
        self._init_vault()
        self._init_aws()

    def _init_vault(self):
        """Initialize HashiCorp Vault client if configured."""
        if not HAS_VAULT:
            return

        vault_url = os.getenv("VAULT_ADDR")
        vault_token = os.getenv("VAULT_TOKEN")

        if vault_url and vault_token:
            try:
                self.vault_client = hvac.Client(url=vault_url, token=vault_token)
                self.vault_client.is_authenticated()
            except Exception as e:
                logger.warning("Vault client unavailable", extra={"error": type(e).__name__})
                self.vault_client = None

    def _init_aws(self):
        """Initialize AWS Secrets Manager client if configured."""
        if not HAS_AWS:
            return

        aws_region = os.getenv("AWS_REGION")
        if aws_region:
            try:
                self.aws_client = boto3.client("secretsmanager", region_name=aws_region)
            except Exception as e:
                logger.warning("AWS Secrets Manager client unavailable", extra={"error": type(e).__name__})
                self.aws_client = None

    def get_secret(self, secret_ref: str) -> Optional[str]:
        """
        Resolve a secret reference.

        Supports:
        - vault://secret/path/key - HashiCorp Vault KV v2
        - aws://secret-name/key - AWS Secrets Manager (JSON secret)
        - env://VAR_NAME - Environment variable
        - Direct value (if not a reference)

        Args:
            secret_ref: Secret reference or direct value

        Returns:
            Secret value or None if not found
        """
        if not secret_ref:
            return None

        if not secret_ref.startswith(SECRET_SCHEMES):
            return secret_ref

        if secret_ref.startswith("vault://"):
            return self._get_vault_secret(secret_ref[len("vault://"):])

        if secret_ref.startswith("aws://"):
            return self._get_aws_secret(secret_ref[len("aws://"):])

        return os.getenv(secret_ref[len("env://"):])

    def _get_vault_secret(self, path: str) -> Optional[str]:
        if not self.vault_client:
            logger.warning("Vault reference used but Vault is not configured")
            return None

        parts = path.split("/")
        if len(parts) < 2:
            return None

        secret_path = "/".join(parts[:-1])
        key = parts[-1]

        try:
            response = self.vault_client.secrets.kv.v2.read_secret_version(path=secret_path)
        except Exception as e:
            logger.error("Vault lookup failed", extra={"secret_path": secret_path, "error": type(e).__name__})
            return None

        data = response.get("data", {}).get("data", {})
        return data.get(key)

    def _get_aws_secret(self, path: str) -> Optional[str]:
        if not self.aws_client:
            logger.warning("AWS reference used but AWS Secrets Manager is not configured")
            return None

        parts = path.split("/")
        if len(parts) < 2:
            return None

        secret_name = parts[0]
        key = "/".join(parts[1:])

        try:
            response = self.aws_client.get_secret_value(SecretId=secret_name)
            secret_data = json.loads(response.get("SecretString", "{}"))
        except Exception as e:
            logger.error("AWS secret lookup failed", extra={"secret_name": secret_name, "error": type(e).__name__})
            return None

        return secret_data.get(key)


_secrets_manager: Optional[SecretsManager] = None


def get_secret(secret_ref: str, fallback: Optional[str] = None) -> Optional[str]:
    """
    Convenience function to resolve a secret.

    Args:
        secret_ref: Secret reference (vault://, aws://, env://) or direct value
        fallback: Fallback value if secret not found

    Returns:
        Secret value or fallback
    """
    global _secrets_manager
    if not secret_ref:
        return fallback

    if _secrets_manager is None:
        _secrets_manager = SecretsManager()

    value = _secrets_manager.get_secret(secret_ref)
    return value if value is not None else fallback
