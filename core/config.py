"""
Application Configuration
Add constants, secrets, env variables here
"""

from datetime import timedelta
from functools import lru_cache
from typing import Literal
import logging
import os
import json
from pathlib import Path
from pydantic import computed_field, PrivateAttr
from pydantic_settings import BaseSettings, SettingsConfigDict
import boto3
from botocore.exceptions import BotoCoreError, ClientError
from dotenv import load_dotenv

# Load .env file into os.environ so os.getenv() works correctly
# This must happen before Settings class is instantiated
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

logger = logging.getLogger(__name__)


def get_secret(secret_name: str, region_name: str) -> dict:
    """
    Retrieve secrets from AWS Secrets Manager

    Args:
        secret_name: Name of the secret in Secrets Manager
        region_name: AWS region where secret is stored

    Returns:
        dict: Parsed secret value

    Raises:
        ClientError: If secret cannot be retrieved
    """
    session = boto3.session.Session()
    client = session.client(
        service_name='secretsmanager',
        region_name=region_name
    )
    get_secret_value_response = client.get_secret_value(
        SecretId=secret_name
    )
    secret = get_secret_value_response['SecretString']
    return json.loads(
        secret.replace('\n', '')
    )


# Define settings class for univeral access
class Settings(BaseSettings):
    # CORS origin of the browser client, if any
    client_origin: str | None = os.getenv("client_origin")

    LOG_LEVEL: str = "INFO"

    # Blob storage
    STORAGE_BACKEND: Literal["local", "s3"] = "local"
    DATA_DIR: str = "data"
    S3_BUCKET: str | None = None
    S3_PREFIX: str = ""
    S3_ENDPOINT_URL: str | None = None

    # AWS credentials for the S3 blob store; unset falls back to boto3's chain
    AWS_ACCESS_KEY_ID: str | None = None
    AWS_SECRET_ACCESS_KEY: str | None = None
    AWS_REGION: str | None = None

    # Upload limits and lifetime of stored files.
    # FILE_TTL takes an ISO-8601 duration ("PT24H") or "HH:MM:SS".
    MAX_UPLOAD_SIZE: int = 10 * 1024 * 1024
    FILE_TTL: timedelta = timedelta(hours=24)

    # Path prefix used when building signed download links
    DOWNLOAD_PATH_PREFIX: str = "/api/v1/files"

    # Cache for AWS Secrets Manager to avoid multiple API calls
    # Note: Must use PrivateAttr for Pydantic v2 private attributes
    _secret_cache: dict | None = PrivateAttr(default=None)

    def _get_config_value(
        self,
        env_var_name: str,
        secret_key_name: str | None = None,
        default: str | None = None
    ) -> str | None:
        """
        Get configuration value from environment variable or AWS Secrets Manager (with caching).

        Args:
            env_var_name: Environment variable name to check first
            secret_key_name: Key name in AWS Secrets (defaults to env_var_name if not provided)
            default: Default value to return if not found in env or secrets

        Returns:
            Configuration value, or default value if not found
        """
        # 1. Check environment variable first
        env_value = os.getenv(env_var_name)
        if env_value:
            return env_value

        # 2. Try to get from AWS Secrets Manager with caching
        if secret_key_name is None:
            secret_key_name = env_var_name

        env_secret = os.getenv('ENV_SECRETS')
        if env_secret:
            try:
                # Use cached secret if available
                if self._secret_cache is None:
                    self._secret_cache = get_secret(env_secret, os.getenv("AWS_REGION", 'us-east-1'))

                secret_value = self._secret_cache.get(secret_key_name)
                if secret_value is not None:
                    return secret_value
            except (BotoCoreError, ClientError) as exc:
                logger.warning("Unable to read %s from secret %s: %s", secret_key_name, env_secret, exc)

        # 3. Return default value if provided
        return default

    # SQLAlchemy - Create db connection string
    @computed_field
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        """Build database URI from env or secrets, defaults to a local sqlite file"""
        return self._get_config_value("SQLALCHEMY_DATABASE_URI", default="sqlite:///files_stash.db")

    @computed_field
    @property
    def FILES_STASH_ADMIN_TOKEN(self) -> str | None:
        """Bearer token required by the administrative endpoints"""
        return self._get_config_value("FILES_STASH_ADMIN_TOKEN")

    @computed_field
    @property
    def FILES_STASH_HMAC_KEY(self) -> str | None:
        """Shared secret used to sign download links"""
        return self._get_config_value("FILES_STASH_HMAC_KEY")

    # Read environment variables from .env file, if it exists
    # extra='ignore' prevents validation errors from extra env vars
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Export settings
@lru_cache
def get_settings() -> Settings:
    """
    Get settings instance, cached for performance
    """
    return Settings()
