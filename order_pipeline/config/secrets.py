# order_pipeline/config/secrets.py
import json
import logging

import boto3
from botocore.exceptions import ClientError
from tenacity import RetryCallState, retry, retry_if_exception, stop_after_attempt, wait_exponential

from order_pipeline.config.settings import Settings

logger = logging.getLogger(__name__)

SECRET_WAIT_MAX_ATTEMPTS = 30


def _secret_not_created_yet(exc: BaseException) -> bool:
    # Terraform may still be creating the secret when the container starts
    return isinstance(exc, ClientError) and exc.response.get("Error", {}).get("Code") == "ResourceNotFoundException"


def log_secret_wait_attempt(retry_state: RetryCallState):
    logger.warning(
        "Database secret not available yet, retrying",
        extra={"attempt": retry_state.attempt_number, "max_attempts": SECRET_WAIT_MAX_ATTEMPTS},
    )


def create_secrets_client(settings: Settings):
    client_kwargs = dict(settings.aws_client_kwargs)
    endpoint = settings.endpoint_for("secretsmanager")
    if endpoint:
        client_kwargs["endpoint_url"] = endpoint
    return boto3.client("secretsmanager", **client_kwargs)


@retry(
    stop=stop_after_attempt(SECRET_WAIT_MAX_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_secret_not_created_yet),
    before_sleep=log_secret_wait_attempt,
    reraise=True,
)
def get_db_credentials(secret_name: str, client) -> dict:
    """Fetch ``{host, port, username, password, dbname}`` from Secrets Manager."""
    logger.info("Retrieving database credentials from Secrets Manager", extra={"secret_name": secret_name})
    response = client.get_secret_value(SecretId=secret_name)
    secret = json.loads(response["SecretString"])
    missing = [key for key in ("host", "port", "username", "password", "dbname") if key not in secret]
    if missing:
        raise ValueError(f"Database secret {secret_name} is missing keys: {', '.join(missing)}")
    logger.info("Retrieved database credentials", extra={"secret_name": secret_name, "db_host": secret["host"]})
    return secret
