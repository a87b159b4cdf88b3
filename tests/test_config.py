import json

import boto3
import pytest
from botocore.stub import Stubber
from pydantic import ValidationError

from order_pipeline.config.database import resolve_database_url
from order_pipeline.config.secrets import get_db_credentials
from order_pipeline.config.settings import Settings

QUEUE_URL = "http://localhost:4566/000000000000/orders-queue"

SECRET = {"host": "db.internal", "port": 3306, "username": "orders", "password": "s3cr3t", "dbname": "orders_db"}


@pytest.fixture
def secrets_client():
    return boto3.client(
        "secretsmanager",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    monkeypatch.setattr(get_db_credentials.retry, "sleep", lambda seconds: None)


def make_settings(**overrides) -> Settings:
    values = {"SQS_QUEUE_URL": QUEUE_URL, "OTEL_ENABLED": False}
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestSettings:
    def test_defaults(self):
        settings = make_settings()

        assert settings.PORT == 3000
        assert settings.HEALTH_PORT == 8081
        assert settings.MAX_MESSAGES == 10
        assert settings.MAX_RECEIVE_COUNT == 3
        assert settings.CIRCUIT_BREAKER_THRESHOLD == 5
        assert settings.CIRCUIT_BREAKER_COOLDOWN_SECONDS == 30
        assert settings.API_V1_STR == "/api/v1"

    def test_queue_url_is_required(self, monkeypatch):
        monkeypatch.delenv("SQS_QUEUE_URL", raising=False)
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("SQS_QUEUE_URL", "http://sqs/queue/other")
        monkeypatch.setenv("MAX_MESSAGES", "4")
        monkeypatch.setenv("CIRCUIT_BREAKER_COOLDOWN_SECONDS", "5")

        settings = Settings(_env_file=None)

        assert settings.SQS_QUEUE_URL == "http://sqs/queue/other"
        assert settings.MAX_MESSAGES == 4
        assert settings.CIRCUIT_BREAKER_COOLDOWN_SECONDS == 5

    def test_max_messages_capped_at_sqs_batch_limit(self):
        with pytest.raises(ValidationError):
            make_settings(MAX_MESSAGES=11)

    def test_order_quantity_limit_cannot_exceed_message_contract(self):
        with pytest.raises(ValidationError):
            make_settings(ORDER_MAX_QUANTITY=10_001)

    def test_aws_credentials_only_when_both_set(self):
        assert make_settings(AWS_ACCESS_KEY_ID="key").aws_client_kwargs == {"region_name": "us-east-1"}
        kwargs = make_settings(AWS_ACCESS_KEY_ID="key", AWS_SECRET_ACCESS_KEY="secret").aws_client_kwargs
        assert kwargs["aws_secret_access_key"] == "secret"

    def test_secrets_endpoint_falls_back_to_sqs_endpoint(self):
        settings = make_settings(SQS_ENDPOINT="http://localstack:4566")
        assert settings.endpoint_for("secretsmanager") == "http://localstack:4566"

        settings = make_settings(SQS_ENDPOINT="http://localstack:4566", SECRETS_MANAGER_ENDPOINT="http://sm:4566")
        assert settings.endpoint_for("secretsmanager") == "http://sm:4566"
        assert settings.endpoint_for("sqs") == "http://localstack:4566"


class TestDatabaseUrl:
    def test_explicit_url_wins(self):
        settings = make_settings(DATABASE_URL="sqlite+aiosqlite:///:memory:", DB_SECRET_NAME="orders/db")
        assert resolve_database_url(settings) == "sqlite+aiosqlite:///:memory:"

    def test_built_from_db_variables(self):
        url = resolve_database_url(make_settings(DB_HOST="mysql", DB_USER="u", DB_PASSWORD="p@ss", DB_NAME="shop"))

        assert url.drivername == "mysql+aiomysql"
        assert url.host == "mysql"
        assert url.port == 3306
        assert url.username == "u"
        assert url.password == "p@ss"
        assert url.database == "shop"

    def test_built_from_secret(self, secrets_client):
        with Stubber(secrets_client) as stubber:
            stubber.add_response(
                "get_secret_value",
                {"Name": "orders/db", "SecretString": json.dumps(SECRET)},
                {"SecretId": "orders/db"},
            )
            url = resolve_database_url(make_settings(DB_SECRET_NAME="orders/db"), secrets_client=secrets_client)

        assert url.host == "db.internal"
        assert url.username == "orders"
        assert url.password == "s3cr3t"
        assert url.database == "orders_db"


class TestDbCredentials:
    def test_waits_for_secret_to_exist(self, secrets_client):
        with Stubber(secrets_client) as stubber:
            stubber.add_client_error("get_secret_value", service_error_code="ResourceNotFoundException")
            stubber.add_client_error("get_secret_value", service_error_code="ResourceNotFoundException")
            stubber.add_response("get_secret_value", {"SecretString": json.dumps(SECRET)})

            creds = get_db_credentials("orders/db", secrets_client)
            stubber.assert_no_pending_responses()

        assert creds["host"] == "db.internal"

    def test_access_denied_is_not_retried(self, secrets_client):
        with Stubber(secrets_client) as stubber:
            stubber.add_client_error("get_secret_value", service_error_code="AccessDeniedException")

            with pytest.raises(Exception) as exc_info:
                get_db_credentials("orders/db", secrets_client)

        assert "AccessDeniedException" in str(exc_info.value)

    def test_incomplete_secret(self, secrets_client):
        with Stubber(secrets_client) as stubber:
            stubber.add_response("get_secret_value", {"SecretString": json.dumps({"host": "db"})})

            with pytest.raises(ValueError, match="missing keys"):
                get_db_credentials("orders/db", secrets_client)
