# order_pipeline/config/settings.py
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL


class Settings(BaseSettings):
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # HTTP
    PORT: int = 3000
    HEALTH_PORT: int = 8081

    # AWS / SQS
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    SQS_ENDPOINT: Optional[str] = None
    SQS_QUEUE_URL: str
    SQS_DLQ_NAME: Optional[str] = None
    SECRETS_MANAGER_ENDPOINT: Optional[str] = None

    MAX_MESSAGES: int = Field(10, ge=1, le=10)
    SQS_WAIT_TIME_SECONDS: int = Field(20, ge=0, le=20)
    SQS_VISIBILITY_TIMEOUT: int = Field(30, ge=0)
    MAX_RECEIVE_COUNT: int = Field(3, ge=1)

    # Circuit breaker
    CIRCUIT_BREAKER_THRESHOLD: int = Field(5, ge=1)
    CIRCUIT_BREAKER_COOLDOWN_SECONDS: int = Field(30, ge=1)

    # Database
    DATABASE_URL: Optional[str] = None
    DB_SECRET_NAME: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "orderuser"
    DB_PASSWORD: str = "orderpass"
    DB_NAME: str = "orders_db"
    DB_CONNECTION_LIMIT: int = Field(10, ge=1)

    # Caches
    HEALTH_CACHE_TTL_SECONDS: float = 5.0
    PRODUCTS_CACHE_TTL_SECONDS: float = 300.0

    # Order rules
    ORDER_MAX_VALUE: float = 1_000_000
    ORDER_MAX_QUANTITY: int = Field(10_000, ge=1, le=10_000)

    # OpenTelemetry
    OTEL_ENABLED: bool = True
    OTEL_SERVICE_NAME: str = "order-pipeline"
    OTEL_EXPORTER_OTLP_ENDPOINT: str = "otel-collector:4317"
    OTEL_TRACE_SAMPLE_RATIO: float = Field(1.0, ge=0.0, le=1.0)

    BUILD_METADATA_PATH: str = "build-metadata.json"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    @property
    def aws_client_kwargs(self) -> dict:
        kwargs = {"region_name": self.AWS_REGION}
        if self.AWS_ACCESS_KEY_ID and self.AWS_SECRET_ACCESS_KEY:
            kwargs["aws_access_key_id"] = self.AWS_ACCESS_KEY_ID
            kwargs["aws_secret_access_key"] = self.AWS_SECRET_ACCESS_KEY
        return kwargs

    def endpoint_for(self, service: str) -> Optional[str]:
        """Endpoint override for a boto3 service; secretsmanager falls back to the SQS endpoint (LocalStack)."""
        if service == "secretsmanager" and self.SECRETS_MANAGER_ENDPOINT:
            return self.SECRETS_MANAGER_ENDPOINT
        return self.SQS_ENDPOINT

    def mysql_url(self, host: str, port: int, user: str, password: str, database: str) -> URL:
        return URL.create(
            "mysql+aiomysql",
            username=user,
            password=password,
            host=host,
            port=int(port),
            database=database,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
