import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class DependencyCheck(BaseModel):
    status: str = "unknown"
    message: str = ""


class GatewayHealth(BaseModel):
    status: str
    timestamp: datetime.datetime
    version: str
    checks: Dict[str, DependencyCheck]


class ProcessorHealth(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str
    running: bool
    circuit_state: str = Field(..., alias="circuitState")
    consecutive_failures: int = Field(..., alias="consecutiveFailures")
    cooldown_remaining_seconds: float = Field(0, alias="cooldownRemainingSeconds")
    last_successful_poll: Optional[datetime.datetime] = Field(None, alias="lastSuccessfulPoll")
    last_error: Optional[str] = Field(None, alias="lastError")
    messages_processed: int = Field(0, alias="messagesProcessed")
    messages_failed: int = Field(0, alias="messagesFailed")
