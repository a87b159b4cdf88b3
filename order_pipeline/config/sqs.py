# order_pipeline/config/sqs.py
import asyncio
import json
import logging
from typing import Dict, List, Optional

import boto3
from opentelemetry.instrumentation.utils import suppress_instrumentation

from order_pipeline.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

ORDER_TYPE_ATTRIBUTE = {"DataType": "String", "StringValue": "StandardOrder"}
SQS_MAX_BATCH = 10


def create_sqs_client(settings: Settings):
    client_kwargs = dict(settings.aws_client_kwargs)
    endpoint = settings.endpoint_for("sqs")
    if endpoint:
        client_kwargs["endpoint_url"] = endpoint
    return boto3.client("sqs", **client_kwargs)


def queue_name_from_url(queue_url: str) -> str:
    return queue_url.rstrip("/").rsplit("/", 1)[-1]


class SQSQueue:
    """Async facade over a boto3 SQS client bound to one queue URL.

    boto3 is blocking, so every call is pushed to a worker thread; callers still
    see exactly one request in flight per await.
    """

    def __init__(self, client, queue_url: str, wait_time_seconds: int = 20, visibility_timeout: Optional[int] = None):
        self.client = client
        self.queue_url = queue_url
        self.wait_time_seconds = wait_time_seconds
        self.visibility_timeout = visibility_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SQSQueue":
        return cls(
            create_sqs_client(settings),
            settings.SQS_QUEUE_URL,
            wait_time_seconds=settings.SQS_WAIT_TIME_SECONDS,
            visibility_timeout=settings.SQS_VISIBILITY_TIMEOUT,
        )

    async def send_message(self, body: str, attributes: Optional[Dict[str, dict]] = None) -> str:
        params = {"QueueUrl": self.queue_url, "MessageBody": body}
        if attributes:
            params["MessageAttributes"] = attributes
        response = await asyncio.to_thread(self.client.send_message, **params)
        return response["MessageId"]

    def _receive(self, params: dict) -> dict:
        # Empty long-polls would otherwise produce a span every 20 seconds
        with suppress_instrumentation():
            return self.client.receive_message(**params)

    async def receive_messages(self, max_messages: int = SQS_MAX_BATCH, wait_time_seconds: Optional[int] = None) -> List[dict]:
        params = {
            "QueueUrl": self.queue_url,
            "MaxNumberOfMessages": max(1, min(max_messages, SQS_MAX_BATCH)),
            "WaitTimeSeconds": self.wait_time_seconds if wait_time_seconds is None else wait_time_seconds,
            "MessageAttributeNames": ["All"],
            "AttributeNames": ["ApproximateReceiveCount", "SentTimestamp"],
        }
        if self.visibility_timeout is not None:
            params["VisibilityTimeout"] = self.visibility_timeout
        response = await asyncio.to_thread(self._receive, params)
        return response.get("Messages", [])

    async def delete_message(self, receipt_handle: str):
        await asyncio.to_thread(self.client.delete_message, QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)

    async def get_attributes(self, names: Optional[List[str]] = None) -> Dict[str, str]:
        response = await asyncio.to_thread(
            self.client.get_queue_attributes,
            QueueUrl=self.queue_url,
            AttributeNames=names or ["ApproximateNumberOfMessages"],
        )
        return response.get("Attributes", {})

    def ensure_queues(self, max_receive_count: int, dlq_name: Optional[str] = None) -> Dict[str, str]:
        """Create the dead-letter queue and the primary queue with a redrive policy. Safe to re-run."""
        queue_name = queue_name_from_url(self.queue_url)
        dlq_name = dlq_name or f"{queue_name}-dlq"

        dlq_url = self.client.create_queue(QueueName=dlq_name)["QueueUrl"]
        dlq_arn = self.client.get_queue_attributes(QueueUrl=dlq_url, AttributeNames=["QueueArn"])["Attributes"]["QueueArn"]

        attributes = {
            "RedrivePolicy": json.dumps({"deadLetterTargetArn": dlq_arn, "maxReceiveCount": str(max_receive_count)}),
        }
        if self.visibility_timeout is not None:
            attributes["VisibilityTimeout"] = str(self.visibility_timeout)

        queue_url = self.client.create_queue(QueueName=queue_name)["QueueUrl"]
        # create_queue will not change attributes of an existing queue
        self.client.set_queue_attributes(QueueUrl=queue_url, Attributes=attributes)
        logger.info(
            "Queues provisioned",
            extra={"queue_url": queue_url, "dlq_url": dlq_url, "max_receive_count": max_receive_count},
        )
        return {"queue_url": queue_url, "dlq_url": dlq_url, "dlq_arn": dlq_arn}


def provision_queues():
    """Console entry point: create the order queue and its dead-letter queue."""
    from order_pipeline.core.logging_config import setup_logging

    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    queue = SQSQueue.from_settings(settings)
    urls = queue.ensure_queues(settings.MAX_RECEIVE_COUNT, settings.SQS_DLQ_NAME)
    print(json.dumps(urls, indent=2))
