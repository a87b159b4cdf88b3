import asyncio
import itertools
import time
import uuid
from typing import Dict, List, Optional


class FakeSQSQueue:
    """In-memory stand-in for SQSQueue.

    Tracks receive counts and visibility per message and moves a message to
    ``dlq`` on the receive after it has been delivered ``max_receive_count``
    times, the way an SQS redrive policy does.
    """

    def __init__(self, queue_url: str = "http://localhost:4566/000000000000/orders-queue",
                 max_receive_count: int = 3, visibility_timeout: float = 0.0, clock=time.monotonic):
        self.queue_url = queue_url
        self.max_receive_count = max_receive_count
        self.visibility_timeout = visibility_timeout
        self._clock = clock
        self._ids = itertools.count(1)

        self.messages: List[dict] = []
        self.dlq: List[dict] = []
        self.deleted: List[str] = []

        self.receive_calls = 0
        self.attribute_calls = 0
        self.receive_errors: List[Exception] = []
        self.send_error: Optional[Exception] = None
        self.attributes_error: Optional[Exception] = None

    async def send_message(self, body: str, attributes: Optional[Dict[str, dict]] = None) -> str:
        if self.send_error is not None:
            raise self.send_error
        message_id = f"msg-{next(self._ids)}"
        self.messages.append({
            "MessageId": message_id,
            "Body": body,
            "MessageAttributes": attributes or {},
            "receive_count": 0,
            "visible_at": 0.0,
            "receipt": None,
        })
        return message_id

    async def receive_messages(self, max_messages: int = 10, wait_time_seconds: Optional[int] = None) -> List[dict]:
        self.receive_calls += 1
        if self.receive_errors:
            raise self.receive_errors.pop(0)

        now = self._clock()
        received = []
        for entry in list(self.messages):
            if len(received) >= max_messages:
                break
            if entry["visible_at"] > now:
                continue
            if entry["receive_count"] >= self.max_receive_count:
                self.messages.remove(entry)
                self.dlq.append(entry)
                continue
            entry["receive_count"] += 1
            entry["visible_at"] = now + self.visibility_timeout
            entry["receipt"] = str(uuid.uuid4())
            received.append({
                "MessageId": entry["MessageId"],
                "ReceiptHandle": entry["receipt"],
                "Body": entry["Body"],
                "MessageAttributes": entry["MessageAttributes"],
                "Attributes": {"ApproximateReceiveCount": str(entry["receive_count"])},
            })

        # Stand-in for the long-poll so a running loop yields control
        await asyncio.sleep(0)
        return received

    async def delete_message(self, receipt_handle: str):
        for entry in self.messages:
            if entry["receipt"] == receipt_handle:
                self.messages.remove(entry)
                self.deleted.append(entry["MessageId"])
                return

    async def get_attributes(self, names=None) -> Dict[str, str]:
        self.attribute_calls += 1
        if self.attributes_error is not None:
            raise self.attributes_error
        return {"ApproximateNumberOfMessages": str(len(self.messages))}
