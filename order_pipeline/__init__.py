"""Order gateway and SQS order processor."""

__version__ = "1.0.0"
