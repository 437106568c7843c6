"""Log filters for PII masking and correlation ID injection."""

import logging
import re


class PIIFilter(logging.Filter):
    """Masks emails, phone numbers and push device tokens in log messages."""

    EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+")
    PHONE_PATTERN = re.compile(r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b")
    # APNs tokens are 64 hex chars; FCM tokens are long base64url strings with a colon
    DEVICE_TOKEN_PATTERN = re.compile(r"\b(?:[0-9a-fA-F]{64}|[\w-]{20,}:[\w-]{60,})\b")

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            msg = record.msg
            msg = self.DEVICE_TOKEN_PATTERN.sub("[TOKEN]", msg)
            if "@" in msg:
                msg = self.EMAIL_PATTERN.sub("[EMAIL]", msg)
            if any(c.isdigit() for c in msg):
                msg = self.PHONE_PATTERN.sub("[PHONE]", msg)
            record.msg = msg
        return True


class DefaultCorrelationFilter(logging.Filter):
    """Adds default correlation_id if not present."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True
