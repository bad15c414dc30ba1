import re
import logging
from typing import Pattern, List, Tuple


class SecretRedactionFilter(logging.Filter):
    """
    Logging filter that scrubs credentials from log messages.

    Connection strings, provider keys and passwords travel through the
    configuration and error paths of both collaborators and must never reach
    a log sink verbatim.
    """

    SECRET_PATTERNS: List[Tuple[Pattern, str]] = [
        # Credentials embedded in database or HTTP URIs - must run before email
        (
            re.compile(
                r'((?:bolt|neo4j|bolt\+s|neo4j\+s|https?)://)[^:@\s/]+:[^@\s]+@',
                re.IGNORECASE
            ),
            r'\1[CREDENTIALS_REDACTED]@'
        ),

        # OpenAI-style secret keys
        (
            re.compile(r'\bsk-[A-Za-z0-9_-]{16,}\b'),
            '[API_KEY_REDACTED]'
        ),

        # api_key=..., access_token: ...
        (
            re.compile(
                r'\b(api[_-]?key|apikey|access[_-]?token)(["\s:=]+)[A-Za-z0-9_-]{16,}',
                re.IGNORECASE
            ),
            r'\1\2[API_KEY_REDACTED]'
        ),

        # Bearer tokens in Authorization headers
        (
            re.compile(r'\bBearer\s+[A-Za-z0-9._-]{20,}', re.IGNORECASE),
            'Bearer [TOKEN_REDACTED]'
        ),

        # Password-like patterns in key-value pairs
        (
            re.compile(
                r'\b(password|passwd|pwd)["\s:=]+[^\s,}]{4,}',
                re.IGNORECASE
            ),
            r'\g<1>=[PASSWORD_REDACTED]'
        ),

        # Email addresses
        (
            re.compile(r'\b[\w.%+-]+@[\w.-]+\.[A-Za-z]{2,}\b', re.UNICODE),
            '[EMAIL_REDACTED]'
        ),
    ]

    def __init__(self, name: str = ""):
        super().__init__(name)
        self._redaction_count = 0

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Redact secrets from the record's rendered message.

        Always returns True so the record is still emitted.
        """
        original_msg = record.getMessage()
        redacted_msg = redact_secrets(original_msg)

        # Replace args too so the formatter does not re-render the original
        if redacted_msg != original_msg:
            self._redaction_count += 1
            record.msg = redacted_msg
            record.args = ()

        return True

    def get_redaction_count(self) -> int:
        return self._redaction_count

    def reset_count(self) -> None:
        self._redaction_count = 0


def redact_secrets(text: str) -> str:
    """
    Standalone function to redact secrets from any text.

    Args:
        text: Text to redact

    Returns:
        Text with credentials replaced by redaction placeholders
    """
    if not isinstance(text, str):
        text = str(text)

    for pattern, replacement in SecretRedactionFilter.SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text
