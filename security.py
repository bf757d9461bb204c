"""
Security Module for the NL-to-SQL Assistant

Guards the database against AI-generated SQL:
- Static detection of data-modifying keywords in generated SQL
- Safety gate that refuses unsafe queries unless explicitly allowed
- Security event recording for monitoring
"""

import re
import logging
import datetime
from collections import deque
from typing import List, Tuple

from config import (
    ALLOW_UNSAFE_QUERIES,
    ENABLE_SECURITY_LOGGING,
    SECURITY_EVENT_LOG_SIZE,
    UNSAFE_KEYWORDS,
)
from exceptions import UnsafeOperationError


logger = logging.getLogger(__name__)


UNSAFE_QUERY_MESSAGE = (
    "Unsafe queries (UPDATE/DELETE/DROP/ALTER/TRUNCATE) are not allowed. "
    "Set ALLOW_UNSAFE_QUERIES=true in .env to enable."
)


class UnsafeOperationDetector:
    """
    Detects data-modifying operations in SQL text.

    The check is a case-insensitive, whole-word match against a fixed
    keyword set. It is applied to every generated query regardless of what
    the model reported about its own output.
    """

    def __init__(self, keywords=UNSAFE_KEYWORDS):
        self.keywords = tuple(keywords)
        self.patterns = [
            re.compile(rf'\b{keyword}\b', re.IGNORECASE)
            for keyword in self.keywords
        ]

    def detect(self, sql: str) -> Tuple[bool, List[str]]:
        """
        Check SQL text for unsafe keywords.

        Args:
            sql: SQL text to inspect

        Returns:
            Tuple of (is_unsafe, list of matched keywords)
        """
        matched = [
            keyword
            for keyword, pattern in zip(self.keywords, self.patterns)
            if pattern.search(sql or "")
        ]
        return len(matched) > 0, matched


class SafetyGate:
    """
    Decides whether a query may touch the database.

    Provides:
    - The allow/refuse decision for every execution attempt
    - Security event recording (optional, bounded)
    """

    def __init__(
        self,
        allow_unsafe: bool = ALLOW_UNSAFE_QUERIES,
        enable_logging: bool = ENABLE_SECURITY_LOGGING,
        max_events: int = SECURITY_EVENT_LOG_SIZE
    ):
        self.allow_unsafe = allow_unsafe
        self.enable_logging = enable_logging
        # Oldest events drop off once max_events is reached
        self._security_events = deque(maxlen=max_events)

    def check(self, is_unsafe: bool, sql: str = "") -> None:
        """
        Refuse unsafe queries unless the policy allows them.

        Args:
            is_unsafe: Whether the query modifies data
            sql: Query text, recorded with the event

        Raises:
            UnsafeOperationError: If the query is unsafe and not allowed
        """
        try:
            check_query_safety(is_unsafe, self.allow_unsafe)
        except UnsafeOperationError:
            if self.enable_logging:
                self._log_security_event("BLOCKED_UNSAFE", sql)
            raise
        if is_unsafe and self.enable_logging:
            self._log_security_event("ALLOWED_UNSAFE", sql)

    def _log_security_event(self, event_type: str, content: str):
        """Record a security event for monitoring."""
        event = {
            "timestamp": datetime.datetime.now().isoformat(),
            "type": event_type,
            "content_preview": content[:100] + "..." if len(content) > 100 else content,
        }
        self._security_events.append(event)
        logger.warning("[SECURITY] %s: %s", event_type, event["content_preview"])

    def get_security_events(self) -> List[dict]:
        """Get recorded security events."""
        return list(self._security_events)


def check_query_safety(is_unsafe: bool, allow_unsafe: bool) -> None:
    """
    Pure policy check run before any SQL reaches the database.

    Raises:
        UnsafeOperationError: If is_unsafe and not allow_unsafe
    """
    if is_unsafe and not allow_unsafe:
        raise UnsafeOperationError(UNSAFE_QUERY_MESSAGE)


_detector = UnsafeOperationDetector()


# Convenience function for quick checks
def contains_unsafe_operation(sql: str) -> bool:
    """
    Quick check if SQL contains a data-modifying keyword.

    Args:
        sql: SQL text to check

    Returns:
        True if any unsafe keyword appears as a whole word
    """
    is_unsafe, _ = _detector.detect(sql)
    return is_unsafe
