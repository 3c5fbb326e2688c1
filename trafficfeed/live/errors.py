"""
Custom exceptions for the live traffic feed client.

Exception hierarchy:
- TrafficFeedError (base)
  - ConnectionError: Streaming channel issues
  - SubscriptionError: Feed rejected the subscription request
  - MessageParseError: Invalid/malformed inbound frames
  - ConfigurationError: Invalid configuration
"""

from __future__ import annotations

from typing import Any, Optional


class TrafficFeedError(Exception):
    """Base exception for all traffic feed errors."""

    def __init__(
        self,
        message: str,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.component = component
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.component:
            parts.append(f"[component={self.component}]")
        if self.details:
            parts.append(f"[details={self.details}]")
        return " ".join(parts)


class ConnectionError(TrafficFeedError):
    """Raised when the streaming channel fails or is lost."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        close_code: Optional[int] = None,
        reconnect_attempt: int = 0,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.url = url
        self.close_code = close_code
        self.reconnect_attempt = reconnect_attempt
        details = details or {}
        if url:
            details["url"] = url
        if close_code is not None:
            details["close_code"] = close_code
        details["reconnect_attempt"] = reconnect_attempt
        super().__init__(message, component=component, details=details)


class SubscriptionError(TrafficFeedError):
    """Raised when the feed rejects a subscription request."""

    def __init__(
        self,
        message: str,
        *,
        feed_error: Optional[dict[str, Any]] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.feed_error = feed_error or {}
        details = details or {}
        if feed_error:
            details["feed_error"] = feed_error
        super().__init__(message, component=component, details=details)


class MessageParseError(TrafficFeedError):
    """Raised when an inbound frame or record cannot be parsed."""

    def __init__(
        self,
        message: str,
        *,
        raw_data: Optional[str] = None,
        expected_type: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.raw_data = raw_data
        self.expected_type = expected_type
        details = details or {}
        if expected_type:
            details["expected_type"] = expected_type
        # Don't include raw_data in details to avoid log spam
        super().__init__(message, component=component, details=details)


class ConfigurationError(TrafficFeedError):
    """Raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.field = field
        self.value = value
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, component=component, details=details)
