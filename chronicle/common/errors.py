"""
Chronicle Error Taxonomy

Typed errors shared by every component. User-facing errors (NotFound,
Conflict, InvalidInput) carry a displayable message; upstream errors describe
the retriever or language model that failed.
"""

from typing import Any, Dict, Optional


class ChronicleError(Exception):
    """Base class for all engine errors."""

    code = "internal"

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        """Shape used by the HTTP and MCP surfaces."""
        payload: Dict[str, Any] = {"ok": False, "error": self.message, "code": self.code}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class NotFound(ChronicleError):
    """Conversation, entry or tag id is unknown."""
    code = "not_found"


class Conflict(ChronicleError):
    """Duplicate tag name, alias, or entry content."""
    code = "conflict"


class InvalidInput(ChronicleError):
    """Empty question, malformed filters, unknown provider."""
    code = "invalid_input"


class UpstreamUnavailable(ChronicleError):
    """Retriever or language model could not be reached."""
    code = "upstream_unavailable"


class UpstreamTimeout(UpstreamUnavailable):
    """Retriever or language model did not answer in time."""
    code = "upstream_timeout"


class Internal(ChronicleError):
    """Storage transaction failure."""
    code = "internal"
