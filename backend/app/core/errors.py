############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# errors.py: Gateway error taxonomy and HTTP status mapping
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Gateway error types.

Every failure that reaches a client carries a machine-readable kind and a
human-readable message. The API layer renders them as
``{"error": {"message": ..., "type": ..., "code": ...}}``.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Machine-readable failure kinds."""
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL = "INTERNAL"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INTERNAL: 500,
}


class GatewayError(Exception):
    """Base class for errors surfaced to gateway clients."""

    default_kind = ErrorKind.INTERNAL

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire error envelope."""
        return {
            "error": {
                "message": self.message,
                "type": self.kind.value.lower(),
                "code": self.kind.value,
            }
        }


class UpstreamError(GatewayError):
    """The model provider call failed. Surfaced as BAD_REQUEST with the upstream message."""

    default_kind = ErrorKind.BAD_REQUEST

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(f"Failed to get completion: {message}")
        self.upstream_message = message
        self.status_code = status_code


class LedgerWriteError(GatewayError):
    """The call/response unit of work failed and was rolled back."""

    default_kind = ErrorKind.INTERNAL


class TagWriteError(GatewayError):
    """Tags could not be written for an already committed call."""

    default_kind = ErrorKind.INTERNAL

    def __init__(self, message: str, call_id: str):
        super().__init__(message)
        self.call_id = call_id
