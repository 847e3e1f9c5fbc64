"""
Error kinds surfaced by ClickHouse clients

Every client implementation raises these exceptions so that callers
(and the conformance harness) can compare error kinds instead of
message text.

DEADLINE_EXCEEDED and CANCELLED are shared instances: an operation
terminated by its context raises exactly one of these objects, which
makes `err is DEADLINE_EXCEEDED` a valid check.
"""


class ClientError(Exception):
    """Base class for all client errors"""


class ConfigurationError(ClientError, ValueError):
    """Malformed client configuration (raised before any network I/O)"""


class ConnectError(ClientError, ConnectionError):
    """No configured address accepted a connection"""


class ClosedError(ConnectError):
    """Operation attempted on a closed client or row set"""


class DeadlineExceeded(ClientError, TimeoutError):
    """Context deadline passed before the operation completed"""


class Cancelled(ClientError):
    """Context was cancelled before the operation completed"""


class ProtocolError(ClientError):
    """Wire-level framing or decoding failure"""


class ServerError(ClientError):
    """
    ClickHouse returned an exception packet

    Attributes:
        code: Server error code (e.g. 60 for UNKNOWN_TABLE)
        name: Symbolic error name when known
        message: Server-provided message
    """

    def __init__(self, code: int, name: str, message: str):
        super().__init__(f"code: {code}, name: {name}, message: {message}")
        self.code = code
        self.name = name
        self.message = message


class InvalidArgument(ClientError, ValueError):
    """Argument rejected before reaching the server"""


class BindError(InvalidArgument):
    """Positional placeholder without a matching argument"""


class ArityMismatch(ClientError, ValueError):
    """Value count differs from the column count"""


class TypeMismatch(ClientError, TypeError):
    """Value cannot be represented as the declared ClickHouse type"""


class NoRows(ClientError, LookupError):
    """QueryRow against an empty result"""


DEADLINE_EXCEEDED = DeadlineExceeded("context deadline exceeded")
CANCELLED = Cancelled("context canceled")


__all__ = [
    "ClientError",
    "ConfigurationError",
    "ConnectError",
    "ClosedError",
    "DeadlineExceeded",
    "Cancelled",
    "ProtocolError",
    "ServerError",
    "InvalidArgument",
    "BindError",
    "ArityMismatch",
    "TypeMismatch",
    "NoRows",
    "DEADLINE_EXCEEDED",
    "CANCELLED",
]
