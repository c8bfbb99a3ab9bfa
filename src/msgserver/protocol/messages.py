"""
=============================================================================
MESSAGE TYPES
=============================================================================

The five message shapes that travel over the wire.

    CLIENT → SERVER                     SERVER → CLIENT
    ───────────────                     ───────────────
    EchoMessage(content)        ──►     EchoResponse(content)
    AddRequest(a, b)            ──►     AddResult(value)
    (anything else)             ──►     ErrorResponse(detail)

ServerMessage is a sum type: every response is an instance of exactly one
of EchoResponse, AddResult or ErrorResponse. There is no "message with
optional fields" to get into an inconsistent state.

=============================================================================
INTEGER WIDTH
=============================================================================

Operands and results are signed 32-bit integers. Addition wraps around
using two's complement, the same way a fixed-width CPU register does:

    2147483647 + 1  →  -2147483648
   -2147483648 - 1  →   2147483647

=============================================================================
"""

from dataclasses import dataclass


INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1


def _check_int32(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if not INT32_MIN <= value <= INT32_MAX:
        raise ValueError(f"{name}={value} does not fit in a signed 32-bit integer")


def _check_str(name: str, value: str) -> None:
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a str, got {type(value).__name__}")


def wrap_int32(value: int) -> int:
    """Reduce an arbitrary int to the signed 32-bit range (two's complement)."""
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value > INT32_MAX else value


# =============================================================================
# CLIENT MESSAGES
# =============================================================================

class ClientMessage:
    """Base class for requests a client can send."""

    __slots__ = ()


@dataclass(frozen=True)
class EchoMessage(ClientMessage):
    """Ask the server to send `content` straight back."""

    content: str = ""

    def __post_init__(self):
        _check_str("content", self.content)


@dataclass(frozen=True)
class AddRequest(ClientMessage):
    """Ask the server for `a + b`."""

    a: int = 0
    b: int = 0

    def __post_init__(self):
        _check_int32("a", self.a)
        _check_int32("b", self.b)

    def result(self) -> int:
        return wrap_int32(self.a + self.b)


# =============================================================================
# SERVER MESSAGES
# =============================================================================

class ServerMessage:
    """Base class for the three response variants."""

    __slots__ = ()


@dataclass(frozen=True)
class EchoResponse(ServerMessage):
    content: str = ""

    def __post_init__(self):
        _check_str("content", self.content)


@dataclass(frozen=True)
class AddResult(ServerMessage):
    value: int = 0

    def __post_init__(self):
        _check_int32("value", self.value)


@dataclass(frozen=True)
class ErrorResponse(ServerMessage):
    """Sent back for malformed or unsupported requests."""

    detail: str = ""

    def __post_init__(self):
        _check_str("detail", self.detail)
