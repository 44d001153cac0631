"""
Client Fault Hierarchy

Every fault the client raises derives from FuturesClientError so callers can
catch the whole family at once, or pick the one they have a policy for.

Decoded server rejections (HTTP 4xx/5xx with a JSON error body) are NOT faults.
They come back as a RestResult with valid=False. Only the conditions below
are raised.

Taxonomy:
    ConfigurationError         - missing credential for a call that needs it, no I/O attempted
    OperationUnavailableError  - the market variant (e.g. testnet) does not offer the call
    DisconnectError            - handshake failure, dropped stream, transport fault on REST
    MalformedPayloadError      - a frame or body that is not valid JSON
    ListenKeyError             - the venue refused to create or refresh a listen key
"""

from typing import Optional


class FuturesClientError(Exception):
    """Base class for all faults raised by the futures client."""


class ConfigurationError(FuturesClientError):
    """Raised before any network attempt when credentials are missing."""


class OperationUnavailableError(FuturesClientError):
    """
    Raised when the selected market does not support a call.

    Attributes:
        call: Name of the rejected call
        market: Name of the market variant
    """

    def __init__(self, call: str, market: str):
        self.call = call
        self.market = market
        super().__init__(f"{call} is unavailable on the {market} market")


class DisconnectError(FuturesClientError):
    """
    Raised when the transport itself is unusable.

    Callers should re-establish the connection (re-register the monitor),
    not merely resubmit.

    Attributes:
        uri: Endpoint the fault occurred on
        reason: Short description of what happened
    """

    def __init__(self, uri: str, reason: Optional[str] = None):
        self.uri = uri
        self.reason = reason
        message = f"Disconnected from {uri}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class MalformedPayloadError(FuturesClientError):
    """
    Raised when an inbound frame cannot be decoded as JSON.

    Attributes:
        payload: Leading part of the offending payload
    """

    def __init__(self, payload: str, reason: str = ""):
        self.payload = payload[:200]
        super().__init__(f"Malformed payload ({reason}): {self.payload}")


class ListenKeyError(FuturesClientError):
    """Raised when the venue rejects a listen key create/keepalive call."""
