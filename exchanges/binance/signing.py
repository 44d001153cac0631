"""
Request Signing

Binance signs requests with HMAC-SHA256. The secret key is the HMAC key.
The message is the exact query string sent on the wire, up to but
excluding the `signature` parameter. The hex digest is appended as
`&signature=<hex>`.

API Documentation:
    https://binance-docs.github.io/apidocs/futures/en/#signed-trade-and-user_data-endpoint-security
"""

import hashlib
import hmac

from core.exceptions import ConfigurationError
from core.schemas import ApiAccess


def sign(secret: str, query_string: str) -> str:
    """
    HMAC-SHA256 of query_string keyed by secret, hex encoded.

    Deterministic: the same secret and query string always give the same
    signature.

    Example:
        >>> sign("secret", "symbol=BTCUSDT&timestamp=1")  # doctest: +SKIP
        '4c5b1f…'
    """
    return hmac.new(
        secret.encode("utf-8"),
        query_string.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()


def require_secret(access: ApiAccess, call: str) -> str:
    """
    Return the secret, or fail fast for a signed call without one.

    Raises:
        ConfigurationError: If the secret key is empty
    """
    secret = access.secret()
    if not secret:
        raise ConfigurationError(f"{call} is a signed call but no secret key is set")
    return secret


def require_api_key(access: ApiAccess, call: str) -> str:
    """
    Raises:
        ConfigurationError: If the API key is empty
    """
    if not access.api_key:
        raise ConfigurationError(f"{call} requires an API key but none is set")
    return access.api_key
