"""Key functions deriving rate limit identifiers from requests."""

import json
from functools import partial
from typing import Optional

from starlette.requests import Request

ACCOUNT_FIELDS = ("email", "username", "account")
MAX_ACCOUNT_LENGTH = 254


def client_address(request: Request, trust_forwarded_for: bool = False) -> str:
    """Network address of the caller.

    Uses the first X-Forwarded-For hop when the service sits behind a
    trusted proxy, otherwise the socket peer.
    """
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop
    return request.client.host if request.client else "unknown"


async def submitted_account(request: Request) -> Optional[str]:
    """Account named in a JSON request body, normalized, if any."""
    if "application/json" not in request.headers.get("content-type", ""):
        return None
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    for field in ACCOUNT_FIELDS:
        value = payload.get(field)
        if isinstance(value, str) and value.strip():
            return value.strip().lower()[:MAX_ACCOUNT_LENGTH]
    return None


async def address_and_account(request: Request, trust_forwarded_for: bool = False) -> str:
    """Composite of caller address and the account it is acting on.

    Used for login and password reset so one address cannot spread guesses
    across accounts without each account being limited on its own.
    """
    address = client_address(request, trust_forwarded_for)
    account = await submitted_account(request)
    return f"{address}:{account or 'anonymous'}"


def account_and_endpoint(request: Request, trust_forwarded_for: bool = False) -> str:
    """Composite of the authenticated account and the requested path.

    The account id is set on request.state by the identity layer; anonymous
    callers fall back to their address.
    """
    account = getattr(request.state, "account_id", None)
    caller = str(account) if account is not None else client_address(request, trust_forwarded_for)
    return f"{caller}:{request.url.path}"


def make_key_functions(trust_forwarded_for: bool = False) -> dict:
    """Key functions bound to the proxy trust setting."""
    return {
        "address": partial(client_address, trust_forwarded_for=trust_forwarded_for),
        "address_and_account": partial(address_and_account, trust_forwarded_for=trust_forwarded_for),
        "account_and_endpoint": partial(account_and_endpoint, trust_forwarded_for=trust_forwarded_for),
    }
