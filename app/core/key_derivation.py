"""Rate limit identities derived from inbound requests.

A key generator never raises: missing or malformed client information
collapses to the ``UNKNOWN_CLIENT`` sentinel so those callers share one
bucket instead of bypassing the limiter.
"""

from __future__ import annotations

from fastapi import Request

UNKNOWN_CLIENT = "unknown"

SYSTEM_PATHS: tuple[str, ...] = ("/health", "/version", "/metrics")


def get_client_address(request: Request, *, trust_proxy: bool = True) -> str:
    """Resolve the caller's network address.

    Fallback chain: first ``X-Forwarded-For`` hop, then the socket peer,
    then ``"unknown"``. The forwarded header is ignored unless
    ``trust_proxy`` is set, since any client can write it.
    """

    forwarded_for = request.headers.get("X-Forwarded-For") if trust_proxy else None
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    client = request.client
    if client is not None and client.host:
        return client.host

    return UNKNOWN_CLIENT


def user_agent_fingerprint(user_agent: str) -> int:
    """Fold a user-agent string into a signed 32-bit integer.

    Rolling ``h * 31 + code point`` hash; deterministic across processes
    (unlike ``hash()``), which matters when the counter store is shared.
    """

    h = 0
    for char in user_agent:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


def default_key_generator(request: Request, *, trust_proxy: bool = True) -> str:
    """Key by client address only."""

    return get_client_address(request, trust_proxy=trust_proxy)


def enhanced_key_generator(request: Request, *, trust_proxy: bool = True) -> str:
    """Key by client address plus a user-agent fingerprint.

    Clients behind one NAT address get separate buckets when their
    user agents differ. Format: ``"{address}:{fingerprint}"``.
    """

    address = get_client_address(request, trust_proxy=trust_proxy)
    user_agent = request.headers.get("User-Agent") or UNKNOWN_CLIENT
    return f"{address}:{user_agent_fingerprint(user_agent)}"


def skip_system_endpoints(request: Request) -> bool:
    """True for health, version and metrics paths, which are never counted."""

    path = request.url.path
    return any(system_path in path for system_path in SYSTEM_PATHS)
