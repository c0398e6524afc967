"""Tests for rate limit key derivation."""

import pytest

from app.core.key_derivation import (
    UNKNOWN_CLIENT,
    default_key_generator,
    enhanced_key_generator,
    get_client_address,
    skip_system_endpoints,
    user_agent_fingerprint,
)


def test_first_forwarded_hop_wins(make_request) -> None:
    request = make_request(headers={"X-Forwarded-For": "198.51.100.4, 10.0.0.1, 10.0.0.2"})

    assert get_client_address(request) == "198.51.100.4"


def test_falls_back_to_socket_address(make_request) -> None:
    assert get_client_address(make_request(client=("192.0.2.10", 4000))) == "192.0.2.10"


def test_blank_forwarded_header_is_ignored(make_request) -> None:
    request = make_request(headers={"X-Forwarded-For": " , 10.0.0.1"}, client=("192.0.2.10", 1))

    assert get_client_address(request) == "192.0.2.10"


def test_unknown_when_no_address(make_request) -> None:
    request = make_request(client=None)

    assert get_client_address(request) == UNKNOWN_CLIENT
    assert default_key_generator(request) == "unknown"


def test_fingerprint_is_stable_signed_32_bit() -> None:
    ua = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36"

    value = user_agent_fingerprint(ua)

    assert value == user_agent_fingerprint(ua)
    assert -(2**31) <= value < 2**31
    assert user_agent_fingerprint("") == 0
    assert user_agent_fingerprint("a") == 97
    assert user_agent_fingerprint("ab") == 97 * 31 + 98


def test_fingerprint_wraps_to_negative() -> None:
    # Long inputs overflow 32 bits; at least one of these lands negative
    values = [user_agent_fingerprint("z" * n) for n in range(5, 15)]

    assert any(v < 0 for v in values)
    assert all(-(2**31) <= v < 2**31 for v in values)


def test_enhanced_key_distinguishes_user_agents(make_request) -> None:
    first = make_request(headers={"User-Agent": "curl/8.0"})
    same = make_request(headers={"User-Agent": "curl/8.0"})
    other = make_request(headers={"User-Agent": "python-httpx/0.27"})

    assert enhanced_key_generator(first) == enhanced_key_generator(same)
    assert enhanced_key_generator(first) != enhanced_key_generator(other)
    assert enhanced_key_generator(first).startswith("203.0.113.7:")


def test_enhanced_key_without_user_agent(make_request) -> None:
    key = enhanced_key_generator(make_request())

    assert key == f"203.0.113.7:{user_agent_fingerprint('unknown')}"


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("/health", True),
        ("/api/health", True),
        ("/api/version", True),
        ("/api/metrics", True),
        ("/api/workflows", False),
        ("/api/workflows/abc/audit-trail", False),
    ],
)
def test_skip_system_endpoints(make_request, path: str, expected: bool) -> None:
    assert skip_system_endpoints(make_request(path=path)) is expected


def test_forwarded_header_ignored_without_trusted_proxy(make_request) -> None:
    request = make_request(
        headers={"X-Forwarded-For": "198.51.100.4", "User-Agent": "curl/8.0"},
        client=("192.0.2.10", 4000),
    )

    assert get_client_address(request, trust_proxy=False) == "192.0.2.10"
    assert default_key_generator(request, trust_proxy=False) == "192.0.2.10"
    assert enhanced_key_generator(request, trust_proxy=False).startswith("192.0.2.10:")
