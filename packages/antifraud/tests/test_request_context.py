"""Tests for client IP and user-agent extraction."""

import pytest
from antifraud.request_context import extract_real_ip, extract_user_agent
from fastapi import Request


def make_request(headers: dict[str, str] | None = None, client=("198.51.100.4", 51234)):
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/signup",
        "headers": [
            (k.lower().encode("latin-1"), v.encode("latin-1"))
            for k, v in (headers or {}).items()
        ],
        "client": client,
    }
    return Request(scope)


class TestExtractRealIp:
    """Header precedence for the client IP."""

    def test_x_real_ip_wins(self):
        request = make_request(
            {"X-Real-IP": "203.0.113.1", "X-Forwarded-For": "203.0.113.2, 10.0.0.1"}
        )

        assert extract_real_ip(request) == "203.0.113.1"

    def test_first_forwarded_for_hop(self):
        request = make_request({"X-Forwarded-For": " 203.0.113.2 , 10.0.0.1"})

        assert extract_real_ip(request) == "203.0.113.2"

    def test_blank_headers_fall_through(self):
        request = make_request({"X-Real-IP": "  ", "X-Forwarded-For": ""})

        assert extract_real_ip(request) == "198.51.100.4"

    def test_socket_peer(self):
        assert extract_real_ip(make_request()) == "198.51.100.4"

    def test_default_without_client(self):
        assert extract_real_ip(make_request(client=None)) == "127.0.0.1"

    @pytest.mark.parametrize(
        "headers,expected",
        [
            ({"X-Forwarded-For": "203.0.113.7:4431, 10.0.0.1"}, "203.0.113.7"),
            ({"X-Real-IP": "[2001:db8::7]:443"}, "2001:db8::7"),
            ({"X-Real-IP": "2001:DB8::7"}, "2001:db8::7"),
            ({"X-Forwarded-For": "unknown"}, "198.51.100.4"),
            (
                {"X-Real-IP": "_hidden", "X-Forwarded-For": "203.0.113.8"},
                "203.0.113.8",
            ),
        ],
    )
    def test_normalizes_header_values(self, headers, expected):
        """Ports are dropped and non-IP values fall through to the next source."""
        assert extract_real_ip(make_request(headers)) == expected

    def test_non_ip_peer_uses_default(self):
        request = make_request(client=("testclient", 50000))

        assert extract_real_ip(request) == "127.0.0.1"


class TestComposesWithScoring:
    """The extracted IP is always accepted by the risk scorer."""

    @pytest.mark.asyncio
    async def test_forwarded_value_with_port_scores(self, service):
        request = make_request({"X-Forwarded-For": "203.0.113.7:4431"})

        assessment = await service.assess_risk(
            extract_real_ip(request), "ana@example.com"
        )

        assert assessment.risk_score == 0


class TestExtractUserAgent:
    @pytest.mark.parametrize(
        "headers,expected",
        [
            ({"User-Agent": "Mozilla/5.0 (X11; Linux x86_64)"}, "Mozilla/5.0 (X11; Linux x86_64)"),
            ({}, "Unknown"),
            ({"User-Agent": ""}, "Unknown"),
        ],
    )
    def test_user_agent(self, headers, expected):
        assert extract_user_agent(make_request(headers)) == expected
