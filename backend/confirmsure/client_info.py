"""Client address and user-agent extraction."""
from __future__ import annotations

import ipaddress
from dataclasses import dataclass

from starlette.requests import HTTPConnection

from .config import settings


def get_client_ip(request: HTTPConnection) -> str:
    if settings.TRUST_PROXY_HEADERS:
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            try:
                ipaddress.ip_address(real_ip)
                return real_ip
            except ValueError:
                pass

        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For may contain a list: client, proxy1, proxy2
            candidate = forwarded.split(",")[0].strip()
            try:
                ipaddress.ip_address(candidate)
                return candidate
            except ValueError:
                pass

    if request.client:
        return request.client.host
    return "unknown"


@dataclass(frozen=True)
class ClientInfo:
    """Request origin recorded alongside audit entries."""

    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def from_request(cls, request: HTTPConnection) -> "ClientInfo":
        user_agent = request.headers.get("user-agent")
        return cls(
            ip_address=get_client_ip(request),
            user_agent=user_agent[:512] if user_agent else None,
        )


NO_CLIENT = ClientInfo()


def get_client_info(request: HTTPConnection) -> ClientInfo:
    """FastAPI dependency."""
    return ClientInfo.from_request(request)
