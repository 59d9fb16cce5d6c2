# src/common/utils/request_context.py

from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import Request

UNKNOWN = "Unknown"


@dataclass(frozen=True)
class RequestContext:
    """Client attributes derived from an incoming request."""
    ip_address: str = UNKNOWN
    user_agent: str = UNKNOWN
    url: str = ""
    session_id: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        return cls(
            ip_address=client_ip(request),
            user_agent=request.headers.get("user-agent") or UNKNOWN,
            url=request.url.path,
            session_id=request.headers.get("x-session-id"),
        )

    @property
    def device_info(self) -> Dict[str, str]:
        return parse_user_agent(self.user_agent)


def get_request_context(request: Request) -> RequestContext:
    """FastAPI dependency."""
    return RequestContext.from_request(request)


def client_ip(request: Request) -> str:
    """First of forwarded-for head, peer address, X-Real-IP, then "Unknown"."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        head = forwarded.split(",")[0].strip()
        if head:
            return head
    if request.client and request.client.host:
        return request.client.host
    return request.headers.get("x-real-ip") or UNKNOWN


def parse_user_agent(user_agent: Optional[str]) -> Dict[str, str]:
    """
    Derive {browser, os, device} from a User-Agent string.

    The checks run in a fixed order and the first match wins, so Opera user
    agents (which also carry "chrome") report Chrome and Android user agents
    report Linux.
    """
    if not user_agent or user_agent == UNKNOWN:
        return {"browser": UNKNOWN, "os": UNKNOWN, "device": UNKNOWN}

    ua = user_agent.lower()

    if "chrome" in ua and "edg" not in ua:
        browser = "Chrome"
    elif "firefox" in ua:
        browser = "Firefox"
    elif "safari" in ua and "chrome" not in ua:
        browser = "Safari"
    elif "edg" in ua:
        browser = "Edge"
    elif "opera" in ua or "opr" in ua:
        browser = "Opera"
    elif "msie" in ua or "trident" in ua:
        browser = "Internet Explorer"
    else:
        browser = UNKNOWN

    if "windows nt 10.0" in ua:
        os_name = "Windows 10/11"
    elif "windows nt 6.3" in ua:
        os_name = "Windows 8.1"
    elif "windows nt 6.2" in ua:
        os_name = "Windows 8"
    elif "windows nt 6.1" in ua:
        os_name = "Windows 7"
    elif "windows" in ua:
        os_name = "Windows"
    elif "mac os x" in ua:
        os_name = "macOS"
    elif "linux" in ua:
        os_name = "Linux"
    elif "android" in ua:
        os_name = "Android"
    elif "iphone" in ua or "ipad" in ua:
        os_name = "iOS"
    else:
        os_name = UNKNOWN

    if "mobile" in ua or "android" in ua or "iphone" in ua:
        device = "Mobile"
    elif "tablet" in ua or "ipad" in ua:
        device = "Tablet"
    else:
        device = "Desktop"

    return {"browser": browser, "os": os_name, "device": device}
