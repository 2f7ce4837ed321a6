"""
Device identification from request headers.

The fingerprint is SHA-256 of "<user-agent>-<client-ip>". It is compared on
every authenticated request; any change in either part counts as a
different device.
"""

import hashlib

from starlette.requests import Request

from studyabroad.models.api import DeviceType
from studyabroad.models.domain import DeviceInfo

# Checked in order; first match wins
_BROWSERS: tuple[tuple[str, str], ...] = (
    ("edg", "Edge"),
    ("opr", "Opera"),
    ("opera", "Opera"),
    ("chrome", "Chrome"),
    ("firefox", "Firefox"),
    ("safari", "Safari"),
)

_OPERATING_SYSTEMS: tuple[tuple[str, str], ...] = (
    ("android", "Android"),
    ("iphone", "iOS"),
    ("ipad", "iOS"),
    ("windows", "Windows"),
    ("mac", "MacOS"),
    ("linux", "Linux"),
)


def device_fingerprint(user_agent: str, ip_address: str) -> str:
    return hashlib.sha256(f"{user_agent}-{ip_address}".encode()).hexdigest()


def parse_user_agent(user_agent: str) -> tuple[str, DeviceType]:
    """
    Derive a display name ("Chrome on Windows") and device type.

    Returns ("Unknown Device", UNKNOWN) for an empty header.
    """
    ua = user_agent.lower()
    if not ua:
        return "Unknown Device", DeviceType.UNKNOWN

    if "ipad" in ua or "tablet" in ua:
        device_type = DeviceType.TABLET
    elif "mobile" in ua or "android" in ua or "iphone" in ua:
        device_type = DeviceType.MOBILE
    else:
        device_type = DeviceType.DESKTOP

    browser = next((name for token, name in _BROWSERS if token in ua), "Unknown Browser")
    os_name = next((name for token, name in _OPERATING_SYSTEMS if token in ua), "Unknown OS")
    return f"{browser} on {os_name}", device_type


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def device_from_request(request: Request) -> DeviceInfo:
    user_agent = request.headers.get("user-agent", "")
    ip_address = client_ip(request)
    device_name, device_type = parse_user_agent(user_agent)
    return DeviceInfo(
        device_id=device_fingerprint(user_agent, ip_address),
        device_name=device_name,
        device_type=device_type,
        ip_address=ip_address,
        user_agent=user_agent,
    )
