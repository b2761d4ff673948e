"""
Best-effort client context recorded with every signature.

Nothing here is allowed to fail a capture: a missing header, an unreachable
geolocation service or a lookup that outlives CLIENT_CONTEXT_TIMEOUT all
come back as ``None`` fields.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import requests
from fastapi import Request

from ..config import settings
from ..schemas import ClientInfo, Geolocation

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def _lookup_geolocation(ip: str, timeout: float) -> Optional[Geolocation]:
    response = requests.get(settings.GEOLOCATION_LOOKUP_URL.format(ip=ip), timeout=timeout)
    response.raise_for_status()
    data = response.json()
    latitude = data.get("latitude", data.get("lat"))
    longitude = data.get("longitude", data.get("lon"))
    if latitude is None or longitude is None:
        return None
    return Geolocation(latitude=latitude, longitude=longitude, accuracy=data.get("accuracy"))


async def lookup_geolocation(ip: Optional[str], timeout: float = None) -> Optional[Geolocation]:
    if not ip or not settings.GEOLOCATION_LOOKUP_URL:
        return None
    timeout = settings.CLIENT_CONTEXT_TIMEOUT if timeout is None else timeout
    try:
        return await asyncio.wait_for(asyncio.to_thread(_lookup_geolocation, ip, timeout), timeout)
    except asyncio.TimeoutError:
        logger.warning("Geolocation lookup timed out after %.1fs", timeout)
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"Geolocation lookup failed: {e}")
    return None


def request_client_info(request: Request, geolocation: Optional[Geolocation] = None) -> ClientInfo:
    """Client context from the request alone, without any lookups."""
    return ClientInfo(
        timestamp=utc_timestamp(),
        user_agent=request.headers.get("user-agent"),
        ip=client_ip(request),
        geolocation=geolocation,
    )


async def collect_client_info(request: Request, geolocation: Optional[Geolocation] = None) -> ClientInfo:
    if geolocation is None:
        geolocation = await lookup_geolocation(client_ip(request))
    # Timestamp taken after the lookup so it marks the moment of capture
    return request_client_info(request, geolocation)
