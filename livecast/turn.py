"""ICE server providers for the peer connection.

StaticICE serves the configured STUN/TURN list (Google STUN by default).
TwilioTURN asks Twilio's Network Traversal Service for short-lived TURN
credentials and falls back to the static list when that is not possible.
"""

import logging
import os
from abc import ABC, abstractmethod

import aiohttp
from aiortc import RTCIceServer

from livecast.config import DEFAULT_ICE_SERVERS

log = logging.getLogger("livecast.turn")

TWILIO_TOKENS_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Tokens.json"


class ICEProvider(ABC):
    """Source of ICE server dicts (``{"urls": ..., "username": ..., "credential": ...}``)."""

    @abstractmethod
    async def fetch_ice_servers(self) -> list[dict]:
        ...


class StaticICE(ICEProvider):
    def __init__(self, servers=None):
        self._servers = list(servers) if servers is not None else list(DEFAULT_ICE_SERVERS)

    async def fetch_ice_servers(self) -> list[dict]:
        return list(self._servers)


class TwilioTURN(ICEProvider):
    """Ephemeral TURN credentials from Twilio.

    Credentials default to TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN. Any
    failure is logged and the *fallback* servers are returned instead, so a
    session can still negotiate over STUN.
    """

    def __init__(self, account_sid: str = "", auth_token: str = "", fallback=None):
        self._account_sid = account_sid or os.getenv("TWILIO_ACCOUNT_SID", "")
        self._auth_token = auth_token or os.getenv("TWILIO_AUTH_TOKEN", "")
        self._fallback = StaticICE(fallback)

    @property
    def configured(self) -> bool:
        return bool(self._account_sid and self._auth_token)

    async def fetch_ice_servers(self) -> list[dict]:
        if not self.configured:
            log.warning("Twilio credentials not set, using static ICE servers")
            return await self._fallback.fetch_ice_servers()

        url = TWILIO_TOKENS_URL.format(sid=self._account_sid)
        auth = aiohttp.BasicAuth(self._account_sid, self._auth_token)
        try:
            async with aiohttp.ClientSession() as http:
                async with http.post(url, auth=auth) as resp:
                    if resp.status != 201:
                        log.error("Twilio token request failed (%d): %s",
                                  resp.status, await resp.text())
                        return await self._fallback.fetch_ice_servers()
                    data = await resp.json()
        except aiohttp.ClientError as e:
            log.error("Twilio token request failed: %s", e)
            return await self._fallback.fetch_ice_servers()

        servers = data.get("ice_servers", [])
        log.info("Got %d ICE servers from Twilio (ttl %ss)", len(servers), data.get("ttl", "?"))
        return servers


def ice_servers_to_rtc(servers) -> list[RTCIceServer]:
    """Convert ICE server dicts to aiortc RTCIceServer objects.

    Accepts both the standard ``urls`` key and Twilio's legacy ``url``.
    """
    result = []
    for server in servers:
        urls = server.get("urls") or server.get("url") or []
        if isinstance(urls, str):
            urls = [urls]
        if not urls:
            log.warning("Skipping ICE server without urls: %r", server)
            continue
        result.append(RTCIceServer(
            urls=urls,
            username=server.get("username"),
            credential=server.get("credential"),
        ))
    return result


def provider_from_env(servers=None) -> ICEProvider:
    """TwilioTURN when Twilio credentials are present, else StaticICE."""
    if os.getenv("TWILIO_ACCOUNT_SID") and os.getenv("TWILIO_AUTH_TOKEN"):
        return TwilioTURN(fallback=servers)
    return StaticICE(servers)
