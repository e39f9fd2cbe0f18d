"""Farcaster access through the Neynar HTTP API."""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

import aiohttp

from .config import EXTERNAL_TIMEOUT, MENTION_FETCH_LIMIT, NEYNAR_API_URL
from .errors import ExternalServiceFailure
from .models import Identity, Message, Receipt
from .timeutils import now_ts, parse_iso


logger = logging.getLogger(__name__)


class SocialClient(Protocol):
    """What the game needs from the social network."""

    async def list_mentions(self, bot_fid: int) -> List[Message]: ...

    async def post_reply(self, parent_id: str, text: str) -> Receipt: ...

    async def post_public(self, text: str) -> Receipt: ...

    async def resolve_username(self, username: str) -> Optional[Identity]: ...

    async def resolve_identity(self, fid: int) -> Optional[Identity]: ...


def _first_eth_address(user: Dict[str, Any]) -> Optional[str]:
    addresses = (user.get("verified_addresses") or {}).get("eth_addresses") or []
    return addresses[0].lower() if addresses else None


def identity_from_user(user: Dict[str, Any]) -> Identity:
    return Identity(fid=int(user["fid"]), username=user.get("username"), wallet_address=_first_eth_address(user))


def message_from_cast(cast: Dict[str, Any]) -> Message:
    author = cast.get("author") or {}
    parent_author = cast.get("parent_author") or {}
    timestamp = cast.get("timestamp")
    return Message(
        id=cast["hash"],
        author_fid=int(author.get("fid", 0)),
        author_username=author.get("username") or "",
        text=cast.get("text") or "",
        timestamp=parse_iso(timestamp) if timestamp else now_ts(),
        reply_parent_username=parent_author.get("username"),
    )


class NeynarClient:
    """SocialClient backed by Neynar. Every request is bounded by a timeout."""

    def __init__(self, api_key: str, signer_uuid: str, base_url: str = NEYNAR_API_URL,
                 timeout: float = EXTERNAL_TIMEOUT, session: Optional[aiohttp.ClientSession] = None):
        self.api_key = api_key
        self.signer_uuid = signer_uuid
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session

    def _headers(self) -> Dict[str, str]:
        return {"accept": "application/json", "api_key": self.api_key}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout, headers=self._headers())
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, path: str, allow_not_found: bool = False, **kwargs) -> Optional[Dict[str, Any]]:
        session = await self._get_session()
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            async with session.request(method, url, **kwargs) as response:
                if allow_not_found and response.status == 404:
                    return None
                if response.status >= 400:
                    body = await response.text()
                    raise ExternalServiceFailure(f"Neynar {method} {path} failed with {response.status}: {body[:200]}")
                return await response.json()
        except aiohttp.ClientError as exc:
            raise ExternalServiceFailure(f"Neynar {method} {path} failed: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise ExternalServiceFailure(f"Neynar {method} {path} timed out") from exc

    async def list_mentions(self, bot_fid: int) -> List[Message]:
        data = await self._request(
            "GET", "notifications",
            params={"fid": bot_fid, "type": "mentions", "limit": MENTION_FETCH_LIMIT},
        )
        messages = []
        for notification in (data or {}).get("notifications", []):
            if notification.get("type") == "mention" and notification.get("cast"):
                messages.append(message_from_cast(notification["cast"]))
        return messages

    async def _post_cast(self, text: str, parent: Optional[str] = None) -> Receipt:
        payload = {"text": text, "signer_uuid": self.signer_uuid}
        if parent:
            payload["parent"] = parent
        data = await self._request("POST", "cast", json=payload)
        cast = (data or {}).get("cast") or {}
        logger.info(f"Posted cast {cast.get('hash')} (parent={parent})")
        return Receipt(id=cast.get("hash"), success=True)

    async def post_reply(self, parent_id: str, text: str) -> Receipt:
        return await self._post_cast(text, parent=parent_id)

    async def post_public(self, text: str) -> Receipt:
        return await self._post_cast(text)

    async def resolve_username(self, username: str) -> Optional[Identity]:
        data = await self._request("GET", "user/by_username", allow_not_found=True, params={"username": username})
        user = (data or {}).get("user")
        return identity_from_user(user) if user else None

    async def resolve_identity(self, fid: int) -> Optional[Identity]:
        data = await self._request("GET", "user/bulk", params={"fids": str(fid)})
        users = (data or {}).get("users") or []
        return identity_from_user(users[0]) if users else None
