"""Ghost Admin API client for membership records."""

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Optional

import aiohttp
import jwt

from membersync.config.settings import AppConfig
from membersync.errors import UpstreamError
from membersync.members.models import MemberRecord, labels_payload
from membersync.redaction import describe_http_error

logger = logging.getLogger(__name__)

TOKEN_TTL_SECONDS = 300

# Ghost versions that still route the admin API through a version segment
_VERSIONED_PATHS = {"v2", "v3", "v4"}


def escape_filter_value(value: str) -> str:
    """Escape a value for use inside a single-quoted NQL filter string."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class MembershipStore:
    """Async client for Ghost members (browse, read, add, edit, delete)."""

    def __init__(
        self,
        api_url: str,
        admin_api_key: str,
        api_version: str = "v4",
        timeout_seconds: float = 10,
        case_insensitive_email: bool = False,
    ):
        key_id, _, secret = admin_api_key.partition(":")
        self._key_id = key_id
        self._secret = secret
        self._version = api_version
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._case_insensitive_email = case_insensitive_email

        base = api_url.rstrip("/")
        if api_version in _VERSIONED_PATHS:
            self._base_url = f"{base}/ghost/api/{api_version}/admin"
            self._audience = f"/{api_version}/admin/"
        else:
            self._base_url = f"{base}/ghost/api/admin"
            self._audience = "/admin/"

    @classmethod
    def from_config(cls, config: AppConfig) -> "MembershipStore":
        return cls(
            api_url=config.ghost_api_url,
            admin_api_key=config.ghost_admin_api_key.get_secret_value(),
            api_version=config.ghost_api_version,
            timeout_seconds=config.http_timeout_seconds,
            case_insensitive_email=config.member_email_case_insensitive,
        )

    def make_token(self, now: Optional[int] = None) -> str:
        """Short-lived admin JWT signed with the hex-decoded key secret."""
        iat = int(time.time()) if now is None else now
        return jwt.encode(
            {"iat": iat, "exp": iat + TOKEN_TTL_SECONDS, "aud": self._audience},
            bytes.fromhex(self._secret),
            algorithm="HS256",
            headers={"kid": self._key_id},
        )

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Ghost {self.make_token()}",
            "Content-Type": "application/json",
        }
        if self._version not in _VERSIONED_PATHS:
            headers["Accept-Version"] = self._version
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        payload: Optional[dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[dict[str, Any]]:
        """Perform an admin API call and return the decoded JSON body.

        Returns None for empty bodies, and for 404 when allow_not_found.

        Raises:
            UpstreamError: On transport failures and non-2xx responses
        """
        url = f"{self._base_url}/{path.lstrip('/')}"
        headers = self._headers()

        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.request(
                    method, url, params=params, json=payload, headers=headers
                ) as resp:
                    text = await resp.text()

                    if resp.status == 404 and allow_not_found:
                        return None

                    if resp.status >= 400:
                        logger.error(
                            "Ghost request failed: %s",
                            describe_http_error(method, url, headers, resp.status, text),
                        )
                        raise UpstreamError(
                            f"Ghost {method} {path} returned {resp.status}",
                            status=resp.status,
                        )

                    return json.loads(text) if text else None

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(
                "Ghost request error: %s (%s)",
                describe_http_error(method, url, headers, None),
                e,
            )
            raise UpstreamError(f"Ghost {method} {path} failed: {e}") from e

    def normalise_email(self, email: str) -> str:
        return email.lower() if self._case_insensitive_email else email

    async def browse(
        self,
        filter: Optional[str] = None,
        limit: int | str = 15,
        page: int = 1,
    ) -> tuple[list[MemberRecord], Optional[int]]:
        """Fetch one page of members.

        Returns:
            (members, next_page) where next_page is None on the last page
        """
        params: dict[str, Any] = {"limit": limit, "page": page}
        if filter:
            params["filter"] = filter

        body = await self._request("GET", "members/", params=params) or {}
        members = [MemberRecord.from_api(m) for m in body.get("members", [])]
        pagination = body.get("meta", {}).get("pagination", {})
        return members, pagination.get("next")

    async def find_by_email(self, email: str) -> list[MemberRecord]:
        """All members whose email matches exactly (per the store's matching)."""
        value = escape_filter_value(self.normalise_email(email))
        members, _ = await self.browse(filter=f"email:'{value}'", limit="all")
        return members

    async def iter_members(self, limit: int = 100) -> AsyncIterator[MemberRecord]:
        """Walk every member page by page."""
        page: Optional[int] = 1
        while page is not None:
            members, page = await self.browse(limit=limit, page=page)
            for member in members:
                yield member

    async def read(self, member_id: str) -> Optional[MemberRecord]:
        body = await self._request("GET", f"members/{member_id}/", allow_not_found=True)
        if not body or not body.get("members"):
            return None
        return MemberRecord.from_api(body["members"][0])

    async def add(
        self,
        email: str,
        name: str,
        labels: set[str],
        note: str,
        send_email: bool = True,
    ) -> MemberRecord:
        """Create a member; Ghost sends the welcome email when send_email."""
        params = {"send_email": "true", "email_type": "signup"} if send_email else None
        body = await self._request(
            "POST",
            "members/",
            params=params,
            payload={
                "members": [
                    {
                        "email": email,
                        "name": name,
                        "labels": labels_payload(labels),
                        "note": note,
                    }
                ]
            },
        )
        return MemberRecord.from_api(body["members"][0])

    async def edit(
        self,
        member_id: str,
        labels: Optional[set[str]] = None,
        note: Optional[str] = None,
    ) -> MemberRecord:
        fields: dict[str, Any] = {}
        if labels is not None:
            fields["labels"] = labels_payload(labels)
        if note is not None:
            fields["note"] = note

        body = await self._request(
            "PUT",
            f"members/{member_id}/",
            payload={"members": [fields]},
        )
        return MemberRecord.from_api(body["members"][0])

    async def delete(self, member_id: str) -> None:
        await self._request("DELETE", f"members/{member_id}/")
