"""LinkedIn profile via the OpenID Connect userinfo endpoint."""

from __future__ import annotations

from typing import Any

from mnemo.services.provider_client import ProviderClient

USERINFO_URL = "https://api.linkedin.com/v2/userinfo"


class LinkedInClient(ProviderClient):
    provider = "linkedin"

    async def get_profile(self, token: str) -> dict[str, Any]:
        info = await self._request("GET", USERINFO_URL, token, operation="userinfo.get")
        return {
            "id": info.get("sub"),
            "name": info.get("name") or " ".join(
                part for part in (info.get("given_name"), info.get("family_name")) if part
            ),
            "email": info.get("email"),
            "picture": info.get("picture"),
            "locale": info.get("locale"),
        }
