"""Gmail mail source: lists inbox message ids and fetches full messages."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from mailvec.services.errors import MailSourceError

logger = logging.getLogger(__name__)


class MailSource(ABC):
    """Where synced messages come from."""

    @abstractmethod
    async def list_inbox_message_ids(self, max_results: int) -> list[str]:
        ...

    @abstractmethod
    async def fetch_message(self, message_id: str) -> dict:
        ...

    async def close(self):
        pass


class GmailMailSource(MailSource):
    """Gmail REST API client.

    Obtaining the OAuth access token is someone else's job; this class only
    needs a valid bearer token. Pacing is applied by the caller.
    """

    BASE_URL = "https://gmail.googleapis.com/gmail/v1"

    def __init__(
        self,
        access_token: str,
        user_id: str = "me",
        query: str = "in:inbox",
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not access_token:
            raise MailSourceError("Gmail access token is not configured")
        self.user_id = user_id
        self.query = query
        self._base_url = (base_url or self.BASE_URL).rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=30.0)
        self._headers = {"Authorization": f"Bearer {access_token}"}

    async def _request(self, path: str, params: Optional[dict] = None) -> dict:
        url = f"{self._base_url}/users/{self.user_id}/{path}"
        try:
            response = await self._client.get(url, params=params, headers=self._headers)
        except httpx.HTTPError as e:
            logger.error(f"Gmail request failed: {e}")
            raise MailSourceError(f"Gmail request failed: {e}") from e

        if response.status_code >= 400:
            message = response.text
            try:
                error_info = response.json().get("error", {})
                if isinstance(error_info, dict):
                    message = str(error_info.get("message", message))
            except ValueError:
                pass
            logger.error(f"Gmail API error {response.status_code}: {message}")
            raise MailSourceError(message, status_code=response.status_code)

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Gmail returned a non-JSON body for {path}")
            raise MailSourceError(f"Malformed Gmail response: {e}", status_code=response.status_code) from e
        if not isinstance(data, dict):
            raise MailSourceError("Malformed Gmail response: expected a JSON object", status_code=response.status_code)
        return data

    async def list_inbox_message_ids(self, max_results: int) -> list[str]:
        """Ids of the newest inbox messages, in the order Gmail returns them."""
        result = await self._request(
            "messages",
            {"maxResults": str(max_results), "q": self.query},
        )
        ids = []
        for msg in result.get("messages") or []:
            if isinstance(msg, dict) and msg.get("id"):
                ids.append(str(msg["id"]))
        return ids

    async def fetch_message(self, message_id: str) -> dict:
        """Full message resource (headers, payload tree, snippet)."""
        return await self._request(f"messages/{message_id}", {"format": "full"})

    async def close(self):
        await self._client.aclose()
