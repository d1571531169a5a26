"""Slack Web API client for deployment notifications."""

from typing import Any

import httpx

from argocd_deploy.config import SlackConfig
from argocd_deploy.core.exceptions import AuthenticationError, SlackError
from argocd_deploy.core.logging import StructuredLogger

logger = StructuredLogger(__name__)

BASE_URL = "https://slack.com/api"

# Error codes that mean the channel setting, not Slack, is at fault
CHANNEL_ERRORS = {
    "channel_not_found": "channel does not exist or the bot cannot see it",
    "not_in_channel": "bot has not been invited to the channel",
    "is_archived": "channel is archived",
}
AUTH_ERRORS = ("invalid_auth", "not_authed", "token_revoked", "account_inactive")


class SlackClient:
    """Posts messages with a bot token."""

    def __init__(self, config: SlackConfig):
        self._config = config
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            token = self._config.get_token()
            if not token:
                raise AuthenticationError("Slack token not configured (set SLACK_BOT_TOKEN)")

            self._client = httpx.Client(
                base_url=BASE_URL,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json; charset=utf-8",
                },
                timeout=self._config.timeout,
            )
        return self._client

    def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST to a Web API method; Slack reports most failures as ok=false with HTTP 200."""
        try:
            response = self.client.post(method, json=payload)
        except httpx.RequestError as e:
            raise SlackError(f"Request failed: {e}")

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "")
            raise SlackError(
                f"Slack rate limited {method}",
                error_code="ratelimited",
                details={"retry_after": retry_after},
            )
        if response.is_error:
            raise SlackError(f"HTTP {response.status_code} from {method}", error_code=str(response.status_code))

        data = response.json()
        if data.get("ok"):
            return data

        error_code = data.get("error", "unknown_error")
        if error_code in AUTH_ERRORS:
            raise AuthenticationError(f"Slack rejected the bot token: {error_code}")
        hint = CHANNEL_ERRORS.get(error_code)
        message = f"Slack API error: {error_code}" + (f" ({hint})" if hint else "")
        raise SlackError(message, error_code=error_code, details={"channel": payload.get("channel")})

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            self._client.close()
            self._client = None

    def __enter__(self) -> "SlackClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def post_message(
        self,
        channel: str,
        text: str,
        blocks: list[dict[str, Any]] | None = None,
        username: str | None = None,
        icon_emoji: str | None = None,
    ) -> dict[str, Any]:
        """Post mrkdwn text to a channel, user or conversation ID; returns the posted message."""
        payload: dict[str, Any] = {
            "channel": channel,
            "text": text,
            "mrkdwn": True,
            "unfurl_links": False,
            "username": username or self._config.username,
            "icon_emoji": icon_emoji or self._config.icon_emoji,
        }
        if blocks:
            payload["blocks"] = blocks

        data = self._call("chat.postMessage", payload)
        logger.debug("Slack message posted", channel=data.get("channel", channel), ts=data.get("ts"))
        return data.get("message", {})
