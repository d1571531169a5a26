"""Argo CD API client using httpx."""

import json
from typing import Any

import httpx

from argocd_deploy.config import ArgoCDConfig
from argocd_deploy.core.exceptions import ArgoCDError, AuthenticationError
from argocd_deploy.core.logging import StructuredLogger

logger = StructuredLogger(__name__)


class ArgoCDClient:
    """Client for Argo CD REST API."""

    def __init__(self, config: ArgoCDConfig):
        self._config = config
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            url = self._config.get_url()
            token = self._config.get_token()

            if not url:
                raise ArgoCDError("Argo CD URL not configured")
            if not token:
                raise AuthenticationError("Argo CD token not configured")

            if not url.startswith(("http://", "https://")):
                url = f"https://{url}"

            headers = {
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            }

            self._client = httpx.Client(
                base_url=url.rstrip("/"),
                headers=headers,
                timeout=self._config.timeout,
                verify=not self._config.insecure,
            )

            logger.debug("Created Argo CD client", url=url)

        return self._client

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, translating transport errors."""
        try:
            response = self.client.request(method, path, **kwargs)
            response.raise_for_status()
            return response

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            try:
                error_data = e.response.json()
                message = error_data.get("message", str(e))
            except Exception:
                message = e.response.text or str(e)
            if status_code in (401, 403):
                raise AuthenticationError(f"Argo CD rejected credentials: {message}")
            raise ArgoCDError(message, status_code=status_code)

        except httpx.RequestError as e:
            raise ArgoCDError(f"Request failed: {e}")

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Make an API request."""
        response = self._send(method, path, **kwargs)
        if response.content:
            return response.json()
        return None

    def get(self, path: str, **kwargs: Any) -> Any:
        """Make a GET request."""
        return self._request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> Any:
        """Make a POST request."""
        return self._request("POST", path, **kwargs)

    def patch(self, path: str, **kwargs: Any) -> Any:
        """Make a PATCH request."""
        return self._request("PATCH", path, **kwargs)

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            self._client.close()
            self._client = None

    def __enter__(self) -> "ArgoCDClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # Application operations
    def get_application(self, name: str) -> dict[str, Any]:
        """Get application by name."""
        return self.get(f"/api/v1/applications/{name}")

    def sync_application(self, name: str, prune: bool = False) -> dict[str, Any]:
        """Trigger sync of the application's target revision."""
        payload: dict[str, Any] = {"prune": prune, "dryRun": False}
        return self.post(f"/api/v1/applications/{name}/sync", json=payload)

    def rollback_application(self, name: str, revision_id: int) -> dict[str, Any]:
        """Rollback application to a previous deployment."""
        return self.post(f"/api/v1/applications/{name}/rollback", json={"id": revision_id})

    def get_application_history(self, name: str) -> list[dict[str, Any]]:
        """Get deployment history."""
        app = self.get_application(name)
        return app.get("status", {}).get("history", []) or []

    def patch_application(self, name: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Apply a JSON merge patch to the application."""
        payload = {
            "name": name,
            "patch": json.dumps(patch),
            "patchType": "merge",
        }
        return self.patch(f"/api/v1/applications/{name}", json=payload)

    def set_automated_sync(self, name: str, enabled: bool) -> dict[str, Any]:
        """Enable or disable the automated sync policy."""
        automated: dict[str, Any] | None = {} if enabled else None
        return self.patch_application(name, {"spec": {"syncPolicy": {"automated": automated}}})

    def get_application_logs(self, name: str, tail_lines: int = 1000) -> list[str]:
        """Get recent container logs for all pods of an application.

        The endpoint streams newline-delimited JSON envelopes; each carries
        one log line under result.content.
        """
        response = self._send(
            "GET",
            f"/api/v1/applications/{name}/logs",
            params={"tailLines": tail_lines, "follow": "false"},
        )
        lines: list[str] = []
        for raw in response.text.splitlines():
            if not raw.strip():
                continue
            try:
                envelope = json.loads(raw)
            except json.JSONDecodeError:
                lines.append(raw)
                continue
            result = envelope.get("result", {})
            content = result.get("content")
            if content is None:
                continue
            pod = result.get("podName")
            lines.append(f"[{pod}] {content}" if pod else content)
        return lines
