"""
Action dispatchers.

The scheduling core hands every fire to an `ActionDispatcher`. It never retries
and treats a raised exception exactly like a failed `ActionResult`.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Tuple
from urllib.parse import quote

import requests

from ..config import Settings
from ..models.schedule import ScheduleAction

logger = logging.getLogger(__name__)

MAX_OUTPUT_CHARS = 1000
DEFAULT_SIGNAL = 15  # SIGTERM


@dataclass(frozen=True)
class ActionResult:
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None


class ActionDispatcher(Protocol):
    """Performs one container action; may block and may raise."""

    def execute(self, container_name: str, action: str, action_params: Dict[str, Any]) -> ActionResult:
        ...


def _truncate(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    return text[:MAX_OUTPUT_CHARS] if len(text) > MAX_OUTPUT_CHARS else text


class HttpActionDispatcher:
    """
    Calls a container control API.

    Actions map onto `POST {base_url}/containers/{name}/{verb}`; snapshots go to
    `POST {base_url}/snapshots`. Any 2xx response counts as success.
    """

    def __init__(self, base_url: str, token: str = "", timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def build_request(self, container_name: str, action: str, action_params: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        """Return (url, json payload) for an action."""
        params = dict(action_params or {})
        action = ScheduleAction(action)
        container_path = f"{self.base_url}/containers/{quote(container_name, safe='')}"

        if action == ScheduleAction.SNAPSHOT:
            return f"{self.base_url}/snapshots", {"container_name": container_name, **params}
        if action == ScheduleAction.SIGNAL:
            params.setdefault("signal", DEFAULT_SIGNAL)
            return f"{container_path}/signal", params
        if action in (ScheduleAction.SCALE_UP, ScheduleAction.SCALE_DOWN):
            params.setdefault("direction", "up" if action == ScheduleAction.SCALE_UP else "down")
            params.setdefault("count", 1)
            return f"{container_path}/scale", params
        return f"{container_path}/{action.value}", params

    def execute(self, container_name: str, action: str, action_params: Dict[str, Any]) -> ActionResult:
        url, payload = self.build_request(container_name, action, action_params)
        logger.info("Dispatching %s to %s: %s", action, container_name, url)

        try:
            response = requests.post(url, json=payload, headers=self._headers(), timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            error_msg = f"Container API request failed: {str(exc)}"
            logger.error("Action %s on '%s' - %s", action, container_name, error_msg)
            return ActionResult(success=False, error=error_msg)

        output = _truncate(response.text)
        if 200 <= response.status_code < 300:
            logger.info("Action %s on '%s' succeeded. Status: %s", action, container_name, response.status_code)
            return ActionResult(success=True, output=output)

        error_msg = f"Container API returned status {response.status_code}"
        logger.error("Action %s on '%s' - %s", action, container_name, error_msg)
        return ActionResult(success=False, output=output, error=error_msg)


class LoggingActionDispatcher:
    """Dry-run dispatcher: logs the action and reports success."""

    def execute(self, container_name: str, action: str, action_params: Dict[str, Any]) -> ActionResult:
        logger.info("[dry-run] %s on '%s' params=%s", action, container_name, action_params or {})
        return ActionResult(success=True, output=f"dry-run: {action} {container_name}")


def build_dispatcher(settings: Settings) -> ActionDispatcher:
    if settings.container_api_url:
        return HttpActionDispatcher(
            settings.container_api_url,
            token=settings.container_api_token,
            timeout=settings.container_api_timeout_seconds,
        )
    logger.warning("CONTAINER_API_URL is not set; schedules will run in dry-run mode")
    return LoggingActionDispatcher()
