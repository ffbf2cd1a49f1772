"""
Outbound task notifications to a third-party HTTP endpoint.

``send`` is fire-and-forget: it schedules delivery on the running loop and
returns immediately. Delivery uses a bounded timeout and only ever logs
failures.
"""

import asyncio
import logging
from typing import Any, Dict, Literal, Optional, Set

import httpx

from taskdesk.core.config import Settings

logger = logging.getLogger(__name__)

NotificationType = Literal[
    "TASK_CREATED", "TASK_ASSIGNED", "TASK_STATUS_UPDATE", "TASK_DELETED"
]


def build_payload(type: NotificationType, task: Dict[str, Any], recipient_id: str) -> dict:
    task_id = str(task.get("id")) if task.get("id") is not None else None
    title = task.get("title")
    label = f"Task {title} ({task_id})" if title else f"Task {task_id}"
    return {
        "to": str(recipient_id),
        "type": type,
        "data": {
            "subject": f"Task update: {type}",
            "message": f"{label} was {type.lower()}",
            "taskId": task_id,
        },
    }


class Notifier:
    def __init__(
        self,
        url: Optional[str],
        api_key: Optional[str],
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._pending: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "Notifier":
        return cls(
            settings.notification_service_url,
            settings.notification_api_key,
            timeout=settings.notification_timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        return bool(self.url and self.api_key)

    def send(
        self, type: NotificationType, task: Dict[str, Any], recipient_id: str
    ) -> Optional[asyncio.Task]:
        """Schedule delivery and return the pending task (None if skipped)."""
        if not self.configured:
            logger.warning("Notification service is not configured. Skipping notification.")
            return None

        payload = build_payload(type, task, recipient_id)
        pending = asyncio.get_running_loop().create_task(self._deliver(payload))
        # Keep a strong reference until the delivery finishes
        self._pending.add(pending)
        pending.add_done_callback(self._pending.discard)
        return pending

    async def _deliver(self, payload: dict) -> None:
        task_id = payload["data"]["taskId"]
        logger.info(f"Sending {payload['type']} notification to user {payload['to']}")
        try:
            resp = await self._client.post(
                self.url,
                json=payload,
                headers={"X-API-Key": self.api_key},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Notification service API error for task {task_id}: "
                f"{e.response.status_code} {e.response.text}"
            )
        except httpx.HTTPError as e:
            logger.error(f"Error sending notification for task {task_id}: {e}")
        else:
            logger.info(f"Notification sent successfully for task {task_id}")

    async def drain(self) -> None:
        """Wait for in-flight deliveries."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self._client.aclose()
