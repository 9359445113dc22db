"""
HTTP client for the rebalancing service.

Talks to a Cruise Control style API: tasks are started with a POST to the
operation endpoint and polled through ``user_tasks``.
"""

from typing import Any, Dict, Optional

import httpx

from logoperator.errors import RebalanceRequestRejected, RebalanceServiceUnavailable
from logoperator.rebalance.task import (
    SERVICE_STATES,
    TaskKind,
    TaskState,
    TaskStatus,
)
from logoperator.utils.logging import get_logger

logger = get_logger(__name__)

API_PREFIX = "/kafkacruisecontrol"
TASK_ID_HEADER = "User-Task-ID"


class RebalanceTaskClient:
    """
    Thin wrapper over the rebalancing service API.

    Holds no task state; the lifecycle controller persists task ids in
    broker status.
    """

    def __init__(
        self,
        base_url: str,
        timeout_ms: int = 10000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize rebalance client.

        Args:
            base_url: Service base URL
            timeout_ms: Request timeout
            transport: Custom transport (tests pass httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_ms / 1000.0,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, params: Dict[str, Any]) -> httpx.Response:
        try:
            response = await self._client.request(method, API_PREFIX + path, params=params)
        except httpx.TransportError as e:
            raise RebalanceServiceUnavailable(
                f"rebalancing service unreachable at {self.base_url}: {e}"
            ) from e

        if response.status_code >= 500:
            raise RebalanceServiceUnavailable(
                f"rebalancing service error {response.status_code}: {response.text[:200]}"
            )
        if response.status_code >= 400:
            raise RebalanceRequestRejected(
                f"rebalancing service rejected {path}: {response.status_code} {response.text[:200]}"
            )

        return response

    async def submit(self, kind: TaskKind, broker_id: Optional[int] = None) -> str:
        """
        Start a task.

        Args:
            kind: Task kind
            broker_id: Target broker (not used for a plain rebalance)

        Returns:
            Task id issued by the service

        Raises:
            RebalanceServiceUnavailable: Service unreachable or 5xx
            RebalanceRequestRejected: Request refused or no task id returned
        """
        params: Dict[str, Any] = {"json": "true"}
        if broker_id is not None and kind != TaskKind.REBALANCE:
            params["brokerid"] = str(broker_id)

        response = await self._request("POST", f"/{kind.value}", params)

        task_id = response.headers.get(TASK_ID_HEADER, "")
        if not task_id:
            raise RebalanceRequestRejected(f"no task id returned for {kind.value}")

        logger.info(
            "Submitted rebalance task",
            kind=kind.value,
            broker_id=broker_id,
            task_id=task_id,
        )

        return task_id

    async def status(self, task_id: str) -> TaskStatus:
        """
        Poll a task.

        A task the service no longer knows about is reported as Failed so the
        caller resubmits it.

        Raises:
            RebalanceServiceUnavailable: Service unreachable or 5xx
            RebalanceRequestRejected: Request refused or malformed answer
        """
        response = await self._request(
            "GET", "/user_tasks", {"user_task_ids": task_id, "json": "true"}
        )

        try:
            body = response.json()
        except ValueError as e:
            raise RebalanceRequestRejected(f"malformed user_tasks answer: {e}") from e

        return self._parse_status(task_id, body)

    def _parse_status(self, task_id: str, body: Any) -> TaskStatus:
        tasks = body.get("userTasks", []) if isinstance(body, dict) else []

        for entry in tasks:
            if entry.get("UserTaskId") != task_id:
                continue

            raw = entry.get("Status", "")
            state = SERVICE_STATES.get(raw)
            if state is None:
                raise RebalanceRequestRejected(f"unknown task status {raw!r}")

            reason = ""
            if state == TaskState.FAILED:
                reason = entry.get("ErrorMessage") or f"task {task_id} completed with error"

            return TaskStatus(task_id=task_id, state=state, reason=reason)

        return TaskStatus(
            task_id=task_id,
            state=TaskState.FAILED,
            reason=f"task {task_id} not known to rebalancing service",
        )
