"""
Task sync service HTTP client.

Used by a disconnected client to push its offline changes and pull
what it has not seen yet.
"""

import logging
from datetime import datetime
from typing import Optional, Sequence, Union
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..storage.clock import format_timestamp
from ..storage.models import Task
from ..sync.changes import InboundChange

logger = logging.getLogger(__name__)


class TaskAPIError(Exception):
    """Raised when the task service returns an error."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class TaskAPINotFoundError(TaskAPIError):
    """Raised when the target task does not exist."""
    pass


def encode_change(change: InboundChange) -> dict:
    """Convert an inbound change into its sync request representation."""
    payload = {"action": change.action.value}

    if change.local_id is not None:
        payload["localId"] = change.local_id
    if change.server_id is not None:
        payload["serverId"] = change.server_id
    if change.data is not None:
        data = {
            "title": change.data.title,
            "description": change.data.description,
            "completed": change.data.completed,
            "updatedAt": change.data.updated_at,
        }
        payload["data"] = {k: v for k, v in data.items() if v is not None}

    return payload


class TaskSyncClient:
    """
    Client for the task sync service.

    Handles:
    - Retry of idempotent requests on transient failures
    - Error translation to TaskAPIError

    POST requests (create, sync) are never retried automatically: a
    repeated sync call creates every task in the batch again.

    Usage:
        with TaskSyncClient("http://localhost:3000") as client:
            response = client.sync(checkpoint, pending_changes)
            checkpoint = response["syncTimestamp"]
    """

    TASKS_ENDPOINT = "/tasks"
    TASK_ENDPOINT = "/tasks/{task_id}"
    TOGGLE_ENDPOINT = "/tasks/{task_id}/toggle"
    CHANGES_ENDPOINT = "/tasks/changes"
    SYNC_ENDPOINT = "/tasks/sync"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
    ):
        """
        Initialize client.

        Args:
            base_url: Service URL (e.g., http://localhost:3000)
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for idempotent requests
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self._session = requests.Session()

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "PUT", "DELETE"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

        self._session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
        })

        logger.info(f"Task sync client initialized for {self.base_url}")

    def __repr__(self) -> str:
        return f"TaskSyncClient(base_url='{self.base_url}')"

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> Optional[Union[dict, list]]:
        """
        Make a request to the service.

        Args:
            method: HTTP method
            endpoint: API endpoint path
            params: Query parameters
            json: Request body

        Returns:
            Parsed JSON response, None for empty responses

        Raises:
            TaskAPINotFoundError: If the service answers 404
            TaskAPIError: If the request fails
        """
        url = urljoin(self.base_url + "/", endpoint.lstrip("/"))

        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json,
                timeout=self.timeout,
            )
            response.raise_for_status()

            if response.status_code == 204 or not response.content:
                return None
            return response.json()

        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            error_msg = f"Task API error: {e}"
            error_body = None
            try:
                error_body = e.response.json()
                if "detail" in error_body:
                    error_msg = f"Task API error: {error_body['detail']}"
            except (ValueError, AttributeError, TypeError):
                pass

            if status_code == 404:
                raise TaskAPINotFoundError(error_msg, status_code=404, response=error_body) from e

            logger.error(error_msg)
            raise TaskAPIError(error_msg, status_code=status_code, response=error_body) from e

        except requests.exceptions.RequestException as e:
            error_msg = f"Task request failed: {e}"
            logger.error(error_msg)
            raise TaskAPIError(error_msg) from e

    def list_tasks(self) -> list[Task]:
        """Fetch live tasks, newest first."""
        data = self._request("GET", self.TASKS_ENDPOINT)
        return [Task.from_dict(item) for item in data]

    def get_task(self, task_id: str) -> Task:
        data = self._request("GET", self.TASK_ENDPOINT.format(task_id=task_id))
        return Task.from_dict(data)

    def create_task(self, title: str, description: str) -> Task:
        data = self._request(
            "POST",
            self.TASKS_ENDPOINT,
            json={"title": title, "description": description},
        )
        task = Task.from_dict(data)
        logger.info(f"Created task {task.id}")
        return task

    def update_task(
        self,
        task_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        completed: Optional[bool] = None,
    ) -> Task:
        """Update the given fields of a task; None leaves a field unchanged."""
        body = {
            "title": title,
            "description": description,
            "completed": completed,
        }
        data = self._request(
            "PUT",
            self.TASK_ENDPOINT.format(task_id=task_id),
            json={k: v for k, v in body.items() if v is not None},
        )
        return Task.from_dict(data)

    def toggle_task(self, task_id: str) -> Task:
        data = self._request("PATCH", self.TOGGLE_ENDPOINT.format(task_id=task_id))
        return Task.from_dict(data)

    def delete_task(self, task_id: str) -> None:
        self._request("DELETE", self.TASK_ENDPOINT.format(task_id=task_id))
        logger.info(f"Deleted task {task_id}")

    def changes_since(self, since: Union[str, datetime]) -> list[Task]:
        """
        Fetch tasks changed after a checkpoint, tombstones included.

        Args:
            since: Checkpoint as ISO-8601 string or datetime
        """
        if isinstance(since, datetime):
            since = format_timestamp(since)

        data = self._request("GET", self.CHANGES_ENDPOINT, params={"since": since})
        return [Task.from_dict(item) for item in data]

    def sync(
        self,
        last_sync_timestamp: Union[str, datetime],
        changes: Sequence[InboundChange] = (),
    ) -> dict:
        """
        Push local changes and pull server changes.

        Args:
            last_sync_timestamp: Checkpoint from the previous sync
            changes: Local changes in the order they were made

        Returns:
            Response body with syncTimestamp and serverChanges
        """
        if isinstance(last_sync_timestamp, datetime):
            last_sync_timestamp = format_timestamp(last_sync_timestamp)

        body = {
            "lastSyncTimestamp": last_sync_timestamp,
            "changes": [encode_change(change) for change in changes],
        }

        logger.info(f"Syncing {len(body['changes'])} changes since {last_sync_timestamp}")
        result = self._request("POST", self.SYNC_ENDPOINT, json=body)
        logger.info(f"Received {len(result['serverChanges'])} server changes")
        return result

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()
        logger.debug("Task sync client session closed")

    def __enter__(self) -> "TaskSyncClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
