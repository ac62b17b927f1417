"""
Fetch per-file diffs for push and pull request events
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from core.entities import Event, FileChange, ResourceRecord
from core.payloads import PullRequestPayload, PushPayload

logger = logging.getLogger(__name__)

MAX_STORED_PATCH_CHARS = 50000


def normalize_file(data: Dict[str, Any]) -> FileChange:
    """API file entry -> FileChange, with the stored patch size capped."""
    change = FileChange.from_dict(data)
    if change.patch is not None and len(change.patch) > MAX_STORED_PATCH_CHARS:
        change = FileChange(
            filename=change.filename,
            status=change.status,
            additions=change.additions,
            deletions=change.deletions,
            changes=change.changes,
            patch=change.patch[:MAX_STORED_PATCH_CHARS],
            previous_filename=change.previous_filename,
        )
    return change


class SourceControlClient(ABC):
    """
    Base interface for diff providers.
    """

    @abstractmethod
    async def fetch_file_changes(
        self, resource: ResourceRecord, event: Event
    ) -> Optional[List[FileChange]]:
        """
        Return the event's file changes, or None when the event kind or
        payload carries nothing to diff. Errors propagate to the caller.
        """
        raise NotImplementedError


class GitHubClient(SourceControlClient):
    def __init__(
        self,
        base_url: str = "https://api.github.com",
        token: Optional[str] = None,
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get_json(self, client: httpx.AsyncClient, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        resp = await client.get(f"{self.base_url}{path}", params=params)
        resp.raise_for_status()
        return resp.json()

    async def fetch_file_changes(
        self, resource: ResourceRecord, event: Event
    ) -> Optional[List[FileChange]]:
        payload = event.typed_payload
        repo_path = f"/repos/{resource.owner}/{resource.name}"

        async with httpx.AsyncClient(
            timeout=self.timeout, headers=self._headers(), transport=self.transport
        ) as client:
            if isinstance(payload, PushPayload):
                if not payload.before or not payload.after:
                    return None
                data = await self._get_json(client, f"{repo_path}/compare/{payload.before}...{payload.after}")
                files = data.get("files") or []

            elif isinstance(payload, PullRequestPayload):
                if not payload.number:
                    return None
                files = await self._get_json(
                    client, f"{repo_path}/pulls/{payload.number}/files", params={"per_page": 100}
                )

            else:
                return None

        changes = [normalize_file(f) for f in files]
        logger.info(
            f"Fetched {len(changes)} file changes for {resource.full_name}",
            extra={"event_id": event.id, "resource_id": resource.id},
        )
        return changes
