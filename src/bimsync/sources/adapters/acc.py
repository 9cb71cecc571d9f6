"""
Enterprise construction cloud adapter (Autodesk Platform Services).

Hierarchy walk uses the Data Management API:

    GET /project/v1/hubs
    GET /project/v1/hubs/{hub}/projects
    GET /project/v1/hubs/{hub}/projects/{project}/topFolders
    GET /data/v1/projects/{project}/folders/{folder}/contents
    GET /data/v1/projects/{project}/items/{item}/versions

Translation uses the Model Derivative API:

    POST /modelderivative/v2/designdata/job
    GET  /modelderivative/v2/designdata/{urn}/manifest

Folder-scoped endpoints need the parent hub/project, so project and item ids
handed out by this adapter are composites ("{hub}/{project}",
"{project}/{item}"). Callers treat them as opaque.
"""

from __future__ import annotations

from collections import deque
from typing import Any

from bimsync.exceptions import NotFoundError, SourceError, TranslationFailure
from bimsync.sources.adapters.base import SourceAdapter, join_ref, split_ref, urlsafe_urn
from bimsync.sources.client import TokenScopedSourceClient, upstream_message
from bimsync.sources.types import (
    Account,
    DerivativeStream,
    Hub,
    Item,
    Manifest,
    Project,
    SourceKind,
    TranslationPhase,
    TranslationStatus,
    Version,
    VersionStatus,
)
from bimsync.utils.logging import get_logger

logger = get_logger("bimsync.sources.acc")

# Hub ids of ACC / BIM 360 accounts carry this prefix; "a." hubs are personal
ACCOUNT_HUB_PREFIX = "b."

PROCESSING_STATUSES = frozenset({"pending", "inprogress"})
FAILED_STATUSES = frozenset({"failed", "timeout"})


class AccAdapter(SourceAdapter):
    """Adapter for the enterprise construction cloud."""

    kind = SourceKind.ACC

    def __init__(self, client: TokenScopedSourceClient, *, max_folder_depth: int = 3):
        super().__init__(client)
        self.max_folder_depth = max_folder_depth

    # --- discovery -------------------------------------------------------

    async def list_accounts(self) -> list[Account]:
        hubs = await self._get_paginated("/project/v1/hubs")
        return [
            Account(id=hub["id"][len(ACCOUNT_HUB_PREFIX) :], display_name=_name(hub))
            for hub in hubs
            if hub.get("id", "").startswith(ACCOUNT_HUB_PREFIX)
        ]

    async def list_hubs(self, account_id: str) -> list[Hub]:
        hubs = await self._get_paginated("/project/v1/hubs")
        wanted = f"{ACCOUNT_HUB_PREFIX}{account_id}"
        matched = [Hub(id=hub["id"], display_name=_name(hub)) for hub in hubs if hub.get("id") == wanted]
        if not matched:
            raise NotFoundError(f"Account '{account_id}' is not visible to this credential")
        return matched

    async def list_projects(self, hub_id: str) -> list[Project]:
        projects = await self._get_paginated(f"/project/v1/hubs/{hub_id}/projects")
        return [Project(id=join_ref(hub_id, p["id"]), display_name=_name(p)) for p in projects]

    async def list_items(self, project_id: str) -> list[Item]:
        hub, project = _split(project_id)
        top_folders = await self._get_paginated(f"/project/v1/hubs/{hub}/projects/{project}/topFolders")

        items: list[Item] = []
        queue: deque[tuple[str, int]] = deque((folder["id"], 1) for folder in top_folders)
        while queue:
            folder_id, depth = queue.popleft()
            contents = await self._get_paginated(f"/data/v1/projects/{project}/folders/{folder_id}/contents")
            for entry in contents:
                if entry.get("type") == "items":
                    items.append(Item(id=join_ref(project, entry["id"]), display_name=_name(entry)))
                elif entry.get("type") == "folders" and depth < self.max_folder_depth:
                    queue.append((entry["id"], depth + 1))
        return items

    async def list_versions(self, item_id: str) -> list[Version]:
        project, item = _split(item_id)
        versions = await self._get_paginated(f"/data/v1/projects/{project}/items/{item}/versions")
        return [_to_version(v) for v in versions]

    def stream_id_for(self, item_id: str) -> str:
        return item_id

    # --- translation -----------------------------------------------------

    async def submit_translation(self, urn: str) -> TranslationStatus:
        job = {
            "input": {"urn": urn},
            "output": {"formats": [{"type": "svf2", "views": ["2d", "3d"]}]},
        }
        status, body = await self.client.post("/modelderivative/v2/designdata/job", json=job)
        if status >= 400:
            raise TranslationFailure(urn, f"job rejected ({status})", upstream_message=upstream_message(body))

        result = (body or {}).get("result") if isinstance(body, dict) else None
        if result == "success":
            # Derivatives matching the requested formats already exist
            logger.debug(f"Derivative for {urn} already exists, reading manifest")
            return await self.translation_status(urn)
        return TranslationStatus(phase=TranslationPhase.PROCESSING, message=result)

    async def translation_status(self, urn: str) -> TranslationStatus:
        status, body = await self.client.get(f"/modelderivative/v2/designdata/{urn}/manifest")
        if status >= 400 or not isinstance(body, dict):
            raise SourceError(f"Unexpected manifest response for {urn} ({status})", status=status)

        state = str(body.get("status", "")).lower()
        progress = body.get("progress")
        if state in PROCESSING_STATUSES:
            return TranslationStatus(phase=TranslationPhase.PROCESSING, progress=progress)
        if state == "success":
            return TranslationStatus(
                phase=TranslationPhase.SUCCEEDED,
                manifest=_to_manifest(urn, body),
                progress=progress,
            )
        if state in FAILED_STATUSES:
            return TranslationStatus(
                phase=TranslationPhase.FAILED,
                message=_error_messages(body) or f"translation {state}",
                progress=progress,
            )
        raise SourceError(f"Unknown translation status '{state}' for {urn}")

    # --- helpers ---------------------------------------------------------

    async def _get_paginated(self, path: str) -> list[dict[str, Any]]:
        """Collect ``data`` across JSON:API ``links.next`` pages."""
        results: list[dict[str, Any]] = []
        next_path: str | None = path
        while next_path:
            _, body = await self.client.get(next_path)
            if not isinstance(body, dict):
                raise SourceError(f"Unexpected response body for {next_path}")
            results.extend(body.get("data") or [])
            next_link = (body.get("links") or {}).get("next")
            next_path = next_link.get("href") if isinstance(next_link, dict) else next_link
        return results


def _split(ref: str) -> list[str]:
    try:
        return split_ref(ref)
    except ValueError as e:
        raise NotFoundError(str(e)) from None


def _name(resource: dict[str, Any]) -> str:
    attributes = resource.get("attributes") or {}
    return attributes.get("displayName") or attributes.get("name") or resource.get("id", "")


def _to_version(resource: dict[str, Any]) -> Version:
    relationships = resource.get("relationships") or {}
    derivative = ((relationships.get("derivatives") or {}).get("data") or {}).get("id")
    storage = (relationships.get("storage") or {}).get("data")
    return Version(
        id=resource["id"],
        display_name=_name(resource),
        urn=derivative or urlsafe_urn(resource["id"]),
        # No storage yet means the upload behind this version hasn't completed
        status=VersionStatus.PUBLISHED if storage else VersionStatus.DRAFT,
        created_at=(resource.get("attributes") or {}).get("createTime"),
    )


def _to_manifest(urn: str, body: dict[str, Any]) -> Manifest:
    streams: list[DerivativeStream] = []
    for derivative in body.get("derivatives") or []:
        output_type = derivative.get("outputType", "svf2")
        geometry = list(_geometry_nodes(derivative.get("children") or []))
        if not geometry:
            geometry = [derivative]
        for node in geometry:
            streams.append(
                DerivativeStream(
                    guid=node.get("guid", ""),
                    name=node.get("name", ""),
                    role=node.get("role", "3d"),
                    output_type=output_type,
                    mime=node.get("mime"),
                )
            )
    return Manifest(urn=urn, streams=tuple(streams))


def _geometry_nodes(children: list[dict[str, Any]]):
    for child in children:
        if child.get("type") == "geometry":
            yield child
        else:
            yield from _geometry_nodes(child.get("children") or [])


def _error_messages(body: dict[str, Any]) -> str | None:
    messages = []
    for derivative in body.get("derivatives") or []:
        for message in derivative.get("messages") or []:
            if message.get("type") == "error" and message.get("message"):
                text = message["message"]
                messages.append(text if isinstance(text, str) else "; ".join(text))
    return "; ".join(messages) or None
