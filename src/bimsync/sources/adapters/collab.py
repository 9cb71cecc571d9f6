"""
Model collaboration / version control service adapter (Speckle).

Discovery goes through the GraphQL endpoint (``POST /graphql``):

    activeUser                    -> account
    activeUser.workspaces         -> hubs
    workspace(id).projects        -> projects
    project(id).models            -> items
    project.model(id).versions    -> versions

Versions reference an already-renderable object tree, so "translation" only
confirms the root object exists in the object store
(``GET /objects/{project}/{object}/single``) and always completes at submit.
"""

from __future__ import annotations

from typing import Any

from bimsync.exceptions import AuthError, NotFoundError, SourceError, TransientNetworkError
from bimsync.sources.adapters.base import SourceAdapter, join_ref, split_ref
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
)

GRAPHQL_PATH = "/graphql"

AUTH_CODES = frozenset({"UNAUTHENTICATED", "FORBIDDEN", "UNAUTHORIZED_ACCESS_ERROR"})

ACTIVE_USER_QUERY = """
query ActiveUser {
  activeUser { id name }
}
"""

WORKSPACES_QUERY = """
query Workspaces {
  activeUser {
    id
    workspaces { items { id name } }
  }
}
"""

PROJECTS_QUERY = """
query WorkspaceProjects($id: String!) {
  workspace(id: $id) {
    projects { items { id name } }
  }
}
"""

MODELS_QUERY = """
query ProjectModels($id: String!) {
  project(id: $id) {
    models { items { id name } }
  }
}
"""

VERSIONS_QUERY = """
query ModelVersions($projectId: String!, $modelId: String!) {
  project(id: $projectId) {
    model(id: $modelId) {
      versions(limit: 50) {
        items { id message referencedObject createdAt }
      }
    }
  }
}
"""


class CollabAdapter(SourceAdapter):
    """Adapter for the model collaboration service."""

    kind = SourceKind.COLLAB

    # --- discovery -------------------------------------------------------

    async def list_accounts(self) -> list[Account]:
        data = await self._query(ACTIVE_USER_QUERY)
        user = data.get("activeUser")
        if not user:
            raise AuthError("Credential is not bound to a user account")
        return [Account(id=user["id"], display_name=user.get("name") or user["id"])]

    async def list_hubs(self, account_id: str) -> list[Hub]:
        data = await self._query(WORKSPACES_QUERY)
        user = data.get("activeUser")
        if not user:
            raise AuthError("Credential is not bound to a user account")
        if user["id"] != account_id:
            raise NotFoundError(f"Account '{account_id}' is not visible to this credential")
        workspaces = (user.get("workspaces") or {}).get("items") or []
        return [Hub(id=w["id"], display_name=w.get("name") or w["id"]) for w in workspaces]

    async def list_projects(self, hub_id: str) -> list[Project]:
        data = await self._query(PROJECTS_QUERY, {"id": hub_id})
        workspace = _require(data, "workspace", hub_id)
        projects = (workspace.get("projects") or {}).get("items") or []
        return [Project(id=p["id"], display_name=p.get("name") or p["id"]) for p in projects]

    async def list_items(self, project_id: str) -> list[Item]:
        data = await self._query(MODELS_QUERY, {"id": project_id})
        project = _require(data, "project", project_id)
        models = (project.get("models") or {}).get("items") or []
        return [Item(id=join_ref(project_id, m["id"]), display_name=m.get("name") or m["id"]) for m in models]

    async def list_versions(self, item_id: str) -> list[Version]:
        project_id, model_id = _split(item_id)
        data = await self._query(VERSIONS_QUERY, {"projectId": project_id, "modelId": model_id})
        project = _require(data, "project", project_id)
        model = _require(project, "model", model_id)
        versions = (model.get("versions") or {}).get("items") or []
        return [to_version(project_id, v) for v in versions]

    def stream_id_for(self, item_id: str) -> str:
        project_id, _ = _split(item_id)
        return project_id

    def item_id_for_event(self, stream_id: str, payload_item_id: str | None) -> str | None:
        if not payload_item_id:
            return None
        return join_ref(stream_id, payload_item_id)

    # --- translation -----------------------------------------------------

    async def submit_translation(self, urn: str) -> TranslationStatus:
        return await self.translation_status(urn)

    async def translation_status(self, urn: str) -> TranslationStatus:
        project_id, object_id = _split(urn)
        _, body = await self.client.get(f"/objects/{project_id}/{object_id}/single")
        root = body if isinstance(body, dict) else {}
        stream = DerivativeStream(
            guid=object_id,
            name=root.get("speckle_type", ""),
            role="3d",
            output_type="speckle",
            mime="application/json",
        )
        return TranslationStatus(phase=TranslationPhase.SUCCEEDED, manifest=Manifest(urn=urn, streams=(stream,)))

    # --- helpers ---------------------------------------------------------

    async def _query(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        status, body = await self.client.post(GRAPHQL_PATH, json={"query": query, "variables": variables or {}})
        if not isinstance(body, dict):
            raise SourceError(f"Unexpected GraphQL response ({status})", status=status)
        errors = body.get("errors")
        if errors:
            raise _graphql_error(errors, status)
        return body.get("data") or {}


def to_version(project_id: str, resource: dict[str, Any]) -> Version:
    return Version(
        id=resource["id"],
        display_name=resource.get("message") or resource["id"],
        urn=join_ref(project_id, resource["referencedObject"]),
        created_at=resource.get("createdAt"),
    )


def _split(ref: str) -> list[str]:
    try:
        return split_ref(ref)
    except ValueError as e:
        raise NotFoundError(str(e)) from None


def _require(data: dict[str, Any], key: str, ref: str) -> dict[str, Any]:
    value = data.get(key)
    if not value:
        raise NotFoundError(f"{key.capitalize()} '{ref}' not found")
    return value


def _graphql_error(errors: list[dict[str, Any]], status: int) -> Exception:
    first = errors[0] if errors else {}
    message = first.get("message") or "GraphQL error"
    code = str((first.get("extensions") or {}).get("code") or "")
    if code in AUTH_CODES:
        return AuthError(message, status=status)
    if "NOT_FOUND" in code:
        return NotFoundError(message, status=status)
    if status >= 500:
        return TransientNetworkError(message, status=status)
    return SourceError(message, status=status, details={"code": code})
