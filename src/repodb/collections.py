"""Collection store: one entity per file, keyed by type and id.

Entities are markdown files with YAML frontmatter at ``<type>/<id>.md``.
The frontmatter carries every field; the body is a readable summary that is
regenerated on each write and ignored on read.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

import frontmatter

from repodb.errors import EncodingError
from repodb.models import Entity, format_timestamp, parse_timestamp, utcnow, validate_id
from repodb.provisioner import RepoFiles

logger = logging.getLogger(__name__)


class EntityType(str, Enum):
    AGENT = "agents"
    WORKFLOW = "workflows"
    ARCHIVE = "archives"
    PROFILE = "profiles"
    TOOL_CONFIG = "tool_configs"


class CollectionStore:
    """Insert/read/list/update/delete for the simple entity collections."""

    def __init__(self, files: RepoFiles) -> None:
        self._files = files

    # ── Paths & encoding ─────────────────────────────────────

    @staticmethod
    def _path(type: EntityType, entity_id: str) -> str:
        return f"{EntityType(type).value}/{validate_id(entity_id)}.md"

    @staticmethod
    def _render(entity: Entity) -> str:
        title = entity.payload.get("name") or entity.payload.get("title") or entity.id
        body = f"# {title}\n"
        description = entity.payload.get("description")
        if description:
            body += f"\n{description}\n"
        post = frontmatter.Post(
            body,
            id=entity.id,
            owner=entity.owner_id,
            public=entity.is_public,
            created=format_timestamp(entity.created_at),
            updated=format_timestamp(entity.updated_at),
            payload=entity.payload,
        )
        return frontmatter.dumps(post) + "\n"

    @staticmethod
    def _parse(path: str, content: str) -> Entity:
        try:
            meta = frontmatter.loads(content).metadata
        except Exception as e:
            raise EncodingError(path, f"invalid frontmatter: {e}") from e
        if "id" not in meta or "owner" not in meta:
            raise EncodingError(path, "frontmatter lacks id/owner")
        payload = meta.get("payload") or {}
        if not isinstance(payload, dict):
            raise EncodingError(path, "payload is not a mapping")
        try:
            return Entity(
                id=str(meta["id"]),
                owner_id=str(meta["owner"]),
                payload=payload,
                is_public=bool(meta.get("public", False)),
                created_at=parse_timestamp(meta["created"]),
                updated_at=parse_timestamp(meta.get("updated", meta["created"])),
            )
        except (KeyError, ValueError) as e:
            raise EncodingError(path, f"bad timestamp: {e}") from e

    @staticmethod
    def _same_content(a: Entity, b: Entity) -> bool:
        return (a.owner_id, a.is_public, a.payload) == (b.owner_id, b.is_public, b.payload)

    # ── Operations ───────────────────────────────────────────

    async def get(self, type: EntityType, entity_id: str) -> Entity | None:
        path = self._path(type, entity_id)
        remote = await self._files.read(path)
        if remote is None:
            return None
        return self._parse(path, remote.content)

    async def put(self, type: EntityType, entity: Entity) -> Entity:
        """Create or replace an entity; an unchanged payload skips the write."""
        path = self._path(type, entity.id)
        remote = await self._files.read(path)
        if remote is not None:
            existing = self._parse(path, remote.content)
            if self._same_content(existing, entity):
                logger.debug("%s unchanged, skipping write", path)
                return existing
            entity.created_at = existing.created_at
        entity.updated_at = utcnow()

        await self._files.write(
            path,
            self._render(entity),
            f"{'Update' if remote else 'Create'} {EntityType(type).value[:-1]} {entity.id}",
            remote.hash if remote else None,
        )
        return entity

    async def delete(self, type: EntityType, entity_id: str) -> bool:
        path = self._path(type, entity_id)
        remote = await self._files.read(path)
        if remote is None:
            return False
        await self._files.delete(path, remote.hash, f"Delete {EntityType(type).value[:-1]} {entity_id}")
        return True

    async def list_by_owner(self, type: EntityType, owner_id: str) -> list[Entity]:
        return await self._scan(type, lambda e: e.owner_id == owner_id)

    async def list_public(self, type: EntityType) -> list[Entity]:
        """Full scan of the type directory; there is no public index."""
        return await self._scan(type, lambda e: e.is_public)

    async def _scan(self, type: EntityType, keep: Any) -> list[Entity]:
        entities: list[Entity] = []
        for entry in await self._files.list(EntityType(type).value):
            if entry.type != "file" or not entry.name.endswith(".md"):
                continue
            remote = await self._files.read(entry.path)
            if remote is None:
                # Deleted between listing and reading
                continue
            entity = self._parse(entry.path, remote.content)
            if keep(entity):
                entities.append(entity)
        entities.sort(key=lambda e: e.created_at, reverse=True)
        return entities
