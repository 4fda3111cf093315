"""Versioned JSON snapshots of the whole media library.

Format::

    {"version": 7, "exportedAt": "<ISO-8601>", "data": {
        "scripts": [...], "images": [...], "videos": [...], "audios": [...],
        "prompts": [...], "scriptAssetMappings": [...]}}

Field names are camelCase so snapshots line up with backups written by the
browser build of the library. Asset payloads are base64 encoded.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scenemedia.core.exceptions import BackupFormatError, InvalidAssetKindError, StorageError
from scenemedia.db.models import (
    ASSET_MODELS,
    AssetKind,
    AssetRecord,
    Audio,
    Prompt,
    Script,
    ScriptAssetMapping,
    Video,
)
from scenemedia.services.assets import AssetStore, utcnow
from scenemedia.services.mappings import MappingKey, MappingStore, mapping_key


logger = logging.getLogger(__name__)

BACKUP_VERSION = 7
MAPPINGS_COLLECTION = "scriptAssetMappings"

_SCRIPT_FIELDS = {"id", "title", "acts"}
_PROMPT_FIELDS = {"id", "title", "category", "prompt", "description", "tags", "createdAt", "updatedAt"}


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise BackupFormatError(f"invalid timestamp in backup: {value!r}") from exc


def serialize_asset(row: AssetRecord) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": row.id,
        "data": base64.b64encode(row.data or b"").decode("ascii"),
        "uploadSource": row.upload_source,
        "originalFilename": row.original_filename,
        "uploadedAt": _iso(row.uploaded_at),
        "mimeType": row.mime_type,
    }
    if isinstance(row, (Video, Audio)):
        payload["duration"] = row.duration
    if isinstance(row, Audio):
        payload["isFullScript"] = row.is_full_script
    return payload


def serialize_script(row: Script) -> dict[str, Any]:
    return {**(row.metadata_ or {}), "id": row.id, "title": row.title, "acts": row.acts or []}


def serialize_prompt(row: Prompt) -> dict[str, Any]:
    return {
        **(row.metadata_ or {}),
        "id": row.id,
        "title": row.title,
        "category": row.category,
        "prompt": row.prompt,
        "description": row.description,
        "tags": row.tags or [],
        "createdAt": _iso(row.created_at),
        "updatedAt": _iso(row.updated_at),
    }


def serialize_mapping(row: ScriptAssetMapping) -> dict[str, Any]:
    return {
        "id": row.id,
        "scriptId": row.script_id,
        "sceneId": row.scene_id,
        "assetType": row.asset_type,
        "assetId": row.asset_id,
        "linkedAt": _iso(row.linked_at),
        "role": row.role,
    }


def _records(data: dict[str, Any], collection: str) -> list[dict[str, Any]]:
    items = data.get(collection) or []
    if not isinstance(items, list):
        raise BackupFormatError(f"backup collection {collection!r} is not a list")
    for item in items:
        if not isinstance(item, dict):
            raise BackupFormatError(f"invalid {collection} entry in backup: {item!r}")
    return items


def _decode_data(value: Any) -> bytes | None:
    if not isinstance(value, str):
        return None
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None


class BackupService:
    def __init__(self, db: Session, batch_size: int = 500):
        self.db = db
        self.batch_size = batch_size
        self.assets = AssetStore(db)
        self.mappings = MappingStore(db)

    def export_snapshot(self) -> dict[str, Any]:
        data: dict[str, list] = {"scripts": [serialize_script(row) for row in self._iter_rows(Script)]}
        for kind in AssetKind:
            data[kind.collection] = [serialize_asset(row) for row in self.assets.iter_assets(kind, self.batch_size)]
        data["prompts"] = [serialize_prompt(row) for row in self._iter_rows(Prompt)]
        data[MAPPINGS_COLLECTION] = [serialize_mapping(row) for row in self.mappings.iter_mappings(self.batch_size)]
        snapshot = {"version": BACKUP_VERSION, "exportedAt": utcnow().isoformat(), "data": data}
        logger.info(
            "database_exported",
            extra={"counts": {name: len(rows) for name, rows in data.items()}},
        )
        return snapshot

    def export_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.export_snapshot(), indent=indent, ensure_ascii=False)

    def is_empty(self) -> bool:
        if self.db.execute(select(Script.id).limit(1)).first() is not None:
            return False
        if self.mappings.count():
            return False
        return not self.assets.count_all()

    def clear_all_data(self) -> None:
        """Empty every table in a single transaction."""
        try:
            self._delete_all()
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("database_clear_failed")
            raise StorageError(f"failed to clear database: {exc}") from exc
        logger.warning("database_cleared")

    def restore_snapshot(self, snapshot: dict[str, Any], *, replace: bool = False) -> dict[str, int]:
        """Load an exported snapshot. Returns rows restored per collection.

        Without ``replace`` the database must be empty. Mappings whose key is
        already taken (a filled scene slot, or the same script-level asset)
        are skipped, first by id wins, and counted under ``skippedMappings``.
        """
        if not isinstance(snapshot, dict) or snapshot.get("version") != BACKUP_VERSION:
            version = snapshot.get("version") if isinstance(snapshot, dict) else None
            raise BackupFormatError(f"unsupported backup version: {version!r}")
        data = snapshot.get("data")
        if not isinstance(data, dict):
            raise BackupFormatError("backup has no data section")
        if not replace and not self.is_empty():
            raise BackupFormatError("database is not empty; restore with replace=True to overwrite")

        counts: dict[str, int] = {}
        try:
            if replace:
                self._delete_all()
            counts["scripts"] = self._restore_scripts(_records(data, "scripts"))
            for kind in AssetKind:
                counts[kind.collection] = self._restore_assets(kind, _records(data, kind.collection))
            counts["prompts"] = self._restore_prompts(_records(data, "prompts"))
            counts[MAPPINGS_COLLECTION], counts["skippedMappings"] = self._restore_mappings(
                _records(data, MAPPINGS_COLLECTION)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("database_restore_failed")
            raise StorageError(f"failed to restore backup: {exc}") from exc
        except BackupFormatError:
            self.db.rollback()
            raise

        logger.info("database_restored", extra={"counts": counts})
        return counts

    def _iter_rows(self, model):
        last_id = 0
        while True:
            stmt = select(model).where(model.id > last_id).order_by(model.id.asc()).limit(self.batch_size)
            batch = list(self.db.execute(stmt).scalars().all())
            if not batch:
                return
            yield from batch
            last_id = batch[-1].id

    def _delete_all(self) -> None:
        for model in (ScriptAssetMapping, *ASSET_MODELS.values(), Prompt, Script):
            self.db.execute(delete(model))

    def _restore_scripts(self, items: list[dict]) -> int:
        for item in items:
            self.db.add(
                Script(
                    id=item.get("id"),
                    title=item.get("title") or "Untitled",
                    acts=item.get("acts") or [],
                    metadata_={k: v for k, v in item.items() if k not in _SCRIPT_FIELDS},
                )
            )
        self.db.flush()
        return len(items)

    def _restore_assets(self, kind: AssetKind, items: list[dict]) -> int:
        model = ASSET_MODELS[kind]
        missing_data = 0
        for item in items:
            payload = _decode_data(item.get("data"))
            if payload is None:
                missing_data += 1
                payload = b""
            row = model(
                id=item.get("id"),
                data=payload,
                upload_source=item.get("uploadSource"),
                original_filename=item.get("originalFilename"),
                uploaded_at=_parse_datetime(item.get("uploadedAt")),
                mime_type=item.get("mimeType"),
            )
            if kind is not AssetKind.IMAGE:
                row.duration = item.get("duration")
            if kind is AssetKind.AUDIO:
                row.is_full_script = bool(item.get("isFullScript"))
            self.db.add(row)
        if missing_data:
            logger.warning("backup_assets_without_data", extra={"asset_type": kind.value, "count": missing_data})
        self.db.flush()
        return len(items)

    def _restore_prompts(self, items: list[dict]) -> int:
        for item in items:
            self.db.add(
                Prompt(
                    id=item.get("id"),
                    title=item.get("title") or "Untitled",
                    category=item.get("category") or "general",
                    prompt=item.get("prompt") or "",
                    description=item.get("description"),
                    tags=item.get("tags") or [],
                    metadata_={k: v for k, v in item.items() if k not in _PROMPT_FIELDS},
                    created_at=_parse_datetime(item.get("createdAt")) or utcnow(),
                    updated_at=_parse_datetime(item.get("updatedAt")) or utcnow(),
                )
            )
        self.db.flush()
        return len(items)

    def _restore_mappings(self, items: list[dict]) -> tuple[int, int]:
        restored = 0
        skipped = 0
        seen_keys: set[MappingKey] = set()
        ordered = sorted(items, key=lambda item: (item.get("id") is None, item.get("id") or 0))
        for item in ordered:
            try:
                kind = AssetKind.parse(item.get("assetType"))
                script_id = int(item["scriptId"])
                asset_id = int(item["assetId"])
            except (KeyError, TypeError, ValueError, InvalidAssetKindError) as exc:
                raise BackupFormatError(f"invalid mapping in backup: {item!r}") from exc
            key = mapping_key(script_id, item.get("sceneId"), kind, asset_id)
            if key in seen_keys:
                skipped += 1
                continue
            seen_keys.add(key)
            self.db.add(
                ScriptAssetMapping(
                    id=item.get("id"),
                    script_id=script_id,
                    scene_id=key.scene_id,
                    asset_type=kind.value,
                    asset_id=asset_id,
                    linked_at=_parse_datetime(item.get("linkedAt")) or utcnow(),
                    role=item.get("role"),
                )
            )
            restored += 1
        if skipped:
            logger.warning("backup_mappings_skipped", extra={"count": skipped})
        self.db.flush()
        return restored, skipped
