from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import datetime
from typing import NamedTuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from scenemedia.core.exceptions import StorageError
from scenemedia.core.metrics import record_mapping_mutation, record_upsert_conflict
from scenemedia.core.request_context import log_context
from scenemedia.db.models import AssetKind, MappingRole, ScriptAssetMapping
from scenemedia.services.assets import utcnow


logger = logging.getLogger(__name__)


class MappingKey(NamedTuple):
    """Identity of a mapping row.

    Scene-level rows occupy a slot, one per ``(script, scene, kind)``, so the
    asset id is not part of their key. Script-level rows (no scene) form a set
    and are keyed by the asset they point at.
    """

    script_id: int
    scene_id: str | None
    asset_type: str
    asset_id: int | None

    def __str__(self) -> str:
        parts = [str(self.script_id), self.scene_id or "null", self.asset_type]
        if self.asset_id is not None:
            parts.append(str(self.asset_id))
        return "-".join(parts)


def normalize_scene_id(scene_id: str | None) -> str | None:
    if scene_id is None:
        return None
    scene_id = str(scene_id).strip()
    return scene_id or None


def mapping_key(
    script_id: int,
    scene_id: str | None,
    asset_type: AssetKind | str,
    asset_id: int | None,
) -> MappingKey:
    kind = AssetKind.parse(asset_type)
    scene_id = normalize_scene_id(scene_id)
    if scene_id is None:
        return MappingKey(script_id, None, kind.value, asset_id)
    return MappingKey(script_id, scene_id, kind.value, None)


def row_key(row: ScriptAssetMapping) -> MappingKey:
    return mapping_key(row.script_id, row.scene_id, row.asset_type, row.asset_id)


class MappingStore:
    def __init__(self, db: Session):
        self.db = db

    def _slot_stmt(self, script_id: int, scene_id: str | None, kind: AssetKind):
        stmt = select(ScriptAssetMapping).where(
            ScriptAssetMapping.script_id == script_id,
            ScriptAssetMapping.asset_type == kind.value,
        )
        if scene_id is None:
            return stmt.where(ScriptAssetMapping.scene_id.is_(None))
        return stmt.where(ScriptAssetMapping.scene_id == scene_id)

    def find_slot(self, script_id: int, scene_id: str | None, asset_type: AssetKind | str) -> ScriptAssetMapping | None:
        """First row (by id) for the slot, whatever asset it points at."""
        kind = AssetKind.parse(asset_type)
        stmt = self._slot_stmt(script_id, normalize_scene_id(scene_id), kind)
        stmt = stmt.order_by(ScriptAssetMapping.id.asc()).limit(1)
        return self._scalar(stmt)

    def find_exact(
        self,
        script_id: int,
        scene_id: str | None,
        asset_type: AssetKind | str,
        asset_id: int,
    ) -> ScriptAssetMapping | None:
        kind = AssetKind.parse(asset_type)
        stmt = self._slot_stmt(script_id, normalize_scene_id(scene_id), kind)
        stmt = stmt.where(ScriptAssetMapping.asset_id == asset_id).order_by(ScriptAssetMapping.id.asc()).limit(1)
        return self._scalar(stmt)

    def find_by_key(self, key: MappingKey) -> ScriptAssetMapping | None:
        if key.asset_id is None:
            return self.find_slot(key.script_id, key.scene_id, key.asset_type)
        return self.find_exact(key.script_id, key.scene_id, key.asset_type, key.asset_id)

    def list_for_script(self, script_id: int) -> list[ScriptAssetMapping]:
        stmt = (
            select(ScriptAssetMapping)
            .where(ScriptAssetMapping.script_id == script_id)
            .order_by(ScriptAssetMapping.id.asc())
        )
        return list(self._execute(stmt).scalars().all())

    def list_for_scene(self, script_id: int, scene_id: str) -> list[ScriptAssetMapping]:
        stmt = (
            select(ScriptAssetMapping)
            .where(
                ScriptAssetMapping.script_id == script_id,
                ScriptAssetMapping.scene_id == normalize_scene_id(scene_id),
            )
            .order_by(ScriptAssetMapping.id.asc())
        )
        return list(self._execute(stmt).scalars().all())

    def count(self) -> int:
        return int(self._execute(select(func.count()).select_from(ScriptAssetMapping)).scalar_one())

    def count_for_script(self, script_id: int) -> int:
        stmt = select(func.count()).select_from(ScriptAssetMapping).where(ScriptAssetMapping.script_id == script_id)
        return int(self._execute(stmt).scalar_one())

    def iter_mappings(self, batch_size: int = 500) -> Iterator[ScriptAssetMapping]:
        """All rows in stable id order, fetched in keyset pages."""
        last_id = 0
        while True:
            stmt = (
                select(ScriptAssetMapping)
                .where(ScriptAssetMapping.id > last_id)
                .order_by(ScriptAssetMapping.id.asc())
                .limit(batch_size)
            )
            batch = list(self._execute(stmt).scalars().all())
            if not batch:
                return
            yield from batch
            last_id = batch[-1].id

    def insert(
        self,
        script_id: int,
        scene_id: str | None,
        asset_type: AssetKind | str,
        asset_id: int,
        *,
        role: MappingRole | str | None = None,
        linked_at: datetime | None = None,
    ) -> ScriptAssetMapping:
        """Insert a row and commit. Unique-slot conflicts surface as IntegrityError."""
        row = ScriptAssetMapping(
            script_id=script_id,
            scene_id=normalize_scene_id(scene_id),
            asset_type=AssetKind.parse(asset_type).value,
            asset_id=asset_id,
            linked_at=linked_at or utcnow(),
            role=MappingRole(role).value if role else None,
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"failed to insert mapping: {exc}") from exc
        self.db.refresh(row)
        return row

    def delete(self, mapping_id: int) -> bool:
        try:
            row = self.db.get(ScriptAssetMapping, mapping_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to query mappings: {exc}") from exc
        if row is None:
            return False
        self.db.delete(row)
        self._commit()
        return True

    def delete_matching(
        self,
        script_id: int,
        scene_id: str | None,
        asset_type: AssetKind | str,
        asset_id: int,
    ) -> int:
        scene_id = normalize_scene_id(scene_id)
        stmt = delete(ScriptAssetMapping).where(
            ScriptAssetMapping.script_id == script_id,
            ScriptAssetMapping.asset_type == AssetKind.parse(asset_type).value,
            ScriptAssetMapping.asset_id == asset_id,
        )
        if scene_id is None:
            stmt = stmt.where(ScriptAssetMapping.scene_id.is_(None))
        else:
            stmt = stmt.where(ScriptAssetMapping.scene_id == scene_id)
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"failed to delete mappings: {exc}") from exc
        self._commit()
        return int(result.rowcount or 0)

    def _execute(self, stmt):
        try:
            return self.db.execute(stmt)
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to query mappings: {exc}") from exc

    def _scalar(self, stmt) -> ScriptAssetMapping | None:
        return self._execute(stmt).scalar_one_or_none()

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"failed to write mappings: {exc}") from exc


class MappingMutator:
    """Write path for scene asset links.

    Lookup and write run in one transaction on the session. A concurrent
    insert into the same slot trips the unique index; that conflict is read
    as "the row exists now" and the upsert is retried as an update.
    """

    def __init__(self, store: MappingStore, max_retries: int = 3):
        self.store = store
        self.db = store.db
        self.max_retries = max_retries

    def link_asset(
        self,
        script_id: int,
        scene_id: str | None,
        asset_type: AssetKind | str,
        asset_id: int,
        *,
        role: MappingRole | str | None = None,
    ) -> ScriptAssetMapping:
        kind = AssetKind.parse(asset_type)
        scene_id = normalize_scene_id(scene_id)
        with log_context(script_id=script_id, scene_id=scene_id):
            return self._upsert(
                "link",
                mapping_key(script_id, scene_id, kind, asset_id),
                asset_id,
                role=role,
            )

    def unlink_asset(
        self,
        script_id: int,
        scene_id: str | None,
        asset_type: AssetKind | str,
        asset_id: int,
    ) -> int:
        """Remove rows still pointing at ``asset_id``. Returns rows deleted."""
        kind = AssetKind.parse(asset_type)
        scene_id = normalize_scene_id(scene_id)
        with log_context(script_id=script_id, scene_id=scene_id):
            try:
                removed = self.store.delete_matching(script_id, scene_id, kind, asset_id)
            except StorageError:
                record_mapping_mutation("unlink", "error")
                logger.exception("mapping_unlink_failed", extra={"asset_type": kind.value, "asset_id": asset_id})
                raise
            record_mapping_mutation("unlink", "deleted" if removed else "noop")
            logger.info(
                "mapping_unlinked",
                extra={"asset_type": kind.value, "asset_id": asset_id, "removed": removed},
            )
            return removed

    def replace_asset(
        self,
        script_id: int,
        scene_id: str | None,
        asset_type: AssetKind | str,
        old_asset_id: int,
        new_asset_id: int,
        *,
        role: MappingRole | str | None = None,
    ) -> ScriptAssetMapping:
        """Repoint the row for ``old_asset_id``; degrade to a link when it is gone."""
        kind = AssetKind.parse(asset_type)
        scene_id = normalize_scene_id(scene_id)
        with log_context(script_id=script_id, scene_id=scene_id):
            existing = self.store.find_exact(script_id, scene_id, kind, old_asset_id)
            if existing is None:
                logger.info(
                    "mapping_replace_fallback_link",
                    extra={"asset_type": kind.value, "old_asset_id": old_asset_id, "asset_id": new_asset_id},
                )
                return self._upsert(
                    "replace",
                    mapping_key(script_id, scene_id, kind, new_asset_id),
                    new_asset_id,
                    role=role,
                )

            if scene_id is None and old_asset_id != new_asset_id:
                # Script-level rows are keyed by asset; repointing onto an
                # asset that already has its own row would duplicate it.
                target = self.store.find_exact(script_id, None, kind, new_asset_id)
                if target is not None:
                    self.db.delete(existing)
                    return self._touch("replace", target, new_asset_id, role=role)

            return self._touch("replace", existing, new_asset_id, role=role)

    def _upsert(
        self,
        operation: str,
        key: MappingKey,
        asset_id: int,
        *,
        role: MappingRole | str | None,
    ) -> ScriptAssetMapping:
        for _ in range(self.max_retries):
            existing = self.store.find_by_key(key)
            if existing is not None:
                return self._touch(operation, existing, asset_id, role=role)

            row = ScriptAssetMapping(
                script_id=key.script_id,
                scene_id=key.scene_id,
                asset_type=key.asset_type,
                asset_id=asset_id,
                linked_at=utcnow(),
                role=MappingRole(role).value if role else None,
            )
            self.db.add(row)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                record_upsert_conflict()
                logger.warning("mapping_upsert_conflict", extra={"mapping_key": str(key)})
                continue
            except SQLAlchemyError as exc:
                self.db.rollback()
                record_mapping_mutation(operation, "error")
                logger.exception("mapping_write_failed", extra={"mapping_key": str(key)})
                raise StorageError(f"failed to write mapping {key}: {exc}") from exc
            self.db.refresh(row)
            record_mapping_mutation(operation, "created")
            logger.info(
                "mapping_linked",
                extra={"mapping_id": row.id, "asset_type": key.asset_type, "asset_id": asset_id, "inserted": True},
            )
            return row

        record_mapping_mutation(operation, "error")
        raise StorageError(f"mapping upsert for {key} kept conflicting after {self.max_retries} attempts")

    def _touch(
        self,
        operation: str,
        row: ScriptAssetMapping,
        asset_id: int,
        *,
        role: MappingRole | str | None,
    ) -> ScriptAssetMapping:
        row.asset_id = asset_id
        row.linked_at = utcnow()
        if role:
            row.role = MappingRole(role).value
        self.db.add(row)
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            record_mapping_mutation(operation, "error")
            logger.exception("mapping_write_failed", extra={"mapping_id": row.id})
            raise StorageError(f"failed to update mapping #{row.id}: {exc}") from exc
        self.db.refresh(row)
        record_mapping_mutation(operation, "updated")
        logger.info(
            "mapping_linked",
            extra={"mapping_id": row.id, "asset_type": row.asset_type, "asset_id": asset_id, "inserted": False},
        )
        return row
