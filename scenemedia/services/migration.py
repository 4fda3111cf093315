"""Audit and repair of the script/asset mapping migration.

``MigrationVerifier`` is read-only and produces a :class:`MigrationReport`.
``MigrationRepair`` runs the corrective batches an operator triggers after
reading that report. Every repair is idempotent, skips items that fail, and
returns the number of rows it actually changed.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from scenemedia.core.exceptions import InvalidAssetKindError, StorageError
from scenemedia.core.metrics import VERIFY_DURATION, record_repair_changes, record_repair_item_failure
from scenemedia.core.request_context import log_context
from scenemedia.core.telemetry import trace_span
from scenemedia.db.models import REQUIRED_TABLES, AssetKind, MappingRole, UploadSource
from scenemedia.services.assets import AssetStore, sniff_mime_type, utcnow
from scenemedia.services.backup import BackupService
from scenemedia.services.mappings import MappingKey, MappingStore, row_key
from scenemedia.services.scripts import SceneRef, ScriptStore, iter_scene_refs


logger = logging.getLogger(__name__)

_LEGACY_ROLES = {
    AssetKind.IMAGE: MappingRole.SCENE_IMAGE,
    AssetKind.VIDEO: MappingRole.SCENE_VIDEO,
}


@dataclass
class MigrationStats:
    total_assets: int = 0
    total_mappings: int = 0
    assets_with_metadata: int = 0
    orphaned_assets: int = 0
    duplicate_mappings: int = 0
    dangling_mappings: int = 0
    unmigrated_scripts: int = 0


@dataclass
class MigrationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    stats: MigrationStats = field(default_factory=MigrationStats)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "stats": asdict(self.stats),
        }


@dataclass
class _MappingScan:
    total: int = 0
    linked: set[tuple[str, int]] = field(default_factory=set)
    script_ids: set[int] = field(default_factory=set)
    duplicates: list[tuple[int, MappingKey]] = field(default_factory=list)
    references: list[tuple[int, AssetKind, int]] = field(default_factory=list)
    invalid: list[tuple[int, str]] = field(default_factory=list)


class MigrationVerifier:
    def __init__(
        self,
        db: Session,
        assets: AssetStore,
        mappings: MappingStore,
        scripts: ScriptStore,
        batch_size: int = 500,
    ):
        self.db = db
        self.assets = assets
        self.mappings = mappings
        self.scripts = scripts
        self.batch_size = batch_size

    def missing_tables(self) -> list[str]:
        present = set(inspect(self.db.connection()).get_table_names())
        return [name for name in REQUIRED_TABLES if name not in present]

    def assets_missing_metadata(self, kind: AssetKind) -> list[int]:
        return [row.id for row in self.assets.iter_metadata(kind, self.batch_size) if not _row_has_metadata(row)]

    def find_duplicate_mappings(self) -> list[tuple[int, MappingKey]]:
        """Rows beyond the first (by id) sharing a mapping key."""
        return self._scan_mappings().duplicates

    def verify(self) -> MigrationReport:
        report = MigrationReport()
        with trace_span("migration.verify"), VERIFY_DURATION.time():
            try:
                missing = self.missing_tables()
                if missing:
                    report.errors.append(f"required tables missing: {', '.join(missing)}")
                else:
                    self._collect(report)
            except (SQLAlchemyError, StorageError) as exc:
                logger.exception("migration_verify_failed")
                report.errors.append(f"Migration verification failed: {exc}")
                report.stats = MigrationStats()

        logger.info(
            "migration_verified",
            extra={"ok": report.ok, "error_count": len(report.errors), "warning_count": len(report.warnings), **asdict(report.stats)},
        )
        return report

    def _collect(self, report: MigrationReport) -> None:
        stats = report.stats
        asset_ids: dict[AssetKind, list[int]] = {}

        for kind in AssetKind:
            ids: list[int] = []
            for row in self.assets.iter_metadata(kind, self.batch_size):
                ids.append(row.id)
                if _row_has_metadata(row):
                    stats.assets_with_metadata += 1
                else:
                    report.warnings.append(
                        f"Asset {kind.value} #{row.id} missing metadata: "
                        f"uploadSource={row.upload_source}, uploadedAt={row.uploaded_at}, mimeType={row.mime_type}"
                    )
            asset_ids[kind] = ids
            stats.total_assets += len(ids)

        scan = self._scan_mappings()
        stats.total_mappings = scan.total

        for kind, ids in asset_ids.items():
            for asset_id in ids:
                if (kind.value, asset_id) not in scan.linked:
                    stats.orphaned_assets += 1
                    report.warnings.append(f"Asset {kind.value} #{asset_id} is not linked to any script")

        for mapping_id, asset_type in scan.invalid:
            report.warnings.append(f"Mapping #{mapping_id} has unknown asset type {asset_type!r}")

        for _, key in scan.duplicates:
            stats.duplicate_mappings += 1
            report.warnings.append(f"Duplicate mapping: {key}")

        existing = {kind: set(ids) for kind, ids in asset_ids.items()}
        for mapping_id, kind, asset_id in scan.references:
            if asset_id not in existing[kind]:
                stats.dangling_mappings += 1
                report.warnings.append(f"Mapping #{mapping_id} points at missing {kind.value} #{asset_id}")

        for script in self.scripts.iter_scripts(self.batch_size):
            if script.id not in scan.script_ids:
                stats.unmigrated_scripts += 1
                report.warnings.append(f'Script #{script.id} "{script.title}" has no asset mappings')

    def _scan_mappings(self) -> _MappingScan:
        scan = _MappingScan()
        seen: set[MappingKey] = set()
        for row in self.mappings.iter_mappings(self.batch_size):
            scan.total += 1
            scan.script_ids.add(row.script_id)
            try:
                kind = AssetKind.parse(row.asset_type)
            except InvalidAssetKindError:
                scan.invalid.append((row.id, row.asset_type))
                continue
            scan.linked.add((kind.value, row.asset_id))
            scan.references.append((row.id, kind, row.asset_id))
            key = row_key(row)
            if key in seen:
                scan.duplicates.append((row.id, key))
            else:
                seen.add(key)
        return scan


class MigrationRepair:
    def __init__(
        self,
        verifier: MigrationVerifier,
        assets: AssetStore,
        mappings: MappingStore,
        scripts: ScriptStore,
        backup: BackupService,
        batch_size: int = 500,
    ):
        self.verifier = verifier
        self.assets = assets
        self.mappings = mappings
        self.scripts = scripts
        self.backup = backup
        self.batch_size = batch_size

    def fix_missing_metadata(self) -> int:
        fixed = 0
        with trace_span("migration.repair", operation="fix_missing_metadata"):
            for kind in AssetKind:
                for asset_id in self.verifier.assets_missing_metadata(kind):
                    try:
                        asset = self.assets.get(kind, asset_id)
                        if asset is None or asset.has_metadata:
                            continue
                        self.assets.update_metadata(
                            kind,
                            asset_id,
                            upload_source=asset.upload_source or UploadSource.AI_GENERATED.value,
                            uploaded_at=asset.uploaded_at or utcnow(),
                            mime_type=asset.mime_type or sniff_mime_type(kind, asset.data, asset.original_filename),
                        )
                    except (StorageError, SQLAlchemyError) as exc:
                        self._item_failed("fix_missing_metadata", exc, asset_type=kind.value, item_id=asset_id)
                        continue
                    fixed += 1
        self._finished("fix_missing_metadata", fixed)
        return fixed

    def rebuild_mappings_from_scenes(self) -> int:
        """Create slot mappings for legacy ``generatedImageId``/``generatedVideoId`` pointers.

        A slot that already holds a mapping is left alone, whatever it points
        at, and pointers to assets that no longer exist are skipped.
        """
        created = 0
        with trace_span("migration.repair", operation="rebuild_mappings_from_scenes"):
            for script in self.scripts.iter_scripts(self.batch_size):
                for ref in list(iter_scene_refs(script)):
                    with log_context(script_id=ref.script_id, scene_id=ref.scene_id):
                        for kind, legacy_id in (
                            (AssetKind.IMAGE, ref.legacy_image_id),
                            (AssetKind.VIDEO, ref.legacy_video_id),
                        ):
                            if legacy_id and self._rebuild_slot(ref, kind, legacy_id):
                                created += 1
        self._finished("rebuild_mappings_from_scenes", created)
        return created

    def _rebuild_slot(self, ref: SceneRef, kind: AssetKind, legacy_id: int) -> bool:
        try:
            if self.mappings.find_slot(ref.script_id, ref.scene_id, kind) is not None:
                return False
            if not self.assets.exists(kind, legacy_id):
                logger.warning("legacy_pointer_missing_asset", extra={"asset_type": kind.value, "asset_id": legacy_id})
                return False
            self.mappings.insert(ref.script_id, ref.scene_id, kind, legacy_id, role=_LEGACY_ROLES[kind])
        except IntegrityError:
            logger.info("legacy_slot_filled_concurrently", extra={"asset_type": kind.value})
            return False
        except (StorageError, SQLAlchemyError) as exc:
            self._item_failed("rebuild_mappings_from_scenes", exc, asset_type=kind.value, item_id=legacy_id)
            return False
        return True

    def remove_duplicate_mappings(self) -> int:
        removed = 0
        with trace_span("migration.repair", operation="remove_duplicate_mappings"):
            for mapping_id, key in self.verifier.find_duplicate_mappings():
                try:
                    if self.mappings.delete(mapping_id):
                        removed += 1
                except (StorageError, SQLAlchemyError) as exc:
                    self._item_failed("remove_duplicate_mappings", exc, item_id=mapping_id, mapping_key=str(key))
        self._finished("remove_duplicate_mappings", removed)
        return removed

    def export_database(self) -> dict:
        """Versioned backup snapshot, taken before running repairs."""
        return self.backup.export_snapshot()

    def restore_database(self, snapshot: dict, *, replace: bool = False) -> dict[str, int]:
        return self.backup.restore_snapshot(snapshot, replace=replace)

    def clear_all_data(self) -> None:
        self.backup.clear_all_data()

    def run_all(self) -> dict[str, int]:
        return {
            "fix_missing_metadata": self.fix_missing_metadata(),
            "rebuild_mappings_from_scenes": self.rebuild_mappings_from_scenes(),
            "remove_duplicate_mappings": self.remove_duplicate_mappings(),
        }

    def _item_failed(self, operation: str, exc: Exception, **fields) -> None:
        self.mappings.db.rollback()
        record_repair_item_failure(operation)
        logger.warning("repair_item_failed", extra={"operation": operation, "error": str(exc), **fields})

    def _finished(self, operation: str, count: int) -> None:
        record_repair_changes(operation, count)
        logger.info("repair_finished", extra={"operation": operation, "changed": count})


def _row_has_metadata(row) -> bool:
    return bool(row.upload_source and row.uploaded_at and row.mime_type)


REPAIR_OPERATIONS = (
    "fix_missing_metadata",
    "rebuild_mappings_from_scenes",
    "remove_duplicate_mappings",
)
