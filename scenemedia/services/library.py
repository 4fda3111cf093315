"""Composition root: build the media core around one database session."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from scenemedia.core.settings import Settings, settings as default_settings
from scenemedia.services.assets import AssetStore
from scenemedia.services.backup import BackupService
from scenemedia.services.handles import HandleRegistry
from scenemedia.services.mappings import MappingMutator, MappingStore
from scenemedia.services.migration import MigrationRepair, MigrationVerifier
from scenemedia.services.resolver import SceneAssetResolver, SceneAssetView
from scenemedia.services.scripts import ScriptStore


@dataclass
class MediaLibrary:
    db: Session
    assets: AssetStore
    mappings: MappingStore
    scripts: ScriptStore
    handles: HandleRegistry
    resolver: SceneAssetResolver
    mutator: MappingMutator
    verifier: MigrationVerifier
    repair: MigrationRepair
    backup: BackupService

    @classmethod
    def build(
        cls,
        db: Session,
        *,
        handles: HandleRegistry | None = None,
        config: Settings | None = None,
    ) -> MediaLibrary:
        config = config or default_settings
        handles = handles or HandleRegistry(config.handle_url_prefix)
        assets = AssetStore(db)
        mappings = MappingStore(db)
        scripts = ScriptStore(db)
        backup = BackupService(db, batch_size=config.scan_batch_size)
        verifier = MigrationVerifier(db, assets, mappings, scripts, batch_size=config.scan_batch_size)
        return cls(
            db=db,
            assets=assets,
            mappings=mappings,
            scripts=scripts,
            handles=handles,
            resolver=SceneAssetResolver(assets, mappings, handles),
            mutator=MappingMutator(mappings, max_retries=config.upsert_max_retries),
            verifier=verifier,
            repair=MigrationRepair(verifier, assets, mappings, scripts, backup, batch_size=config.scan_batch_size),
            backup=backup,
        )

    def scene_view(
        self,
        script_id: int,
        scene_id: str,
        *,
        legacy_image_id: int | None = None,
        legacy_video_id: int | None = None,
    ) -> SceneAssetView:
        return SceneAssetView(
            self.resolver,
            script_id,
            scene_id,
            mutator=self.mutator,
            legacy_image_id=legacy_image_id,
            legacy_video_id=legacy_video_id,
        )
