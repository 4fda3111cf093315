"""Read path: the asset currently attached to each slot of a scene.

Resolution order per asset kind:

1. the mapping row for ``(script, scene, kind)``; if it points at an asset
   that no longer exists the slot is absent (legacy pointers are not
   consulted once a mapping exists);
2. for images and videos only, the legacy pointer embedded in the scene;
3. absent.

Not-found never raises. Storage failures are logged and propagated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from scenemedia.core.exceptions import StorageError
from scenemedia.core.metrics import record_resolved_slot
from scenemedia.core.request_context import log_context
from scenemedia.db.models import AssetKind, AssetRecord, MappingRole
from scenemedia.services.assets import AssetStore
from scenemedia.services.handles import HandleRegistry, MediaHandle
from scenemedia.services.mappings import MappingMutator, MappingStore


logger = logging.getLogger(__name__)

SOURCE_MAPPING = "mapping"
SOURCE_LEGACY = "legacy"
SOURCE_DANGLING = "dangling"
SOURCE_ABSENT = "absent"


@dataclass(frozen=True)
class SlotResolution:
    kind: AssetKind
    source: str
    asset: AssetRecord | None = None
    mapping_id: int | None = None

    @property
    def resolved(self) -> bool:
        return self.asset is not None


@dataclass(frozen=True)
class ResolvedAsset:
    asset_id: int
    handle: MediaHandle
    source: str


@dataclass(frozen=True)
class ResolvedSceneAssets:
    image: ResolvedAsset | None = None
    video: ResolvedAsset | None = None
    audio: ResolvedAsset | None = None

    def __getitem__(self, kind: AssetKind | str) -> ResolvedAsset | None:
        return getattr(self, AssetKind.parse(kind).value)

    def handles(self) -> list[MediaHandle]:
        return [slot.handle for slot in (self.image, self.video, self.audio) if slot is not None]


class SceneAssetResolver:
    def __init__(self, assets: AssetStore, mappings: MappingStore, handles: HandleRegistry):
        self.assets = assets
        self.mappings = mappings
        self.handles = handles

    def resolve_slot(
        self,
        script_id: int,
        scene_id: str,
        asset_type: AssetKind | str,
        legacy_id: int | None = None,
    ) -> SlotResolution:
        kind = AssetKind.parse(asset_type)

        mapping = self.mappings.find_slot(script_id, scene_id, kind)
        if mapping is not None:
            asset = self.assets.get(kind, mapping.asset_id)
            if asset is None:
                logger.debug(
                    "scene_asset_dangling",
                    extra={"asset_type": kind.value, "asset_id": mapping.asset_id, "mapping_id": mapping.id},
                )
                return SlotResolution(kind, SOURCE_DANGLING, mapping_id=mapping.id)
            return SlotResolution(kind, SOURCE_MAPPING, asset=asset, mapping_id=mapping.id)

        if kind.has_legacy_pointer and legacy_id:
            asset = self.assets.get(kind, legacy_id)
            if asset is not None:
                return SlotResolution(kind, SOURCE_LEGACY, asset=asset)

        return SlotResolution(kind, SOURCE_ABSENT)

    def resolve_records(
        self,
        script_id: int,
        scene_id: str,
        legacy_image_id: int | None = None,
        legacy_video_id: int | None = None,
    ) -> dict[AssetKind, SlotResolution]:
        """Resolve every slot without issuing handles."""
        legacy = {AssetKind.IMAGE: legacy_image_id, AssetKind.VIDEO: legacy_video_id}
        with log_context(script_id=script_id, scene_id=scene_id):
            try:
                results = {
                    kind: self.resolve_slot(script_id, scene_id, kind, legacy.get(kind))
                    for kind in AssetKind
                }
            except StorageError:
                logger.exception("scene_assets_resolve_failed")
                raise
        for kind, result in results.items():
            record_resolved_slot(kind.value, result.source)
        return results

    def resolve(
        self,
        script_id: int,
        scene_id: str,
        legacy_image_id: int | None = None,
        legacy_video_id: int | None = None,
    ) -> ResolvedSceneAssets:
        """Resolve every slot and issue one handle per resolved asset.

        The caller owns the returned handles and must release each exactly
        once (see :class:`SceneAssetView`).
        """
        results = self.resolve_records(script_id, scene_id, legacy_image_id, legacy_video_id)
        slots: dict[str, ResolvedAsset] = {}
        for kind, result in results.items():
            if result.asset is None:
                continue
            handle = self.handles.create(kind.value, result.asset.id, result.asset.data, result.asset.mime_type)
            slots[kind.value] = ResolvedAsset(asset_id=result.asset.id, handle=handle, source=result.source)
        return ResolvedSceneAssets(**slots)


class SceneAssetView:
    """Owns the handles of one rendered scene.

    Every refresh releases the previous handles before resolving again, and
    ``close`` releases whatever is still held, so at most one handle per slot
    is outstanding at any time. Mutations go through the mutator and are
    followed by a refresh.
    """

    def __init__(
        self,
        resolver: SceneAssetResolver,
        script_id: int,
        scene_id: str,
        *,
        mutator: MappingMutator | None = None,
        legacy_image_id: int | None = None,
        legacy_video_id: int | None = None,
    ):
        self.resolver = resolver
        self.mutator = mutator
        self.script_id = script_id
        self.scene_id = scene_id
        self.legacy_image_id = legacy_image_id
        self.legacy_video_id = legacy_video_id
        self.current: ResolvedSceneAssets | None = None

    def __enter__(self) -> SceneAssetView:
        self.refresh()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def image(self) -> ResolvedAsset | None:
        return self.current.image if self.current else None

    @property
    def video(self) -> ResolvedAsset | None:
        return self.current.video if self.current else None

    @property
    def audio(self) -> ResolvedAsset | None:
        return self.current.audio if self.current else None

    def refresh(self) -> ResolvedSceneAssets:
        self._release_current()
        self.current = self.resolver.resolve(
            self.script_id,
            self.scene_id,
            legacy_image_id=self.legacy_image_id,
            legacy_video_id=self.legacy_video_id,
        )
        return self.current

    def close(self) -> None:
        self._release_current()

    def link(self, asset_type: AssetKind | str, asset_id: int, *, role: MappingRole | str | None = None) -> ResolvedSceneAssets:
        self._require_mutator().link_asset(self.script_id, self.scene_id, asset_type, asset_id, role=role)
        return self.refresh()

    def unlink(self, asset_type: AssetKind | str, asset_id: int) -> ResolvedSceneAssets:
        self._require_mutator().unlink_asset(self.script_id, self.scene_id, asset_type, asset_id)
        return self.refresh()

    def replace(self, asset_type: AssetKind | str, old_asset_id: int, new_asset_id: int) -> ResolvedSceneAssets:
        self._require_mutator().replace_asset(self.script_id, self.scene_id, asset_type, old_asset_id, new_asset_id)
        return self.refresh()

    def _require_mutator(self) -> MappingMutator:
        if self.mutator is None:
            raise RuntimeError("SceneAssetView was created without a mutator")
        return self.mutator

    def _release_current(self) -> None:
        if self.current is None:
            return
        for handle in self.current.handles():
            self.resolver.handles.release(handle)
        self.current = None
