from fastapi import APIRouter

from scenemedia.api.deps import LibraryDep
from scenemedia.api.v1.assets import asset_data_url
from scenemedia.api.v1.schemas import (
    LinkRequest,
    MappingRead,
    ReplaceRequest,
    SceneAssetsRead,
    SlotRead,
    UnlinkRequest,
    UnlinkResult,
)
from scenemedia.services.resolver import SlotResolution


router = APIRouter(tags=["scene-assets"])


def _slot_read(result: SlotResolution) -> SlotRead:
    if result.asset is None:
        return SlotRead(kind=result.kind, source=result.source, mapping_id=result.mapping_id)
    return SlotRead(
        kind=result.kind,
        source=result.source,
        asset_id=result.asset.id,
        mapping_id=result.mapping_id,
        mime_type=result.asset.mime_type,
        data_url=asset_data_url(result.kind, result.asset.id),
    )


@router.get("/scripts/{script_id}/scenes/{scene_id}/assets", response_model=SceneAssetsRead)
def resolve_scene_assets(script_id: int, scene_id: str, library=LibraryDep):
    # Legacy pointers live in the script document; an unknown scene just has none.
    ref = library.scripts.find_scene(script_id, scene_id)
    results = library.resolver.resolve_records(
        script_id,
        scene_id,
        legacy_image_id=ref.legacy_image_id if ref else None,
        legacy_video_id=ref.legacy_video_id if ref else None,
    )
    return SceneAssetsRead(
        script_id=script_id,
        scene_id=scene_id,
        **{kind.value: _slot_read(result) for kind, result in results.items()},
    )


@router.post("/scripts/{script_id}/scenes/{scene_id}/assets/link", response_model=MappingRead)
def link_scene_asset(script_id: int, scene_id: str, payload: LinkRequest, library=LibraryDep):
    return library.mutator.link_asset(script_id, scene_id, payload.asset_type, payload.asset_id, role=payload.role)


@router.post("/scripts/{script_id}/scenes/{scene_id}/assets/unlink", response_model=UnlinkResult)
def unlink_scene_asset(script_id: int, scene_id: str, payload: UnlinkRequest, library=LibraryDep):
    removed = library.mutator.unlink_asset(script_id, scene_id, payload.asset_type, payload.asset_id)
    return UnlinkResult(removed=removed)


@router.post("/scripts/{script_id}/scenes/{scene_id}/assets/replace", response_model=MappingRead)
def replace_scene_asset(script_id: int, scene_id: str, payload: ReplaceRequest, library=LibraryDep):
    return library.mutator.replace_asset(
        script_id,
        scene_id,
        payload.asset_type,
        payload.old_asset_id,
        payload.new_asset_id,
        role=payload.role,
    )
