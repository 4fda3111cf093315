from fastapi import APIRouter, Query, Request, Response
from fastapi.concurrency import run_in_threadpool

from scenemedia.api.deps import LibraryDep
from scenemedia.api.v1.schemas import AssetRead
from scenemedia.core.exceptions import EntityNotFoundError
from scenemedia.db.models import AssetKind, AssetRecord, UploadSource


router = APIRouter(tags=["assets"])


def asset_data_url(kind: AssetKind, asset_id: int) -> str:
    return f"/v1/assets/{kind.value}/{asset_id}/data"


def _asset_read(kind: AssetKind, asset: AssetRecord) -> AssetRead:
    return AssetRead(
        id=asset.id,
        kind=kind,
        upload_source=asset.upload_source,
        original_filename=asset.original_filename,
        mime_type=asset.mime_type,
        uploaded_at=asset.uploaded_at,
        duration=getattr(asset, "duration", None),
        size_bytes=len(asset.data or b""),
        data_url=asset_data_url(kind, asset.id),
    )


def _asset_or_404(library, kind: AssetKind, asset_id: int) -> AssetRecord:
    asset = library.assets.get(kind, asset_id)
    if asset is None:
        raise EntityNotFoundError(kind.value, asset_id)
    return asset


@router.post("/assets/{kind}", response_model=AssetRead)
async def upload_asset(
    kind: str,
    request: Request,
    response: Response,
    filename: str | None = Query(default=None, max_length=512),
    upload_source: UploadSource = Query(default=UploadSource.MANUAL_UPLOAD),
    duration: float | None = Query(default=None, ge=0),
    library=LibraryDep,
):
    asset_kind = AssetKind.parse(kind)
    data = await request.body()
    if not data:
        raise ValueError("empty asset payload")
    content_type = request.headers.get("content-type", "").split(";")[0].strip()
    mime_type = content_type if content_type.startswith(f"{asset_kind.value}/") else None

    asset = await run_in_threadpool(
        library.assets.add,
        asset_kind,
        data,
        upload_source=upload_source,
        mime_type=mime_type,
        original_filename=filename,
        duration=duration,
    )
    response.status_code = 201
    return _asset_read(asset_kind, asset)


@router.get("/assets/{kind}/{asset_id}", response_model=AssetRead)
def get_asset(kind: str, asset_id: int, library=LibraryDep):
    asset_kind = AssetKind.parse(kind)
    return _asset_read(asset_kind, _asset_or_404(library, asset_kind, asset_id))


@router.get("/assets/{kind}/{asset_id}/data")
def get_asset_data(kind: str, asset_id: int, library=LibraryDep):
    asset_kind = AssetKind.parse(kind)
    asset = _asset_or_404(library, asset_kind, asset_id)
    return Response(content=asset.data, media_type=asset.mime_type or asset_kind.default_mime_type)


@router.delete("/assets/{kind}/{asset_id}", status_code=204)
def delete_asset(kind: str, asset_id: int, library=LibraryDep):
    asset_kind = AssetKind.parse(kind)
    if not library.assets.delete(asset_kind, asset_id):
        raise EntityNotFoundError(asset_kind.value, asset_id)
    return Response(status_code=204)
