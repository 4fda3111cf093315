from __future__ import annotations

import io
import logging
import mimetypes
from collections.abc import Iterator
from datetime import datetime, timezone

from PIL import Image as PILImage, UnidentifiedImageError
from sqlalchemy import Row, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scenemedia.core.exceptions import StorageError
from scenemedia.db.models import AssetKind, AssetRecord, UploadSource, asset_model


logger = logging.getLogger(__name__)

_METADATA_FIELDS = {"upload_source", "original_filename", "mime_type", "uploaded_at", "duration", "is_full_script"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def sniff_mime_type(kind: AssetKind, data: bytes, original_filename: str | None = None) -> str:
    """Best guess at the MIME type of an asset payload.

    Images are identified from their bytes, anything else from the original
    filename; the per-kind default applies when neither says anything.
    """
    if kind is AssetKind.IMAGE and data:
        try:
            with PILImage.open(io.BytesIO(data)) as img:
                mime = PILImage.MIME.get(img.format or "")
        except (UnidentifiedImageError, PILImage.DecompressionBombError, OSError):
            mime = None
        if mime:
            return mime
    if original_filename:
        guessed, _ = mimetypes.guess_type(original_filename)
        if guessed and guessed.startswith(f"{kind.value}/"):
            return guessed
    return kind.default_mime_type


class AssetStore:
    """CRUD over the three asset tables, routed by :class:`AssetKind`."""

    def __init__(self, db: Session):
        self.db = db

    def add(
        self,
        kind: AssetKind | str,
        data: bytes,
        *,
        upload_source: UploadSource | str | None = UploadSource.AI_GENERATED,
        mime_type: str | None = None,
        original_filename: str | None = None,
        uploaded_at: datetime | None = None,
        duration: float | None = None,
        with_metadata: bool = True,
    ) -> AssetRecord:
        kind = AssetKind.parse(kind)
        model = asset_model(kind)
        row = model(
            data=data,
            original_filename=original_filename,
            upload_source=UploadSource(upload_source).value if upload_source else None,
            mime_type=mime_type,
            uploaded_at=uploaded_at,
        )
        # with_metadata=False records the row as-is, like assets stored
        # before metadata tracking existed.
        if with_metadata:
            row.upload_source = row.upload_source or UploadSource.AI_GENERATED.value
            row.mime_type = row.mime_type or sniff_mime_type(kind, data, original_filename)
            row.uploaded_at = row.uploaded_at or utcnow()
        if duration is not None and kind is not AssetKind.IMAGE:
            row.duration = duration
        self.db.add(row)
        self._commit("asset_add_failed", kind)
        self.db.refresh(row)
        logger.info(
            "asset_added",
            extra={"asset_type": kind.value, "asset_id": row.id, "size_bytes": len(data)},
        )
        return row

    def get(self, kind: AssetKind | str, asset_id: int | None) -> AssetRecord | None:
        if asset_id is None:
            return None
        try:
            return self.db.get(asset_model(kind), asset_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to load {AssetKind.parse(kind).value} #{asset_id}") from exc

    def exists(self, kind: AssetKind | str, asset_id: int | None) -> bool:
        if asset_id is None:
            return False
        model = asset_model(kind)
        stmt = select(model.id).where(model.id == asset_id)
        try:
            return self.db.execute(stmt).scalar_one_or_none() is not None
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to load {AssetKind.parse(kind).value} #{asset_id}") from exc

    def count(self, kind: AssetKind | str) -> int:
        model = asset_model(kind)
        return int(self.db.execute(select(func.count()).select_from(model)).scalar_one())

    def count_all(self) -> int:
        return sum(self.count(kind) for kind in AssetKind)

    def iter_assets(self, kind: AssetKind | str, batch_size: int = 500) -> Iterator[AssetRecord]:
        """Keyset-paginated scan in id order."""
        model = asset_model(kind)
        last_id = 0
        while True:
            stmt = select(model).where(model.id > last_id).order_by(model.id.asc()).limit(batch_size)
            batch = list(self.db.execute(stmt).scalars().all())
            if not batch:
                return
            yield from batch
            last_id = batch[-1].id

    def iter_metadata(self, kind: AssetKind | str, batch_size: int = 500) -> Iterator[Row]:
        """Like :meth:`iter_assets` but without loading payload bytes."""
        model = asset_model(kind)
        last_id = 0
        while True:
            stmt = (
                select(model.id, model.upload_source, model.uploaded_at, model.mime_type)
                .where(model.id > last_id)
                .order_by(model.id.asc())
                .limit(batch_size)
            )
            batch = list(self.db.execute(stmt).all())
            if not batch:
                return
            yield from batch
            last_id = batch[-1].id

    def update_metadata(self, kind: AssetKind | str, asset_id: int, **fields) -> AssetRecord | None:
        unknown = set(fields) - _METADATA_FIELDS
        if unknown:
            raise ValueError(f"not asset metadata fields: {', '.join(sorted(unknown))}")
        row = self.get(kind, asset_id)
        if row is None:
            return None
        for key, value in fields.items():
            setattr(row, key, value)
        self.db.add(row)
        self._commit("asset_update_failed", AssetKind.parse(kind))
        self.db.refresh(row)
        return row

    def delete(self, kind: AssetKind | str, asset_id: int) -> bool:
        """Delete an asset row. Mappings pointing at it are left in place."""
        row = self.get(kind, asset_id)
        if row is None:
            return False
        self.db.delete(row)
        self._commit("asset_delete_failed", AssetKind.parse(kind))
        return True

    def _commit(self, event: str, kind: AssetKind) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception(event, extra={"asset_type": kind.value})
            raise StorageError(f"{event}: {exc}") from exc
