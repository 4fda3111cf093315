from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, LargeBinary, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from scenemedia.core.exceptions import InvalidAssetKindError
from scenemedia.db.base import Base


class AssetKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"

    @classmethod
    def parse(cls, value: AssetKind | str) -> AssetKind:
        try:
            return cls(value)
        except ValueError:
            raise InvalidAssetKindError(value) from None

    @property
    def collection(self) -> str:
        """Backup/table collection name (``images``, ``videos``, ``audios``)."""
        return f"{self.value}s"

    @property
    def default_mime_type(self) -> str:
        return _DEFAULT_MIME_TYPES[self]

    @property
    def has_legacy_pointer(self) -> bool:
        return self is not AssetKind.AUDIO


_DEFAULT_MIME_TYPES = {
    AssetKind.IMAGE: "image/png",
    AssetKind.VIDEO: "video/mp4",
    AssetKind.AUDIO: "audio/mpeg",
}


class UploadSource(str, Enum):
    AI_GENERATED = "ai-generated"
    MANUAL_UPLOAD = "manual-upload"
    IMPORTED = "imported"


class MappingRole(str, Enum):
    SCENE_IMAGE = "scene-image"
    SCENE_VIDEO = "scene-video"
    DIALOGUE_AUDIO = "dialogue-audio"
    FULL_SCRIPT_AUDIO = "full-script-audio"
    BACKGROUND = "background"


class Script(Base):
    __tablename__ = "scripts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    acts: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AssetMixin:
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    upload_source: Mapped[str | None] = mapped_column(String(32), nullable=True)
    original_filename: Mapped[str | None] = mapped_column(String(512), nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    uploaded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def has_metadata(self) -> bool:
        return bool(self.upload_source and self.uploaded_at and self.mime_type)


class Image(AssetMixin, Base):
    __tablename__ = "images"
    __table_args__ = (
        Index("ix_images_uploaded_at", "uploaded_at"),
        Index("ix_images_upload_source", "upload_source"),
    )

    kind = AssetKind.IMAGE


class Video(AssetMixin, Base):
    __tablename__ = "videos"
    __table_args__ = (
        Index("ix_videos_uploaded_at", "uploaded_at"),
        Index("ix_videos_upload_source", "upload_source"),
    )

    kind = AssetKind.VIDEO

    duration: Mapped[float | None] = mapped_column(Float, nullable=True)


class Audio(AssetMixin, Base):
    __tablename__ = "audios"
    __table_args__ = (
        Index("ix_audios_uploaded_at", "uploaded_at"),
        Index("ix_audios_upload_source", "upload_source"),
    )

    kind = AssetKind.AUDIO

    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_full_script: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


AssetRecord = Image | Video | Audio

ASSET_MODELS: dict[AssetKind, type[Image] | type[Video] | type[Audio]] = {
    AssetKind.IMAGE: Image,
    AssetKind.VIDEO: Video,
    AssetKind.AUDIO: Audio,
}


def asset_model(kind: AssetKind | str) -> type[Image] | type[Video] | type[Audio]:
    """Route an asset kind to the table that stores it."""
    return ASSET_MODELS[AssetKind.parse(kind)]


class ScriptAssetMapping(Base):
    __tablename__ = "script_asset_mappings"
    __table_args__ = (
        # One row per scene slot. Script-level rows (NULL scene id) fall outside
        # that index and are unique per asset instead.
        Index("uq_script_asset_mappings_slot", "script_id", "scene_id", "asset_type", unique=True),
        Index(
            "uq_script_asset_mappings_script_asset",
            "script_id",
            "asset_type",
            "asset_id",
            unique=True,
            sqlite_where=text("scene_id IS NULL"),
            postgresql_where=text("scene_id IS NULL"),
        ),
        Index("ix_script_asset_mappings_script_type", "script_id", "asset_type"),
        Index("ix_script_asset_mappings_type_asset", "asset_type", "asset_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    script_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    scene_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    asset_type: Mapped[str] = mapped_column(String(16), nullable=False)
    asset_id: Mapped[int] = mapped_column(Integer, nullable=False)
    linked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    role: Mapped[str | None] = mapped_column(String(32), nullable=True)

    @property
    def kind(self) -> AssetKind:
        return AssetKind.parse(self.asset_type)


class Prompt(Base):
    __tablename__ = "prompts"
    __table_args__ = (
        Index("ix_prompts_category", "category"),
        Index("ix_prompts_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="general")
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


REQUIRED_TABLES = (
    Script.__tablename__,
    Image.__tablename__,
    Video.__tablename__,
    Audio.__tablename__,
    Prompt.__tablename__,
    ScriptAssetMapping.__tablename__,
)
