import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from scenemedia.db.models import AssetKind, MappingRole


class ScriptCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    acts: list[dict] = Field(default_factory=list)
    metadata: dict = Field(default_factory=dict)


class ScriptRead(BaseModel):
    id: int
    title: str
    acts: list[dict]
    metadata: dict = Field(default_factory=dict)
    created_at: datetime | None = None


class AssetRead(BaseModel):
    id: int
    kind: AssetKind
    upload_source: str | None = None
    original_filename: str | None = None
    mime_type: str | None = None
    uploaded_at: datetime | None = None
    duration: float | None = None
    size_bytes: int
    data_url: str


class SlotRead(BaseModel):
    """One resolved scene slot.

    ``source`` is ``mapping``, ``legacy``, ``dangling`` or ``absent``; only the
    first two carry an asset.
    """

    kind: AssetKind
    source: str
    asset_id: int | None = None
    mapping_id: int | None = None
    mime_type: str | None = None
    data_url: str | None = None


class SceneAssetsRead(BaseModel):
    script_id: int
    scene_id: str
    image: SlotRead
    video: SlotRead
    audio: SlotRead


class LinkRequest(BaseModel):
    asset_type: AssetKind
    asset_id: int = Field(ge=1)
    role: MappingRole | None = None


class UnlinkRequest(BaseModel):
    asset_type: AssetKind
    asset_id: int = Field(ge=1)


class ReplaceRequest(BaseModel):
    asset_type: AssetKind
    old_asset_id: int = Field(ge=1)
    new_asset_id: int = Field(ge=1)
    role: MappingRole | None = None


class MappingRead(BaseModel):
    id: int
    script_id: int
    scene_id: str | None = None
    asset_type: str
    asset_id: int
    linked_at: datetime
    role: str | None = None

    model_config = {"from_attributes": True}


class UnlinkResult(BaseModel):
    removed: int


class MigrationStatsRead(BaseModel):
    total_assets: int
    total_mappings: int
    assets_with_metadata: int
    orphaned_assets: int
    duplicate_mappings: int
    dangling_mappings: int
    unmigrated_scripts: int


class MigrationReportRead(BaseModel):
    ok: bool
    errors: list[str]
    warnings: list[str]
    stats: MigrationStatsRead


class RestoreRequest(BaseModel):
    snapshot: dict
    replace: bool = False


class RestoreResult(BaseModel):
    counts: dict[str, int]


class JobStatusRead(BaseModel):
    job_id: uuid.UUID
    job_type: str
    status: str
    created_at: datetime
    updated_at: datetime
    progress: dict | None = None
    result: dict | None = None
    error: str | None = None
