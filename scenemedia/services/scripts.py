from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from scenemedia.db.models import Script


def scene_key(act_index: int, scene_index: int) -> str:
    """Stable scene identifier used by scene-level mappings."""
    return f"act{act_index}-scene{scene_index}"


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


@dataclass(frozen=True)
class SceneRef:
    script_id: int
    scene_id: str
    legacy_image_id: int | None
    legacy_video_id: int | None


def iter_scene_refs(script: Script) -> Iterator[SceneRef]:
    """Walk a script's acts and scenes, yielding scene ids and legacy pointers.

    ``actIndex``/``sceneIndex`` stored on the scene win; list positions are
    used for scenes written before those fields existed.
    """
    for act_pos, act in enumerate(script.acts or []):
        if not isinstance(act, dict):
            continue
        for scene_pos, scene in enumerate(act.get("scenes") or []):
            if not isinstance(scene, dict):
                continue
            act_index = _as_int(scene.get("actIndex"))
            scene_index = _as_int(scene.get("sceneIndex"))
            yield SceneRef(
                script_id=script.id,
                scene_id=scene_key(
                    act_pos if act_index is None else act_index,
                    scene_pos if scene_index is None else scene_index,
                ),
                legacy_image_id=_as_int(scene.get("generatedImageId")) or None,
                legacy_video_id=_as_int(scene.get("generatedVideoId")) or None,
            )


class ScriptStore:
    def __init__(self, db: Session):
        self.db = db

    def create_script(self, title: str, acts: list[dict] | None = None, metadata: dict | None = None) -> Script:
        script = Script(title=title, acts=acts or [], metadata_=metadata or {})
        self.db.add(script)
        self.db.commit()
        self.db.refresh(script)
        return script

    def get_script(self, script_id: int) -> Script | None:
        return self.db.get(Script, script_id)

    def count(self) -> int:
        return int(self.db.execute(select(func.count()).select_from(Script)).scalar_one())

    def iter_scripts(self, batch_size: int = 500) -> Iterator[Script]:
        last_id = 0
        while True:
            stmt = select(Script).where(Script.id > last_id).order_by(Script.id.asc()).limit(batch_size)
            batch = list(self.db.execute(stmt).scalars().all())
            if not batch:
                return
            yield from batch
            last_id = batch[-1].id

    def find_scene(self, script_id: int, scene_id: str) -> SceneRef | None:
        script = self.get_script(script_id)
        if script is None:
            return None
        for ref in iter_scene_refs(script):
            if ref.scene_id == scene_id:
                return ref
        return None
