from fastapi import APIRouter, Response

from scenemedia.api.deps import LibraryDep
from scenemedia.api.v1.schemas import MappingRead, ScriptCreate, ScriptRead
from scenemedia.core.exceptions import EntityNotFoundError
from scenemedia.db.models import Script


router = APIRouter(tags=["scripts"])


def _script_read(script: Script) -> ScriptRead:
    return ScriptRead(
        id=script.id,
        title=script.title,
        acts=script.acts or [],
        metadata=script.metadata_ or {},
        created_at=script.created_at,
    )


@router.post("/scripts", response_model=ScriptRead)
def create_script(payload: ScriptCreate, response: Response, library=LibraryDep):
    script = library.scripts.create_script(payload.title, acts=payload.acts, metadata=payload.metadata)
    response.status_code = 201
    return _script_read(script)


@router.get("/scripts/{script_id}", response_model=ScriptRead)
def get_script(script_id: int, library=LibraryDep):
    script = library.scripts.get_script(script_id)
    if script is None:
        raise EntityNotFoundError("script", script_id)
    return _script_read(script)


@router.get("/scripts/{script_id}/mappings", response_model=list[MappingRead])
def list_script_mappings(script_id: int, library=LibraryDep):
    return library.mappings.list_for_script(script_id)
