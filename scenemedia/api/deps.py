from collections.abc import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from scenemedia.db.session import get_db
from scenemedia.services.library import MediaLibrary


def db_session() -> Generator[Session, None, None]:
    yield from get_db()


def media_library(db: Session = Depends(db_session)) -> MediaLibrary:
    return MediaLibrary.build(db)


DbSessionDep = Depends(db_session)
LibraryDep = Depends(media_library)
