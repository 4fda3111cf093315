import io
import struct
import zlib

import pytest
import httpx
from PIL import Image
from sqlalchemy import text

from scenemedia.core import settings as settings_module
from scenemedia.db.base import Base
from scenemedia.db.session import get_engine, get_sessionmaker, init_engine
from scenemedia.main import app
from scenemedia.services.library import MediaLibrary


@pytest.fixture()
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _use_test_db(tmp_path, monkeypatch):
    db_path = tmp_path / "test.db"
    database_url = f"sqlite+pysqlite:///{db_path}"

    monkeypatch.setattr(settings_module.settings, "database_url", database_url)
    monkeypatch.setattr(settings_module.settings, "db_auto_create", True)

    init_engine(database_url)
    Base.metadata.create_all(bind=get_engine())

    yield


@pytest.fixture()
def without_script_asset_index():
    """Schema as it stood before script-level rows were unique per asset."""
    with get_engine().begin() as conn:
        conn.execute(text("DROP INDEX uq_script_asset_mappings_script_asset"))


@pytest.fixture()
def db():
    SessionLocal = get_sessionmaker()
    with SessionLocal() as session:
        yield session


@pytest.fixture()
def library(db):
    return MediaLibrary.build(db)


@pytest.fixture()
def png_bytes():
    def _make(color=(255, 0, 0), size=(8, 8), fmt="PNG") -> bytes:
        buf = io.BytesIO()
        Image.new("RGB", size, color).save(buf, format=fmt)
        return buf.getvalue()

    return _make


@pytest.fixture()
def oversized_png() -> bytes:
    """PNG header claiming 30000x30000 pixels, past Pillow's bomb limit."""

    def chunk(tag: bytes, body: bytes) -> bytes:
        return struct.pack(">I", len(body)) + tag + body + struct.pack(">I", zlib.crc32(tag + body))

    header = struct.pack(">IIBBBBB", 30000, 30000, 8, 2, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", header) + chunk(b"IDAT", b"") + chunk(b"IEND", b"")


@pytest.fixture()
async def client():
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
