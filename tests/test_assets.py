import pytest

from scenemedia.db.models import AssetKind, UploadSource
from scenemedia.services.assets import sniff_mime_type


class TestSniffMimeType:
    def test_png_from_bytes(self, png_bytes):
        assert sniff_mime_type(AssetKind.IMAGE, png_bytes()) == "image/png"

    def test_jpeg_from_bytes_beats_filename(self, png_bytes):
        data = png_bytes(fmt="JPEG")
        assert sniff_mime_type(AssetKind.IMAGE, data, "upload.png") == "image/jpeg"

    def test_undecodable_image_uses_filename(self):
        assert sniff_mime_type(AssetKind.IMAGE, b"not an image", "frame.gif") == "image/gif"

    def test_oversized_image_falls_back(self, oversized_png):
        assert sniff_mime_type(AssetKind.IMAGE, oversized_png, "poster.jpg") == "image/jpeg"
        assert sniff_mime_type(AssetKind.IMAGE, oversized_png) == "image/png"

    def test_filename_of_other_kind_is_ignored(self):
        assert sniff_mime_type(AssetKind.VIDEO, b"\x00\x01", "notes.txt") == "video/mp4"

    @pytest.mark.parametrize(
        ("kind", "filename", "expected"),
        [
            (AssetKind.VIDEO, "clip.mp4", "video/mp4"),
            (AssetKind.AUDIO, "line.mp3", "audio/mpeg"),
            (AssetKind.AUDIO, None, "audio/mpeg"),
        ],
    )
    def test_non_image_kinds(self, kind, filename, expected):
        assert sniff_mime_type(kind, b"\x00" * 16, filename) == expected


def test_add_fills_metadata(library, png_bytes):
    asset = library.assets.add(AssetKind.IMAGE, png_bytes(), original_filename="a.png")

    assert asset.id is not None
    assert asset.upload_source == UploadSource.AI_GENERATED.value
    assert asset.mime_type == "image/png"
    assert asset.uploaded_at is not None
    assert asset.has_metadata


def test_add_without_metadata_leaves_gaps(library):
    asset = library.assets.add("audio", b"\x00" * 8, with_metadata=False)

    assert asset.upload_source is None
    assert asset.mime_type is None
    assert asset.uploaded_at is None
    assert not asset.has_metadata


def test_add_keeps_duration_for_timed_media(library):
    video = library.assets.add(AssetKind.VIDEO, b"\x00", duration=4.5)
    image = library.assets.add(AssetKind.IMAGE, b"\x00", duration=4.5)

    assert video.duration == 4.5
    assert not hasattr(image, "duration")


def test_get_missing_returns_none(library):
    assert library.assets.get(AssetKind.IMAGE, 999) is None
    assert library.assets.get(AssetKind.IMAGE, None) is None
    assert library.assets.exists(AssetKind.IMAGE, 999) is False


def test_kinds_are_stored_separately(library):
    image = library.assets.add(AssetKind.IMAGE, b"img")
    library.assets.add(AssetKind.VIDEO, b"vid")

    assert library.assets.count(AssetKind.IMAGE) == 1
    assert library.assets.count(AssetKind.VIDEO) == 1
    assert library.assets.count(AssetKind.AUDIO) == 0
    assert library.assets.count_all() == 2
    assert library.assets.exists(AssetKind.IMAGE, image.id)


def test_iter_assets_pages_in_id_order(library):
    ids = [library.assets.add(AssetKind.AUDIO, bytes([i])).id for i in range(5)]

    assert [row.id for row in library.assets.iter_assets(AssetKind.AUDIO, batch_size=2)] == ids
    assert [row.id for row in library.assets.iter_metadata(AssetKind.AUDIO, batch_size=2)] == ids


def test_update_metadata_rejects_unknown_fields(library):
    asset = library.assets.add(AssetKind.IMAGE, b"img")

    with pytest.raises(ValueError):
        library.assets.update_metadata(AssetKind.IMAGE, asset.id, data=b"other")


def test_update_metadata_missing_asset(library):
    assert library.assets.update_metadata(AssetKind.IMAGE, 404, mime_type="image/png") is None


def test_delete(library):
    asset = library.assets.add(AssetKind.IMAGE, b"img")

    assert library.assets.delete(AssetKind.IMAGE, asset.id) is True
    assert library.assets.delete(AssetKind.IMAGE, asset.id) is False
    assert library.assets.get(AssetKind.IMAGE, asset.id) is None
