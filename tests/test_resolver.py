import pytest

from scenemedia.db.models import AssetKind
from scenemedia.services.handles import HandleRegistry
from scenemedia.services.resolver import SceneAssetView


SCENE = "act0-scene0"


def test_mapping_wins_over_legacy(library):
    mapped = library.assets.add(AssetKind.IMAGE, b"mapped")
    legacy = library.assets.add(AssetKind.IMAGE, b"legacy")
    mapping = library.mutator.link_asset(1, SCENE, "image", mapped.id)

    result = library.resolver.resolve_slot(1, SCENE, "image", legacy_id=legacy.id)

    assert result.source == "mapping"
    assert result.asset.id == mapped.id
    assert result.mapping_id == mapping.id


def test_legacy_pointer_fallback(library):
    legacy = library.assets.add(AssetKind.VIDEO, b"legacy")

    result = library.resolver.resolve_slot(1, SCENE, "video", legacy_id=legacy.id)

    assert result.source == "legacy"
    assert result.asset.id == legacy.id
    assert result.mapping_id is None


def test_deleted_legacy_asset_is_absent(library):
    legacy = library.assets.add(AssetKind.IMAGE, b"legacy")
    library.assets.delete(AssetKind.IMAGE, legacy.id)

    result = library.resolver.resolve_slot(1, SCENE, "image", legacy_id=legacy.id)

    assert result.source == "absent"
    assert not result.resolved


def test_dangling_mapping_does_not_fall_back(library):
    mapped = library.assets.add(AssetKind.IMAGE, b"mapped")
    legacy = library.assets.add(AssetKind.IMAGE, b"legacy")
    library.mutator.link_asset(1, SCENE, "image", mapped.id)
    library.assets.delete(AssetKind.IMAGE, mapped.id)

    result = library.resolver.resolve_slot(1, SCENE, "image", legacy_id=legacy.id)

    assert result.source == "dangling"
    assert result.asset is None


def test_audio_has_no_legacy_pointer(library):
    audio = library.assets.add(AssetKind.AUDIO, b"audio")

    assert library.resolver.resolve_slot(1, SCENE, "audio", legacy_id=audio.id).source == "absent"


def test_resolve_records_covers_every_kind(library):
    image = library.assets.add(AssetKind.IMAGE, b"img")
    library.mutator.link_asset(1, SCENE, "image", image.id)

    results = library.resolver.resolve_records(1, SCENE)

    assert set(results) == set(AssetKind)
    assert results[AssetKind.IMAGE].source == "mapping"
    assert results[AssetKind.VIDEO].source == "absent"
    assert results[AssetKind.AUDIO].source == "absent"


def test_resolve_issues_one_handle_per_asset(library):
    image = library.assets.add(AssetKind.IMAGE, b"img-bytes", mime_type="image/png")
    audio = library.assets.add(AssetKind.AUDIO, b"audio-bytes")
    library.mutator.link_asset(1, SCENE, "image", image.id)
    library.mutator.link_asset(1, SCENE, "audio", audio.id)

    resolved = library.resolver.resolve(1, SCENE)

    assert resolved.video is None
    assert resolved["image"].asset_id == image.id
    assert resolved.image.handle.url.startswith("blob:scenemedia/")
    assert library.handles.open(resolved.image.handle) == b"img-bytes"
    assert library.handles.outstanding == 2


def test_view_releases_handles_on_close(library):
    image = library.assets.add(AssetKind.IMAGE, b"img")
    library.mutator.link_asset(1, SCENE, "image", image.id)
    start = library.handles.outstanding

    with library.scene_view(1, SCENE) as view:
        assert view.image.asset_id == image.id
        view.refresh()
        view.refresh()
        assert library.handles.outstanding == start + 1

    assert library.handles.outstanding == start
    assert view.image is None


def test_view_link_swaps_handle(library):
    first = library.assets.add(AssetKind.IMAGE, b"first")
    second = library.assets.add(AssetKind.IMAGE, b"second")

    with library.scene_view(1, SCENE) as view:
        view.link("image", first.id)
        old_url = view.image.handle.url
        view.replace("image", first.id, second.id)

        assert view.image.asset_id == second.id
        assert library.handles.open(old_url) is None
        assert library.handles.outstanding == 1

        view.unlink("image", second.id)
        assert view.image is None
        assert library.handles.outstanding == 0


def test_view_uses_legacy_pointers(library):
    legacy = library.assets.add(AssetKind.IMAGE, b"legacy")

    with library.scene_view(1, SCENE, legacy_image_id=legacy.id) as view:
        assert view.image.source == "legacy"


def test_view_without_mutator_is_read_only(library):
    view = SceneAssetView(library.resolver, 1, SCENE)

    with pytest.raises(RuntimeError):
        view.link("image", 1)


class TestHandleRegistry:
    def test_release_is_idempotent(self):
        registry = HandleRegistry("blob:test")
        handle = registry.create("image", 1, b"abc", "image/png")

        assert registry.lookup(handle.url) == handle
        assert handle.size_bytes == 3
        assert registry.release(handle) is True
        assert registry.release(handle) is False
        assert registry.release(None) is False
        assert registry.outstanding == 0

    def test_release_all(self):
        registry = HandleRegistry("blob:test/")
        for asset_id in range(3):
            registry.create("audio", asset_id, b"x")

        assert registry.release_all() == 3
        assert registry.outstanding == 0
