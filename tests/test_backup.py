import base64
import json

import pytest

from scenemedia.core.exceptions import BackupFormatError
from scenemedia.db.models import AssetKind, Prompt


def _seed(library):
    image = library.assets.add(AssetKind.IMAGE, b"\x89PNG-ish", original_filename="cover.png")
    audio = library.assets.add(AssetKind.AUDIO, b"narration", duration=12.5)
    script = library.scripts.create_script(
        "Pilot",
        acts=[{"scenes": [{"actIndex": 0, "sceneIndex": 0}]}],
        metadata={"genre": "noir"},
    )
    library.db.add(Prompt(title="Rain", category="image", prompt="wet neon streets", tags=["noir"]))
    library.db.commit()
    library.mutator.link_asset(script.id, "act0-scene0", "image", image.id)
    library.mutator.link_asset(script.id, None, "audio", audio.id, role="full-script-audio")
    return script, image, audio


def test_export_format(library):
    script, image, _ = _seed(library)

    snapshot = library.backup.export_snapshot()

    assert snapshot["version"] == 7
    assert "exportedAt" in snapshot
    data = snapshot["data"]
    assert set(data) == {"scripts", "images", "videos", "audios", "prompts", "scriptAssetMappings"}
    assert data["scripts"][0]["genre"] == "noir"
    assert data["images"][0]["originalFilename"] == "cover.png"
    assert base64.b64decode(data["images"][0]["data"]) == b"\x89PNG-ish"
    assert data["audios"][0]["duration"] == 12.5
    assert data["audios"][0]["isFullScript"] is False
    assert data["prompts"][0]["tags"] == ["noir"]

    scene_row = data["scriptAssetMappings"][0]
    assert scene_row["scriptId"] == script.id
    assert scene_row["sceneId"] == "act0-scene0"
    assert scene_row["assetType"] == "image"
    assert scene_row["assetId"] == image.id
    assert data["scriptAssetMappings"][1]["sceneId"] is None

    assert json.loads(library.backup.export_json())["version"] == 7


def test_clear_then_restore(library):
    script, image, _ = _seed(library)
    script_id, image_id = script.id, image.id
    snapshot = json.loads(library.backup.export_json())

    library.backup.clear_all_data()
    assert library.backup.is_empty()

    counts = library.backup.restore_snapshot(snapshot)

    assert counts["scripts"] == 1
    assert counts["images"] == 1
    assert counts["audios"] == 1
    assert counts["prompts"] == 1
    assert counts["scriptAssetMappings"] == 2
    assert counts["skippedMappings"] == 0
    assert library.assets.get(AssetKind.IMAGE, image_id).data == b"\x89PNG-ish"
    assert library.scripts.get_script(script_id).metadata_ == {"genre": "noir"}
    assert library.mappings.find_slot(script_id, "act0-scene0", "image").asset_id == image_id
    assert library.verifier.verify().ok


def test_restore_requires_empty_database(library):
    _seed(library)
    snapshot = library.backup.export_snapshot()

    with pytest.raises(BackupFormatError):
        library.backup.restore_snapshot(snapshot)

    counts = library.backup.restore_snapshot(snapshot, replace=True)
    assert counts["scriptAssetMappings"] == 2
    assert library.mappings.count() == 2


@pytest.mark.parametrize("snapshot", [{"version": 6, "data": {}}, {"version": 7}, ["not", "a", "dict"]])
def test_restore_rejects_bad_snapshots(library, snapshot):
    with pytest.raises(BackupFormatError):
        library.backup.restore_snapshot(snapshot)


def test_restore_skips_second_row_for_a_slot(library):
    snapshot = {
        "version": 7,
        "data": {
            "scriptAssetMappings": [
                {"id": 2, "scriptId": 5, "sceneId": "act0-scene0", "assetType": "image", "assetId": 20},
                {"id": 1, "scriptId": 5, "sceneId": "act0-scene0", "assetType": "image", "assetId": 10},
                {"id": 3, "scriptId": 5, "sceneId": None, "assetType": "audio", "assetId": 7},
            ]
        },
    }

    counts = library.backup.restore_snapshot(snapshot)

    assert counts["scriptAssetMappings"] == 2
    assert counts["skippedMappings"] == 1
    assert library.mappings.find_slot(5, "act0-scene0", "image").asset_id == 10


def test_restore_rejects_invalid_mapping(library):
    snapshot = {
        "version": 7,
        "data": {"scriptAssetMappings": [{"id": 1, "scriptId": 5, "assetType": "hologram", "assetId": 1}]},
    }

    with pytest.raises(BackupFormatError):
        library.backup.restore_snapshot(snapshot)
    assert library.mappings.count() == 0


def test_restore_skips_repeated_script_level_row(library):
    snapshot = {
        "version": 7,
        "data": {
            "scriptAssetMappings": [
                {"id": 1, "scriptId": 5, "sceneId": None, "assetType": "audio", "assetId": 7},
                {"id": 2, "scriptId": 5, "sceneId": None, "assetType": "audio", "assetId": 7},
            ]
        },
    }

    counts = library.backup.restore_snapshot(snapshot)

    assert counts["scriptAssetMappings"] == 1
    assert counts["skippedMappings"] == 1
    assert [row.id for row in library.mappings.list_for_script(5)] == [1]


@pytest.mark.parametrize(
    "data",
    [
        {"images": [1]},
        {"scripts": "not a list"},
        {"prompts": [["title", "x"]]},
        {"scriptAssetMappings": [None]},
    ],
)
def test_restore_rejects_malformed_entries(library, data):
    with pytest.raises(BackupFormatError):
        library.backup.restore_snapshot({"version": 7, "data": data})
    assert library.backup.is_empty()
