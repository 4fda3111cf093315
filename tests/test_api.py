import pytest
from sqlalchemy import Delete
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from scenemedia.services import job_queue


@pytest.mark.anyio
async def test_health_and_metrics(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}

    resp = await client.get("/metrics")
    assert resp.status_code == 200
    assert "scenemedia_mapping_mutations_total" in resp.text


@pytest.mark.anyio
async def test_upload_link_and_resolve(client, png_bytes):
    script = await client.post(
        "/v1/scripts",
        json={"title": "Pilot", "acts": [{"scenes": [{"actIndex": 0, "sceneIndex": 0}]}]},
    )
    assert script.status_code == 201
    script_id = script.json()["id"]

    payload = png_bytes()
    upload = await client.post(
        "/v1/assets/image",
        params={"filename": "cover.png"},
        content=payload,
        headers={"content-type": "image/png"},
    )
    assert upload.status_code == 201
    asset = upload.json()
    assert asset["mime_type"] == "image/png"
    assert asset["upload_source"] == "manual-upload"
    assert asset["size_bytes"] == len(payload)

    resp = await client.post(
        f"/v1/scripts/{script_id}/scenes/act0-scene0/assets/link",
        json={"asset_type": "image", "asset_id": asset["id"]},
    )
    assert resp.status_code == 200
    assert resp.json()["scene_id"] == "act0-scene0"

    resp = await client.get(f"/v1/scripts/{script_id}/scenes/act0-scene0/assets")
    assert resp.status_code == 200
    slots = resp.json()
    assert slots["image"]["source"] == "mapping"
    assert slots["image"]["asset_id"] == asset["id"]
    assert slots["video"]["source"] == "absent"
    assert slots["audio"]["data_url"] is None

    data = await client.get(slots["image"]["data_url"])
    assert data.status_code == 200
    assert data.content == payload
    assert data.headers["content-type"] == "image/png"

    mappings = await client.get(f"/v1/scripts/{script_id}/mappings")
    assert [m["asset_id"] for m in mappings.json()] == [asset["id"]]


@pytest.mark.anyio
async def test_replace_and_unlink(client):
    first = (await client.post("/v1/assets/video", content=b"v1")).json()
    second = (await client.post("/v1/assets/video", content=b"v2")).json()
    base = "/v1/scripts/3/scenes/act1-scene2/assets"

    resp = await client.post(
        f"{base}/replace",
        json={"asset_type": "video", "old_asset_id": first["id"], "new_asset_id": second["id"]},
    )
    assert resp.status_code == 200
    assert resp.json()["asset_id"] == second["id"]

    resp = await client.post(f"{base}/unlink", json={"asset_type": "video", "asset_id": first["id"]})
    assert resp.json() == {"removed": 0}
    resp = await client.post(f"{base}/unlink", json={"asset_type": "video", "asset_id": second["id"]})
    assert resp.json() == {"removed": 1}

    resolved = (await client.get(base)).json()
    assert resolved["video"]["source"] == "absent"


@pytest.mark.anyio
async def test_legacy_pointer_resolution(client):
    image = (await client.post("/v1/assets/image", content=b"legacy")).json()
    script = (
        await client.post(
            "/v1/scripts",
            json={"title": "Old", "acts": [{"scenes": [{"generatedImageId": image["id"]}]}]},
        )
    ).json()

    slots = (await client.get(f"/v1/scripts/{script['id']}/scenes/act0-scene0/assets")).json()
    assert slots["image"]["source"] == "legacy"
    assert slots["image"]["asset_id"] == image["id"]


@pytest.mark.anyio
async def test_error_responses(client):
    resp = await client.post("/v1/assets/hologram", content=b"x")
    assert resp.status_code == 400
    assert "request_id" in resp.json()

    resp = await client.get("/v1/scripts/404")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "script not found: 404"

    resp = await client.get("/v1/assets/image/404")
    assert resp.status_code == 404

    resp = await client.post("/v1/assets/image", content=b"")
    assert resp.status_code == 400

    resp = await client.post(
        "/v1/scripts/1/scenes/act0-scene0/assets/link",
        json={"asset_type": "hologram", "asset_id": 1},
    )
    assert resp.status_code == 422


@pytest.mark.anyio
async def test_unlink_storage_failure_is_503(client, monkeypatch):
    real_execute = Session.execute

    def execute(self, statement, *args, **kwargs):
        if isinstance(statement, Delete):
            raise OperationalError("DELETE", {}, Exception("database is locked"))
        return real_execute(self, statement, *args, **kwargs)

    monkeypatch.setattr(Session, "execute", execute)

    resp = await client.post(
        "/v1/scripts/1/scenes/act0-scene0/assets/unlink",
        json={"asset_type": "image", "asset_id": 1},
    )
    assert resp.status_code == 503


@pytest.mark.anyio
async def test_oversized_image_upload(client, oversized_png):
    resp = await client.post("/v1/assets/image", content=oversized_png)
    assert resp.status_code == 201
    assert resp.json()["mime_type"] == "image/png"


@pytest.mark.anyio
async def test_restore_rejects_malformed_entries(client):
    resp = await client.post("/v1/diagnostics/restore", json={"snapshot": {"version": 7, "data": {"images": [1]}}})
    assert resp.status_code == 400


@pytest.mark.anyio
async def test_migration_report(client):
    await client.post("/v1/assets/audio", content=b"orphan")

    resp = await client.get("/v1/diagnostics/migration")
    assert resp.status_code == 200
    report = resp.json()
    assert report["ok"] is True
    assert report["stats"]["total_assets"] == 1
    assert report["stats"]["orphaned_assets"] == 1


@pytest.mark.anyio
async def test_repair_job(client):
    image = (await client.post("/v1/assets/image", content=b"legacy")).json()
    await client.post(
        "/v1/scripts",
        json={"title": "Old", "acts": [{"scenes": [{"generatedImageId": image["id"]}]}]},
    )

    resp = await client.post("/v1/diagnostics/repairs/rebuild_mappings_from_scenes")
    assert resp.status_code == 202
    job_id = resp.json()["job_id"]
    assert resp.json()["job_type"] == "repair:rebuild_mappings_from_scenes"

    await job_queue.wait_for_idle()

    job = (await client.get(f"/v1/jobs/{job_id}")).json()
    assert job["status"] == "succeeded"
    assert job["result"] == {"changed": {"rebuild_mappings_from_scenes": 1}}

    report = (await client.get("/v1/diagnostics/migration")).json()
    assert report["stats"]["unmigrated_scripts"] == 0


@pytest.mark.anyio
async def test_unknown_repair_and_job(client):
    resp = await client.post("/v1/diagnostics/repairs/drop_everything")
    assert resp.status_code == 400

    resp = await client.get("/v1/jobs/00000000-0000-0000-0000-000000000000")
    assert resp.status_code == 404


@pytest.mark.anyio
async def test_export_and_restore(client):
    await client.post("/v1/scripts", json={"title": "Pilot"})

    resp = await client.get("/v1/diagnostics/export")
    assert resp.status_code == 200
    assert "attachment" in resp.headers["content-disposition"]
    snapshot = resp.json()
    assert snapshot["version"] == 7

    resp = await client.post("/v1/diagnostics/restore", json={"snapshot": snapshot})
    assert resp.status_code == 400

    resp = await client.post("/v1/diagnostics/restore", json={"snapshot": snapshot, "replace": True})
    assert resp.status_code == 200
    assert resp.json()["counts"]["scripts"] == 1
