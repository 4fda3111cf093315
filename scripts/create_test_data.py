#!/usr/bin/env python3
"""Create a demo script with linked scene media and print IDs for manual testing."""

import io
import sys

import httpx
from PIL import Image

BASE_URL = "http://127.0.0.1:8000"


def _png_bytes(color: tuple[int, int, int]) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (64, 36), color).save(buf, format="PNG")
    return buf.getvalue()


def _check(resp: httpx.Response, what: str, expected: int = 201) -> dict:
    if resp.status_code != expected:
        print(f"Failed to {what}: {resp.status_code} {resp.text}", file=sys.stderr)
        sys.exit(1)
    return resp.json()


def main():
    client = httpx.Client(base_url=BASE_URL, timeout=10.0)

    # Upload two images: one linked through a mapping, one only referenced by the legacy pointer
    linked = _check(
        client.post("/v1/assets/image?filename=linked.png", content=_png_bytes((200, 40, 40)), headers={"content-type": "image/png"}),
        "upload image",
    )
    legacy = _check(
        client.post("/v1/assets/image?filename=legacy.png", content=_png_bytes((40, 40, 200)), headers={"content-type": "image/png"}),
        "upload image",
    )
    print(f"IMAGE_ID={linked['id']}")
    print(f"LEGACY_IMAGE_ID={legacy['id']}")

    script = _check(
        client.post(
            "/v1/scripts",
            json={
                "title": "demo script",
                "acts": [
                    {
                        "title": "Act 1",
                        "scenes": [
                            {"actIndex": 0, "sceneIndex": 0, "description": "A rainy alley."},
                            {"actIndex": 0, "sceneIndex": 1, "description": "A neon bar.", "generatedImageId": legacy["id"]},
                        ],
                    }
                ],
            },
        ),
        "create script",
    )
    script_id = script["id"]
    print(f"SCRIPT_ID={script_id}")

    _check(
        client.post(
            f"/v1/scripts/{script_id}/scenes/act0-scene0/assets/link",
            json={"asset_type": "image", "asset_id": linked["id"]},
        ),
        "link image",
        expected=200,
    )

    for scene_id in ("act0-scene0", "act0-scene1"):
        slots = _check(client.get(f"/v1/scripts/{script_id}/scenes/{scene_id}/assets"), "resolve scene", expected=200)
        print(f"{scene_id}: image={slots['image']['source']} video={slots['video']['source']} audio={slots['audio']['source']}")

    print("\n# Export for shell (copy-paste):")
    print(f"export SCRIPT_ID={script_id}")


if __name__ == "__main__":
    main()
