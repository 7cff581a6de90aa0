import hashlib
from decimal import Decimal

import pytest

from src.infrastructure.database.repositories.profile_repository import ProfileRepository

USER_ID = "fake-" + hashlib.sha256(b"test-token").hexdigest()[:10]

pytestmark = pytest.mark.usefixtures("clean_state")


def upload(client, auth_header, png, name="sample.png"):
    files = {"file": (name, png, "image/png")}
    r = client.post("/images/upload", headers=auth_header, files=files)
    assert r.status_code == 201, r.text
    return r.json()["image"]


def test_auth_validate(client, auth_header):
    r = client.post("/auth/validate", headers=auth_header)
    assert r.status_code == 200
    assert r.json()["user_id"] == USER_ID


def test_missing_token_rejected(client):
    r = client.get("/canvas")
    assert r.status_code == 401


def test_me_reports_stored_balance(client, auth_header):
    ProfileRepository(None).set_credits(USER_ID, Decimal("4.50"))
    r = client.get("/auth/me", headers=auth_header)
    assert r.status_code == 200
    data = r.json()
    assert Decimal(str(data["credits"])) == Decimal("4.50")
    assert data["unlimited"] is False


def test_upload_and_load_canvas(client, auth_header, make_png):
    image = upload(client, auth_header, make_png(8, 4), name="beach.png")
    assert image["title"] == "beach"
    assert image["version"] == 1
    assert (image["width"], image["height"]) == (1024.0, 512.0)
    assert (image["real_width"], image["real_height"]) == (8, 4)
    assert image["url"]

    r = client.get("/canvas", headers=auth_header)
    assert r.status_code == 200, r.text
    rows = r.json()["rows"]
    assert [row["id"] for row in rows] == [image["id"]]
    assert r.json()["selected_ids"] == [image["id"]]


def test_upload_rejects_non_images(client, auth_header):
    files = {"file": ("notes.png", b"not an image", "image/png")}
    r = client.post("/images/upload", headers=auth_header, files=files)
    assert r.status_code == 400


def test_generation_without_credits_is_refused(client, auth_header, make_png):
    image = upload(client, auth_header, make_png())
    r = client.post(
        "/generations", headers=auth_header, json={"image_id": image["id"], "prompt": "p", "quality": "pro-1k"}
    )
    assert r.status_code == 402

    rows = client.get("/canvas", headers=auth_header).json()["rows"]
    assert len(rows[0]["items"]) == 1


def test_generation_completes_and_joins_the_row(client, auth_header, make_png):
    ProfileRepository(None).set_credits(USER_ID, Decimal("1.00"))
    image = upload(client, auth_header, make_png(8, 8), name="cat.png")

    r = client.post(
        "/generations", headers=auth_header, json={"image_id": image["id"], "prompt": "add a hat", "quality": "pro-1k"}
    )
    assert r.status_code == 202, r.text
    body = r.json()
    job_id = body["job_id"]
    assert body["placeholder"]["title"] == "cat_v2"
    assert body["placeholder"]["is_generating"] is True
    assert Decimal(str(body["credits"])) == Decimal("0.50")

    # the background task has run by the time TestClient returns
    status = client.get(f"/generations/{job_id}", headers=auth_header).json()
    assert status["status"] == "completed"
    assert status["image"]["parent_id"] == image["id"]

    notes = client.get("/canvas/notifications", headers=auth_header).json()["notifications"]
    assert [n["level"] for n in notes] == ["success"]

    canvas = client.get("/canvas", headers=auth_header).json()
    (row,) = canvas["rows"]
    assert [item["id"] for item in row["items"]] == [image["id"], job_id]
    assert Decimal(str(canvas["credits"])) == Decimal("0.50")


def test_unknown_job_is_404(client, auth_header):
    r = client.get("/generations/nope", headers=auth_header)
    assert r.status_code == 404


def test_annotation_stroke_and_undo(client, auth_header, make_png):
    image = upload(client, auth_header, make_png())
    base = f"/images/{image['id']}/annotations"

    assert client.post(f"{base}/pointer/down", headers=auth_header, json={"x": 10, "y": 10}).status_code == 200
    again = client.post(f"{base}/pointer/down", headers=auth_header, json={"x": 11, "y": 11})
    assert again.status_code == 409
    stamp = client.post(f"{base}/stamps", headers=auth_header, json={"x": 5, "y": 5, "text": "mid-stroke"})
    assert stamp.status_code == 409
    client.post(f"{base}/pointer/move", headers=auth_header, json={"x": 40, "y": 40})
    state = client.post(f"{base}/pointer/up", headers=auth_header, json={"x": 80, "y": 80}).json()

    assert [a["type"] for a in state["annotations"]] == ["mask_path"]
    assert state["can_undo"] is True

    state = client.post(f"{base}/undo", headers=auth_header).json()
    assert state["annotations"] == []
    assert state["can_redo"] is True


def test_shapes_and_text(client, auth_header, make_png):
    image = upload(client, auth_header, make_png())
    base = f"/images/{image['id']}/annotations"

    state = client.post(
        f"{base}/shapes", headers=auth_header, json={"shape_type": "rect", "x": 5, "y": 5, "width": 50, "height": 40}
    ).json()
    shape_id = state["active_id"]
    assert state["annotations"][0]["width"] == 50

    state = client.post(f"{base}/stamps", headers=auth_header, json={"x": 100, "y": 100, "text": "sun"}).json()
    stamp_id = state["annotations"][-1]["id"]
    client.patch(f"{base}/{stamp_id}/text", headers=auth_header, json={"text": "moon"})
    state = client.post(f"{base}/finish", headers=auth_header).json()
    assert state["annotations"][-1]["text"] == "moon"

    state = client.delete(f"{base}/{shape_id}", headers=auth_header).json()
    assert [a["id"] for a in state["annotations"]] == [stamp_id]
    assert client.delete(f"{base}/missing", headers=auth_header).status_code == 404


def test_selection_moves_between_images(client, auth_header, make_png):
    first = upload(client, auth_header, make_png(), name="a.png")
    second = upload(client, auth_header, make_png(), name="b.png")

    r = client.post("/canvas/selection", headers=auth_header, json={"action": "select", "image_id": first["id"]})
    assert r.json()["selected_ids"] == [first["id"]]

    r = client.post("/canvas/selection", headers=auth_header, json={"action": "toggle", "image_id": second["id"]})
    assert set(r.json()["selected_ids"]) == {first["id"], second["id"]}

    r = client.post("/canvas/selection", headers=auth_header, json={"action": "select", "image_id": "nope"})
    assert r.status_code == 404


def test_rename_and_draft_prompt(client, auth_header, make_png):
    image = upload(client, auth_header, make_png())
    r = client.patch(f"/images/{image['id']}/title", headers=auth_header, json={"title": "  skyline "})
    assert r.json()["title"] == "skyline"
    r = client.patch(f"/images/{image['id']}/prompt", headers=auth_header, json={"text": "more clouds"})
    assert r.json()["draft_prompt"] == "more clouds"


def test_delete_images(client, auth_header, make_png):
    image = upload(client, auth_header, make_png())
    r = client.request("DELETE", "/images", headers=auth_header, json={"image_ids": [image["id"], "unknown"]})
    assert r.status_code == 200, r.text
    assert r.json()["deleted_ids"] == [image["id"]]

    rows = client.get("/canvas", headers=auth_header).json()["rows"]
    assert rows == []
