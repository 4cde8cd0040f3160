"""Gallery and saved-prompt routes."""

from rapidalle.features.artifacts.service import create_image, create_prompt, get_image_by_id, update_image

OWNER = {"X-User-Id": "gallery-owner"}
OTHER = {"X-User-Id": "gallery-other"}


def test_library_is_served_from_cache_until_invalidated(client):
    first = create_image("gallery-owner", url="https://img/1.png", run_id="run_1")

    resp = client.get("/api/library", headers=OWNER)
    assert resp.status_code == 200
    images = resp.json()["images"]
    assert [img["id"] for img in images] == [first.id]
    assert images[0]["userId"] == "gallery-owner"
    assert images[0]["runId"] == "run_1"

    # Written behind the cache's back
    second = create_image("gallery-owner", url="https://img/2.png", run_id="run_2")
    assert len(client.get("/api/library", headers=OWNER).json()["images"]) == 1

    assert client.delete(f"/api/images/{first.id}", headers=OWNER).json() == {"deleted": True}
    assert [img["id"] for img in client.get("/api/library", headers=OWNER).json()["images"]] == [second.id]


def test_single_image_is_owner_only(client):
    image = create_image("gallery-owner", url="https://img/3.png")

    assert client.get(f"/api/images/{image.id}", headers=OWNER).json()["url"] == "https://img/3.png"

    forbidden = client.get(f"/api/images/{image.id}", headers=OTHER)
    assert forbidden.status_code == 403
    assert client.delete(f"/api/images/{image.id}", headers=OTHER).status_code == 403
    assert get_image_by_id(image.id) is not None

    assert client.get("/api/images/does-not-exist", headers=OWNER).status_code == 404


def test_prompt_crud(client):
    created = client.post("/api/prompts", json={"theme": " beach ", "description": "sunset"}, headers=OWNER)
    assert created.status_code == 200
    prompt = created.json()
    assert prompt["theme"] == "beach"
    assert prompt["userId"] == "gallery-owner"

    listed = client.get("/api/prompts", headers=OWNER).json()["prompts"]
    assert [p["id"] for p in listed] == [prompt["id"]]

    updated = client.patch(f"/api/prompts/{prompt['id']}", json={"description": "sunrise"}, headers=OWNER)
    assert updated.status_code == 200
    assert updated.json()["description"] == "sunrise"
    assert updated.json()["theme"] == "beach"

    assert client.delete(f"/api/prompts/{prompt['id']}", headers=OWNER).json() == {"deleted": True}
    assert client.get("/api/prompts", headers=OWNER).json()["prompts"] == []


def test_prompt_validation_and_ownership(client):
    bad = client.post("/api/prompts", json={"theme": "  ", "description": "x"}, headers=OWNER)
    assert bad.status_code == 400
    assert bad.json()["error"]["field"] == "theme"

    prompt = create_prompt("gallery-owner", "forest", "mist")
    assert client.patch(f"/api/prompts/{prompt.id}", json={}, headers=OWNER).status_code == 400
    assert client.patch(f"/api/prompts/{prompt.id}", json={"theme": "x"}, headers=OTHER).status_code == 404
    assert client.delete(f"/api/prompts/{prompt.id}", headers=OTHER).status_code == 404


def test_deleting_prompt_keeps_its_images(client):
    prompt = create_prompt("gallery-owner", "forest", "mist")
    image = create_image("gallery-owner", url="https://img/4.png", prompt_id=prompt.id)

    client.delete(f"/api/prompts/{prompt.id}", headers=OWNER)

    kept = get_image_by_id(image.id)
    assert kept is not None
    assert kept.prompt_id is None


def test_update_image_rewrites_url_and_reports_missing():
    image = create_image("gallery-owner", url="https://img/5.png", base64="aGVsbG8=")

    updated = update_image(image.id, url="https://cdn/5.png")

    assert updated.url == "https://cdn/5.png"
    assert updated.base64 == "aGVsbG8="
    assert update_image("no-such-image", url="https://cdn/x.png") is None
