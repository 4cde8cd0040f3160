from rapidalle.core.config import settings
from rapidalle.features.credits.service import set_balance

HEADERS = {"X-User-Id": "credits-user"}


def test_credits_summary_with_quota(client):
    resp = client.get("/api/credits", headers=HEADERS)

    assert resp.status_code == 200
    body = resp.json()
    assert body["credits"] == settings.INITIAL_CREDITS
    assert body["tier"] == "free"
    assert body["subscription"] is False
    assert body["rateLimit"]["limit"] == 3
    assert body["rateLimit"]["remaining"] == 3
    assert body["rateLimit"]["resetTime"].endswith("Z")


def test_credits_reflect_generation(client):
    set_balance("credits-user", 4)
    client.post("/api/generate", json={"theme": "a", "description": "b"}, headers=HEADERS)

    body = client.get("/api/credits", headers=HEADERS).json()
    assert body["credits"] == 3
    assert body["rateLimit"]["remaining"] == 2
