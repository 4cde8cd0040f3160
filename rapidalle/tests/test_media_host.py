import hashlib
from urllib.parse import parse_qs

import httpx
import pytest

from rapidalle.features.media.host import CloudinaryHost, MediaHostError, delivery_url, sign_params


def test_sign_params_sorts_and_appends_secret():
    params = {"timestamp": "100", "folder": "rapidalle", "public_id": "run_1"}
    expected = hashlib.sha1(b"folder=rapidalle&public_id=run_1&timestamp=100secret").hexdigest()
    assert sign_params(params, "secret") == expected


def test_delivery_url_inserts_transformation():
    url = "https://res.cloudinary.com/demo/image/upload/v1/rapidalle/run_1.png"
    assert delivery_url(url) == "https://res.cloudinary.com/demo/image/upload/f_auto,q_auto/v1/rapidalle/run_1.png"
    assert delivery_url("https://elsewhere/x.png") == "https://elsewhere/x.png"


def _host(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return CloudinaryHost(
        cloud_name="demo",
        api_key="key",
        api_secret="secret",
        folder="rapidalle",
        http_client=client,
        time_fn=lambda: 100.0,
    )


def test_upload_posts_signed_form():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["form"] = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        return httpx.Response(200, json={"secure_url": "https://res.cloudinary.com/demo/image/upload/v1/run_1.png"})

    url = _host(handler).upload("https://provider.example/img.png", public_id="run_1")

    assert url == "https://res.cloudinary.com/demo/image/upload/f_auto,q_auto/v1/run_1.png"
    assert seen["url"] == "https://api.cloudinary.com/v1_1/demo/image/upload"
    form = seen["form"]
    assert form["file"] == "https://provider.example/img.png"
    assert form["api_key"] == "key"
    assert form["timestamp"] == "100"
    assert form["signature"] == sign_params(
        {"folder": "rapidalle", "public_id": "run_1", "timestamp": "100"}, "secret"
    )


def test_upload_http_error_raises_media_host_error():
    host = _host(lambda request: httpx.Response(500, json={"error": {"message": "boom"}}))
    with pytest.raises(MediaHostError):
        host.upload("https://provider.example/img.png", public_id="run_1")


def test_upload_without_secure_url_raises():
    host = _host(lambda request: httpx.Response(200, json={"public_id": "run_1"}))
    with pytest.raises(MediaHostError):
        host.upload("https://provider.example/img.png", public_id="run_1")


def test_unconfigured_host_refuses_upload():
    host = CloudinaryHost(cloud_name="", api_key="", api_secret="")
    assert host.configured is False
    with pytest.raises(MediaHostError):
        host.upload("x", public_id="run_1")
