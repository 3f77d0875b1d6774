"""Tests for embedding response decoding and the remote embedder."""

import json
import math

import httpx
import pytest

from aikb.embeddings.embedder import (
    RemoteEmbedder,
    decode_embedding,
    get_embedder,
    l2_normalize,
    mean_pool,
)
from aikb.errors import ConfigurationError, RemoteServiceError, UnexpectedFormat


def _embedder(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return RemoteEmbedder(api_key="hf_secret_key", model="org/model", base_url="https://hf.test", client=client)


def test_mean_pool():
    assert mean_pool([[1.0, 2.0], [3.0, 4.0]]) == [2.0, 3.0]
    assert mean_pool([]) == []


def test_l2_normalize_unit_norm():
    vec = l2_normalize([3.0, 4.0])
    assert vec == pytest.approx([0.6, 0.8])
    assert math.sqrt(sum(v * v for v in vec)) == pytest.approx(1.0, abs=1e-6)


def test_l2_normalize_zero_vector():
    assert l2_normalize([0.0, 0.0, 0.0]) == [0.0, 0.0, 0.0]


def test_decode_shapes():
    assert decode_embedding([0.1, 0.2]).kind == "flat"

    tokens = decode_embedding([[1.0, 2.0], [3.0, 4.0]])
    assert tokens.kind == "tokens"
    assert tokens.vector == [2.0, 3.0]

    assert decode_embedding({"embedding": [1, 2]}).vector == [1.0, 2.0]
    assert decode_embedding([{"embedding": [1, 2]}]).kind == "wrapped"


def test_decode_unexpected_format():
    for bad in ({"error": "loading"}, "text", [], [[1.0, 2.0], [3.0]], [["a"]], [True, False]):
        with pytest.raises(UnexpectedFormat):
            decode_embedding(bad)


def test_remote_embed_request_and_normalization():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=[[3.0, 0.0], [3.0, 8.0]])

    vec = _embedder(handler).embed("hello")

    assert seen["url"] == "https://hf.test/models/org/model"
    assert seen["auth"] == "Bearer hf_secret_key"
    assert seen["body"] == {"inputs": "hello", "options": {"wait_for_model": True}}
    # mean [3, 4] then normalized
    assert vec == pytest.approx([0.6, 0.8])


def test_remote_embed_http_error_carries_status_and_body():
    embedder = _embedder(lambda request: httpx.Response(503, text="model loading"))
    with pytest.raises(RemoteServiceError) as excinfo:
        embedder.embed("hello")
    assert excinfo.value.status == 503
    assert excinfo.value.body == "model loading"
    assert excinfo.value.reachable


def test_remote_embed_unreachable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RemoteServiceError) as excinfo:
        _embedder(handler).embed("hello")
    assert excinfo.value.status is None
    assert not excinfo.value.reachable


def test_remote_embed_non_json():
    embedder = _embedder(lambda request: httpx.Response(200, text="<html>"))
    with pytest.raises(UnexpectedFormat):
        embedder.embed("hello")


def test_health_check():
    assert _embedder(lambda request: httpx.Response(200, json=[1.0, 0.0])).health_check() is True
    assert _embedder(lambda request: httpx.Response(401, text="bad key")).health_check() is False
    assert _embedder(lambda request: httpx.Response(200, json={"oops": 1})).health_check() is False


def test_get_embedder(config):
    assert isinstance(get_embedder(config), RemoteEmbedder)
    config["embedding_backend"] = "carrier-pigeon"
    with pytest.raises(ConfigurationError):
        get_embedder(config)
