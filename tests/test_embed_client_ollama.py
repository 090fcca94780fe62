import json

import httpx
import pytest

from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.embed.ollama.EmbedClientOllama import EmbedClientOllama
from shared.models.errors import EmbedError, EmbedErrorKind


def _client(helper_config, handler) -> EmbedClientOllama:
    client = EmbedClientOllama(helper_config=helper_config)
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


def test_manager_picks_ollama_by_default(helper_config):
    client = EmbedClientManager(helper_config=helper_config).get_client()
    assert isinstance(client, EmbedClientOllama)
    assert client.embed_model == "fake-embed"
    assert client.embed_dimensions == 4


def test_missing_base_url_fails_at_construction(helper_config, monkeypatch):
    monkeypatch.delenv("EMBED_OLLAMA_BASE_URL")
    with pytest.raises(ValueError, match="EMBED_OLLAMA_BASE_URL"):
        EmbedClientOllama(helper_config=helper_config)


@pytest.mark.asyncio
async def test_embed_sends_model_and_inputs(helper_config):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"embeddings": [[0.1, 0.2, 0.3, 0.4], [0.4, 0.3, 0.2, 0.1]]})

    client = _client(helper_config, handler)
    vectors = await client.do_embed(["first", "second"])

    assert seen["url"] == "http://ollama.test/api/embed"
    assert seen["body"] == {"model": "fake-embed", "input": ["first", "second"]}
    assert vectors == [[0.1, 0.2, 0.3, 0.4], [0.4, 0.3, 0.2, 0.1]]


@pytest.mark.asyncio
async def test_nan_server_error_is_non_finite(helper_config):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text='{"error":"failed to encode response: json: unsupported value: NaN"}')

    with pytest.raises(EmbedError) as exc_info:
        await _client(helper_config, handler).do_embed(["bad tokens"])
    assert exc_info.value.kind is EmbedErrorKind.NON_FINITE


@pytest.mark.asyncio
async def test_nan_in_returned_vector_is_non_finite(helper_config):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b'{"embeddings": [[NaN, 0.1, 0.2, 0.3]]}')

    with pytest.raises(EmbedError) as exc_info:
        await _client(helper_config, handler).do_embed("text")
    assert exc_info.value.is_non_finite


@pytest.mark.asyncio
async def test_other_http_errors_are_fatal(helper_config):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "model not found"})

    with pytest.raises(EmbedError) as exc_info:
        await _client(helper_config, handler).do_embed(["text"])
    assert exc_info.value.kind is EmbedErrorKind.FATAL


@pytest.mark.asyncio
async def test_wrong_dimension_is_fatal(helper_config):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"embeddings": [[0.1, 0.2]]})

    with pytest.raises(EmbedError) as exc_info:
        await _client(helper_config, handler).do_embed(["text"])
    assert exc_info.value.kind is EmbedErrorKind.FATAL
    assert "dimensions" in exc_info.value.detail


@pytest.mark.asyncio
async def test_unreachable_backend_is_transient_after_retries(helper_config):
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(helper_config, handler)
    with pytest.raises(EmbedError) as exc_info:
        await client.do_embed(["text"])
    assert exc_info.value.kind is EmbedErrorKind.TRANSIENT
    assert len(attempts) == client.max_retries


@pytest.mark.asyncio
async def test_check_model_matches_tagged_names(helper_config):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [{"name": "fake-embed:latest"}, {"name": "qwen3:8b"}]})

    assert await _client(helper_config, handler).do_check_model() is True


def test_manager_rejects_unknown_engine(helper_config, monkeypatch):
    monkeypatch.setenv("EMBED_ENGINE", "openai")
    with pytest.raises(ValueError, match="Unsupported Embed engine"):
        EmbedClientManager(helper_config=helper_config)


def test_api_key_is_sent_as_bearer_token(helper_config, monkeypatch):
    monkeypatch.setenv("EMBED_OLLAMA_API_KEY", "proxy-token")
    client = EmbedClientOllama(helper_config=helper_config)
    assert client._get_auth_header() == {"Authorization": "Bearer proxy-token"}
