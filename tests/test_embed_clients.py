"""Tests for the embedding clients: HTTP engines against httpx.MockTransport, the local engine with a patched loader."""

import json

import httpx
import pytest

from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.embed.EmbedClientRemote import EmbedClientRemote
from shared.clients.embed.azure.EmbedClientAzure import EmbedClientAzure
from shared.clients.embed.local.EmbedClientLocal import EmbedClientLocal
from shared.clients.embed.ollama.EmbedClientOllama import EmbedClientOllama
from shared.clients.embed.openai.EmbedClientOpenai import EmbedClientOpenai
from shared.clients.embed.vllm.EmbedClientVllm import EmbedClientVllm
from shared.models.errors import (
    AcceleratorUnavailableError,
    InvalidConfigError,
    InvalidResponseError,
    OperationUnsupportedError,
    ProviderUnavailableError,
    RateLimitedError,
)


def _openai_body(count: int, size: int = 3, tokens: int = 5, reverse: bool = False) -> dict:
    data = [{"index": i, "embedding": [float(i)] * size} for i in range(count)]
    if reverse:
        data.reverse()
    return {"data": data, "usage": {"total_tokens": tokens}}


async def _boot(client, handler):
    await client.boot(transport=httpx.MockTransport(handler))
    return client


@pytest.fixture
def openai_env(monkeypatch):
    monkeypatch.setenv("EMBED_OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("EMBED_OPENAI_BASE_URL", "http://openai.test")


class TestEmbedClientOpenai:
    """Tests for the OpenAI client."""

    async def test_payload_and_auth(self, helper_config, openai_env):
        """Requests carry the bearer token and the OpenAI body."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_openai_body(2))

        client = await _boot(EmbedClientOpenai(helper_config), handler)
        result = await client.do_embed(["a", "b"])
        await client.close()

        request = seen[0]
        assert request.url == "http://openai.test/v1/embeddings"
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert json.loads(request.content) == {"model": "text-embedding-3-small", "input": ["a", "b"], "encoding_format": "float"}
        assert result.vectors == [[0.0] * 3, [1.0] * 3]
        assert result.tokens_used == 5

    async def test_out_of_order_items_are_sorted(self, helper_config, openai_env):
        """Vectors follow the item index, not the response order."""
        client = await _boot(EmbedClientOpenai(helper_config), lambda r: httpx.Response(200, json=_openai_body(3, reverse=True)))
        result = await client.do_embed(["a", "b", "c"])
        assert [v[0] for v in result.vectors] == [0.0, 1.0, 2.0]

    async def test_batches_by_configured_size(self, helper_config, openai_env, monkeypatch):
        """Inputs are split into EMBED_BATCH_SIZE requests and token usage is summed."""
        monkeypatch.setenv("EMBED_BATCH_SIZE", "2")
        sizes = []

        def handler(request: httpx.Request) -> httpx.Response:
            count = len(json.loads(request.content)["input"])
            sizes.append(count)
            return httpx.Response(200, json=_openai_body(count, tokens=count))

        client = await _boot(EmbedClientOpenai(helper_config), handler)
        result = await client.do_embed(["a", "b", "c", "d", "e"])
        assert sizes == [2, 2, 1]
        assert len(result.vectors) == 5
        assert result.tokens_used == 5

    async def test_rate_limited(self, helper_config, openai_env):
        """429 maps to RateLimitedError with the Retry-After value."""
        client = await _boot(EmbedClientOpenai(helper_config), lambda r: httpx.Response(429, headers={"Retry-After": "2"}))
        with pytest.raises(RateLimitedError) as e:
            await client.do_embed(["a"])
        assert e.value.retry_after == 2.0
        assert e.value.retryable

    @pytest.mark.parametrize("status,error", [
        (500, ProviderUnavailableError),
        (503, ProviderUnavailableError),
        (400, InvalidResponseError),
        (401, InvalidResponseError),
    ])
    async def test_status_mapping(self, helper_config, openai_env, status, error):
        """Server errors are retryable, client errors are not."""
        client = await _boot(EmbedClientOpenai(helper_config), lambda r: httpx.Response(status, text="nope"))
        with pytest.raises(error) as e:
            await client.do_embed(["a"])
        assert e.value.details["status"] == status

    async def test_transport_error(self, helper_config, openai_env):
        """Connection failures are ProviderUnavailableError."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = await _boot(EmbedClientOpenai(helper_config), handler)
        with pytest.raises(ProviderUnavailableError):
            await client.do_embed(["a"])

    @pytest.mark.parametrize("body", [{"data": []}, {"data": [{"index": 0}]}, {"data": [{"index": 0, "embedding": []}]}])
    async def test_garbage_response(self, helper_config, openai_env, body):
        """Bodies without usable vectors are invalid responses."""
        client = await _boot(EmbedClientOpenai(helper_config), lambda r: httpx.Response(200, json=body))
        with pytest.raises(InvalidResponseError):
            await client.do_embed(["a"])

    async def test_vector_count_mismatch(self, helper_config, openai_env):
        """Fewer vectors than inputs is an invalid response."""
        client = await _boot(EmbedClientOpenai(helper_config), lambda r: httpx.Response(200, json=_openai_body(1)))
        with pytest.raises(InvalidResponseError):
            await client.do_embed(["a", "b"])

    async def test_known_dimensions_need_no_request(self, helper_config, openai_env):
        """Known models answer their size without an extra request."""
        client = EmbedClientOpenai(helper_config)
        assert await client.do_fetch_dimensions("text-embedding-3-large") == 3072

    async def test_unknown_model_is_measured(self, helper_config, openai_env):
        """Unknown models are measured with a sample embedding."""
        client = await _boot(EmbedClientOpenai(helper_config), lambda r: httpx.Response(200, json=_openai_body(1, size=7)))
        assert await client.do_fetch_dimensions("custom-model") == 7

    async def test_images_unsupported(self, helper_config, openai_env):
        """Text-only engines refuse image embeddings before any request."""
        client = EmbedClientOpenai(helper_config)
        assert not await client.supports_images()
        with pytest.raises(OperationUnsupportedError):
            await client.do_embed_image("aGVsbG8=", "image/png")

    def test_missing_api_key(self, helper_config, monkeypatch):
        """Construction fails fast when required settings are missing."""
        monkeypatch.delenv("EMBED_OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError):
            EmbedClientOpenai(helper_config)


class TestEmbedClientAzure:
    """Tests for the Azure OpenAI client."""

    async def test_deployment_url_and_api_key(self, helper_config, monkeypatch):
        """The model selects the deployment and every call carries the api-version."""
        monkeypatch.setenv("EMBED_AZURE_BASE_URL", "https://res.openai.azure.com")
        monkeypatch.setenv("EMBED_AZURE_API_KEY", "az-key")
        monkeypatch.setenv("EMBED_AZURE_API_VERSION", "2024-02-01")
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_openai_body(1))

        client = await _boot(EmbedClientAzure(helper_config), handler)
        await client.do_embed(["a"], model="text-embedding-3-large")
        request = seen[0]
        assert request.url.path == "/openai/deployments/text-embedding-3-large/embeddings"
        assert request.url.params["api-version"] == "2024-02-01"
        assert request.headers["api-key"] == "az-key"
        assert "model" not in json.loads(request.content)

    async def test_deployments_restrict_known_models(self, helper_config, monkeypatch):
        """Only deployed models are listed when EMBED_AZURE_DEPLOYMENTS is set."""
        monkeypatch.setenv("EMBED_AZURE_BASE_URL", "https://res.openai.azure.com")
        monkeypatch.setenv("EMBED_AZURE_API_KEY", "az-key")
        monkeypatch.setenv("EMBED_AZURE_DEPLOYMENTS", "[text-embedding-3-large]")
        client = EmbedClientAzure(helper_config)
        assert [m.name for m in await client.do_list_models()] == ["text-embedding-3-large"]


class TestEmbedClientVllm:
    """Tests for the vLLM client."""

    @pytest.fixture(autouse=True)
    def vllm_env(self, monkeypatch):
        monkeypatch.setenv("EMBED_VLLM_BASE_URL", "http://vllm.test")
        monkeypatch.setenv("EMBED_VLLM_MODEL", "dse")
        monkeypatch.setenv("EMBED_VLLM_MODEL_SIZE", "4")

    async def test_per_model_url(self, helper_config):
        """Each model is served under its own path prefix."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_openai_body(1, size=4))

        client = await _boot(EmbedClientVllm(helper_config), handler)
        await client.do_embed(["a"])
        assert seen[0].url == "http://vllm.test/dse/v1/embeddings"
        assert "Authorization" not in seen[0].headers

    async def test_image_payload(self, helper_config):
        """Images are sent as a single chat message with a data URL and text."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json=_openai_body(1, size=4))

        client = await _boot(EmbedClientVllm(helper_config), handler)
        result = await client.do_embed_image("aGVsbG8=", "image/png", text="a chart", system="sys")
        payload = seen[0]
        assert payload["model"] == "dse"
        assert payload["messages"][0] == {"role": "system", "content": "sys"}
        content = payload["messages"][1]["content"]
        assert content[0] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,aGVsbG8="}}
        assert content[1] == {"type": "text", "text": "a chart"}
        assert len(result.vectors) == 1

    async def test_configured_size_and_modality(self, helper_config, monkeypatch):
        """Model size and multimodality come from the environment."""
        client = EmbedClientVllm(helper_config)
        assert await client.do_fetch_dimensions() == 4
        assert await client.supports_images()
        monkeypatch.setenv("EMBED_VLLM_MULTIMODAL", "false")
        assert not await EmbedClientVllm(helper_config).supports_images()


class TestEmbedClientOllama:
    """Tests for the Ollama client."""

    async def test_embed_and_dimensions(self, helper_config, monkeypatch):
        """Vectors come from /api/embed, sizes from /api/show."""
        monkeypatch.setenv("EMBED_OLLAMA_BASE_URL", "http://ollama.test")
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if request.url.path == "/api/show":
                return httpx.Response(200, json={"model_info": {"nomic-bert.embedding_length": 768}})
            return httpx.Response(200, json={"embeddings": [[0.1, 0.2]], "prompt_eval_count": 3})

        client = await _boot(EmbedClientOllama(helper_config), handler)
        result = await client.do_embed(["hello"])
        assert result.tokens_used == 3
        assert await client.do_fetch_dimensions() == 768
        assert await client.do_fetch_dimensions() == 768
        assert paths == ["/api/embed", "/api/show"]


class TestEmbedClientManager:
    """Tests for engine resolution."""

    def test_engines_from_env(self, helper_config, openai_env, monkeypatch):
        """EMBED_ENGINES selects the instantiated engines."""
        monkeypatch.setenv("EMBED_ENGINES", "[openai]")
        manager = EmbedClientManager(helper_config)
        assert manager.get_client("OpenAI").get_engine_name() == "openai"

    def test_unknown_engine(self, helper_config, monkeypatch):
        """Engines without a client class are rejected at startup."""
        monkeypatch.setenv("EMBED_ENGINES", "[nope]")
        with pytest.raises(ValueError):
            EmbedClientManager(helper_config)

    def test_disabled_engine(self, helper_config, openai_env, monkeypatch):
        """Asking for an engine that is not enabled is a config error."""
        monkeypatch.setenv("EMBED_ENGINES", "[openai]")
        with pytest.raises(InvalidConfigError):
            EmbedClientManager(helper_config).get_client("azure")


class _Vector(list):
    def tolist(self):
        return list(self)


class _FakeSentenceModel:
    def __init__(self, size: int = 4):
        self.size = size
        self.batches = []

    def get_sentence_embedding_dimension(self) -> int:
        return self.size

    def encode(self, texts, batch_size=None, convert_to_numpy=True):
        self.batches.append(list(texts))
        return [_Vector([float(len(text))] * self.size) for text in texts]


class TestEmbedClientLocal:
    """Tests for on-device inference with a patched model loader."""

    async def test_cpu_fallback(self, helper_config, monkeypatch):
        """An unusable accelerator switches the client to the CPU and the call succeeds."""
        monkeypatch.setenv("EMBED_LOCAL_DEVICE", "cuda")
        client = EmbedClientLocal(helper_config)
        loaded = []

        def load(model, device):
            loaded.append(device)
            if device != "cpu":
                raise AcceleratorUnavailableError("CUDA device 'cuda' is not available.")
            return _FakeSentenceModel()

        monkeypatch.setattr(client, "_load_model", load)
        result = await client.do_embed(["ab", "abc"])
        assert result.vectors == [[2.0] * 4, [3.0] * 4]
        assert loaded == ["cuda", "cpu"]
        assert client.get_device() == "cpu"

    async def test_dimensions_and_models(self, helper_config, monkeypatch):
        monkeypatch.setenv("EMBED_LOCAL_DEVICE", "cpu")
        client = EmbedClientLocal(helper_config)
        monkeypatch.setattr(client, "_load_model", lambda model, device: _FakeSentenceModel(size=6))
        assert await client.do_fetch_dimensions() == 6
        models = await client.do_list_models()
        assert [m.name for m in models] == [client.get_model_id()]

    async def test_cpu_failure_propagates(self, helper_config, monkeypatch):
        """Errors on the CPU path are not swallowed."""
        monkeypatch.setenv("EMBED_LOCAL_DEVICE", "cpu")
        client = EmbedClientLocal(helper_config)

        def load(model, device):
            raise ProviderUnavailableError("Could not load local model.")

        monkeypatch.setattr(client, "_load_model", load)
        with pytest.raises(ProviderUnavailableError):
            await client.do_embed("text")

    async def test_no_http_surface(self, helper_config, monkeypatch):
        """The local engine carries no request hooks and rejects images."""
        monkeypatch.setenv("EMBED_LOCAL_DEVICE", "cpu")
        client = EmbedClientLocal(helper_config)
        assert not isinstance(client, EmbedClientRemote)
        assert not hasattr(client, "get_embed_payload")
        with pytest.raises(OperationUnsupportedError):
            await client.do_embed_image("aGk=", "image/png")
