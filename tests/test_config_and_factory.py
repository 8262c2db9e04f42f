from __future__ import annotations

from pathlib import Path

import pytest

import inferbridge
from inferbridge.chat import ChatModel
from inferbridge.clients.adapters.anthropic_messages import AnthropicMessagesClient
from inferbridge.clients.adapters.openai_chat import OpenAIChatClient
from inferbridge.config import ChatConfig, ensure_endpoint_path, validate_base_url
from inferbridge.errors import ChatConfigurationError
from inferbridge.factory import (
    available_chat_adapters,
    create_chat_model,
    create_chat_model_from_env,
    register_chat_adapter,
)

ENV_VARS = [
    "INFERBRIDGE_API_KEY",
    "INFERENCE_KEY",
    "INFERBRIDGE_BASE_URL",
    "INFERENCE_URL",
    "INFERBRIDGE_ADAPTER",
    "INFERBRIDGE_MODEL",
    "INFERENCE_MODEL_ID",
    "INFERBRIDGE_TIMEOUT_S",
    "INFERBRIDGE_MAX_RETRIES",
    "INFERBRIDGE_BACKOFF_BASE_S",
    "INFERBRIDGE_BACKOFF_JITTER_S",
    "INFERBRIDGE_DEFAULT_MAX_TOKENS",
    "INFERBRIDGE_ANTHROPIC_VERSION",
    "INFERBRIDGE_DEGRADE_REQUIRED_TOOL_CHOICE",
]


class NullTransport:
    async def execute(self, url, credentials, body, options):
        raise AssertionError("no request expected")


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_config_module_keeps_license_header_above_imports():
    source = (Path(inferbridge.__file__).parent / "config.py").read_text(encoding="utf-8")
    lines = source.splitlines()

    assert lines[0] == "from __future__ import annotations"
    assert source.index("MIT License") < source.index("import os")


def test_from_env_defaults(clean_env):
    cfg = ChatConfig.from_env()

    assert cfg.api_key is None
    assert cfg.base_url == "https://us.inference.heroku.com"
    assert cfg.adapter == "openai_chat"
    assert cfg.default_model is None
    assert cfg.timeout_s == 30.0
    assert cfg.max_retries == 3
    assert cfg.default_max_tokens == 4096
    assert cfg.degrade_required_tool_choice is None


def test_from_env_reads_primary_and_fallback_names(clean_env):
    clean_env.setenv("INFERENCE_KEY", "fallback-key")
    clean_env.setenv("INFERENCE_URL", "https://fallback.test")
    clean_env.setenv("INFERENCE_MODEL_ID", "fallback-model")
    clean_env.setenv("INFERBRIDGE_MAX_RETRIES", "5")
    clean_env.setenv("INFERBRIDGE_DEGRADE_REQUIRED_TOOL_CHOICE", "yes")

    cfg = ChatConfig.from_env()
    assert cfg.api_key == "fallback-key"
    assert cfg.base_url == "https://fallback.test"
    assert cfg.default_model == "fallback-model"
    assert cfg.max_retries == 5
    assert cfg.degrade_required_tool_choice is True

    clean_env.setenv("INFERBRIDGE_API_KEY", "primary-key")
    clean_env.setenv("INFERBRIDGE_DEGRADE_REQUIRED_TOOL_CHOICE", "0")
    cfg = ChatConfig.from_env()
    assert cfg.api_key == "primary-key"
    assert cfg.degrade_required_tool_choice is False


def test_from_env_rejects_garbage_flag(clean_env):
    clean_env.setenv("INFERBRIDGE_DEGRADE_REQUIRED_TOOL_CHOICE", "maybe")

    with pytest.raises(ChatConfigurationError):
        ChatConfig.from_env()


@pytest.mark.parametrize(
    ("base_url", "path", "expected"),
    [
        ("https://h", "/v1/chat/completions", "https://h/v1/chat/completions"),
        ("https://h/", "/v1/chat/completions", "https://h/v1/chat/completions"),
        ("https://h/v1/chat/completions/", "/v1/chat/completions", "https://h/v1/chat/completions"),
        (" https://h/v1/messages ", "v1/messages", "https://h/v1/messages"),
        ("https://h/proxy", "/v1/messages", "https://h/proxy/v1/messages"),
    ],
)
def test_ensure_endpoint_path(base_url, path, expected):
    assert ensure_endpoint_path(base_url, path) == expected


@pytest.mark.parametrize("base_url", ["ftp://h", "h.example", "https://", ""])
def test_validate_base_url_rejects_non_http(base_url):
    with pytest.raises(ChatConfigurationError):
        validate_base_url(base_url)


def test_model_construction_validates_configuration():
    with pytest.raises(ChatConfigurationError, match="API key"):
        OpenAIChatClient("m", config=ChatConfig(api_key=None), transport=NullTransport())
    with pytest.raises(ChatConfigurationError, match="Model id"):
        OpenAIChatClient(config=ChatConfig(api_key="k"), transport=NullTransport())
    with pytest.raises(ChatConfigurationError, match="base URL"):
        OpenAIChatClient("m", config=ChatConfig(api_key="k", base_url="ftp://h"), transport=NullTransport())


def test_explicit_model_id_overrides_default():
    client = OpenAIChatClient(
        " explicit ",
        config=ChatConfig(api_key="k", default_model="default"),
        transport=NullTransport(),
    )

    assert client.model_id == "explicit"
    assert client.provider_id == "openai_chat"


def test_available_adapters_include_builtins():
    assert {"openai_chat", "anthropic_messages"} <= set(available_chat_adapters())


def test_create_chat_model_builds_builtin_adapters():
    cfg = ChatConfig(api_key="k", default_model="m")
    transport = NullTransport()

    openai = create_chat_model("openai_chat", config=cfg, transport=transport)
    anthropic = create_chat_model(" Anthropic_Messages ", "claude", config=cfg, transport=transport)

    assert isinstance(openai, OpenAIChatClient)
    assert isinstance(anthropic, AnthropicMessagesClient)
    assert anthropic.model_id == "claude"
    assert anthropic.transport is transport


def test_create_chat_model_rejects_unknown_adapter():
    cfg = ChatConfig(api_key="k", default_model="m")

    with pytest.raises(ChatConfigurationError, match="Unknown chat adapter"):
        create_chat_model("gemini", config=cfg)
    with pytest.raises(ChatConfigurationError):
        create_chat_model("  ", config=cfg)


def test_register_custom_adapter():
    created: list[str | None] = []

    def factory(model_id, cfg, transport) -> ChatModel:
        created.append(model_id)
        return OpenAIChatClient(model_id, config=cfg, transport=transport)

    register_chat_adapter("proxy_chat", factory, overwrite=True)
    with pytest.raises(ValueError):
        register_chat_adapter("proxy_chat", factory)

    model = create_chat_model(
        "proxy_chat",
        "m",
        config=ChatConfig(api_key="k"),
        transport=NullTransport(),
    )

    assert created == ["m"]
    assert isinstance(model, OpenAIChatClient)
    assert "proxy_chat" in available_chat_adapters()


def test_create_chat_model_from_env(clean_env):
    clean_env.setenv("INFERBRIDGE_API_KEY", "k")
    clean_env.setenv("INFERBRIDGE_MODEL", "claude-env")
    clean_env.setenv("INFERBRIDGE_ADAPTER", "anthropic_messages")
    clean_env.setenv("INFERBRIDGE_BASE_URL", "https://proxy.test/")

    model = create_chat_model_from_env(transport=NullTransport())

    assert isinstance(model, AnthropicMessagesClient)
    assert model.model_id == "claude-env"
    assert model.url == "https://proxy.test/v1/messages"
