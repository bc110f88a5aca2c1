import pytest

from pocketllm.proxy.config import ConfigError, ProxyConfig


def test_defaults_from_empty_env():
    cfg = ProxyConfig.from_env({})
    assert cfg.port == 3001
    assert cfg.ollama_host == "http://ollama:11434"
    assert cfg.model == "llama3.2"
    assert cfg.cache_ttl_ms == 600_000
    assert cfg.data_dir == "./data"
    assert cfg.rate_limit == 60
    assert cfg.rate_window_s == 60.0
    assert cfg.cors_origins == ("*",)


def test_env_overrides():
    cfg = ProxyConfig.from_env(
        {
            "PORT": "8080",
            "OLLAMA_HOST": "http://127.0.0.1:11434/",
            "OLLAMA_MODEL": "mistral",
            "CACHE_TTL_MS": "1000",
            "DATA_DIR": "/tmp/pocket",
            "RATE_LIMIT_MAX": "5",
            "RATE_LIMIT_WINDOW_S": "2.5",
            "CORS_ORIGINS": "http://a.test, http://b.test",
        }
    )
    assert cfg.port == 8080
    assert cfg.ollama_host == "http://127.0.0.1:11434"
    assert cfg.model == "mistral"
    assert cfg.cache_ttl_ms == 1000
    assert cfg.data_dir == "/tmp/pocket"
    assert cfg.rate_limit == 5
    assert cfg.rate_window_s == 2.5
    assert cfg.cors_origins == ("http://a.test", "http://b.test")


def test_blank_values_fall_back_to_defaults():
    cfg = ProxyConfig.from_env({"PORT": " ", "OLLAMA_MODEL": ""})
    assert cfg.port == 3001
    assert cfg.model == "llama3.2"


@pytest.mark.parametrize(
    "env",
    [
        {"PORT": "abc"},
        {"PORT": "70000"},
        {"CACHE_TTL_MS": "-1"},
        {"RATE_LIMIT_MAX": "-3"},
        {"RATE_LIMIT_WINDOW_S": "soon"},
    ],
)
def test_invalid_values_raise_config_error(env):
    with pytest.raises(ConfigError):
        ProxyConfig.from_env(env)


def test_config_error_is_value_error():
    assert issubclass(ConfigError, ValueError)
