from __future__ import annotations

import pytest
import yaml

from vibegen.engine.config import ClientConfig
from vibegen.engine.yaml_config import load_yaml_config


@pytest.fixture
def clean_env(monkeypatch):
    for key in (
        "API_BASE_URL", "AUTH_TOKEN", "OUTPUT_DIR", "VIBEGEN_LANGUAGE",
        "VIBEGEN_FRAMEWORKS", "VIBEGEN_TEMPLATE", "VIBEGEN_AGENT_MODE",
        "VIBEGEN_CONVERSATION_TAIL", "VIBEGEN_LOG_LEVEL", "BUILD_TOKEN",
    ):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_from_env_defaults(clean_env) -> None:
    config = ClientConfig.from_env()
    assert config.api_base_url == "http://localhost:8787"
    assert config.auth_token == ""
    assert config.default_frameworks == ["react", "vite"]
    assert config.conversation_tail == 50


def test_from_env_overrides(clean_env) -> None:
    clean_env.setenv("API_BASE_URL", "https://build.example.com/")
    clean_env.setenv("AUTH_TOKEN", "abc")
    clean_env.setenv("VIBEGEN_FRAMEWORKS", "vue, , nuxt")
    clean_env.setenv("VIBEGEN_CONVERSATION_TAIL", "10")
    config = ClientConfig.from_env()
    assert config.auth_token == "abc"
    assert config.default_frameworks == ["vue", "nuxt"]
    assert config.conversation_tail == 10
    assert config.api_url("/api/agent") == "https://build.example.com/api/agent"


def test_token_not_in_repr() -> None:
    assert "hunter2" not in repr(ClientConfig(auth_token="hunter2"))


@pytest.mark.parametrize(
    ("base", "origin"),
    [
        ("https://build.example.com/v1/", "https://build.example.com"),
        ("http://127.0.0.1:8787", "http://127.0.0.1:8787"),
    ],
)
def test_api_origin(base: str, origin: str) -> None:
    assert ClientConfig(api_base_url=base).api_origin == origin


def test_yaml_layers_over_base(tmp_path, clean_env) -> None:
    clean_env.setenv("BUILD_TOKEN", "from-env")
    path = tmp_path / "vibegen.yaml"
    path.write_text(
        "api:\n"
        "  base_url: https://build.example.com\n"
        "  token_env: BUILD_TOKEN\n"
        "output:\n"
        "  dir: generated\n"
        "defaults:\n"
        "  frameworks: [svelte]\n"
        "  agent_mode: smart\n"
        "conversation:\n"
        "  tail: 5\n"
        "logging:\n"
        "  level: debug\n",
        encoding="utf-8",
    )
    config = load_yaml_config(path, base=ClientConfig(default_language="javascript"))
    assert config.api_base_url == "https://build.example.com"
    assert config.auth_token == "from-env"
    assert config.output_dir == str(tmp_path / "generated")
    assert config.default_language == "javascript"
    assert config.default_frameworks == ["svelte"]
    assert config.default_agent_mode == "smart"
    assert config.conversation_tail == 5
    assert config.log_level == "DEBUG"


def test_yaml_unknown_agent_mode_keeps_previous(tmp_path) -> None:
    path = tmp_path / "c.yaml"
    path.write_text("defaults:\n  agent_mode: chaotic\n", encoding="utf-8")
    assert load_yaml_config(path, base=ClientConfig()).default_agent_mode == "deterministic"


def test_yaml_missing_file_raises(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_yaml_config(tmp_path / "nope.yaml", base=ClientConfig())


def test_yaml_non_mapping_raises(tmp_path) -> None:
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(yaml.YAMLError):
        load_yaml_config(path, base=ClientConfig())
