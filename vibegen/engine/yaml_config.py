"""YAML configuration loader.

Layers a YAML file over the environment-derived ClientConfig.
Keys missing from the file keep their environment/default value.

Example YAML:
    api:
      base_url: https://build.example.com
      token_env: BUILD_API_TOKEN   # or an inline `token:`

    output:
      dir: ./generated

    defaults:
      language: typescript
      frameworks: [react, vite]
      template: auto
      agent_mode: smart

    conversation:
      tail: 100

    logging:
      level: DEBUG
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml

from .config import ClientConfig
from .models import AgentMode

logger = logging.getLogger(__name__)


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        logger.warning(
            "load_yaml_config: section %r is not a mapping, ignoring", name,
        )
        return {}
    return value


def load_yaml_config(
    path: str | Path, base: ClientConfig | None = None,
) -> ClientConfig:
    """Load a YAML config file on top of *base* (default: from_env()).

    Raises FileNotFoundError if *path* does not exist and
    yaml.YAMLError if it cannot be parsed.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s", path.absolute(),
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise yaml.YAMLError(f"{path}: top level must be a mapping")

    config = base if base is not None else ClientConfig.from_env()
    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(sorted(raw)) if raw else "(empty)",
    )

    api = _section(raw, "api")
    if api.get("base_url"):
        config.api_base_url = str(api["base_url"])
    if api.get("token"):
        config.auth_token = str(api["token"])
    elif api.get("token_env"):
        token = os.getenv(str(api["token_env"]), "")
        if token:
            config.auth_token = token
        else:
            logger.warning(
                "load_yaml_config: token_env %s is not set", api["token_env"],
            )

    output = _section(raw, "output")
    if output.get("dir"):
        out_dir = Path(str(output["dir"])).expanduser()
        if not out_dir.is_absolute():
            out_dir = path.parent / out_dir
        config.output_dir = str(out_dir)

    defaults = _section(raw, "defaults")
    if defaults.get("language"):
        config.default_language = str(defaults["language"])
    if isinstance(defaults.get("frameworks"), list):
        config.default_frameworks = [str(f) for f in defaults["frameworks"]]
    if defaults.get("template"):
        config.default_template = str(defaults["template"])
    if defaults.get("agent_mode"):
        mode = str(defaults["agent_mode"])
        try:
            config.default_agent_mode = AgentMode(mode).value
        except ValueError:
            logger.warning(
                "load_yaml_config: unknown agent_mode %r, keeping %s",
                mode, config.default_agent_mode,
            )

    conversation = _section(raw, "conversation")
    if conversation.get("tail") is not None:
        config.conversation_tail = int(conversation["tail"])

    logging_raw = _section(raw, "logging")
    if logging_raw.get("level"):
        config.log_level = str(logging_raw["level"]).upper()

    return config
