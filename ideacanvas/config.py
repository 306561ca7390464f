"""
Configuration for IdeaCanvas.

Settings live in a JSON file, ``config.json``, under the config directory
(``$IDEACANVAS_CONFIG_DIR`` or ``~/.config/ideacanvas``). Keys:

- openai_api_key: used when OPENAI_API_KEY is not set
- style_instruction: persona/system prompt passed to every generative request
- text_model, synthesis_model, image_model: model overrides

Canvas contents are never written here.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)

DEFAULT_STYLE_INSTRUCTION = "You are a creative assistant in an infinite canvas brainstorming tool."
DEFAULT_TEXT_MODEL = "gpt-4o-mini"
DEFAULT_SYNTHESIS_MODEL = "gpt-4o"
DEFAULT_IMAGE_MODEL = "gpt-image-1"


def get_config_dir() -> Path:
    """Get the configuration directory."""
    override = os.environ.get("IDEACANVAS_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "ideacanvas"


def get_config_path() -> Path:
    return get_config_dir() / "config.json"


def load_config() -> dict:
    """Load configuration from config.json; a missing or unreadable file is empty."""
    config_path = get_config_path()
    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable config {config_path}: {e}")
            return {}
        if isinstance(data, dict):
            return data
        logger.warning(f"Ignoring config {config_path}: top level is not an object")
    return {}


def save_config(config: dict) -> None:
    """Save configuration to config.json."""
    config_path = get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)


def ensure_config() -> Path:
    """Write a config.json holding the defaults if none exists yet, so there is a file to edit."""
    config_path = get_config_path()
    if not config_path.exists():
        save_config({
            "style_instruction": DEFAULT_STYLE_INSTRUCTION,
            "text_model": DEFAULT_TEXT_MODEL,
            "synthesis_model": DEFAULT_SYNTHESIS_MODEL,
            "image_model": DEFAULT_IMAGE_MODEL,
        })
        logger.info(f"Created default config at {config_path}")
    return config_path


def get_api_key() -> Optional[str]:
    """
    Get the OpenAI API key.

    Priority:
    1. Environment variable OPENAI_API_KEY
    2. Stored in config.json
    """
    env_key = os.environ.get("OPENAI_API_KEY")
    if env_key:
        return env_key
    return load_config().get("openai_api_key")


def get_style_instruction() -> str:
    """Persona text for generative requests; an explicit empty string disables it."""
    value = load_config().get("style_instruction")
    if value is None:
        return DEFAULT_STYLE_INSTRUCTION
    return str(value)


def get_text_model() -> str:
    return load_config().get("text_model") or DEFAULT_TEXT_MODEL


def get_synthesis_model() -> str:
    return load_config().get("synthesis_model") or DEFAULT_SYNTHESIS_MODEL


def get_image_model() -> str:
    return load_config().get("image_model") or DEFAULT_IMAGE_MODEL
