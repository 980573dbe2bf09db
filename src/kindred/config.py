"""Kindred configuration loader.

Loads settings from ~/.kindred/config.json, then applies environment
overrides so a ``.env`` file can hold the API key.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .engine.delivery import SEGMENT_DELAY, TRANSFER_RECEIPT_DELAY
from .engine.prompts import DEFAULT_SYSTEM_PROMPT
from .gateway import DEFAULT_MODEL, DEFAULT_TIMEOUT, clamp_temperature
from .memory.scheduler import SWEEP_INTERVAL

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".kindred"
DEFAULT_CONFIG_PATH = DEFAULT_DATA_DIR / "config.json"


@dataclass
class KindredConfig:
    """Runtime configuration.

    Attributes:
        api_key: Key for the chat-completion endpoint.
        base_url: OpenAI-compatible endpoint, None for the Groq default.
        model: Model identifier.
        temperature: Sampling temperature, clamped to 0.0-2.0.
        timeout: Hard limit in seconds for one exchange.
        system_prompt: Base prompt used when the store has no override.
        data_dir: Where the database, legacy files and logs live.
        stickers_enabled: Offer the sticker catalog to the model.
        segment_delay: Seconds between delivered segments.
        transfer_delay: Extra wait before the first segment after a receipt.
        sweep_interval: Seconds between daily summary catch-up sweeps.
    """

    api_key: str | None = None
    base_url: str | None = None
    model: str = DEFAULT_MODEL
    temperature: float = 0.7
    timeout: float = DEFAULT_TIMEOUT
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    data_dir: Path = DEFAULT_DATA_DIR
    stickers_enabled: bool = False
    segment_delay: float = SEGMENT_DELAY
    transfer_delay: float = TRANSFER_RECEIPT_DELAY
    sweep_interval: float = SWEEP_INTERVAL

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir).expanduser()
        self.temperature = clamp_temperature(self.temperature)
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")

    @property
    def db_path(self) -> Path:
        return self.data_dir / "kindred.db"

    @property
    def legacy_dir(self) -> Path:
        return self.data_dir / "legacy"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"


def load_config(config_path: Path | None = None) -> KindredConfig:
    """Load KindredConfig from a JSON file and the environment.

    The config file should have this structure:
    ```json
    {
      "api": {"base_url": null, "model": "llama-3.1-70b-versatile",
              "temperature": 0.7, "timeout": 55},
      "chat": {"system_prompt": "...", "stickers_enabled": false,
               "segment_delay": 0.8, "transfer_delay": 0.5},
      "summary": {"sweep_interval": 60},
      "data_dir": "~/.kindred"
    }
    ```

    The API key is never read from the file; use ``GROQ_API_KEY``.

    Args:
        config_path: Path to config file. Uses DEFAULT_CONFIG_PATH if None.

    Returns:
        KindredConfig instance with loaded values.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    data: dict[str, Any] = {}

    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning("Invalid JSON in %s: %s. Using defaults.", path, e)
        except OSError as e:
            logger.warning("Cannot read %s: %s. Using defaults.", path, e)

    if not isinstance(data, dict):
        data = {}

    config = _parse_config(data)
    return _apply_env(config)


def _number(value: Any, default: float, minimum: float = 0.0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < minimum:
        return default
    return float(value)


def _parse_config(data: dict[str, Any]) -> KindredConfig:
    """Parse config dictionary into KindredConfig.

    Invalid values fall back to their defaults.
    """
    api = data.get("api", {})
    if not isinstance(api, dict):
        api = {}
    chat = data.get("chat", {})
    if not isinstance(chat, dict):
        chat = {}
    summary = data.get("summary", {})
    if not isinstance(summary, dict):
        summary = {}

    base_url = api.get("base_url")
    if not isinstance(base_url, str) or not base_url.strip():
        base_url = None

    model = api.get("model")
    if not isinstance(model, str) or not model.strip():
        model = DEFAULT_MODEL

    system_prompt = chat.get("system_prompt")
    if not isinstance(system_prompt, str) or not system_prompt.strip():
        system_prompt = DEFAULT_SYSTEM_PROMPT

    data_dir = data.get("data_dir")
    data_dir = Path(data_dir).expanduser() if isinstance(data_dir, str) and data_dir else DEFAULT_DATA_DIR

    timeout = _number(api.get("timeout"), DEFAULT_TIMEOUT)
    if timeout <= 0:
        timeout = DEFAULT_TIMEOUT

    sweep = _number(summary.get("sweep_interval"), SWEEP_INTERVAL)
    if sweep <= 0:
        sweep = SWEEP_INTERVAL

    return KindredConfig(
        base_url=base_url,
        model=model,
        temperature=_number(api.get("temperature"), 0.7),
        timeout=timeout,
        system_prompt=system_prompt,
        data_dir=data_dir,
        stickers_enabled=bool(chat.get("stickers_enabled", False)),
        segment_delay=_number(chat.get("segment_delay"), SEGMENT_DELAY),
        transfer_delay=_number(chat.get("transfer_delay"), TRANSFER_RECEIPT_DELAY),
        sweep_interval=sweep,
    )


def _apply_env(config: KindredConfig) -> KindredConfig:
    """Override configuration from environment variables."""
    config.api_key = os.getenv("GROQ_API_KEY") or config.api_key
    config.model = os.getenv("GROQ_MODEL") or config.model
    config.base_url = os.getenv("KINDRED_BASE_URL") or config.base_url

    data_dir = os.getenv("KINDRED_DATA_DIR")
    if data_dir:
        config.data_dir = Path(data_dir).expanduser()

    temperature = os.getenv("KINDRED_TEMPERATURE")
    if temperature:
        try:
            config.temperature = clamp_temperature(float(temperature))
        except ValueError:
            logger.warning("Ignoring invalid KINDRED_TEMPERATURE=%r", temperature)

    timeout = os.getenv("KINDRED_TIMEOUT")
    if timeout:
        try:
            value = float(timeout)
        except ValueError:
            value = 0.0
        if value > 0:
            config.timeout = value
        else:
            logger.warning("Ignoring invalid KINDRED_TIMEOUT=%r", timeout)

    return config


def save_config(config: KindredConfig, config_path: Path | None = None) -> None:
    """Save KindredConfig to a JSON file. The API key is never written.

    Args:
        config: The config to save.
        config_path: Path to write to. Uses DEFAULT_CONFIG_PATH if None.
    """
    path = config_path or DEFAULT_CONFIG_PATH

    path.parent.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {
        "api": {
            "base_url": config.base_url,
            "model": config.model,
            "temperature": config.temperature,
            "timeout": config.timeout,
        },
        "chat": {
            "stickers_enabled": config.stickers_enabled,
            "segment_delay": config.segment_delay,
            "transfer_delay": config.transfer_delay,
        },
        "summary": {"sweep_interval": config.sweep_interval},
        "data_dir": str(config.data_dir),
    }
    if config.system_prompt != DEFAULT_SYSTEM_PROMPT:
        data["chat"]["system_prompt"] = config.system_prompt

    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
    except OSError as e:
        logger.error("Failed to save config to %s: %s", path, e)
        raise
