import yaml
from pathlib import Path
from .models import AppConfig

def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping: {config_path}")

    # Flat 'queue_length' at the root is accepted as shorthand for consumer.queue_length
    if "queue_length" in data:
        data.setdefault("consumer", {}).setdefault("queue_length", data.pop("queue_length"))

    return AppConfig(**data)
