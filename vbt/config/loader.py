import yaml
from pathlib import Path
from .models import AppConfig


def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    # `items:` with no entries parses as None
    if data.get("items") is None:
        data.pop("items", None)

    return AppConfig(**data)
