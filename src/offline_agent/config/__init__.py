"""Configuration schema and loading."""

from offline_agent.config.loader import YamlConfigLoader
from offline_agent.config.models import AppConfig, ConfigLoadRequest

__all__ = ["AppConfig", "ConfigLoadRequest", "YamlConfigLoader"]
