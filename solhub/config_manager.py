import json
import os
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse

DEFAULT_CHANNELS = ['general', 'trading', 'nft', 'defi', 'announcements']
DEFAULT_VOICE_CHANNELS = [
    {'name': 'General Voice', 'description': 'Hang out and talk'},
    {'name': 'Trading Floor', 'description': 'Live market talk'},
    {'name': 'NFT Gallery', 'description': 'Show off your collection'},
]

# (section, key, environment variable, cast)
ENV_OVERRIDES = [
    ('server', 'host', 'HOST', str),
    ('server', 'port', 'PORT', int),
    ('server', 'frontend_url', 'FRONTEND_URL', str),
    ('database', 'uri', 'MONGODB_URI', str),
    ('logging', 'level', 'LOG_LEVEL', str),
    ('logging', 'file', 'LOG_FILE', str),
]


class ConfigManager:
    _instance = None
    _config = None

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._config is None:
            self.load_config(config_path)

    def load_config(self, config_path: Optional[str] = None):
        """Load defaults, then config.json, then environment variables."""
        self._config = self._get_default_config()
        config_path = config_path or os.path.join(os.getcwd(), 'config.json')
        if os.path.exists(config_path):
            try:
                with open(config_path, 'r') as f:
                    file_config = json.load(f)
                for section, values in file_config.items():
                    if section in self._config and isinstance(values, dict):
                        self._config[section].update(values)
            except json.JSONDecodeError:
                logging.error("Invalid config file format. Using default values.")
        self._apply_env()

    def _apply_env(self):
        for section, key, env_name, cast in ENV_OVERRIDES:
            value = os.environ.get(env_name)
            if value is None or value == '':
                continue
            try:
                self._config[section][key] = cast(value)
            except ValueError:
                logging.error(f"Ignoring invalid value for {env_name}: {value!r}")

    def _get_default_config(self) -> Dict[str, Dict[str, Any]]:
        return {
            "server": {
                "host": "0.0.0.0",
                "port": 5000,
                "frontend_url": "http://localhost:3000"
            },
            "database": {
                "uri": "mongodb://localhost:27017/solhub",
                "default_name": "solhub"
            },
            "chat": {
                "channels": list(DEFAULT_CHANNELS),
                "voice_channels": [dict(vc) for vc in DEFAULT_VOICE_CHANNELS],
                "default_channel": "general",
                "history_limit": 50
            },
            "logging": {
                "level": "INFO",
                "file": ""
            }
        }

    def get_server_config(self):
        return self._config.get("server", {})

    def get_database_config(self):
        return self._config.get("database", {})

    def get_chat_config(self):
        return self._config.get("chat", {})

    def get_logging_config(self):
        return self._config.get("logging", {})

    def get_database_name(self) -> str:
        """Database name from the URI path, falling back to the default name."""
        db_config = self.get_database_config()
        path = urlparse(db_config.get("uri", "")).path.lstrip('/')
        return path or db_config.get("default_name", "solhub")

    def update_config(self, section, key, value):
        if section in self._config and key in self._config[section]:
            self._config[section][key] = value
            return True
        return False

    @classmethod
    def reset(cls):
        """Drop the cached instance so the next call reloads everything."""
        cls._instance = None
        cls._config = None


def get_config() -> ConfigManager:
    return ConfigManager()
