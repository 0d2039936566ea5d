import json
import os
from typing import Any, Dict

DEFAULT_CONFIG_PATH = "console_config.json"

INT_KEYS = (
    "broker_port",
    "layout_size",
    "default_capacity",
    "bulk_quantity",
    "api_port",
)
BOOL_KEYS = ("relay_legacy_alias", "auto_reconnect")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


class ConsoleConfig:
    def __init__(self, config_path: str = None):
        self.config_path = config_path or os.getenv(
            "CONSOLE_CONFIG", DEFAULT_CONFIG_PATH
        )
        self.settings = {
            "relay_url": os.getenv("RELAY_URL", "wss://central-6vfl.onrender.com"),
            "relay_transport": os.getenv("RELAY_TRANSPORT", "websocket"),
            "relay_legacy_alias": _env_bool("RELAY_LEGACY_ALIAS", "true"),
            "broker_host": os.getenv("BROKER_IP", "127.0.0.1"),
            "broker_port": int(os.getenv("BROKER_PORT", "1883")),
            "db_path": os.getenv("CONSOLE_DB", "console.json"),
            "layout_size": int(os.getenv("LAYOUT_SIZE", "60")),
            "default_capacity": int(os.getenv("DEFAULT_CAPACITY", "10")),
            "bulk_quantity": int(os.getenv("BULK_QUANTITY", "5")),
            "auto_reconnect": _env_bool("AUTO_RECONNECT", "false"),
            "api_host": os.getenv("API_HOST", "0.0.0.0"),
            "api_port": int(os.getenv("API_PORT", "8000")),
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
            "log_file": os.getenv("LOG_FILE"),
        }
        self.load()

    def _normalize(self, values: Dict[str, Any]) -> Dict[str, Any]:
        normalized = dict(values)
        for key in INT_KEYS:
            if key in normalized and normalized[key] is not None:
                normalized[key] = int(normalized[key])
        for key in BOOL_KEYS:
            if key in normalized:
                normalized[key] = _as_bool(normalized[key])
        return normalized

    def load(self):
        try:
            with open(self.config_path, "r") as f:
                loaded = json.load(f)
                self.settings.update(self._normalize(loaded))
        except FileNotFoundError:
            self.save()  # Save defaults if config doesn't exist

    def save(self):
        with open(self.config_path, "w") as f:
            json.dump(self.settings, f, indent=4)

    def update(self, key: str, value: Any):
        self.settings.update(self._normalize({key: value}))
        self.save()

    def get(self, key: str) -> Any:
        return self.settings.get(key)

    def display(self) -> Dict[str, Any]:
        return self.settings
