import json

from vendconsole.config import ConsoleConfig


def test_missing_file_saves_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("RELAY_URL", raising=False)
    path = tmp_path / "console_config.json"

    config = ConsoleConfig(str(path))

    assert path.exists()
    assert config.get("relay_url") == "wss://central-6vfl.onrender.com"
    assert config.get("layout_size") == 60
    assert config.get("default_capacity") == 10
    assert config.get("bulk_quantity") == 5
    assert config.get("auto_reconnect") is False


def test_env_overrides_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("RELAY_TRANSPORT", "mqtt")
    monkeypatch.setenv("BROKER_PORT", "8883")
    monkeypatch.setenv("AUTO_RECONNECT", "yes")

    config = ConsoleConfig(str(tmp_path / "c.json"))

    assert config.get("relay_transport") == "mqtt"
    assert config.get("broker_port") == 8883
    assert config.get("auto_reconnect") is True


def test_file_values_win_and_are_normalized(tmp_path):
    path = tmp_path / "c.json"
    path.write_text(json.dumps({"layout_size": "40", "relay_legacy_alias": "false"}))

    config = ConsoleConfig(str(path))

    assert config.get("layout_size") == 40
    assert config.get("relay_legacy_alias") is False


def test_update_persists(tmp_path):
    path = tmp_path / "c.json"
    config = ConsoleConfig(str(path))

    config.update("bulk_quantity", "3")

    assert json.loads(path.read_text())["bulk_quantity"] == 3
    assert ConsoleConfig(str(path)).get("bulk_quantity") == 3
