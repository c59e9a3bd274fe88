"""Test suite for config management functionality.

This test suite validates:
- Preferences module functionality
- Config discovery (explicit path, preference, default location)
- Config validation into secret/file/notifier specs
- CLI commands for config management
"""
import json
from argparse import Namespace

import pytest
import yaml

from agent_secretsync.secrets.domains import config_loader, preferences
from agent_secretsync.secrets.domains.config_loader import ConfigError, parse_config
from agent_secretsync.secrets.domains.models import DEFAULT_FILE_MODE, DEFAULT_RELOAD_TIMEOUT


@pytest.fixture
def temp_config_dir(temp_home):
    """Fixture to create temporary config directory."""
    config_dir = temp_home / ".config" / "agent-secretsync"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


@pytest.fixture
def sample_config_content(tmp_path):
    """Sample valid config content."""
    return {
        "state_path": str(tmp_path / "state" / "state.json"),
        "store": {
            "type": "vault",
            "address": "https://vault.example.com:8200",
        },
        "secrets": {
            "db": {
                "url": "secret/db",
            },
            "cert": {
                "method": "post",
                "url": "pki/issue/web",
                "data": {"common_name": "{{ hostname() }}"},
            },
        },
        "files": [
            {
                "path": "/etc/app/db.conf",
                "template": "password={{ secret('db', 'password') }}",
                "mode": 0o640,
                "notify": ["app"],
                "priority": 10,
            },
            {
                "path": "/etc/app/cert.pem",
                "template_file": "/etc/secretsync/cert.tpl",
            },
        ],
        "notifiers": {
            "app": {"service": "app.service"},
        },
    }


@pytest.fixture
def temp_config_file(temp_config_dir, sample_config_content):
    """Fixture to create a temporary config file with valid content."""
    config_file = temp_config_dir / "config.yml"
    with open(config_file, 'w') as f:
        yaml.dump(sample_config_content, f)
    return config_file


class TestPreferencesModule:
    """Test suite for preferences module."""

    def test_get_preference_returns_none_when_not_set(self, temp_home):
        """Test that get_preference returns None when preference is not set."""
        assert preferences.get_preference("config_path") is None

    def test_set_preference_stores_value(self, temp_home):
        """Test that set_preference stores a value."""
        preferences.set_preference("config_path", "/path/to/config.yml")
        assert preferences.get_preference("config_path") == "/path/to/config.yml"

    def test_clear_preference_removes_value(self, temp_home):
        """Test that clear_preference removes a value."""
        preferences.set_preference("config_path", "/path/to/config.yml")
        preferences.clear_preference("config_path")
        assert preferences.get_preference("config_path") is None

    def test_preferences_persisted_to_json_file(self, temp_home):
        """Test that preferences are persisted to the JSON file."""
        preferences.set_preference("config_path", "/path/to/config.yml")

        with open(preferences.PREFERENCES_FILE, 'r') as f:
            data = json.load(f)

        assert data["config_path"] == "/path/to/config.yml"

    def test_get_all_preferences(self, temp_home):
        """Test getting all preferences."""
        preferences.set_preference("config_path", "/path/to/config.yml")
        preferences.set_preference("another_key", "another_value")

        all_prefs = preferences.get_all_preferences()
        assert all_prefs == {"config_path": "/path/to/config.yml", "another_key": "another_value"}

    def test_clear_nonexistent_preference(self, temp_home):
        """Test clearing a preference that doesn't exist."""
        preferences.clear_preference("nonexistent_key")

    def test_corrupt_preferences_file_is_ignored(self, temp_home):
        """Test that an unparseable preferences file reads as empty."""
        preferences.PREFERENCES_DIR.mkdir(parents=True)
        preferences.PREFERENCES_FILE.write_text("{not json")

        assert preferences.get_all_preferences() == {}


class TestConfigDiscovery:
    """Test suite for config path resolution."""

    def test_explicit_path_wins(self, temp_home, temp_config_file, tmp_path):
        """Test that an explicit path is used even if a preference is set."""
        other = tmp_path / "other.yml"
        other.write_text("x: 1")
        preferences.set_preference("config_path", str(temp_config_file))

        assert config_loader._get_config_path(str(other)) == str(other.resolve())

    def test_get_config_path_with_preference_set(self, temp_home, temp_config_file, tmp_path):
        """Test _get_config_path returns preference path when set."""
        custom = tmp_path / "custom.yml"
        custom.write_text(temp_config_file.read_text())
        preferences.set_preference("config_path", str(custom))

        assert config_loader._get_config_path() == str(custom)

    def test_get_config_path_returns_default_location(self, temp_home, temp_config_file):
        """Test _get_config_path returns default location without preference."""
        assert config_loader._get_config_path() == str(temp_config_file)

    def test_preference_with_nonexistent_path_falls_back(self, temp_home, temp_config_file, tmp_path):
        """Test _get_config_path when preference points to nonexistent file."""
        preferences.set_preference("config_path", str(tmp_path / "nonexistent.yml"))

        assert config_loader._get_config_path() == str(temp_config_file)

    def test_get_config_path_raises_when_file_missing(self, temp_home):
        """Test _get_config_path raises FileNotFoundError when config missing."""
        with pytest.raises(FileNotFoundError) as exc_info:
            config_loader._get_config_path()

        assert "Configuration file not found" in str(exc_info.value)

    def test_preference_change_reflected_immediately(self, temp_home, tmp_path, sample_config_content):
        """Test that changing preferences takes effect without a restart."""
        config1 = tmp_path / "config1.yml"
        config2 = tmp_path / "config2.yml"
        config1.write_text(yaml.dump(dict(sample_config_content, retry_period=1)))
        config2.write_text(yaml.dump(dict(sample_config_content, retry_period=2)))

        preferences.set_preference("config_path", str(config1))
        assert config_loader.load_config().retry_period == 1

        preferences.set_preference("config_path", str(config2))
        assert config_loader.load_config().retry_period == 2


class TestConfigLoader:
    """Test suite for config validation."""

    def test_load_config_success(self, temp_home, temp_config_file, sample_config_content):
        """Test load_config builds specs from a valid config."""
        config = config_loader.load_config()

        assert config.path == str(temp_config_file)
        assert config.store["type"] == "vault"
        assert config.state_path == sample_config_content["state_path"]
        assert config.retry_period == 5.0

        assert set(config.secrets) == {"db", "cert"}
        assert config.secrets["db"].method == "GET"
        assert config.secrets["cert"].method == "POST"
        assert config.secrets["cert"].data == {"common_name": "{{ hostname() }}"}

        db_file, cert_file = config.files
        assert db_file.path == "/etc/app/db.conf"
        assert db_file.mode == 0o640
        assert db_file.notify == ["app"]
        assert db_file.priority == 10
        assert cert_file.template_file == "/etc/secretsync/cert.tpl"
        assert cert_file.effective_mode == DEFAULT_FILE_MODE

        assert config.notifiers["app"].service == "app.service"

    def test_missing_store_section(self, sample_config_content):
        """Test that a config without store is rejected."""
        del sample_config_content["store"]

        with pytest.raises(ConfigError) as exc_info:
            parse_config(sample_config_content)

        assert "store" in str(exc_info.value)

    def test_unsupported_store_type(self, sample_config_content):
        """Test handling of unsupported store type."""
        sample_config_content["store"]["type"] = "consul"

        with pytest.raises(ConfigError) as exc_info:
            parse_config(sample_config_content)

        assert "Unsupported store type" in str(exc_info.value)

    def test_secret_without_url(self, sample_config_content):
        """Test that secrets need a url."""
        sample_config_content["secrets"]["db"] = {"method": "GET"}

        with pytest.raises(ConfigError, match="url"):
            parse_config(sample_config_content)

    def test_duplicate_file_path(self, sample_config_content):
        """Test that a path can only be defined once."""
        sample_config_content["files"].append({"path": "/etc/app/db.conf", "template": "x"})

        with pytest.raises(ConfigError, match="more than once"):
            parse_config(sample_config_content)

    def test_unknown_notifier(self, sample_config_content):
        """Test that files can only notify configured notifiers."""
        sample_config_content["files"][0]["notify"] = ["missing"]

        with pytest.raises(ConfigError, match="unknown notifier 'missing'"):
            parse_config(sample_config_content)

    def test_notifier_needs_exactly_one_target(self, sample_config_content):
        """Test that notifiers need a service or a command, not both."""
        sample_config_content["notifiers"]["app"] = {"service": "a", "command": ["kill", "-HUP", "1"]}

        with pytest.raises(ConfigError, match="exactly one"):
            parse_config(sample_config_content)

    def test_command_notifier_string_is_split(self, sample_config_content):
        """Test that a command given as string becomes an argument list."""
        sample_config_content["notifiers"]["app"] = {"command": "pkill -HUP nginx"}

        config = parse_config(sample_config_content)

        assert config.notifiers["app"].command == ["pkill", "-HUP", "nginx"]

    def test_notifier_timeout(self, sample_config_content):
        """Test that the reload timeout defaults and can be overridden."""
        config = parse_config(sample_config_content)
        assert config.notifiers["app"].timeout == DEFAULT_RELOAD_TIMEOUT

        sample_config_content["notifiers"]["app"]["timeout"] = 5
        config = parse_config(sample_config_content)
        assert config.notifiers["app"].timeout == 5.0

    @pytest.mark.parametrize("timeout", [0, -1, "soon", True])
    def test_notifier_invalid_timeout(self, sample_config_content, timeout):
        """Test that reload timeouts must be positive numbers."""
        sample_config_content["notifiers"]["app"]["timeout"] = timeout

        with pytest.raises(ConfigError, match="invalid timeout"):
            parse_config(sample_config_content)

    @pytest.mark.parametrize("raw, expected", [
        (0o644, 0o644),
        ("0640", 0o640),
        ("600", 0o600),
        (None, 0),
    ])
    def test_parse_mode(self, raw, expected):
        """Test that modes are accepted as YAML octal ints or octal strings."""
        assert config_loader.parse_mode(raw, "f") == expected

    @pytest.mark.parametrize("raw", ["rw-r--r--", 0o1777, True])
    def test_parse_mode_invalid(self, raw):
        """Test that non permission modes are rejected."""
        with pytest.raises(ConfigError):
            config_loader.parse_mode(raw, "f")

    def test_empty_config_file(self, temp_home, temp_config_dir):
        """Test handling of empty config file."""
        config_file = temp_config_dir / "config.yml"
        config_file.write_text("")

        with pytest.raises(ConfigError) as exc_info:
            config_loader.load_config()

        assert "empty" in str(exc_info.value).lower()

    def test_invalid_yaml_config(self, temp_home, temp_config_dir):
        """Test handling of invalid YAML."""
        config_file = temp_config_dir / "config.yml"
        config_file.write_text("invalid: yaml: content: [")

        with pytest.raises(ConfigError) as exc_info:
            config_loader.load_config()

        assert "YAML" in str(exc_info.value)


class TestCLICommands:
    """Test suite for config CLI commands."""

    def test_config_set_path_validates_file_exists(self, temp_home, tmp_path):
        """Test that config set-path validates file exists."""
        from agent_secretsync.cli.main import cmd_config_set_path

        args = Namespace(path=str(tmp_path / "nonexistent.yml"))

        with pytest.raises(SystemExit) as exc_info:
            cmd_config_set_path(args)

        assert exc_info.value.code == 1

    def test_config_set_path_stores_absolute_path(self, temp_home, temp_config_file):
        """Test that config set-path stores absolute path."""
        from agent_secretsync.cli.main import cmd_config_set_path

        cmd_config_set_path(Namespace(path=str(temp_config_file)))

        assert preferences.get_preference("config_path") == str(temp_config_file.resolve())

    def test_config_show_with_preference(self, temp_home, temp_config_file, capsys):
        """Test config show command with preference set."""
        from agent_secretsync.cli.main import cmd_config_show

        preferences.set_preference("config_path", str(temp_config_file))
        cmd_config_show(Namespace())

        captured = capsys.readouterr()
        assert str(temp_config_file) in captured.out
        assert "preference" in captured.out.lower()

    def test_config_show_without_preference(self, temp_home, temp_config_file, capsys):
        """Test config show command without preference."""
        from agent_secretsync.cli.main import cmd_config_show

        cmd_config_show(Namespace())

        captured = capsys.readouterr()
        assert str(temp_config_file) in captured.out
        assert "Source: default" in captured.out

    def test_config_clear_removes_preference(self, temp_home, temp_config_file, capsys):
        """Test config clear command removes preference."""
        from agent_secretsync.cli.main import cmd_config_clear

        preferences.set_preference("config_path", str(temp_config_file))
        cmd_config_clear(Namespace())

        assert preferences.get_preference("config_path") is None
        assert "cleared" in capsys.readouterr().out.lower()
