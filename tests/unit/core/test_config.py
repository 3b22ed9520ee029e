import pytest

from web_spec.core import ConfigManager
from web_spec.core.exceptions import ConfigurationError


class TestConfigManager:
    """Test layered configuration loading"""

    def test_defaults_when_file_missing(self, tmp_path):
        config = ConfigManager(tmp_path / "absent.yaml")

        assert config.get('executor.browser') == "chromium"
        assert config.get('batch.continue_on_failure') is False
        assert config.get('comparison.duration_tolerance_percent') == 5.0
        assert config.get('executor.nope', "fallback") == "fallback"

    def test_file_overrides_defaults(self, tmp_path):
        path = tmp_path / "web-spec.yaml"
        path.write_text("executor:\n  browser: firefox\n  viewport:\n    width: 800\n")
        config = ConfigManager(path)

        assert config.get('executor.browser') == "firefox"
        assert config.get('executor.viewport') == {"width": 800, "height": 720}
        assert config.get('executor.headless') is True

    def test_json_config(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text('{"batch": {"max_workers": 2}}')
        assert ConfigManager(path).get_module_config('batch')['max_workers'] == 2

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("executor: [unclosed\n")
        with pytest.raises(ConfigurationError):
            ConfigManager(path)

    def test_root_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- one\n- two\n")
        with pytest.raises(ConfigurationError):
            ConfigManager(path)

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("[executor]\n")
        with pytest.raises(ConfigurationError):
            ConfigManager(path)

    def test_environment_variable(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text("report:\n  format: json\n")
        monkeypatch.setenv("WEB_SPEC_CONFIG", str(path))
        assert ConfigManager().get('report.format') == "json"

    def test_set_and_save(self, tmp_path):
        path = tmp_path / "saved.yaml"
        config = ConfigManager(path)
        config.set('executor.base_url', "http://localhost:8000")
        config.save()

        assert ConfigManager(path).get('executor.base_url') == "http://localhost:8000"
