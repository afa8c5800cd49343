"""
Unit tests for configuration loader module.
"""

from pathlib import Path
from unittest.mock import patch, mock_open

import formengine.config_loader as config_loader
from formengine.config_loader import (
    deep_merge,
    get_config_value,
    get_default_config,
    get_engine_settings,
    load_config,
    reload_config,
    validate_config,
)


class TestDeepMerge:
    """Test cases for deep_merge function."""

    def test_deep_merge_nested_dicts(self):
        """Nested sections are merged key by key."""
        base = {'engine': {'debounce_ms': 150, 'first_chunk': 16}, 'app': {'name': 'Base'}}
        update = {'engine': {'debounce_ms': 300}}

        result = deep_merge(base, update)

        assert result == {'engine': {'debounce_ms': 300, 'first_chunk': 16}, 'app': {'name': 'Base'}}
        assert base['engine']['debounce_ms'] == 150

    def test_deep_merge_non_dict_values(self):
        """Non-dict values are replaced, not merged."""
        result = deep_merge({'a': {'nested': 1}, 'b': [1, 2]}, {'a': 'flat', 'b': [3]})
        assert result == {'a': 'flat', 'b': [3]}


class TestGetDefaultConfig:
    """Test cases for get_default_config function."""

    def test_get_default_config_structure(self):
        """Default config has every section the app reads."""
        config = get_default_config()

        for section in ['app', 'logging', 'forms', 'engine', 'ui']:
            assert section in config
        assert config['engine']['debounce_ms'] == 150
        assert config['forms']['declaration'] == 'order_form.yaml'

    def test_default_config_is_valid(self):
        assert validate_config(get_default_config()) is True


class TestLoadConfig:
    """Test cases for load_config function."""

    def test_load_config_file_not_exists(self):
        """Missing file falls back to defaults."""
        with patch('pathlib.Path.exists', return_value=False):
            config = load_config(Path('nonexistent.yaml'))

        assert config == get_default_config()

    def test_load_config_valid_file(self):
        """Values from the file override defaults; the rest stays default."""
        yaml_content = """
app:
  name: "Test Forms"
engine:
  debounce_ms: 50
"""
        with patch('builtins.open', mock_open(read_data=yaml_content)):
            with patch('pathlib.Path.exists', return_value=True):
                config = load_config(Path('test.yaml'))

        assert config['app']['name'] == 'Test Forms'
        assert config['engine']['debounce_ms'] == 50
        assert config['engine']['chunk_step'] == 24

    def test_load_config_from_disk(self, tmp_path):
        """A real file on disk is read and merged."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("logging:\n  level: DEBUG\n", encoding='utf-8')

        config = load_config(config_file)

        assert config['logging']['level'] == 'DEBUG'
        assert config['app']['name'] == 'Form Engine Demo'

    def test_load_config_invalid_yaml(self):
        """Unparseable YAML falls back to defaults."""
        with patch('builtins.open', mock_open(read_data="invalid: yaml: content: [")):
            with patch('pathlib.Path.exists', return_value=True):
                config = load_config(Path('invalid.yaml'))

        assert config == get_default_config()

    def test_load_config_empty_and_non_dict(self):
        """Empty files and non-mapping roots fall back to defaults."""
        for content in ("", "- item1\n- item2"):
            with patch('builtins.open', mock_open(read_data=content)):
                with patch('pathlib.Path.exists', return_value=True):
                    assert load_config(Path('odd.yaml')) == get_default_config()

    def test_load_config_io_error(self):
        """Read errors fall back to defaults."""
        with patch('builtins.open', side_effect=IOError("Permission denied")):
            with patch('pathlib.Path.exists', return_value=True):
                config = load_config(Path('protected.yaml'))

        assert config == get_default_config()


class TestCachedConfig:
    """Test cases for the cached accessors."""

    def test_get_config_value_uses_cache(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("ui:\n  page_title: Orders\n", encoding='utf-8')
        monkeypatch.setattr(config_loader, 'CONFIG_FILE', config_file)

        reload_config()
        try:
            assert get_config_value('ui', 'page_title') == 'Orders'
            assert get_config_value('ui', 'missing', 'fallback') == 'fallback'
            assert get_config_value('nope', 'missing') is None
        finally:
            monkeypatch.undo()
            reload_config()


class TestValidateConfig:
    """Test cases for validate_config function."""

    def test_validate_config_missing_sections(self):
        """Missing sections make the config invalid."""
        assert validate_config({'app': {'name': 'Test'}}) is False

    def test_validate_config_non_integer_engine_value(self):
        config = get_default_config()
        config['engine']['chunk_step'] = 'many'
        assert validate_config(config) is False

    def test_validate_config_zero_values(self):
        """Zero debounce is allowed; zero chunk sizes are not."""
        config = get_default_config()
        config['engine']['debounce_ms'] = 0
        assert validate_config(config) is True

        config['engine']['first_chunk'] = 0
        assert validate_config(config) is False

    def test_validate_config_unknown_logging_level(self):
        config = get_default_config()
        config['logging']['level'] = 'LOUD'
        assert validate_config(config) is False


class TestGetEngineSettings:
    """Test cases for get_engine_settings function."""

    def test_overrides_are_applied(self):
        settings = get_engine_settings({'engine': {'debounce_ms': '75'}})

        assert settings['debounce_ms'] == 75
        assert settings['focus_max_tries'] == 120

    def test_unknown_keys_are_ignored(self):
        settings = get_engine_settings({'engine': {'colour': 'blue'}})
        assert 'colour' not in settings

    def test_invalid_config_uses_defaults(self):
        settings = get_engine_settings({'engine': {'first_chunk': -1}})
        assert settings == get_default_config()['engine']
