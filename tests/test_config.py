"""
Test suite for configuration loading.
"""

import logging

import pytest

from imgpipe.config import CONFIG_ENV_VAR, DEFAULT_SETTINGS, Config, load_config
from imgpipe.exceptions import LoadError
from imgpipe.loader import WorkflowLoader


def write_config(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return path


class TestLoadConfig:

    def test_defaults_when_default_file_missing(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "absent.yaml"))
        config = load_config()
        assert config.settings == DEFAULT_SETTINGS
        assert config.path is None
        assert config.config_dir == tmp_path

    def test_explicit_missing_file_is_error(self, tmp_path):
        with pytest.raises(LoadError, match="Configuration file not found"):
            load_config(tmp_path / "absent.yaml")

    def test_environment_variable(self, tmp_path, monkeypatch):
        path = write_config(tmp_path, "settings:\n  parallel_jobs: 2\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        config = load_config()
        assert config.path == path
        assert config.setting('parallel_jobs') == 2

    def test_settings_overlay_defaults(self, tmp_path):
        path = write_config(tmp_path, "settings:\n  output_dir: /data/out\n  quality:\n    jpg: 70\n")
        config = load_config(path)
        assert config.settings['output_dir'] == '/data/out'
        assert config.settings['parallel_jobs'] == DEFAULT_SETTINGS['parallel_jobs']
        assert config.settings['quality'] == {'jpg': 70}

    def test_empty_file(self, tmp_path):
        config = load_config(write_config(tmp_path, ""))
        assert config.settings == DEFAULT_SETTINGS
        assert config.workflows == {}

    def test_not_a_mapping(self, tmp_path):
        with pytest.raises(LoadError, match="must be a YAML mapping"):
            load_config(write_config(tmp_path, "- a\n- b\n"))

    def test_bad_sections_reported_together(self, tmp_path):
        path = write_config(tmp_path, "settings: [1]\npresets: nope\n")
        with pytest.raises(LoadError) as exc_info:
            load_config(path)
        assert len(exc_info.value.errors) == 2
        assert exc_info.value.exit_code == 2

    def test_malformed_yaml(self, tmp_path):
        with pytest.raises(LoadError, match="Failed to load configuration"):
            load_config(write_config(tmp_path, "settings: [unclosed\n"))

    def test_unknown_section_warns(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            load_config(write_config(tmp_path, "plugins: {}\n"))
        assert "Ignoring unknown configuration section 'plugins'" in caplog.text

    def test_defaults_not_shared_between_configs(self):
        first = Config()
        first.settings['quality']['jpg'] = 1
        assert Config().settings['quality']['jpg'] == 85


class TestConfiguredDefinitions:
    """Workflows and presets defined in or next to the configuration."""

    def test_inline_workflow(self, tmp_path):
        path = write_config(tmp_path, """
workflows:
  notify:
    steps:
      - name: say
        type: custom
        params:
          script: echo hi
""")
        loader = WorkflowLoader(load_config(path))
        resolved = loader.load('notify')
        assert resolved.name == 'notify'
        assert loader.list_workflows()['notify'] == str(path)

    def test_workflow_directory(self, tmp_path):
        path = write_config(tmp_path, "")
        (tmp_path / "workflows").mkdir()
        (tmp_path / "workflows" / "local.yaml").write_text(
            "steps:\n  - name: a\n    type: custom\n    params:\n      script: echo a\n"
        )
        loader = WorkflowLoader(load_config(path))
        assert loader.load('local').steps[0].name == 'a'
        assert 'local' in loader.list_workflows()

    def test_configured_definition_shadows_builtin(self, tmp_path):
        path = write_config(tmp_path, """
workflows:
  pdf-to-thumbnails:
    description: mine
    steps:
      - name: only
        type: custom
        params:
          script: echo only
""")
        resolved = WorkflowLoader(load_config(path)).load('pdf-to-thumbnails')
        assert [step.name for step in resolved.steps] == ['only']
