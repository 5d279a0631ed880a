"""Tests for configuration loading, defaults and validation."""

from argparse import Namespace

import pytest

from config_loader import DEFAULT_CONFIG, ConfigLoader, ConfigurationError, get_nested


def write_config(tmp_path, text):
    path = tmp_path / 'config.yaml'
    path.write_text(text, encoding='utf-8')
    return str(path)


VALID_CONFIG = """
connections:
  default:
    base_url: "https://example.atlassian.net"
    username: "me@example.com"
    api_token: ${DOCFETCH_TEST_TOKEN}
docs:
  root: "{root}"
  categories:
    reference: "Reference"
    guides: "Guides"
"""


class TestLoad:

    def test_env_vars_are_substituted(self, tmp_path, monkeypatch):
        monkeypatch.setenv('DOCFETCH_TEST_TOKEN', 'token-from-env')
        path = write_config(tmp_path, VALID_CONFIG.replace('{root}', str(tmp_path / 'docs')))

        config = ConfigLoader.load(path)

        assert get_nested(config, 'connections.default.api_token') == 'token-from-env'
        ConfigLoader.validate(config)

    def test_unset_env_var_fails_validation(self, tmp_path, monkeypatch):
        monkeypatch.delenv('DOCFETCH_TEST_TOKEN', raising=False)
        path = write_config(tmp_path, VALID_CONFIG.replace('{root}', str(tmp_path / 'docs')))

        config = ConfigLoader.load(path)

        assert config['connections']['default']['api_token'] == '${DOCFETCH_TEST_TOKEN}'
        with pytest.raises(ValueError, match='DOCFETCH_TEST_TOKEN'):
            ConfigLoader.validate(config)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigLoader.load(str(tmp_path / 'missing.yaml'))

    def test_non_mapping_file(self, tmp_path):
        path = write_config(tmp_path, '- just\n- a list\n')
        with pytest.raises(ValueError):
            ConfigLoader.load(path)

    def test_empty_file_gets_defaults(self, tmp_path):
        config = ConfigLoader.load(write_config(tmp_path, ''))
        assert config == DEFAULT_CONFIG


class TestDefaults:

    def test_defaults_are_not_shared(self):
        config = ConfigLoader.with_defaults({})
        config['docs']['categories']['extra'] = 'Extra'
        assert 'extra' not in DEFAULT_CONFIG['docs']['categories']

    def test_user_categories_replace_defaults(self):
        config = ConfigLoader.with_defaults({'docs': {'categories': {'guides': 'Guides'}}})

        assert config['docs']['categories'] == {'guides': 'Guides'}
        assert config['docs']['default_category'] == 'guides'
        assert config['docs']['root'] == '.docs'

    def test_explicit_default_category_is_kept(self):
        config = ConfigLoader.with_defaults({
            'docs': {'categories': {'a': 'A', 'b': 'B'}, 'default_category': 'b'}
        })
        assert config['docs']['default_category'] == 'b'


class TestValidate:

    def base_config(self, tmp_path, **docs):
        config = ConfigLoader.with_defaults({'docs': dict({'root': str(tmp_path / 'docs')}, **docs)})
        config['connections'] = {
            'default': {
                'base_url': 'https://example.atlassian.net',
                'username': 'me',
                'api_token': 'token',
            }
        }
        return config

    def test_valid(self, tmp_path):
        ConfigLoader.validate(self.base_config(tmp_path))

    def test_connection_needs_http_url(self, tmp_path):
        config = self.base_config(tmp_path)
        config['connections']['default']['base_url'] = 'ftp://example.com'
        with pytest.raises(ValueError, match='http or https'):
            ConfigLoader.validate(config)

    def test_connection_needs_token(self, tmp_path):
        config = self.base_config(tmp_path)
        del config['connections']['default']['api_token']
        with pytest.raises(ValueError, match='api_token'):
            ConfigLoader.validate(config)

    def test_invalid_timeout(self, tmp_path):
        config = self.base_config(tmp_path)
        config['connections']['default']['timeout'] = 0
        with pytest.raises(ValueError, match='timeout'):
            ConfigLoader.validate(config)

    def test_default_category_must_exist(self, tmp_path):
        config = self.base_config(tmp_path, categories={'a': 'A'}, default_category='b')
        with pytest.raises(ValueError, match='default_category'):
            ConfigLoader.validate(config)

    def test_category_names_are_directory_names(self, tmp_path):
        config = self.base_config(tmp_path, categories={'a/b': 'Nested'})
        with pytest.raises(ValueError, match='invalid directory name'):
            ConfigLoader.validate(config)

    def test_collision_policy(self, tmp_path):
        config = self.base_config(tmp_path)
        config['export']['collision_policy'] = 'rename'
        with pytest.raises(ValueError, match='collision_policy'):
            ConfigLoader.validate(config)

    def test_log_level(self, tmp_path):
        config = self.base_config(tmp_path)
        config['logging']['level'] = 'loud'
        with pytest.raises(ConfigurationError, match='logging.level'):
            ConfigLoader.validate(config)

    def test_docs_root_must_not_be_a_file(self, tmp_path):
        root = tmp_path / 'file.txt'
        root.write_text('x', encoding='utf-8')
        config = self.base_config(tmp_path)
        config['docs']['root'] = str(root)
        with pytest.raises(ValueError, match='not a directory'):
            ConfigLoader.validate(config)


class TestMergeWithArgs:

    def test_cli_overrides(self):
        config = ConfigLoader.with_defaults({})
        args = Namespace(docs_root='/tmp/elsewhere', log_file='run.log', log_level='DEBUG', no_progress=True)

        merged = ConfigLoader.merge_with_args(config, args)

        assert merged['docs']['root'] == '/tmp/elsewhere'
        assert merged['logging'] == {'level': 'DEBUG', 'file': 'run.log'}
        assert merged['sync']['progress_bars'] is False
        assert config['docs']['root'] == '.docs'

    def test_absent_args_leave_config_alone(self):
        config = ConfigLoader.with_defaults({})
        merged = ConfigLoader.merge_with_args(config, Namespace())
        assert merged == config


def test_get_nested():
    config = {'a': {'b': {'c': 1}}}
    assert get_nested(config, 'a.b.c') == 1
    assert get_nested(config, 'a.x', 'fallback') == 'fallback'
    assert get_nested(config, 'a.b.c.d') is None
