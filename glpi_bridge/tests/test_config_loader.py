"""
Unit tests for glpi_bridge.config.loader module
Tests YAML loading, common.yaml merging, environment overrides and validation
"""
import unittest
import os
import sys
import shutil
import tempfile
from unittest.mock import patch

import yaml

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../..')))

from glpi_bridge.config.loader import (
    ENV_OVERRIDES, GlpiSettings, SmartsheetSettings, SyncSettings, load_config
)


GLPI_SECTION = {
    'url': 'https://glpi.example.com/apirest.php',
    'app_token': 'test_app_token',
    'user_token': 'test_user_token',
}


class ConfigTestCase(unittest.TestCase):

    def setUp(self):
        """Create temporary directory for test configs, with no overriding env vars."""
        self.temp_dir = tempfile.mkdtemp()
        self.work_dir = os.path.join(self.temp_dir, 'scripts')
        os.makedirs(self.work_dir)
        self.original_dir = os.getcwd()
        os.chdir(self.work_dir)

        clean_env = {k: v for k, v in os.environ.items() if k not in ENV_OVERRIDES}
        self.env_patch = patch.dict(os.environ, clean_env, clear=True)
        self.env_patch.start()

    def tearDown(self):
        """Clean up temporary files and restore directory."""
        self.env_patch.stop()
        os.chdir(self.original_dir)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_yaml(self, path, data):
        with open(path, 'w', encoding='utf-8') as f:
            yaml.dump(data, f, allow_unicode=True)


class TestConfigLoader(ConfigTestCase):
    """Test configuration loading functionality."""

    def test_load_yaml_config(self):
        """Test loading YAML configuration."""
        self.write_yaml('config.yaml', {'glpi': GLPI_SECTION, 'sync': {'interval_minutes': 10}})

        config = load_config()

        self.assertEqual(config['glpi']['url'], 'https://glpi.example.com/apirest.php')
        self.assertEqual(config['sync']['interval_minutes'], 10)

    def test_yml_extension(self):
        self.write_yaml('config.yml', {'test': 'yml'})

        config = load_config(validate=False)

        self.assertEqual(config['test'], 'yml')

    def test_load_custom_file(self):
        self.write_yaml('other.yaml', {'glpi': GLPI_SECTION})

        config = load_config('other.yaml')

        self.assertEqual(config['glpi']['app_token'], 'test_app_token')

    def test_file_not_found(self):
        with self.assertRaises(FileNotFoundError):
            load_config('nonexistent.yaml', validate=False)

    def test_unsupported_format(self):
        with open('config.py', 'w') as f:
            f.write("CONFIG = {}\n")

        with self.assertRaises(ValueError):
            load_config('config.py', validate=False)

    def test_empty_file_is_rejected(self):
        with open('config.yaml', 'w') as f:
            f.write("")

        with self.assertRaises(ValueError):
            load_config(validate=False)

    def test_common_yaml_in_parent_directory(self):
        """Shared settings come from ../common.yaml and folder config wins."""
        self.write_yaml(os.path.join('..', 'common.yaml'), {
            'glpi': GLPI_SECTION,
            'logging': {'level': 'DEBUG'},
        })
        self.write_yaml('config.yaml', {'glpi': {'app_token': 'folder_token'}})

        config = load_config()

        self.assertEqual(config['glpi']['url'], GLPI_SECTION['url'])
        self.assertEqual(config['glpi']['app_token'], 'folder_token')
        self.assertEqual(config['logging']['level'], 'DEBUG')

    def test_environment_only(self):
        """No file at all: credentials can come entirely from the environment."""
        os.environ['GLPI_URL'] = 'https://env.example.com/apirest.php'
        os.environ['GLPI_APP_TOKEN'] = 'env_app'
        os.environ['GLPI_USERNAME'] = 'glpi'
        os.environ['GLPI_PASSWORD'] = 'secret'

        config = load_config()

        self.assertEqual(config['glpi']['url'], 'https://env.example.com/apirest.php')
        self.assertEqual(config['glpi']['username'], 'glpi')

    def test_environment_variable_override(self):
        self.write_yaml('config.yaml', {'glpi': GLPI_SECTION, 'sync': {'interval_minutes': 5}})
        os.environ['GLPI_URL'] = 'https://override.example.com/apirest.php'
        os.environ['GLPI_VERIFY_SSL'] = 'false'
        os.environ['SYNC_INTERVAL'] = '15'

        config = load_config()

        self.assertEqual(config['glpi']['url'], 'https://override.example.com/apirest.php')
        self.assertIs(config['glpi']['verify_ssl'], False)
        self.assertEqual(config['sync']['interval_minutes'], 15)

    def test_ca_bundle_path_is_kept(self):
        self.write_yaml('config.yaml', {'glpi': dict(GLPI_SECTION, verify_ssl='/etc/ssl/glpi-ca.pem')})

        config = load_config()

        self.assertEqual(config['glpi']['verify_ssl'], '/etc/ssl/glpi-ca.pem')


class TestConfigValidation(ConfigTestCase):
    """Test fail-fast validation of required values."""

    def test_missing_glpi_section(self):
        self.write_yaml('config.yaml', {'smartsheet': {'token': 't', 'sheet_id': 1}})

        with self.assertRaises(ValueError) as ctx:
            load_config()

        self.assertIn("Missing 'glpi' section", str(ctx.exception))

    def test_all_problems_are_listed(self):
        self.write_yaml('config.yaml', {'glpi': {'url': 'https://glpi.example.com/apirest.php'}})

        with self.assertRaises(ValueError) as ctx:
            load_config(required=('glpi', 'smartsheet'))

        message = str(ctx.exception)
        self.assertIn('glpi.app_token', message)
        self.assertIn('GLPI authentication', message)
        self.assertIn("Missing 'smartsheet' section", message)

    def test_username_without_password_is_not_enough(self):
        glpi = {'url': GLPI_SECTION['url'], 'app_token': 'a', 'username': 'glpi'}
        self.write_yaml('config.yaml', {'glpi': glpi})

        with self.assertRaises(ValueError):
            load_config()

    def test_invalid_interval(self):
        self.write_yaml('config.yaml', {'glpi': GLPI_SECTION, 'sync': {'interval_minutes': 0}})

        with self.assertRaises(ValueError) as ctx:
            load_config()

        self.assertIn('interval_minutes', str(ctx.exception))

    def test_validation_skip(self):
        self.write_yaml('config.yaml', {'incomplete': 'config'})

        config = load_config(validate=False)

        self.assertEqual(config['incomplete'], 'config')


class TestSettings(unittest.TestCase):
    """Test typed settings built from a loaded config."""

    def test_glpi_settings(self):
        settings = GlpiSettings.from_config({'glpi': GLPI_SECTION})

        self.assertEqual(settings.user_token, 'test_user_token')
        self.assertIsNone(settings.username)
        self.assertTrue(settings.verify_ssl)

    def test_glpi_settings_require_url(self):
        with self.assertRaises(ValueError):
            GlpiSettings.from_config({'glpi': {'app_token': 'a'}})

    def test_smartsheet_settings(self):
        settings = SmartsheetSettings.from_config({'smartsheet': {'token': 't', 'sheet_id': 123456}})

        self.assertEqual(settings.sheet_id, '123456')

    def test_sync_defaults(self):
        settings = SyncSettings.from_config({})

        self.assertEqual(settings.interval_minutes, 5)
        self.assertEqual(settings.state_file, 'sync-state.json')
        self.assertEqual(settings.external_id_column, 'No.Ticket')
        self.assertEqual(settings.lock_timeout_seconds, 3600)


if __name__ == '__main__':
    unittest.main()
