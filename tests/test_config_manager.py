"""
Unit Tests for the Configuration Manager
Tests YAML loading, environment substitution and section defaults.
"""

import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from cdc_sync.config_manager import API_DEFAULTS, EXECUTOR_DEFAULTS, ConfigManager, get_config


class ConfigTestCase(unittest.TestCase):
    """Fresh ConfigManager over a temporary config directory."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        ConfigManager.reset()

    def tearDown(self):
        ConfigManager.reset()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def load(self, text: str, **env) -> ConfigManager:
        Path(self.tmpdir, 'config.yaml').write_text(text, encoding='utf-8')
        with patch.dict(os.environ, dict(env, CONFIG_DIR=self.tmpdir)):
            return ConfigManager()


class TestLoading(ConfigTestCase):

    def test_singleton(self):
        config = self.load('sync:\n  intermediate_prefix: ods\n')
        self.assertIs(get_config(), config)

    def test_reset_reloads(self):
        self.load('sync:\n  intermediate_prefix: ods\n')
        ConfigManager.reset()
        config = self.load('sync:\n  intermediate_prefix: stage\n')
        self.assertEqual(config.get_sync_config()['intermediate_prefix'], 'stage')

    def test_missing_file_gives_empty_sections(self):
        with patch.dict(os.environ, {'CONFIG_DIR': self.tmpdir}):
            config = ConfigManager()
        self.assertEqual(config.get_database_config(), {})
        self.assertEqual(config.get_logging_config(), {})

    def test_section_must_be_mapping(self):
        with self.assertRaises(ValueError) as ctx:
            self.load('executor: 4\n')
        self.assertIn("'executor'", str(ctx.exception))

    def test_top_level_must_be_mapping(self):
        with self.assertRaises(ValueError):
            self.load('- a\n- b\n')

    def test_unknown_sections_are_ignored(self):
        config = self.load('extra: 1\n')
        self.assertEqual(config.get_sync_config(), {})


class TestEnvSubstitution(ConfigTestCase):

    def test_variable_set(self):
        config = self.load('database:\n  host: ${SYNC_DB_HOST:-localhost}\n', SYNC_DB_HOST='db.internal')
        self.assertEqual(config.get_database_config()['host'], 'db.internal')

    def test_default_used(self):
        with patch.dict(os.environ):
            os.environ.pop('SYNC_DB_HOST', None)
            config = self.load('database:\n  host: ${SYNC_DB_HOST:-localhost}\n')
        self.assertEqual(config.get_database_config()['host'], 'localhost')

    def test_unresolved_placeholder_kept(self):
        with patch.dict(os.environ):
            os.environ.pop('SYNC_DB_NAME', None)
            config = self.load("database:\n  name: '${SYNC_DB_NAME}'\n")
        self.assertEqual(config.get_database_config()['name'], '${SYNC_DB_NAME}')


class TestSectionDefaults(ConfigTestCase):

    def test_executor_defaults(self):
        config = self.load('sync: {}\n')
        self.assertEqual(config.get_executor_config(), EXECUTOR_DEFAULTS)

    def test_executor_coercion(self):
        config = self.load(
            'executor:\n  max_workers: ${SYNC_MAX_WORKERS:-4}\n  wait_poll_interval: 2\n',
            SYNC_MAX_WORKERS='0'
        )
        executor = config.get_executor_config()
        self.assertEqual(executor['max_workers'], 1)
        self.assertEqual(executor['wait_poll_interval'], 2.0)
        self.assertIsInstance(executor['wait_poll_interval'], float)

    def test_api_defaults(self):
        config = self.load('api:\n  port: "9100"\n')
        api = config.get_api_config()
        self.assertEqual(api['port'], 9100)
        self.assertEqual(api['host'], API_DEFAULTS['host'])
        self.assertEqual(api['history_max_limit'], API_DEFAULTS['history_max_limit'])

    def test_shipped_config(self):
        shipped = Path(__file__).parent.parent / 'config' / 'config.yaml'
        shutil.copy(shipped, Path(self.tmpdir, 'config.yaml'))
        with patch.dict(os.environ, {'CONFIG_DIR': self.tmpdir, 'SYNC_MAX_WORKERS': '8'}):
            config = ConfigManager()
        self.assertEqual(config.get_executor_config()['max_workers'], 8)
        self.assertEqual(config.get_sync_config()['intermediate_prefix'], 'ods')
        self.assertEqual(config.get_logging_config()['backup_count'], 5)


if __name__ == '__main__':
    unittest.main()
