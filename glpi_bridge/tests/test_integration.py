"""
Integration tests across config, state, importer and reconciler
GLPI and Smartsheet are in-memory fakes
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

from glpi_bridge.config.loader import ENV_OVERRIDES, SyncSettings, load_config
from glpi_bridge.core.importer import BulkImporter
from glpi_bridge.core.reconciler import Reconciler
from glpi_bridge.core.records import get_kind
from glpi_bridge.core.resolver import NameResolver
from glpi_bridge.tests.fakes import FakeGlpiClient, FakeSheet, sheet_row
from glpi_bridge.utils.state_manager import StateManager


class TestConfigAndStateIntegration(unittest.TestCase):
    """Test that settings from config drive the sync state."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.original_dir = os.getcwd()
        os.chdir(self.temp_dir)
        clean_env = {k: v for k, v in os.environ.items() if k not in ENV_OVERRIDES}
        env_patch = patch.dict(os.environ, clean_env, clear=True)
        env_patch.start()
        self.addCleanup(env_patch.stop)

    def tearDown(self):
        """Clean up."""
        os.chdir(self.original_dir)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_config_driven_state_file_and_column(self):
        with open('config.yaml', 'w', encoding='utf-8') as f:
            yaml.dump({
                'glpi': {'url': 'https://glpi.example.com/apirest.php', 'app_token': 'a', 'user_token': 'u'},
                'sync': {'state_file': 'state/custom-state.json', 'external_id_column': 'Folio'},
            }, f)

        settings = SyncSettings.from_config(load_config())
        glpi = FakeGlpiClient()
        sheet = FakeSheet([sheet_row(1422, {'No.Ticket': '', 'Folio': '88'})])
        reconciler = Reconciler(glpi, sheet, StateManager(settings.state_file), settings=settings)

        result = reconciler.tick()

        self.assertEqual(result.created, 1)
        self.assertTrue(os.path.exists(os.path.join('state', 'custom-state.json')))
        self.assertTrue(glpi.all('Ticket')[0]['name'].startswith('[SS-88] '))


class TestImportThenSync(unittest.TestCase):
    """Catalog rows imported first are reused by the sync instead of duplicated."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_imported_catalogs_are_reused(self):
        glpi = FakeGlpiClient()
        BulkImporter(glpi, get_kind('categorias')).run([{'nombre': 'impresión'}])
        BulkImporter(glpi, get_kind('ubicaciones')).run([{'nombre': 'Planta Norte', 'ciudad': 'Monterrey'}])
        BulkImporter(glpi, get_kind('grupos')).run([{'nombre': 'Finanzas'}])

        resolver = NameResolver(glpi)
        state_manager = StateManager(os.path.join(self.temp_dir, 'sync-state.json'))
        sheet = FakeSheet([sheet_row(1), sheet_row(2, {'Problema': 'Sin red'})])

        Reconciler(glpi, sheet, state_manager, resolver=resolver).tick(full=True)

        self.assertEqual(len(glpi.all('ITILCategory')), 1)
        self.assertEqual(len(glpi.all('Location')), 1)
        self.assertEqual(len(glpi.all('Group')), 1)
        category_id = glpi.all('ITILCategory')[0]['id']
        self.assertTrue(all(t['itilcategories_id'] == category_id for t in glpi.all('Ticket')))
        # One requester user shared by both rows
        self.assertEqual(len(glpi.all('User')), 1)


if __name__ == '__main__':
    unittest.main()
