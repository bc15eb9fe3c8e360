"""
Unit tests for glpi_bridge.core.dedup module
"""
import unittest
import os
import sys
import shutil
import tempfile

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../..')))

from glpi_bridge.clients.glpi_client import GlpiError
from glpi_bridge.core.dedup import find_duplicates, group_tickets_by_tag, purge_duplicates
from glpi_bridge.tests.fakes import FakeGlpiClient
from glpi_bridge.utils.state_manager import StateManager


class TestDuplicateDetection(unittest.TestCase):

    def test_grouping_ignores_untagged(self):
        tickets = [
            {'id': 9, 'name': '[SS-1] A'},
            {'id': 3, 'name': '[SS-1] A (copia)'},
            {'id': 4, 'name': 'Sin etiqueta'},
            {'id': 5, 'name': '[SS-2] B'},
        ]

        groups = group_tickets_by_tag(tickets)

        self.assertEqual(set(groups), {'1', '2'})
        self.assertEqual([t['id'] for t in groups['1']], [3, 9])

    def test_lowest_id_is_kept(self):
        tickets = [{'id': i, 'name': '[SS-77] Falla'} for i in (12, 5, 30)]

        duplicates = find_duplicates(tickets)

        self.assertEqual([(ext, kept['id'], dup['id']) for ext, kept, dup in duplicates],
                         [('77', 5, 12), ('77', 5, 30)])


class TestPurgeDuplicates(unittest.TestCase):
    """Test purge against an in-memory GLPI."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.client = FakeGlpiClient()
        self.first = self.client.seed('Ticket', name='[SS-10] Impresora no imprime')
        self.client.seed('Ticket', name='[SS-11] Sin red')
        self.copy = self.client.seed('Ticket', name='[SS-10] Impresora no imprime')

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_dry_run_deletes_nothing(self):
        result = purge_duplicates(self.client, dry_run=True)

        self.assertEqual(result.found, 1)
        self.assertEqual(result.deleted, 0)
        self.assertEqual(len(self.client.all('Ticket')), 3)

    def test_purge_keeps_lowest_and_repoints_state(self):
        state_manager = StateManager(os.path.join(self.temp_dir, 'sync-state.json'))
        state_manager.save({"lastSync": None, "ticketMap": {'10': self.copy}, "rowValues": {}})

        result = purge_duplicates(self.client, state_manager=state_manager)

        self.assertEqual(result.deleted, 1)
        self.assertEqual(result.errors, [])
        remaining = [t['id'] for t in self.client.all('Ticket')]
        self.assertIn(self.first, remaining)
        self.assertNotIn(self.copy, remaining)
        self.assertEqual(state_manager.load()['ticketMap']['10'], self.first)

    def test_delete_errors_are_collected(self):
        def delete_item(itemtype, item_id, force_purge=True):
            raise GlpiError("ERROR_RIGHT_MISSING", status_code=403)

        self.client.delete_item = delete_item

        result = purge_duplicates(self.client)

        self.assertEqual(result.deleted, 0)
        self.assertEqual(result.errors[0][0], self.copy)

    def test_nothing_to_do(self):
        self.client.delete_item('Ticket', self.copy)

        result = purge_duplicates(self.client)

        self.assertEqual(result.found, 0)


if __name__ == '__main__':
    unittest.main()
