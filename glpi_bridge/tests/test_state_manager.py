"""
Unit tests for glpi_bridge.utils.state_manager module
Tests sync state persistence, merge-on-save and the run lock
"""
import unittest
import json
import os
import sys
import shutil
import tempfile
import time

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../..')))

from glpi_bridge.utils.state_manager import StateManager, SyncLockedError, load_state, save_state


class TestStateManager(unittest.TestCase):
    """Test state management functionality."""

    def setUp(self):
        """Create temporary state file for testing."""
        self.temp_dir = tempfile.mkdtemp()
        self.state_file = os.path.join(self.temp_dir, 'sync-state.json')
        self.manager = StateManager(self.state_file)

    def tearDown(self):
        """Clean up temporary files."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_load_empty_state(self):
        """Test loading state when file doesn't exist."""
        state = self.manager.load()

        self.assertIsNone(state['lastSync'])
        self.assertEqual(state['ticketMap'], {})
        self.assertEqual(state['rowValues'], {})

    def test_save_and_load_state(self):
        """Test saving and loading state."""
        self.manager.save({
            "lastSync": "2024-03-01T10:00:00+00:00",
            "ticketMap": {"1422": 35},
            "rowValues": {"1422": {"Estado": "1 - Nuevo"}},
        })

        state = self.manager.load()

        self.assertEqual(state['lastSync'], "2024-03-01T10:00:00+00:00")
        self.assertEqual(state['ticketMap'], {"1422": 35})
        self.assertEqual(state['rowValues']['1422']['Estado'], "1 - Nuevo")

    def test_state_file_format(self):
        """Test that state file is valid JSON with the expected keys."""
        self.manager.save({"lastSync": None, "ticketMap": {"7": 2}, "rowValues": {}})

        with open(self.state_file, 'r', encoding='utf-8') as f:
            data = json.load(f)

        self.assertEqual(set(data), {'lastSync', 'ticketMap', 'rowValues'})
        self.assertFalse(os.path.exists(self.state_file + '.tmp'))

    def test_ids_are_normalized_on_load(self):
        """Numeric keys and string IDs written by hand are accepted."""
        with open(self.state_file, 'w', encoding='utf-8') as f:
            json.dump({"ticketMap": {"1422": "35"}}, f)

        state = self.manager.load()

        self.assertEqual(state['ticketMap'], {"1422": 35})
        self.assertEqual(state['rowValues'], {})

    def test_save_merges_entries_from_other_process(self):
        """Entries saved by another process since our load are kept."""
        ours = self.manager.load()
        other = StateManager(self.state_file)
        other.save({"lastSync": None, "ticketMap": {"1500": 9}, "rowValues": {"1500": {}}})

        ours['ticketMap']['1422'] = 8
        merged = self.manager.save(ours)

        self.assertEqual(merged['ticketMap'], {"1422": 8, "1500": 9})
        self.assertEqual(self.manager.load()['ticketMap'], {"1422": 8, "1500": 9})

    def test_our_entries_win_on_conflict(self):
        StateManager(self.state_file).save({"ticketMap": {"1422": 99}})

        self.manager.save({"lastSync": "2024-03-02T00:00:00+00:00", "ticketMap": {"1422": 8}, "rowValues": {}})

        state = self.manager.load()
        self.assertEqual(state['ticketMap']['1422'], 8)
        self.assertEqual(state['lastSync'], "2024-03-02T00:00:00+00:00")

    def test_reset_state(self):
        """Test resetting state to defaults."""
        self.manager.save({"lastSync": "x", "ticketMap": {"1": 1}, "rowValues": {}})

        self.manager.reset()

        state = self.manager.load()
        self.assertIsNone(state['lastSync'])
        self.assertEqual(state['ticketMap'], {})

    def test_delete_state(self):
        """Test deleting state file."""
        self.manager.save({"ticketMap": {"1": 1}})
        self.assertTrue(os.path.exists(self.state_file))

        self.manager.delete()

        self.assertFalse(os.path.exists(self.state_file))

    def test_convenience_functions(self):
        save_state(self.state_file, {"ticketMap": {"3": 4}})

        self.assertEqual(load_state(self.state_file)['ticketMap'], {"3": 4})


class TestStateLock(unittest.TestCase):
    """Test the run lock."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.state_file = os.path.join(self.temp_dir, 'sync-state.json')

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_lock_is_released(self):
        manager = StateManager(self.state_file)

        with manager.lock():
            self.assertTrue(os.path.exists(manager.lock_file))

        self.assertFalse(os.path.exists(manager.lock_file))

    def test_lock_released_on_error(self):
        manager = StateManager(self.state_file)

        with self.assertRaises(RuntimeError):
            with manager.lock():
                raise RuntimeError("boom")

        self.assertFalse(os.path.exists(manager.lock_file))

    def test_second_holder_is_rejected(self):
        first = StateManager(self.state_file)
        second = StateManager(self.state_file)

        with first.lock():
            with self.assertRaises(SyncLockedError):
                with second.lock():
                    pass

    def test_stale_lock_is_taken_over(self):
        manager = StateManager(self.state_file, lock_timeout=60)
        with open(manager.lock_file, 'w') as f:
            f.write("12345 0\n")
        old = time.time() - 3600
        os.utime(manager.lock_file, (old, old))

        with manager.lock():
            with open(manager.lock_file) as f:
                self.assertEqual(f.read().split()[0], str(os.getpid()))

    def test_release_keeps_lock_taken_over_by_another_run(self):
        first = StateManager(self.state_file, lock_timeout=60)
        second = StateManager(self.state_file, lock_timeout=60)
        old = time.time() - 3600

        first_lock = first.lock()
        first_lock.__enter__()
        os.utime(first.lock_file, (old, old))
        second._acquire()
        first_lock.__exit__(None, None, None)

        self.assertTrue(os.path.exists(second.lock_file))
        with open(second.lock_file) as f:
            self.assertEqual(f.read().strip(), second._lock_token)

        second._release()
        self.assertFalse(os.path.exists(second.lock_file))


if __name__ == '__main__':
    unittest.main()
