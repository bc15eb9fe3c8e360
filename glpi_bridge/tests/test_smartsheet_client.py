"""
Unit tests for glpi_bridge.clients.smartsheet_client module
The SDK client is replaced by a mock returning SimpleNamespace sheets
"""
import unittest
import os
import sys
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../..')))

from smartsheet.exceptions import SmartsheetException

from glpi_bridge.clients.smartsheet_client import SmartsheetClient, SmartsheetError, cell_text, flatten_row


def make_sheet():
    columns = [
        SimpleNamespace(id=101, title='No.Ticket'),
        SimpleNamespace(id=102, title='Problema '),
        SimpleNamespace(id=103, title='Estado'),
    ]
    rows = [
        SimpleNamespace(id=1, cells=[
            SimpleNamespace(column_id=101, value=1422.0, display_value=None),
            SimpleNamespace(column_id=102, value='Impresora no imprime', display_value='Impresora no imprime'),
        ]),
        SimpleNamespace(id=2, cells=[
            SimpleNamespace(column_id=101, value=1500.0, display_value='1500'),
            SimpleNamespace(column_id=103, value='6 - Cerrado', display_value=None),
            SimpleNamespace(column_id=999, value='ignored', display_value=None),
        ]),
    ]
    return SimpleNamespace(columns=columns, rows=rows)


class TestCellHelpers(unittest.TestCase):

    def test_cell_text(self):
        self.assertEqual(cell_text(SimpleNamespace(value=1422.0, display_value=None)), '1422')
        self.assertEqual(cell_text(SimpleNamespace(value=2.5, display_value='')), '2.5')
        self.assertEqual(cell_text(SimpleNamespace(value='x', display_value='X ')), 'X')
        self.assertEqual(cell_text(SimpleNamespace(value=None, display_value=None)), '')

    def test_flatten_row_fills_missing_columns(self):
        sheet = make_sheet()
        titles = {c.id: c.title.strip() for c in sheet.columns}

        row = flatten_row(sheet.rows[0], titles)

        self.assertEqual(row, {'No.Ticket': '1422', 'Problema': 'Impresora no imprime', 'Estado': '', '_row_id': 1})


class TestSmartsheetClient(unittest.TestCase):
    """Test sheet fetching through an injected SDK client."""

    def setUp(self):
        self.sdk = MagicMock()
        self.sdk.Sheets.get_sheet.return_value = make_sheet()
        self.client = SmartsheetClient('token', '123', client=self.sdk)

    def test_full_fetch(self):
        rows = self.client.get_rows()

        self.sdk.Sheets.get_sheet.assert_called_once_with('123')
        self.assertEqual([r['No.Ticket'] for r in rows], ['1422', '1500'])
        self.assertEqual(rows[1]['Estado'], '6 - Cerrado')

    def test_incremental_fetch(self):
        since = datetime(2024, 3, 1, tzinfo=timezone.utc)

        self.client.get_rows(modified_since=since)

        self.sdk.Sheets.get_sheet.assert_called_once_with('123', rows_modified_since=since)

    def test_sdk_error_is_wrapped(self):
        self.sdk.Sheets.get_sheet.side_effect = SmartsheetException("Not Found")

        with self.assertRaises(SmartsheetError):
            self.client.get_rows()

    def test_empty_sheet(self):
        self.sdk.Sheets.get_sheet.return_value = SimpleNamespace(columns=[], rows=None)

        self.assertEqual(self.client.get_rows(), [])


if __name__ == '__main__':
    unittest.main()
