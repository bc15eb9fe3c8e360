"""
Smartsheet Client
Reads the source sheet and flattens rows into {column title: value} dicts
"""
import requests
import smartsheet
from smartsheet.exceptions import SmartsheetException

from glpi_bridge.logging.logger import get_logger


class SmartsheetError(Exception):
    """Fetching the sheet from Smartsheet failed."""


def cell_text(cell):
    """
    Return the text of a cell as shown in the sheet.

    Integral floats (1422.0) are rendered without the decimal part so that
    ticket numbers read from number columns match their display form.
    """
    value = getattr(cell, 'display_value', None)
    if value in (None, ''):
        value = getattr(cell, 'value', None)
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def flatten_row(row, column_titles):
    """
    Flatten an SDK row into a dict keyed by column title.

    Args:
        row: smartsheet Row object
        column_titles: {column_id: title}

    Returns:
        dict: {title: text} plus '_row_id'
    """
    flat = {title: '' for title in column_titles.values()}
    for cell in row.cells:
        title = column_titles.get(cell.column_id)
        if title is not None:
            flat[title] = cell_text(cell)
    flat['_row_id'] = row.id
    return flat


class SmartsheetClient:
    """Read-only access to one Smartsheet sheet."""

    def __init__(self, access_token, sheet_id, logger=None, client=None):
        """
        Initialize Smartsheet client.

        Args:
            access_token: Smartsheet API access token
            sheet_id: ID of the source sheet
            logger: Logger instance (optional)
            client: Pre-built smartsheet.Smartsheet instance (optional)
        """
        self.sheet_id = sheet_id
        self.logger = logger or get_logger('smartsheet_client')
        if client is None:
            client = smartsheet.Smartsheet(access_token)
            client.errors_as_exceptions(True)
        self.client = client

    @classmethod
    def from_settings(cls, settings, logger=None):
        """Build a client from a SmartsheetSettings instance."""
        return cls(settings.token, settings.sheet_id, logger=logger)

    def get_rows(self, modified_since=None):
        """
        Fetch the sheet's rows.

        Args:
            modified_since: datetime; only rows modified after it are returned

        Returns:
            list: Flattened row dicts

        Raises:
            SmartsheetError: If the SDK call fails
        """
        try:
            if modified_since is not None:
                sheet = self.client.Sheets.get_sheet(self.sheet_id, rows_modified_since=modified_since)
            else:
                sheet = self.client.Sheets.get_sheet(self.sheet_id)
        except (SmartsheetException, requests.RequestException) as e:
            raise SmartsheetError(f"Failed to fetch sheet {self.sheet_id}: {e}") from e

        column_titles = {column.id: column.title.strip() for column in sheet.columns}
        rows = [flatten_row(row, column_titles) for row in (sheet.rows or [])]
        self.logger.info(f"Fetched {len(rows)} row(s) from sheet {self.sheet_id}")
        return rows
