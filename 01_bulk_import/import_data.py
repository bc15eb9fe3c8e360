"""
Bulk import of spreadsheet rows into GLPI
Usage: python import_data.py <kind> <file.xlsx> [config.yaml]
"""
import sys

from glpi_bridge.cli import import_main


if __name__ == "__main__":
    sys.exit(import_main())
