"""
Writes one .xlsx import template per import kind
Usage: python generate_templates.py [directory]
"""
import sys

from glpi_bridge.cli import import_main


if __name__ == "__main__":
    sys.exit(import_main(['templates'] + sys.argv[1:]))
