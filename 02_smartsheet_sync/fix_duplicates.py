"""
Finds tickets sharing the same [SS-<n>] tag and purges all but the lowest ID
Usage: python fix_duplicates.py [config.yaml]
"""
import sys

from glpi_bridge.cli import sync_main


if __name__ == "__main__":
    sys.exit(sync_main(['fix-duplicates'] + sys.argv[1:]))
