"""
Smartsheet -> GLPI ticket synchronization service
Usage: python sync_service.py <migrate|sync|watch> [config.yaml]
"""
import sys

from glpi_bridge.cli import sync_main


if __name__ == "__main__":
    sys.exit(sync_main())
