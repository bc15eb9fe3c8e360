"""
GLPI configuration and diagnostic tools (SMTP, cron, notification queue)
Usage: python admin_tools.py <command> [config.yaml]
"""
import sys

from glpi_bridge.cli import admin_main


if __name__ == "__main__":
    sys.exit(admin_main())
