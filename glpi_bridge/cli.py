"""
Command-line entry points

    glpi-import <kind> <file.xlsx> [config.yaml]
    glpi-import templates [directory]
    glpi-sync <migrate|sync|watch|fix-duplicates|check-duplicates> [config.yaml]
    glpi-admin <command> [config.yaml]

Positional arguments only. Missing arguments print the usage and exit 0;
a runtime failure prints "Error: <message>" on stderr and exits 1.
"""
import sys

from glpi_bridge.admin import config_tools
from glpi_bridge.clients.glpi_client import GlpiClient, glpi_session
from glpi_bridge.clients.smartsheet_client import SmartsheetClient
from glpi_bridge.config.loader import SmartsheetSettings, SyncSettings, load_config
from glpi_bridge.core.dedup import purge_duplicates
from glpi_bridge.core.importer import BulkImporter
from glpi_bridge.core.reconciler import Reconciler
from glpi_bridge.core.records import IMPORT_KINDS, get_kind, parse_records
from glpi_bridge.logging.logger import ROOT_LOGGER_NAME, setup_logger
from glpi_bridge.utils.spreadsheet import read_rows, write_all_templates
from glpi_bridge.utils.state_manager import StateManager


IMPORT_USAGE = """GLPI bulk importer

Usage:
  glpi-import <kind> <file.xlsx> [config.yaml]
  glpi-import templates [directory]

Kinds:
{kinds}

Example:
  glpi-import categorias plantillas/categorias.xlsx
"""

SYNC_USAGE = """Smartsheet -> GLPI ticket sync

Usage:
  glpi-sync <command> [config.yaml]

Commands:
  migrate            Process every row of the sheet
  sync               Process rows modified since the last sync
  watch              Sync now, then every sync.interval_minutes
  fix-duplicates     Purge duplicate [SS-<n>] tickets (keeps the lowest ID)
  check-duplicates   List duplicate tickets without deleting them
"""

ADMIN_USAGE = """GLPI configuration tools

Usage:
  glpi-admin <command> [config.yaml]

Commands:
  session         Show the active session (user, profile, entity)
  smtp            Apply the 'smtp' config section to GLPI
  cron            List mail/notification cron tasks and enable them
  trigger-cron    Call front/cron.php to run pending tasks
  queue           Show the notification queue
  clean-queue     Purge every queued notification
  notifications   Make sure the assigned technician is notified on assignment
  templates       Prefix ticket notification subjects with the ticket ID
"""


def _fail(message):
    print(f"Error: {message}", file=sys.stderr)
    return 1


def _args(argv):
    return list(sys.argv[1:] if argv is None else argv)


def _kinds_help():
    return '\n'.join(f"  {kind.name:<14} {kind.description}" for kind in IMPORT_KINDS.values())


# ===== glpi-import =====

def import_main(argv=None):
    args = _args(argv)
    if not args:
        print(IMPORT_USAGE.format(kinds=_kinds_help()))
        return 0

    if args[0].lower() == 'templates':
        directory = args[1] if len(args) > 1 else 'plantillas'
        try:
            paths = write_all_templates(directory, IMPORT_KINDS.values())
        except OSError as e:
            return _fail(e)
        for path in paths:
            print(f"  {path}")
        print(f"{len(paths)} templates written to {directory}")
        return 0

    if len(args) < 2:
        print(IMPORT_USAGE.format(kinds=_kinds_help()))
        return 0

    try:
        kind = get_kind(args[0])
    except KeyError as e:
        return _fail(e.args[0])

    file_path = args[1]
    config_path = args[2] if len(args) > 2 else None

    try:
        config = load_config(config_path, required=('glpi',))
        logger = setup_logger(ROOT_LOGGER_NAME, config)
        logger.info(f"=== Bulk import: {kind.name} -> {kind.itemtype} ===")

        rows = read_rows(file_path)
        logger.info(f"{len(rows)} row(s) read from {file_path}")
        # Reject the whole file before connecting
        parse_records(kind, rows)

        client = GlpiClient.from_config(config)
        with glpi_session(client):
            results = BulkImporter(client, kind).run(rows)

        report = (config.get('import') or {}).get('error_report')
        if report:
            results.save_report(report)
    except Exception as e:
        return _fail(e)
    return 0


# ===== glpi-sync =====

SYNC_COMMANDS = ('migrate', 'sync', 'watch', 'fix-duplicates', 'check-duplicates')


def sync_main(argv=None):
    args = _args(argv)
    if not args:
        print(SYNC_USAGE)
        return 0

    command = args[0].lower()
    if command not in SYNC_COMMANDS:
        return _fail(f"Unknown command '{args[0]}'. Available: {', '.join(SYNC_COMMANDS)}")
    config_path = args[1] if len(args) > 1 else None

    try:
        needs_sheet = command in ('migrate', 'sync', 'watch')
        required = ('glpi', 'smartsheet') if needs_sheet else ('glpi',)
        config = load_config(config_path, required=required)
        logger = setup_logger(ROOT_LOGGER_NAME, config)
        settings = SyncSettings.from_config(config)
        state_manager = StateManager(settings.state_file, lock_timeout=settings.lock_timeout_seconds)
        glpi = GlpiClient.from_config(config)

        if not needs_sheet:
            with glpi_session(glpi):
                result = purge_duplicates(glpi, state_manager=state_manager,
                                          dry_run=(command == 'check-duplicates'))
            logger.info(f"Duplicates: {result.found}, deleted: {result.deleted}, errors: {len(result.errors)}")
            return 0

        source = SmartsheetClient.from_settings(SmartsheetSettings.from_config(config))
        reconciler = Reconciler(glpi, source, state_manager, settings=settings)

        if command == 'watch':
            reconciler.run_forever(session=lambda: glpi_session(glpi))
            return 0

        with glpi_session(glpi):
            reconciler.tick(full=(command == 'migrate'))
    except KeyboardInterrupt:
        print("Stopped.")
        return 0
    except Exception as e:
        return _fail(e)
    return 0


# ===== glpi-admin =====

def _admin_session(client, logger):
    info = client.get_full_session().get('session', {})
    logger.info(f"User: {info.get('glpiname')} (ID {info.get('glpiID')})")
    logger.info(f"Active profile: {(info.get('glpiactiveprofile') or {}).get('name')}")
    logger.info(f"Active entity: {info.get('glpiactive_entity_name')}")


def _admin_smtp(client, config, logger):
    updated = config_tools.ensure_smtp_config(client, config.get('smtp') or {})
    logger.info(f"SMTP: {len(updated)} setting(s) updated")


def _admin_cron(client, config, logger):
    tasks = config_tools.list_cron_tasks(client)
    for task in tasks:
        state = 'active' if task.get('state') == config_tools.CRON_ACTIVE else 'disabled'
        logger.info(f"  [{task['id']}] {task.get('name')}: {state}")
    enabled = config_tools.enable_cron_tasks(client, tasks)
    logger.info(f"{len(enabled)} task(s) enabled")


def _admin_queue(client, config, logger):
    status = config_tools.queue_status(client)
    logger.info(f"Pending notifications: {status['pending']}")
    for item in status['sample']:
        logger.info(f"  #{item.get('id')} {item.get('name', '')} -> {item.get('recipient', '')}")


def _admin_clean_queue(client, config, logger):
    deleted, errors = config_tools.clean_queue(client)
    logger.info(f"{deleted} queued notification(s) deleted, {len(errors)} could not be deleted")
    for item_id, message in errors:
        logger.error(f"  #{item_id}: {message}")


def _admin_notifications(client, config, logger):
    target_id, created = config_tools.ensure_notification_target(client)
    logger.info(f"Notification target {target_id} {'created' if created else 'already present'}")


def _admin_templates(client, config, logger):
    prefix = (config.get('notifications') or {}).get('subject_prefix', config_tools.DEFAULT_SUBJECT_PREFIX)
    updated = config_tools.update_template_subjects(client, prefix=prefix)
    logger.info(f"{len(updated)} template subject(s) prefixed with '{prefix}'")


ADMIN_COMMANDS = {
    'session': lambda client, config, logger: _admin_session(client, logger),
    'smtp': _admin_smtp,
    'cron': _admin_cron,
    'queue': _admin_queue,
    'clean-queue': _admin_clean_queue,
    'notifications': _admin_notifications,
    'templates': _admin_templates,
}


def admin_main(argv=None):
    args = _args(argv)
    if not args:
        print(ADMIN_USAGE)
        return 0

    command = args[0].lower()
    if command not in ADMIN_COMMANDS and command != 'trigger-cron':
        available = sorted(list(ADMIN_COMMANDS) + ['trigger-cron'])
        return _fail(f"Unknown command '{args[0]}'. Available: {', '.join(available)}")
    config_path = args[1] if len(args) > 1 else None

    try:
        config = load_config(config_path, required=('glpi',))
        logger = setup_logger(ROOT_LOGGER_NAME, config)
        client = GlpiClient.from_config(config)

        if command == 'trigger-cron':
            status = config_tools.trigger_cron(client.url, verify_ssl=client.verify_ssl)
            logger.info(f"cron.php answered HTTP {status}")
            return 0

        with glpi_session(client):
            ADMIN_COMMANDS[command](client, config, logger)
    except Exception as e:
        return _fail(e)
    return 0
