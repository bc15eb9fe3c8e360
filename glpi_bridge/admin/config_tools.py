"""
GLPI configuration and diagnostic operations
SMTP settings, cron tasks, the notification queue, notification targets
and notification template subjects, all through the generic REST client
"""
import requests

from glpi_bridge.clients.glpi_client import GlpiError, error_message
from glpi_bridge.logging.logger import get_logger


logger = get_logger('admin')

MAIL_CRON_KEYWORDS = ('mail', 'notification', 'queue')
CRON_ACTIVE = 1

# Notification "New user in assignees" and the "Technician in charge" recipient
ASSIGN_USER_NOTIFICATION_ID = 63
TARGET_TYPE_USER = 1
TARGET_ASSIGNED_TECHNICIAN = 3

DEFAULT_SUBJECT_PREFIX = '[GLPI ##ticket.id##]'


# ===== Config entries =====

def get_config_values(client, names=None):
    """
    Read GLPI Config entries.

    Args:
        client: GlpiClient with an open session
        names: Only return these entry names (optional)

    Returns:
        dict: {name: {'id': int, 'value': str}}
    """
    entries = client.get_all_items('Config', page_size=500)
    wanted = set(names) if names else None
    values = {}
    for entry in entries:
        name = entry.get('name')
        if not name or (wanted is not None and name not in wanted):
            continue
        values[name] = {"id": entry.get('id'), "value": entry.get('value')}
    return values


def ensure_config_values(client, desired, always=()):
    """
    Update Config entries whose value differs from `desired`.

    Args:
        client: GlpiClient
        desired: {name: value}
        always: Names rewritten even when they look equal (e.g. encrypted passwords)

    Returns:
        list: Names that were updated
    """
    current = get_config_values(client, desired.keys())
    updated = []
    for name, value in desired.items():
        if value is None:
            continue
        entry = current.get(name)
        if entry is None:
            logger.warning(f"Config entry '{name}' not found, skipped")
            continue
        if name not in always and str(entry['value']) == str(value):
            logger.info(f"  {name}: OK")
            continue
        client.update_item('Config', entry['id'], {"value": value})
        logger.info(f"  {name}: updated")
        updated.append(name)
    return updated


def ensure_smtp_config(client, smtp):
    """
    Make GLPI send mail through the configured SMTP server.

    Args:
        client: GlpiClient
        smtp: dict with host, port, username, password (optional), mode (default '1' = SMTP+TLS)

    Returns:
        list: Names of the Config entries that were updated
    """
    if not smtp or not smtp.get('host'):
        raise ValueError("SMTP settings require at least 'host'")
    desired = {
        "smtp_mode": str(smtp.get('mode', '1')),
        "smtp_host": smtp['host'],
        "smtp_port": str(smtp.get('port', 587)),
        "smtp_username": smtp.get('username'),
        "smtp_passwd": smtp.get('password'),
        "use_notifications": "1",
        "notifications_mailing": "1",
    }
    if smtp.get('from_email'):
        desired["from_email"] = smtp['from_email']
    if smtp.get('from_name'):
        desired["from_email_name"] = smtp['from_name']
    # The stored password is encrypted, so it can never be compared
    return ensure_config_values(client, desired, always=("smtp_passwd",))


# ===== Cron tasks =====

def list_cron_tasks(client, keywords=MAIL_CRON_KEYWORDS):
    """
    Cron tasks whose name contains one of the keywords (all tasks if empty).

    Returns:
        list: CronTask dicts
    """
    tasks = client.get_all_items('CronTask', page_size=200)
    if not keywords:
        return tasks
    lowered = [keyword.lower() for keyword in keywords]
    return [t for t in tasks if any(k in str(t.get('name', '')).lower() for k in lowered)]


def enable_cron_tasks(client, tasks):
    """
    Activate the given cron tasks.

    Returns:
        list: IDs of tasks that were switched on
    """
    enabled = []
    for task in tasks:
        if task.get('state') == CRON_ACTIVE:
            continue
        client.update_item('CronTask', task['id'], {"state": CRON_ACTIVE})
        logger.info(f"  Cron task {task.get('name')} ({task['id']}) enabled")
        enabled.append(task['id'])
    return enabled


def web_root(api_url):
    """https://glpi.example.com/apirest.php -> https://glpi.example.com"""
    url = api_url.rstrip('/')
    for suffix in ('/apirest.php', '/api.php/v1', '/api.php'):
        if url.endswith(suffix):
            return url[:-len(suffix)]
    return url


def trigger_cron(api_url, timeout=30, verify_ssl=True):
    """
    Ask GLPI to run its pending cron tasks through front/cron.php.

    Args:
        api_url: GLPI API URL (the web root is derived from it)
        timeout: Request timeout in seconds

    Returns:
        int: HTTP status code

    Raises:
        GlpiError: If the request fails
    """
    cron_url = f"{web_root(api_url)}/front/cron.php"
    logger.info(f"Triggering cron: {cron_url}")
    try:
        response = requests.get(cron_url, timeout=timeout, verify=verify_ssl)
        response.raise_for_status()
    except requests.RequestException as e:
        raise GlpiError(f"Cron trigger failed: {error_message(e)}") from e
    return response.status_code


# ===== Notification queue =====

def queue_status(client, sample=5):
    """
    Summarize the notification queue.

    Returns:
        dict: {'pending': int, 'sample': [latest queued notifications]}
    """
    queued = client.get_all_items('QueuedNotification', page_size=200)
    latest = sorted(queued, key=lambda item: int(item.get('id', 0)), reverse=True)[:sample]
    return {"pending": len(queued), "sample": latest}


def clean_queue(client, page_size=100):
    """
    Purge every queued notification.

    Returns:
        tuple: (deleted count, list of (id, message) errors)
    """
    deleted = 0
    errors = []
    failed_ids = set()
    while True:
        try:
            page = client.get_items('QueuedNotification', range_=(0, len(failed_ids) + page_size - 1))
        except GlpiError as e:
            # GLPI answers 400 once the range exceeds the remaining items
            if e.status_code == 400:
                break
            raise
        candidates = [item for item in page if item['id'] not in failed_ids]
        if not candidates:
            break
        for item in candidates:
            try:
                client.delete_item('QueuedNotification', item['id'], force_purge=True)
                deleted += 1
            except GlpiError as e:
                failed_ids.add(item['id'])
                errors.append((item['id'], str(e)))
    logger.info(f"Queue cleaned: {deleted} deleted, {len(errors)} errors")
    return deleted, errors


# ===== Notifications =====

def ensure_notification_target(client, notification_id=ASSIGN_USER_NOTIFICATION_ID,
                               items_id=TARGET_ASSIGNED_TECHNICIAN, target_type=TARGET_TYPE_USER):
    """
    Make sure a notification is active and has the given recipient.

    Returns:
        tuple: (target id, created flag)
    """
    targets = client.get_all_items('NotificationTarget', page_size=500)
    for target in targets:
        if (target.get('notifications_id') == notification_id and target.get('type') == target_type
                and target.get('items_id') == items_id):
            existing_id, created = target['id'], False
            break
    else:
        existing_id = client.add_item('NotificationTarget', {
            "notifications_id": notification_id,
            "type": target_type,
            "items_id": items_id,
        })
        created = True
        logger.info(f"Recipient added to notification {notification_id} (target {existing_id})")

    notification = client.get_item('Notification', notification_id)
    if notification and notification.get('is_active') != 1:
        client.update_item('Notification', notification_id, {"is_active": 1})
        logger.info(f"Notification {notification_id} activated")
    return existing_id, created


def update_template_subjects(client, prefix=DEFAULT_SUBJECT_PREFIX):
    """
    Prefix ticket notification subjects so replies can be matched to tickets.

    Translations whose subject is not about a ticket, or already carries
    the ticket ID, are left alone.

    Returns:
        list: IDs of updated NotificationTemplateTranslation items
    """
    updated = []
    for translation in client.get_all_items('NotificationTemplateTranslation', page_size=200):
        subject = translation.get('subject') or ''
        if '##ticket.' not in subject or '##ticket.id##' in subject or subject.startswith(prefix):
            continue
        client.update_item('NotificationTemplateTranslation', translation['id'],
                           {"subject": f"{prefix} {subject}"})
        updated.append(translation['id'])
    logger.info(f"{len(updated)} template subject(s) updated")
    return updated
