"""
Duplicate ticket detection and purge
Groups tickets by their [SS-<id>] title tag and keeps the lowest ID of each group
"""
from dataclasses import dataclass, field

from glpi_bridge.clients.glpi_client import GlpiError
from glpi_bridge.core.reconciler import extract_external_id
from glpi_bridge.logging.logger import get_logger


@dataclass
class PurgeResult:
    found: int = 0
    deleted: int = 0
    errors: list = field(default_factory=list)  # (ticket id, message)
    duplicates: list = field(default_factory=list)


def group_tickets_by_tag(tickets):
    """
    Group tickets by external ID.

    Args:
        tickets: Ticket dicts with 'id' and 'name'

    Returns:
        dict: {external id: [tickets sorted by ID]}; untagged tickets are left out
    """
    groups = {}
    for ticket in tickets:
        external_id = extract_external_id(ticket.get('name'))
        if external_id:
            groups.setdefault(external_id, []).append(ticket)
    for group in groups.values():
        group.sort(key=lambda t: int(t['id']))
    return groups


def find_duplicates(tickets):
    """
    List the tickets to delete.

    Returns:
        list: (external id, kept ticket, duplicate ticket) tuples
    """
    duplicates = []
    for external_id, group in sorted(group_tickets_by_tag(tickets).items()):
        for ticket in group[1:]:
            duplicates.append((external_id, group[0], ticket))
    return duplicates


def purge_duplicates(client, state_manager=None, dry_run=False, logger=None):
    """
    Delete every duplicate ticket (force purge) and repoint the state map.

    Args:
        client: GlpiClient with an open session
        state_manager: StateManager whose ticketMap is corrected (optional)
        dry_run: Only report what would be deleted
        logger: Logger instance (optional)

    Returns:
        PurgeResult
    """
    logger = logger or get_logger('dedup')
    tickets = client.get_all_items('Ticket', page_size=500)
    logger.info(f"{len(tickets)} tickets fetched")

    duplicates = find_duplicates(tickets)
    result = PurgeResult(found=len(duplicates), duplicates=duplicates)
    if not duplicates:
        logger.info("No duplicate tickets found")
        return result

    logger.warning(f"{len(duplicates)} duplicate ticket(s) found")
    for external_id, kept, duplicate in duplicates:
        logger.info(f"  [SS-{external_id}]: keeping #{kept['id']}, duplicate #{duplicate['id']}")
        if dry_run:
            continue
        try:
            client.delete_item('Ticket', duplicate['id'], force_purge=True)
            result.deleted += 1
        except GlpiError as e:
            logger.error(f"  Could not delete ticket #{duplicate['id']}: {e}")
            result.errors.append((duplicate['id'], str(e)))

    if state_manager is not None and not dry_run:
        with state_manager.lock():
            state = state_manager.load()
            for external_id, kept, _ in duplicates:
                state['ticketMap'][external_id] = int(kept['id'])
            state_manager.save(state)

    logger.info(f"Deleted: {result.deleted}, errors: {len(result.errors)}")
    return result
