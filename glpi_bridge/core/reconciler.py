"""
Smartsheet -> GLPI ticket reconciler

Each sheet row carries a ticket number (the external ID). The matching GLPI
ticket is tagged with "[SS-<external id>]" at the start of its title.
A tick fetches the rows, finds each row's ticket (state map first, then a
title search on the tag), creates the missing ones and patches only the
fields whose source columns changed since the previous tick.

At most one ticket per external ID:
- a lock file around each tick keeps two runs from working at the same time
- after every create the tag is searched again; if another run created the
  same ticket, every copy but the lowest ID is purged
- the state file is re-read and merged before each write
"""
import html
import re
import time
from contextlib import nullcontext
from dataclasses import dataclass, field

from glpi_bridge.clients.glpi_client import GlpiError
from glpi_bridge.config.loader import SyncSettings
from glpi_bridge.core.mappings import ACTOR_ASSIGNED, ACTOR_REQUESTER, map_status, map_urgency
from glpi_bridge.core.resolver import NameResolver
from glpi_bridge.logging.logger import get_logger
from glpi_bridge.utils.dates import lookback_start, to_glpi_datetime, utc_now_iso
from glpi_bridge.utils.state_manager import SyncLockedError


# Source sheet columns
COL_PROBLEM = 'Problema'
COL_STATUS_DETAIL = 'Estado'
COL_STATUS = 'Estado del Ticket'
COL_CATEGORY = 'Modulo'
COL_TECHNICIAN = 'Técnico asignado'
COL_URGENCY = 'Urgencia'
COL_AREA = 'Área'
COL_REQUESTER_EMAIL = 'Correo electrónico'
COL_LOCATION = 'Unidad Operativa'
COL_RESOLUTION = 'Comentarios / Acciónes de resolución'
COL_REQUEST_DATE = 'Fecha de solicitud'

# Columns whose values are remembered between ticks to detect changes
TRACKED_COLUMNS = (
    COL_PROBLEM,
    COL_STATUS_DETAIL,
    COL_STATUS,
    COL_CATEGORY,
    COL_URGENCY,
    COL_LOCATION,
    COL_RESOLUTION,
)

TITLE_LENGTH = 100
TAG_PREFIX = 'SS-'
_TAG_RE = re.compile(r'\[SS-([^\]\s]+)\]')

TICKET_TYPE_INCIDENT = 1


def normalize_external_id(value):
    """'1422', ' 1422 ' and '1422.0' all become '1422'."""
    text = str(value or '').strip()
    if text.endswith('.0') and text[:-2].isdigit():
        text = text[:-2]
    return text


def build_tag(external_id):
    """
    Examples:
        >>> build_tag("1422")
        "[SS-1422]"
    """
    return f"[{TAG_PREFIX}{external_id}]"


def extract_external_id(title):
    """
    Parse the external ID back out of a ticket title.

    Examples:
        >>> extract_external_id("[SS-1422] Impresora no imprime")
        "1422"

        >>> extract_external_id("Impresora no imprime")
        None
    """
    match = _TAG_RE.search(str(title or ''))
    return match.group(1) if match else None


def build_title(external_id, problem):
    problem = ' '.join(str(problem or '').split()) or 'Sin descripción'
    return f"{build_tag(external_id)} {problem[:TITLE_LENGTH]}"


def build_content(external_id, row):
    """HTML description of a new ticket."""
    def value(column):
        return html.escape(row.get(column) or 'N/A')

    return (
        f"<p><strong>Ticket Smartsheet #{html.escape(external_id)}</strong></p>"
        f"<p><strong>Problema:</strong><br>{value(COL_PROBLEM)}</p>"
        f"<p><strong>Unidad Operativa:</strong> {value(COL_LOCATION)}</p>"
        f"<p><strong>Área:</strong> {value(COL_AREA)}</p>"
        f"<p><strong>Solicitante:</strong> {value(COL_REQUESTER_EMAIL)}</p>"
    )


def build_followup(comment):
    return (
        "<p><strong>Resolución (Smartsheet):</strong></p>"
        f"<p>{html.escape(comment)}</p>"
    )


def tracked_values(row):
    return {column: str(row.get(column) or '').strip() for column in TRACKED_COLUMNS}


@dataclass
class SyncResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: list = field(default_factory=list)  # (external id, message)

    def summary(self):
        return (f"created={self.created} updated={self.updated} unchanged={self.unchanged} "
                f"skipped={self.skipped} errors={len(self.errors)}")


class Reconciler:
    """
    One-way Smartsheet -> GLPI ticket synchronization.

    Args:
        glpi: GlpiClient with an open session
        source: SmartsheetClient (anything with get_rows(modified_since=None))
        state_manager: StateManager for the sync state file
        settings: SyncSettings (defaults when omitted)
        resolver: NameResolver shared across ticks (optional)
        logger: Logger instance (optional)
    """

    def __init__(self, glpi, source, state_manager, settings=None, resolver=None, logger=None):
        self.glpi = glpi
        self.source = source
        self.state_manager = state_manager
        self.settings = settings or SyncSettings()
        self.logger = logger or get_logger('reconciler')
        self.resolver = resolver or NameResolver(glpi, logger=self.logger)

    # ===== Tick =====

    def tick(self, full=False):
        """
        Run one synchronization pass.

        Args:
            full: Process every row of the sheet instead of the rows
                  modified since the last sync

        Returns:
            SyncResult

        Raises:
            SyncLockedError: If another run holds the state lock
            SmartsheetError: If the sheet cannot be fetched
        """
        with self.state_manager.lock():
            started = utc_now_iso()
            state = self.state_manager.load()

            since = None if full else lookback_start(state.get('lastSync'))
            if since is not None:
                self.logger.info(f"Fetching rows modified since {since.isoformat()}")
            rows = self.source.get_rows(modified_since=since)

            result = SyncResult()
            for row in rows:
                external_id = normalize_external_id(row.get(self.settings.external_id_column))
                if not external_id:
                    result.skipped += 1
                    continue
                try:
                    self._reconcile_row(external_id, row, state, result)
                except Exception as e:
                    self.logger.error(f"Ticket #{external_id}: {e}")
                    result.errors.append((external_id, str(e)))

            state['lastSync'] = started
            self.state_manager.save(state)

        self.logger.info(f"Sync finished: {result.summary()}")
        return result

    def run_forever(self, interval_minutes=None, max_ticks=None, sleep=time.sleep, full=False, session=None):
        """
        Tick immediately, then once per interval. A failed tick is logged
        and the loop goes on.

        Args:
            interval_minutes: Minutes between ticks (settings value when None)
            max_ticks: Stop after this many ticks (None runs until interrupted)
            sleep: Sleep function (injectable for tests)
            full: Process every row on each tick
            session: Callable returning a context manager entered around
                     each tick (e.g. a fresh GLPI session)

        Returns:
            int: Number of ticks attempted
        """
        interval = interval_minutes or self.settings.interval_minutes
        self.logger.info(f"Continuous sync every {interval} minute(s)")
        ticks = 0
        while max_ticks is None or ticks < max_ticks:
            try:
                with (session() if session else nullcontext()):
                    self.tick(full=full)
            except SyncLockedError as e:
                self.logger.warning(f"Tick skipped: {e}")
            except Exception as e:
                self.logger.error(f"Tick failed: {e}")
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            sleep(interval * 60)
        return ticks

    # ===== Lookup =====

    def find_ticket(self, external_id, state):
        """
        Find the ticket of an external ID: state map first, then title search.

        Returns:
            int: Ticket ID or None
        """
        mapped = state['ticketMap'].get(external_id)
        if mapped:
            return int(mapped)
        matches = self._tagged_tickets(external_id)
        if matches:
            self.logger.debug(f"Ticket #{external_id} found by title search: {matches[0]['id']}")
            return matches[0]['id']
        return None

    def _tagged_tickets(self, external_id):
        """Tickets whose title carries exactly this external ID's tag, lowest ID first."""
        candidates = self.glpi.find_tickets_by_title(build_tag(external_id))
        matches = [t for t in candidates if extract_external_id(t['name']) == external_id]
        return sorted(matches, key=lambda t: t['id'])

    # ===== Row handling =====

    def _reconcile_row(self, external_id, row, state, result):
        snapshot = tracked_values(row)
        ticket_id = self.find_ticket(external_id, state)

        if ticket_id is None:
            created_id = self._create_ticket(external_id, row)
            ticket_id = self._converge(external_id, created_id)
            self._attach_people(external_id, row, ticket_id)
            if ticket_id == created_id:
                self._attach_followup(external_id, row, ticket_id)
            state['ticketMap'][external_id] = ticket_id
            state['rowValues'][external_id] = snapshot
            self.state_manager.save(state)
            result.created += 1
            return

        state['ticketMap'][external_id] = ticket_id
        previous = state['rowValues'].get(external_id)
        state['rowValues'][external_id] = snapshot
        if previous is None:
            # First sighting of an existing ticket: remember, do not patch
            result.unchanged += 1
            return

        changed = {column for column in TRACKED_COLUMNS if previous.get(column, '') != snapshot[column]}
        if not changed:
            result.unchanged += 1
            return

        fields = self._changed_fields(external_id, row, changed)
        if fields:
            self.glpi.update_ticket(ticket_id, **fields)

        added_followup = False
        comment = snapshot[COL_RESOLUTION]
        if COL_RESOLUTION in changed and comment:
            self.glpi.add_ticket_followup(ticket_id, build_followup(comment))
            added_followup = True

        if fields or added_followup:
            self.logger.info(f"Ticket #{external_id} -> GLPI {ticket_id}: updated {', '.join(sorted(changed))}")
            result.updated += 1
        else:
            result.unchanged += 1

    def _changed_fields(self, external_id, row, changed):
        fields = {}
        if COL_STATUS_DETAIL in changed or COL_STATUS in changed:
            fields['status'] = map_status(row.get(COL_STATUS_DETAIL), row.get(COL_STATUS))
        if COL_URGENCY in changed:
            fields['urgency'] = map_urgency(row.get(COL_URGENCY))
        if COL_CATEGORY in changed:
            category = self._resolve_category(row)
            if category:
                fields['itilcategories_id'] = category.id
        if COL_LOCATION in changed:
            location = self.resolver.resolve('Location', row.get(COL_LOCATION))
            if location:
                fields['locations_id'] = location.id
        if COL_PROBLEM in changed:
            fields['name'] = build_title(external_id, row.get(COL_PROBLEM))
        return fields

    def _resolve_category(self, row):
        return self.resolver.resolve('ITILCategory', row.get(COL_CATEGORY),
                                     extra_fields={"is_incident": 1, "is_request": 1})

    def _create_ticket(self, external_id, row):
        fields = {
            "status": map_status(row.get(COL_STATUS_DETAIL), row.get(COL_STATUS)),
            "urgency": map_urgency(row.get(COL_URGENCY)),
            "type": TICKET_TYPE_INCIDENT,
        }
        request_date = to_glpi_datetime(row.get(COL_REQUEST_DATE))
        if request_date:
            fields['date'] = request_date

        category = self._resolve_category(row)
        if category:
            fields['itilcategories_id'] = category.id
        location = self.resolver.resolve('Location', row.get(COL_LOCATION))
        if location:
            fields['locations_id'] = location.id
        group = self.resolver.resolve('Group', row.get(COL_AREA), extra_fields={"is_assign": 1, "is_requester": 1})
        if group:
            fields['_groups_id_requester'] = group.id

        return self.glpi.create_ticket(build_title(external_id, row.get(COL_PROBLEM)),
                                       build_content(external_id, row), **fields)

    # Actors and follow-up are best effort: the ticket exists and must be recorded
    def _attach_people(self, external_id, row, ticket_id):
        requester = self.resolver.resolve_requester(row.get(COL_REQUESTER_EMAIL))
        if requester:
            self._best_effort(f"requester of #{external_id}",
                              self.glpi.add_ticket_actor, ticket_id, requester.id, ACTOR_REQUESTER)
        technician = self.resolver.resolve_user(row.get(COL_TECHNICIAN))
        if technician:
            self._best_effort(f"technician of #{external_id}",
                              self.glpi.add_ticket_actor, ticket_id, technician.id, ACTOR_ASSIGNED)
        elif row.get(COL_TECHNICIAN):
            self.logger.warning(f"Ticket #{external_id}: technician '{row.get(COL_TECHNICIAN)}' not found")

    def _attach_followup(self, external_id, row, ticket_id):
        comment = (row.get(COL_RESOLUTION) or '').strip()
        if comment:
            self._best_effort(f"follow-up of #{external_id}",
                              self.glpi.add_ticket_followup, ticket_id, build_followup(comment))

    def _best_effort(self, what, func, *args):
        try:
            func(*args)
        except GlpiError as e:
            self.logger.warning(f"Could not add {what}: {e}")

    def _converge(self, external_id, ticket_id):
        """
        Keep a single ticket for the tag after a create.

        Returns:
            int: The surviving (lowest) ticket ID
        """
        matches = self._tagged_tickets(external_id)
        ids = sorted({t['id'] for t in matches} | {ticket_id})
        keep = ids[0]
        for duplicate in ids[1:]:
            try:
                self.glpi.delete_item('Ticket', duplicate, force_purge=True)
                self.logger.warning(f"Ticket #{external_id}: purged duplicate GLPI ticket {duplicate} (kept {keep})")
            except GlpiError as e:
                self.logger.error(f"Ticket #{external_id}: could not purge duplicate {duplicate}: {e}")
        if keep != ticket_id:
            self.logger.warning(f"Ticket #{external_id}: ticket {ticket_id} from this run was purged in favour of {keep}; "
                                f"actors were linked to {keep}, the follow-up was not copied")
        else:
            self.logger.info(f"Ticket #{external_id} -> created GLPI ticket {ticket_id}")
        return keep
