"""
GLPI REST API Client
Session handling, generic item CRUD, search and ticket helpers
used by the bulk importer, the Smartsheet reconciler and the admin tools
"""
import base64
from contextlib import contextmanager

import requests
import urllib3

from glpi_bridge.logging.logger import get_logger


class GlpiError(Exception):
    """A GLPI API call failed (HTTP error, transport error or unexpected payload)."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class AuthError(GlpiError):
    """The session could not be opened with the configured credentials."""


def error_message(exc):
    """
    Extract a readable message from a requests exception.

    GLPI reports failures as a JSON array ``["ERROR_CODE", "text"]``;
    when the body is not in that shape the exception text is used.

    Args:
        exc: Exception raised by requests

    Returns:
        str: "ERROR_CODE: text" or the exception text
    """
    response = getattr(exc, 'response', None)
    if response is not None:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, list) and body:
            parts = [str(part) for part in body[:2] if part not in (None, '')]
            if parts:
                return ': '.join(parts)
        if response.text:
            return f"{response.status_code}: {response.text[:300]}"
    return str(exc)


class GlpiClient:
    """
    GLPI REST API v1 Client.

    Features:
    - Session management (User Token first, Basic Auth fallback)
    - Generic item CRUD (any itemtype)
    - Search engine queries (criteria / forcedisplay / range)
    - Ticket, follow-up and actor helpers

    Every failed call raises GlpiError; callers decide whether a failure
    is fatal (setup) or recorded and skipped (per-row work).
    """

    def __init__(self, url, app_token, user_token=None, username=None, password=None,
                 verify_ssl=True, logger=None):
        """
        Initialize GLPI client.

        Args:
            url: GLPI API base URL (e.g., https://glpi.example.com/apirest.php)
            app_token: Application token
            user_token: User token (optional, tried first)
            username: Username for Basic Auth fallback (optional)
            password: Password for Basic Auth fallback (optional)
            verify_ssl: Verify SSL certificates, or a CA bundle path (default: True)
            logger: Logger instance (optional)
        """
        self.url = url.rstrip('/')
        self.app_token = app_token
        self.user_token = user_token
        self.username = username
        self.password = password
        self.verify_ssl = verify_ssl
        self.logger = logger or get_logger('glpi_client')
        if verify_ssl is False:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        self.session_token = None
        self.headers = {
            "App-Token": self.app_token,
            "Content-Type": "application/json"
        }

    @classmethod
    def from_settings(cls, settings, logger=None):
        """Build a client from a GlpiSettings instance."""
        return cls(
            url=settings.url,
            app_token=settings.app_token,
            user_token=settings.user_token,
            username=settings.username,
            password=settings.password,
            verify_ssl=settings.verify_ssl,
            logger=logger,
        )

    @classmethod
    def from_config(cls, config, logger=None):
        """Build a client from the 'glpi' section of a loaded config dict."""
        from glpi_bridge.config.loader import GlpiSettings
        return cls.from_settings(GlpiSettings.from_config(config), logger=logger)

    # ===== Session Management =====

    def init_session(self):
        """
        Initialize GLPI session.
        Tries User Token first, then falls back to Basic Auth if provided.

        Returns:
            str: Session token

        Raises:
            AuthError: If no credentials are configured or all of them are rejected
        """
        if not self.app_token:
            raise AuthError("GLPI app token is not configured")
        if not self.user_token and not (self.username and self.password):
            raise AuthError("No GLPI credentials configured (user_token or username/password)")

        endpoint = f"{self.url}/initSession"
        failures = []

        # 1. Try User Token
        if self.user_token:
            self.logger.info("Attempting authentication with User-Token...")
            token = self._open_session(endpoint, f"user_token {self.user_token}", failures)
            if token:
                return token

        # 2. Fallback to Basic Auth
        if self.username and self.password:
            self.logger.info(f"Attempting Basic Auth (User: {self.username})...")
            b64_auth = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
            token = self._open_session(endpoint, f"Basic {b64_auth}", failures)
            if token:
                return token

        raise AuthError("Authentication failed: " + "; ".join(failures))

    def _open_session(self, endpoint, authorization, failures):
        headers = {
            "App-Token": self.app_token,
            "Content-Type": "application/json",
            "Authorization": authorization,
        }
        try:
            response = requests.get(endpoint, headers=headers, verify=self.verify_ssl)
            response.raise_for_status()
        except requests.RequestException as e:
            message = error_message(e)
            self.logger.warning(f"Session init failed: {message}")
            failures.append(message)
            return None

        token = response.json().get("session_token")
        if not token:
            failures.append("initSession returned no session_token")
            return None

        self.session_token = token
        self.headers["Session-Token"] = token
        self.logger.info("GLPI session initialized")
        return token

    def kill_session(self):
        """Kill the current GLPI session. Best effort: failures are logged, never raised."""
        if not self.session_token:
            return
        endpoint = f"{self.url}/killSession"
        try:
            requests.get(endpoint, headers=self.headers, verify=self.verify_ssl)
            self.logger.info("Session killed.")
        except requests.RequestException as e:
            self.logger.warning(f"Error killing session: {e}")
        finally:
            self.session_token = None
            self.headers.pop("Session-Token", None)

    def get_full_session(self):
        """Return the session description (active profile, entities, user)."""
        return self._request('get', 'getFullSession')

    # ===== Low-level request =====

    def _request(self, method, path, params=None, payload=None, full_response=False):
        """
        Perform an authenticated request against the API.

        Args:
            method: HTTP method name
            path: Path relative to the API root (e.g., 'Ticket/5')
            params: Query string parameters
            payload: JSON body
            full_response: Return the Response object instead of the decoded body

        Raises:
            GlpiError: On transport errors or non-2xx responses
        """
        endpoint = f"{self.url}/{path}"
        try:
            response = requests.request(method.upper(), endpoint, headers=self.headers, params=params,
                                        json=payload, verify=self.verify_ssl)
            response.raise_for_status()
        except requests.RequestException as e:
            status = getattr(getattr(e, 'response', None), 'status_code', None)
            raise GlpiError(f"{method.upper()} {path} failed: {error_message(e)}", status_code=status) from e

        if full_response:
            return response
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise GlpiError(f"{method.upper()} {path} returned invalid JSON") from e

    # ===== Generic Items =====

    def get_item(self, itemtype, item_id, **params):
        """
        Get a specific item by ID.

        Args:
            itemtype: Item type (e.g., 'Ticket', 'Computer')
            item_id: Item ID
            **params: Extra query parameters (e.g., expand_dropdowns=True)

        Returns:
            dict: Item data
        """
        return self._request('get', f"{itemtype}/{item_id}", params=params or None)

    def get_items(self, itemtype, range_=(0, 49), **params):
        """
        Get one page of items of a type.

        Args:
            itemtype: Item type
            range_: (start, end) inclusive indexes
            **params: Extra query parameters

        Returns:
            list: Item dicts
        """
        items, _ = self._get_page(itemtype, range_[0], range_[1], params)
        return items

    def get_all_items(self, itemtype, page_size=100, **params):
        """
        Get every item of a type, paging with the range parameter.

        Args:
            itemtype: Item type
            page_size: Items per request

        Returns:
            list: Item dicts
        """
        results = []
        start = 0
        while True:
            try:
                items, total = self._get_page(itemtype, start, start + page_size - 1, params)
            except GlpiError as e:
                # ERROR_RANGE_EXCEED_TOTAL once the previous page ended exactly at the total
                if start > 0 and e.status_code == 400:
                    break
                raise
            results.extend(items)
            start += page_size
            if len(items) < page_size:
                break
            if total is not None and start >= total:
                break
        return results

    def _get_page(self, itemtype, start, end, params):
        query = dict(params or {})
        query['range'] = f"{start}-{end}"
        response = self._request('get', itemtype, params=query, full_response=True)
        items = response.json() if response.content else []
        total = None
        content_range = response.headers.get('Content-Range', '')
        if '/' in content_range:
            try:
                total = int(content_range.rsplit('/', 1)[1])
            except ValueError:
                total = None
        return items or [], total

    def add_item(self, itemtype, fields):
        """
        Create an item.

        Args:
            itemtype: Item type
            fields: Field values for the new item

        Returns:
            int: New item ID
        """
        result = self._request('post', itemtype, payload={"input": fields})
        if isinstance(result, list):
            result = result[0] if result else {}
        new_id = (result or {}).get('id')
        if not new_id:
            message = (result or {}).get('message') or result
            raise GlpiError(f"Creating {itemtype} returned no ID: {message}")
        self.logger.debug(f"Created {itemtype} {new_id}")
        return int(new_id)

    def update_item(self, itemtype, item_id, fields):
        """
        Update an item.

        Args:
            itemtype: Item type
            item_id: Item ID
            fields: Field values to change

        Returns:
            bool: True if GLPI accepted the update
        """
        result = self._request('put', f"{itemtype}/{item_id}", payload={"input": fields})
        if isinstance(result, list) and result and isinstance(result[0], dict):
            if result[0].get(str(item_id)) is False:
                raise GlpiError(f"Update of {itemtype} {item_id} rejected: {result[0].get('message', '')}")
        return True

    def delete_item(self, itemtype, item_id, force_purge=True):
        """
        Delete an item.

        Args:
            itemtype: Item type
            item_id: Item ID
            force_purge: Purge instead of moving to the trash (default: True)

        Returns:
            bool: True if deleted
        """
        params = {"force_purge": "true"} if force_purge else None
        self._request('delete', f"{itemtype}/{item_id}", params=params)
        self.logger.debug(f"Deleted {itemtype} {item_id}")
        return True

    def get_sub_items(self, itemtype, item_id, sub_itemtype, **params):
        """Get the sub items of an item (e.g., Ticket/5/ITILFollowup)."""
        return self._request('get', f"{itemtype}/{item_id}/{sub_itemtype}", params=params or None) or []

    # ===== Search =====

    def search(self, itemtype, criteria=None, forcedisplay=None, range_=None):
        """
        Query the GLPI search engine.

        Args:
            itemtype: Item type
            criteria: List of dicts with 'field', 'searchtype', 'value' and optional 'link'
            forcedisplay: Search option IDs to include in each row
            range_: (start, end) inclusive indexes

        Returns:
            list: Row dicts keyed by search option ID (as strings)
        """
        params = {}
        for index, criterion in enumerate(criteria or []):
            for key in ('link', 'field', 'searchtype', 'value'):
                if key in criterion:
                    params[f"criteria[{index}][{key}]"] = criterion[key]
        for index, field in enumerate(forcedisplay or []):
            params[f"forcedisplay[{index}]"] = field
        if range_:
            params['range'] = f"{range_[0]}-{range_[1]}"

        result = self._request('get', f"search/{itemtype}", params=params) or {}
        return result.get('data') or []

    def find_by_name(self, itemtype, name):
        """
        Find an item whose name equals `name` (case-insensitive).

        Args:
            itemtype: Item type
            name: Exact name to look for

        Returns:
            dict: Lowest-ID matching item, or None
        """
        if not name or not str(name).strip():
            return None
        wanted = str(name).strip().lower()
        params = {"searchText[name]": f"^{str(name).strip()}$"}
        items = self.get_all_items(itemtype, page_size=200, **params)
        matches = [item for item in items if str(item.get('name', '')).strip().lower() == wanted]
        if not matches:
            return None
        return min(matches, key=lambda item: int(item['id']))

    def find_user_by_email(self, email):
        """
        Find a user by one of their e-mail addresses.

        Args:
            email: E-mail address

        Returns:
            dict: {'id': int, 'name': login} of the lowest-ID match, or None
        """
        wanted = str(email or '').strip().lower()
        if '@' not in wanted:
            return None
        rows = self.search(
            'User',
            criteria=[{"field": "5", "searchtype": "contains", "value": wanted}],
            forcedisplay=["1", "2", "5"],
            range_=(0, 199),
        )
        matches = []
        for row in rows:
            emails = row.get('5') or []
            if isinstance(emails, str):
                emails = emails.split('$$##$$')
            if wanted in {str(e).strip().lower() for e in emails} and row.get('2') is not None:
                matches.append({"id": int(row['2']), "name": str(row.get('1') or '')})
        if not matches:
            return None
        return min(matches, key=lambda user: user['id'])

    def find_user_by_fullname(self, full_name):
        """
        Find a user by display name ("Firstname Realname" in either order).

        Args:
            full_name: Name as written in the spreadsheet

        Returns:
            dict: {'id': int, 'name': login} or None
        """
        words = str(full_name or '').split()
        if not words:
            return None
        wanted = ' '.join(words).lower()
        rows = self.search(
            'User',
            criteria=[
                {"field": "34", "searchtype": "contains", "value": words[0]},
                {"link": "OR", "field": "9", "searchtype": "contains", "value": words[0]},
            ],
            forcedisplay=["1", "2", "9", "34"],
            range_=(0, 199),
        )
        for row in rows:
            firstname = str(row.get('9') or '').strip()
            realname = str(row.get('34') or '').strip()
            candidates = {f"{firstname} {realname}".strip().lower(), f"{realname} {firstname}".strip().lower()}
            if wanted in candidates and row.get('2') is not None:
                return {"id": int(row['2']), "name": str(row.get('1') or '')}
        return None

    # ===== Ticket Operations =====

    def create_ticket(self, name, content, **fields):
        """
        Create a Ticket.

        Args:
            name: Ticket title
            content: Ticket content (HTML)
            **fields: Additional ticket fields (status, urgency, type, date, ...)

        Returns:
            int: Ticket ID
        """
        payload = {"name": name, "content": content}
        payload.update(fields)
        ticket_id = self.add_item('Ticket', payload)
        self.logger.info(f"Created Ticket '{name}': ID {ticket_id}")
        return ticket_id

    def update_ticket(self, ticket_id, **fields):
        """Update an existing ticket with the given fields."""
        self.update_item('Ticket', ticket_id, fields)
        self.logger.info(f"Updated Ticket {ticket_id}: {', '.join(sorted(fields))}")
        return True

    def add_ticket_followup(self, ticket_id, content, users_id=None, is_private=0, date=None):
        """
        Add a comment (Followup) to a ticket.

        Args:
            ticket_id: Ticket ID
            content: Comment content (HTML)
            users_id: Comment author user ID (optional)
            is_private: Private comment flag (default: 0)
            date: Comment date (optional)

        Returns:
            int: Followup ID
        """
        payload = {
            "items_id": ticket_id,
            "itemtype": "Ticket",
            "content": content,
            "is_private": is_private
        }
        if users_id:
            payload['users_id'] = users_id
        if date:
            payload['date'] = date
        return self.add_item('ITILFollowup', payload)

    def add_ticket_actor(self, ticket_id, user_id, actor_type):
        """
        Attach a user to a ticket.

        Args:
            ticket_id: Ticket ID
            user_id: User ID
            actor_type: 1 requester, 2 assigned technician, 3 observer

        Returns:
            int: Ticket_User link ID
        """
        return self.add_item('Ticket_User', {
            "tickets_id": ticket_id,
            "users_id": user_id,
            "type": actor_type,
        })

    def find_tickets_by_title(self, fragment):
        """
        Find tickets whose title contains `fragment`.

        Returns:
            list: [{'id': int, 'name': str}, ...] sorted by ID
        """
        rows = self.search(
            'Ticket',
            criteria=[{"field": "1", "searchtype": "contains", "value": fragment}],
            forcedisplay=["1", "2"],
            range_=(0, 999),
        )
        tickets = []
        for row in rows:
            if row.get('2') is None:
                continue
            tickets.append({"id": int(row['2']), "name": str(row.get('1') or '')})
        return sorted(tickets, key=lambda t: t['id'])


@contextmanager
def glpi_session(client):
    """
    Open a session for the duration of the block and always release it.

    Usage:
        with glpi_session(client):
            client.add_item('Location', {"name": "Piso 3"})
    """
    client.init_session()
    try:
        yield client
    finally:
        client.kill_session()
