"""
Name -> ID resolver
Translates human-readable names (category, location, manufacturer, user...)
into GLPI IDs, creating missing records on demand, with a per-run cache
"""
from dataclasses import dataclass
from enum import Enum

from glpi_bridge.clients.glpi_client import GlpiError
from glpi_bridge.core.mappings import SELF_SERVICE_PROFILE
from glpi_bridge.logging.logger import get_logger


class Outcome(Enum):
    FOUND = 'found'
    CREATED = 'created'
    MISSING = 'missing'
    FAILED = 'failed'


@dataclass(frozen=True)
class Resolution:
    """Result of a lookup. `id` is set only for FOUND and CREATED."""
    outcome: Outcome
    id: int = None
    message: str = ''

    def __bool__(self):
        return self.id is not None


class NameResolver:
    """
    Lookup-or-create helper with a process-local cache.

    The cache is keyed by (itemtype, lowercase name), filled on the first
    successful lookup or create and never invalidated within a run.
    Failures are not cached so a later row can retry.
    """

    def __init__(self, client, logger=None):
        """
        Args:
            client: GlpiClient (or any object with find_by_name/add_item)
            logger: Logger instance (optional)
        """
        self.client = client
        self.logger = logger or get_logger('resolver')
        self._cache = {}

    @staticmethod
    def _key(itemtype, name):
        return (itemtype, str(name).strip().lower())

    def cached(self, itemtype, name):
        """Return the cached ID for a name, or None."""
        return self._cache.get(self._key(itemtype, name))

    def remember(self, itemtype, name, item_id):
        """Register an ID obtained elsewhere (e.g. a row the importer just created)."""
        if name and str(name).strip() and item_id:
            self._cache[self._key(itemtype, name)] = int(item_id)

    def resolve(self, itemtype, name, create=True, extra_fields=None):
        """
        Resolve a name to an ID.

        Args:
            itemtype: GLPI item type (e.g., 'Location')
            name: Human-readable name
            create: Create the item when no exact match exists
            extra_fields: Extra fields sent with the create call

        Returns:
            Resolution
        """
        if name is None or not str(name).strip():
            return Resolution(Outcome.MISSING, message=f"No {itemtype} name given")
        name = str(name).strip()

        key = self._key(itemtype, name)
        if key in self._cache:
            return Resolution(Outcome.FOUND, self._cache[key])

        try:
            item = self.client.find_by_name(itemtype, name)
        except GlpiError as e:
            self.logger.warning(f"Lookup of {itemtype} '{name}' failed: {e}")
            return Resolution(Outcome.FAILED, message=str(e))

        if item:
            self._cache[key] = int(item['id'])
            self.logger.debug(f"Found {itemtype} '{name}' -> {item['id']}")
            return Resolution(Outcome.FOUND, self._cache[key])

        if not create:
            return Resolution(Outcome.MISSING, message=f"{itemtype} not found: {name}")

        fields = {"name": name}
        fields.update(extra_fields or {})
        return self._create(itemtype, name, fields)

    def _create(self, itemtype, name, fields):
        key = self._key(itemtype, name)
        try:
            new_id = self.client.add_item(itemtype, fields)
        except GlpiError as e:
            # A concurrent run may have created it between our lookup and create
            try:
                item = self.client.find_by_name(itemtype, name)
            except GlpiError:
                item = None
            if item:
                self._cache[key] = int(item['id'])
                return Resolution(Outcome.FOUND, self._cache[key])
            self.logger.warning(f"Could not create {itemtype} '{name}': {e}")
            return Resolution(Outcome.FAILED, message=str(e))

        self._cache[key] = int(new_id)
        self.logger.info(f"[NEW] Created {itemtype} '{name}' -> ID {new_id}")
        return Resolution(Outcome.CREATED, self._cache[key])

    # ===== Users =====

    def resolve_user(self, name):
        """
        Find a user by login, then by full name. Never creates.

        Returns:
            Resolution (FOUND, MISSING or FAILED)
        """
        resolution = self.resolve('User', name, create=False)
        if resolution.outcome is not Outcome.MISSING or not name or not str(name).strip():
            return resolution

        try:
            user = self.client.find_user_by_fullname(str(name).strip())
        except GlpiError as e:
            return Resolution(Outcome.FAILED, message=str(e))
        if not user:
            return resolution
        self.remember('User', name, user['id'])
        return Resolution(Outcome.FOUND, int(user['id']))

    def resolve_requester(self, email, display_name=None):
        """
        Find a requester by login (the e-mail address), then by e-mail
        field, then by the address's local part as login. Creates a
        Self-Service user when none of those match.

        Args:
            email: Requester e-mail address
            display_name: "Realname Firstname" used for new users (optional)
        """
        if not email or '@' not in str(email):
            return Resolution(Outcome.MISSING, message=f"Not an e-mail address: {email!r}")
        email = str(email).strip()

        found = self.resolve('User', email, create=False)
        if found.outcome is not Outcome.MISSING:
            return found

        local_part = email.split('@')[0]
        try:
            user = self.client.find_user_by_email(email) or self.client.find_by_name('User', local_part)
        except GlpiError as e:
            self.logger.warning(f"Lookup of requester '{email}' failed: {e}")
            return Resolution(Outcome.FAILED, message=str(e))
        if user:
            self.remember('User', email, user['id'])
            self.logger.debug(f"Found requester '{email}' -> {user['id']}")
            return Resolution(Outcome.FOUND, int(user['id']))

        if display_name and str(display_name).strip():
            parts = str(display_name).split()
        else:
            parts = email.split('@')[0].split('.')
        fields = {
            "realname": parts[0] if parts else '',
            "firstname": ' '.join(parts[1:]),
            "_useremails": [email],
            "is_active": 1,
            "_profiles_id": SELF_SERVICE_PROFILE,
            "_entities_id": 0,
        }
        fields["name"] = email
        return self._create('User', email, fields)
