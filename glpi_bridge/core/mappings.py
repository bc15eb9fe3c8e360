"""
Static lookup tables: spreadsheet free text -> GLPI numeric codes
"""
import re


# GLPI ticket status codes
STATUS_NEW = 1
STATUS_ASSIGNED = 2
STATUS_PLANNED = 3
STATUS_WAITING = 4
STATUS_SOLVED = 5
STATUS_CLOSED = 6

DEFAULT_STATUS = STATUS_PLANNED
DEFAULT_URGENCY = 3

STATUS_MAP = {
    'ticket abierto': STATUS_NEW,
    'ticket cerrado': STATUS_CLOSED,
    '1 - nuevo': STATUS_NEW,
    '2 - en curso (asignado)': STATUS_ASSIGNED,
    '3 - en curso (planificado)': STATUS_PLANNED,
    '4 - esperando respuesta': STATUS_WAITING,
    '5 - solucionado': STATUS_SOLVED,
    '6 - cerrado': STATUS_CLOSED,
}

# Smartsheet urgency labels -> GLPI urgency (5 very high ... 1 very low)
URGENCY_MAP = {
    '1 - alto-urgente': 5,
    '2 - medio-tengo inconvenientes': 3,
    '3 - bajo-informativo': 1,
}
_URGENCY_BY_LEVEL = {1: 5, 2: 3, 3: 1}

# Role names used in user import files -> GLPI profile IDs
PROFILE_MAP = {
    'cliente': 1,
    'self-service': 1,
    'observer': 2,
    'admin': 3,
    'super-admin': 4,
    'hotliner': 5,
    'technician': 6,
    'tecnico': 6,
    'técnico': 6,
    'supervisor': 7,
    'read-only': 8,
}
DEFAULT_PROFILE = 6
SELF_SERVICE_PROFILE = 1

# Ticket actor types (Ticket_User.type)
ACTOR_REQUESTER = 1
ACTOR_ASSIGNED = 2
ACTOR_OBSERVER = 3

_LEADING_CODE = re.compile(r'^\s*(\d+)\s*-')


def _normalize(value):
    return ' '.join(str(value or '').split()).lower()


def _leading_code(value):
    match = _LEADING_CODE.match(str(value or ''))
    return int(match.group(1)) if match else None


def status_code(text):
    """
    Map one status text to a GLPI status code.

    Exact (case/space-insensitive) table match first, then a leading
    "N - ..." code with N between 1 and 6.

    Returns:
        int: Status code, or None if the text is not recognized
    """
    normalized = _normalize(text)
    if not normalized:
        return None
    if normalized in STATUS_MAP:
        return STATUS_MAP[normalized]
    code = _leading_code(normalized)
    if code is not None and STATUS_NEW <= code <= STATUS_CLOSED:
        return code
    return None


def map_status(estado, estado_ticket=None):
    """
    Map the row's status columns to a GLPI status code.

    The detailed 'Estado' column wins over 'Estado del Ticket';
    unrecognized values fall back to DEFAULT_STATUS.

    Examples:
        >>> map_status("6 - Cerrado")
        6

        >>> map_status("", "Ticket Abierto")
        1

        >>> map_status("Pendiente de revisión")
        3
    """
    for text in (estado, estado_ticket):
        code = status_code(text)
        if code is not None:
            return code
    return DEFAULT_STATUS


def map_urgency(text):
    """Map an urgency label to a GLPI urgency value (default 3)."""
    normalized = _normalize(text)
    if normalized in URGENCY_MAP:
        return URGENCY_MAP[normalized]
    level = _leading_code(normalized)
    return _URGENCY_BY_LEVEL.get(level, DEFAULT_URGENCY)


def profile_id(role):
    """Map a role name to a GLPI profile ID (technician when blank or unknown)."""
    return PROFILE_MAP.get(_normalize(role), DEFAULT_PROFILE)


def yes_no(value):
    """Spreadsheet yes/no flag -> 1/0 ('si', 'sí', 'yes', 'true', '1', 'x' are yes)."""
    return 1 if _normalize(value) in ('si', 'sí', 'yes', 'y', 'true', '1', 'x') else 0
