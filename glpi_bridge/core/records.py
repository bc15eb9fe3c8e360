"""
Import kinds and typed import records

Each import kind declares how a spreadsheet row becomes a GLPI item:
the target itemtype, the display column, required columns, plain
column -> field mappings, relational columns resolved by name, an
optional parent column for tree dropdowns and an optional post-create
action. Rows are parsed into ImportRecord objects and validated before
any network call is made.
"""
from dataclasses import dataclass, field

from glpi_bridge.core.mappings import profile_id, yes_no
from glpi_bridge.utils.dates import months_between, to_glpi_date


# ===== Errors =====

class RowValidationError(ValueError):
    """A row is missing required values."""

    def __init__(self, row_number, missing):
        self.row_number = row_number
        self.missing = list(missing)
        super().__init__(f"Row {row_number}: missing required field(s): {', '.join(self.missing)}")


class ImportValidationError(ValueError):
    """One or more rows of an import file failed validation."""

    def __init__(self, errors):
        self.errors = list(errors)
        lines = '\n'.join(f"  - {error}" for error in self.errors)
        super().__init__(f"{len(self.errors)} invalid row(s), nothing was imported:\n{lines}")


# ===== Value transforms =====

def text(value):
    value = '' if value is None else str(value).strip()
    return value or None


def integer(default=None):
    def convert(value):
        try:
            return int(float(str(value).strip()))
        except (TypeError, ValueError):
            return default
    return convert


def number(value):
    try:
        return float(str(value).strip().replace(',', ''))
    except (TypeError, ValueError):
        return 0


def flag(value):
    return yes_no(value)


def ticket_type(value):
    """'solicitud' -> 2 (request), anything else -> 1 (incident)."""
    return 2 if (text(value) or '').lower() == 'solicitud' else 1


# ===== Declarations =====

@dataclass(frozen=True)
class Field:
    """A column copied into the payload. target=None keeps the column for post-create only."""
    column: str
    target: str = None
    transform: object = text
    description: str = ''
    example: str = ''


@dataclass(frozen=True)
class Relation:
    """A column holding the name of another item, resolved to its ID."""
    column: str
    itemtype: str
    target: str
    create: bool = True
    extra: dict = None
    description: str = ''
    example: str = ''


@dataclass(frozen=True)
class Parent:
    """A column naming the parent of a tree item (same itemtype)."""
    column: str
    target: str
    description: str = ''
    example: str = ''


@dataclass(frozen=True)
class ImportKind:
    name: str
    itemtype: str
    display_column: str
    required: tuple
    fields: tuple
    relations: tuple = ()
    parent: Parent = None
    defaults: dict = field(default_factory=dict)
    compute: object = None
    post_create: object = None
    description: str = ''

    def columns(self):
        """
        Template columns in file order.

        Returns:
            list: (column, description, required, example) tuples
        """
        result = []
        for entry in self.fields:
            result.append((entry.column, entry.description, entry.column in self.required, entry.example))
        if self.parent:
            result.append((self.parent.column, self.parent.description, False, self.parent.example))
        for rel in self.relations:
            result.append((rel.column, rel.description, rel.column in self.required, rel.example))
        return result


@dataclass
class ImportRecord:
    """A validated row of an import file."""
    kind: ImportKind
    row_number: int
    values: dict

    @property
    def display_name(self):
        return self.values.get(self.kind.display_column) or f"Row {self.row_number}"

    @property
    def parent_name(self):
        if not self.kind.parent:
            return None
        return self.values.get(self.kind.parent.column) or None

    def get(self, column, default=None):
        return self.values.get(column) or default

    def payload(self):
        """Plain field values for the create call (relations and parent excluded)."""
        data = dict(self.kind.defaults)
        for entry in self.kind.fields:
            if entry.target is None:
                continue
            value = entry.transform(self.values.get(entry.column))
            if value is not None:
                data[entry.target] = value
        if self.kind.compute:
            data.update(self.kind.compute(self.values))
        return {key: value for key, value in data.items() if value is not None}


def normalize_header(header):
    return str(header or '').strip().lower().replace(' ', '_')


def parse_record(kind, row, row_number):
    """
    Build an ImportRecord from a raw row dict.

    Args:
        kind: ImportKind
        row: {header: value} as read from the file
        row_number: Spreadsheet row number (header row is 1)

    Raises:
        RowValidationError: If a required column is empty
    """
    values = {}
    for header, value in row.items():
        cleaned = '' if value is None else str(value).strip()
        values[normalize_header(header)] = cleaned

    missing = [column for column in kind.required if not values.get(column)]
    if missing:
        raise RowValidationError(row_number, missing)
    return ImportRecord(kind=kind, row_number=row_number, values=values)


def parse_records(kind, rows):
    """
    Validate every row of a file.

    Returns:
        list: ImportRecord objects

    Raises:
        ImportValidationError: Listing every invalid row
    """
    records = []
    errors = []
    for index, row in enumerate(rows):
        try:
            records.append(parse_record(kind, row, index + 2))
        except RowValidationError as e:
            errors.append(e)
    if errors:
        raise ImportValidationError(errors)
    return records


# ===== Post-create actions =====

def assign_profile(client, resolver, item_id, record):
    """Give a new user the profile named in its 'perfil' (or 'rol') column."""
    role = record.get('perfil') or record.get('rol') or 'technician'
    client.add_item('Profile_User', {
        "users_id": item_id,
        "profiles_id": profile_id(role),
        "entities_id": 0,
        "is_recursive": 1,
    })


def link_supplier(client, resolver, item_id, record):
    """Attach the contract to the supplier named in 'proveedor' (if it exists)."""
    supplier = record.get('proveedor')
    if not supplier:
        return
    resolution = resolver.resolve('Supplier', supplier, create=False)
    if resolution:
        client.add_item('Contract_Supplier', {"contracts_id": item_id, "suppliers_id": resolution.id})


def _user_extras(values):
    extras = {"password2": values.get('password') or None}
    if values.get('email'):
        extras["_useremails"] = [values['email']]
    return extras


def _contract_extras(values):
    return {"duration": months_between(values.get('fecha_inicio'), values.get('fecha_fin'))}


# ===== Kind registry =====

def _asset(name, itemtype, extra_fields=(), relations=('fabricante', 'modelo', 'tipo', 'estado', 'ubicacion'),
           description=''):
    prefix = itemtype.lower()
    available = {
        'fabricante': Relation('fabricante', 'Manufacturer', 'manufacturers_id',
                               description='Manufacturer', example='Dell'),
        'modelo': Relation('modelo', f'{itemtype}Model', f'{prefix}models_id',
                           description='Model', example='OptiPlex 7090'),
        'tipo': Relation('tipo', f'{itemtype}Type', f'{prefix}types_id',
                         description='Type', example='Desktop'),
        'estado': Relation('estado', 'State', 'states_id', description='Status', example='En uso'),
        'ubicacion': Relation('ubicacion', 'Location', 'locations_id',
                              description='Location', example='Oficina Central'),
        'usuario': Relation('usuario', 'User', 'users_id', create=False,
                            description='Login of the assigned user (must exist)', example='jperez'),
        'grupo': Relation('grupo', 'Group', 'groups_id', description='Group', example='Soporte'),
    }
    return ImportKind(
        name=name,
        itemtype=itemtype,
        display_column='nombre',
        required=('nombre',),
        fields=(
            Field('nombre', 'name', description='Name', example='PC-001'),
            Field('serial', 'serial', description='Serial number', example='SN123456'),
            Field('inventario', 'otherserial', description='Inventory number', example='INV-0001'),
            *extra_fields,
            Field('comentario', 'comment', description='Comment'),
        ),
        relations=tuple(available[column] for column in relations),
        description=description,
    )


IMPORT_KINDS = {}


def _register(kind):
    IMPORT_KINDS[kind.name] = kind
    return kind


_register(_asset('computadoras', 'Computer',
                 relations=('fabricante', 'modelo', 'tipo', 'estado', 'ubicacion', 'usuario', 'grupo'),
                 description='PCs, laptops, servers'))
_register(_asset('monitores', 'Monitor',
                 extra_fields=(Field('tamaño', 'size', integer(), description='Size in inches', example='24'),),
                 relations=('fabricante', 'modelo', 'tipo', 'estado', 'ubicacion', 'usuario'),
                 description='Displays'))
_register(_asset('impresoras', 'Printer',
                 relations=('fabricante', 'modelo', 'tipo', 'estado', 'ubicacion', 'grupo'),
                 description='Printers and multifunction devices'))
_register(_asset('telefonos', 'Phone',
                 extra_fields=(Field('numero', 'number_line', description='Line number', example='5551234'),),
                 relations=('fabricante', 'modelo', 'tipo', 'estado', 'ubicacion', 'usuario'),
                 description='IP phones and mobiles'))
_register(_asset('equipos_red', 'NetworkEquipment',
                 extra_fields=(Field('mac', 'mac', description='MAC address', example='00:11:22:33:44:55'),),
                 description='Switches, routers, access points'))
_register(_asset('perifericos', 'Peripheral',
                 relations=('fabricante', 'modelo', 'tipo', 'estado', 'ubicacion', 'usuario'),
                 description='Keyboards, mice, webcams'))

_register(ImportKind(
    name='software',
    itemtype='Software',
    display_column='nombre',
    required=('nombre',),
    fields=(
        Field('nombre', 'name', description='Software name', example='Microsoft Office'),
        Field('comentario', 'comment', description='Comment'),
    ),
    relations=(
        Relation('fabricante', 'Manufacturer', 'manufacturers_id', description='Publisher', example='Microsoft'),
        Relation('categoria', 'SoftwareCategory', 'softwarecategories_id',
                 description='Software category', example='Ofimática'),
    ),
    description='Licenses and applications',
))

_register(ImportKind(
    name='usuarios',
    itemtype='User',
    display_column='usuario',
    required=('usuario', 'nombre', 'apellido', 'password'),
    fields=(
        Field('usuario', 'name', description='Login', example='jperez'),
        Field('nombre', 'firstname', description='First name', example='Juan'),
        Field('apellido', 'realname', description='Last name', example='Pérez'),
        Field('password', 'password', description='Initial password', example='Cambiar123!'),
        Field('email', None, description='E-mail address', example='jperez@empresa.com'),
        Field('telefono', 'phone', description='Phone', example='5551234'),
        Field('movil', 'mobile', description='Mobile', example='5559876'),
        Field('perfil', None, description='Profile: technician, admin, supervisor, cliente, ...',
              example='technician'),
    ),
    defaults={"is_active": 1},
    compute=_user_extras,
    post_create=assign_profile,
    description='System users',
))

_register(ImportKind(
    name='contactos',
    itemtype='Contact',
    display_column='nombre',
    required=('nombre',),
    fields=(
        Field('nombre', 'name', description='Contact name', example='María López'),
        Field('email', 'email', description='E-mail address', example='maria@proveedor.com'),
        Field('telefono', 'phone', description='Phone'),
        Field('movil', 'mobile', description='Mobile'),
        Field('direccion', 'address', description='Address'),
        Field('ciudad', 'town', description='City'),
        Field('comentario', 'comment', description='Comment'),
    ),
    description='External contacts',
))

_register(ImportKind(
    name='proveedores',
    itemtype='Supplier',
    display_column='nombre',
    required=('nombre',),
    fields=(
        Field('nombre', 'name', description='Supplier name', example='Tecnología SA'),
        Field('email', 'email', description='E-mail address'),
        Field('telefono', 'phonenumber', description='Phone'),
        Field('sitio_web', 'website', description='Website', example='https://tecnologia.example'),
        Field('direccion', 'address', description='Address'),
        Field('ciudad', 'town', description='City'),
        Field('comentario', 'comment', description='Comment'),
    ),
    relations=(
        Relation('tipo', 'SupplierType', 'suppliertypes_id', description='Supplier type', example='Hardware'),
    ),
    description='Supplier companies',
))

_register(ImportKind(
    name='grupos',
    itemtype='Group',
    display_column='nombre',
    required=('nombre',),
    fields=(
        Field('nombre', 'name', description='Group name', example='Soporte Nivel 1'),
        Field('descripcion', 'comment', description='Description'),
        Field('es_solicitante', 'is_requester', flag, description='Can be requester (si/no)', example='si'),
        Field('es_observador', 'is_watcher', flag, description='Can be observer (si/no)', example='si'),
        Field('es_asignable', 'is_assign', flag, description='Can be assigned (si/no)', example='si'),
    ),
    parent=Parent('grupo_padre', 'groups_id', description='Parent group (must exist or appear above)',
                  example='Soporte'),
    defaults={"is_notify": 1},
    description='Departments and teams',
))

_register(ImportKind(
    name='ubicaciones',
    itemtype='Location',
    display_column='nombre',
    required=('nombre',),
    fields=(
        Field('nombre', 'name', description='Location name', example='Piso 3'),
        Field('direccion', 'address', description='Address'),
        Field('ciudad', 'town', description='City', example='Monterrey'),
        Field('estado', 'state', description='State'),
        Field('codigo_postal', 'postcode', description='Postal code'),
        Field('pais', 'country', description='Country', example='México'),
        Field('edificio', 'building', description='Building'),
        Field('piso', 'room', description='Floor / room'),
        Field('comentario', 'comment', description='Comment'),
    ),
    parent=Parent('ubicacion_padre', 'locations_id', description='Parent location', example='Oficina Central'),
    description='Offices and branches',
))

_register(ImportKind(
    name='categorias',
    itemtype='ITILCategory',
    display_column='nombre',
    required=('nombre',),
    fields=(
        Field('nombre', 'name', description='Category name', example='Computadora no enciende'),
        Field('codigo', 'code', description='Code'),
        Field('es_incidente', 'is_incident', flag, description='Visible for incidents (si/no)', example='si'),
        Field('es_solicitud', 'is_request', flag, description='Visible for requests (si/no)', example='si'),
        Field('es_problema', 'is_problem', flag, description='Visible for problems (si/no)', example='no'),
        Field('es_cambio', 'is_change', flag, description='Visible for changes (si/no)', example='no'),
        Field('comentario', 'comment', description='Comment'),
    ),
    parent=Parent('categoria_padre', 'itilcategories_id', description='Parent category', example='Hardware'),
    description='ITIL ticket categories',
))

_register(ImportKind(
    name='contratos',
    itemtype='Contract',
    display_column='nombre',
    required=('nombre',),
    fields=(
        Field('nombre', 'name', description='Contract name', example='Mantenimiento impresoras'),
        Field('numero', 'num', description='Contract number', example='CT-2024-01'),
        Field('fecha_inicio', 'begin_date', to_glpi_date, description='Start date', example='2024-01-01'),
        Field('fecha_fin', None, description='End date (sets the duration)', example='2024-12-31'),
        Field('renovacion', 'renewal', flag, description='Tacit renewal (si/no)', example='no'),
        Field('alerta_dias', 'alert', integer(0), description='Alert days before end', example='30'),
        Field('proveedor', None, description='Supplier (must exist)', example='Tecnología SA'),
        Field('comentario', 'comment', description='Comment'),
    ),
    relations=(
        Relation('tipo', 'ContractType', 'contracttypes_id', description='Contract type', example='Mantenimiento'),
    ),
    compute=_contract_extras,
    post_create=link_supplier,
    description='Maintenance contracts and warranties',
))

_register(ImportKind(
    name='tickets',
    itemtype='Ticket',
    display_column='titulo',
    required=('titulo',),
    fields=(
        Field('titulo', 'name', description='Title', example='Impresora no imprime'),
        Field('descripcion', 'content', description='Description', example='La impresora del piso 2 no imprime'),
        Field('tipo', 'type', ticket_type, description='incidente / solicitud', example='incidente'),
        Field('urgencia', 'urgency', integer(3), description='Urgency 1-5', example='3'),
        Field('impacto', 'impact', integer(3), description='Impact 1-5', example='3'),
    ),
    relations=(
        Relation('categoria', 'ITILCategory', 'itilcategories_id', description='Category', example='Hardware'),
        Relation('solicitante', 'User', '_users_id_requester', create=False,
                 description='Requester login (must exist)', example='jperez'),
        Relation('asignado', 'User', '_users_id_assign', create=False,
                 description='Assigned technician login (must exist)', example='tecnico1'),
        Relation('grupo', 'Group', '_groups_id_assign', description='Assigned group', example='Soporte'),
        Relation('ubicacion', 'Location', 'locations_id', description='Location', example='Oficina Central'),
    ),
    defaults={"status": 1},
    description='Incidents and requests',
))

_register(ImportKind(
    name='presupuestos',
    itemtype='Budget',
    display_column='nombre',
    required=('nombre',),
    fields=(
        Field('nombre', 'name', description='Budget name', example='TI 2024'),
        Field('monto', 'value', number, description='Amount', example='150000'),
        Field('fecha_inicio', 'begin_date', to_glpi_date, description='Start date', example='2024-01-01'),
        Field('fecha_fin', 'end_date', to_glpi_date, description='End date', example='2024-12-31'),
        Field('comentario', 'comment', description='Comment'),
    ),
    relations=(
        Relation('ubicacion', 'Location', 'locations_id', description='Location', example='Oficina Central'),
    ),
    description='Cost control',
))


def get_kind(name):
    """
    Look up an import kind by name.

    Raises:
        KeyError: With the list of valid kinds
    """
    key = str(name or '').strip().lower()
    if key not in IMPORT_KINDS:
        raise KeyError(f"Unknown import type '{name}'. Available: {', '.join(sorted(IMPORT_KINDS))}")
    return IMPORT_KINDS[key]
