"""
Bulk importer
Creates one GLPI item per spreadsheet row, strictly sequentially
"""
from glpi_bridge.core.records import parse_records
from glpi_bridge.core.resolver import NameResolver, Outcome
from glpi_bridge.logging.logger import get_logger
from glpi_bridge.tracking.import_results import ImportResults


def dependency_order(records):
    """
    Order records so that every parent present in the file comes before its children.

    Rows without a parent (or whose parent is not in the file) come first,
    then each deeper level; file order is kept within a level. Cycles are
    left at the end, where the parent lookup reports them as errors.

    Args:
        records: ImportRecord list of a single kind

    Returns:
        list: Reordered records
    """
    by_name = {}
    for record in records:
        by_name.setdefault(record.display_name.lower(), record)

    depths = {}

    def depth(record, seen):
        key = id(record)
        if key in depths:
            return depths[key]
        parent_name = record.parent_name
        parent = by_name.get(parent_name.lower()) if parent_name else None
        if parent is None or parent is record:
            value = 0
        elif key in seen:
            value = len(records)
        else:
            value = depth(parent, seen | {key}) + 1
        depths[key] = value
        return value

    indexed = list(enumerate(records))
    indexed.sort(key=lambda pair: (depth(pair[1], frozenset()), pair[0]))
    return [record for _, record in indexed]


class BulkImporter:
    """
    Imports rows of one import kind into GLPI.

    Flow per row:
    1. Skip if an item with the same name already exists
    2. Resolve the parent (find-only, includes rows created earlier in the run)
    3. Resolve relational columns (find-or-create; failures omit the field)
    4. Create the item, then run the kind's post-create action
    """

    def __init__(self, client, kind, resolver=None, logger=None):
        """
        Args:
            client: GlpiClient with an open session
            kind: ImportKind to import
            resolver: NameResolver shared with other work (optional)
            logger: Logger instance (optional)
        """
        self.client = client
        self.kind = kind
        self.logger = logger or get_logger('importer')
        self.resolver = resolver or NameResolver(client, logger=self.logger)

    def validate(self, rows):
        """
        Validate raw rows without touching the network.

        Returns:
            list: ImportRecord objects

        Raises:
            ImportValidationError: If any row is missing a required column
        """
        return parse_records(self.kind, rows)

    def run(self, rows):
        """
        Validate and import all rows.

        Args:
            rows: Raw row dicts (first sheet, header row excluded)

        Returns:
            ImportResults
        """
        records = dependency_order(self.validate(rows))
        results = ImportResults(logger=self.logger)

        self.logger.info(f"Importing {len(records)} {self.kind.name} row(s) into {self.kind.itemtype}")
        for position, record in enumerate(records, start=1):
            self.logger.debug(f"[{position}/{len(records)}] {record.display_name}")
            try:
                self._import_record(record, results)
            except Exception as e:
                results.record_error(record.display_name, e)

        results.log_summary()
        return results

    def _import_record(self, record, results):
        kind = self.kind
        name = record.display_name

        existing = self.client.find_by_name(kind.itemtype, name)
        if existing:
            self.resolver.remember(kind.itemtype, name, existing['id'])
            results.record_skipped(name)
            return

        payload = record.payload()

        if record.parent_name:
            parent = self.resolver.resolve(kind.itemtype, record.parent_name, create=False)
            if not parent:
                message = f"Parent not found: {record.parent_name}"
                if parent.outcome is Outcome.FAILED:
                    message = f"{message} ({parent.message})"
                results.record_error(name, message)
                return
            payload[kind.parent.target] = parent.id

        for relation in kind.relations:
            value = record.get(relation.column)
            if not value:
                continue
            resolution = self.resolver.resolve(relation.itemtype, value, create=relation.create,
                                               extra_fields=relation.extra)
            if resolution:
                payload[relation.target] = resolution.id
            else:
                self.logger.warning(f"  {name}: {relation.column} '{value}' not resolved "
                                    f"({resolution.outcome.value}), field omitted")

        item_id = self.client.add_item(kind.itemtype, payload)
        self.resolver.remember(kind.itemtype, name, item_id)

        if kind.post_create:
            try:
                kind.post_create(self.client, self.resolver, item_id, record)
            except Exception as e:
                results.record_error(name, f"Created (ID: {item_id}) but post-create step failed: {e}")
                return

        results.record_created(name, item_id)
