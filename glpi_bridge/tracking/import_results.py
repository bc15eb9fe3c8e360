"""
Import Results Tracker
Per-run accounting of created, skipped and failed rows
"""


class ImportResults:
    """
    Tracks the outcome of each processed row.

    Features:
    - Created items with their GLPI IDs
    - Skipped rows (already present in GLPI)
    - Errors with the row's display name and the server message
    - Report generation to file (tab-separated format)
    """

    def __init__(self, logger=None):
        """Initialize an empty result set."""
        self.created = []   # (name, id)
        self.skipped = []   # name
        self.errors = []    # (name, message)
        self.logger = logger

    def record_created(self, name, item_id):
        self.created.append((name, item_id))
        if self.logger:
            self.logger.info(f"  {name}: OK (ID: {item_id})")

    def record_skipped(self, name, reason='already exists'):
        self.skipped.append(name)
        if self.logger:
            self.logger.info(f"  {name}: skipped ({reason})")

    def record_error(self, name, message):
        self.errors.append((name, str(message)))
        if self.logger:
            self.logger.error(f"  {name}: ERROR {message}")

    def summary(self):
        """
        Get summary counts.

        Returns:
            dict: created / skipped / errors counts
        """
        return {
            "created": len(self.created),
            "skipped": len(self.skipped),
            "errors": len(self.errors),
        }

    def log_summary(self, logger=None):
        """Log the summary counts and every error line."""
        logger = logger or self.logger
        if not logger:
            return
        counts = self.summary()
        logger.info("=== SUMMARY ===")
        logger.info(f"  Created: {counts['created']}")
        logger.info(f"  Skipped: {counts['skipped']}")
        logger.info(f"  Errors:  {counts['errors']}")
        for name, message in self.errors:
            logger.error(f"  - {name}: {message}")

    def save_report(self, filepath='import_errors.txt'):
        """
        Save the error report to a tab-separated file.

        Args:
            filepath: Output file path (default: import_errors.txt)

        Returns:
            bool: True if a report was written
        """
        if not self.errors:
            if self.logger:
                self.logger.info("No errors to report")
            return False

        with open(filepath, 'w', encoding='utf-8') as f:
            f.write("Name\tError\n")
            for name, message in self.errors:
                f.write(f"{name}\t{message}\n")

        if self.logger:
            self.logger.info(f"Error report: {len(self.errors)} rows written to {filepath}")
        return True

    def __len__(self):
        """Number of processed rows."""
        return len(self.created) + len(self.skipped) + len(self.errors)

    def __bool__(self):
        """True when the run finished without errors."""
        return not self.errors
