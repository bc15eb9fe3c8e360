"""
Sync state management for the Smartsheet reconciler
Persists the last sync time, the external ID -> ticket ID map and the
row snapshots to a JSON file, and guards each run with a lock file
"""
import os
import json
import time
from contextlib import contextmanager


class SyncLockedError(Exception):
    """Another reconciler run currently holds the state lock."""


def _empty_state():
    return {
        "lastSync": None,
        "ticketMap": {},
        "rowValues": {}
    }


class StateManager:
    """
    Manages reconciler state between runs.

    Tracks:
    - lastSync: ISO timestamp of the start of the last successful tick
    - ticketMap: external ID -> GLPI ticket ID
    - rowValues: external ID -> mapped column values seen at the last sync
    """

    def __init__(self, state_file='sync-state.json', lock_timeout=3600):
        """
        Initialize state manager.

        Args:
            state_file: Path to state file (default: sync-state.json)
            lock_timeout: Seconds after which an abandoned lock is considered stale
        """
        self.state_file = state_file
        self.lock_file = f"{state_file}.lock"
        self.lock_timeout = lock_timeout
        self._lock_token = None

    def load(self):
        """
        Load sync state from JSON file.

        Returns:
            dict: State dictionary with lastSync, ticketMap and rowValues
        """
        state = _empty_state()
        if os.path.exists(self.state_file):
            with open(self.state_file, 'r', encoding='utf-8') as f:
                stored = json.load(f) or {}
            state["lastSync"] = stored.get("lastSync")
            state["ticketMap"] = {str(k): int(v) for k, v in (stored.get("ticketMap") or {}).items()}
            state["rowValues"] = {str(k): v for k, v in (stored.get("rowValues") or {}).items()}
        return state

    def save(self, state):
        """
        Save sync state to JSON file.

        The file is re-read first and entries written by another process
        since our load are kept; our own entries win on conflict. The write
        goes to a temporary file that replaces the state file atomically.

        Args:
            state: State dictionary
        """
        on_disk = self.load()
        merged = {
            "lastSync": state.get("lastSync") or on_disk["lastSync"],
            "ticketMap": {**on_disk["ticketMap"], **(state.get("ticketMap") or {})},
            "rowValues": {**on_disk["rowValues"], **(state.get("rowValues") or {})},
        }

        directory = os.path.dirname(os.path.abspath(self.state_file))
        os.makedirs(directory, exist_ok=True)
        tmp_file = f"{self.state_file}.tmp"
        with open(tmp_file, 'w', encoding='utf-8') as f:
            json.dump(merged, f, indent=2, ensure_ascii=False)
        os.replace(tmp_file, self.state_file)
        return merged

    @contextmanager
    def lock(self):
        """
        Hold an exclusive run lock for the duration of the block.

        Raises:
            SyncLockedError: If a live lock is held by another run
        """
        self._acquire()
        try:
            yield
        finally:
            self._release()

    def _acquire(self):
        os.makedirs(os.path.dirname(os.path.abspath(self.lock_file)), exist_ok=True)
        flags = os.O_CREAT | os.O_EXCL | os.O_WRONLY
        try:
            fd = os.open(self.lock_file, flags)
        except FileExistsError:
            if not self._lock_is_stale():
                raise SyncLockedError(f"Sync already running (lock file {self.lock_file})")
            os.remove(self.lock_file)
            try:
                fd = os.open(self.lock_file, flags)
            except FileExistsError:
                raise SyncLockedError(f"Sync already running (lock file {self.lock_file})")
        self._lock_token = f"{os.getpid()} {time.time()}"
        with os.fdopen(fd, 'w') as f:
            f.write(f"{self._lock_token}\n")

    def _release(self):
        token, self._lock_token = self._lock_token, None
        try:
            with open(self.lock_file, 'r', encoding='utf-8') as f:
                owner = f.read().strip()
        except FileNotFoundError:
            return
        # Taken over as stale by another run
        if owner != token:
            return
        os.remove(self.lock_file)

    def _lock_is_stale(self):
        try:
            age = time.time() - os.path.getmtime(self.lock_file)
        except FileNotFoundError:
            return True
        return age > self.lock_timeout

    def reset(self):
        """Reset state to initial values (the merge on save is bypassed)."""
        self.delete()
        with open(self.state_file, 'w', encoding='utf-8') as f:
            json.dump(_empty_state(), f, indent=2)

    def delete(self):
        """Delete state file."""
        if os.path.exists(self.state_file):
            os.remove(self.state_file)


# Convenience functions
def load_state(state_file='sync-state.json'):
    """
    Load sync state from JSON file (convenience function).

    Args:
        state_file: Path to state file

    Returns:
        dict: State dictionary
    """
    return StateManager(state_file).load()


def save_state(state_file, state):
    """
    Save sync state to JSON file (convenience function).

    Args:
        state_file: Path to state file
        state: State dictionary
    """
    return StateManager(state_file).save(state)
