# ============================================================================
# apps/reconcile/config_store.py - Locked read-modify-write access to config files
# ============================================================================

import os
import logging
import threading
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from config import ASTERISK_BACKUP_PATH
from shared.exceptions import ConfigIOError
from shared.utils import create_backup
from .document import ConfigDocument

logger = logging.getLogger(__name__)

# undecodable bytes survive a read-modify-write unchanged
ENCODING = "utf-8"
ENCODING_ERRORS = "surrogateescape"

_locks: Dict[str, threading.RLock] = {}
_registry_lock = threading.Lock()


def file_lock(path: str) -> threading.RLock:
    """Process wide lock for one configuration file path"""
    key = os.path.realpath(path)
    with _registry_lock:
        if key not in _locks:
            _locks[key] = threading.RLock()
        return _locks[key]


@contextmanager
def locked_files(paths: Iterable[str]) -> Iterator[None]:
    """Hold several file locks, always taken in the same order"""
    locks = [file_lock(path) for path in sorted({os.path.realpath(p) for p in paths})]
    for lock in locks:
        lock.acquire()
    try:
        yield
    finally:
        for lock in reversed(locks):
            lock.release()


class EditSession:
    """A loaded document plus what the edit did to it"""

    def __init__(self, document: ConfigDocument, original: str):
        self.document = document
        self.original = original
        self.needs_backup = False

    @property
    def changed(self) -> bool:
        return self.document.render() != self.original

    def write_block(self, label: str, text: str, adopt: Iterable[str] = ()) -> bool:
        """Replace a managed block, taking over hand written sections named in `adopt`"""
        removed = self.document.remove_unmanaged_sections(adopt)
        if removed:
            logger.info(f"Adopting {removed} hand written section(s) for '{label}'")
            self.needs_backup = True
        return self.document.replace_managed_block(label, text) or bool(removed)

    def remove_block(self, label: str) -> bool:
        return self.document.remove_managed_block(label)


class ConfigStore:
    """One Asterisk configuration file"""

    def __init__(self, path: str, backup_dir: str = ASTERISK_BACKUP_PATH,
                 backup_prefix: str = "reconcile"):
        self.path = path
        self.backup_dir = backup_dir
        self.backup_prefix = backup_prefix

    @property
    def lock(self) -> threading.RLock:
        return file_lock(self.path)

    def read_text(self) -> str:
        """File contents, empty when the file does not exist yet"""
        if not Path(self.path).exists():
            logger.warning(f"Config file {self.path} does not exist")
            return ""
        try:
            with open(self.path, 'r', encoding=ENCODING, errors=ENCODING_ERRORS) as f:
                return f.read()
        except OSError as e:
            raise ConfigIOError(self.path, e) from e

    def load(self) -> ConfigDocument:
        return ConfigDocument.parse(self.read_text())

    def write_text(self, content: str) -> None:
        """Replace the file atomically"""
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix=".reconcile-", dir=directory)
            try:
                with os.fdopen(fd, 'w', encoding=ENCODING, errors=ENCODING_ERRORS) as f:
                    f.write(content)
                if os.path.exists(self.path):
                    os.chmod(temp_path, os.stat(self.path).st_mode & 0o777)
                os.replace(temp_path, self.path)
            except BaseException:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                raise
        except OSError as e:
            raise ConfigIOError(self.path, e) from e
        logger.info(f"Wrote {self.path}")

    def backup(self) -> str:
        try:
            return create_backup(self.path, self.backup_prefix, self.backup_dir)
        except OSError as e:
            raise ConfigIOError(self.path, e) from e

    @contextmanager
    def edit(self) -> Iterator[EditSession]:
        """Read-modify-write under the file lock; saved on exit when changed"""
        with self.lock:
            original = self.read_text()
            session = EditSession(ConfigDocument.parse(original), original)
            yield session
            if session.changed:
                if session.needs_backup:
                    self.backup()
                self.write_text(session.document.render())

    def write_block(self, label: str, text: str, adopt: Iterable[str] = ()) -> bool:
        with self.edit() as session:
            session.write_block(label, text, adopt)
        return session.changed

    def remove_block(self, label: str) -> bool:
        with self.edit() as session:
            session.remove_block(label)
        return session.changed

    def read_block(self, label: str) -> Optional[str]:
        with self.lock:
            block = self.load().get_managed_block(label)
        return block.text if block is not None else None

    def managed_labels(self) -> List[str]:
        with self.lock:
            return self.load().managed_labels()

    def restore(self, backup_path: str) -> None:
        """Put a backup copy back in place, backing up the current file first"""
        with self.lock:
            try:
                with open(backup_path, 'r', encoding=ENCODING, errors=ENCODING_ERRORS) as f:
                    content = f.read()
            except OSError as e:
                raise ConfigIOError(backup_path, e) from e
            ConfigDocument.parse(content)
            self.backup()
            self.write_text(content)
