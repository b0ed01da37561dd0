"""Atomic file writes and backups.

PostgreSQL reads its configuration at startup; a half-written file
there fails the start. Writes go to a temp file in the same directory,
are fsynced, then renamed over the target.
"""

import contextlib
import os
import secrets
import shutil
from datetime import datetime
from pathlib import Path
from typing import Generator, Optional

from pgsizer.core.exceptions import WriteError


DEFAULT_FILE_PERMS = 0o644


class AtomicFileWriter:
    """Atomic file writer using temp file and rename.

    The target is either completely replaced or not modified at all.
    """

    def __init__(self, target_path: Path, permissions: int = DEFAULT_FILE_PERMS) -> None:
        self.target_path = Path(target_path)
        self.permissions = permissions

    @contextlib.contextmanager
    def open(self, mode: str = "w") -> Generator:
        """Open for atomic writing.

        Usage:
            with AtomicFileWriter(path).open() as f:
                f.write("content")
            # File is atomically replaced here
        """
        try:
            self.target_path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
        except OSError as e:
            raise WriteError(
                f"Cannot create directory: {self.target_path.parent}",
                path=str(self.target_path),
                details=[str(e)],
            ) from e

        tmp_path = self.target_path.with_name(
            f".{self.target_path.name}.tmp_{secrets.token_hex(8)}"
        )

        success = False
        fd = None
        try:
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, self.permissions)
            with os.fdopen(fd, mode) as f:
                fd = None  # fdopen takes ownership
                yield f
                f.flush()
                os.fsync(f.fileno())

            # umask may have narrowed the mode at creation
            os.chmod(tmp_path, self.permissions)
            os.replace(tmp_path, self.target_path)
            success = True

        except PermissionError as e:
            raise WriteError(
                f"Permission denied writing {self.target_path}",
                path=str(self.target_path),
                hint="Run with sudo or choose a writable --output path",
                details=[str(e)],
            ) from e
        except OSError as e:
            raise WriteError(
                f"Cannot write {self.target_path}",
                path=str(self.target_path),
                hint="Check that the path is a file on a writable filesystem with free space",
                details=[str(e)],
            ) from e

        finally:
            if fd is not None:
                os.close(fd)
            if not success and tmp_path.exists():
                tmp_path.unlink()


def backup_file(path: Path, *, suffix: str = ".bak", dry_run: bool = False) -> Optional[Path]:
    """Copy an existing file to `<name>.<timestamp><suffix>`.

    The timestamp has microseconds so back-to-back writes keep every copy.

    Returns:
        Path of the backup, or None if the original doesn't exist
    """
    if not path.exists():
        return None

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    backup_path = path.with_name(f"{path.name}.{timestamp}{suffix}")

    if dry_run:
        return backup_path

    try:
        shutil.copy2(path, backup_path)
    except OSError as e:
        raise WriteError(
            f"Cannot back up {path}",
            path=str(path),
            details=[str(e)],
        ) from e
    return backup_path
