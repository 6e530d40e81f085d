"""Reading fabric log zip archives."""

from __future__ import annotations

import os
import stat
import zipfile

from .aggregator import Aggregator
from .domain import Log

_READ_ERRORS = (OSError, ValueError, EOFError, RuntimeError, zipfile.BadZipFile)


class InputNotFoundError(FileNotFoundError):
    """The input archive does not exist."""


class InputNotZipError(ValueError):
    """The input is not a readable zip archive."""


class Parser:
    """Checks and parses log archives."""

    def parse(self, path: str) -> Log:
        """Parse every file of the archive into one Log."""
        try:
            archive = zipfile.ZipFile(path)
        except (OSError, zipfile.BadZipFile) as err:
            raise ValueError(f"open zip: {err}") from err

        aggregator = Aggregator()
        with archive:
            for entry in archive.infolist():
                if entry.is_dir():
                    continue
                try:
                    with archive.open(entry) as member:
                        aggregator.analyze_file(entry.filename, member)
                except _READ_ERRORS as err:
                    raise ValueError(f"analyze {entry.filename}: {err}") from err
        return aggregator.result()

    def preflight(self, path: str) -> None:
        """Raise unless path names a regular file that opens as a zip archive."""
        try:
            info = os.stat(path)
        except FileNotFoundError as err:
            raise InputNotFoundError(f"input file not found: {path}") from err

        if not stat.S_ISREG(info.st_mode):
            raise InputNotZipError("input is not a valid zip archive: not a regular file")

        try:
            with zipfile.ZipFile(path):
                pass
        except (OSError, zipfile.BadZipFile) as err:
            raise InputNotZipError(f"input is not a valid zip archive: {err}") from err