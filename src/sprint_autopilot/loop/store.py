"""Sprint status file access.

The status file is a human-editable YAML document whose ``development_status``
section maps status keys to status text. Reads go through PyYAML; writes
rewrite the single affected line so comments, ordering and the rest of the
document survive untouched.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

STATUS_SECTION = "development_status"


class StatusStoreError(RuntimeError):
    """Status file is missing or cannot be interpreted."""


class StatusStore:
    """Single-writer accessor for the sprint status file."""

    def __init__(self, path: Path, *, section: str = STATUS_SECTION) -> None:
        self.path = path
        self.section = section
        self._section_header = re.compile(rf"^{re.escape(section)}:\s*(#.*)?$")

    def exists(self) -> bool:
        return self.path.is_file()

    def read(self) -> dict[str, str]:
        """Return the status mapping in file order."""

        try:
            content = self.path.read_text("utf-8")
        except FileNotFoundError as error:
            raise StatusStoreError(f"Status file not found: {self.path}") from error
        except UnicodeDecodeError as error:
            raise StatusStoreError(f"Status file is not valid UTF-8: {self.path}") from error

        try:
            document = yaml.safe_load(content)
        except yaml.YAMLError as error:
            raise StatusStoreError(f"Status file is not valid YAML: {self.path}") from error

        if document is None:
            return {}
        if not isinstance(document, dict):
            raise StatusStoreError(f"Expected a YAML mapping at the top of {self.path}")

        section = document.get(self.section)
        if section is None:
            return {}
        if not isinstance(section, dict):
            raise StatusStoreError(f"Expected '{self.section}' to be a mapping in {self.path}")

        return {
            str(key): "" if value is None else str(value).strip()
            for key, value in section.items()
        }

    def get(self, key: str) -> str | None:
        return self.read().get(key)

    def write(self, key: str, status: str) -> None:
        """Set one key's status in place, appending the entry when it is absent."""

        lines = self.path.read_text("utf-8").splitlines(keepends=True)
        header_index = self._find_section_header(lines)
        if header_index is None:
            if lines and not lines[-1].endswith("\n"):
                lines[-1] += "\n"
            lines.append(f"{self.section}:\n")
            lines.append(f"  {key}: {status}\n")
            self._write_lines(lines)
            logger.info("Updated %s -> %s (new section)", key, status)
            return

        entry_pattern = re.compile(
            rf"^(?P<indent>[ \t]+)(?P<quote>['\"]?){re.escape(key)}(?P=quote)"
            r"\s*:(?P<gap>\s*)(?P<value>[^#\r\n]*?)(?P<comment>\s+#[^\r\n]*)?(?P<eol>\r?\n?)$",
        )
        indent = "  "
        last_entry_index = header_index
        for index in range(header_index + 1, len(lines)):
            line = lines[index]
            stripped = line.strip()
            if stripped and not line[0].isspace():
                break
            if not stripped or stripped.startswith("#"):
                continue
            last_entry_index = index
            indent = line[: len(line) - len(line.lstrip())]
            match = entry_pattern.match(line)
            if match is None:
                continue
            lines[index] = (
                f"{match.group('indent')}{match.group('quote')}{key}{match.group('quote')}: "
                f"{status}{match.group('comment') or ''}{match.group('eol') or ''}"
            )
            self._write_lines(lines)
            logger.info("Updated %s -> %s", key, status)
            return

        if not lines[last_entry_index].endswith("\n"):
            lines[last_entry_index] += "\n"
        lines.insert(last_entry_index + 1, f"{indent}{key}: {status}\n")
        self._write_lines(lines)
        logger.info("Added %s -> %s", key, status)

    def _find_section_header(self, lines: list[str]) -> int | None:
        for index, line in enumerate(lines):
            if self._section_header.match(line.rstrip("\r\n")):
                return index
        return None

    def _write_lines(self, lines: list[str]) -> None:
        self.path.write_text("".join(lines), "utf-8")
