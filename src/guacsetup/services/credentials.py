"""Persistence of the generated database credential."""

import os
from typing import Dict, List, Optional

from guacsetup.constants import SECRET_FILE_MODE
from guacsetup.models import DatabaseCredential

_HEADER = "Guacamole-Credentials"
_FIELDS = {
    "Database User": "user",
    "Database Password": "secret",
    "Database Name": "database",
}


def parse_properties(text: str) -> Dict[str, str]:
    """Parse ``key: value`` / ``key=value`` lines of a Java-style properties file."""
    values = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith(("#", "!")):
            continue
        positions = [pos for pos in (line.find(":"), line.find("=")) if pos > 0]
        if not positions:
            continue
        split_at = min(positions)
        values[line[:split_at].strip()] = line[split_at + 1:].strip()
    return values


class CredentialStore:
    """Reads and writes the plain-text credential record (mode 0600).

    Older installs appended a new block on every run. ``load`` returns the
    newest block; ``load_all`` returns them all so callers can check which one
    still matches the database role.
    """

    def __init__(self, path: str, filesystem_service, logger):
        self.path = os.path.expanduser(path)
        self.filesystem_service = filesystem_service
        self.logger = logger

    def load_all(self) -> List[DatabaseCredential]:
        """Every complete block of the record, oldest first."""
        try:
            with open(self.path, "r", encoding="utf-8") as file_obj:
                lines = file_obj.read().splitlines()
        except FileNotFoundError:
            return []
        except OSError as exc:
            self.logger.warning("Could not read credentials record %s: %s", self.path, exc)
            return []

        blocks: List[DatabaseCredential] = []
        current: Dict[str, str] = {}
        for line in lines:
            if line.strip() == _HEADER:
                current = {}
                continue
            label, sep, value = line.partition(":")
            if sep and label.strip() in _FIELDS:
                current[_FIELDS[label.strip()]] = value.strip()
                if len(current) == len(_FIELDS):
                    blocks.append(DatabaseCredential(**current))
                    current = {}
        return blocks

    def load(self) -> Optional[DatabaseCredential]:
        blocks = self.load_all()
        return blocks[-1] if blocks else None

    def save(self, credential: DatabaseCredential):
        content = "\n".join(
            [
                _HEADER,
                f"Database User: {credential.user}",
                f"Database Password: {credential.secret}",
                f"Database Name: {credential.database}",
                "",
            ]
        )
        self.filesystem_service.write_text_atomic(self.path, content, SECRET_FILE_MODE)
        self.logger.info("Credentials saved to %s", self.path)

    def secret_from_properties(self, properties_path: str, user: str) -> Optional[str]:
        """Secret of ``user`` as rendered into a previous ``guacamole.properties``."""
        try:
            with open(properties_path, "r", encoding="utf-8") as file_obj:
                values = parse_properties(file_obj.read())
        except OSError:
            return None
        if values.get("mysql-username") != user:
            return None
        return values.get("mysql-password") or None
