"""MariaDB database, role and schema provisioning for guacsetup."""

import re
import secrets
import string
from typing import List, Optional, Sequence

from guacsetup.errors import DatabaseError
from guacsetup.errors_catalog import actionable_error
from guacsetup.models import DatabaseCredential

_IDENTIFIER = re.compile(r"^[A-Za-z0-9_]{1,64}$")
_SECRET_ALPHABET = string.ascii_letters + string.digits


def generate_secret(length: int = 16) -> str:
    return "".join(secrets.choice(_SECRET_ALPHABET) for _ in range(length))


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise DatabaseError(
            f"Invalid database identifier '{name}'. Use letters, digits and underscores only."
        )
    return name


class DatabaseProvisioner:
    """Converges database, role and schema over the local admin connection.

    SQL is always fed on stdin so secrets never appear in process arguments
    or in debug logs of executed commands.
    """

    ROLE_HOST = "localhost"

    def __init__(
        self,
        command_runner,
        credential_store,
        logger,
        console,
        admin_cmd: Sequence[str] = ("mariadb", "-u", "root"),
        secret_length: int = 16,
    ):
        self.command_runner = command_runner
        self.credential_store = credential_store
        self.logger = logger
        self.console = console
        self.admin_cmd = list(admin_cmd)
        self.secret_length = secret_length

    def _execute(self, sql: str, database: Optional[str] = None) -> str:
        cmd = self.admin_cmd + ["-N", "-B"]
        if database:
            cmd.append(_identifier(database))
        result = self.command_runner.run(
            cmd,
            capture_output=True,
            input_text=sql,
            error_cls=DatabaseError,
        )
        return (result.stdout or "").strip()

    def _scalar(self, sql: str) -> int:
        output = self._execute(sql)
        try:
            return int(output.splitlines()[-1].strip())
        except (IndexError, ValueError) as exc:
            raise DatabaseError(f"Unexpected query result: {output!r}") from exc

    def ensure_database(self, name: str):
        self._execute(
            f"CREATE DATABASE IF NOT EXISTS `{_identifier(name)}` DEFAULT CHARACTER SET utf8mb4;\n"
        )
        self.logger.info("Database %s is present", name)

    def role_exists(self, user: str) -> bool:
        count = self._scalar(
            "SELECT COUNT(*) FROM mysql.user "
            f"WHERE User={_quote(_identifier(user))} AND Host={_quote(self.ROLE_HOST)};\n"
        )
        return count > 0

    def secret_matches(self, user: str, secret: str) -> bool:
        """True when ``secret`` is the current password of the role."""
        count = self._scalar(
            "SELECT COUNT(*) FROM mysql.user "
            f"WHERE User={_quote(_identifier(user))} AND Host={_quote(self.ROLE_HOST)} "
            f"AND authentication_string=PASSWORD({_quote(secret)});\n"
        )
        return count > 0

    def _candidate_secrets(self, user: str, database: str, properties_path: Optional[str]) -> List[str]:
        candidates = [
            stored.secret
            for stored in self.credential_store.load_all()
            if stored.user == user and stored.database == database
        ]
        if properties_path:
            rendered = self.credential_store.secret_from_properties(properties_path, user)
            if rendered:
                candidates.append(rendered)
        return list(dict.fromkeys(candidates))

    def ensure_role(
        self,
        user: str,
        database: str,
        properties_path: Optional[str] = None,
    ) -> DatabaseCredential:
        """Create or adopt the role and return its stable credential.

        Known secrets are the blocks of the credentials record, oldest first,
        then the ``mysql-password`` of a previously rendered properties file.
        For an existing role the first one the server accepts is adopted. If
        none matches, the role's password is rotated and the new secret
        persisted. A new role takes the first known secret or a fresh one.
        """
        account = f"{_quote(_identifier(user))}@{_quote(self.ROLE_HOST)}"
        exists = self.role_exists(user)
        candidates = self._candidate_secrets(user, database, properties_path)

        secret = None
        if exists:
            secret = next((value for value in candidates if self.secret_matches(user, value)), None)
        elif candidates:
            secret = candidates[0]

        statements = []
        if secret is None:
            secret = generate_secret(self.secret_length)
            if exists:
                self.logger.warning(
                    actionable_error("credential_lost", user=user, path=self.credential_store.path)
                )
                statements.append(f"ALTER USER {account} IDENTIFIED BY {_quote(secret)};")
        else:
            self.logger.info("Reusing stored secret for role %s", user)

        statements = [
            f"CREATE USER IF NOT EXISTS {account} IDENTIFIED BY {_quote(secret)};",
            *statements,
            f"GRANT ALL ON `{_identifier(database)}`.* TO {account};",
            "FLUSH PRIVILEGES;",
        ]
        self._execute("\n".join(statements) + "\n")

        credential = DatabaseCredential(database=database, user=user, secret=secret)
        if self.credential_store.load() != credential:
            self.credential_store.save(credential)
        return credential

    def count_tables(self, database: str) -> int:
        return self._scalar(
            "SELECT COUNT(*) FROM information_schema.tables "
            f"WHERE table_schema={_quote(_identifier(database))};\n"
        )

    def apply_sql_files(self, database: str, sql_files: Sequence[str]):
        if not sql_files:
            raise DatabaseError("No SQL files to apply.")
        chunks = []
        for path in sql_files:
            try:
                with open(path, "r", encoding="utf-8") as file_obj:
                    chunks.append(file_obj.read())
            except OSError as exc:
                raise DatabaseError(f"Could not read SQL file {path}: {exc}") from exc
            self.logger.debug("Queued SQL file %s", path)
        self._execute("\n".join(chunks), database=database)

    def load_schema_if_empty(self, database: str, schema_files: Sequence[str]) -> bool:
        tables = self.count_tables(database)
        if tables:
            self.console.print(
                f"[green]Database already has {tables} table(s); skipping schema import.[/green]"
            )
            return False

        self.console.print("[blue]Populating database schema...[/blue]")
        self.apply_sql_files(database, sorted(schema_files))
        self.console.print("[green]Database schema installed.[/green]")
        return True
