"""SQL execution helpers that run psql inside the database container."""

from typing import Dict, List, Optional

from dbstack.constants import POSTGRES_PORT
from dbstack.models import Principal


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def quote_identifier(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


class DatabaseService:
    """Runs SQL as a given principal through `docker exec ... psql`."""

    def __init__(self, logger, runtime, container_name: str):
        self.logger = logger
        self.runtime = runtime
        self.container_name = container_name

    def _psql_cmd(self, principal: Principal, database: Optional[str]) -> List[str]:
        return [
            "psql",
            "-h",
            "localhost",
            "-p",
            str(POSTGRES_PORT),
            "-U",
            principal.user,
            "-d",
            database or principal.database,
        ]

    def execute(self, principal: Principal, sql: str, database: Optional[str] = None, tuples_only: bool = True):
        cmd = self._psql_cmd(principal, database)
        if tuples_only:
            cmd.append("-tA")
        cmd.extend(["-v", "ON_ERROR_STOP=1", "-c", sql])
        return self.runtime.exec(
            self.container_name,
            cmd,
            env={"PGPASSWORD": principal.password},
        )

    def run_script(self, principal: Principal, script: str, database: Optional[str] = None):
        """Feed a multi-statement script through stdin so psql meta-commands work."""
        cmd = self._psql_cmd(principal, database) + ["-v", "ON_ERROR_STOP=1", "-f", "-"]
        return self.runtime.exec(
            self.container_name,
            cmd,
            env={"PGPASSWORD": principal.password},
            stdin=True,
            input_text=script,
        )

    def succeeds(self, principal: Principal, sql: str, database: Optional[str] = None) -> bool:
        return self.execute(principal, sql, database=database).returncode == 0

    def scalar(self, principal: Principal, sql: str, database: Optional[str] = None) -> Optional[str]:
        result = self.execute(principal, sql, database=database)
        if result.returncode != 0:
            return None

        for line in (result.stdout or "").splitlines():
            cleaned = line.strip()
            if cleaned:
                return cleaned
        return ""

    def rows(self, principal: Principal, sql: str, database: Optional[str] = None) -> List[str]:
        result = self.execute(principal, sql, database=database)
        if result.returncode != 0:
            return []
        return [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]

    def show_setting(self, principal: Principal, setting: str) -> Optional[str]:
        value = self.scalar(principal, f"SHOW {setting};")
        return value.replace(" ", "") if value is not None else None

    def summary(self, admin: Principal, app: Principal) -> Dict[str, List[str]]:
        tables_sql = (
            "SELECT tablename FROM pg_tables WHERE schemaname = 'public' ORDER BY tablename;"
        )
        return {
            "databases": self.rows(
                admin,
                "SELECT datname || ' (' || pg_size_pretty(pg_database_size(datname)) || ')' "
                "FROM pg_database WHERE datistemplate = false ORDER BY datname;",
            ),
            "admin_tables": self.rows(admin, tables_sql),
            "app_tables": self.rows(app, tables_sql),
            "roles": self.rows(
                admin,
                "SELECT rolname || CASE WHEN rolsuper THEN ' (superuser)' ELSE ' (regular user)' END "
                "FROM pg_roles WHERE rolcanlogin = true ORDER BY rolname;",
            ),
        }
