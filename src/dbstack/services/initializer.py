"""One-time database initialization for the dual-principal security model."""

from dbstack.constants import PASSWORD_ENCRYPTION, SENTINEL_FILE
from dbstack.errors import StackError
from dbstack.models import Principal, StackSettings
from dbstack.services.database import quote_identifier, quote_literal

MAINTENANCE_DB = "postgres"


class InitializationService:
    """Creates the application principal and database once per data volume.

    The same SQL is rendered into the image's entrypoint script (with shell
    placeholders) and executed from the host after a deploy. The sentinel file
    inside the data volume makes every run after the first a no-op.
    """

    def __init__(self, logger, console, runtime, database, container_name: str):
        self.logger = logger
        self.console = console
        self.runtime = runtime
        self.database = database
        self.container_name = container_name

    @staticmethod
    def render_sql(admin_user: str, admin_database: str, app_user: str, app_password: str, app_database: str) -> str:
        create_app_db = quote_literal(
            f"CREATE DATABASE {quote_identifier(app_database)} OWNER {quote_identifier(app_user)}"
        )
        create_admin_db = quote_literal(f"CREATE DATABASE {quote_identifier(admin_database)}")
        return f"""
ALTER SYSTEM SET password_encryption = '{PASSWORD_ENCRYPTION}';
SELECT pg_reload_conf();
SET password_encryption = '{PASSWORD_ENCRYPTION}';

DO $$
BEGIN
    IF NOT EXISTS (SELECT FROM pg_catalog.pg_roles WHERE rolname = {quote_literal(app_user)}) THEN
        CREATE ROLE {quote_identifier(app_user)} WITH LOGIN PASSWORD {quote_literal(app_password)};
        RAISE NOTICE 'Created application role';
    ELSE
        RAISE NOTICE 'Application role already exists';
    END IF;
END
$$;

SELECT {create_app_db}
WHERE NOT EXISTS (SELECT FROM pg_database WHERE datname = {quote_literal(app_database)})\\gexec

GRANT CREATE, CONNECT ON DATABASE {quote_identifier(app_database)} TO {quote_identifier(app_user)};

SELECT {create_admin_db}
WHERE NOT EXISTS (SELECT FROM pg_database WHERE datname = {quote_literal(admin_database)})\\gexec

GRANT ALL PRIVILEGES ON DATABASE {quote_identifier(admin_database)} TO {quote_identifier(admin_user)};
""".lstrip()

    @classmethod
    def render_sql_for(cls, settings: StackSettings) -> str:
        return cls.render_sql(
            admin_user=settings.postgres_user,
            admin_database=settings.postgres_db,
            app_user=settings.app_user,
            app_password=settings.app_password,
            app_database=settings.app_database,
        )

    @staticmethod
    def self_test_sql() -> str:
        return (
            "SELECT 'Superuser connection successful! User: ' || current_user "
            "|| ', Database: ' || current_database();"
        )

    @staticmethod
    def app_verification_sql(app_user: str, app_database: str) -> str:
        return (
            "SELECT 'App user verification: ' || rolname || ' login=' || rolcanlogin "
            f"|| ', superuser=' || rolsuper FROM pg_roles WHERE rolname = {quote_literal(app_user)} "
            "UNION ALL "
            "SELECT 'App database verification: ' || datname || ' owned by ' "
            "|| pg_catalog.pg_get_userbyid(datdba) FROM pg_database "
            f"WHERE datname = {quote_literal(app_database)};"
        )

    def is_initialized(self) -> bool:
        result = self.runtime.exec(self.container_name, ["test", "-f", SENTINEL_FILE])
        return result.returncode == 0

    def initialize(self, settings: StackSettings) -> bool:
        """Run the routine unless the sentinel exists. Returns True when it ran."""
        if self.is_initialized():
            self.logger.info("Custom initialization already completed, skipping.")
            return False

        self.console.print("[blue]Running first-start initialization...[/blue]")
        admin = settings.admin
        maintenance = Principal(admin.user, admin.password, MAINTENANCE_DB)

        result = self.database.run_script(maintenance, self.render_sql_for(settings))
        if result.returncode != 0:
            raise StackError(
                "Initialization SQL failed:\n" + (result.stderr or result.stdout or "").strip()
            )

        status = self.database.scalar(admin, self.self_test_sql())
        if status is None:
            raise StackError(
                f"Superuser {admin.user} could not connect to {admin.database} after initialization."
            )
        self.logger.info(status)

        for line in self.database.rows(
            maintenance, self.app_verification_sql(settings.app_user, settings.app_database)
        ):
            self.logger.info(line)

        self.runtime.exec(
            self.container_name,
            ["touch", SENTINEL_FILE],
            user="postgres",
            check=True,
        )
        self.console.print("[green]Custom initialization completed.[/green]")
        return True

    @classmethod
    def render_entrypoint_script(cls) -> str:
        """Render the in-container init script; credentials stay as shell variables."""
        sql = cls.render_sql(
            admin_user="${POSTGRES_USER}",
            admin_database="${POSTGRES_DB}",
            app_user="${APP_USER}",
            app_password="${APP_PASSWORD}",
            app_database="${APP_DATABASE}",
        ).replace("$$", "\\$\\$")
        return ENTRYPOINT_TEMPLATE.format(
            sentinel=SENTINEL_FILE,
            sql=sql,
            self_test=cls.self_test_sql(),
            encryption=PASSWORD_ENCRYPTION,
        )


ENTRYPOINT_TEMPLATE = """#!/bin/bash
# PostgreSQL first-start initialization: application principal and database.
set -e

log_info() {{
    echo "[$(date '+%Y-%m-%d %H:%M:%S')] INFO: $1"
}}

log_info "APP_USER: ${{APP_USER}} APP_DATABASE: ${{APP_DATABASE}}"

if [ -f "{sentinel}" ]; then
    log_info "Custom initialization already completed, skipping..."
    exit 0
fi

log_info "Fresh installation detected, running custom initialization..."
psql -v ON_ERROR_STOP=1 --username "$POSTGRES_USER" --dbname postgres <<EOSQL
{sql}EOSQL

log_info "Testing superuser connection..."
psql -v ON_ERROR_STOP=1 --username "$POSTGRES_USER" --dbname "$POSTGRES_DB" -tAc "{self_test}"

touch "{sentinel}"
log_info "Custom initialization completed (password encryption: {encryption})."
"""
