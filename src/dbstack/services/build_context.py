"""Build context rendering for the hardened PostgreSQL 11 image."""

import os
from pathlib import Path
from typing import Dict, List

from dbstack.constants import (
    BACKUP_DIR,
    BACKUP_SCRIPT,
    BASE_IMAGE,
    DATA_DIR,
    EXPECTED_SETTINGS,
    HEALTH_CHECK_SCRIPT,
    HEALTH_INTERVAL,
    HEALTH_RETRIES,
    HEALTH_START_PERIOD,
    HEALTH_TIMEOUT,
    INITDB_DIR,
    PASSWORD_ENCRYPTION,
    POSTGRES_PORT,
    SCRIPTS_DIR,
)
from dbstack.errors import StackError
from dbstack.services.initializer import InitializationService

SCRIPT_MODE = 0o755
FILE_MODE = 0o644


class BuildContextService:
    """Renders the Dockerfile, server configuration and helper scripts."""

    def __init__(self, logger, console):
        self.logger = logger
        self.console = console

    def build_dockerfile(self) -> str:
        return f"""FROM {BASE_IMAGE}

ARG POSTGRES_USER=postgres
ARG POSTGRES_PASSWORD
ARG POSTGRES_DB=postgres
ARG APP_USER=app_user
ARG APP_PASSWORD
ARG APP_DATABASE=app_db
ARG BUILD_DATE
ARG VERSION=1.0.0

LABEL org.opencontainers.image.title="postgres11-prod" \\
      org.opencontainers.image.version="${{VERSION}}" \\
      org.opencontainers.image.created="${{BUILD_DATE}}"

ENV POSTGRES_USER=${{POSTGRES_USER}} \\
    POSTGRES_DB=${{POSTGRES_DB}} \\
    APP_USER=${{APP_USER}} \\
    APP_DATABASE=${{APP_DATABASE}} \\
    POSTGRES_INITDB_ARGS="--auth-host={PASSWORD_ENCRYPTION} --auth-local={PASSWORD_ENCRYPTION}"

COPY conf/postgres11.conf /etc/postgresql/postgresql.conf
COPY conf/pg_hba.conf /etc/postgresql/pg_hba.conf
COPY scripts/init-db.sh {INITDB_DIR}/10-init-db.sh
COPY scripts/health-check.sh {HEALTH_CHECK_SCRIPT}
COPY scripts/backup.sh {BACKUP_SCRIPT}

RUN chmod +x {SCRIPTS_DIR}/*.sh {INITDB_DIR}/10-init-db.sh \\
 && mkdir -p {BACKUP_DIR} \\
 && chown -R postgres:postgres {BACKUP_DIR} {SCRIPTS_DIR}

VOLUME ["{DATA_DIR}"]
EXPOSE {POSTGRES_PORT}

HEALTHCHECK --interval={HEALTH_INTERVAL} --timeout={HEALTH_TIMEOUT} --start-period={HEALTH_START_PERIOD} --retries={HEALTH_RETRIES} \\
    CMD ["bash", "{HEALTH_CHECK_SCRIPT}"]

CMD ["postgres", "-c", "config_file=/etc/postgresql/postgresql.conf", "-c", "hba_file=/etc/postgresql/pg_hba.conf"]
"""

    def build_postgres_conf(self) -> str:
        expected = dict(EXPECTED_SETTINGS)
        return f"""# PostgreSQL 11 production configuration
listen_addresses = '{expected["listen_addresses"]}'
port = {expected["port"]}
max_connections = {expected["max_connections"]}
password_encryption = '{expected["password_encryption"]}'

shared_buffers = 256MB
effective_cache_size = 768MB
work_mem = 4MB
maintenance_work_mem = 64MB

wal_level = replica
max_wal_size = 1GB
min_wal_size = 80MB

log_destination = 'stderr'
logging_collector = off
log_min_duration_statement = 1000
log_connections = on
log_disconnections = on
log_line_prefix = '%m [%p] %q%u@%d '

timezone = 'UTC'
"""

    def build_pg_hba_conf(self) -> str:
        method = PASSWORD_ENCRYPTION
        return f"""# TYPE  DATABASE        USER            ADDRESS                 METHOD
local   all             all                                     {method}
host    all             all             127.0.0.1/32            {method}
host    all             all             ::1/128                 {method}
host    all             all             0.0.0.0/0               {method}
"""

    def build_health_check_script(self) -> str:
        return f"""#!/bin/bash
# PostgreSQL health check used by the container runtime and by `dbstack verify`.
set -e

check_user="${{POSTGRES_USER:-postgres}}"
check_db="${{POSTGRES_DB:-postgres}}"

if ! pg_isready -h localhost -p {POSTGRES_PORT} -U "$check_user" -q; then
    echo "PostgreSQL is not ready"
    exit 1
fi

if PGPASSWORD="$POSTGRES_PASSWORD" psql -h localhost -p {POSTGRES_PORT} -U "$check_user" -d "$check_db" -c "SELECT 1;" > /dev/null 2>&1; then
    echo "PostgreSQL is healthy"
    exit 0
fi

echo "PostgreSQL is not accepting queries"
exit 1
"""

    def build_backup_script(self) -> str:
        return f"""#!/bin/bash
# PostgreSQL backup: compressed pg_dump with seven days of retention.
set -e

BACKUP_DIR="{BACKUP_DIR}"
TIMESTAMP=$(date +"%Y%m%d_%H%M%S")
POSTGRES_USER=${{POSTGRES_USER:-postgres}}
POSTGRES_DB=${{POSTGRES_DB:-postgres}}
BACKUP_FILE="$BACKUP_DIR/postgres_${{POSTGRES_DB}}_${{TIMESTAMP}}.sql"

log() {{
    echo "$(date '+%Y-%m-%d %H:%M:%S') [BACKUP] $1"
}}

mkdir -p "$BACKUP_DIR"
log "Creating backup of database: $POSTGRES_DB"

if ! PGPASSWORD="$POSTGRES_PASSWORD" pg_dump -h localhost -p {POSTGRES_PORT} -U "$POSTGRES_USER" -d "$POSTGRES_DB" > "$BACKUP_FILE"; then
    log "Backup failed"
    exit 1
fi

gzip "$BACKUP_FILE"
log "Backup created: ${{BACKUP_FILE}}.gz"

find "$BACKUP_DIR" -name "postgres_*.sql.gz" -mtime +7 -delete 2>/dev/null || true
ls -lah "$BACKUP_DIR"/*.gz 2>/dev/null | tail -5 || true
log "Backup process completed"
"""

    def render(self) -> Dict[str, str]:
        return {
            "Dockerfile": self.build_dockerfile(),
            "conf/postgres11.conf": self.build_postgres_conf(),
            "conf/pg_hba.conf": self.build_pg_hba_conf(),
            "scripts/init-db.sh": InitializationService.render_entrypoint_script(),
            "scripts/health-check.sh": self.build_health_check_script(),
            "scripts/backup.sh": self.build_backup_script(),
        }

    def write(self, context_dir: str, overwrite: bool = False) -> List[str]:
        files = self.render()
        root = Path(context_dir)

        existing = [name for name in files if (root / name).exists()]
        if existing and not overwrite:
            raise StackError(
                "Build context already contains: "
                + ", ".join(existing)
                + ". Re-run with --overwrite to replace them."
            )

        written = []
        for relative, content in files.items():
            target = root / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "w", encoding="utf-8", newline="\n") as file_obj:
                file_obj.write(content)
            mode = SCRIPT_MODE if relative.endswith(".sh") else FILE_MODE
            try:
                os.chmod(target, mode)
            except OSError as exc:
                self.logger.warning("Could not set permissions on %s: %s", target, exc)
            written.append(str(target))
            self.logger.debug("Wrote %s", target)

        self.console.print(f"[green]Build context written to {root}.[/green]")
        return written
