"""Fixed names, paths and policies shared across dbstack services."""

CONTAINER_NAME = "postgres11_prod"
VOLUME_NAME = "postgres11_prod_data"
BASE_IMAGE = "postgres:11-bullseye"
PROBE_IMAGE = "alpine:latest"

POSTGRES_PORT = 5432
DATA_DIR = "/var/lib/postgresql/data"
SCRIPTS_DIR = "/opt/scripts"
INITDB_DIR = "/docker-entrypoint-initdb.d"
BACKUP_DIR = "/backups"
HEALTH_CHECK_SCRIPT = f"{SCRIPTS_DIR}/health-check.sh"
BACKUP_SCRIPT = f"{SCRIPTS_DIR}/backup.sh"
SENTINEL_FILE = f"{DATA_DIR}/custom_init_completed"

PASSWORD_ENCRYPTION = "scram-sha-256"

DEFAULT_ENV_FILE = ".env.prod"
DEFAULT_COMPOSE_ENV_FILE = ".env"
DEFAULT_CONFIG_FILE = ".dbstack.yml"
DEFAULT_CONTEXT_DIR = "."

DEPLOY_READY_ATTEMPTS = 60
DEPLOY_READY_INTERVAL = 2.0
SMOKE_READY_ATTEMPTS = 60
SMOKE_READY_INTERVAL = 3.0
PROGRESS_EVERY = 10
LOG_TAIL_LINES = 20

HEALTH_INTERVAL = "30s"
HEALTH_TIMEOUT = "10s"
HEALTH_START_PERIOD = "60s"
HEALTH_RETRIES = 3

BUILD_FILES = (
    "Dockerfile",
    "conf/postgres11.conf",
    "conf/pg_hba.conf",
    "scripts/init-db.sh",
    "scripts/health-check.sh",
    "scripts/backup.sh",
)

BUILD_REQUIRED_KEYS = (
    "POSTGRES_USER",
    "POSTGRES_PASSWORD",
    "POSTGRES_DB",
    "APP_USER",
    "APP_PASSWORD",
    "APP_DATABASE",
    "DOCKER_USERNAME",
    "IMAGE_NAME",
)
PUSH_REQUIRED_KEYS = ("DOCKER_USERNAME", "IMAGE_NAME")
DEPLOY_REQUIRED_KEYS = (
    "DOCKER_USERNAME",
    "IMAGE_NAME",
    "POSTGRES_USER",
    "POSTGRES_PASSWORD",
    "POSTGRES_DB",
    "APP_USER",
    "APP_PASSWORD",
    "APP_DATABASE",
)
VERIFY_REQUIRED_KEYS = DEPLOY_REQUIRED_KEYS

# Server settings rendered into postgres11.conf and checked by the verifier.
EXPECTED_SETTINGS = (
    ("listen_addresses", "*"),
    ("port", str(POSTGRES_PORT)),
    ("max_connections", "100"),
    ("password_encryption", PASSWORD_ENCRYPTION),
)

ADMIN_ALIASES = ("admin", "postgres", "superuser")
