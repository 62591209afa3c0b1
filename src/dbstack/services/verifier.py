"""Post-deployment verification checks for the PostgreSQL instance."""

import time
import uuid
from typing import Callable, Dict, List, Tuple

from dbstack.constants import (
    BACKUP_SCRIPT,
    DATA_DIR,
    EXPECTED_SETTINGS,
    HEALTH_CHECK_SCRIPT,
    INITDB_DIR,
    PASSWORD_ENCRYPTION,
    POSTGRES_PORT,
    PROBE_IMAGE,
    SENTINEL_FILE,
)
from dbstack.models import CheckResult, StackSettings, VerificationReport
from dbstack.services.database import quote_literal


class VerifierService:
    """Runs a battery of independent checks and aggregates the outcome."""

    PROFILES: Dict[str, Tuple[str, ...]] = {
        "quick": ("container_status", "postgres_ready"),
        "basic": (
            "container_status",
            "postgres_ready",
            "superuser_connection",
            "app_user_connection",
            "dual_user_setup",
        ),
        "full": (
            "container_status",
            "postgres_ready",
            "superuser_connection",
            "app_user_connection",
            "password_encryption",
            "health_check",
            "backup_script",
            "network_connectivity",
            "data_persistence",
            "configuration",
            "dual_user_setup",
        ),
    }

    def __init__(
        self,
        logger,
        console,
        runtime,
        database,
        settings: StackSettings,
        sibling_probe: bool = True,
        strict_privileges: bool = False,
    ):
        self.logger = logger
        self.console = console
        self.runtime = runtime
        self.database = database
        self.settings = settings
        self.sibling_probe = sibling_probe
        self.strict_privileges = strict_privileges

    @property
    def container(self) -> str:
        return self.settings.container_name

    def checks(self) -> Dict[str, Callable[[], CheckResult]]:
        return {
            "container_status": self.check_container_status,
            "postgres_ready": self.check_postgres_ready,
            "superuser_connection": self.check_superuser_connection,
            "app_user_connection": self.check_app_user_connection,
            "password_encryption": self.check_password_encryption,
            "health_check": self.check_health_script,
            "backup_script": self.check_backup_script,
            "network_connectivity": self.check_network,
            "data_persistence": self.check_data_persistence,
            "configuration": self.check_configuration,
            "dual_user_setup": self.check_dual_user_setup,
        }

    def run(self, profile: str = "basic") -> VerificationReport:
        if profile not in self.PROFILES:
            raise ValueError(f"Unknown verification profile: {profile}")

        registry = self.checks()
        report = VerificationReport()
        self.console.print(f"[blue]Running {profile} tests...[/blue]")

        for name in self.PROFILES[profile]:
            result = registry[name]()
            report.add(result)
            self._print_result(result)

        self.console.print("[bold]Test Results Summary[/bold]")
        self.console.print(f"Tests passed: {report.passed}")
        self.console.print(f"Tests failed: {report.failed}")
        if report.warnings:
            self.console.print(f"Warnings: {report.warnings}")
        if report.failed:
            self.console.print(
                f"[bold red]{report.failed} test(s) failed. Please check the deployment.[/bold red]"
            )
        else:
            self.console.print("[bold green]All tests passed! Deployment is healthy.[/bold green]")
        return report

    def _print_result(self, result: CheckResult):
        for warning in result.warnings:
            self.console.print(f"[yellow]WARNING[/yellow] {warning}")
        if result.passed:
            self.console.print(f"[green]PASS[/green] {result.name}: {result.detail}")
        else:
            self.console.print(f"[red]FAIL[/red] {result.name}: {result.detail}")

    # Checks

    def check_container_status(self) -> CheckResult:
        name = "container_status"
        if self.runtime.container_running(self.container):
            return CheckResult(name, True, "Container is running")
        if self.runtime.container_exists(self.container):
            return CheckResult(name, False, f"Container {self.container} exists but is not running")
        return CheckResult(name, False, f"Container {self.container} does not exist")

    def check_postgres_ready(self) -> CheckResult:
        ready = self.runtime.is_ready(self.container, self.settings.postgres_user)
        return CheckResult(
            "postgres_ready", ready, "PostgreSQL is ready" if ready else "PostgreSQL is not ready"
        )

    def check_superuser_connection(self) -> CheckResult:
        admin = self.settings.admin
        ok = self.database.succeeds(
            admin, "SELECT 'Superuser: ' || current_user || ' -> ' || current_database();"
        )
        detail = f"{admin.user} -> {admin.database}"
        return CheckResult("superuser_connection", ok, detail if ok else f"Connection failed: {detail}")

    def check_app_user_connection(self) -> CheckResult:
        app = self.settings.app
        ok = self.database.succeeds(
            app, "SELECT 'App user: ' || current_user || ' -> ' || current_database();"
        )
        detail = f"{app.user} -> {app.database}"
        return CheckResult("app_user_connection", ok, detail if ok else f"Connection failed: {detail}")

    def check_password_encryption(self) -> CheckResult:
        actual = self.database.show_setting(self.settings.admin, "password_encryption") or "unknown"
        ok = actual == PASSWORD_ENCRYPTION
        return CheckResult(
            "password_encryption",
            ok,
            f"{actual}" if ok else f"Password encryption: {actual} (expected: {PASSWORD_ENCRYPTION})",
        )

    def check_health_script(self) -> CheckResult:
        result = self.runtime.exec(self.container, ["bash", HEALTH_CHECK_SCRIPT])
        ok = result.returncode == 0
        return CheckResult(
            "health_check", ok, "Health check script working" if ok else "Health check script failed"
        )

    def check_backup_script(self) -> CheckResult:
        result = self.runtime.exec(self.container, ["test", "-x", BACKUP_SCRIPT])
        ok = result.returncode == 0
        return CheckResult(
            "backup_script",
            ok,
            "Backup script is available and executable"
            if ok
            else "Backup script not available or not executable",
        )

    def check_network(self) -> CheckResult:
        name = "network_connectivity"
        network = self.settings.network_name
        networks = self.runtime.container_networks(self.container)
        if network not in networks:
            return CheckResult(
                name,
                False,
                f"Container not connected to {network} (connected: {' '.join(networks) or 'none'})",
            )

        if not self.sibling_probe:
            return CheckResult(name, True, f"Connected to {network}")

        reachable = self.runtime.run_ephemeral(
            PROBE_IMAGE,
            ["--network", network],
            [
                "sh",
                "-c",
                "apk add --no-cache postgresql-client > /dev/null 2>&1 && "
                f"pg_isready -h {self.container} -p {POSTGRES_PORT} -U {self.settings.postgres_user}",
            ],
        )
        if reachable:
            return CheckResult(name, True, f"Connected to {network}, sibling connectivity working")
        return CheckResult(name, False, f"Sibling container could not reach {self.container} on {network}")

    def check_data_persistence(self) -> CheckResult:
        name = "data_persistence"
        admin = self.settings.admin
        table = f"test_persistence_{int(time.time())}_{uuid.uuid4().hex[:6]}"

        created = self.database.succeeds(
            admin,
            f"CREATE TABLE IF NOT EXISTS {table} "
            "(id SERIAL PRIMARY KEY, test_data TEXT, created_at TIMESTAMP DEFAULT NOW()); "
            f"INSERT INTO {table} (test_data) VALUES ('persistence_test_data');",
        )
        if not created:
            return CheckResult(name, False, "Couldn't create test table")

        count = self.database.scalar(admin, f"SELECT COUNT(*) FROM {table};")
        dropped = self.database.succeeds(admin, f"DROP TABLE {table};")
        result = CheckResult(name, False, "No data found")
        if count and count.isdigit() and int(count) > 0:
            result = CheckResult(name, True, f"Round trip through {table} succeeded")
        if not dropped:
            result.warnings.append(f"Could not drop test table {table}")
        return result

    def check_configuration(self) -> CheckResult:
        warnings: List[str] = []
        for setting, expected in EXPECTED_SETTINGS:
            actual = self.database.show_setting(self.settings.admin, setting)
            if actual == expected:
                self.logger.info("%s: %s", setting, actual)
            else:
                warnings.append(f"{setting}: {actual} (expected: {expected})")

        detail = "Configuration matches" if not warnings else "Some configuration values are unexpected"
        return CheckResult("configuration", True, detail, warnings=warnings)

    def check_dual_user_setup(self) -> CheckResult:
        name = "dual_user_setup"
        admin = self.settings.admin
        app = self.settings.app

        user_count = self.database.scalar(
            admin,
            "SELECT COUNT(*) FROM pg_roles WHERE rolname IN "
            f"({quote_literal(admin.user)}, {quote_literal(app.user)});",
        )
        if user_count != "2":
            return CheckResult(name, False, f"Missing users (found: {user_count or 0}, expected: 2)")

        db_count = self.database.scalar(
            admin,
            "SELECT COUNT(*) FROM pg_database WHERE datname IN "
            f"({quote_literal(admin.database)}, {quote_literal(app.database)});",
        )
        if db_count != "2":
            return CheckResult(name, False, f"Missing databases (found: {db_count or 0}, expected: 2)")

        can_create = self.database.succeeds(
            app,
            "CREATE TABLE IF NOT EXISTS test_permissions (id SERIAL PRIMARY KEY, data TEXT); "
            "INSERT INTO test_permissions (data) VALUES ('permission_test'); "
            "SELECT COUNT(*) FROM test_permissions; "
            "DROP TABLE test_permissions;",
        )
        if not can_create:
            return CheckResult(name, False, "App user lacks table creation permissions")

        is_superuser = self.database.scalar(
            admin, f"SELECT rolsuper FROM pg_roles WHERE rolname = {quote_literal(admin.user)};"
        )
        if is_superuser != "t":
            return CheckResult(name, False, f"{admin.user} lacks superuser privileges")

        result = CheckResult(name, True, "Dual user setup verified")
        if self.database.succeeds(app, "SELECT 1;", database=admin.database):
            message = f"App user can access superuser database {admin.database} (security concern)"
            if self.strict_privileges:
                return CheckResult(name, False, message)
            result.warnings.append(message)
        return result

    def print_status(self):
        """Deployment status summary: container row, usage, mounts and recent logs."""
        self.console.print("[bold]Deployment Status Summary[/bold]")
        running = self.runtime.container_running(self.container)
        self.console.print(f"Container {self.container}: {'running' if running else 'not running'}")
        stats = self.runtime.stats(self.container)
        self.console.print(stats or "[yellow]Unable to get resource stats[/yellow]")
        mounts = self.runtime.container_mounts(self.container)
        self.console.print(mounts or "[yellow]Unable to get volume information[/yellow]")
        logs = self.runtime.logs(self.container, tail=10)
        self.console.print(logs or "[yellow]Unable to get container logs[/yellow]")
        if running:
            self.print_initialization_state()

    def print_initialization_state(self) -> bool:
        """Show the sentinel state and the init scripts and data directory contents."""
        self.console.print("[bold]Initialization State[/bold]")
        initialized = self.runtime.exec(self.container, ["test", "-f", SENTINEL_FILE]).returncode == 0
        if initialized:
            self.console.print(f"[green]Sentinel {SENTINEL_FILE} present: initialization completed.[/green]")
        else:
            self.console.print(f"[yellow]Sentinel {SENTINEL_FILE} missing: initialization pending.[/yellow]")

        for title, directory in (("Init scripts", INITDB_DIR), ("Data directory", DATA_DIR)):
            listing = self.runtime.exec(self.container, ["ls", "-la", directory], user="postgres")
            self.console.print(f"{title} ({directory}):")
            if listing.returncode == 0:
                self.console.print((listing.stdout or "").strip() or "(empty)", markup=False)
            else:
                self.console.print(f"[yellow]Unable to list {directory}[/yellow]")
        return initialized
