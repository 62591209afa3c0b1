import logging
import subprocess
import uuid
from typing import Callable, Iterable, List, Optional

import click
from rich.console import Console

from .constants import (
    BUILD_REQUIRED_KEYS,
    DEFAULT_CONTEXT_DIR,
    DEPLOY_READY_ATTEMPTS,
    DEPLOY_READY_INTERVAL,
    DEPLOY_REQUIRED_KEYS,
    POSTGRES_PORT,
    PUSH_REQUIRED_KEYS,
    VERIFY_REQUIRED_KEYS,
)
from .errors import ReadinessTimeoutError, StackError
from .errors_catalog import actionable_error
from .models import StackSettings
from .services.build_context import BuildContextService
from .services.cleanup import CleanupService
from .services.command_runner import CommandRunner
from .services.compose import ComposeService
from .services.database import DatabaseService
from .services.deployer import DeployerService
from .services.docker_runtime import DockerRuntimeService
from .services.env_loader import EnvironmentLoader
from .services.image_builder import ImageBuilderService
from .services.initializer import InitializationService
from .services.manager import ManagementService
from .services.manifest import ManifestService
from .services.provisioner import ResourceProvisioner
from .services.verifier import VerifierService

console = Console()
logger = logging.getLogger("dbstack")


class PostgresStack:
    """Workflow facade: build, publish, deploy, verify and operate the PostgreSQL 11 instance."""

    def __init__(
        self,
        settings: Optional[StackSettings] = None,
        manifest_file: Optional[str] = None,
        readiness_attempts: int = DEPLOY_READY_ATTEMPTS,
        readiness_interval: float = DEPLOY_READY_INTERVAL,
        confirm: Callable[[str], bool] = click.confirm,
        prompt: Callable[[str], str] = click.prompt,
    ):
        self.settings = settings or StackSettings()
        self.manifest_file = manifest_file
        self.confirm = confirm
        self.prompt = prompt
        self.current_step_name: Optional[str] = None
        self.manifest_service = ManifestService(manifest_file=manifest_file, logger=logger)

        self.command_runner = CommandRunner(logger=logger)
        self.env_loader = EnvironmentLoader(logger=logger)
        self.runtime = DockerRuntimeService(logger=logger, console=console, run_cmd=self._run_cmd)
        self.database = self._database_for(self.settings.container_name)
        self.provisioner = ResourceProvisioner(logger=logger, console=console, runtime=self.runtime)
        self.context_service = BuildContextService(logger=logger, console=console)
        self.builder = ImageBuilderService(
            logger=logger,
            console=console,
            runtime=self.runtime,
            run_cmd=self._run_cmd,
            database_factory=self._database_for,
        )
        self.deployer = DeployerService(
            logger=logger,
            console=console,
            runtime=self.runtime,
            ready_attempts=readiness_attempts,
            ready_interval=readiness_interval,
        )
        self.initializer = InitializationService(
            logger=logger,
            console=console,
            runtime=self.runtime,
            database=self.database,
            container_name=self.settings.container_name,
        )

    def _run_cmd(self, cmd: List[str], **kwargs) -> subprocess.CompletedProcess:
        return self.command_runner.run(cmd, **kwargs)

    def _database_for(self, container_name: str) -> DatabaseService:
        return DatabaseService(logger=logger, runtime=self.runtime, container_name=container_name)

    def _run_step(self, name: str, callback, *args, **kwargs):
        self.manifest_service.step_started(name)
        self.current_step_name = name

        try:
            result = callback(*args, **kwargs)
        except Exception as exc:
            self.manifest_service.step_finished(name, "failed", error=str(exc))
            raise

        self.manifest_service.step_finished(name, "success")
        self.current_step_name = None
        return result

    def _execute(self, workflow: str, callback, *args, **kwargs) -> int:
        manifest_status = "failed"
        manifest_error: Optional[str] = None
        run_id = uuid.uuid4().hex[:10]
        image = str(self.settings.image) if self.settings.image_name else None

        try:
            logger.debug("Starting %s workflow (run %s)", workflow, run_id)
            self.manifest_service.start_run(run_id=run_id, workflow=workflow, image=image)
            result = callback(*args, **kwargs)
            exit_code = result if isinstance(result, int) else 0
            manifest_status = "success" if exit_code == 0 else "failed"
            return exit_code

        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            manifest_status = "aborted"
            manifest_error = "Operation cancelled by user."
            return 1
        except StackError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            manifest_error = str(exc)
            return 1
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            manifest_error = str(exc)
            return 1
        finally:
            self.manifest_service.finalize(manifest_status, error=manifest_error)

    def validate_environment(self, required_keys: Iterable[str]):
        self.env_loader.validate(self.settings, required_keys)

    def require_running(self):
        name = self.settings.container_name
        if not self.runtime.container_running(name):
            raise StackError(actionable_error("container_not_running", name=name))

    # Image workflows

    def _build_steps(self, test_image: bool, context_dir: str):
        self._run_step("validate_environment", self.validate_environment, BUILD_REQUIRED_KEYS)
        self._run_step("validate_version", self.env_loader.validate_version, self.settings)
        self._run_step("validate_build_files", self.builder.validate_files, context_dir)
        info = self._run_step("build_info", self.builder.build_info, self.settings, context_dir)
        tags = self._run_step("build_image", self.builder.build, self.settings, info, context_dir)
        self.manifest_service.add_artifact("tags", tags)
        self.manifest_service.add_artifact("git_commit", info.git_commit)

        if test_image:
            self._run_step("smoke_test", self.builder.smoke_test, self.settings)

        console.print("[bold green]Build completed successfully.[/bold green]")
        for tag in tags:
            console.print(f"  {tag}")
        console.print("Next: run `dbstack push` to publish the image.")

    def _push_steps(self, force: bool):
        self._run_step("validate_environment", self.validate_environment, PUSH_REQUIRED_KEYS)
        self._run_step("check_login", self.builder.check_login, self.settings)
        self._run_step("verify_image_exists", self.builder.verify_image_exists, self.settings.image)
        tags = self._run_step("list_local_tags", self.builder.local_tags, self.settings.image)

        result = self._run_step("push_tags", self.builder.push_all, tags)
        self.manifest_service.add_artifact("pushed", result.pushed)
        if not result.success:
            raise StackError(
                actionable_error("push_failed", count=str(len(result.failed)), tags=", ".join(result.failed))
            )
        console.print(f"[green]Pushed {len(result.pushed)} tag(s).[/green]")

        if force:
            logger.info("Skipping registry verification (--force).")
        else:
            self._run_step("verify_pushed", self.builder.verify_pushed, self.settings.image)

        console.print("[bold green]Push completed successfully.[/bold green]")
        console.print(f"Pull with: docker pull {self.settings.image}")

    def build(self, test_image: bool = False, context_dir: str = DEFAULT_CONTEXT_DIR) -> int:
        return self._execute("build", self._build_steps, test_image, context_dir)

    def push(self, force: bool = False) -> int:
        return self._execute("push", self._push_steps, force)

    def publish(self, context_dir: str = DEFAULT_CONTEXT_DIR) -> int:
        def steps():
            self._build_steps(True, context_dir)
            self._push_steps(False)

        return self._execute("publish", steps)

    # Deployment workflows

    def _wait_for_ready(self):
        try:
            return self.deployer.wait_until_ready(self.settings)
        except ReadinessTimeoutError as exc:
            if exc.logs:
                console.print("[red]Recent container logs:[/red]")
                console.print(exc.logs, markup=False, highlight=False)
            raise

    def _deploy_steps(self, test: bool):
        self._run_step("validate_environment", self.validate_environment, DEPLOY_REQUIRED_KEYS)
        self._run_step("ensure_network", self.provisioner.ensure_network, self.settings.network)
        self._run_step("ensure_volume", self.provisioner.ensure_volume, self.settings.volume)
        self._run_step("remove_existing", self.deployer.remove_existing, self.settings.container_name)
        self._run_step("pull_image", self.deployer.pull_image, self.settings)
        self._run_step("start_container", self.deployer.start_container, self.settings)
        self._run_step("wait_until_ready", self._wait_for_ready)
        self._run_step("initialize", self.initializer.initialize, self.settings)

        if test:
            self._verify_steps("basic", status=False, sibling_probe=True, strict_privileges=False)

        self.print_connection_info()

    def _verify_steps(self, profile: str, status: bool, sibling_probe: bool, strict_privileges: bool):
        self._run_step("validate_environment", self.validate_environment, VERIFY_REQUIRED_KEYS)
        verifier = VerifierService(
            logger=logger,
            console=console,
            runtime=self.runtime,
            database=self.database,
            settings=self.settings,
            sibling_probe=sibling_probe,
            strict_privileges=strict_privileges,
        )
        report = self._run_step(f"verify_{profile}", verifier.run, profile)
        self.manifest_service.add_artifact(
            "verification",
            {"passed": report.passed, "failed": report.failed, "warnings": report.warnings},
        )
        if status:
            verifier.print_status()
        if report.failed:
            raise StackError(f"{report.failed} verification check(s) failed.")

    def deploy(self, test: bool = False) -> int:
        return self._execute("deploy", self._deploy_steps, test)

    def verify(
        self,
        profile: str = "basic",
        status: bool = False,
        sibling_probe: bool = True,
        strict_privileges: bool = False,
    ) -> int:
        return self._execute("verify", self._verify_steps, profile, status, sibling_probe, strict_privileges)

    def full_deploy(self) -> int:
        def steps():
            self._deploy_steps(test=True)
            self._verify_steps("full", status=False, sibling_probe=True, strict_privileges=False)

        return self._execute("full-deploy", steps)

    def print_connection_info(self):
        settings = self.settings
        console.print("[bold green]PostgreSQL 11 deployed successfully.[/bold green]")
        console.print(f"Container: {settings.container_name}")
        console.print(f"Network: {settings.network_name}")
        console.print(f"Volume: {settings.volume_name}")
        console.print("Connection from containers on the same network:")
        console.print(f"  Host: {settings.container_name}  Port: {POSTGRES_PORT}")
        console.print(f"  Superuser: {settings.postgres_user} -> {settings.postgres_db}")
        console.print(f"  App user: {settings.app_user} -> {settings.app_database}")
        console.print(
            f"  Example: docker run --network {settings.network_name} your-app-image"
        )
        console.print("Management: dbstack manage status|logs|connect|backup")

    # Operations on the existing instance

    def initialize(self) -> int:
        def steps():
            self._run_step("validate_environment", self.validate_environment, DEPLOY_REQUIRED_KEYS)
            self._run_step("require_running", self.require_running)
            self._run_step("initialize", self.initializer.initialize, self.settings)

        return self._execute("init", steps)

    def summary(self) -> int:
        def steps():
            self.validate_environment(DEPLOY_REQUIRED_KEYS)
            self.require_running()
            data = self.database.summary(self.settings.admin, self.settings.app)
            console.print("[bold]PostgreSQL Database Summary[/bold]")
            sections = (
                ("Databases", data["databases"]),
                (f"Tables in {self.settings.postgres_db}", data["admin_tables"]),
                (f"Tables in {self.settings.app_database}", data["app_tables"]),
                ("User accounts", data["roles"]),
            )
            for title, rows in sections:
                console.print(f"[blue]{title}:[/blue]")
                for row in rows or ["(none)"]:
                    console.print(f"  {row}", markup=False)

        return self._execute("summary", steps)

    def manage(
        self,
        keyword: str,
        args: Optional[List[str]] = None,
        follow: bool = False,
        tail: Optional[int] = None,
    ) -> int:
        manager = ManagementService(
            logger=logger,
            console=console,
            runtime=self.runtime,
            settings=self.settings,
            confirm=self.confirm,
        )
        manager.follow_logs = follow
        manager.log_tail = tail
        return self._execute("manage", manager.dispatch, keyword, args)

    def cleanup(self, force: bool = False) -> int:
        service = CleanupService(
            logger=logger,
            console=console,
            runtime=self.runtime,
            settings=self.settings,
            prompt=self.prompt,
        )

        def steps():
            self.validate_environment(PUSH_REQUIRED_KEYS)
            service.run(force=force)

        return self._execute("cleanup", steps)

    # Local files and the compose stack

    def write_context(self, context_dir: str, overwrite: bool = False) -> int:
        return self._execute("context", self.context_service.write, context_dir, overwrite)

    def compose(self, action: str, compose_file: str, env_file: str, services: Iterable[str] = ()) -> int:
        service = ComposeService(
            logger=logger,
            console=console,
            run_cmd=self._run_cmd,
            env_loader=self.env_loader,
        )
        return self._execute("compose", service.run, action, compose_file, env_file, tuple(services))
