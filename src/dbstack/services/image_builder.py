"""Image build, smoke test and registry publishing for dbstack."""

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List

from dbstack.constants import (
    BUILD_FILES,
    HEALTH_CHECK_SCRIPT,
    PASSWORD_ENCRYPTION,
    SMOKE_READY_ATTEMPTS,
    SMOKE_READY_INTERVAL,
)
from dbstack.errors import ConfigurationError, ReadinessTimeoutError, StackError
from dbstack.errors_catalog import actionable_error
from dbstack.models import BuildInfo, ImageReference, PushResult, StackSettings


class ImageBuilderService:
    """Builds the hardened image, smoke tests it and pushes every local tag."""

    BUILD_ARG_KEYS = (
        "POSTGRES_USER",
        "POSTGRES_PASSWORD",
        "POSTGRES_DB",
        "APP_USER",
        "APP_PASSWORD",
        "APP_DATABASE",
    )

    def __init__(self, logger, console, runtime, run_cmd: Callable, database_factory: Callable):
        self.logger = logger
        self.console = console
        self.runtime = runtime
        self.run_cmd = run_cmd
        self.database_factory = database_factory

    def validate_files(self, context_dir: str):
        self.logger.info("Validating required build files in %s", context_dir)
        for relative in BUILD_FILES:
            if not (Path(context_dir) / relative).is_file():
                raise ConfigurationError(
                    actionable_error("build_file_missing", path=relative, context_dir=context_dir)
                )

    def build_info(self, settings: StackSettings, context_dir: str = ".") -> BuildInfo:
        now = datetime.now(timezone.utc)
        commit = ""
        try:
            result = self.run_cmd(
                ["git", "-C", context_dir, "rev-parse", "--short", "HEAD"],
                check=False,
                capture_output=True,
            )
        except StackError as exc:
            # Hosts without git still build; the commit is recorded as unknown.
            self.logger.debug("Git commit unavailable: %s", exc)
        else:
            if result.returncode == 0:
                commit = (result.stdout or "").strip()
        info = BuildInfo(
            build_date=now.strftime("%Y%m%d"),
            build_timestamp=now.strftime("%Y-%m-%dT%H:%M:%SZ"),
            git_commit=commit or "unknown",
            version=settings.version,
        )
        self.logger.info(
            "Build date: %s, timestamp: %s, commit: %s, version: %s",
            info.build_date,
            info.build_timestamp,
            info.git_commit,
            info.version,
        )
        return info

    def image_tags(self, image: ImageReference, info: BuildInfo) -> List[str]:
        tags = []
        for tag in (image.tag, info.version, info.build_date):
            reference = image.tagged(tag)
            if reference not in tags:
                tags.append(reference)
        return tags

    def build(self, settings: StackSettings, info: BuildInfo, context_dir: str) -> List[str]:
        tags = self.image_tags(settings.image, info)
        self.console.print(f"[blue]Building Docker image: {tags[0]}[/blue]")
        for extra in tags[1:]:
            self.logger.info("Also tagged as %s", extra)

        cmd = ["docker", "build"]
        for key in self.BUILD_ARG_KEYS:
            cmd.extend(["--build-arg", f"{key}={settings.get(key)}"])
        cmd.extend(["--build-arg", f"BUILD_DATE={info.build_date}"])
        cmd.extend(["--build-arg", f"VERSION={info.version}"])
        for tag in tags:
            cmd.extend(["-t", tag])
        cmd.append(context_dir)

        self.run_cmd(cmd, check=True, capture_output=False)
        self.console.print("[green]Docker image built successfully.[/green]")
        return tags

    def smoke_test(self, settings: StackSettings):
        """Validate the image in a disposable container that is always removed."""
        container = f"postgres_test_{int(time.time())}"
        volume = f"{container}_data"
        image = str(settings.image)
        self.console.print(f"[blue]Testing image in ephemeral container {container}...[/blue]")

        options = ["-v", f"{volume}:/var/lib/postgresql/data"]
        for key in self.BUILD_ARG_KEYS:
            options.extend(["-e", f"{key}={settings.get(key)}"])
        options.extend(
            [
                "-e",
                f"POSTGRES_INITDB_ARGS=--auth-host={PASSWORD_ENCRYPTION} --auth-local={PASSWORD_ENCRYPTION}",
            ]
        )

        try:
            self.runtime.run_container(container, image, options)
            try:
                self.runtime.wait_until_ready(
                    container,
                    "postgres",
                    max_attempts=SMOKE_READY_ATTEMPTS,
                    interval=SMOKE_READY_INTERVAL,
                    require_running=True,
                    progress_logs=True,
                )
            except ReadinessTimeoutError as exc:
                self.logger.error("Container state: %s", self.runtime.container_state(container))
                self.logger.error("Container logs:\n%s", exc.logs or self.runtime.logs(container))
                raise

            database = self.database_factory(container)
            if not database.succeeds(settings.admin, "SELECT current_user, version();"):
                self.logger.error("Container logs:\n%s", self.runtime.logs(container))
                raise StackError("Database connection test failed in the ephemeral container.")
            self.console.print("[green]Database connection test passed.[/green]")

            health = self.runtime.exec(container, ["bash", HEALTH_CHECK_SCRIPT])
            if health.returncode == 0:
                self.console.print("[green]Health check test passed.[/green]")
            else:
                self.console.print("[yellow]Health check test failed, continuing.[/yellow]")
                self.logger.warning("Health check output: %s", (health.stdout or "").strip())
        finally:
            self.logger.info("Cleaning up test container and volume...")
            self.runtime.remove_container(container, force=True, check=False)
            self.runtime.remove_volume(volume, check=False)

        self.console.print("[green]Image testing completed successfully.[/green]")

    def check_login(self, settings: StackSettings):
        result = self.run_cmd(["docker", "info"], check=False, capture_output=True)
        if f"Username: {settings.docker_username}" in (result.stdout or ""):
            self.logger.info("Registry authentication verified for %s", settings.docker_username)
            return

        self.console.print(
            f"[yellow]Not logged in as {settings.docker_username}. Attempting to log in...[/yellow]"
        )
        login = self.run_cmd(["docker", "login"], check=False, capture_output=False)
        if login.returncode != 0:
            raise StackError("Registry login failed. Please run `docker login` and retry.")

    def verify_image_exists(self, image: ImageReference):
        if not self.runtime.image_exists(str(image)):
            raise StackError(actionable_error("image_not_found", image=str(image)))
        self.logger.info("Local image verified: %s", image)

    def local_tags(self, image: ImageReference) -> List[str]:
        tags = self.runtime.image_tags(image.repository)
        if not tags:
            raise StackError(f"No local images found for {image.repository}.")
        return tags

    def push_all(self, tags: List[str]) -> PushResult:
        result = PushResult()
        for tag in tags:
            self.console.print(f"[blue]Pushing: {tag}[/blue]")
            if self.runtime.push(tag):
                self.console.print(f"[green]Pushed: {tag}[/green]")
                result.pushed.append(tag)
            else:
                self.console.print(f"[red]Failed to push: {tag}[/red]")
                result.failed.append(tag)
        return result

    def verify_pushed(self, image: ImageReference):
        reference = str(image)
        # Only a copy that did not exist before the pull is removed afterwards.
        existed_locally = self.runtime.image_exists(reference)
        self.logger.info("Pulling %s to verify registry visibility", reference)
        if not self.runtime.pull(reference, check=False):
            raise StackError(f"Failed to verify {reference} on the registry.")
        self.console.print(f"[green]Image {reference} is available on the registry.[/green]")
        if not existed_locally:
            self.logger.info("Cleaning up verification pull...")
            self.runtime.remove_image(reference, check=False)
