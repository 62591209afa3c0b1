"""Destructive-replace deployment of the production container."""

from dbstack.constants import DATA_DIR, DEPLOY_READY_ATTEMPTS, DEPLOY_READY_INTERVAL
from dbstack.models import StackSettings


class DeployerService:
    """Replaces the named instance with a fresh container from the registry image."""

    def __init__(
        self,
        logger,
        console,
        runtime,
        ready_attempts: int = DEPLOY_READY_ATTEMPTS,
        ready_interval: float = DEPLOY_READY_INTERVAL,
    ):
        self.logger = logger
        self.console = console
        self.runtime = runtime
        self.ready_attempts = ready_attempts
        self.ready_interval = ready_interval

    def remove_existing(self, name: str) -> bool:
        if not self.runtime.container_exists(name):
            self.logger.info("No existing container found: %s", name)
            return False

        self.logger.info("Stopping and removing existing container: %s", name)
        self.runtime.stop_container(name, check=False)
        self.runtime.remove_container(name, check=False)
        self.console.print(f"[green]Existing container {name} cleaned up.[/green]")
        return True

    def pull_image(self, settings: StackSettings):
        image = str(settings.image)
        self.console.print(f"[blue]Pulling image: {image}[/blue]")
        self.runtime.pull(image)

    def run_options(self, settings: StackSettings):
        options = [
            "--network",
            settings.network_name,
            "--restart",
            settings.restart_policy,
            "-v",
            f"{settings.volume_name}:{DATA_DIR}",
        ]
        env = (
            ("POSTGRES_USER", settings.postgres_user),
            ("POSTGRES_PASSWORD", settings.postgres_password),
            ("POSTGRES_DB", settings.postgres_db),
            ("APP_USER", settings.app_user),
            ("APP_PASSWORD", settings.app_password),
            ("APP_DATABASE", settings.app_database),
            ("PGUSER", settings.postgres_user),
        )
        for key, value in env:
            options.extend(["-e", f"{key}={value}"])
        return options + settings.health_policy.as_run_args()

    def start_container(self, settings: StackSettings):
        self.logger.info(
            "Deploying %s from %s on network %s with volume %s",
            settings.container_name,
            settings.image,
            settings.network_name,
            settings.volume_name,
        )
        self.runtime.run_container(settings.container_name, str(settings.image), self.run_options(settings))
        self.console.print(f"[green]Container {settings.container_name} created.[/green]")

    def wait_until_ready(self, settings: StackSettings):
        return self.runtime.wait_until_ready(
            settings.container_name,
            settings.postgres_user,
            max_attempts=self.ready_attempts,
            interval=self.ready_interval,
        )
