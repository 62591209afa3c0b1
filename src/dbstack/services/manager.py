"""Lifecycle management commands for the running PostgreSQL instance."""

from enum import Enum
from typing import Callable, Dict, List, Optional

import click

from dbstack.constants import ADMIN_ALIASES, BACKUP_SCRIPT, POSTGRES_PORT
from dbstack.errors import StackError
from dbstack.errors_catalog import actionable_error
from dbstack.models import StackSettings


class ManagementCommand(str, Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    STATUS = "status"
    REMOVE = "remove"
    LOGS = "logs"
    SHELL = "shell"
    CONNECT = "connect"
    BACKUP = "backup"

    @classmethod
    def parse(cls, keyword: str) -> "ManagementCommand":
        try:
            return cls(keyword.strip().lower())
        except ValueError:
            raise StackError(
                f"Unknown command: {keyword}. Valid commands: {', '.join(item.value for item in cls)}"
            ) from None


class ManagementService:
    """Dispatches management keywords to handlers acting on the existing instance."""

    def __init__(
        self,
        logger,
        console,
        runtime,
        settings: StackSettings,
        confirm: Callable[[str], bool] = click.confirm,
    ):
        self.logger = logger
        self.console = console
        self.runtime = runtime
        self.settings = settings
        self.confirm = confirm
        self.follow_logs = False
        self.log_tail: Optional[int] = None
        self.handlers: Dict[ManagementCommand, Callable[[List[str]], int]] = {
            ManagementCommand.START: self.start,
            ManagementCommand.STOP: self.stop,
            ManagementCommand.RESTART: self.restart,
            ManagementCommand.STATUS: self.status,
            ManagementCommand.REMOVE: self.remove,
            ManagementCommand.LOGS: self.logs,
            ManagementCommand.SHELL: self.shell,
            ManagementCommand.CONNECT: self.connect,
            ManagementCommand.BACKUP: self.backup,
        }

    @property
    def container(self) -> str:
        return self.settings.container_name

    def dispatch(self, keyword: str, args: Optional[List[str]] = None) -> int:
        command = ManagementCommand.parse(keyword)
        self.logger.debug("Dispatching management command: %s", command.value)
        return self.handlers[command](list(args or []))

    def _require_exists(self):
        if not self.runtime.container_exists(self.container):
            raise StackError(actionable_error("container_missing", name=self.container))

    def _require_running(self):
        if not self.runtime.container_running(self.container):
            raise StackError(actionable_error("container_not_running", name=self.container))

    def start(self, args: List[str]) -> int:
        self._require_exists()
        if self.runtime.container_running(self.container):
            self.console.print(f"[yellow]Container {self.container} is already running.[/yellow]")
            return 0

        self.console.print(f"[blue]Starting container {self.container}...[/blue]")
        self.runtime.start_container(self.container)
        self.console.print(f"[green]Container {self.container} started.[/green]")
        return 0

    def stop(self, args: List[str]) -> int:
        if not self.runtime.container_running(self.container):
            self.console.print(f"[yellow]Container {self.container} is not running.[/yellow]")
            return 0

        self.console.print(f"[blue]Stopping container {self.container}...[/blue]")
        self.runtime.stop_container(self.container)
        self.console.print(f"[green]Container {self.container} stopped.[/green]")
        return 0

    def restart(self, args: List[str]) -> int:
        self.stop(args)
        return self.start(args)

    def status(self, args: List[str]) -> int:
        self.console.print("[bold]PostgreSQL Container Status[/bold]")

        running = self.runtime.container_running(self.container)
        if running:
            self.console.print(f"[green]Container {self.container} is running.[/green]")
        elif self.runtime.container_exists(self.container):
            self.console.print(f"[yellow]Container {self.container} exists but is stopped.[/yellow]")
        else:
            self.console.print(f"[red]Container {self.container} does not exist.[/red]")

        network = self.settings.network_name
        if self.runtime.network_exists(network):
            members = self.runtime.network_containers(network)
            self.console.print(f"Network {network}: {len(members)} connected container(s)")
        else:
            self.console.print(f"[red]Network {network} does not exist.[/red]")

        if self.runtime.volume_exists(self.settings.volume_name):
            self.console.print(f"Volume {self.settings.volume_name}: present")
        else:
            self.console.print(f"[red]Volume {self.settings.volume_name} does not exist.[/red]")

        if running:
            if self.runtime.is_ready(self.container, self.settings.postgres_user):
                self.console.print("[green]PostgreSQL is accepting connections.[/green]")
            else:
                self.console.print("[red]PostgreSQL is not responding.[/red]")
        return 0

    def remove(self, args: List[str]) -> int:
        self.console.print(
            "[yellow]This will remove the container and optionally the network and volume.[/yellow]"
        )

        if self.runtime.container_exists(self.container):
            if self.confirm(f"Remove container {self.container}?"):
                self.runtime.stop_container(self.container, check=False)
                self.runtime.remove_container(self.container, check=False)
                self.console.print(f"[green]Container {self.container} removed.[/green]")

        network = self.settings.network_name
        if self.runtime.network_exists(network):
            if self.confirm(f"Remove network {network}? (may affect other containers)"):
                self.runtime.remove_network(network, check=False)
                self.console.print(f"[green]Network {network} removed.[/green]")

        volume = self.settings.volume_name
        if self.runtime.volume_exists(volume):
            if self.confirm(f"Remove volume {volume}? (all data will be lost)"):
                if self.confirm("Are you absolutely sure? This cannot be undone."):
                    self.runtime.remove_volume(volume, check=False)
                    self.console.print(f"[green]Volume {volume} removed.[/green]")
        return 0

    def logs(self, args: List[str]) -> int:
        self._require_exists()
        self.runtime.logs(
            self.container,
            tail=self.log_tail,
            follow=self.follow_logs,
            capture_output=False,
        )
        return 0

    def shell(self, args: List[str]) -> int:
        self._require_running()
        self.console.print(f"[blue]Opening shell in {self.container}...[/blue]")
        result = self.runtime.exec(self.container, ["bash"], interactive=True, capture_output=False)
        return result.returncode

    def connect(self, args: List[str]) -> int:
        self._require_running()
        target = args[0].lower() if args else ""
        principal = self.settings.admin if target in ADMIN_ALIASES else self.settings.app

        self.console.print(f"[blue]Connecting as {principal.user} to {principal.database}...[/blue]")
        result = self.runtime.exec(
            self.container,
            ["psql", "-h", "localhost", "-p", str(POSTGRES_PORT), "-U", principal.user, "-d", principal.database],
            env={"PGPASSWORD": principal.password},
            interactive=True,
            capture_output=False,
        )
        return result.returncode

    def backup(self, args: List[str]) -> int:
        self._require_running()
        self.console.print("[blue]Running database backup...[/blue]")
        self.runtime.exec(
            self.container,
            ["bash", BACKUP_SCRIPT],
            env={"POSTGRES_PASSWORD": self.settings.postgres_password},
            check=True,
            capture_output=False,
        )
        self.console.print("[green]Backup completed.[/green]")
        return 0
