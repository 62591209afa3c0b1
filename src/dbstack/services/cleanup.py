"""Full teardown of the PostgreSQL 11 instance and its artifacts."""

from typing import Callable, Dict, List

import click

from dbstack.models import StackSettings

SMOKE_VOLUME_PREFIX = "postgres_test_"


class CleanupService:
    """Removes containers, volumes, image tags and the network, each best-effort."""

    def __init__(
        self,
        logger,
        console,
        runtime,
        settings: StackSettings,
        prompt: Callable[[str], str] = click.prompt,
    ):
        self.logger = logger
        self.console = console
        self.runtime = runtime
        self.settings = settings
        self.prompt = prompt

    def confirm(self, force: bool) -> bool:
        self.console.print("[yellow]This will PERMANENTLY remove the following:[/yellow]")
        self.console.print(f"  Container: {self.settings.container_name}")
        self.console.print(f"  Volume: {self.settings.volume_name} (ALL DATABASE DATA WILL BE LOST)")
        self.console.print(f"  Images: {self.settings.image.repository}:*")
        self.console.print(f"  Network: {self.settings.network_name} (if no other containers use it)")

        if force:
            self.console.print("[yellow]Force mode enabled, proceeding without confirmation.[/yellow]")
            return True

        answer = self.prompt("Type 'yes' to continue")
        if (answer or "").strip() != "yes":
            self.console.print("[blue]Cleanup cancelled by user.[/blue]")
            return False
        return True

    def remove_containers(self) -> List[str]:
        removed = []
        names = [self.settings.container_name]
        names += [
            name
            for name in self.runtime.containers_from_image(self.settings.image.repository)
            if name != self.settings.container_name
        ]
        for name in names:
            if not self.runtime.container_exists(name):
                self.logger.info("Container %s not found", name)
                continue
            self.console.print(f"[blue]Stopping and removing container: {name}[/blue]")
            self.runtime.stop_container(name, check=False)
            self.runtime.remove_container(name, check=False)
            removed.append(name)
        return removed

    def remove_volumes(self) -> List[str]:
        removed = []
        names = [self.settings.volume_name]
        names += [
            name
            for name in self.runtime.list_volumes(SMOKE_VOLUME_PREFIX)
            if name.startswith(SMOKE_VOLUME_PREFIX)
        ]
        for name in names:
            if not self.runtime.volume_exists(name):
                self.logger.info("Volume %s not found", name)
                continue
            self.console.print(f"[yellow]Removing volume: {name}[/yellow]")
            self.runtime.remove_volume(name, check=False)
            removed.append(name)
        return removed

    def remove_images(self) -> List[str]:
        removed = []
        for tag in self.runtime.image_tags(self.settings.image.repository):
            self.console.print(f"[blue]Removing image: {tag}[/blue]")
            if self.runtime.remove_image(tag, check=False):
                removed.append(tag)
        if not removed:
            self.logger.info("No local images removed for %s", self.settings.image.repository)
        return removed

    def remove_network(self) -> bool:
        network = self.settings.network_name
        if not self.runtime.network_exists(network):
            self.logger.info("Network %s not found", network)
            return False

        attached = self.runtime.network_containers(network)
        if attached:
            self.console.print(
                f"[yellow]Network {network} is still used by: {', '.join(attached)}. Keeping it.[/yellow]"
            )
            return False

        self.runtime.remove_network(network, check=False)
        self.console.print(f"[green]Network {network} removed.[/green]")
        return True

    def run(self, force: bool = False) -> Dict[str, List[str]]:
        if not self.confirm(force):
            return {}

        summary = {
            "containers": self.remove_containers(),
            "volumes": self.remove_volumes(),
            "images": self.remove_images(),
            "networks": [self.settings.network_name] if self.remove_network() else [],
        }
        self.console.print("[bold green]Cleanup completed.[/bold green]")
        return summary
