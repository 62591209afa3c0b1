"""Idempotent network and volume provisioning."""

from dbstack.models import NetworkDescriptor, VolumeDescriptor


class ResourceProvisioner:
    """Creates the shared network and data volume when they are absent."""

    def __init__(self, logger, console, runtime):
        self.logger = logger
        self.console = console
        self.runtime = runtime

    def ensure_network(self, network: NetworkDescriptor) -> bool:
        self.logger.info("Ensuring Docker network for sibling containers: %s", network.name)

        if self.runtime.network_exists(network.name):
            self.console.print(f"[blue]Network {network.name} already exists.[/blue]")
            created = False
        else:
            self.runtime.create_network(network.name, driver=network.driver, subnet=network.subnet)
            self.console.print(f"[green]Network {network.name} created.[/green]")
            created = True

        details = self.runtime.network_details(network.name)
        if details:
            self.logger.info("Network details: %s", details)
        return created

    def ensure_volume(self, volume: VolumeDescriptor) -> bool:
        self.logger.info("Ensuring Docker volume for data persistence: %s", volume.name)

        if self.runtime.volume_exists(volume.name):
            self.console.print(f"[blue]Volume {volume.name} already exists.[/blue]")
            created = False
        else:
            self.runtime.create_volume(volume.name)
            self.console.print(f"[green]Volume {volume.name} created.[/green]")
            created = True

        mountpoint = self.runtime.volume_mountpoint(volume.name)
        if mountpoint:
            self.logger.info("Volume mountpoint: %s", mountpoint)
        return created
