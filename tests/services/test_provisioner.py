from dbstack.models import NetworkDescriptor, VolumeDescriptor
from dbstack.services.docker_runtime import DockerRuntimeService
from dbstack.services.provisioner import ResourceProvisioner


def _provisioner(fake_docker, dummy_logger, dummy_console):
    runtime = DockerRuntimeService(logger=dummy_logger, console=dummy_console, run_cmd=fake_docker)
    return ResourceProvisioner(logger=dummy_logger, console=dummy_console, runtime=runtime)


def test_ensure_network_is_idempotent(fake_docker, dummy_logger, dummy_console):
    provisioner = _provisioner(fake_docker, dummy_logger, dummy_console)
    network = NetworkDescriptor(name="app-network")

    assert provisioner.ensure_network(network) is True
    assert provisioner.ensure_network(network) is False

    assert len(fake_docker.calls_starting_with("docker", "network", "create")) == 1
    assert "Network app-network already exists." in dummy_console.text


def test_ensure_network_passes_subnet(fake_docker, dummy_logger, dummy_console):
    provisioner = _provisioner(fake_docker, dummy_logger, dummy_console)

    provisioner.ensure_network(NetworkDescriptor(name="backend", subnet="172.30.0.0/16"))

    create = fake_docker.calls_starting_with("docker", "network", "create")[0]
    assert create == ["docker", "network", "create", "--driver", "bridge", "--subnet", "172.30.0.0/16", "backend"]


def test_ensure_volume_is_idempotent(fake_docker, dummy_logger, dummy_console):
    provisioner = _provisioner(fake_docker, dummy_logger, dummy_console)
    volume = VolumeDescriptor()

    assert provisioner.ensure_volume(volume) is True
    assert provisioner.ensure_volume(volume) is False

    assert fake_docker.volumes == {"postgres11_prod_data"}
    assert len(fake_docker.calls_starting_with("docker", "volume", "create")) == 1
