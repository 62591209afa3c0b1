import subprocess
from typing import Dict, List, Optional, Set

import pytest

from dbstack.constants import DATA_DIR, SENTINEL_FILE
from dbstack.errors import StackError
from dbstack.models import StackSettings

EXEC_FLAGS_WITH_VALUE = {"-u", "-e"}


class DummyLogger:
    def __init__(self):
        self.messages: List[str] = []

    def _record(self, message, *args, **_kwargs):
        self.messages.append(str(message) % args if args else str(message))

    debug = info = warning = error = exception = _record


class DummyConsole:
    def __init__(self):
        self.lines: List[str] = []

    def print(self, *args, **_kwargs):
        self.lines.append(" ".join(str(arg) for arg in args))

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


class FakeDocker:
    """In-memory stand-in for the docker CLI, used as a `run_cmd` callable."""

    def __init__(self, username: str = "acme"):
        self.username = username
        self.calls: List[List[str]] = []
        self.containers: Dict[str, Dict] = {}
        self.networks: Dict[str, List[str]] = {}
        self.volumes: Set[str] = set()
        self.images: Set[str] = set()
        self.sentinels: Set[tuple] = set()
        self.scripts: List[str] = []
        self.sql: List[str] = []
        self.ready_after = 0
        self.ready_checks = 0
        self.push_failures: Set[str] = set()
        self.pull_failures: Set[str] = set()
        self.probe_returncode = 0
        self.sql_responses: Dict[str, str] = {}
        self.sql_failures: Set[str] = set()
        self.denied: Set[tuple] = set()

    def __call__(self, cmd, check=True, capture_output=False, input_text=None, **_kwargs):
        self.calls.append(list(cmd))
        returncode, stdout = self.dispatch(list(cmd), input_text)
        result = subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr="")
        if check and returncode != 0:
            raise StackError(f"Command failed ({returncode}): {' '.join(cmd)}")
        return result

    @property
    def docker_calls(self) -> List[List[str]]:
        return [call for call in self.calls if call and call[0] == "docker"]

    def calls_starting_with(self, *prefix) -> List[List[str]]:
        return [call for call in self.calls if tuple(call[: len(prefix)]) == prefix]

    def add_container(self, name: str, image: str = "", running: bool = True, networks=(), volume=None):
        self.containers[name] = {
            "running": running,
            "image": image,
            "networks": list(networks),
            "volume": volume,
        }
        for network in networks:
            self.networks.setdefault(network, []).append(name)

    def storage_for(self, name: str, path: str) -> str:
        """Files under the data directory live in the mounted volume, if any."""
        volume = self.containers[name].get("volume")
        if volume and path.startswith(DATA_DIR):
            return volume
        return name

    def serve_healthy_postgres(self, settings):
        self.sql_responses.update(
            {
                "SHOW password_encryption": "scram-sha-256",
                "SHOW listen_addresses": "*",
                "SHOW port": "5432",
                "SHOW max_connections": "100",
                "FROM pg_roles WHERE rolname IN": "2",
                "FROM pg_database WHERE datname IN": "2",
                "SELECT rolsuper": "t",
            }
        )
        self.denied.add((settings.app_user, settings.postgres_db))

    # Dispatch

    def dispatch(self, cmd: List[str], input_text: Optional[str]):
        if cmd[0] == "git":
            return 1, ""
        if cmd[:2] == ["docker", "info"]:
            return 0, f"Server Version: 24.0\n Username: {self.username}\n"
        if cmd[:2] == ["docker", "exec"]:
            return self._exec(cmd[2:], input_text)
        if cmd[:2] == ["docker", "run"]:
            return self._run(cmd[2:])

        handler = {
            ("container", "inspect"): self._container_inspect,
            ("network", "inspect"): self._network_inspect,
            ("network", "create"): self._network_create,
            ("network", "rm"): self._network_rm,
            ("volume", "inspect"): self._volume_inspect,
            ("volume", "create"): self._volume_create,
            ("volume", "rm"): self._volume_rm,
            ("volume", "ls"): self._volume_ls,
            ("image", "inspect"): lambda args: (0 if args[-1] in self.images else 1, ""),
        }.get(tuple(cmd[1:3]))
        if handler:
            return handler(cmd[3:])

        verb, args = cmd[1], cmd[2:]
        if verb == "start":
            self.containers[args[-1]]["running"] = True
            return 0, ""
        if verb == "stop":
            if args[-1] not in self.containers:
                return 1, ""
            self.containers[args[-1]]["running"] = False
            return 0, ""
        if verb == "rm":
            return self._remove_container(args[-1])
        if verb == "pull":
            if args[-1] in self.pull_failures:
                return 1, ""
            self.images.add(args[-1])
            return 0, ""
        if verb == "push":
            return (1 if args[-1] in self.push_failures else 0), ""
        if verb == "rmi":
            if args[-1] not in self.images:
                return 1, ""
            self.images.discard(args[-1])
            return 0, ""
        if verb == "images":
            repository = args[args.index("--filter") + 1].split("=", 1)[1]
            tags = sorted(image for image in self.images if image.startswith(repository + ":"))
            return 0, "\n".join(tags)
        if verb == "build":
            for index, part in enumerate(args):
                if part == "-t":
                    self.images.add(args[index + 1])
            return 0, ""
        if verb == "logs":
            return 0, "LOG: database system is ready to accept connections"
        if verb == "stats":
            return 0, "CONTAINER CPU % MEM USAGE"
        if verb == "ps":
            repository = args[args.index("--filter") + 1].split("=", 1)[1]
            names = [
                name
                for name, data in self.containers.items()
                if data["image"].split(":")[0] == repository
            ]
            return 0, "\n".join(names)
        return 0, ""

    # Containers

    def _container_inspect(self, args):
        name = args[-1]
        if name not in self.containers:
            return 1, ""
        data = self.containers[name]
        if "--format" not in args:
            return 0, "[]"
        template = args[args.index("--format") + 1]
        if "State.Running" in template:
            return 0, "true" if data["running"] else "false"
        if "Networks" in template:
            return 0, " ".join(data["networks"]) + " "
        if "Mounts" in template:
            return 0, "volume -> /var/lib/postgresql/data\n"
        return 0, '{"Status": "%s"}' % ("running" if data["running"] else "exited")

    def _remove_container(self, name):
        if name not in self.containers:
            return 1, ""
        for network in self.containers.pop(name)["networks"]:
            members = self.networks.get(network, [])
            if name in members:
                members.remove(name)
        return 0, ""

    def _run(self, args):
        if args[0] == "--rm":
            return self.probe_returncode, ""

        name = args[args.index("--name") + 1]
        if name in self.containers:
            return 125, ""
        networks = []
        if "--network" in args:
            networks.append(args[args.index("--network") + 1])
        image = next((part for part in args if part in self.images), args[-1])
        volume = None
        for part in args:
            if part.endswith(f":{DATA_DIR}"):
                volume = part.split(":", 1)[0]
                self.volumes.add(volume)
        self.add_container(name, image=image, running=True, networks=networks, volume=volume)
        return 0, "container-id"

    def _exec(self, args, input_text):
        env = {}
        index = 0
        while args[index].startswith("-"):
            flag = args[index]
            if flag in EXEC_FLAGS_WITH_VALUE:
                if flag == "-e":
                    key, _, value = args[index + 1].partition("=")
                    env[key] = value
                index += 2
            else:
                index += 1
        name, command = args[index], args[index + 1 :]

        if name not in self.containers or not self.containers[name]["running"]:
            return 1, ""

        program = command[0]
        if program == "pg_isready":
            self.ready_checks += 1
            return (0 if self.ready_checks > self.ready_after else 1), ""
        if program == "test" and command[1] == "-f":
            return (0 if (self.storage_for(name, command[2]), command[2]) in self.sentinels else 1), ""
        if program == "touch":
            self.sentinels.add((self.storage_for(name, command[1]), command[1]))
            return 0, ""
        if program == "psql":
            return self._psql(command, input_text)
        if program == "ls":
            return 0, "10-init-db.sh" if command[-1] != DATA_DIR else "PG_VERSION\nbase\nglobal"
        return 0, ""

    def _psql(self, command, input_text):
        user = command[command.index("-U") + 1]
        database = command[command.index("-d") + 1]
        if (user, database) in self.denied:
            return 1, ""
        if "-f" in command:
            self.scripts.append(input_text or "")
            return 0, ""
        if "-c" not in command:
            # Interactive session.
            return 0, ""
        sql = command[command.index("-c") + 1]
        self.sql.append(sql)
        for fragment in self.sql_failures:
            if fragment in sql:
                return 1, ""
        for fragment, response in self.sql_responses.items():
            if fragment in sql:
                return 0, response
        return 0, "1"

    # Networks and volumes

    def _network_inspect(self, args):
        name = args[-1]
        if name not in self.networks:
            return 1, ""
        if "--format" in args and "Containers" in args[args.index("--format") + 1]:
            return 0, " ".join(self.networks[name])
        return 0, f"{name} subnet=172.20.0.0/16 gateway=172.20.0.1"

    def _network_create(self, args):
        if args[-1] in self.networks:
            return 1, ""
        self.networks[args[-1]] = []
        return 0, ""

    def _network_rm(self, args):
        if args[-1] not in self.networks:
            return 1, ""
        del self.networks[args[-1]]
        return 0, ""

    def _volume_inspect(self, args):
        if args[-1] not in self.volumes:
            return 1, ""
        return 0, f"/var/lib/docker/volumes/{args[-1]}/_data"

    def _volume_create(self, args):
        self.volumes.add(args[-1])
        return 0, args[-1]

    def _volume_rm(self, args):
        name = args[-1]
        if name not in self.volumes:
            return 1, ""
        if any(data.get("volume") == name for data in self.containers.values()):
            return 1, ""
        self.volumes.discard(name)
        self.sentinels = {key for key in self.sentinels if key[0] != name}
        return 0, ""

    def _volume_ls(self, args):
        name_filter = args[args.index("--filter") + 1].split("=", 1)[1]
        return 0, "\n".join(sorted(volume for volume in self.volumes if name_filter in volume))


@pytest.fixture
def fake_docker():
    return FakeDocker()


@pytest.fixture
def dummy_logger():
    return DummyLogger()


@pytest.fixture
def dummy_console():
    return DummyConsole()


@pytest.fixture
def settings():
    return StackSettings.from_mapping(
        {
            "DOCKER_USERNAME": "acme",
            "IMAGE_NAME": "postgres11-prod",
            "VERSION": "1.2.0",
            "POSTGRES_USER": "admin",
            "POSTGRES_PASSWORD": "s3cret",
            "POSTGRES_DB": "admin_db",
            "APP_USER": "app_user",
            "APP_PASSWORD": "app-s3cret",
            "APP_DATABASE": "app_db",
        }
    )


@pytest.fixture
def sentinel_path():
    return SENTINEL_FILE
