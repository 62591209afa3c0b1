"""Docker runtime services for dbstack."""

import time
from typing import Callable, Dict, List, Optional

from dbstack.constants import LOG_TAIL_LINES, POSTGRES_PORT, PROGRESS_EVERY
from dbstack.errors import ReadinessTimeoutError
from dbstack.errors_catalog import actionable_error


class DockerRuntimeService:
    """Thin wrapper over the docker CLI primitives used by every workflow."""

    def __init__(self, logger, console, run_cmd: Callable):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd

    def _probe(self, cmd: List[str]) -> bool:
        return self.run_cmd(cmd, check=False, capture_output=True).returncode == 0

    def _inspect(self, kind: str, name: str, template: str) -> Optional[str]:
        result = self.run_cmd(
            ["docker", kind, "inspect", "--format", template, name],
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            return None
        return (result.stdout or "").strip()

    # Containers

    def container_exists(self, name: str) -> bool:
        return self._probe(["docker", "container", "inspect", name])

    def container_running(self, name: str) -> bool:
        return self._inspect("container", name, "{{.State.Running}}") == "true"

    def container_state(self, name: str) -> str:
        return self._inspect("container", name, "{{json .State}}") or "unavailable"

    def container_networks(self, name: str) -> List[str]:
        output = self._inspect(
            "container",
            name,
            "{{range $network, $config := .NetworkSettings.Networks}}{{$network}} {{end}}",
        )
        return (output or "").split()

    def container_mounts(self, name: str) -> str:
        return self._inspect(
            "container",
            name,
            "{{range .Mounts}}{{.Name}}{{.Source}} -> {{.Destination}}\n{{end}}",
        ) or ""

    def containers_from_image(self, repository: str) -> List[str]:
        result = self.run_cmd(
            ["docker", "ps", "-a", "--filter", f"ancestor={repository}", "--format", "{{.Names}}"],
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            return []
        return [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]

    def start_container(self, name: str):
        self.run_cmd(["docker", "start", name], check=True, capture_output=True)

    def stop_container(self, name: str, check: bool = True):
        self.run_cmd(["docker", "stop", name], check=check, capture_output=True)

    def remove_container(self, name: str, force: bool = False, check: bool = True):
        cmd = ["docker", "rm"]
        if force:
            cmd.append("-f")
        self.run_cmd(cmd + [name], check=check, capture_output=True)

    def run_container(self, name: str, image: str, options: List[str], command: Optional[List[str]] = None):
        cmd = ["docker", "run", "-d", "--name", name] + options + [image] + (command or [])
        return self.run_cmd(cmd, check=True, capture_output=True)

    def run_ephemeral(self, image: str, options: List[str], command: List[str]) -> bool:
        cmd = ["docker", "run", "--rm"] + options + [image] + command
        return self._probe(cmd)

    def exec(
        self,
        name: str,
        command: List[str],
        env: Optional[Dict[str, str]] = None,
        interactive: bool = False,
        stdin: bool = False,
        user: Optional[str] = None,
        check: bool = False,
        capture_output: bool = True,
        input_text: Optional[str] = None,
    ):
        cmd = ["docker", "exec"]
        if interactive:
            cmd.append("-it")
        elif stdin:
            cmd.append("-i")
        if user:
            cmd.extend(["-u", user])
        for key, value in (env or {}).items():
            cmd.extend(["-e", f"{key}={value}"])
        cmd.append(name)
        cmd.extend(command)

        kwargs = {"check": check, "capture_output": capture_output}
        if input_text is not None:
            kwargs["input_text"] = input_text
        return self.run_cmd(cmd, **kwargs)

    def logs(self, name: str, tail: Optional[int] = None, follow: bool = False, capture_output: bool = True) -> str:
        cmd = ["docker", "logs"]
        if follow:
            cmd.append("-f")
        if tail is not None:
            cmd.extend(["--tail", str(tail)])
        cmd.append(name)
        result = self.run_cmd(cmd, check=False, capture_output=capture_output)
        if not capture_output:
            return ""
        return "\n".join(part for part in (result.stdout, result.stderr) if part).strip()

    def stats(self, name: str) -> str:
        result = self.run_cmd(
            [
                "docker",
                "stats",
                name,
                "--no-stream",
                "--format",
                "table {{.Container}}\t{{.CPUPerc}}\t{{.MemUsage}}\t{{.NetIO}}\t{{.BlockIO}}",
            ],
            check=False,
            capture_output=True,
        )
        return (result.stdout or "").strip()

    # Networks and volumes

    def network_exists(self, name: str) -> bool:
        return self._probe(["docker", "network", "inspect", name])

    def create_network(self, name: str, driver: str = "bridge", subnet: str = ""):
        cmd = ["docker", "network", "create", "--driver", driver]
        if subnet:
            cmd.extend(["--subnet", subnet])
        self.run_cmd(cmd + [name], check=True, capture_output=True)

    def network_details(self, name: str) -> str:
        return self._inspect(
            "network",
            name,
            "{{.Name}} {{range .IPAM.Config}}subnet={{.Subnet}} gateway={{.Gateway}}{{end}}",
        ) or ""

    def network_containers(self, name: str) -> List[str]:
        output = self._inspect("network", name, "{{range .Containers}}{{.Name}} {{end}}")
        return (output or "").split()

    def remove_network(self, name: str, check: bool = True):
        self.run_cmd(["docker", "network", "rm", name], check=check, capture_output=True)

    def volume_exists(self, name: str) -> bool:
        return self._probe(["docker", "volume", "inspect", name])

    def create_volume(self, name: str):
        self.run_cmd(["docker", "volume", "create", name], check=True, capture_output=True)

    def volume_mountpoint(self, name: str) -> str:
        return self._inspect("volume", name, "{{.Mountpoint}}") or ""

    def list_volumes(self, name_filter: str) -> List[str]:
        result = self.run_cmd(
            ["docker", "volume", "ls", "--filter", f"name={name_filter}", "--format", "{{.Name}}"],
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            return []
        return [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]

    def remove_volume(self, name: str, check: bool = True):
        self.run_cmd(["docker", "volume", "rm", name], check=check, capture_output=True)

    # Images

    def pull(self, image: str, check: bool = True) -> bool:
        result = self.run_cmd(["docker", "pull", image], check=check, capture_output=True)
        return result.returncode == 0

    def push(self, image: str) -> bool:
        return self.run_cmd(["docker", "push", image], check=False, capture_output=True).returncode == 0

    def image_exists(self, image: str) -> bool:
        return self._probe(["docker", "image", "inspect", image])

    def image_tags(self, repository: str) -> List[str]:
        result = self.run_cmd(
            [
                "docker",
                "images",
                "--filter",
                f"reference={repository}",
                "--format",
                "{{.Repository}}:{{.Tag}}",
            ],
            check=True,
            capture_output=True,
        )
        tags = {
            line.strip()
            for line in (result.stdout or "").splitlines()
            if line.strip() and not line.strip().endswith(":<none>")
        }
        return sorted(tags)

    def remove_image(self, image: str, check: bool = False) -> bool:
        return self.run_cmd(["docker", "rmi", image], check=check, capture_output=True).returncode == 0

    # Readiness

    def is_ready(self, name: str, user: str) -> bool:
        result = self.exec(
            name,
            ["pg_isready", "-h", "localhost", "-p", str(POSTGRES_PORT), "-U", user, "-q"],
        )
        return result.returncode == 0

    def wait_until_ready(
        self,
        name: str,
        user: str,
        max_attempts: int,
        interval: float,
        require_running: bool = False,
        progress_logs: bool = False,
    ):
        self.console.print("[yellow]Waiting for PostgreSQL to be ready...[/yellow]")

        for attempt in range(1, max_attempts + 1):
            if require_running and not self.container_running(name):
                logs = self.logs(name)
                raise ReadinessTimeoutError(
                    f"Container {name} stopped unexpectedly while waiting for PostgreSQL.",
                    logs=logs,
                )

            if self.is_ready(name, user):
                self.console.print("[green]PostgreSQL is ready.[/green]")
                return attempt

            if attempt % PROGRESS_EVERY == 0:
                self.logger.info(
                    "Attempt %s/%s: still waiting for PostgreSQL...", attempt, max_attempts
                )
                if progress_logs:
                    self.logger.info("Recent logs:\n%s", self.logs(name, tail=10))
            if attempt < max_attempts:
                time.sleep(interval)

        logs = self.logs(name, tail=LOG_TAIL_LINES)
        raise ReadinessTimeoutError(
            actionable_error("readiness_timeout", attempts=str(max_attempts)),
            logs=logs,
        )
