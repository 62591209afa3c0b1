"""Docker Compose driver for the local multi-database stack."""

import re
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import yaml

from dbstack.errors import ConfigurationError, StackError
from dbstack.errors_catalog import actionable_error

# `${VAR}` is required, `${VAR:-default}` / `${VAR-default}` are not.
VARIABLE_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(:?[-?][^}]*)?\}")


class ComposeService:
    """Validates compose variables and forwards lifecycle commands to compose."""

    ACTIONS = ("check", "up", "down", "ps")

    def __init__(self, logger, console, run_cmd: Callable, env_loader, subprocess_module=subprocess):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd
        self.env_loader = env_loader
        self.subprocess = subprocess_module

    def get_docker_compose_cmd(self) -> List[str]:
        try:
            self.subprocess.run(["docker", "compose", "version"], check=True, capture_output=True)
            return ["docker", "compose"]
        except (self.subprocess.CalledProcessError, FileNotFoundError):
            try:
                self.subprocess.run(["docker-compose", "--version"], check=True, capture_output=True)
                return ["docker-compose"]
            except (self.subprocess.CalledProcessError, FileNotFoundError):
                raise StackError(
                    "Docker Compose is not available. Install Docker Compose v2 (`docker compose`) "
                    "or v1 (`docker-compose`) and try again."
                )

    def load_services(self, compose_file: str) -> Dict[str, Any]:
        path = Path(compose_file)
        if not path.is_file():
            raise ConfigurationError(f"Compose file not found: {compose_file}")
        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigurationError(f"Invalid compose file '{compose_file}': {exc}") from exc

        services = (parsed or {}).get("services") if isinstance(parsed, dict) else None
        if not isinstance(services, dict) or not services:
            raise ConfigurationError(f"Compose file '{compose_file}' declares no services.")
        return services

    @staticmethod
    def referenced_variables(definition: Any) -> List[str]:
        """Variables a service definition needs without a fallback value."""
        found: List[str] = []

        def walk(node):
            if isinstance(node, dict):
                for value in node.values():
                    walk(value)
            elif isinstance(node, list):
                for value in node:
                    walk(value)
            elif isinstance(node, str):
                for match in VARIABLE_PATTERN.finditer(node):
                    name, modifier = match.group(1), match.group(2) or ""
                    if "-" in modifier[:2]:
                        continue
                    if name not in found:
                        found.append(name)

        walk(definition)
        return found

    def select(self, services: Dict[str, Any], names: Sequence[str]) -> Dict[str, Any]:
        if not names:
            return services
        unknown = [name for name in names if name not in services]
        if unknown:
            raise ConfigurationError(
                f"Unknown compose service(s): {', '.join(unknown)}. "
                f"Available: {', '.join(services)}"
            )
        return {name: services[name] for name in names}

    def check(self, compose_file: str, env_file: str, names: Sequence[str] = ()) -> Dict[str, List[str]]:
        services = self.select(self.load_services(compose_file), names)
        values = self.env_loader.read(env_file)

        required: Dict[str, List[str]] = {}
        for service, definition in services.items():
            required[service] = self.referenced_variables(definition)
            missing = [name for name in required[service] if not values.get(name)]
            if missing:
                raise ConfigurationError(
                    actionable_error("missing_variable", name=missing[0])
                    + f" (referenced by service '{service}')"
                )
            self.logger.info("Service %s: %s variable(s) set", service, len(required[service]))

        self.console.print(
            f"[green]Compose environment valid for {len(services)} service(s).[/green]"
        )
        return required

    def run(
        self,
        action: str,
        compose_file: str,
        env_file: str,
        names: Sequence[str] = (),
        compose_cmd: Optional[List[str]] = None,
    ) -> int:
        if action not in self.ACTIONS:
            raise StackError(f"Unknown compose action: {action}. Valid actions: {', '.join(self.ACTIONS)}")

        self.check(compose_file, env_file, names)
        if action == "check":
            return 0

        base = (compose_cmd or self.get_docker_compose_cmd()) + [
            "-f",
            compose_file,
            "--env-file",
            env_file,
        ]
        if action == "up":
            cmd = base + ["up", "-d"] + list(names)
        elif action == "down":
            cmd = base + (["rm", "-s", "-f"] + list(names) if names else ["down"])
        else:
            cmd = base + ["ps"] + list(names)

        self.console.print(f"[blue]Running compose {action}...[/blue]")
        self.run_cmd(cmd, check=True, capture_output=False)
        return 0
