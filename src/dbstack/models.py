"""Shared domain models for dbstack."""

from dataclasses import dataclass, field, fields
from typing import Dict, List, Mapping, Optional, Tuple

from .constants import (
    CONTAINER_NAME,
    HEALTH_INTERVAL,
    HEALTH_RETRIES,
    HEALTH_START_PERIOD,
    HEALTH_TIMEOUT,
    POSTGRES_PORT,
    VOLUME_NAME,
)

DOCKER_HUB_REGISTRIES = ("", "docker.io", "index.docker.io", "registry-1.docker.io")


@dataclass(frozen=True)
class Principal:
    """A database login bound to one database."""

    user: str
    password: str
    database: str


@dataclass(frozen=True)
class ImageReference:
    registry: str
    namespace: str
    name: str
    tag: str = "latest"

    @property
    def repository(self) -> str:
        # The runtime lists Docker Hub images without the registry host.
        if self.registry.strip().lower() in DOCKER_HUB_REGISTRIES:
            return f"{self.namespace}/{self.name}"
        return f"{self.registry.rstrip('/')}/{self.namespace}/{self.name}"

    def tagged(self, tag: str) -> str:
        return f"{self.repository}:{tag}"

    def __str__(self) -> str:
        return self.tagged(self.tag)


@dataclass(frozen=True)
class NetworkDescriptor:
    name: str
    subnet: str = ""
    driver: str = "bridge"


@dataclass(frozen=True)
class VolumeDescriptor:
    name: str = VOLUME_NAME


@dataclass(frozen=True)
class HealthCheckPolicy:
    command: str
    interval: str = HEALTH_INTERVAL
    timeout: str = HEALTH_TIMEOUT
    start_period: str = HEALTH_START_PERIOD
    retries: int = HEALTH_RETRIES

    def as_run_args(self) -> List[str]:
        return [
            f"--health-cmd={self.command}",
            f"--health-interval={self.interval}",
            f"--health-timeout={self.timeout}",
            f"--health-start-period={self.start_period}",
            f"--health-retries={self.retries}",
        ]


@dataclass(frozen=True)
class BuildInfo:
    build_date: str
    build_timestamp: str
    git_commit: str
    version: str


@dataclass(frozen=True)
class StackSettings:
    """Deployment configuration loaded once from the environment file."""

    docker_registry: str = "docker.io"
    docker_username: str = ""
    image_name: str = ""
    image_tag: str = "latest"
    version: str = "1.0.0"
    postgres_user: str = ""
    postgres_password: str = ""
    postgres_db: str = ""
    app_user: str = ""
    app_password: str = ""
    app_database: str = ""
    network_name: str = "app-network"
    network_subnet: str = ""
    restart_policy: str = "unless-stopped"
    postgres_port: str = str(POSTGRES_PORT)
    container_name: str = CONTAINER_NAME
    volume_name: str = VOLUME_NAME
    extra: Tuple[Tuple[str, str], ...] = field(default=(), compare=False)

    @classmethod
    def env_fields(cls) -> Dict[str, str]:
        """Map environment variable names to dataclass attribute names."""
        return {
            item.name.upper(): item.name
            for item in fields(cls)
            if item.name not in ("extra", "container_name", "volume_name")
        }

    @classmethod
    def from_mapping(cls, values: Mapping[str, Optional[str]]) -> "StackSettings":
        known = cls.env_fields()
        kwargs = {}
        extra = []
        for key, value in values.items():
            clean = (value or "").strip()
            if key in known:
                # Blank values fall back to the field default.
                if clean:
                    kwargs[known[key]] = clean
            else:
                extra.append((key, clean))
        return cls(extra=tuple(extra), **kwargs)

    def get(self, key: str) -> str:
        attribute = self.env_fields().get(key)
        if attribute is not None:
            return getattr(self, attribute)
        return dict(self.extra).get(key, "")

    def items(self) -> List[Tuple[str, str]]:
        known = [(key, getattr(self, attr)) for key, attr in self.env_fields().items()]
        return known + list(self.extra)

    @property
    def admin(self) -> Principal:
        return Principal(self.postgres_user, self.postgres_password, self.postgres_db)

    @property
    def app(self) -> Principal:
        return Principal(self.app_user, self.app_password, self.app_database)

    @property
    def image(self) -> ImageReference:
        return ImageReference(
            registry=self.docker_registry,
            namespace=self.docker_username,
            name=self.image_name,
            tag=self.image_tag,
        )

    @property
    def network(self) -> NetworkDescriptor:
        return NetworkDescriptor(name=self.network_name, subnet=self.network_subnet)

    @property
    def volume(self) -> VolumeDescriptor:
        return VolumeDescriptor(name=self.volume_name)

    @property
    def health_policy(self) -> HealthCheckPolicy:
        return HealthCheckPolicy(
            command=f"pg_isready -h localhost -p {POSTGRES_PORT} -U {self.postgres_user}"
        )


@dataclass
class CheckResult:
    name: str
    passed: bool
    detail: str = ""
    warnings: List[str] = field(default_factory=list)


@dataclass
class VerificationReport:
    results: List[CheckResult] = field(default_factory=list)

    def add(self, result: CheckResult):
        self.results.append(result)

    @property
    def passed(self) -> int:
        return sum(1 for result in self.results if result.passed)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if not result.passed)

    @property
    def warnings(self) -> int:
        return sum(len(result.warnings) for result in self.results)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0


@dataclass
class PushResult:
    pushed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.pushed) and not self.failed
