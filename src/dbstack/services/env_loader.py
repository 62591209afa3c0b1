"""Deployment environment file loading for dbstack."""

from pathlib import Path
from typing import Dict, Iterable, Iterator, Tuple

from dotenv import dotenv_values
from packaging.version import InvalidVersion, Version

from dbstack.errors import ConfigurationError
from dbstack.errors_catalog import actionable_error
from dbstack.models import StackSettings


class EnvironmentLoader:
    """Reads `KEY=VALUE` files into immutable settings and validates required keys."""

    SECRET_MARKERS = ("PASSWORD", "SECRET", "TOKEN")

    def __init__(self, logger):
        self.logger = logger

    def read(self, env_path: str) -> Dict[str, str]:
        path = Path(env_path)
        if not path.is_file():
            raise ConfigurationError(actionable_error("env_file_not_found", path=env_path))

        self.logger.info("Loading environment variables from %s", env_path)
        try:
            parsed = dotenv_values(path, interpolate=True)
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigurationError(f"Could not read environment file '{env_path}': {exc}") from exc

        return {key: (value or "") for key, value in parsed.items()}

    def load(self, env_path: str) -> StackSettings:
        return StackSettings.from_mapping(self.read(env_path))

    def validate(self, settings: StackSettings, required_keys: Iterable[str]):
        self.logger.info("Validating environment variables...")
        for key in required_keys:
            if not settings.get(key):
                raise ConfigurationError(actionable_error("missing_variable", name=key))
        self.logger.debug("Environment validation passed")

    def validate_version(self, settings: StackSettings):
        try:
            Version(settings.version)
        except InvalidVersion as exc:
            raise ConfigurationError(
                f"VERSION '{settings.version}' is not a valid version string (e.g. 1.0.0)."
            ) from exc

    def describe(self, settings: StackSettings) -> Iterator[Tuple[str, str]]:
        for key, value in settings.items():
            if any(marker in key.upper() for marker in self.SECRET_MARKERS):
                yield key, "[HIDDEN]"
            else:
                yield key, value
