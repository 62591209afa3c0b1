"""Actionable error catalog for dbstack."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "env_file_not_found": {
        "what": "Environment file not found: {path}",
        "next": "Create it from `.env.prod.example` or pass `--env-file` with the right path.",
    },
    "missing_variable": {
        "what": "Required environment variable {name} is not set.",
        "next": "Add `{name}=...` to the environment file and run the command again.",
    },
    "build_file_missing": {
        "what": "Required build file not found: {path}",
        "next": "Generate the build context with `dbstack context {context_dir}`.",
    },
    "image_not_found": {
        "what": "Local image not found: {image}",
        "next": "Build the image first with `dbstack build`.",
    },
    "container_not_running": {
        "what": "Container {name} is not running.",
        "next": "Start it with `dbstack manage start` or redeploy with `dbstack deploy`.",
    },
    "container_missing": {
        "what": "Container {name} does not exist.",
        "next": "Use `dbstack deploy` to create and start the container.",
    },
    "readiness_timeout": {
        "what": "PostgreSQL did not become ready after {attempts} attempts.",
        "next": "Inspect the container logs above and the host resources, then redeploy.",
    },
    "push_failed": {
        "what": "Failed to push {count} tag(s): {tags}",
        "next": "Check `docker login` and registry permissions, then run `dbstack push` again.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
