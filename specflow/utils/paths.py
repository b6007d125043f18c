"""Path, identifier and duration helpers."""

import hashlib
import os
import re
import subprocess
from pathlib import Path
from typing import Optional, Union

MAX_SLUG_LENGTH = 50

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


def slugify(name: str) -> str:
    """Lowercase, collapse non-alphanumerics into single hyphens, cap the length."""
    slug = _NON_ALNUM.sub("-", name.lower()).strip("-")
    if len(slug) > MAX_SLUG_LENGTH:
        slug = slug[:MAX_SLUG_LENGTH].rstrip("-")
    return slug


def resolve_dag_id(dag_name: str, workflow_path: Union[str, Path]) -> str:
    """DAG identifier used to namespace logs: the slugged name, else the file stem."""
    slug = slugify(dag_name or "")
    if slug:
        return slug
    return slugify(Path(workflow_path).stem) or "dag"


def normalize_workflow_path(workflow_path: Union[str, Path]) -> str:
    """
    Convert a workflow file path to a filesystem-safe state file name.

    workflow.yaml           -> workflow.yaml.state
    features/v1.yaml        -> features-v1.yaml.state
    /abs/path/workflow.yaml -> workflow.yaml.state
    """
    cleaned = os.path.normpath(str(workflow_path))
    if os.path.isabs(cleaned):
        cleaned = os.path.basename(cleaned)
    normalized = cleaned.replace(os.sep, "-")
    if os.altsep:
        normalized = normalized.replace(os.altsep, "-")
    return normalized + ".state"


def get_cache_base() -> Path:
    """XDG cache directory, falling back to ~/.cache."""
    xdg_cache = os.environ.get("XDG_CACHE_HOME")
    if xdg_cache:
        return Path(xdg_cache)
    try:
        return Path.home() / ".cache"
    except RuntimeError:
        return Path(".cache")


def _slugify_remote(url: str) -> str:
    for prefix in ("https://", "http://", "git://", "ssh://", "git@"):
        if url.startswith(prefix):
            url = url[len(prefix):]
            break
    if url.endswith(".git"):
        url = url[:-4]
    url = re.sub(r"[^a-zA-Z0-9-]", "-", url)
    return re.sub(r"-+", "-", url).strip("-").lower()


def get_project_id(cwd: Optional[Union[str, Path]] = None) -> str:
    """Stable project identifier: the slugged origin remote, else a hash of the working directory."""
    directory = Path(cwd) if cwd else Path.cwd()
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            cwd=directory,
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.SubprocessError):
        result = None

    if result is not None and result.returncode == 0 and result.stdout.strip():
        slug = _slugify_remote(result.stdout.strip())
        if slug:
            return slug

    return hashlib.sha256(str(directory.resolve()).encode()).hexdigest()[:12]


def parse_duration(value: Union[str, int, float, None]) -> Optional[float]:
    """Parse '90', '30s', '30m', '1h' into seconds. Empty and zero mean no timeout."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        match = _DURATION.match(value)
        if not match:
            raise ValueError(f"invalid duration: {value!r} (use e.g. 90, 30s, 30m, 1h)")
        seconds = float(match.group(1)) * _DURATION_UNITS[match.group(2)]
    if seconds < 0:
        raise ValueError(f"duration must not be negative: {value!r}")
    return seconds or None
