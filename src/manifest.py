"""Compose manifest inspection.

Only the parts of a compose file that provisioning decisions depend on are
read here: service names and their container_name declarations. Full
validation is left to `docker compose config`.
"""

import logging
from pathlib import Path
from typing import Iterable

import yaml

from errors import ValidationError

logger = logging.getLogger(__name__)


def load_manifest(path: Path) -> dict:
    """Load a compose manifest.

    Raises:
        ValidationError: Not YAML, not a mapping, or no services mapping
    """
    path = Path(path)
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValidationError(f"Compose manifest is not valid YAML: {path}: {e}") from e
    except OSError as e:
        raise ValidationError(f"Cannot read compose manifest {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValidationError(f"Compose manifest must be a mapping: {path}")
    services = data.get('services')
    if not isinstance(services, dict) or not services:
        raise ValidationError(f"Compose manifest has no services: {path}")
    return data


def services(manifest: dict) -> dict:
    """Service name -> service definition (non-mapping entries skipped)."""
    return {
        str(name): spec
        for name, spec in (manifest.get('services') or {}).items()
        if isinstance(spec, dict)
    }


def container_names(manifest: dict) -> list[str]:
    """Deduplicated container_name values in declaration order.

    Values still carrying ${...} interpolation cannot be matched against
    existing containers and are skipped.
    """
    names: list[str] = []
    for service_name, spec in services(manifest).items():
        raw = spec.get('container_name')
        if raw is None:
            continue
        name = str(raw).strip().strip('"\'').strip()
        if not name:
            continue
        if '${' in name or name.startswith('$'):
            logger.warning(
                f"Service '{service_name}' container_name '{name}' is interpolated, "
                "skipping conflict check"
            )
            continue
        if name not in names:
            names.append(name)
    return names


def has_service(manifest: dict, name: str) -> bool:
    """True if a service is named `name` or declares container_name `name`."""
    for service_name, spec in services(manifest).items():
        if service_name == name:
            return True
        if str(spec.get('container_name', '')).strip().strip('"\'') == name:
            return True
    return False


def find_conflicts(desired: Iterable[str], existing: Iterable[str]) -> list[str]:
    """Desired names that already exist (exact match), in desired order."""
    existing_set = {e.strip() for e in existing if e and e.strip()}
    return [name for name in desired if name in existing_set]
