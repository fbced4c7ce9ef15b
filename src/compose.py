"""Container runtime and compose tool driver.

ComposeDriver is the capability the orchestrator depends on; DockerCompose
implements it by shelling out to `docker compose` (or a compatible command).
Every compose call runs under the same environment projection so that
config, build and up observe an identical variable set.
"""

import logging
import shlex
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from common import run_command
from errors import (
    EXIT_BUILD_FAILED,
    EXIT_COMPOSE_INVALID,
    EXIT_START_FAILED,
    ExternalToolError,
)

logger = logging.getLogger(__name__)

BUILD_TIMEOUT = 3600
UP_TIMEOUT = 900
QUERY_TIMEOUT = 60


@runtime_checkable
class ComposeDriver(Protocol):
    """Operations the orchestrator needs from the container tooling."""

    def validate_manifest(self) -> None:
        """Dry-run the manifest; raise ExternalToolError if invalid."""
        ...

    def build(self, no_cache: bool = True) -> None:
        """Build images; raise ExternalToolError on failure."""
        ...

    def up(self) -> None:
        """Start the stack with force-recreate and orphan removal."""
        ...

    def list_containers(self) -> list[str]:
        """Names of all existing containers, running or stopped."""
        ...

    def remove_container(self, name: str) -> bool:
        """Force-remove a container. Best-effort: returns False on failure."""
        ...


def _tail(text: str, lines: int = 20) -> str:
    return '\n'.join(text.strip().splitlines()[-lines:])


class DockerCompose:
    """ComposeDriver backed by the docker CLI."""

    def __init__(
        self,
        manifest: Path,
        project: str,
        environment: dict,
        workdir: Path,
        command: str = 'docker compose',
    ):
        """Initialize driver.

        Args:
            manifest: Compose file path
            project: Compose project name
            environment: Full process environment for every compose call
            workdir: Project directory (compose also reads its .env)
            command: Compose invocation, e.g. 'docker compose' or 'docker-compose'
        """
        self.manifest = Path(manifest)
        self.project = project
        self.environment = dict(environment)
        self.workdir = Path(workdir)
        self.command = shlex.split(command)
        self.runtime = self.command[0] if self.command[0] in ('docker', 'podman') else 'docker'

    def _compose(self, *args: str) -> list[str]:
        return self.command + [
            '-f', str(self.manifest),
            '-p', self.project,
            '--project-directory', str(self.workdir),
            *args,
        ]

    def _run(self, cmd: list[str], timeout: int) -> tuple[int, str, str]:
        return run_command(cmd, cwd=self.workdir, timeout=timeout, env=self.environment)

    def validate_manifest(self) -> None:
        rc, out, err = self._run(self._compose('config', '--quiet'), QUERY_TIMEOUT)
        if rc != 0:
            raise ExternalToolError(
                f"Compose manifest {self.manifest} is invalid:\n{_tail(err or out)}",
                EXIT_COMPOSE_INVALID,
                output=err or out,
            )

    def build(self, no_cache: bool = True) -> None:
        args = ['build'] + (['--no-cache'] if no_cache else [])
        rc, out, err = self._run(self._compose(*args), BUILD_TIMEOUT)
        if rc != 0:
            raise ExternalToolError(
                f"Image build failed:\n{_tail(err or out)}",
                EXIT_BUILD_FAILED,
                output=err or out,
            )
        logger.debug(_tail(out))

    def up(self) -> None:
        cmd = self._compose('up', '-d', '--force-recreate', '--remove-orphans')
        rc, out, err = self._run(cmd, UP_TIMEOUT)
        if rc != 0:
            raise ExternalToolError(
                f"Stack failed to start:\n{_tail(err or out)}",
                EXIT_START_FAILED,
                output=err or out,
            )

    def list_containers(self) -> list[str]:
        cmd = [self.runtime, 'ps', '-a', '--format', '{{.Names}}']
        rc, out, err = self._run(cmd, QUERY_TIMEOUT)
        if rc != 0:
            raise ExternalToolError(
                f"Cannot list containers: {_tail(err or out, 3)}",
                EXIT_START_FAILED,
                output=err,
            )
        return [line.strip() for line in out.splitlines() if line.strip()]

    def remove_container(self, name: str) -> bool:
        rc, _, err = self._run([self.runtime, 'rm', '-f', name], QUERY_TIMEOUT)
        if rc != 0:
            logger.warning(f"Failed to remove container {name}: {err.strip()}")
            return False
        return True


def compose_for(
    manifest: Path,
    project: str,
    environment: dict,
    workdir: Path,
    command: Optional[str] = None,
) -> ComposeDriver:
    """Default driver factory used by the orchestrator."""
    return DockerCompose(manifest, project, environment, workdir, command or 'docker compose')
