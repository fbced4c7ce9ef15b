"""Compose stack phases: reconcile, env, validate, build, up."""

import logging
import time
from dataclasses import dataclass

from common import ActionResult, confirm
from errors import EXIT_USAGE, EXIT_USER_DECLINED, ConflictError, PreconditionError
from manifest import container_names, find_conflicts

logger = logging.getLogger(__name__)

ENV_FILENAME = '.env'


def require_stack(ctx, phase: str):
    """Fail cleanly when fetch-manifest has not populated the context."""
    if ctx.manifest is None or ctx.compose is None or ctx.env is None:
        raise PreconditionError(
            f"{phase} needs the compose manifest, but fetch-manifest did not run",
            EXIT_USAGE,
        )


@dataclass
class ReconcileContainersAction:
    """Remove existing containers whose names the manifest claims."""
    name: str

    def run(self, ctx) -> ActionResult:
        start = time.time()
        require_stack(ctx, self.name)
        desired = container_names(ctx.manifest)
        if not desired:
            return ActionResult(success=True, message="no container_name declarations", skipped=True)

        conflicts = find_conflicts(desired, ctx.compose.list_containers())
        if not conflicts:
            return ActionResult(
                success=True,
                message=f"{len(desired)} names, no conflicts",
                duration=time.time() - start,
            )

        logger.warning(f"[{self.name}] Existing containers conflict with the manifest:")
        for name in conflicts:
            logger.warning(f"  - {name}")

        if not confirm(f"Force-remove {len(conflicts)} conflicting container(s)?", ctx.config.assume_yes):
            raise ConflictError(
                f"Aborted: conflicting containers left in place: {', '.join(conflicts)}",
                EXIT_USER_DECLINED,
            )

        removed = tuple(name for name in conflicts if ctx.compose.remove_container(name))
        return ActionResult(
            success=True,
            message=f"removed {len(removed)}/{len(conflicts)}",
            duration=time.time() - start,
            context_updates={'removed_containers': removed},
        )


@dataclass
class ValidateComposeAction:
    """`compose config` dry run."""
    name: str

    def run(self, ctx) -> ActionResult:
        start = time.time()
        require_stack(ctx, self.name)
        ctx.compose.validate_manifest()
        return ActionResult(success=True, message="manifest valid", duration=time.time() - start)


@dataclass
class BuildImagesAction:
    """Build images, bypassing the cache unless configured otherwise."""
    name: str

    def run(self, ctx) -> ActionResult:
        start = time.time()
        require_stack(ctx, self.name)
        no_cache = ctx.config.no_cache
        logger.info(f"[{self.name}] Building images{' (no cache)' if no_cache else ''}...")
        ctx.compose.build(no_cache=no_cache)
        return ActionResult(success=True, duration=time.time() - start)


@dataclass
class GenerateEnvAction:
    """Write the rendered env file next to the manifest."""
    name: str

    def run(self, ctx) -> ActionResult:
        start = time.time()
        require_stack(ctx, self.name)
        path = ctx.env.save(ctx.workdir / ENV_FILENAME)
        return ActionResult(
            success=True,
            message=f"{path} ({len(ctx.env.keys())} keys)",
            duration=time.time() - start,
            context_updates={'env_path': path},
        )


@dataclass
class StartStackAction:
    """Bring the stack up."""
    name: str

    def run(self, ctx) -> ActionResult:
        start = time.time()
        require_stack(ctx, self.name)
        ctx.compose.up()
        return ActionResult(success=True, message="stack started", duration=time.time() - start)
