"""Input validation phase.

Runs before any network or destructive action: every required setting,
profile input, source spec and tool is checked here.
"""

import logging
import shlex
import time
from dataclasses import dataclass
from pathlib import Path

from common import ActionResult, require_tool
from errors import EXIT_MISSING_VARIABLE, PreconditionError
from profiles import active_rules, missing_inputs
from sources import GitSingleFile

logger = logging.getLogger(__name__)

REQUIRED_SETTINGS = ('conf_src', 'compose_src')


def configured_sources(ctx) -> list[str]:
    """Every source string this run will fetch, {host} expanded."""
    config = ctx.config
    values = [config.conf_src, config.compose_src, config.env_template_src]
    for rule in active_rules(ctx.profiles):
        for artifact in rule.artifacts:
            values.append(getattr(config, artifact.source_field))
    return [config.expand(v, ctx.host) for v in values if v]


@dataclass
class ValidateInputsAction:
    """Check settings, profile-derived inputs, source syntax and tools."""
    name: str

    def run(self, ctx) -> ActionResult:
        start = time.time()
        config = ctx.config

        if not ctx.host:
            raise PreconditionError("Host name is required", EXIT_MISSING_VARIABLE)

        absent = [name.upper() for name in REQUIRED_SETTINGS if not getattr(config, name)]
        if absent:
            raise PreconditionError(
                f"Missing required settings: {', '.join(absent)}",
                EXIT_MISSING_VARIABLE,
            )

        missing = missing_inputs(ctx.profiles, vars(config))
        if missing:
            rule, fields = missing[0]
            raise PreconditionError(
                f"Profile '{rule.token}' requires: {', '.join(f.upper() for f in fields)}",
                rule.exit_code,
            )

        sources = [ctx.resolver.classify(spec) for spec in configured_sources(ctx)]
        git_sources = [s for s in sources if isinstance(s, GitSingleFile)]

        if git_sources:
            require_tool('git', 'needed for repository sources')
        if any(s.is_ssh for s in git_sources):
            require_tool('ssh', 'needed for SSH repository sources')
            if config.ssh_key and not Path(config.ssh_key).expanduser().is_file():
                raise PreconditionError(f"SSH key not found: {config.ssh_key}", EXIT_MISSING_VARIABLE)
        require_tool(shlex.split(config.compose_command)[0], 'container runtime')

        profiles = str(ctx.profiles) or 'none'
        logger.info(f"[{self.name}] host={ctx.host} project={ctx.project} profiles={profiles}")
        return ActionResult(
            success=True,
            message=f"{len(sources)} sources, {len(git_sources)} from git",
            duration=time.time() - start,
        )
