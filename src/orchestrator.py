"""Provisioning orchestration.

A run is a fixed, strictly sequential list of phases. Each phase action
receives the current RunContext and returns an ActionResult whose
context_updates produce the next context; a BootstrapError stops the run
with that error's exit code.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Optional

from actions import (
    BuildImagesAction,
    FetchConfigAction,
    FetchManifestAction,
    FetchProfileArtifactsAction,
    GenerateEnvAction,
    ReconcileContainersAction,
    StartStackAction,
    SubstitutePlaceholdersAction,
    ValidateComposeAction,
    ValidateInputsAction,
)
from compose import ComposeDriver, compose_for
from config import BootstrapConfig
from envfile import EnvFile
from errors import EXIT_SUCCESS, BootstrapError
from profiles import ProfileSet
from sources import SourceResolver

logger = logging.getLogger(__name__)

ComposeFactory = Callable[..., ComposeDriver]


@dataclass(frozen=True)
class RunContext:
    """Everything one provisioning run knows, threaded through every phase."""
    host: str
    profiles: ProfileSet
    config: BootstrapConfig
    resolver: SourceResolver
    workdir: Path
    compose_factory: ComposeFactory = compose_for

    # Filled in by phases
    conf_path: Optional[Path] = None
    manifest_path: Optional[Path] = None
    manifest: Optional[dict] = None
    env: Optional[EnvFile] = None
    environment: dict = field(default_factory=dict)
    compose: Optional[ComposeDriver] = None
    artifact_paths: tuple[Path, ...] = ()
    text_artifacts: tuple[Path, ...] = ()
    removed_containers: tuple[str, ...] = ()
    env_path: Optional[Path] = None

    @property
    def project(self) -> str:
        return self.config.project_for(self.host)

    @classmethod
    def create(
        cls,
        host: str,
        config: BootstrapConfig,
        compose_factory: ComposeFactory = compose_for,
        resolver: Optional[SourceResolver] = None,
    ) -> 'RunContext':
        """Build the initial context for a host from configuration."""
        return cls(
            host=host,
            profiles=ProfileSet.parse(config.compose_profiles),
            config=config,
            resolver=resolver or SourceResolver.from_config(config),
            workdir=config.workdir,
            compose_factory=compose_factory,
        )


class ProvisionScenario:
    """validate-inputs through start-stack for one host."""

    name = 'provision'
    description = 'Fetch host configuration and (re)launch the compose stack'

    def get_phases(self, _context: RunContext) -> list[tuple[str, Any, str]]:
        """Return list of (phase_name, action, description) tuples."""
        return [
            ('validate-inputs', ValidateInputsAction(name='validate-inputs'),
             'Check required settings, profile inputs and tools'),
            ('fetch-config', FetchConfigAction(name='fetch-config'),
             'Fetch primary application config'),
            ('fetch-manifest', FetchManifestAction(name='fetch-manifest'),
             'Fetch compose manifest and env template'),
            ('fetch-profile-artifacts', FetchProfileArtifactsAction(name='fetch-profile-artifacts'),
             'Fetch artifacts required by active profiles'),
            ('substitute-placeholders', SubstitutePlaceholdersAction(name='substitute-placeholders'),
             'Fill reachable-address placeholders'),
            ('reconcile-containers', ReconcileContainersAction(name='reconcile-containers'),
             'Remove containers whose names collide with the manifest'),
            ('generate-env', GenerateEnvAction(name='generate-env'),
             'Write the stack .env file'),
            ('validate-compose', ValidateComposeAction(name='validate-compose'),
             'Validate compose manifest syntax'),
            ('build-images', BuildImagesAction(name='build-images'),
             'Build service images'),
            ('start-stack', StartStackAction(name='start-stack'),
             'Start the stack (force-recreate, remove orphans)'),
        ]


class Orchestrator:
    """Runs scenario phases in order and maps failures to exit codes."""

    def __init__(
        self,
        scenario: ProvisionScenario,
        context: RunContext,
        skip_phases: Optional[list[str]] = None,
        dry_run: bool = False,
    ):
        self.scenario = scenario
        self.context = context
        self.skip_phases = skip_phases or []
        self.dry_run = dry_run
        self.completed: list[str] = []
        self.failed_phase: Optional[str] = None

    def preview(self) -> int:
        """Show what would be executed without running. Returns EXIT_SUCCESS."""
        phases = self.scenario.get_phases(self.context)

        print("")
        print("═══════════════════════════════════════════════════════════════")
        print(f"  DRY-RUN: {self.scenario.name}")
        print(f"  Host: {self.context.host}")
        print(f"  Project: {self.context.project}")
        print(f"  Profiles: {self.context.profiles or '(none)'}")
        print("═══════════════════════════════════════════════════════════════")
        print("")

        print("Phases to execute:")
        phase_count = 0
        skip_count = 0
        for phase_name, action, description in phases:
            if phase_name in self.skip_phases:
                print(f"  [SKIP] {phase_name}: {description}")
                skip_count += 1
            else:
                print(f"  [ OK ] {phase_name}: {description}")
                print(f"         Action: {type(action).__name__}")
                phase_count += 1

        print("")
        print("═══════════════════════════════════════════════════════════════")
        print(f"  Summary: {phase_count} phases to execute, {skip_count} to skip")
        print("  Mode: DRY-RUN (no changes made)")
        print("═══════════════════════════════════════════════════════════════")
        return EXIT_SUCCESS

    def run(self) -> int:
        """Run all phases. Returns the process exit code."""
        if self.dry_run:
            return self.preview()

        logger.info(f"Starting '{self.scenario.name}' for host: {self.context.host}")
        phases = self.scenario.get_phases(self.context)
        start_time = time.time()

        for phase_name, action, description in phases:
            if phase_name in self.skip_phases:
                logger.info(f"Skipping phase: {phase_name}")
                continue

            logger.info(f"Running phase: {phase_name} - {description}")
            try:
                result = action.run(self.context)
            except BootstrapError as e:
                logger.error(f"Phase {phase_name} failed: {e.message}")
                self.failed_phase = phase_name
                return e.exit_code

            if result.skipped:
                logger.info(f"Phase {phase_name} skipped: {result.message}")
            else:
                logger.info(f"Phase {phase_name} passed ({result.duration:.1f}s) {result.message}".rstrip())
            if result.context_updates:
                self.context = replace(self.context, **result.context_updates)
            self.completed.append(phase_name)

        logger.info(f"Provisioning completed in {time.time() - start_time:.1f}s")
        return EXIT_SUCCESS
