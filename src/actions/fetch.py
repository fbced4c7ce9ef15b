"""Artifact fetch phases."""

import logging
import os
import time
from dataclasses import dataclass
from functools import partial
from pathlib import Path

from artifacts import (
    address_placeholders,
    substitute_placeholders,
    tighten_permissions,
    validate_certificate,
    validate_json,
    validate_private_key,
)
from common import ActionResult, redact_url
from envfile import EnvFile
from errors import EXIT_MISSING_ADDRESS, PreconditionError, ValidationError
from manifest import has_service, load_manifest
from profiles import KIND_CERT, KIND_KEY, active_rules
from sources import infer_filename

logger = logging.getLogger(__name__)

ARTIFACT_VALIDATORS = {
    KIND_CERT: validate_certificate,
    KIND_KEY: validate_private_key,
}


def _destination(ctx, spec: str, pinned: str) -> Path:
    """Pinned name (relative to workdir) or one inferred from the source."""
    if pinned:
        dest = Path(ctx.config.expand(pinned, ctx.host))
        return dest if dest.is_absolute() else ctx.workdir / dest
    return ctx.workdir / infer_filename(ctx.resolver.classify(spec))


def render_env(template: EnvFile, host: str, project: str, external: str, internal: str) -> EnvFile:
    """Overlay the well-known keys onto an env template.

    Domains are only written when non-empty; every other template line is
    kept as-is.
    """
    env = EnvFile(template.lines)
    env.set('COMPOSE_PROJECT_NAME', project)
    env.set('HOSTNAME', host)
    if external:
        env.set('EXTERNAL_DOMAIN', external)
    if internal:
        env.set('INTERNAL_DOMAIN', internal)
    return env


@dataclass
class FetchConfigAction:
    """Fetch the primary application config."""
    name: str

    def run(self, ctx) -> ActionResult:
        start = time.time()
        config = ctx.config
        spec = config.expand(config.conf_src, ctx.host)
        dest = _destination(ctx, spec, config.conf_dest)

        validate = None
        if config.conf_format == 'json':
            validate = partial(validate_json, label=f"config {dest.name}")

        result = ctx.resolver.fetch(spec, dest=dest, validate=validate)
        state = 'updated' if result.changed else 'unchanged'
        return ActionResult(
            success=True,
            message=f"{dest} {state}",
            duration=time.time() - start,
            context_updates={'conf_path': result.path},
        )


@dataclass
class FetchManifestAction:
    """Fetch the compose manifest and env template, derive the env projection."""
    name: str

    def run(self, ctx) -> ActionResult:
        start = time.time()
        config = ctx.config
        spec = config.expand(config.compose_src, ctx.host)
        dest = _destination(ctx, spec, config.compose_dest)

        result = ctx.resolver.fetch(spec, dest=dest)
        manifest = load_manifest(result.path)

        if has_service(manifest, config.address_service) and not config.has_addresses:
            raise PreconditionError(
                f"Manifest includes '{config.address_service}'; "
                "EXTERNAL_DOMAIN and INTERNAL_DOMAIN are both required",
                EXIT_MISSING_ADDRESS,
            )

        template = EnvFile()
        if config.env_template_src:
            template_spec = config.expand(config.env_template_src, ctx.host)
            content = ctx.resolver.retrieve(ctx.resolver.classify(template_spec))
            try:
                template = EnvFile.parse(content.decode('utf-8'))
            except UnicodeDecodeError as e:
                raise ValidationError(f"Env template is not UTF-8 text: {redact_url(template_spec)}") from e
            logger.info(f"[{self.name}] Env template has {len(template.keys())} keys")

        env = render_env(
            template, ctx.host, ctx.project, config.external_domain, config.internal_domain
        )
        environment = dict(os.environ)
        environment.update(env.as_dict())
        environment['COMPOSE_PROFILES'] = str(ctx.profiles)

        compose = ctx.compose_factory(
            result.path, ctx.project, environment, ctx.workdir, config.compose_command
        )
        return ActionResult(
            success=True,
            message=f"{len(manifest['services'])} services",
            duration=time.time() - start,
            context_updates={
                'manifest_path': result.path,
                'manifest': manifest,
                'env': env,
                'environment': environment,
                'compose': compose,
            },
        )


@dataclass
class FetchProfileArtifactsAction:
    """Fetch and check the files each active profile needs."""
    name: str

    def run(self, ctx) -> ActionResult:
        start = time.time()
        rules = active_rules(ctx.profiles)
        if not rules:
            return ActionResult(success=True, message="no active profiles", skipped=True)

        fetched: list[Path] = []
        text_files: list[Path] = []
        for rule in rules:
            for artifact in rule.artifacts:
                spec = ctx.config.expand(getattr(ctx.config, artifact.source_field), ctx.host)
                dest = ctx.workdir / artifact.dest
                check = ARTIFACT_VALIDATORS.get(artifact.kind)
                validate = partial(check, label=str(dest)) if check else None

                logger.info(f"[{self.name}] {rule.token}: {artifact.dest}")
                result = ctx.resolver.fetch(spec, dest=dest, validate=validate)
                if artifact.kind == KIND_KEY:
                    tighten_permissions(result.path)
                elif artifact.kind not in ARTIFACT_VALIDATORS:
                    text_files.append(result.path)
                fetched.append(result.path)

        return ActionResult(
            success=True,
            message=f"{len(fetched)} artifacts for {', '.join(r.token for r in rules)}",
            duration=time.time() - start,
            context_updates={
                'artifact_paths': tuple(fetched),
                'text_artifacts': tuple(text_files),
            },
        )


@dataclass
class SubstitutePlaceholdersAction:
    """Fill the reachable-address placeholders in text artifacts."""
    name: str

    def run(self, ctx) -> ActionResult:
        start = time.time()
        config = ctx.config
        if not (config.external_domain or config.internal_domain):
            return ActionResult(success=True, message="no addresses configured", skipped=True)

        values = address_placeholders(config.external_domain, config.internal_domain)
        targets = [p for p in (ctx.conf_path, *ctx.text_artifacts) if p]
        changed = []
        for path in targets:
            try:
                if substitute_placeholders(path, values):
                    changed.append(path)
            except UnicodeDecodeError:
                logger.debug(f"[{self.name}] {path} is not text, skipping")

        return ActionResult(
            success=True,
            message=f"{len(changed)}/{len(targets)} files updated",
            duration=time.time() - start,
        )
