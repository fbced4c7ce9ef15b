"""Single-file sparse fetch from a Git repository.

Retrieves exactly one path at one ref without cloning the repository:

    git init -> remote add -> sparse pattern -> fetch --depth 1 -> checkout --detach

The scratch repository lives in a temporary directory that is removed on
every exit path. Credentials never appear in argv: the SSH key travels in
GIT_SSH_COMMAND and HTTP auth headers in GIT_CONFIG_* environment entries.
"""

import logging
import os
import re
import shlex
import tempfile
from pathlib import Path

from common import redact_url, run_command
from errors import AuthError, MissingPathError, PreconditionError, TransportError
from sources.spec import GitSingleFile, describe

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300

# git/ssh/http diagnostics that mean "credentials missing or rejected"
_AUTH_FAILURE_RE = re.compile(
    r'Authentication failed'
    r'|could not read (Username|Password)'
    r'|terminal prompts disabled'
    r'|Permission denied \(publickey'
    r'|HTTP Basic: Access denied'
    r'|returned error: 40[13]'
    r'|Repository not found',
    re.IGNORECASE,
)
_MISSING_REF_RE = re.compile(r"couldn't find remote ref", re.IGNORECASE)

# gitignore-style metacharacters that must be escaped in a sparse pattern
_PATTERN_SPECIAL_RE = re.compile(r'([\\*?\[\]!#])')


def sparse_pattern(path: str) -> str:
    """Anchored non-cone sparse-checkout pattern matching exactly one path."""
    return '/' + _PATTERN_SPECIAL_RE.sub(r'\\\1', path)


def git_env(source: GitSingleFile) -> dict:
    """Build the environment for git commands against this source."""
    env = os.environ.copy()
    env['GIT_TERMINAL_PROMPT'] = '0'

    if source.is_ssh:
        ssh_cmd = ['ssh', '-o', 'BatchMode=yes', '-o', 'StrictHostKeyChecking=accept-new']
        if source.auth.ssh_key:
            key = Path(source.auth.ssh_key).expanduser()
            ssh_cmd += ['-i', str(key), '-o', 'IdentitiesOnly=yes']
        env['GIT_SSH_COMMAND'] = ' '.join(shlex.quote(part) for part in ssh_cmd)
        return env

    header = source.auth.http_header()
    if header:
        env['GIT_CONFIG_COUNT'] = '1'
        env['GIT_CONFIG_KEY_0'] = 'http.extraHeader'
        env['GIT_CONFIG_VALUE_0'] = f'{header[0]}: {header[1]}'
    return env


def _classify_failure(step: str, source: GitSingleFile, stderr: str) -> Exception:
    detail = redact_url(stderr.strip().splitlines()[-1] if stderr.strip() else 'no output')
    where = describe(source)

    if _AUTH_FAILURE_RE.search(stderr):
        if source.is_ssh:
            hint = "check SSH_KEY or the ssh agent identity"
        elif source.auth.http_header():
            hint = "the auth header was rejected"
        else:
            hint = "private repository needs AUTH_TOKEN or AUTH_HEADER"
        return AuthError(f"git {step} rejected for {where}: {hint} ({detail})")

    if _MISSING_REF_RE.search(stderr):
        return TransportError(f"Branch '{source.branch}' not found in {redact_url(source.repo)}")

    return TransportError(f"git {step} failed for {where}: {detail}")


def _git(args: list[str], work: Path, env: dict, timeout: int, source: GitSingleFile) -> str:
    rc, out, err = run_command(['git'] + args, cwd=work, env=env, timeout=timeout)
    if rc != 0:
        raise _classify_failure(args[0], source, err or out)
    return out


def fetch_file(source: GitSingleFile, timeout: int = DEFAULT_TIMEOUT) -> bytes:
    """Fetch one file from a Git ref and return its contents.

    Args:
        source: Repository, branch, path and credentials
        timeout: Timeout per git command in seconds

    Returns:
        File contents (never empty)

    Raises:
        PreconditionError: Configured SSH key file does not exist
        AuthError: Remote rejected the credentials
        TransportError: Fetch or checkout failed
        MissingPathError: Path absent, not a file, or empty at that ref
    """
    if source.is_ssh and source.auth.ssh_key:
        key = Path(source.auth.ssh_key).expanduser()
        if not key.is_file():
            raise PreconditionError(f"SSH key not found: {key}")

    env = git_env(source)
    logger.info(f"Sparse fetch of {describe(source)}")

    with tempfile.TemporaryDirectory(prefix='stack-bootstrap-git-', ignore_cleanup_errors=True) as scratch:
        work = Path(scratch)
        _git(['init', '-q'], work, env, timeout, source)
        _git(['remote', 'add', 'origin', source.repo], work, env, timeout, source)

        _git(['config', 'core.sparseCheckout', 'true'], work, env, timeout, source)
        info_dir = work / '.git' / 'info'
        info_dir.mkdir(parents=True, exist_ok=True)
        (info_dir / 'sparse-checkout').write_text(sparse_pattern(source.path) + '\n', encoding='utf-8')

        _git(['fetch', '--depth', '1', '--no-tags', 'origin', source.branch], work, env, timeout, source)
        _git(['checkout', '-q', '--detach', 'FETCH_HEAD'], work, env, timeout, source)

        target = work / source.path
        if not target.is_file():
            raise MissingPathError(
                f"'{source.path}' not found at {source.branch} in {redact_url(source.repo)}"
            )
        content = target.read_bytes()
        if not content:
            raise MissingPathError(
                f"'{source.path}' is empty at {source.branch} in {redact_url(source.repo)}"
            )

    logger.debug("Fetched %d bytes from %s", len(content), describe(source))
    return content
