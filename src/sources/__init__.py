"""Source resolver: fetch artifacts uniformly from URLs and Git repos.

    resolver = SourceResolver(auth=SourceAuth(token='...'))
    result = resolver.fetch('git@github.com:acme/conf.git#main:app.conf', dest_dir=Path('.'))

Whatever the transport, the result is a non-empty file at the destination,
written atomically (tmp file + rename).
"""

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from errors import InvalidSourceError, TransportError
from sources import direct, git
from sources.spec import (
    DirectURL,
    GitSingleFile,
    SourceAuth,
    SourceSpec,
    describe,
    infer_filename,
    parse_source,
)

logger = logging.getLogger(__name__)

WRITE_FORCE = 'force'
WRITE_BACKUP = 'backup'

Validator = Callable[[bytes], None]


@dataclass
class FetchResult:
    """Outcome of a successful fetch."""
    path: Path
    size: int
    changed: bool = True
    backup: Optional[Path] = None


def _backup_path(dest: Path) -> Path:
    stamp = datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%SZ')
    return dest.with_name(f"{dest.name}.bak.{stamp}")


def write_artifact(dest: Path, content: bytes, mode: str = WRITE_FORCE) -> FetchResult:
    """Write content to dest atomically.

    Identical existing content is left untouched (changed=False). In backup
    mode a differing existing file is copied aside first.

    Raises:
        TransportError: Empty content or the write failed
    """
    if not content:
        raise TransportError(f"Refusing to write empty artifact to {dest}")

    if dest.is_file() and dest.read_bytes() == content:
        logger.info(f"No change: {dest}")
        return FetchResult(path=dest, size=len(content), changed=False)

    tmp = dest.with_name(dest.name + '.tmp')
    backup = None
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        if mode == WRITE_BACKUP and dest.exists():
            backup = _backup_path(dest)
            shutil.copy2(dest, backup)
            logger.info(f"Backed up {dest} -> {backup}")
        tmp.write_bytes(content)
        tmp.replace(dest)
    except OSError as e:
        if tmp.exists():
            tmp.unlink()
        raise TransportError(f"Failed to write {dest}: {e}") from e

    return FetchResult(path=dest, size=len(content), changed=True, backup=backup)


class SourceResolver:
    """Classifies sources and retrieves them to local paths."""

    def __init__(
        self,
        auth: Optional[SourceAuth] = None,
        mode: str = WRITE_FORCE,
        timeout: int = direct.DEFAULT_TIMEOUT,
        retries: int = direct.DEFAULT_RETRIES,
        retry_delay: float = direct.DEFAULT_RETRY_DELAY,
        insecure: bool = False,
        git_timeout: int = git.DEFAULT_TIMEOUT,
    ):
        """Initialize resolver.

        Args:
            auth: Credentials applied to every source
            mode: 'force' (overwrite) or 'backup' (keep previous file)
            timeout: HTTP request timeout in seconds
            retries: Extra attempts for transient HTTP failures
            retry_delay: Fixed delay between HTTP attempts
            insecure: Skip TLS verification for direct fetches
            git_timeout: Timeout per git command in seconds
        """
        self.auth = auth or SourceAuth()
        self.mode = mode
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self.insecure = insecure
        self.git_timeout = git_timeout

    @classmethod
    def from_config(cls, config) -> 'SourceResolver':
        """Create a resolver from a BootstrapConfig."""
        return cls(
            auth=SourceAuth(
                token=config.auth_token,
                header=config.auth_header,
                ssh_key=config.ssh_key,
            ),
            mode=config.write_mode,
            timeout=config.fetch_timeout,
            retries=config.fetch_retries,
            retry_delay=config.fetch_retry_delay,
            insecure=config.insecure,
        )

    def classify(self, spec: str) -> SourceSpec:
        """Parse a source string with this resolver's credentials."""
        return parse_source(spec, self.auth)

    def retrieve(self, source: SourceSpec) -> bytes:
        """Download a classified source and return its (non-empty) bytes."""
        if isinstance(source, DirectURL):
            content = direct.download(
                source,
                timeout=self.timeout,
                retries=self.retries,
                retry_delay=self.retry_delay,
                insecure=self.insecure,
            )
        else:
            content = git.fetch_file(source, timeout=self.git_timeout)

        if not content:
            raise TransportError(f"Empty artifact from {describe(source)}")
        return content

    def fetch(
        self,
        spec: str,
        dest: Optional[Path] = None,
        dest_dir: Optional[Path] = None,
        validate: Optional[Validator] = None,
    ) -> FetchResult:
        """Fetch a source to a local file.

        Args:
            spec: Source string (URL or <repo>#<branch>:<path>)
            dest: Explicit destination file
            dest_dir: Directory for an inferred filename (used when dest is None)
            validate: Called with the content before writing; raises to reject

        Returns:
            FetchResult for the written file

        Raises:
            InvalidSourceError: Malformed spec or no derivable filename
            TransportError: Fetch failed or returned nothing
            ValidationError: Rejected by validate
        """
        source = self.classify(spec)
        if dest is None:
            if dest_dir is None:
                raise InvalidSourceError("Either dest or dest_dir is required")
            dest = Path(dest_dir) / infer_filename(source)
        dest = Path(dest)

        content = self.retrieve(source)
        if validate:
            validate(content)

        result = write_artifact(dest, content, self.mode)
        logger.info(f"Fetched {describe(source)} -> {dest} ({result.size} bytes)")
        return result


def fetch(spec: str, dest: Optional[Path] = None, **kwargs) -> FetchResult:
    """Fetch a source with a default resolver.

    Keyword arguments other than dest_dir/validate go to SourceResolver.
    """
    dest_dir = kwargs.pop('dest_dir', None)
    validate = kwargs.pop('validate', None)
    return SourceResolver(**kwargs).fetch(spec, dest=dest, dest_dir=dest_dir, validate=validate)


__all__ = [
    'WRITE_BACKUP',
    'WRITE_FORCE',
    'DirectURL',
    'FetchResult',
    'GitSingleFile',
    'SourceAuth',
    'SourceResolver',
    'SourceSpec',
    'describe',
    'fetch',
    'infer_filename',
    'parse_source',
    'write_artifact',
]
