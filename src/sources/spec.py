"""Source spec classification.

A source is either a plain URL fetched over HTTP(S) or a single file inside
a Git repository, written as <repo>#<branch>:<path>:

    https://example.com/files/app.conf
    git@github.com:acme/conf.git#main:output/node-01.conf
    ssh://git@git.example.com/acme/conf.git#main:compose.yml
    https://github.com/acme/conf.git#v2:stunnel/ca.pem

Classification is purely syntactic and happens before any network I/O.
"""

import re
from dataclasses import dataclass, field
from typing import Optional, Union
from urllib.parse import unquote, urlparse

from common import redact_url
from errors import InvalidSourceError

# Header name as sent on the wire, e.g. "Authorization: token abc"
_HEADER_LINE_RE = re.compile(r'^(?P<name>[A-Za-z0-9-]+):\s*(?P<value>.+)$')


@dataclass(frozen=True)
class SourceAuth:
    """Credentials for fetching a source.

    header takes precedence over token. A header given without a name
    ("Basic dXNlcjpw") is sent as Authorization.
    """
    token: str = field(default='', repr=False)
    header: str = field(default='', repr=False)
    ssh_key: str = ''

    def http_header(self) -> Optional[tuple[str, str]]:
        """Return the (name, value) header to send, or None for anonymous."""
        if self.header:
            match = _HEADER_LINE_RE.match(self.header.strip())
            if match:
                return match.group('name'), match.group('value').strip()
            return 'Authorization', self.header.strip()
        if self.token:
            return 'Authorization', f'Bearer {self.token}'
        return None


@dataclass(frozen=True)
class DirectURL:
    """A file fetched with a single HTTP(S) GET."""
    url: str
    auth: SourceAuth = field(default_factory=SourceAuth)

    kind = 'direct'


@dataclass(frozen=True)
class GitSingleFile:
    """One path at one ref of a Git repository."""
    repo: str
    branch: str
    path: str
    auth: SourceAuth = field(default_factory=SourceAuth)

    kind = 'git'

    @property
    def is_ssh(self) -> bool:
        """True for git@host:... and ssh:// remotes."""
        return self.repo.startswith(('git@', 'ssh://'))


SourceSpec = Union[DirectURL, GitSingleFile]


def _split_ref(spec: str) -> tuple[str, Optional[str]]:
    """Split '<repo>#<ref>' on the last '#'. ref is None when absent."""
    repo, sep, ref = spec.rpartition('#')
    if not sep:
        return spec, None
    return repo, ref


def _parse_git(repo: str, ref: Optional[str], spec: str, auth: SourceAuth) -> GitSingleFile:
    if ref is None:
        raise InvalidSourceError(f"Git source is missing '#<branch>:<path>': {redact_url(spec)}")

    branch, colon, path = ref.partition(':')
    branch = branch.strip()
    path = path.strip().lstrip('/')
    if not branch:
        raise InvalidSourceError(f"Git source is missing a branch: {redact_url(spec)}")
    if not colon or not path:
        raise InvalidSourceError(f"Git source is missing a path: {redact_url(spec)}")
    if '..' in path.split('/'):
        raise InvalidSourceError(f"Git source path must stay inside the repository: {redact_url(spec)}")
    if not repo:
        raise InvalidSourceError(f"Git source is missing a repository: {redact_url(spec)}")

    if repo.startswith('git@'):
        if ':' not in repo:
            raise InvalidSourceError(f"SSH repository must look like git@host:org/repo.git: {redact_url(spec)}")
    else:
        parsed = urlparse(repo)
        if not parsed.netloc:
            raise InvalidSourceError(f"Repository URL has no host: {redact_url(spec)}")

    return GitSingleFile(repo=repo, branch=branch, path=path, auth=auth)


def parse_source(spec: str, auth: Optional[SourceAuth] = None) -> SourceSpec:
    """Classify a source string into a DirectURL or GitSingleFile.

    Rules, evaluated in order:
    1. http(s):// without a '#branch:path' suffix -> DirectURL
       (a .git URL with any '#' ref is treated as git)
    2. git@..., ssh://..., or http(s)://....git#branch:path -> GitSingleFile
    3. anything else -> InvalidSourceError

    Raises:
        InvalidSourceError: Malformed or unsupported spec (no I/O performed)
    """
    auth = auth or SourceAuth()
    spec = (spec or '').strip()
    if not spec:
        raise InvalidSourceError("Source is empty")

    lower = spec.lower()
    is_http = lower.startswith(('http://', 'https://'))
    is_ssh = lower.startswith(('git@', 'ssh://'))
    repo, ref = _split_ref(spec)
    has_git_ref = ref is not None and (':' in ref or repo.endswith('.git'))

    if is_http and not has_git_ref:
        if not urlparse(spec).netloc:
            raise InvalidSourceError(f"URL has no host: {redact_url(spec)}")
        return DirectURL(url=spec, auth=auth)

    if is_ssh:
        return _parse_git(repo if ref is not None else spec, ref, spec, auth)

    if is_http:
        if not repo.endswith('.git'):
            raise InvalidSourceError(
                f"HTTPS Git sources must name a .git repository: {redact_url(spec)}"
            )
        return _parse_git(repo, ref, spec, auth)

    if repo.endswith('.git') and ref is not None:
        raise InvalidSourceError(f"Git source is missing a URL scheme: {redact_url(spec)}")

    raise InvalidSourceError(f"Unsupported source: {redact_url(spec)}")


def infer_filename(source: SourceSpec) -> str:
    """Derive a local filename from a source.

    DirectURL: last URL path segment (query and fragment dropped).
    GitSingleFile: last segment of the in-repo path.

    Raises:
        InvalidSourceError: If no non-empty segment can be derived
    """
    if isinstance(source, DirectURL):
        name = unquote(urlparse(source.url).path.split('/')[-1])
    else:
        name = source.path.split('/')[-1]

    if not name or name in ('.', '..'):
        raise InvalidSourceError(f"Cannot derive a filename from source: {describe(source)}")
    return name


def describe(source: SourceSpec) -> str:
    """Loggable form of a source (credentials masked)."""
    if isinstance(source, DirectURL):
        return redact_url(source.url)
    return redact_url(f"{source.repo}#{source.branch}:{source.path}")
