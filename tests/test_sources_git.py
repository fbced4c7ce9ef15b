"""Tests for sparse single-file git fetch."""

from pathlib import Path
from unittest.mock import patch

import pytest

from errors import (
    EXIT_AUTH_FAILED,
    EXIT_MISSING_PATH,
    AuthError,
    MissingPathError,
    PreconditionError,
    TransportError,
)
from sources.git import fetch_file, git_env, sparse_pattern
from sources.spec import SourceAuth, parse_source


class FakeGit:
    """run_command stand-in that materializes the file on checkout."""

    def __init__(self, files=None, fail_on=None, stderr=''):
        self.files = files or {}
        self.fail_on = fail_on
        self.stderr = stderr
        self.calls: list[list[str]] = []
        self.envs: list[dict] = []
        self.workdirs: list[Path] = []

    def __call__(self, cmd, cwd=None, env=None, timeout=None, **kwargs):
        self.calls.append(cmd)
        self.envs.append(env)
        self.workdirs.append(Path(cwd))
        step = cmd[1]
        if step == self.fail_on:
            return 128, '', self.stderr
        if step == 'checkout':
            for rel, content in self.files.items():
                target = Path(cwd) / rel
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(content)
        return 0, '', ''

    @property
    def steps(self) -> list[str]:
        return [c[1] for c in self.calls]


class TestSparsePattern:
    """Sparse-checkout pattern escaping."""

    def test_anchored(self):
        assert sparse_pattern('output/node-01.conf') == '/output/node-01.conf'

    def test_escapes_metacharacters(self):
        assert sparse_pattern('conf/[a]*.yml') == r'/conf/\[a\]\*.yml'


class TestGitEnv:
    """Credentials travel in the environment."""

    def test_prompts_disabled(self):
        env = git_env(parse_source('https://github.com/acme/conf.git#main:a.conf'))
        assert env['GIT_TERMINAL_PROMPT'] == '0'
        assert 'GIT_CONFIG_COUNT' not in env

    def test_https_header_in_config_env(self):
        auth = SourceAuth(token='abc')
        env = git_env(parse_source('https://github.com/acme/conf.git#main:a.conf', auth))
        assert env['GIT_CONFIG_COUNT'] == '1'
        assert env['GIT_CONFIG_KEY_0'] == 'http.extraHeader'
        assert env['GIT_CONFIG_VALUE_0'] == 'Authorization: Bearer abc'

    def test_ssh_key_in_ssh_command(self):
        auth = SourceAuth(ssh_key='/keys/deploy')
        env = git_env(parse_source('git@github.com:acme/conf.git#main:a.conf', auth))
        assert '-i /keys/deploy' in env['GIT_SSH_COMMAND']
        assert 'BatchMode=yes' in env['GIT_SSH_COMMAND']
        assert 'IdentitiesOnly=yes' in env['GIT_SSH_COMMAND']


class TestFetchFile:
    """fetch_file command sequence and failure mapping."""

    SPEC = 'https://github.com/acme/conf.git#main:output/node-01.conf'

    def test_command_sequence_and_content(self):
        fake = FakeGit(files={'output/node-01.conf': b'listen 443\n'})
        with patch('sources.git.run_command', side_effect=fake):
            content = fetch_file(parse_source(self.SPEC))

        assert content == b'listen 443\n'
        assert fake.steps == ['init', 'remote', 'config', 'fetch', 'checkout']
        assert fake.calls[3] == ['git', 'fetch', '--depth', '1', '--no-tags', 'origin', 'main']
        assert fake.calls[4] == ['git', 'checkout', '-q', '--detach', 'FETCH_HEAD']

    def test_token_never_in_argv(self):
        fake = FakeGit(files={'output/node-01.conf': b'x'})
        source = parse_source(self.SPEC, SourceAuth(token='s3cr3t'))
        with patch('sources.git.run_command', side_effect=fake):
            fetch_file(source)

        for cmd in fake.calls:
            assert not any('s3cr3t' in part for part in cmd)
        assert all(env['GIT_CONFIG_VALUE_0'] == 'Authorization: Bearer s3cr3t' for env in fake.envs)

    def test_scratch_removed_on_success(self):
        fake = FakeGit(files={'output/node-01.conf': b'x'})
        with patch('sources.git.run_command', side_effect=fake):
            fetch_file(parse_source(self.SPEC))
        assert not fake.workdirs[0].exists()

    def test_scratch_removed_on_failure(self):
        fake = FakeGit(fail_on='fetch', stderr='fatal: unable to access: Could not resolve host')
        with patch('sources.git.run_command', side_effect=fake):
            with pytest.raises(TransportError):
                fetch_file(parse_source(self.SPEC))
        assert not fake.workdirs[0].exists()

    def test_missing_path(self):
        fake = FakeGit(files={'other.conf': b'x'})
        with patch('sources.git.run_command', side_effect=fake):
            with pytest.raises(MissingPathError) as exc:
                fetch_file(parse_source(self.SPEC))
        assert exc.value.exit_code == EXIT_MISSING_PATH

    def test_empty_file_is_missing(self):
        fake = FakeGit(files={'output/node-01.conf': b''})
        with patch('sources.git.run_command', side_effect=fake):
            with pytest.raises(MissingPathError, match='empty'):
                fetch_file(parse_source(self.SPEC))

    def test_auth_failure(self):
        fake = FakeGit(
            fail_on='fetch',
            stderr="fatal: could not read Username for 'https://github.com': terminal prompts disabled",
        )
        with patch('sources.git.run_command', side_effect=fake):
            with pytest.raises(AuthError) as exc:
                fetch_file(parse_source(self.SPEC))
        assert exc.value.exit_code == EXIT_AUTH_FAILED
        assert 'AUTH_TOKEN' in exc.value.message

    def test_missing_branch(self):
        fake = FakeGit(fail_on='fetch', stderr="fatal: couldn't find remote ref nope")
        with patch('sources.git.run_command', side_effect=fake):
            with pytest.raises(TransportError, match="Branch 'main' not found"):
                fetch_file(parse_source(self.SPEC))

    def test_missing_ssh_key(self, tmp_path):
        auth = SourceAuth(ssh_key=str(tmp_path / 'absent'))
        source = parse_source('git@github.com:acme/conf.git#main:a.conf', auth)
        with patch('sources.git.run_command') as mock_run:
            with pytest.raises(PreconditionError):
                fetch_file(source)
        mock_run.assert_not_called()
