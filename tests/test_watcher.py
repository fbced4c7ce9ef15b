"""Tests for the config file watcher."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import requests

from watcher import (
    ChangeWatcher,
    DockerSignaler,
    FileEvent,
    InotifyEventSource,
    WatchState,
    WatchTarget,
    parse_event_line,
)


class ListSource:
    """EventSource replaying a fixed list of inotifywait lines."""

    def __init__(self, lines):
        self.lines = lines

    def events(self):
        for line in self.lines:
            event = parse_event_line(line)
            if event:
                yield event


def _watcher(lines, signaler=None):
    target = WatchTarget.create('/etc/stunnel/stunnel.conf', 'stunnel')
    signaler = signaler or MagicMock(signal='SIGUSR1')
    sleeps = []
    watcher = ChangeWatcher(target, ListSource(lines), signaler, debounce=0.3, sleep=sleeps.append)
    return watcher, signaler, sleeps


class TestParseEventLine:
    """inotifywait output parsing."""

    def test_multiple_events(self):
        event = parse_event_line('CLOSE_WRITE,CLOSE|stunnel.conf\n')
        assert event == FileEvent(frozenset({'close_write', 'close'}), 'stunnel.conf')

    def test_name_with_pipe(self):
        assert parse_event_line('CREATE|a|b').name == 'a|b'

    def test_garbage(self):
        assert parse_event_line('Watches established.') is None


class TestWatchTarget:
    """Directory and basename derivation."""

    def test_parts(self):
        target = WatchTarget.create('/etc/stunnel/stunnel.conf', 'stunnel')
        assert target.directory == Path('/etc/stunnel')
        assert target.basename == 'stunnel.conf'


class TestChangeWatcher:
    """Debounced signalling."""

    def test_rename_into_place_sends_one_signal(self):
        """Editor-style save: temp file written, then renamed over the target."""
        watcher, signaler, sleeps = _watcher([
            'CREATE|.stunnel.conf.swp',
            'CLOSE_WRITE,CLOSE|.stunnel.conf.swp',
            'MOVED_TO|stunnel.conf',
        ])
        watcher.run()

        signaler.send.assert_called_once_with('stunnel')
        assert sleeps == [0.3]
        assert watcher.signals_sent == 1
        assert watcher.state is WatchState.IDLE

    def test_in_place_write(self):
        watcher, signaler, _ = _watcher(['CLOSE_WRITE,CLOSE|stunnel.conf'])
        watcher.run()
        signaler.send.assert_called_once_with('stunnel')

    def test_other_files_ignored(self):
        watcher, signaler, sleeps = _watcher([
            'CLOSE_WRITE,CLOSE|stunnel.conf.bak',
            'MOVED_TO|other.conf',
        ])
        watcher.run()
        signaler.send.assert_not_called()
        assert sleeps == []

    def test_unwatched_event_ignored(self):
        watcher, signaler, _ = _watcher(['DELETE|stunnel.conf'])
        watcher.run()
        signaler.send.assert_not_called()

    def test_each_change_signals(self):
        watcher, signaler, _ = _watcher([
            'CLOSE_WRITE,CLOSE|stunnel.conf',
            'MOVED_TO|stunnel.conf',
        ])
        watcher.run()
        assert signaler.send.call_count == 2

    def test_failed_signal_keeps_watching(self):
        signaler = MagicMock(signal='SIGUSR1')
        signaler.send.side_effect = [False, True]
        watcher, _, _ = _watcher(['MOVED_TO|stunnel.conf', 'MOVED_TO|stunnel.conf'], signaler)
        watcher.run()
        assert watcher.failures == 1
        assert watcher.signals_sent == 1


class TestDockerSignaler:
    """Docker Engine API kill request."""

    def test_posts_kill(self):
        resp = MagicMock()
        with patch('watcher.requests.post', return_value=resp) as mock_post:
            assert DockerSignaler('http://docker-proxy:2375/').send('stunnel') is True
        mock_post.assert_called_once_with(
            'http://docker-proxy:2375/containers/stunnel/kill',
            params={'signal': 'SIGUSR1'},
            timeout=10,
        )
        resp.raise_for_status.assert_called_once()

    def test_failure_returns_false(self):
        error = requests.exceptions.ConnectionError('refused')
        with patch('watcher.requests.post', side_effect=error):
            assert DockerSignaler('http://docker-proxy:2375', signal='SIGHUP').send('stunnel') is False

    def test_http_error_returns_false(self):
        resp = MagicMock()
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError('404 No such container')
        with patch('watcher.requests.post', return_value=resp):
            assert DockerSignaler('http://docker-proxy:2375').send('missing') is False


class TestInotifyEventSource:
    """inotifywait invocation."""

    def test_command(self):
        cmd = InotifyEventSource(Path('/etc/stunnel')).command()
        assert cmd[:5] == ['inotifywait', '-m', '-q', '--format', '%e|%f']
        for name in ('close_write', 'moved_to', 'create'):
            assert name in cmd
        assert cmd[-1] == '/etc/stunnel'

    def test_streams_events(self):
        process = MagicMock()
        process.stdout = iter(['MOVED_TO|stunnel.conf\n', 'noise\n'])
        process.poll.return_value = 0
        process.returncode = 0
        with patch('watcher.require_tool'), \
                patch('watcher.subprocess.Popen', return_value=process) as popen:
            events = list(InotifyEventSource(Path('/etc/stunnel')).events())
        assert events == [FileEvent(frozenset({'moved_to'}), 'stunnel.conf')]
        assert popen.call_args.kwargs['stdout'] is subprocess.PIPE
