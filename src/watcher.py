"""Config file watcher that signals a container to reload.

Watches the file's parent directory and filters its events (close_write,
moved_to, create) down to the file's basename, so a file replaced by a
rename onto its path is seen like an in-place write.

Each qualifying event starts a short debounce window; when it ends exactly
one signal is sent through the Docker Engine API:

    POST {DOCKER_API}/containers/{TARGET}/kill?signal=SIGUSR1
"""

import enum
import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional, Protocol

import requests

from common import redact_url, require_tool
from errors import ExternalToolError

logger = logging.getLogger(__name__)

WATCH_EVENTS = ('close_write', 'moved_to', 'create')
DEFAULT_DEBOUNCE = 0.3
DEFAULT_SIGNAL = 'SIGUSR1'
SIGNAL_TIMEOUT = 10


@dataclass(frozen=True)
class WatchTarget:
    """The file being watched and the container to signal."""
    file: Path
    container: str

    @property
    def directory(self) -> Path:
        return self.file.parent

    @property
    def basename(self) -> str:
        return self.file.name

    @classmethod
    def create(cls, file: str, container: str) -> 'WatchTarget':
        return cls(file=Path(file).expanduser().absolute(), container=container)


@dataclass(frozen=True)
class FileEvent:
    """One directory event: inotify event names and the entry name."""
    events: frozenset
    name: str


class EventSource(Protocol):
    """Blocking iterator over directory events."""

    def events(self) -> Iterator[FileEvent]:
        ...


def parse_event_line(line: str) -> Optional[FileEvent]:
    """Parse an inotifywait '--format %e|%f' line ('CLOSE_WRITE,CLOSE|app.conf')."""
    line = line.rstrip('\n')
    if '|' not in line:
        return None
    events, name = line.split('|', 1)
    return FileEvent(
        events=frozenset(e.strip().lower() for e in events.split(',') if e.strip()),
        name=name,
    )


class InotifyEventSource:
    """EventSource backed by `inotifywait -m` on a directory."""

    def __init__(self, directory: Path, event_names: Iterable[str] = WATCH_EVENTS):
        self.directory = Path(directory)
        self.event_names = tuple(event_names)
        self.process: Optional[subprocess.Popen] = None

    def command(self) -> list[str]:
        cmd = ['inotifywait', '-m', '-q', '--format', '%e|%f']
        for name in self.event_names:
            cmd += ['-e', name]
        return cmd + [str(self.directory)]

    def events(self) -> Iterator[FileEvent]:
        require_tool('inotifywait', 'inotify-tools')
        self.process = subprocess.Popen(
            self.command(),
            stdout=subprocess.PIPE,
            text=True,
        )
        try:
            for line in self.process.stdout:
                event = parse_event_line(line)
                if event:
                    yield event
        finally:
            self.close()

        rc = self.process.returncode if self.process else None
        if rc:
            raise ExternalToolError(f"inotifywait exited with status {rc}")

    def close(self):
        if self.process and self.process.poll() is None:
            self.process.terminate()
            try:
                self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self.process.kill()
                self.process.wait()


class DockerSignaler:
    """Deliver a signal to a container via the Docker Engine HTTP API."""

    def __init__(self, docker_api: str, signal: str = DEFAULT_SIGNAL, timeout: int = SIGNAL_TIMEOUT):
        self.docker_api = docker_api.rstrip('/')
        self.signal = signal
        self.timeout = timeout

    def send(self, container: str) -> bool:
        """POST the kill request. Returns False (and logs) on any failure."""
        url = f"{self.docker_api}/containers/{container}/kill"
        try:
            resp = requests.post(url, params={'signal': self.signal}, timeout=self.timeout)
            resp.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(f"[watch] failed to signal {container}: {redact_url(str(e))}")
            return False
        logger.info("[watch] signal sent.")
        return True


class WatchState(enum.Enum):
    IDLE = 'idle'
    DEBOUNCING = 'debouncing'


class ChangeWatcher:
    """Debounced file-change -> signal loop.

    IDLE --qualifying event--> DEBOUNCING --timer--> send signal --> IDLE
    """

    def __init__(
        self,
        target: WatchTarget,
        source: EventSource,
        signaler: DockerSignaler,
        debounce: float = DEFAULT_DEBOUNCE,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.target = target
        self.source = source
        self.signaler = signaler
        self.debounce = debounce
        self.sleep = sleep
        self.state = WatchState.IDLE
        self.signals_sent = 0
        self.failures = 0

    def qualifies(self, event: FileEvent) -> bool:
        """True for a watched event class on the target's basename."""
        return event.name == self.target.basename and bool(event.events & set(WATCH_EVENTS))

    def handle(self, event: FileEvent) -> bool:
        """Process one event. Returns True if a signal cycle ran."""
        if self.state is not WatchState.IDLE or not self.qualifies(event):
            return False

        self.state = WatchState.DEBOUNCING
        try:
            self.sleep(self.debounce)
            kinds = ','.join(sorted(event.events)).upper()
            logger.info(
                f"[watch] {self.target.file} changed ({kinds}) -> sending "
                f"{self.signaler.signal} to {self.target.container}"
            )
            if self.signaler.send(self.target.container):
                self.signals_sent += 1
            else:
                self.failures += 1
        finally:
            self.state = WatchState.IDLE
        return True

    def run(self) -> None:
        """Block on the event source until it ends."""
        logger.info(f"[watch] watching {self.target.file} for changes ...")
        for event in self.source.events():
            self.handle(event)
