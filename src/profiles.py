"""Profile parsing and profile-driven requirements.

Profiles are feature flags given as a comma-separated list (the same value
compose reads from COMPOSE_PROFILES). Each known profile maps to the inputs
it requires and the artifacts it fetches, declared once in PROFILE_RULES.
"""

from dataclasses import dataclass
from typing import Iterable, Mapping

from errors import (
    EXIT_MISSING_DDNS_INPUT,
    EXIT_MISSING_STUNNEL_INPUT,
)

KIND_CERT = 'cert'
KIND_KEY = 'key'
KIND_TEXT = 'text'


class ProfileSet:
    """Set of profile tokens with exact-token membership.

    Tokens are matched against the normalized form ',a,b,' by looking for
    ',token,', so 'stunnel' never matches 'stunnel-mtls'.
    """

    def __init__(self, tokens: Iterable[str] = ()):
        self.tokens: tuple[str, ...] = tuple(
            dict.fromkeys(t.strip() for t in tokens if t and t.strip())
        )

    @classmethod
    def parse(cls, value: str) -> 'ProfileSet':
        """Parse 'a, b ,c' into a ProfileSet."""
        return cls((value or '').split(','))

    @property
    def normalized(self) -> str:
        """',a,b,' form used for containment tests."""
        return ',' + ','.join(self.tokens) + ','

    def __contains__(self, token: str) -> bool:
        return f',{token.strip()},' in self.normalized

    def __iter__(self):
        return iter(self.tokens)

    def __len__(self) -> int:
        return len(self.tokens)

    def __str__(self) -> str:
        return ','.join(self.tokens)

    def __repr__(self) -> str:
        return f"ProfileSet({list(self.tokens)!r})"


@dataclass(frozen=True)
class Artifact:
    """A file a profile needs: config field holding its source, where it goes, what it is."""
    source_field: str
    dest: str
    kind: str = KIND_TEXT


@dataclass(frozen=True)
class ProfileRule:
    """Inputs and artifacts attached to one profile token."""
    token: str
    requires: tuple[str, ...]
    artifacts: tuple[Artifact, ...]
    exit_code: int
    supersedes: tuple[str, ...] = ()


PROFILE_RULES: tuple[ProfileRule, ...] = (
    ProfileRule(
        token='stunnel-mtls',
        requires=('stunnel_cafile_src', 'stunnel_cert_src', 'stunnel_key_src'),
        artifacts=(
            Artifact('stunnel_cafile_src', 'stunnel/ca.pem', KIND_CERT),
            Artifact('stunnel_cert_src', 'stunnel/cert.pem', KIND_CERT),
            Artifact('stunnel_key_src', 'stunnel/key.pem', KIND_KEY),
        ),
        exit_code=EXIT_MISSING_STUNNEL_INPUT,
        supersedes=('stunnel-https',),
    ),
    ProfileRule(
        token='stunnel-https',
        requires=('stunnel_cert_src', 'stunnel_key_src'),
        artifacts=(
            Artifact('stunnel_cert_src', 'stunnel/cert.pem', KIND_CERT),
            Artifact('stunnel_key_src', 'stunnel/key.pem', KIND_KEY),
        ),
        exit_code=EXIT_MISSING_STUNNEL_INPUT,
    ),
    ProfileRule(
        token='ddns-go',
        requires=('ddns_go_config_src',),
        artifacts=(
            Artifact('ddns_go_config_src', 'ddns-go/config.yaml', KIND_TEXT),
        ),
        exit_code=EXIT_MISSING_DDNS_INPUT,
    ),
)


def active_rules(
    profiles: ProfileSet,
    rules: Iterable[ProfileRule] = PROFILE_RULES,
) -> list[ProfileRule]:
    """Rules whose token is in profiles, minus any superseded by another active rule."""
    active = [r for r in rules if r.token in profiles]
    superseded = {token for r in active for token in r.supersedes}
    return [r for r in active if r.token not in superseded]


def missing_inputs(
    profiles: ProfileSet,
    values: Mapping[str, str],
    rules: Iterable[ProfileRule] = PROFILE_RULES,
) -> list[tuple[ProfileRule, list[str]]]:
    """Return (rule, missing_fields) for every active rule lacking inputs."""
    missing = []
    for rule in active_rules(profiles, rules):
        absent = [name for name in rule.requires if not values.get(name)]
        if absent:
            missing.append((rule, absent))
    return missing
