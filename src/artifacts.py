"""Structural checks and post-processing for fetched artifacts."""

import json
import logging
import os
import re
import stat
from pathlib import Path
from typing import Mapping

from errors import ValidationError

logger = logging.getLogger(__name__)

CERT_MARKER = b'-----BEGIN CERTIFICATE-----'
# RSA/EC/DSA/OPENSSH/ENCRYPTED and plain PKCS#8 keys
KEY_MARKER_RE = re.compile(rb'-----BEGIN (?:[A-Z0-9]+ )*PRIVATE KEY-----')

EXTERNAL_PLACEHOLDER = '__EXTERNAL_DOMAIN__'
INTERNAL_PLACEHOLDER = '__INTERNAL_DOMAIN__'

PRIVATE_KEY_MODE = stat.S_IRUSR | stat.S_IWUSR  # 0600


def validate_certificate(content: bytes, label: str = 'certificate') -> None:
    """Raise ValidationError unless content holds a PEM certificate."""
    if CERT_MARKER not in content:
        raise ValidationError(f"{label} is not a PEM certificate (no '{CERT_MARKER.decode()}' marker)")


def validate_private_key(content: bytes, label: str = 'private key') -> None:
    """Raise ValidationError unless content holds a PEM private key."""
    if not KEY_MARKER_RE.search(content):
        raise ValidationError(f"{label} is not a PEM private key (no 'BEGIN ... PRIVATE KEY' marker)")


def validate_json(content: bytes, label: str = 'config') -> None:
    """Raise ValidationError unless content parses as JSON."""
    try:
        json.loads(content.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(f"{label} is not valid JSON: {e}") from e


def tighten_permissions(path: Path, mode: int = PRIVATE_KEY_MODE) -> bool:
    """chmod a private key file. Best-effort: failures are logged, not raised."""
    try:
        os.chmod(path, mode)
        return True
    except OSError as e:
        logger.warning(f"Could not restrict permissions on {path}: {e}")
        return False


def substitute_placeholders(path: Path, values: Mapping[str, str]) -> bool:
    """Replace placeholder tokens in a text file in place.

    Tokens whose value is empty are left as-is.

    Returns:
        True if the file changed
    """
    path = Path(path)
    text = path.read_text(encoding='utf-8')
    updated = text
    for token, value in values.items():
        if value:
            updated = updated.replace(token, value)
    if updated == text:
        return False

    tmp = path.with_name(path.name + '.tmp')
    tmp.write_text(updated, encoding='utf-8')
    tmp.replace(path)
    logger.debug(f"Substituted placeholders in {path}")
    return True


def address_placeholders(external: str, internal: str) -> dict[str, str]:
    """Placeholder token -> value mapping for the reachable addresses."""
    return {
        EXTERNAL_PLACEHOLDER: external,
        INTERNAL_PLACEHOLDER: internal,
    }
