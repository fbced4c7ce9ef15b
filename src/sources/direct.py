"""Direct HTTP(S) fetch."""

import logging
import time

import requests
import urllib3

from common import redact_url
from errors import AuthError, TransportError
from sources.spec import DirectURL

logger = logging.getLogger(__name__)

# Statuses worth another attempt; everything else fails fast
RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})
AUTH_STATUSES = frozenset({401, 403})

DEFAULT_TIMEOUT = 60
DEFAULT_RETRIES = 3
DEFAULT_RETRY_DELAY = 2.0


def download(
    source: DirectURL,
    timeout: int = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    retry_delay: float = DEFAULT_RETRY_DELAY,
    insecure: bool = False,
) -> bytes:
    """GET a URL and return its body.

    Args:
        source: URL plus credentials
        timeout: Per-request timeout in seconds
        retries: Extra attempts for transient failures (connection, timeout, 5xx/429)
        retry_delay: Fixed pause between attempts in seconds
        insecure: Skip TLS certificate verification

    Returns:
        Response body (never empty)

    Raises:
        AuthError: HTTP 401/403
        TransportError: Any other failure, including an empty body
    """
    display = redact_url(source.url)
    headers = {}
    auth_header = source.auth.http_header()
    if auth_header:
        headers[auth_header[0]] = auth_header[1]

    if insecure:
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    attempt = 0
    while True:
        attempt += 1
        try:
            resp = requests.get(
                source.url,
                headers=headers,
                timeout=timeout,
                verify=not insecure,
            )
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            if attempt <= retries:
                logger.warning(
                    "Fetch of %s failed (%s), retry %d/%d in %.0fs",
                    display, type(e).__name__, attempt, retries, retry_delay,
                )
                time.sleep(retry_delay)
                continue
            raise TransportError(f"Cannot fetch {display}: {redact_url(str(e))}") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Cannot fetch {display}: {redact_url(str(e))}") from e

        if resp.status_code in RETRY_STATUSES and attempt <= retries:
            logger.warning(
                "Fetch of %s returned HTTP %d, retry %d/%d in %.0fs",
                display, resp.status_code, attempt, retries, retry_delay,
            )
            time.sleep(retry_delay)
            continue

        if resp.status_code in AUTH_STATUSES:
            hint = "credentials rejected" if auth_header else "authentication required"
            raise AuthError(f"HTTP {resp.status_code} fetching {display}: {hint}")

        if not 200 <= resp.status_code < 300:
            raise TransportError(f"HTTP {resp.status_code} fetching {display}")

        body = resp.content
        if not body:
            raise TransportError(f"Empty response body from {display}")

        logger.debug("Fetched %d bytes from %s", len(body), display)
        return body
