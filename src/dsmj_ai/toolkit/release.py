"""
Latest release lookup through the GitHub API.

Any failure (network, rate limit, unexpected payload) falls back to the
default branch; resolving a version never blocks an install.
"""

import httpx
import structlog
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config.schema import SourceConfig

logger = structlog.get_logger()

_RETRYABLE_ERRORS = (httpx.TransportError,)


def latest_release(config: SourceConfig, client: httpx.Client | None = None) -> str | None:
    """Tag name of the latest release, or None if it cannot be determined."""
    url = f"{config.github_api.rstrip('/')}/releases/latest"
    own_client = client is None
    client = client or httpx.Client(
        timeout=config.timeout,
        follow_redirects=True,
        headers={"Accept": "application/vnd.github+json"},
    )
    try:
        for attempt in Retrying(
            retry=retry_if_exception_type(_RETRYABLE_ERRORS),
            stop=stop_after_attempt(config.retries + 1),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        ):
            with attempt:
                response = client.get(url)
        response.raise_for_status()
        tag = response.json().get("tag_name")
    except (httpx.HTTPError, ValueError, AttributeError) as e:
        logger.info("release.lookup_failed", url=url, error=str(e))
        return None
    finally:
        if own_client:
            client.close()

    if not isinstance(tag, str) or not tag:
        return None
    logger.info("release.latest", tag=tag)
    return tag


def resolve_ref(config: SourceConfig, requested: str | None = None, client: httpx.Client | None = None) -> str:
    """Ref to install: the explicit one, else the latest release, else the default branch."""
    if requested:
        return requested
    return latest_release(config, client=client) or config.default_branch
