"""
File downloads with bounded retries.

Downloads land in a cache directory and are reused on later runs. Transient
failures (connection errors, timeouts, 5xx and 429 responses) are retried
with exponential backoff; a missing resource (404) is reported at once.
"""

import time
from pathlib import Path

import requests

from bumblesdm.config.settings import DownloadConfig
from bumblesdm.errors import DataUnavailable
from bumblesdm.utils.logging import get_logger

log = get_logger(__name__)

_TRANSIENT_STATUS = {429, 500, 502, 503, 504}
_CHUNK_SIZE = 1 << 20


class ResourceNotFound(DataUnavailable):
    """The remote resource does not exist (HTTP 404/410)."""


def download_file(
    url: str,
    target: Path,
    config: DownloadConfig | None = None,
    *,
    session: requests.Session | None = None,
) -> Path:
    """
    Download a URL to a file unless the file already exists.

    The body is streamed to a temporary sibling and renamed into place, so
    an interrupted download never leaves a truncated cache entry.

    Args:
        url: Resource URL.
        target: Destination path.
        config: Retry and timeout settings.
        session: Optional requests session (tests inject one).

    Returns:
        Path to the downloaded (or previously cached) file.

    Raises:
        ResourceNotFound: If the server reports the resource as missing.
        DataUnavailable: If all attempts fail.
    """
    if target.exists():
        log.debug("Download cache hit", url=url, path=str(target))
        return target

    config = config or DownloadConfig()
    http = session or requests.Session()
    target.parent.mkdir(parents=True, exist_ok=True)
    partial = target.with_suffix(target.suffix + ".part")

    attempts = config.retries + 1
    last_error: str | None = None
    for attempt in range(1, attempts + 1):
        try:
            log.info("Downloading", url=url, attempt=attempt, max_attempts=attempts)
            with http.get(url, stream=True, timeout=config.timeout_s) as response:
                if response.status_code in (404, 410):
                    msg = "Remote resource not found"
                    raise ResourceNotFound(msg, url=url, status=response.status_code)
                if response.status_code in _TRANSIENT_STATUS:
                    last_error = f"HTTP {response.status_code}"
                else:
                    response.raise_for_status()
                    with partial.open("wb") as f:
                        for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                            f.write(chunk)
                    partial.replace(target)
                    log.info("Downloaded", url=url, path=str(target), bytes=target.stat().st_size)
                    return target
        except (requests.ConnectionError, requests.Timeout) as e:
            last_error = str(e)
        except requests.HTTPError as e:
            msg = "Download failed"
            raise DataUnavailable(msg, url=url, error=str(e)) from e
        finally:
            if partial.exists():
                partial.unlink()

        if attempt < attempts:
            delay = config.backoff_s * (2 ** (attempt - 1))
            log.warning("Transient download failure, retrying", url=url, error=last_error, delay_s=delay)
            time.sleep(delay)

    msg = "Download failed after retries"
    raise DataUnavailable(msg, url=url, attempts=attempts, error=last_error)
