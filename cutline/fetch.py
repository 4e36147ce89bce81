"""Asset download helpers (HTTP via requests, local files via copy)."""

import logging
import re
import shutil
from pathlib import Path
from urllib.parse import unquote, urlparse

import requests

from cutline.errors import AcquisitionError

logger = logging.getLogger(__name__)

IMAGE_EXT_RE = re.compile(r"\.(jpg|jpeg|png|gif|webp|bmp)$", re.IGNORECASE)

_CHUNK_SIZE = 1024 * 1024


def image_extension(url: str) -> str:
    """Return the lower-case image extension of ``url`` (default ``png``)."""
    path = url.split("?", 1)[0]
    match = IMAGE_EXT_RE.search(path)
    return match.group(1).lower() if match else "png"


def url_extension(url: str, default: str = "") -> str:
    suffix = Path(urlparse(url).path).suffix
    return suffix or default


def download(url: str, dest: Path, timeout: float = 300.0) -> Path:
    """Fetch ``url`` into ``dest`` byte-for-byte.

    ``url`` may be http(s), ``file://`` or a plain local path. The file is
    written under a ``.part`` name and renamed on success, so a failed
    download never leaves something that looks like valid input.
    """
    partial = dest.with_name(dest.name + ".part")
    parsed = urlparse(url)

    try:
        if parsed.scheme in ("http", "https"):
            with requests.get(url, stream=True, timeout=timeout) as resp:
                resp.raise_for_status()
                with open(partial, "wb") as f:
                    for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                        f.write(chunk)
        elif parsed.scheme in ("file", ""):
            src = Path(unquote(parsed.path) if parsed.scheme else url)
            shutil.copyfile(src, partial)
        else:
            raise AcquisitionError(f"Unsupported URL scheme: {url}", url=url)
        partial.replace(dest)
    except requests.RequestException as e:
        partial.unlink(missing_ok=True)
        raise AcquisitionError(f"Failed to download {url}: {e}", url=url) from e
    except OSError as e:
        partial.unlink(missing_ok=True)
        raise AcquisitionError(f"Failed to fetch {url}: {e}", url=url) from e
    except AcquisitionError:
        partial.unlink(missing_ok=True)
        raise

    logger.debug("Downloaded %s -> %s", url, dest)
    return dest
