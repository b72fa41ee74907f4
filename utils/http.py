from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from utils.logger import get_logger

logger = get_logger(__name__)

_CONTENT_TYPE_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
}


class HttpError(Exception):
    """An HTTP call failed (connection, status or payload)."""


def redact_url(url: str, parameter: str = "X-Plex-Token") -> str:
    """Strip an auth query parameter so URLs can be logged safely."""
    parts = urlsplit(str(url))
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != parameter]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def http_get(
    url: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    client: Optional[httpx.Client] = None,
) -> Any:
    """
    Perform an HTTP GET request and return the decoded JSON body.
    Raises HttpError with a log line on any failure.
    """
    owns_client = client is None
    client = client or httpx.Client(timeout=15.0)
    try:
        response = client.get(url, params=params, headers=headers)
        response.raise_for_status()
        return response.json()

    except httpx.HTTPStatusError as e:
        logger.error(f"HTTP {e.response.status_code} from {redact_url(url)} - {e}")
        raise HttpError(str(e)) from e
    except httpx.RequestError as e:
        logger.error(f"Failed to connect to {redact_url(url)} - {e}")
        raise HttpError(str(e)) from e
    except ValueError as e:
        logger.error(f"Failed to parse JSON from {redact_url(url)}")
        raise HttpError(f"Invalid JSON from {redact_url(url)}") from e
    finally:
        if owns_client:
            client.close()


def download_image(url: str, target_dir: Path, stem: str, client: Optional[httpx.Client] = None) -> Path:
    """
    Stream an image to `target_dir/<stem><ext>`, picking the extension from the content type.
    Partial files are removed on failure.
    """
    target_dir.mkdir(parents=True, exist_ok=True)
    owns_client = client is None
    client = client or httpx.Client(timeout=30.0, follow_redirects=True)
    target: Optional[Path] = None
    try:
        with client.stream("GET", url) as response:
            response.raise_for_status()
            content_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip().lower()
            ext = _CONTENT_TYPE_EXTENSIONS.get(content_type, ".jpg")
            target = target_dir / f"{stem}{ext}"
            logger.debug(f"Downloading poster → {redact_url(url)} -> {target}")
            with open(target, "wb") as fh:
                for chunk in response.iter_bytes():
                    fh.write(chunk)
    except (httpx.HTTPError, OSError) as e:
        if target is not None and target.exists():
            target.unlink()
        logger.error(f"Failed to download image {redact_url(url)} - {e}")
        raise HttpError(str(e)) from e
    finally:
        if owns_client:
            client.close()
    return target
