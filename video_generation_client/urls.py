from typing import Optional
from urllib.parse import unquote

from loguru import logger
from video_generation_client.models import FileInfo


def normalize_download_url(raw_url: str) -> str:
    """Percent-decodes the URL, adds an https:// scheme if missing and strips the query string"""
    url = unquote(raw_url)
    if not url.startswith("http"):
        url = f"https://{url}"
        logger.debug("Added https:// prefix to URL")
    if "?" in url:
        url = url.split("?", 1)[0]
        logger.debug("Removed query parameters from URL")
    return url


def pick_download_url(file: FileInfo) -> Optional[str]:
    """Returns the normalized primary URL, falling back to the backup URL"""
    raw_url = file.download_url
    if not raw_url:
        logger.warning("Primary download_url is empty, trying backup_download_url")
        raw_url = file.backup_download_url
    if not raw_url:
        return None
    return normalize_download_url(raw_url)
