"""Image column rendering with thumbnail lookup."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Any, Callable, Iterable, Mapping, Optional
import html
import logging
import os

logger = logging.getLogger(__name__)

THUMB_DIR = "thumb"
THUMB_PREFIX = "tnail_"
MISSING_FILE_MARKER = "This File [ {name} ] Do Not or Never Exist!"


class ImageRenderer:
    """Turns a stored file path into an ``<img>`` tag or a marker.

    Args:
        root: Directory stored paths are relative to
        url_prefix: Prefix prepended to the path in ``src``
        extensions: Recognized image extensions (lowercase, no dot)
        exists: Callable deciding whether a relative path exists; defaults
            to a filesystem check under ``root``
    """

    def __init__(
        self,
        root: str = ".",
        url_prefix: str = "",
        extensions: Iterable[str] = ("jpg", "jpeg", "png", "gif"),
        exists: Optional[Callable[[str], bool]] = None,
    ):
        self.root = root
        self.url_prefix = url_prefix.rstrip("/")
        self.extensions = set()
        for extension in extensions:
            self.extensions.add(extension.lower().lstrip("."))
        if exists is None:
            exists = self._exists_on_disk
        self.exists = exists

    def _exists_on_disk(self, path: str) -> bool:
        return os.path.isfile(os.path.join(self.root, path.lstrip("/")))

    def is_image(self, path: str) -> bool:
        suffix = PurePosixPath(path).suffix.lower().lstrip(".")
        return suffix in self.extensions

    def thumbnail_for(self, field: str, path: str, row: Mapping[str, Any]) -> Optional[str]:
        """Explicit ``<field>_thumb`` value, else ``<dir>/thumb/tnail_<file>`` if it exists."""
        explicit = row.get(f"{field}_thumb")
        if explicit:
            return str(explicit)
        original = PurePosixPath(path)
        candidate = str(original.parent / THUMB_DIR / f"{THUMB_PREFIX}{original.name}")
        if self.exists(candidate):
            return candidate
        return None

    def render(self, field: str, value: Any, row: Mapping[str, Any], label: str = "") -> Any:
        """Rendered HTML for an image value; never raises for a missing file."""
        if value is None or value == "":
            return value
        path = str(value)
        name = PurePosixPath(path).name
        if not self.is_image(path):
            return html.escape(name)

        thumb = self.thumbnail_for(field, path, row)
        source = path
        if thumb is not None and self.exists(thumb):
            source = thumb
        elif not self.exists(path):
            logger.debug(f"Image for {field} not found: {name}")
            return MISSING_FILE_MARKER.format(name=html.escape(name))

        url = f"{self.url_prefix}/{source.lstrip('/')}" if self.url_prefix else source
        alt = html.escape(f"imgsrc::{label or field}", quote=True)
        src = html.escape(url, quote=True)
        return f'<center><img class="cdy-img-thumb" src="{src}" alt="{alt}"/></center>'
