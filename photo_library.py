#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
#
"""
Photo library integration: file placement, registration and tagging.

The library is whatever keeps track of imported images. ``PhotoLibrary`` is
the narrow surface the batch needs; ``ExiftoolLibrary`` implements it by
reading files with exiftool and writing tags as XMP keywords, which photo
managers pick up when they (re)read the file.
"""

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Protocol

import exiftool
from exiftool.exceptions import ExifToolException

__all__: Final[list[str]] = [
    "ExiftoolLibrary",
    "ImageRecord",
    "LibraryError",
    "PhotoLibrary",
    "Tag",
    "create_unique_filename",
    "move_file",
]

# Highest numeric suffix tried before giving up on a unique name
MAX_INCREMENT: Final[int] = 99

_INCREMENT_RE: Final = re.compile(r"^(?P<base>.*)_(?P<num>\d{1,2})$")

logger = logging.getLogger("apply_fuji_profile")


class LibraryError(Exception):
    """Raised when the library cannot register or tag an image."""


@dataclass(frozen=True, slots=True)
class ImageRecord:
    """Handle for an image registered with the library."""

    path: Path
    mime_type: str
    width: int | None = None
    height: int | None = None

    @property
    def dimensions(self) -> str:
        """``WxH`` label, or ``-`` when exiftool reported no size."""
        if self.width and self.height:
            return f"{self.width}x{self.height}"
        return "-"


@dataclass(frozen=True, slots=True)
class Tag:
    """Hierarchical tag; levels are separated by ``|``."""

    name: str

    @property
    def leaf(self) -> str:
        return self.name.rsplit("|", 1)[-1]


class PhotoLibrary(Protocol):
    """Operations the import step needs from a photo library."""

    def import_image(self, path: Path) -> ImageRecord | None:
        """Register ``path``. Returns ``None`` if the file was rejected."""
        ...

    def create_tag(self, name: str) -> Tag: ...

    def attach_tag(self, tag: Tag, record: ImageRecord) -> None:
        """Attach ``tag`` to ``record``. Raises ``LibraryError`` on failure."""
        ...


# ═══════════════════════════════════════════════════════════════════
#                        FILE PLACEMENT
# ═══════════════════════════════════════════════════════════════════


def create_unique_filename(path: Path) -> Path:
    """Return ``path`` or the first free ``<stem>_NN<suffix>`` sibling.

    An existing two-digit ``_NN`` suffix is incremented rather than having a
    second suffix appended.

    Raises:
        FileExistsError: If every candidate up to ``_99`` is taken.
    """
    if not path.exists():
        return path

    stem = path.stem
    start = 1
    match = _INCREMENT_RE.match(stem)
    if match:
        stem = match["base"]
        start = int(match["num"]) + 1

    for n in range(start, MAX_INCREMENT + 1):
        candidate = path.with_name(f"{stem}_{n:02d}{path.suffix}")
        if not candidate.exists():
            return candidate

    raise FileExistsError(f"No unique filename available for {path}")


def move_file(source: Path, destination: Path) -> Path:
    """Move a file, falling back to copy and delete across filesystems."""
    return Path(shutil.move(source, destination))


# ═══════════════════════════════════════════════════════════════════
#                        EXIFTOOL LIBRARY
# ═══════════════════════════════════════════════════════════════════


def _tag_value(data: dict, name: str) -> object | None:
    """Look up ``name`` regardless of the exiftool group prefix."""
    for key, value in data.items():
        if key == name or key.endswith(f":{name}"):
            return value
    return None


def _as_int(value: object) -> int | None:
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


class ExiftoolLibrary:
    """Photo library backed by exiftool metadata.

    Registration succeeds for any file exiftool recognises as an image;
    tags are appended to ``XMP-lr:HierarchicalSubject`` (full path) and
    ``XMP-dc:Subject`` (leaf keyword).
    """

    def import_image(self, path: Path) -> ImageRecord | None:
        try:
            with exiftool.ExifToolHelper() as et:
                metadata = et.get_tags(
                    [str(path)], tags=["MIMEType", "ImageWidth", "ImageHeight"]
                )
        except (ExifToolException, OSError) as e:
            logger.debug("exiftool could not read %s: %s", path, e)
            return None

        if not metadata:
            return None

        data = metadata[0]
        mime_type = _tag_value(data, "MIMEType")
        if not isinstance(mime_type, str) or not mime_type.startswith("image/"):
            logger.debug("Not an image: %s (%s)", path, mime_type or "unknown type")
            return None

        return ImageRecord(
            path=path,
            mime_type=mime_type,
            width=_as_int(_tag_value(data, "ImageWidth")),
            height=_as_int(_tag_value(data, "ImageHeight")),
        )

    def create_tag(self, name: str) -> Tag:
        return Tag(name)

    def attach_tag(self, tag: Tag, record: ImageRecord) -> None:
        try:
            with exiftool.ExifToolHelper() as et:
                et.execute(
                    "-overwrite_original",
                    f"-XMP-lr:HierarchicalSubject+={tag.name}",
                    f"-XMP-dc:Subject+={tag.leaf}",
                    str(record.path),
                )
        except (ExifToolException, OSError) as e:
            raise LibraryError(f"Failed to tag {record.path.name}: {e}") from e
