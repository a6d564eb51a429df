"""Zip archive writer for batch results."""

import zipfile
from io import BytesIO
from typing import Iterable, List, Tuple

from imageoptix.errors import ArchiveError


def unique_names(names: Iterable[str]) -> List[str]:
    """Suffix repeated names so every archive entry is distinct.

    ``["a.webp", "a.webp"]`` becomes ``["a.webp", "a (1).webp"]``.
    """
    seen = set()
    result = []
    for name in names:
        candidate = name
        stem, dot, ext = name.rpartition(".")
        if not dot:
            stem, ext = name, ""
        n = 1
        while candidate in seen:
            candidate = f"{stem} ({n}).{ext}" if ext else f"{stem} ({n})"
            n += 1
        seen.add(candidate)
        result.append(candidate)
    return result


def build_archive(entries: Iterable[Tuple[str, bytes]]) -> bytes:
    """Pack named buffers into a single zip payload."""
    buf = BytesIO()
    try:
        with zipfile.ZipFile(
            buf, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=1
        ) as zf:
            for name, data in entries:
                zf.writestr(name, data)
    except Exception as exc:  # noqa: BLE001
        raise ArchiveError(f"Failed to build archive: {exc}") from exc
    return buf.getvalue()
