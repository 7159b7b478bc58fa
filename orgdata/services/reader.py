"""Streaming reader for the organisation reference data XML distribution.

The distribution is a single large document: a `Manifest` header, a
`CodeSystems` block and an `Organisations` block holding one element per
organisation. Organisations are streamed with `iterparse` and each is handed
on as raw XML bytes, so parsing cost is paid by the normalize workers rather
than by the single reader thread.
"""

from __future__ import annotations

import os
import xml.etree.ElementTree as ET
from contextlib import contextmanager
from datetime import date
from typing import IO, TYPE_CHECKING, Iterator, Union

import structlog

from orgdata.schemas.organisation import CodeRecord, ManifestRecord

if TYPE_CHECKING:
    from orgdata.services.channel import Channel

logger = structlog.get_logger()

SUPPORTED_FORMAT_VERSION = "2-0-0"

Source = Union[str, "os.PathLike[str]", IO[bytes]]


class UnsupportedFormatError(Exception):
    """Raised when a source document is not in the supported format.

    Fatal: a load is abandoned before anything is written.
    """


def local_name(tag: str) -> str:
    """Strip any `{namespace}` prefix from an element tag."""
    return tag.rsplit("}", 1)[-1]


@contextmanager
def open_source(source: Source) -> Iterator[IO[bytes]]:
    """Open a path, or rewind an already open binary file."""
    if isinstance(source, (str, os.PathLike)):
        with open(source, "rb") as f:
            yield f
    else:
        if source.seekable():
            source.seek(0)
        yield source


def _child(elem: ET.Element, name: str) -> ET.Element | None:
    for c in elem:
        if local_name(c.tag) == name:
            return c
    return None


def _value(elem: ET.Element, name: str) -> str | None:
    c = _child(elem, name)
    return c.get("value") if c is not None else None


def parse_manifest(elem: ET.Element) -> ManifestRecord:
    """Build a manifest record from a `Manifest` element."""
    record_count = _value(elem, "RecordCount")
    publication_date = _value(elem, "PublicationDate")
    try:
        return ManifestRecord(
            version=_value(elem, "Version") or "",
            publication_type=_value(elem, "PublicationType") or "",
            publication_date=date.fromisoformat(publication_date or ""),
            content_description=_value(elem, "ContentDescription") or "",
            record_count=int(record_count) if record_count else None,
        )
    except ValueError as exc:
        raise UnsupportedFormatError(f"Malformed manifest: {exc}") from exc


def check_version(manifest: ManifestRecord, supported_version: str = SUPPORTED_FORMAT_VERSION) -> None:
    if manifest.version != supported_version:
        raise UnsupportedFormatError(
            f"Unsupported format version '{manifest.version}'; expected '{supported_version}'"
        )


def read_manifest(source: Source) -> ManifestRecord:
    """Return the manifest header of a source document.

    Only the document prefix up to the end of the manifest is parsed.
    """
    with open_source(source) as f:
        for _, elem in ET.iterparse(f, events=("end",)):
            if local_name(elem.tag) == "Manifest":
                manifest = parse_manifest(elem)
                logger.info("manifest_read", version=manifest.version,
                            content=manifest.content_description,
                            record_count=manifest.record_count)
                return manifest
    raise UnsupportedFormatError("No manifest found in source document")


def read_code_systems(source: Source) -> list[CodeRecord]:
    """Return every concept of every code system declared in the document."""
    codes: list[CodeRecord] = []
    with open_source(source) as f:
        for _, elem in ET.iterparse(f, events=("end",)):
            tag = local_name(elem.tag)
            if tag == "CodeSystem":
                oid = elem.get("oid") or ""
                for concept in elem:
                    if local_name(concept.tag) != "concept":
                        continue
                    codes.append(CodeRecord(
                        code_system_id=oid,
                        code=concept.get("id") or "",
                        display_name=concept.get("displayName") or "",
                    ))
                elem.clear()
            elif tag == "CodeSystems":
                break
    return codes


def iter_organisation_fragments(
    source: Source,
    supported_version: str = SUPPORTED_FORMAT_VERSION,
) -> Iterator[bytes]:
    """Yield each organisation element as serialized XML, in document order.

    The manifest is validated before the first fragment is produced.
    """
    manifest: ManifestRecord | None = None
    path: list[str] = []

    with open_source(source) as f:
        context = ET.iterparse(f, events=("start", "end"))
        root: ET.Element | None = None
        for event, elem in context:
            tag = local_name(elem.tag)
            if event == "start":
                if root is None:
                    root = elem
                path.append(tag)
                if tag == "Organisations" and manifest is None:
                    raise UnsupportedFormatError("Organisations precede the manifest")
                continue

            path.pop()
            if tag == "Manifest" and manifest is None:
                manifest = parse_manifest(elem)
                check_version(manifest, supported_version)
            elif tag == "Organisation" and path and path[-1] == "Organisations":
                yield ET.tostring(elem)
                elem.clear()
                # Drop the emptied element from its parent as well.
                if root is not None:
                    for container in root:
                        if local_name(container.tag) == "Organisations":
                            container.clear()
                            break

    if manifest is None:
        raise UnsupportedFormatError("No manifest found in source document")


def read_organisations(
    source: Source,
    channel: "Channel",
    supported_version: str = SUPPORTED_FORMAT_VERSION,
) -> int:
    """Push organisation fragments onto `channel`, then close it.

    Blocking; meant to run on its own thread. Returns the number of
    fragments pushed.
    """
    count = 0
    try:
        for fragment in iter_organisation_fragments(source, supported_version):
            channel.put(fragment)
            count += 1
    finally:
        channel.close()
    logger.info("source_read", fragments=count)
    return count
