"""
Opaque content references.

A reference is a ``content://`` URI that names a stored file inside the
reserved directory and carries the metadata needed to serve it:

    content://<authority>/<reserved dir>/<file name>?encoding=base64&mime_type=text%2Fplain

``mime_type`` is mandatory, ``encoding`` is optional. Parsing never touches
the filesystem; a reference whose file is gone still parses fine and only
fails when it is opened.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from urllib.parse import parse_qs, quote, unquote, urlencode, urlsplit

from loguru import logger

from ephemera.core.errors import MalformedReferenceError
from ephemera.core.settings import settings
from ephemera.services.temp_file import StoredFile, TempFileService

SCHEME = "content"
ENCODING_PARAM = "encoding"
MEDIA_TYPE_PARAM = "mime_type"


class TransferEncoding(StrEnum):
    BASE64 = "base64"
    QUOTED_PRINTABLE = "quoted-printable"

    @classmethod
    def recognize(cls, tag: str | None) -> TransferEncoding | None:
        """Map an encoding tag to a decoder; absent, "none" and unknown tags pass through."""
        if not tag:
            return None
        try:
            return cls(tag.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class ContentReference:
    authority: str
    root: str
    name: str
    media_type: str
    encoding: str | None = None

    @property
    def uri(self) -> str:
        query: list[tuple[str, str]] = []
        if self.encoding is not None:
            query.append((ENCODING_PARAM, self.encoding))
        query.append((MEDIA_TYPE_PARAM, self.media_type))
        path = f"/{quote(self.root, safe='')}/{quote(self.name, safe='')}"
        return f"{SCHEME}://{self.authority}{path}?{urlencode(query)}"

    def __str__(self) -> str:
        return self.uri

    @classmethod
    def parse(cls, uri: str) -> ContentReference:
        if not isinstance(uri, str) or not uri:
            raise MalformedReferenceError("Reference must be a non-empty string")
        try:
            parts = urlsplit(uri)
        except ValueError as exc:
            raise MalformedReferenceError(f"Unparsable reference: {uri!r}") from exc
        if parts.scheme != SCHEME:
            raise MalformedReferenceError(f"Unsupported reference scheme: {parts.scheme!r}")
        if not parts.netloc:
            raise MalformedReferenceError("Reference has no authority")

        segments = parts.path.split("/")
        if len(segments) != 3 or segments[0] != "":
            raise MalformedReferenceError(f"Malformed reference path: {parts.path!r}")
        root, name = unquote(segments[1]), unquote(segments[2])
        if not root or not TempFileService.is_plain_name(name):
            raise MalformedReferenceError(f"Malformed reference path: {parts.path!r}")

        params = parse_qs(parts.query, keep_blank_values=True)
        media_types = params.get(MEDIA_TYPE_PARAM, [])
        if len(media_types) != 1 or not media_types[0].strip():
            raise MalformedReferenceError("Reference is missing its media type")
        encodings = params.get(ENCODING_PARAM, [])
        if len(encodings) > 1:
            raise MalformedReferenceError("Reference names more than one encoding")

        return cls(
            authority=parts.netloc,
            root=root,
            name=name,
            media_type=media_types[0],
            encoding=encodings[0] if encodings else None,
        )


@dataclass(frozen=True)
class ResolvedReference:
    path: Path
    encoding: str | None
    media_type: str


class ReferenceCodec:
    """Builds and parses references for files of one reserved directory."""

    def __init__(self, base_dir: Path, authority: str | None = None) -> None:
        if authority is None:
            authority = settings.REFERENCE_AUTHORITY
        if not authority or "/" in authority:
            raise ValueError("authority must be a non-empty host-like string")
        self._base_dir = Path(base_dir)
        self._authority = authority
        self._root = self._base_dir.name

    @property
    def authority(self) -> str:
        return self._authority

    def encode(
        self,
        stored: StoredFile,
        encoding: str | None,
        media_type: str,
    ) -> ContentReference:
        if not media_type or not media_type.strip():
            raise MalformedReferenceError("media_type is required")
        if stored.directory != self._base_dir or not TempFileService.is_plain_name(stored.name):
            raise ValueError(
                f"File '{stored.name}' is not inside the reserved temp directory"
            )
        if encoding is not None and TransferEncoding.recognize(encoding) is None:
            logger.debug("[REF] Unrecognised encoding tag kept as-is", encoding=encoding)
        return ContentReference(
            authority=self._authority,
            root=self._root,
            name=stored.name,
            media_type=media_type,
            encoding=encoding,
        )

    def decode(self, reference: ContentReference | str) -> ResolvedReference:
        ref = self.coerce(reference)
        return ResolvedReference(
            path=self._base_dir / ref.name,
            encoding=ref.encoding,
            media_type=ref.media_type,
        )

    def coerce(self, reference: ContentReference | str) -> ContentReference:
        ref = ContentReference.parse(reference) if isinstance(reference, str) else reference
        if ref.authority != self._authority or ref.root != self._root:
            raise MalformedReferenceError(
                f"Reference does not belong to this provider: {ref.uri}"
            )
        if not ref.media_type or not TempFileService.is_plain_name(ref.name):
            raise MalformedReferenceError(f"Malformed reference: {ref.uri}")
        return ref
