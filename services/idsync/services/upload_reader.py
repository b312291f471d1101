"""Streaming reader for identity-provider link uploads.

The upload is consumed chunk by chunk: bytes are split into lines, each line
is decoded on its own, and then split into fields with the csv module. An
undecodable header rejects the upload; an undecodable data line only fails
that row. Quoted fields spanning several lines are not supported.
"""

import csv
import uuid
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass, field

from idsync.config import IdentityProviderCsvSettings
from idsync.errors import InvalidHeaderError, RowFormatError
from idsync.iam.gateway import IdentityProviderLink

USER_COLUMNS = 4
PROVIDER_COLUMNS = 3
BYTE_ORDER_MARK = "\ufeff"


@dataclass(frozen=True)
class UserLinkRow:
    """One data line of the upload."""

    line: int
    company_user_id: uuid.UUID
    firstname: str
    lastname: str
    email: str
    links: list[IdentityProviderLink] = field(default_factory=list)


async def iter_lines(chunks: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    """Split a byte stream lazily into lines without line endings."""
    pending = b""
    async for chunk in chunks:
        pending += chunk
        *lines, pending = pending.split(b"\n")
        for line in lines:
            yield line.rstrip(b"\r")
    if pending:
        yield pending.rstrip(b"\r")


class UploadRowReader:
    """Reads the header, then yields data rows in stream order.

    Line numbers count every line of the upload, the header being line 1.
    Blank lines are skipped but still counted.
    """

    def __init__(self, lines: AsyncIterator[bytes], settings: IdentityProviderCsvSettings) -> None:
        self._lines = lines
        self._settings = settings
        self._line = 0
        self.provider_count: int | None = None

    def _decode(self, raw: bytes) -> str:
        return raw.decode(self._settings.encoding)

    def _split(self, text: str) -> list[str]:
        fields = next(csv.reader([text], delimiter=self._settings.separator))
        return [value.strip() for value in fields]

    async def read_header(self) -> int:
        """Parse the header line and return the number of provider column groups."""
        async for raw in self._lines:
            self._line += 1
            try:
                text = self._decode(raw)
            except UnicodeDecodeError as e:
                raise InvalidHeaderError(
                    f"upload header is not valid {self._settings.encoding}: {e.reason}"
                ) from e
            if self._line == 1:
                text = text.lstrip(BYTE_ORDER_MARK)
            if not text.strip():
                continue
            fields = self._split(text)
            expected = self._settings.user_headers
            if fields[:USER_COLUMNS] != expected:
                raise InvalidHeaderError(
                    f"upload header must start with {', '.join(expected)}, "
                    f"got {', '.join(fields[:USER_COLUMNS])}"
                )
            extra = len(fields) - USER_COLUMNS
            if extra % PROVIDER_COLUMNS:
                raise InvalidHeaderError(
                    "upload header must declare provider alias, user id and user name "
                    f"in groups of {PROVIDER_COLUMNS}, got {extra} provider columns"
                )
            self.provider_count = extra // PROVIDER_COLUMNS
            return self.provider_count
        raise InvalidHeaderError("upload is empty")

    async def rows(self) -> AsyncIterator[tuple[int, bytes]]:
        """Yield (line number, raw line) for every non-blank line after the header."""
        if self.provider_count is None:
            await self.read_header()
        async for raw in self._lines:
            self._line += 1
            if not raw.strip():
                continue
            yield self._line, raw

    def parse_row(self, line: int, raw: bytes) -> UserLinkRow:
        """Decode and map one data line; raises RowFormatError on malformed content."""
        try:
            fields = self._split(self._decode(raw))
        except UnicodeDecodeError as e:
            raise RowFormatError(f"line is not valid {self._settings.encoding}: {e.reason}") from e

        provider_count = self.provider_count or 0
        expected = USER_COLUMNS + PROVIDER_COLUMNS * provider_count
        if len(fields) != expected:
            raise RowFormatError(f"expected {expected} columns, got {len(fields)}")
        try:
            company_user_id = uuid.UUID(fields[0])
        except ValueError:
            raise RowFormatError(f"invalid user id {fields[0]!r}") from None

        links = []
        for start in range(USER_COLUMNS, expected, PROVIDER_COLUMNS):
            alias, user_id, user_name = fields[start : start + PROVIDER_COLUMNS]
            if alias:
                links.append(
                    IdentityProviderLink(alias=alias, user_id=user_id, user_name=user_name)
                )

        return UserLinkRow(
            line=line,
            company_user_id=company_user_id,
            firstname=fields[1],
            lastname=fields[2],
            email=fields[3],
            links=links,
        )
