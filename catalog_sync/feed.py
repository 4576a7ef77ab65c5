"""Feed transport and CSV parsing."""

from __future__ import annotations

import logging

import httpx

from .errors import TransportError
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

FEED_HEADERS = {
    "user-agent": "catalog-sync/1.0",
    "cache-control": "no-cache",
    "pragma": "no-cache",
}


def parse_csv(text: str) -> list[list[str]]:
    """Parse comma-separated text into rows of cells.

    Quoted fields may contain commas, line breaks and doubled quotes (`""`).
    CRLF, LF and lone CR all end a row. Malformed input never raises:
    - a quote inside an unquoted field is taken literally
    - an unterminated quoted field runs to the end of the text
    - ragged rows are returned as they are
    Trailing rows made only of blank cells are dropped.
    """
    if text.startswith("\ufeff"):
        text = text[1:]

    rows: list[list[str]] = []
    row: list[str] = []
    field: list[str] = []
    in_quotes = False
    field_started = False
    i = 0
    n = len(text)

    while i < n:
        c = text[i]

        if in_quotes:
            if c == '"':
                if i + 1 < n and text[i + 1] == '"':
                    field.append('"')
                    i += 2
                    continue
                in_quotes = False
                i += 1
                continue
            if c == "\r":
                # Embedded CRLF / CR become LF inside the cell.
                field.append("\n")
                i += 2 if i + 1 < n and text[i + 1] == "\n" else 1
                continue
            field.append(c)
            i += 1
            continue

        if c == '"' and not field_started:
            in_quotes = True
            field_started = True
            i += 1
            continue
        if c == ",":
            row.append("".join(field))
            field = []
            field_started = False
            i += 1
            continue
        if c in "\r\n":
            row.append("".join(field))
            rows.append(row)
            row = []
            field = []
            field_started = False
            i += 2 if c == "\r" and i + 1 < n and text[i + 1] == "\n" else 1
            continue

        field.append(c)
        field_started = True
        i += 1

    if field or row or field_started:
        row.append("".join(field))
        rows.append(row)

    while rows and all(not cell.strip() for cell in rows[-1]):
        rows.pop()
    return rows


def split_header(rows: list[list[str]]) -> tuple[list[str], list[list[str]]]:
    """Split parsed rows into the header and non-blank data rows."""
    if not rows:
        return [], []
    headers = [cell.strip() for cell in rows[0]]
    data = [row for row in rows[1:] if any(cell.strip() for cell in row)]
    return headers, data


async def fetch_feed_text(
    url: str,
    policy: RetryPolicy,
    client: httpx.AsyncClient | None = None,
) -> str:
    """Fetch the feed document, raising TransportError on failure."""
    if not url:
        raise TransportError("Feed URL is empty")

    async def attempt(http: httpx.AsyncClient) -> str:
        resp = await http.get(url, headers=FEED_HEADERS)
        resp.raise_for_status()
        return resp.text

    async def run(http: httpx.AsyncClient) -> str:
        try:
            return await policy.run(lambda: attempt(http), label=f"feed {url}")
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"Fetch feed failed: HTTP {e.response.status_code} {e.response.reason_phrase}"
            ) from e
        except (httpx.HTTPError, TimeoutError) as e:
            raise TransportError(f"Fetch feed failed: {e!r}") from e

    if client is not None:
        return await run(client)

    async with httpx.AsyncClient(follow_redirects=True, timeout=httpx.Timeout(policy.timeout)) as http:
        return await run(http)
