"""Scrape machine status from the LaundryConnect site.

The index page at SOURCE_URL links to one ``.aspx`` page per location; each
location page holds a table of machine, type, status and time remaining.
"""

from __future__ import annotations

import logging
import urllib.request
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Protocol
from urllib.parse import urljoin

from .config import (
    FETCH_TIMEOUT_S, HEALTH_TIMEOUT_S, SOURCE_BASE_URL, SOURCE_MARKER, SOURCE_URL, USER_AGENT,
)
from .models import ExternalHealth, MachineRecord

logger = logging.getLogger("laundrylog.source")


class FetchError(Exception):
    """Fetching or parsing one location page failed."""


class EndpointListError(FetchError):
    """The index of location pages could not be fetched."""


@dataclass(frozen=True, slots=True)
class LocationLink:
    name: str
    url: str


class MachineSource(Protocol):
    def fetch_location_links(self) -> list[LocationLink]: ...

    def fetch_location_records(self, link: LocationLink) -> list[MachineRecord]: ...

    def check(self) -> ExternalHealth: ...


class _LinkParser(HTMLParser):
    def __init__(self) -> None:
        super().__init__()
        self.links: list[tuple[str, str]] = []
        self._href: str | None = None
        self._text: list[str] = []

    def handle_starttag(self, tag, attrs):
        if tag == "a":
            self._href = dict(attrs).get("href")
            self._text = []

    def handle_data(self, data):
        if self._href is not None:
            self._text.append(data)

    def handle_endtag(self, tag):
        if tag == "a" and self._href is not None:
            self.links.append((self._href, "".join(self._text).strip()))
            self._href = None


class _TableParser(HTMLParser):
    """Collect the text of every <td> cell, grouped by <tr>."""

    def __init__(self) -> None:
        super().__init__()
        self.rows: list[list[str]] = []
        self._row: list[str] | None = None
        self._cell: list[str] | None = None

    def handle_starttag(self, tag, attrs):
        if tag == "tr":
            self._close_row()
            self._row = []
        elif tag == "td" and self._row is not None:
            self._close_cell()
            self._cell = []

    def handle_data(self, data):
        if self._cell is not None:
            self._cell.append(data)

    def handle_endtag(self, tag):
        if tag == "td":
            self._close_cell()
        elif tag == "tr":
            self._close_row()

    def close(self):
        super().close()
        self._close_row()

    def _close_cell(self):
        if self._cell is not None and self._row is not None:
            self._row.append("".join(self._cell).strip())
        self._cell = None

    def _close_row(self):
        self._close_cell()
        if self._row is not None:
            self.rows.append(self._row)
        self._row = None


def parse_location_links(html: str, base_url: str = SOURCE_BASE_URL) -> list[LocationLink]:
    parser = _LinkParser()
    parser.feed(html)
    parser.close()
    return [
        LocationLink(name=text, url=urljoin(base_url, href))
        for href, text in parser.links
        if href and href.endswith(".aspx") and text
    ]


def parse_machine_table(html: str, location: str) -> list[MachineRecord]:
    parser = _TableParser()
    parser.feed(html)
    parser.close()
    machines = []
    for cols in parser.rows:
        if len(cols) < 4:
            continue
        machine, mtype, status, remaining = cols[:4]
        if not (machine and mtype and status):
            continue
        # header row
        if machine.lower() == "machine" or mtype.lower() == "type" or status.lower() == "status":
            continue
        machines.append(MachineRecord(
            location=location,
            machine_id=machine,
            type=mtype,
            status=status,
            time_remaining=remaining or None,
        ))
    return machines


def _get(url: str, timeout: float) -> tuple[int, str]:
    req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        charset = resp.headers.get_content_charset() or "utf-8"
        return resp.status, resp.read().decode(charset, errors="replace")


class LaundryConnectSource:
    def __init__(self, index_url: str = SOURCE_URL, base_url: str = SOURCE_BASE_URL,
                 marker: str = SOURCE_MARKER) -> None:
        self.index_url = index_url
        self.base_url = base_url
        self.marker = marker

    def fetch_location_links(self) -> list[LocationLink]:
        try:
            _, html = _get(self.index_url, FETCH_TIMEOUT_S)
            return parse_location_links(html, self.base_url)
        except Exception as e:
            raise EndpointListError(f"{self.index_url}: {e}") from e

    def fetch_location_records(self, link: LocationLink) -> list[MachineRecord]:
        try:
            _, html = _get(link.url, FETCH_TIMEOUT_S)
            return parse_machine_table(html, link.name)
        except Exception as e:
            raise FetchError(f"{link.name}: {e}") from e

    def check(self) -> ExternalHealth:
        """Probe the index page with the short health-check timeout."""
        try:
            status, html = _get(self.index_url, HEALTH_TIMEOUT_S)
        except Exception as e:
            logger.warning("external health check failed: %s", e)
            return ExternalHealth(ok=False, error=str(e) or "request-failed")
        ok = status == 200 and self.marker in html
        return ExternalHealth(ok=ok, status=status, bytes=len(html))
