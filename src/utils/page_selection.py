"""Parsing of page selection expressions such as "1,3,5-9"."""

import re
from typing import Iterable, List, Optional


def parse_page_selection(selection: Optional[str], max_page_number: int) -> List[int]:
    """
    Resolve a page selection expression to sorted, unique page numbers.

    Tokens are separated by "," or ";" and are either a page number or
    an ascending range "start-end". Pages are 1-based.

    Args:
        selection: Expression to parse; empty means no selection
        max_page_number: Highest valid page number

    Returns:
        Sorted list of page numbers, empty when selection is blank

    Raises:
        ValueError: On malformed tokens or pages outside 1..max_page_number
    """
    if not selection or not selection.strip():
        return []

    if max_page_number <= 0:
        raise ValueError("Max page number must be positive")

    pages = set()
    tokens = [t.strip() for t in re.split(r"[,;]", selection) if t.strip()]

    for token in tokens:
        if "-" in token:
            parts = [p.strip() for p in token.split("-") if p.strip()]
            if len(parts) != 2 or not all(p.isdigit() for p in parts):
                raise ValueError(f"Invalid page range token: '{token}'. Expected format like '5-9'.")

            start, end = int(parts[0]), int(parts[1])
            if start <= 0 or end <= 0:
                raise ValueError(f"Page numbers must be positive. Invalid token: '{token}'.")
            if end < start:
                raise ValueError(f"Range end is smaller than start in token: '{token}'.")

            for page in range(start, end + 1):
                _add_page(pages, page, max_page_number)
            continue

        if not token.lstrip("+-").isdigit():
            raise ValueError(f"Invalid page token: '{token}'.")

        _add_page(pages, int(token), max_page_number)

    return sorted(pages)


def build_page_descriptor(pages: Iterable[int]) -> str:
    """Compact, filename-safe descriptor of page numbers, e.g. "1-3_7"."""
    ordered = sorted(set(pages))
    if not ordered:
        return "none"

    parts = []
    range_start = range_end = ordered[0]

    for page in ordered[1:]:
        if page == range_end + 1:
            range_end = page
            continue
        parts.append(_format_range(range_start, range_end))
        range_start = range_end = page

    parts.append(_format_range(range_start, range_end))
    return "_".join(parts)


def _add_page(pages: set, page: int, max_page_number: int) -> None:
    if page <= 0:
        raise ValueError(f"Page numbers must be positive. Invalid page: {page}.")
    if page > max_page_number:
        raise ValueError(f"Page {page} exceeds max page number {max_page_number}.")
    pages.add(page)


def _format_range(start: int, end: int) -> str:
    return str(start) if start == end else f"{start}-{end}"
