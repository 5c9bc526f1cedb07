"""Pure cost and strategy rules applied to analysed documents.

The constants are part of the pricing contract with downstream billing and
must stay in sync with it.
"""

from __future__ import annotations

from typing import Literal

ProcessType = Literal["simple", "parallel"]

BASE_COST = 0.10
COST_PER_PAGE = 0.05
COST_PER_MEGABYTE = 0.02
BYTES_PER_MEGABYTE = 1_048_576
IMAGE_MULTIPLIER = 1.5
TEXT_MULTIPLIER = 1.0

PARALLEL_PAGE_THRESHOLD = 10
TEXT_CHARS_PER_PAGE_THRESHOLD = 100


def average_chars_per_page(total_chars: int, sampled_pages: int) -> int:
    """Floor average of extracted characters over successfully sampled pages."""
    if sampled_pages <= 0:
        return 0
    return total_chars // sampled_pages


def is_text_based(total_chars: int, sampled_pages: int) -> bool:
    """Return ``True`` when sampled pages average more than 100 characters.

    A document with no successfully sampled page is treated as image based.
    """
    if sampled_pages <= 0:
        return False
    return average_chars_per_page(total_chars, sampled_pages) > TEXT_CHARS_PER_PAGE_THRESHOLD


def estimate_cost(page_count: int, file_size_bytes: int, text_based: bool) -> float:
    """Estimate the processing cost of a document.

    ``(0.10 + pages * 0.05 + megabytes * 0.02) * multiplier`` where the
    multiplier is 1.5 for documents that need OCR and 1.0 otherwise.
    """
    if page_count < 0 or file_size_bytes < 0:
        raise ValueError("page_count and file_size_bytes must be non-negative")
    page_cost = page_count * COST_PER_PAGE
    size_cost = (file_size_bytes / BYTES_PER_MEGABYTE) * COST_PER_MEGABYTE
    multiplier = TEXT_MULTIPLIER if text_based else IMAGE_MULTIPLIER
    return (BASE_COST + page_cost + size_cost) * multiplier


def select_process_type(page_count: int) -> ProcessType:
    if page_count >= PARALLEL_PAGE_THRESHOLD:
        return "parallel"
    return "simple"


__all__ = [
    "BASE_COST",
    "BYTES_PER_MEGABYTE",
    "COST_PER_MEGABYTE",
    "COST_PER_PAGE",
    "IMAGE_MULTIPLIER",
    "PARALLEL_PAGE_THRESHOLD",
    "ProcessType",
    "TEXT_CHARS_PER_PAGE_THRESHOLD",
    "average_chars_per_page",
    "estimate_cost",
    "is_text_based",
    "select_process_type",
]
