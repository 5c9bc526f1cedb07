"""Pricing and classification rules for analysed documents."""

from __future__ import annotations

import pytest

from docflow.analysis.cost import (
    average_chars_per_page,
    estimate_cost,
    is_text_based,
    select_process_type,
)


def test_process_type_switches_to_parallel_at_ten_pages() -> None:
    assert select_process_type(0) == "simple"
    assert select_process_type(9) == "simple"
    assert select_process_type(10) == "parallel"
    assert select_process_type(250) == "parallel"


def test_text_threshold_is_strictly_greater_than_one_hundred() -> None:
    assert not is_text_based(300, 3)  # exactly 100 per page
    assert is_text_based(303, 3)  # 101 per page
    assert not is_text_based(302, 3)  # floor(100.67) == 100


def test_zero_sampled_pages_is_image_based() -> None:
    assert average_chars_per_page(500, 0) == 0
    assert not is_text_based(500, 0)
    assert estimate_cost(0, 0, False) == pytest.approx(0.10 * 1.5)


def test_cost_grows_with_pages_and_size() -> None:
    previous = -1.0
    for pages in range(0, 40, 3):
        cost = estimate_cost(pages, 1_000_000, True)
        assert cost > previous
        previous = cost
    assert estimate_cost(5, 2_000_000, True) > estimate_cost(5, 1_000_000, True)


def test_image_documents_cost_one_and_a_half_times_more() -> None:
    text_cost = estimate_cost(12, 3 * 1_048_576, True)
    image_cost = estimate_cost(12, 3 * 1_048_576, False)
    assert image_cost == pytest.approx(text_cost * 1.5)


def test_scanned_three_page_five_megabyte_document() -> None:
    size = 5 * 1_048_576
    expected = (0.10 + 3 * 0.05 + 5 * 0.02) * 1.5
    assert estimate_cost(3, size, False) == pytest.approx(expected)
    assert expected == pytest.approx(0.525)
    assert select_process_type(3) == "simple"


def test_scanned_three_page_document_of_5_120_000_bytes() -> None:
    size = 5_120_000
    size_cost = size / 1_048_576 * 0.02
    assert size_cost == pytest.approx(0.0977, abs=1e-4)
    cost = estimate_cost(3, size, False)
    assert cost == pytest.approx((0.10 + 3 * 0.05 + size_cost) * 1.5)
    assert cost == pytest.approx(0.5215, abs=1e-4)


def test_negative_inputs_are_rejected() -> None:
    with pytest.raises(ValueError):
        estimate_cost(-1, 0, True)
    with pytest.raises(ValueError):
        estimate_cost(1, -5, True)
