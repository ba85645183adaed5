import pytest

from pagination import clamp_page_index, compute_page_count, page_offset, plan_page


@pytest.mark.parametrize("total,size,pages", [
    (0, 25, 1), (1, 25, 1), (25, 25, 1), (26, 25, 2), (30, 25, 2), (100, 10, 10), (101, 10, 11),
])
def test_page_count(total, size, pages):
    assert compute_page_count(total, size) == pages


def test_page_count_rejects_bad_input():
    with pytest.raises(ValueError):
        compute_page_count(-1, 10)
    with pytest.raises(ValueError):
        compute_page_count(10, 0)


def test_clamp_keeps_index_in_range():
    for requested in range(-3, 8):
        idx = clamp_page_index(requested, 4)
        assert 0 <= idx <= 3
    assert clamp_page_index(5, 2) == 1
    assert clamp_page_index(-1, 2) == 0
    with pytest.raises(ValueError):
        clamp_page_index(0, 0)


def test_offset():
    assert page_offset(0, 25) == 0
    assert page_offset(3, 25) == 75


def test_plan_clamps_requested_page_past_the_end():
    plan = plan_page(30, 25, 5)
    assert (plan.page_count, plan.page_index, plan.offset) == (2, 1, 25)


def test_plan_empty_result_is_one_page():
    plan = plan_page(0, 25, 3)
    assert (plan.page_count, plan.page_index, plan.offset) == (1, 0, 0)
