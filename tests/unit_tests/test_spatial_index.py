import pytest

from imcview.core import GridIndex


def test_candidates_sorted_topmost_first():
    index = GridIndex(cell_size=10)
    index.insert(1, (0, 0, 5, 5))
    index.insert(2, (3, 3, 8, 8))
    index.insert(3, (50, 50, 60, 60))
    assert index.candidates(4, 4) == [2, 1]
    assert index.candidates(1, 1) == [1]
    assert index.candidates(55, 55) == [3]
    assert index.candidates(20, 20) == []


def test_items_spanning_many_cells():
    index = GridIndex(cell_size=4)
    index.insert(7, (-10, -10, 30, 30))
    assert index.candidates(-9, 29) == [7]
    assert index.candidates(30, 30) == [7]
    assert index.candidates(30.1, 30) == []


def test_replace_and_remove():
    index = GridIndex(cell_size=10)
    index.insert(1, (0, 0, 5, 5))
    index.insert(1, (100, 100, 105, 105))
    assert index.candidates(1, 1) == []
    assert index.candidates(101, 101) == [1]
    assert len(index) == 1
    index.remove(1)
    index.remove(1)
    assert index.candidates(101, 101) == []
    assert 1 not in index
    assert index._cells == {}


def test_cell_size_must_be_positive():
    with pytest.raises(ValueError):
        GridIndex(cell_size=0)
