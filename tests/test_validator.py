from validator import cross_validate


def test_large_divergence_drops_secondary():
    assert cross_validate(10, 500, 50) == (10, None)


def test_close_values_are_kept():
    assert cross_validate(10, 60, 50) == (10, 60)


def test_divergence_is_symmetric():
    assert cross_validate(500, 10, 50) == (500, None)


def test_missing_values_are_left_alone():
    assert cross_validate(None, 500, 50) == (None, 500)
    assert cross_validate(10, None, 50) == (10, None)
    assert cross_validate(None, None, 50) == (None, None)
