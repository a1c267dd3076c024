from datetime import timedelta

import numpy as np
import pytest

from ekical.utils import make_rng, stopwatch, traced, zip_to_dict


def test_traced_calls_wrapped_function_correctly():
    @traced
    def f(x, y, z):
        return x + y * z

    assert f(1, 2, 3) == 7
    assert f(1, z=3, y=2) == 7


def test_traced_reports_call_count():
    @traced
    def f(x, y):
        return x + y

    f(1, 2)
    f(3, 4)

    assert f.call_count == 2


class TimeMachine:
    def __init__(self, time=0):
        self.time = time

    def tell(self):
        return self.time

    def advance(self, delta_sec):
        self.time += delta_sec


@pytest.fixture()
def custom_time(mocker):
    time = TimeMachine()
    mocker.patch("time.monotonic", time.tell)
    return time


def test_stopwatch(custom_time):
    with stopwatch() as s:
        custom_time.advance(5)

    assert s.elapsed_time == timedelta(seconds=5)


def test_traced_reports_time_elapsed(custom_time):
    @traced
    def f(delay):
        custom_time.advance(delay)

    f(2)
    f(7)

    assert f.elapsed_time == timedelta(seconds=9)


def test_traced_preserves_function_info():
    @traced
    def f(a: int, b: list[int]):
        """Test function"""

    assert f.__name__ == "f"
    assert f.__doc__ == "Test function"


def test_zip_to_dict_works_for_equal_lengths():
    result = zip_to_dict(["a", "b", "c"], [1, 2, 3])

    assert result == dict(a=1, b=2, c=3)


def test_zip_to_dict_fails_for_different_lengths():
    with pytest.raises(ValueError, match="argument 2 is longer than argument 1"):
        zip_to_dict(["a", "b", "c"], [1, 2, 3, 4])


def test_make_rng_is_reproducible():
    a = make_rng(42).normal(size=5)
    b = make_rng(42).normal(size=5)
    np.testing.assert_array_equal(a, b)


def test_make_rng_passes_generator_through():
    rng = np.random.default_rng(3)
    assert make_rng(rng) is rng
