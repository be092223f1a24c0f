import array
import dataclasses
from typing import NamedTuple

import numpy as np
import pytest

import pace.collective
from pace.collective.buffer import BUFFER_CACHE
from pace.collective.datatype import Datatype, adapt, register_datatype, wire_type


@wire_type([("x", np.float64), ("y", np.float64)])
@dataclasses.dataclass
class Point:
    x: float
    y: float


class Pair(NamedTuple):
    index: int
    value: float


register_datatype(Pair, [("index", np.int64), ("value", np.float32)])


@pytest.mark.parametrize(
    "value, dtype",
    [
        pytest.param(3, np.asarray(3).dtype, id="int"),
        pytest.param(2.5, np.dtype(np.float64), id="float"),
        pytest.param(1 + 2j, np.dtype(np.complex128), id="complex"),
        pytest.param(True, np.dtype(np.bool_), id="bool"),
        pytest.param(np.float32(1.5), np.dtype(np.float32), id="numpy_scalar"),
    ],
)
def test_adapt_scalar(value, dtype):
    binding = adapt(value)
    assert binding.dtype == dtype
    assert binding.count == 1
    assert binding.static_size
    assert binding.array[0] == value
    assert binding.get() is value


def test_receive_python_scalar_returns_python_value():
    binding = adapt(3, receive=True)
    binding.array[0] = 5
    result = binding.get()
    assert result == 5
    assert isinstance(result, int)


def test_receive_numpy_scalar_keeps_dtype():
    binding = adapt(np.float32(0.0), receive=True)
    binding.array[0] = 2.0
    result = binding.get()
    assert result == 2.0
    assert result.dtype == np.float32


def test_contiguous_array_is_not_copied():
    value = np.zeros((2, 3))
    binding = adapt(value, receive=True)
    assert binding.count == 6
    assert np.shares_memory(binding.array, value)
    binding.array[:] = 1.0
    assert binding.get() is value
    np.testing.assert_array_equal(value, 1.0)


def test_non_contiguous_array_is_staged():
    base = np.arange(12.0).reshape(3, 4)
    value = base[:, ::2]
    binding = adapt(value, receive=True)
    assert binding.count == 6
    assert binding.array.flags["C_CONTIGUOUS"]
    assert not np.shares_memory(binding.array, base)
    np.testing.assert_array_equal(binding.array, value.ravel())
    binding.array[:] = -1.0
    assert binding.get() is value
    np.testing.assert_array_equal(base[:, ::2], -1.0)
    np.testing.assert_array_equal(base[:, 1::2], [[1.0, 3.0], [5.0, 7.0], [9.0, 11.0]])


def test_staging_buffer_returns_to_cache():
    value = np.ones((4, 6), dtype=np.float32)[:, ::3]
    key = ((4, 2), np.dtype(np.float32))
    binding = adapt(value)
    n_cached = len(BUFFER_CACHE[key])
    binding.release()
    assert len(BUFFER_CACHE[key]) == n_cached + 1
    binding.release()
    assert len(BUFFER_CACHE[key]) == n_cached + 1


def test_unsupported_types_raise():
    with pytest.raises(pace.collective.UnsupportedTypeError):
        adapt("text")
    with pytest.raises(pace.collective.UnsupportedTypeError):
        adapt(object())
    with pytest.raises(pace.collective.UnsupportedTypeError):
        adapt(np.array(["a", "b"]))
    with pytest.raises(pace.collective.UnsupportedTypeError):
        adapt([(1, 2), (3, 4)])


def test_unsupported_type_is_type_error():
    with pytest.raises(TypeError):
        adapt({"a": 1})


def test_fixed_size_cannot_resize():
    binding = adapt(np.zeros(3))
    with pytest.raises(pace.collective.FixedSizeError):
        binding.resize(4)


def test_list_is_resizable():
    value = [1, 2, 3]
    binding = adapt(value, receive=True)
    assert not binding.static_size
    assert binding.dtype == np.asarray(value).dtype
    binding.resize(5)
    assert binding.count == 5
    np.testing.assert_array_equal(binding.array, [1, 2, 3, 0, 0])
    binding.array[:] = [5, 6, 7, 8, 9]
    result = binding.get()
    assert result is value
    assert value == [5, 6, 7, 8, 9]


def test_list_shrinks():
    value = [1.0, 2.0, 3.0]
    binding = adapt(value, receive=True)
    binding.resize(1)
    assert binding.get() == [1.0]


def test_empty_list_defaults_to_float64():
    assert adapt([]).dtype == np.float64


def test_empty_list_with_datatype_hint():
    binding = adapt([], datatype=np.int32)
    assert binding.dtype == np.int32
    assert binding.count == 0


def test_datatype_hint_must_match_array():
    assert adapt(np.zeros(2), datatype=np.float64).dtype == np.float64
    with pytest.raises(ValueError):
        adapt(np.zeros(2), receive=True, datatype=np.int64)
    with pytest.raises(ValueError):
        adapt(array.array("h", [1]), datatype=np.int64)
    with pytest.raises(ValueError):
        adapt(Point(1.0, 2.0), datatype=np.float64)


def test_datatype_hint_converts_list_items():
    binding = adapt([1, 2], datatype=np.float32)
    assert binding.dtype == np.float32
    np.testing.assert_array_equal(binding.array, [1.0, 2.0])


def test_python_array_is_resizable():
    value = array.array("i", [1, 2])
    binding = adapt(value, receive=True)
    assert binding.dtype == np.dtype("i")
    binding.resize(3)
    binding.array[:] = [7, 8, 9]
    assert binding.get() is value
    assert value.tolist() == [7, 8, 9]


def test_registered_dataclass():
    binding = adapt(Point(1.0, 2.0), receive=True)
    assert binding.dtype.names == ("x", "y")
    assert binding.count == 1
    assert not binding.datatype.is_primitive
    binding.array[0] = (3.0, 4.0)
    assert binding.get() == Point(3.0, 4.0)


def test_registered_named_tuple():
    binding = adapt(Pair(3, 0.5), receive=True)
    assert binding.dtype == np.dtype([("index", np.int64), ("value", np.float32)])
    assert binding.get() == Pair(3, 0.5)


def test_list_of_records():
    value = [Point(1.0, 2.0), Point(3.0, 4.0)]
    binding = adapt(value, receive=True)
    assert binding.count == 2
    assert binding.datatype == Datatype(binding.dtype, Point)
    binding.resize(3)
    binding.array[2] = (5.0, 6.0)
    assert binding.get() == [Point(1.0, 2.0), Point(3.0, 4.0), Point(5.0, 6.0)]


def test_register_requires_structured_dtype():
    @dataclasses.dataclass
    class Scalar:
        a: float

    with pytest.raises(ValueError):
        register_datatype(Scalar, np.float64)


def test_register_requires_matching_fields():
    @dataclasses.dataclass
    class Triple:
        a: float
        b: float
        c: float

    with pytest.raises(ValueError):
        register_datatype(Triple, [("a", np.float64), ("b", np.float64)])


def test_subclass_of_registered_type():
    @dataclasses.dataclass
    class NamedPoint(Point):
        pass

    binding = adapt(NamedPoint(1.0, 2.0))
    assert binding.datatype.python_type is Point


@pytest.mark.parametrize(
    "value, expected_type",
    [
        pytest.param(np.zeros(2), np.ndarray, id="array"),
        pytest.param(3.0, np.ndarray, id="scalar"),
        pytest.param([1, 2], list, id="list"),
        pytest.param(Point(1.0, 2.0), list, id="record"),
    ],
)
def test_empty_like(value, expected_type):
    binding = adapt(value).empty_like(4)
    assert binding.count == 4
    assert binding.dtype == adapt(value).dtype
    result = binding.get()
    assert isinstance(result, expected_type)
    assert len(result) == 4
