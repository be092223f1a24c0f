"""
Resolution of Python values into the buffers handed to the substrate.

Every value passed to a :class:`~pace.collective.Communicator` operation goes
through :func:`adapt`, which produces a :class:`DataBinding`: a flat contiguous
numpy array holding the wire data, its element count, and the
:class:`Datatype` describing one element. Receive-style operations read the
result back out of the binding with :meth:`DataBinding.get`.
"""
import array as pyarray
import dataclasses
from typing import Any, Callable, Dict, Optional, Sequence, Type, TypeVar, Union

import numpy as np

from ._exceptions import FixedSizeError, UnsupportedTypeError
from .buffer import Buffer
from .comm import BufferSpec
from .utils import is_c_contiguous


TT = TypeVar("TT", bound=Type)

# bool, signed and unsigned integers, floating point and complex
PRIMITIVE_KINDS = "biufc"
_UNSUPPORTED_TYPECODES = ("u", "w")

_REGISTERED_DTYPES: Dict[type, np.dtype] = {}

# a Datatype, anything np.dtype accepts, or a registered record type
DatatypeLike = Union["Datatype", np.dtype, type, str]


@dataclasses.dataclass(frozen=True)
class Datatype:
    """Wire description of one element.

    Attributes:
        dtype: numpy dtype of the element as laid out in the wire buffer
        python_type: registered record type the element converts to and from,
            if any
    """

    dtype: np.dtype
    python_type: Optional[type] = None

    @property
    def is_primitive(self) -> bool:
        """True for elements the substrate can reduce with its own operators."""
        return (
            self.python_type is None
            and self.dtype.fields is None
            and self.dtype.subdtype is None
            and self.dtype.kind in PRIMITIVE_KINDS
        )

    def to_element(self, item: Any) -> Any:
        """Convert one element of the wire array to the value user code sees."""
        if self.python_type is not None:
            return self.python_type(*item.item())
        return item

    def from_element(self, value: Any) -> Any:
        """Convert a user value to something assignable into the wire array."""
        if self.python_type is not None:
            return _as_record(value)
        return value


def _as_record(value) -> tuple:
    if dataclasses.is_dataclass(value):
        return dataclasses.astuple(value)
    return tuple(value)


def _as_datatype(datatype: Optional[DatatypeLike]):
    if datatype is None or isinstance(datatype, Datatype):
        return datatype
    if isinstance(datatype, type):
        record_datatype = registered_datatype(datatype)
        if record_datatype is not None:
            return record_datatype
    return Datatype(np.dtype(datatype))


def _check_supported(dtype: np.dtype, value) -> None:
    if dtype.fields is None and dtype.kind not in PRIMITIVE_KINDS:
        raise UnsupportedTypeError(
            f"no wire datatype is known for {type(value).__name__} "
            f"values with dtype {dtype}"
        )


def register_datatype(python_type: type, dtype) -> None:
    """Map a record type to a structured dtype.

    Instances of python_type (a dataclass or NamedTuple) can then be sent,
    received and reduced like any other value. The dtype fields must be in
    the same order as the record's fields.

    Args:
        python_type: record type to register
        dtype: structured numpy dtype describing one record
    """
    dtype = np.dtype(dtype)
    if dtype.names is None:
        raise ValueError(f"record types need a structured dtype, got {dtype}")
    if dataclasses.is_dataclass(python_type):
        n_fields = len(dataclasses.fields(python_type))
    else:
        n_fields = len(getattr(python_type, "_fields", dtype.names))
    if n_fields != len(dtype.names):
        raise ValueError(
            f"{python_type.__name__} has {n_fields} fields but dtype {dtype} "
            f"has {len(dtype.names)}"
        )
    _REGISTERED_DTYPES[python_type] = dtype


def wire_type(dtype) -> Callable[[TT], TT]:
    """Class decorator registering a record type with the given structured dtype.

    Example:

        >>> import dataclasses
        >>> import numpy as np
        >>> from pace.collective import wire_type
        >>> @wire_type([("x", np.float64), ("y", np.float64)])
        ... @dataclasses.dataclass
        ... class Point:
        ...     x: float
        ...     y: float
    """

    def register_func(cls: TT) -> TT:
        register_datatype(cls, dtype)
        return cls

    return register_func


def registered_datatype(python_type: type) -> Optional[Datatype]:
    for cls in python_type.__mro__:
        if cls in _REGISTERED_DTYPES:
            return Datatype(_REGISTERED_DTYPES[cls], cls)
    return None


class DataBinding:
    """Wire view of a value for the duration of one operation.

    Attributes:
        datatype: description of one element
        static_size: False if the underlying container can change length
    """

    def __init__(
        self,
        value: Any,
        array: np.ndarray,
        datatype: Datatype,
        getter: Callable[[np.ndarray], Any],
        static_size: bool = True,
        receive: bool = False,
        staging: Optional[Buffer] = None,
        list_like: bool = False,
    ):
        """
        Args:
            value: the value being bound
            array: flat contiguous array holding the wire data
            datatype: description of one element
            getter: builds the result value from the wire array
            static_size: whether the value has a fixed number of elements
            receive: whether the operation writes into the wire array
            staging: cached buffer to release once the operation is done
            list_like: whether receive buffers allocated from this binding
                should be lists rather than arrays
        """
        self._value = value
        self._array = array
        self.datatype = datatype
        self.static_size = static_size
        self._getter = getter
        self._receive = receive
        self._staging = staging
        self._list_like = list_like

    def __repr__(self):
        return (
            f"DataBinding(count={self.count}, dtype={self.dtype}, "
            f"static_size={self.static_size})"
        )

    @property
    def array(self) -> np.ndarray:
        return self._array

    @property
    def count(self) -> int:
        return self._array.size

    @property
    def dtype(self) -> np.dtype:
        return self.datatype.dtype

    def spec(self, count: Optional[int] = None) -> BufferSpec:
        """Buffer specification covering the first count elements (default all)."""
        if count is None:
            count = self.count
        return BufferSpec(self._array, count, self.dtype)

    def vector_spec(
        self, counts: Sequence[int], displacements: Sequence[int]
    ) -> BufferSpec:
        """Buffer specification for the v-variants of gather/scatter/allgather."""
        return BufferSpec(
            self._array, (tuple(counts), tuple(displacements)), self.dtype
        )

    def resize(self, count: int) -> None:
        """Change the number of elements, keeping the leading ones.

        Raises:
            FixedSizeError: if the bound value has a fixed size
        """
        if self.static_size:
            raise FixedSizeError(
                f"cannot resize a fixed-size {type(self._value).__name__} "
                f"from {self.count} to {count} elements"
            )
        if count != self.count:
            resized = np.zeros(count, dtype=self.dtype)
            n_kept = min(count, self.count)
            resized[:n_kept] = self._array[:n_kept]
            self._array = resized

    def empty_like(self, count: int) -> "DataBinding":
        """Allocate a receive binding holding count elements of the same type."""
        if self._list_like:
            binding = adapt([], receive=True, datatype=self.datatype)
            binding.resize(count)
            return binding
        return adapt(np.empty(count, dtype=self.dtype), receive=True)

    def get(self) -> Any:
        """Return the bound value, holding received data if this is a receive
        binding, and release any staging buffer."""
        if self._receive:
            value = self._getter(self._array)
        else:
            value = self._value
        self.release()
        return value

    def release(self) -> None:
        if self._staging is not None:
            Buffer.push_to_cache(self._staging)
            self._staging = None


def adapt(
    value: Any,
    receive: bool = False,
    datatype: Optional[DatatypeLike] = None,
) -> DataBinding:
    """Resolve a value into the buffer, count and datatype of its wire data.

    Args:
        value: scalar, numpy array or scalar, registered record, list, or
            array.array
        receive: whether the operation will write into the binding, in which
            case get() returns the received data
        datatype: element type of scalars and lists, inferred if not given;
            arrays and records must already hold elements of this type

    Raises:
        UnsupportedTypeError: if no wire datatype is known for value
        ValueError: if value holds elements of a type other than datatype
    """
    datatype = _as_datatype(datatype)
    binding = _adapt(value, receive, datatype)
    if datatype is not None and binding.dtype != datatype.dtype:
        binding.release()
        raise ValueError(
            f"expected {type(value).__name__} with elements of dtype "
            f"{datatype.dtype}, got {binding.dtype}"
        )
    return binding


def _adapt(value: Any, receive: bool, datatype: Optional[Datatype]) -> DataBinding:
    if isinstance(value, np.ndarray):
        return _adapt_ndarray(value, receive)
    elif isinstance(value, np.generic):
        return _adapt_scalar(value, receive, Datatype(value.dtype), lambda item: item)
    elif isinstance(value, (bool, int, float, complex)):
        if datatype is None:
            datatype = Datatype(np.asarray(value).dtype)
        return _adapt_scalar(value, receive, datatype, lambda item: item.item())
    elif isinstance(value, list):
        return _adapt_list(value, receive, datatype)
    elif isinstance(value, pyarray.array):
        return _adapt_pyarray(value, receive)
    record_datatype = registered_datatype(type(value))
    if record_datatype is not None:
        return _adapt_scalar(
            value, receive, record_datatype, record_datatype.to_element
        )
    raise UnsupportedTypeError(
        f"no wire datatype is known for values of type {type(value).__name__}"
    )


def _adapt_ndarray(value: np.ndarray, receive: bool) -> DataBinding:
    _check_supported(value.dtype, value)
    datatype = Datatype(value.dtype)
    if is_c_contiguous(value):
        return DataBinding(
            value, value.reshape(-1), datatype, lambda wire: value, receive=receive
        )
    staging = Buffer.pop_from_cache(value.shape, value.dtype)
    staging.assign_from(value)

    def copy_back(wire: np.ndarray) -> np.ndarray:
        staging.assign_to(value)
        return value

    return DataBinding(
        value,
        staging.array.reshape(-1),
        datatype,
        copy_back,
        receive=receive,
        staging=staging,
    )


def _adapt_scalar(
    value, receive: bool, datatype: Datatype, convert: Callable[[Any], Any]
) -> DataBinding:
    _check_supported(datatype.dtype, value)
    array = np.empty(1, dtype=datatype.dtype)
    array[0] = datatype.from_element(value)
    return DataBinding(
        value,
        array,
        datatype,
        lambda wire: convert(wire[0]),
        receive=receive,
        list_like=datatype.python_type is not None,
    )


def _infer_list_datatype(value: list) -> Datatype:
    if len(value) == 0:
        return Datatype(np.dtype(float))
    record_datatype = registered_datatype(type(value[0]))
    if record_datatype is not None:
        return record_datatype
    elif isinstance(value[0], np.generic):
        return Datatype(value[0].dtype)
    return Datatype(np.asarray(value).dtype)


def _adapt_list(
    value: list, receive: bool, datatype: Optional[Datatype]
) -> DataBinding:
    if datatype is None:
        datatype = _infer_list_datatype(value)
    _check_supported(datatype.dtype, value)
    array = np.array(
        [datatype.from_element(item) for item in value], dtype=datatype.dtype
    )
    if array.ndim != 1:
        raise UnsupportedTypeError(
            f"lists must hold scalars or records, got shape {array.shape}"
        )

    def update_list(wire: np.ndarray) -> list:
        if datatype.python_type is not None:
            value[:] = [datatype.to_element(item) for item in wire]
        else:
            value[:] = wire.tolist()
        return value

    return DataBinding(
        value,
        array,
        datatype,
        update_list,
        static_size=False,
        receive=receive,
        list_like=True,
    )


def _adapt_pyarray(value: pyarray.array, receive: bool) -> DataBinding:
    if value.typecode in _UNSUPPORTED_TYPECODES:
        raise UnsupportedTypeError(
            f"no wire datatype is known for array.array('{value.typecode}')"
        )
    datatype = Datatype(np.dtype(value.typecode))
    array = np.array(value, dtype=datatype.dtype)

    def update_array(wire: np.ndarray) -> pyarray.array:
        value[:] = pyarray.array(value.typecode, wire.tobytes())
        return value

    return DataBinding(
        value, array, datatype, update_array, static_size=False, receive=receive
    )
