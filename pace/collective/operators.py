"""
Reduction operators for allreduce and the reductions built on it.

Operations are plain binary callables. The registry hands the substrate its
native operator where one exists, and otherwise wraps the callable in a
user-defined operator which is created once per substrate domain, element
datatype and operation, then re-used for the lifetime of the process.
"""
import logging
import operator
from typing import Any, Callable, Dict, Optional, Tuple, Union

import numpy as np

from .comm import Comm, ReductionFunction
from .datatype import Datatype


logger = logging.getLogger(__name__)

Operation = Union[str, Callable[[Any, Any], Any]]

OPERATION_NAMES: Dict[str, Callable[[Any, Any], Any]] = {
    "sum": operator.add,
    "prod": operator.mul,
    "min": min,
    "max": max,
}

# operations which map onto a substrate-native operator, by native name
BUILTIN_OPERATIONS: Dict[Callable, str] = {
    operator.add: "sum",
    np.add: "sum",
    operator.mul: "prod",
    np.multiply: "prod",
    min: "min",
    np.minimum: "min",
    max: "max",
    np.maximum: "max",
}

_UFUNCS: Dict[str, np.ufunc] = {
    "sum": np.add,
    "prod": np.multiply,
    "min": np.minimum,
    "max": np.maximum,
}

OperatorKey = Tuple[str, Datatype, Callable]


def normalize_operation(operation: Operation) -> Callable[[Any, Any], Any]:
    """Resolve an operation name to its callable, checking callables as given."""
    if isinstance(operation, str):
        try:
            return OPERATION_NAMES[operation]
        except KeyError:
            raise ValueError(
                f"unknown reduction {operation!r}, "
                f"expected one of {list(OPERATION_NAMES)} or a callable"
            )
    if not callable(operation):
        raise TypeError(f"reduction operation must be callable, got {operation!r}")
    return operation


def _is_builtin(name: Optional[str], datatype: Datatype) -> bool:
    if name is None or not datatype.is_primitive:
        return False
    kind = datatype.dtype.kind
    # complex numbers have no ordering, and bools only logical operators
    return kind in "iuf" or (kind == "c" and name in ("sum", "prod"))


def _as_ufunc(function: Callable) -> Optional[np.ufunc]:
    if isinstance(function, np.ufunc):
        return function
    name = BUILTIN_OPERATIONS.get(function)
    if name is not None:
        return _UFUNCS[name]
    return None


def make_reduction_callback(
    function: Callable[[Any, Any], Any], datatype: Datatype
) -> ReductionFunction:
    """Wrap a binary operation as a substrate user-operator callback.

    The callback takes (inbuf, inoutbuf, substrate_datatype) and sets
    inout[i] = function(in[i], inout[i]) for every element of the buffers.
    """
    dtype = datatype.dtype
    ufunc = _as_ufunc(function)
    if ufunc is not None and datatype.is_primitive:

        def reduce_arrays(inbuf, inoutbuf, substrate_datatype):
            in_array = np.frombuffer(inbuf, dtype=dtype)
            inout_array = np.frombuffer(inoutbuf, dtype=dtype)
            ufunc(in_array, inout_array, out=inout_array)

        return reduce_arrays

    def reduce_elements(inbuf, inoutbuf, substrate_datatype):
        in_array = np.frombuffer(inbuf, dtype=dtype)
        inout_array = np.frombuffer(inoutbuf, dtype=dtype)
        for i in range(in_array.size):
            result = function(
                datatype.to_element(in_array[i]), datatype.to_element(inout_array[i])
            )
            inout_array[i] = datatype.from_element(result)

    return reduce_elements


class OperatorRegistry:
    """Cache of substrate reduction operators.

    Entries are never freed. Resolution is not locked, so callers using the
    same registry from several threads must serialize their calls.
    """

    def __init__(self):
        self._operators: Dict[OperatorKey, Any] = {}

    def __len__(self):
        return len(self._operators)

    def __contains__(self, key: OperatorKey) -> bool:
        return key in self._operators

    def resolve(self, comm: Comm, operation: Operation, datatype: Datatype):
        """Return the substrate operator applying operation to datatype elements.

        Args:
            comm: substrate the operator will be used on
            operation: "sum", "prod", "min", "max" or a binary callable
            datatype: element datatype being reduced

        Returns:
            a substrate-native operator for built-in operations on primitive
            datatypes, otherwise the cached user-defined operator, created on
            first use by comm.Op_Create
        """
        function = normalize_operation(operation)
        name = BUILTIN_OPERATIONS.get(function)
        if _is_builtin(name, datatype):
            return comm.builtin_op(name)
        key = (comm.op_domain, datatype, function)
        if key not in self._operators:
            logger.debug(
                "registering reduction %s on %s for %s",
                function,
                comm.op_domain,
                datatype,
            )
            self._operators[key] = comm.Op_Create(
                make_reduction_callback(function, datatype), commute=True
            )
        return self._operators[key]

    def clear(self):
        """Forget every cached operator, without freeing them."""
        self._operators.clear()


OPERATOR_REGISTRY = OperatorRegistry()
