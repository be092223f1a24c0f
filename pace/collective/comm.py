import abc
from typing import Any, Callable, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np


class BufferSpec(NamedTuple):
    """Buffer handed to a substrate primitive.

    As in MPI, count is the number of elements exchanged with each rank, so
    for the root receive buffer of Gather it is the count sent by one rank.
    For the v-variants (Gatherv, Scatterv, Allgatherv), count is a
    (counts, displacements) pair with one entry per rank.
    """

    array: np.ndarray
    count: Union[int, Tuple[Sequence[int], Sequence[int]]]
    dtype: np.dtype


class _InPlace:
    def __repr__(self):
        return "IN_PLACE"


# passed as the send buffer of a reduction to reduce into the receive buffer
IN_PLACE = _InPlace()

# (inbuf, inoutbuf, datatype), combining inbuf into inoutbuf element-wise
ReductionFunction = Callable[[Any, Any, Any], None]


class Request(abc.ABC):
    @abc.abstractmethod
    def Wait(self):
        ...

    @abc.abstractmethod
    def Test(self) -> bool:
        ...


class Message(abc.ABC):
    """A message matched by a probe, which only this handle can receive."""

    @abc.abstractmethod
    def Get_count(self, dtype: np.dtype) -> int:
        ...

    @abc.abstractmethod
    def Recv(self, buf: BufferSpec):
        ...


class Comm(abc.ABC):
    """Interface to the message-passing substrate over one group of ranks."""

    # reduction operators created by one Comm are usable by any other Comm
    # with the same op_domain
    op_domain: str = "generic"

    def is_null(self) -> bool:
        """True if this handle refers to no group at all."""
        return False

    def is_initialized(self) -> bool:
        return True

    @abc.abstractmethod
    def Get_rank(self) -> int:
        ...

    @abc.abstractmethod
    def Get_size(self) -> int:
        ...

    @abc.abstractmethod
    def Send(self, buf: BufferSpec, dest: int, tag: int = 0):
        ...

    @abc.abstractmethod
    def Isend(self, buf: BufferSpec, dest: int, tag: int = 0) -> Request:
        ...

    @abc.abstractmethod
    def Recv(self, buf: BufferSpec, source: int, tag: int = 0):
        ...

    @abc.abstractmethod
    def Irecv(self, buf: BufferSpec, source: int, tag: int = 0) -> Request:
        ...

    @abc.abstractmethod
    def Mprobe(self, source: int, tag: int = 0) -> Message:
        ...

    @abc.abstractmethod
    def Bcast(self, buf: BufferSpec, root: int = 0):
        ...

    @abc.abstractmethod
    def Ibcast(self, buf: BufferSpec, root: int = 0) -> Request:
        ...

    @abc.abstractmethod
    def Gather(
        self, sendbuf: BufferSpec, recvbuf: Optional[BufferSpec], root: int = 0
    ):
        ...

    @abc.abstractmethod
    def Igather(
        self, sendbuf: BufferSpec, recvbuf: Optional[BufferSpec], root: int = 0
    ) -> Request:
        ...

    @abc.abstractmethod
    def Gatherv(
        self, sendbuf: BufferSpec, recvbuf: Optional[BufferSpec], root: int = 0
    ):
        ...

    @abc.abstractmethod
    def Scatter(
        self, sendbuf: Optional[BufferSpec], recvbuf: BufferSpec, root: int = 0
    ):
        ...

    @abc.abstractmethod
    def Iscatter(
        self, sendbuf: Optional[BufferSpec], recvbuf: BufferSpec, root: int = 0
    ) -> Request:
        ...

    @abc.abstractmethod
    def Scatterv(
        self, sendbuf: Optional[BufferSpec], recvbuf: BufferSpec, root: int = 0
    ):
        ...

    @abc.abstractmethod
    def Allgather(self, sendbuf: BufferSpec, recvbuf: BufferSpec):
        ...

    @abc.abstractmethod
    def Iallgather(self, sendbuf: BufferSpec, recvbuf: BufferSpec) -> Request:
        ...

    @abc.abstractmethod
    def Allgatherv(self, sendbuf: BufferSpec, recvbuf: BufferSpec):
        ...

    @abc.abstractmethod
    def Allreduce(
        self, sendbuf: Union[BufferSpec, _InPlace], recvbuf: BufferSpec, op
    ):
        ...

    @abc.abstractmethod
    def Iallreduce(
        self, sendbuf: Union[BufferSpec, _InPlace], recvbuf: BufferSpec, op
    ) -> Request:
        ...

    @abc.abstractmethod
    def Barrier(self):
        ...

    @abc.abstractmethod
    def Ibarrier(self) -> Request:
        ...

    @abc.abstractmethod
    def Split(self, color: Optional[int], key: int) -> "Comm":
        ...

    @abc.abstractmethod
    def Op_Create(self, function: ReductionFunction, commute: bool = True):
        ...

    @abc.abstractmethod
    def builtin_op(self, name: str):
        """Substrate-native operator for "sum", "prod", "min" or "max"."""
        ...
