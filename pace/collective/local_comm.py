import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from ._exceptions import ConcurrencyError
from .comm import IN_PLACE, BufferSpec, Comm, Message, ReductionFunction, Request
from .utils import ensure_contiguous, safe_assign_array


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


class LocalOp:
    """Reduction operator of the local substrate."""

    def __init__(
        self, function: ReductionFunction, commute: bool = True, name: str = None
    ):
        self.function = function
        self.commute = commute
        self.name = name

    def __repr__(self):
        return f"LocalOp({self.name or self.function})"


def _ufunc_op(ufunc: np.ufunc, name: str) -> LocalOp:
    def function(inbuf, inoutbuf, dtype):
        in_array = np.frombuffer(inbuf, dtype=dtype)
        inout_array = np.frombuffer(inoutbuf, dtype=dtype)
        ufunc(in_array, inout_array, out=inout_array)

    return LocalOp(function, name=name)


_BUILTIN_OPS = {
    "sum": _ufunc_op(np.add, "sum"),
    "prod": _ufunc_op(np.multiply, "prod"),
    "min": _ufunc_op(np.minimum, "min"),
    "max": _ufunc_op(np.maximum, "max"),
}


class LocalRequest(Request):
    def __init__(self, is_ready: Callable[[], bool], complete: Callable[[], None]):
        self._is_ready = is_ready
        self._complete = complete
        self._done = False

    def Wait(self):
        if not self._done:
            self._complete()
            self._done = True

    def Test(self) -> bool:
        if not self._done and self._is_ready():
            self.Wait()
        return self._done


class LocalMessage(Message):
    def __init__(self, data: np.ndarray):
        self._data = data

    def Get_count(self, dtype: np.dtype) -> int:
        return self._data.nbytes // np.dtype(dtype).itemsize

    def Recv(self, buf: BufferSpec):
        _assign(buf.array, 0, buf.count, self._data)


class _CollectiveCall:
    def __init__(self, name: str):
        self.name = name
        self.contributions: Dict[int, Any] = {}
        self.n_completed = 0
        self.shared: Dict[Any, dict] = {}


def _copy(buf: BufferSpec) -> np.ndarray:
    ensure_contiguous(buf.array)
    return np.array(buf.array[: buf.count], copy=True)


def _assign(array: np.ndarray, offset: int, capacity: int, data: np.ndarray):
    if data.dtype != array.dtype:
        raise ValueError(
            f"message of dtype {data.dtype} received into a buffer of "
            f"dtype {array.dtype}"
        )
    if data.size > capacity:
        raise ValueError(
            f"message of {data.size} elements truncated to {capacity} elements"
        )
    safe_assign_array(array[offset : offset + data.size], data)


class LocalComm(Comm):
    """
    Comm which exchanges data between ranks of the same process.

    Each rank is driven from its own thread, and all ranks of a group share
    buffer_dict. Sends are buffered, so they complete immediately, while
    receives and collectives block until the matching calls are made.
    """

    op_domain = "local"

    def __init__(
        self,
        rank: int,
        total_ranks: int,
        buffer_dict: dict,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
    ):
        """
        Args:
            rank: rank of this comm
            total_ranks: number of ranks in the group
            buffer_dict: state shared by every rank of the group, must be
                created before any rank starts communicating
            timeout: seconds to wait for other ranks before raising
                ConcurrencyError, or None to wait forever
        """
        self.rank = rank
        self.total_ranks = total_ranks
        self._buffer = buffer_dict
        self._condition: threading.Condition = buffer_dict.setdefault(
            "condition", threading.Condition()
        )
        self._timeout = timeout
        self._i_collective = 0

    @classmethod
    def create_group(
        cls, total_ranks: int, timeout: Optional[float] = DEFAULT_TIMEOUT
    ) -> List["LocalComm"]:
        """Create one comm per rank of a new group."""
        buffer_dict: dict = {}
        return [
            cls(
                rank=rank,
                total_ranks=total_ranks,
                buffer_dict=buffer_dict,
                timeout=timeout,
            )
            for rank in range(total_ranks)
        ]

    def __repr__(self):
        return f"LocalComm(rank={self.rank}, total_ranks={self.total_ranks})"

    def is_null(self) -> bool:
        return self.total_ranks == 0

    def Get_rank(self) -> int:
        return self.rank

    def Get_size(self) -> int:
        return self.total_ranks

    def _wait_for(self, predicate: Callable[[], bool], description: str):
        """Wait on the shared condition, which must already be held."""
        if not self._condition.wait_for(predicate, timeout=self._timeout):
            raise ConcurrencyError(
                f"rank {self.rank} timed out waiting for {description}"
            )

    @property
    def _send_recv_buffer(self) -> Dict[tuple, List[np.ndarray]]:
        return self._buffer.setdefault("send_recv", {})

    def _put_send_recv(self, buf: BufferSpec, to_rank: int, tag: int):
        key = (self.rank, to_rank, tag)
        data = _copy(buf)
        with self._condition:
            self._send_recv_buffer.setdefault(key, []).append(data)
            self._condition.notify_all()

    def _has_message(self, from_rank: int, tag: int) -> bool:
        return len(self._send_recv_buffer.get((from_rank, self.rank, tag), [])) > 0

    def _message_ready(self, from_rank: int, tag: int) -> bool:
        with self._condition:
            return self._has_message(from_rank, tag)

    def _get_send_recv(self, from_rank: int, tag: int) -> np.ndarray:
        with self._condition:
            self._wait_for(
                lambda: self._has_message(from_rank, tag),
                f"a message from rank {from_rank} with tag {tag}",
            )
            return self._send_recv_buffer[(from_rank, self.rank, tag)].pop(0)

    def Send(self, buf: BufferSpec, dest: int, tag: int = 0):
        logger.debug("Send on rank %s with dest %s", self.rank, dest)
        self._put_send_recv(buf, dest, tag)

    def Isend(self, buf: BufferSpec, dest: int, tag: int = 0) -> Request:
        self.Send(buf, dest, tag)
        return LocalRequest(lambda: True, lambda: None)

    def Recv(self, buf: BufferSpec, source: int, tag: int = 0):
        logger.debug("Recv on rank %s with source %s", self.rank, source)
        _assign(buf.array, 0, buf.count, self._get_send_recv(source, tag))

    def Irecv(self, buf: BufferSpec, source: int, tag: int = 0) -> Request:
        def receive():
            self.Recv(buf, source, tag)

        return LocalRequest(lambda: self._message_ready(source, tag), receive)

    def Mprobe(self, source: int, tag: int = 0) -> Message:
        return LocalMessage(self._get_send_recv(source, tag))

    @property
    def _collective_buffer(self) -> Dict[int, _CollectiveCall]:
        return self._buffer.setdefault("collective", {})

    def _post(self, name: str, contribution: Any) -> int:
        with self._condition:
            index = self._i_collective
            self._i_collective += 1
            call = self._collective_buffer.setdefault(index, _CollectiveCall(name))
            if call.name != name:
                raise ConcurrencyError(
                    f"rank {self.rank} called {name} as collective {index} "
                    f"while other ranks called {call.name}"
                )
            call.contributions[self.rank] = contribution
            self._condition.notify_all()
        return index

    def _collective_ready(self, index: int) -> bool:
        with self._condition:
            call = self._collective_buffer[index]
            return len(call.contributions) == self.total_ranks

    def _complete(self, index: int) -> _CollectiveCall:
        with self._condition:
            call = self._collective_buffer[index]
            self._wait_for(
                lambda: len(call.contributions) == self.total_ranks,
                f"all ranks to call {call.name}",
            )
            call.n_completed += 1
            if call.n_completed == self.total_ranks:
                del self._collective_buffer[index]
            return call

    def _collective(
        self,
        name: str,
        contribution: Any,
        finish: Callable[[_CollectiveCall], None],
    ) -> LocalRequest:
        logger.debug("%s on rank %s", name, self.rank)
        index = self._post(name, contribution)
        return LocalRequest(
            lambda: self._collective_ready(index),
            lambda: finish(self._complete(index)),
        )

    def Ibcast(self, buf: BufferSpec, root: int = 0) -> Request:
        contribution = _copy(buf) if self.rank == root else None

        def finish(call: _CollectiveCall):
            if self.rank != root:
                _assign(buf.array, 0, buf.count, call.contributions[root])

        return self._collective("Bcast", contribution, finish)

    def Bcast(self, buf: BufferSpec, root: int = 0):
        self.Ibcast(buf, root=root).Wait()

    def _gather(self, name, sendbuf, recvbuf, is_receiver: bool) -> Request:
        def finish(call: _CollectiveCall):
            if is_receiver:
                count = recvbuf.count
                for rank in range(self.total_ranks):
                    _assign(
                        recvbuf.array, rank * count, count, call.contributions[rank]
                    )

        return self._collective(name, _copy(sendbuf), finish)

    def _gatherv(self, name, sendbuf, recvbuf, is_receiver: bool) -> Request:
        def finish(call: _CollectiveCall):
            if is_receiver:
                counts, displacements = recvbuf.count
                for rank in range(self.total_ranks):
                    _assign(
                        recvbuf.array,
                        displacements[rank],
                        counts[rank],
                        call.contributions[rank],
                    )

        return self._collective(name, _copy(sendbuf), finish)

    def Igather(self, sendbuf, recvbuf, root: int = 0) -> Request:
        return self._gather("Gather", sendbuf, recvbuf, self.rank == root)

    def Gather(self, sendbuf, recvbuf, root: int = 0):
        self.Igather(sendbuf, recvbuf, root=root).Wait()

    def Gatherv(self, sendbuf, recvbuf, root: int = 0):
        self._gatherv("Gatherv", sendbuf, recvbuf, self.rank == root).Wait()

    def Iallgather(self, sendbuf, recvbuf) -> Request:
        return self._gather("Allgather", sendbuf, recvbuf, True)

    def Allgather(self, sendbuf, recvbuf):
        self.Iallgather(sendbuf, recvbuf).Wait()

    def Allgatherv(self, sendbuf, recvbuf):
        self._gatherv("Allgatherv", sendbuf, recvbuf, True).Wait()

    def Iscatter(self, sendbuf, recvbuf, root: int = 0) -> Request:
        if self.rank == root:
            ensure_contiguous(sendbuf.array)
            contribution = np.array(
                sendbuf.array[: sendbuf.count * self.total_ranks], copy=True
            )
        else:
            contribution = None

        def finish(call: _CollectiveCall):
            count = recvbuf.count
            start = self.rank * count
            data = call.contributions[root][start : start + count]
            _assign(recvbuf.array, 0, count, data)

        return self._collective("Scatter", contribution, finish)

    def Scatter(self, sendbuf, recvbuf, root: int = 0):
        self.Iscatter(sendbuf, recvbuf, root=root).Wait()

    def Scatterv(self, sendbuf, recvbuf, root: int = 0):
        if self.rank == root:
            ensure_contiguous(sendbuf.array)
            counts, displacements = sendbuf.count
            contribution = [
                np.array(sendbuf.array[displ : displ + count], copy=True)
                for count, displ in zip(counts, displacements)
            ]
        else:
            contribution = None

        def finish(call: _CollectiveCall):
            data = call.contributions[root][self.rank]
            _assign(recvbuf.array, 0, recvbuf.count, data)

        self._collective("Scatterv", contribution, finish).Wait()

    def _reduce(self, op: LocalOp, contributions: Dict[int, np.ndarray]):
        # inout = in (op) inout, starting from the highest rank
        result = np.array(contributions[self.total_ranks - 1], copy=True)
        for rank in range(self.total_ranks - 2, -1, -1):
            op.function(
                contributions[rank].view(np.uint8), result.view(np.uint8), result.dtype
            )
        return result

    def Iallreduce(self, sendbuf, recvbuf, op) -> Request:
        if sendbuf is IN_PLACE:
            contribution = _copy(recvbuf)
        else:
            contribution = _copy(
                BufferSpec(sendbuf.array, recvbuf.count, sendbuf.dtype)
            )

        def finish(call: _CollectiveCall):
            result = self._reduce(op, call.contributions)
            _assign(recvbuf.array, 0, recvbuf.count, result)

        return self._collective("Allreduce", contribution, finish)

    def Allreduce(self, sendbuf, recvbuf, op):
        self.Iallreduce(sendbuf, recvbuf, op).Wait()

    def Ibarrier(self) -> Request:
        return self._collective("Barrier", None, lambda call: None)

    def Barrier(self):
        self.Ibarrier().Wait()

    def Split(self, color: Optional[int], key: int) -> "LocalComm":
        logger.debug("Split on rank %s with color %s, key %s", self.rank, color, key)
        call = self._complete(self._post("Split", (color, key)))
        if color is None:
            return LocalComm(
                rank=-1, total_ranks=0, buffer_dict={}, timeout=self._timeout
            )
        members = sorted(
            (member_key, rank)
            for rank, (member_color, member_key) in call.contributions.items()
            if member_color == color
        )
        new_rank = [rank for _, rank in members].index(self.rank)
        with self._condition:
            buffer_dict = call.shared.setdefault(
                color, {"condition": threading.Condition()}
            )
        return LocalComm(
            rank=new_rank,
            total_ranks=len(members),
            buffer_dict=buffer_dict,
            timeout=self._timeout,
        )

    def Op_Create(self, function: ReductionFunction, commute: bool = True) -> LocalOp:
        return LocalOp(function, commute=commute)

    def builtin_op(self, name: str) -> LocalOp:
        return _BUILTIN_OPS[name]
