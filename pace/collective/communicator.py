import copy
import logging
from typing import Any, Optional, Sequence

from ._exceptions import FixedSizeError, NotInitializedError
from .comm import IN_PLACE, Comm
from .datatype import DataBinding, DatatypeLike, adapt
from .future import Future
from .mpi import MPIComm
from .operators import OPERATOR_REGISTRY, Operation, OperatorRegistry
from .utils import default_displacements, required_length


logger = logging.getLogger(__name__)


class Communicator:
    """Typed point-to-point and collective operations over one group of ranks.

    Any value adapt() understands can be passed: scalars, numpy arrays and
    scalars, registered record types, lists and array.array. Blocking
    operations return their result, non-blocking operations (prefixed with i)
    return a Future.

    A Communicator over a null group has rank -1 and size 0, and every
    operation on it returns immediately without touching the substrate.
    """

    def __init__(
        self, comm: Optional[Comm] = None, registry: Optional[OperatorRegistry] = None
    ):
        """
        Args:
            comm: substrate group, by default MPI.COMM_WORLD
            registry: reduction operator cache, by default the process-wide one

        Raises:
            NotInitializedError: if the substrate is not initialized and the
                group is not null
        """
        if comm is None:
            comm = MPIComm()
        self.comm = comm
        self._registry = registry if registry is not None else OPERATOR_REGISTRY
        if comm.is_null():
            self._rank = -1
            self._size = 0
        else:
            if not comm.is_initialized():
                raise NotInitializedError(
                    f"cannot create a Communicator over {comm}, "
                    "the substrate is not initialized"
                )
            self._rank = comm.Get_rank()
            self._size = comm.Get_size()
        logger.debug("created Communicator with rank %s of %s", self._rank, self._size)

    def __repr__(self):
        return f"Communicator(rank={self._rank}, size={self._size})"

    @property
    def rank(self) -> int:
        """rank of the current process within this communicator"""
        return self._rank

    @property
    def size(self) -> int:
        """number of ranks in this communicator"""
        return self._size

    @property
    def is_null(self) -> bool:
        return self._size == 0

    def _receive_binding(
        self, send: DataBinding, recv_data: Any, capacity: int
    ) -> DataBinding:
        """Bind a receive buffer of at least capacity elements, allocating one
        when recv_data is None and growing resizable containers.

        Raises:
            ValueError: if recv_data holds elements of another type than send,
                or is too small and cannot grow
        """
        if recv_data is None:
            return send.empty_like(capacity)
        recv = adapt(recv_data, receive=True, datatype=send.datatype)
        if recv.count < capacity:
            if recv.static_size:
                raise ValueError(
                    f"receive buffer holds {recv.count} elements "
                    f"but {capacity} are required"
                )
            recv.resize(capacity)
        return recv

    def _check_counts(self, counts: Sequence[int]):
        if len(counts) != self._size:
            raise ValueError(
                f"expected one count per rank ({self._size}), got {len(counts)}"
            )

    def _vector_layout(self, counts, displacements):
        self._check_counts(counts)
        if displacements is None:
            displacements = default_displacements(counts)
        else:
            self._check_counts(displacements)
        return counts, displacements

    def send(self, data: Any, dest: int, tag: int = 0):
        """Send data to rank dest, blocking until the buffer can be re-used."""
        if self.is_null:
            return
        binding = adapt(data)
        self.comm.Send(binding.spec(), dest, tag=tag)
        binding.release()

    def recv(
        self,
        data: Any,
        source: int,
        tag: int = 0,
        datatype: Optional[DatatypeLike] = None,
    ) -> Any:
        """Receive a message from rank source into data.

        data must already hold as many elements as the message. Use
        recv_unknown_length when the length is not known in advance.

        Args:
            data: receive buffer
            source: rank sending the message
            tag: tag of the message
            datatype: element type of the message, needed when data is a list
                it cannot be inferred from
        """
        if self.is_null:
            return data
        binding = adapt(data, receive=True, datatype=datatype)
        self.comm.Recv(binding.spec(), source, tag=tag)
        return binding.get()

    def recv_unknown_length(
        self,
        data: Any,
        source: int,
        tag: int = 0,
        datatype: Optional[DatatypeLike] = None,
    ) -> Any:
        """Receive a message of unknown length, resizing data to fit it.

        The message is matched by a probe before being received, so no other
        receive can take it in between. An empty list holds no elements to
        infer the message type from, so pass datatype unless the message is
        float64.

        Raises:
            FixedSizeError: if data cannot be resized
            ValueError: if data holds elements of a type other than datatype
        """
        if self.is_null:
            return data
        binding = adapt(data, receive=True, datatype=datatype)
        if binding.static_size:
            raise FixedSizeError(
                f"recv_unknown_length needs a resizable container, "
                f"got {type(data).__name__}"
            )
        message = self.comm.Mprobe(source, tag=tag)
        binding.resize(message.Get_count(binding.dtype))
        message.Recv(binding.spec())
        return binding.get()

    def broadcast(self, data: Any, root: int = 0, count: Optional[int] = None) -> Any:
        """Broadcast data from root to every rank.

        Args:
            data: value to send on root, receive buffer on other ranks
            root: rank sending the data
            count: only broadcast this many leading elements
        """
        if self.is_null:
            return data
        binding = adapt(data, receive=True)
        if count is not None and count > binding.count:
            raise ValueError(
                f"cannot broadcast {count} elements of a {binding.count} element value"
            )
        self.comm.Bcast(binding.spec(count), root=root)
        return binding.get()

    def gather(self, send_data: Any, recv_data: Any = None, root: int = 0) -> Any:
        """Gather send_data from every rank, in rank order, on root.

        Returns:
            the gathered values on root, None on other ranks
        """
        if self.is_null:
            return None
        send, recv = self._bind_gather(send_data, recv_data, root)
        self.comm.Gather(send.spec(), self._gather_spec(send, recv), root=root)
        send.release()
        return recv.get() if recv is not None else None

    def _bind_gather(self, send_data, recv_data, root):
        send = adapt(send_data)
        if self._rank == root:
            recv = self._receive_binding(send, recv_data, send.count * self._size)
        else:
            recv = None
        return send, recv

    @staticmethod
    def _gather_spec(send: DataBinding, recv: Optional[DataBinding]):
        return recv.spec(send.count) if recv is not None else None

    def gatherv(
        self,
        send_data: Any,
        recv_data: Any,
        recv_counts: Sequence[int],
        displacements: Optional[Sequence[int]] = None,
        root: int = 0,
    ) -> Any:
        """Gather a variable number of elements from every rank on root.

        Args:
            send_data: value to send from this rank
            recv_data: receive buffer on root, allocated if None
            recv_counts: number of elements sent by each rank, used on root
            displacements: offset of each rank's elements in recv_data,
                packed in rank order by default
            root: rank gathering the data

        Returns:
            the gathered values on root, None on other ranks
        """
        if self.is_null:
            return None
        send = adapt(send_data)
        recv = None
        recv_spec = None
        if self._rank == root:
            recv_counts, displacements = self._vector_layout(recv_counts, displacements)
            recv = self._receive_binding(
                send, recv_data, required_length(recv_counts, displacements)
            )
            recv_spec = recv.vector_spec(recv_counts, displacements)
        self.comm.Gatherv(send.spec(), recv_spec, root=root)
        send.release()
        return recv.get() if recv is not None else None

    def _bind_scatter(self, send_data, recv_data, root):
        recv = adapt(recv_data, receive=True)
        send = None
        send_spec = None
        if self._rank == root:
            send = adapt(send_data, datatype=recv.datatype)
            if send.count < recv.count * self._size:
                raise ValueError(
                    f"send buffer holds {send.count} elements but "
                    f"{recv.count * self._size} are required"
                )
            send_spec = send.spec(recv.count)
        return send, send_spec, recv

    def scatter(self, send_data: Any, recv_data: Any, root: int = 0) -> Any:
        """Send consecutive blocks of send_data on root to every rank, in
        rank order. The block size is the number of elements of recv_data,
        and send_data is only read on root."""
        if self.is_null:
            return recv_data
        send, send_spec, recv = self._bind_scatter(send_data, recv_data, root)
        self.comm.Scatter(send_spec, recv.spec(), root=root)
        if send is not None:
            send.release()
        return recv.get()

    def scatterv(
        self,
        send_data: Any,
        recv_data: Any,
        send_counts: Sequence[int],
        displacements: Optional[Sequence[int]] = None,
        root: int = 0,
    ) -> Any:
        """Send a variable number of elements of send_data on root to every rank.

        recv_data must hold at least send_counts[rank] elements.
        """
        if self.is_null:
            return recv_data
        recv = adapt(recv_data, receive=True)
        send = None
        send_spec = None
        if self._rank == root:
            send_counts, displacements = self._vector_layout(send_counts, displacements)
            send = adapt(send_data, datatype=recv.datatype)
            needed = required_length(send_counts, displacements)
            if send.count < needed:
                raise ValueError(
                    f"send buffer holds {send.count} elements "
                    f"but {needed} are required"
                )
            send_spec = send.vector_spec(send_counts, displacements)
        self.comm.Scatterv(send_spec, recv.spec(), root=root)
        if send is not None:
            send.release()
        return recv.get()

    def allgather(self, send_data: Any, recv_data: Any = None) -> Any:
        """Gather send_data from every rank, in rank order, on every rank."""
        if self.is_null:
            return None
        send = adapt(send_data)
        recv = self._receive_binding(send, recv_data, send.count * self._size)
        self.comm.Allgather(send.spec(), recv.spec(send.count))
        send.release()
        return recv.get()

    def allgatherv(
        self,
        send_data: Any,
        recv_data: Any,
        recv_counts: Sequence[int],
        displacements: Optional[Sequence[int]] = None,
    ) -> Any:
        """Gather a variable number of elements from every rank on every rank."""
        if self.is_null:
            return None
        recv_counts, displacements = self._vector_layout(recv_counts, displacements)
        send = adapt(send_data)
        recv = self._receive_binding(
            send, recv_data, required_length(recv_counts, displacements)
        )
        self.comm.Allgatherv(send.spec(), recv.vector_spec(recv_counts, displacements))
        send.release()
        return recv.get()

    def _bind_allreduce(self, data, operation, out):
        if out is None:
            binding = adapt(data, receive=True)
            recv = binding
            send_spec = IN_PLACE
        else:
            binding = adapt(data)
            recv = self._receive_binding(binding, out, binding.count)
            send_spec = binding.spec()
        op = self._registry.resolve(self.comm, operation, binding.datatype)
        return binding, send_spec, recv, op

    def allreduce(self, data: Any, operation: Operation, out: Any = None) -> Any:
        """Combine data element-wise across all ranks.

        Args:
            data: value contributed by this rank
            operation: "sum", "prod", "min", "max" or an associative binary
                callable
            out: if given, receives the result and data is left unchanged,
                otherwise the result is written into data

        Returns:
            the reduced value
        """
        if self.is_null:
            return data
        binding, send_spec, recv, op = self._bind_allreduce(data, operation, out)
        self.comm.Allreduce(send_spec, recv.spec(binding.count), op)
        if recv is not binding:
            binding.release()
        return recv.get()

    def sum(self, value: Any) -> Any:
        """Sum of value over all ranks, value itself is not modified."""
        return self.allreduce(copy.copy(value), "sum")

    def prod(self, value: Any) -> Any:
        return self.allreduce(copy.copy(value), "prod")

    def min(self, value: Any) -> Any:
        return self.allreduce(copy.copy(value), "min")

    def max(self, value: Any) -> Any:
        return self.allreduce(copy.copy(value), "max")

    def barrier(self):
        """Block until every rank has called barrier."""
        if self.is_null:
            return
        self.comm.Barrier()

    def isend(self, data: Any, dest: int, tag: int = 0) -> Future:
        """Start sending data to rank dest, the Future's result is data."""
        if self.is_null:
            return Future.completed(data)
        binding = adapt(data)
        return Future(self.comm.Isend(binding.spec(), dest, tag=tag), binding)

    def irecv(
        self,
        data: Any,
        source: int,
        tag: int = 0,
        datatype: Optional[DatatypeLike] = None,
    ) -> Future:
        if self.is_null:
            return Future.completed(data)
        binding = adapt(data, receive=True, datatype=datatype)
        return Future(self.comm.Irecv(binding.spec(), source, tag=tag), binding)

    def ibroadcast(self, data: Any, root: int = 0) -> Future:
        if self.is_null:
            return Future.completed(data)
        binding = adapt(data, receive=True)
        return Future(self.comm.Ibcast(binding.spec(), root=root), binding)

    def igather(self, send_data: Any, recv_data: Any = None, root: int = 0) -> Future:
        """Non-blocking gather, the result is None on ranks other than root."""
        if self.is_null:
            return Future.completed(None)
        send, recv = self._bind_gather(send_data, recv_data, root)
        request = self.comm.Igather(
            send.spec(), self._gather_spec(send, recv), root=root
        )
        return Future(request, recv, send_binding=send)

    def iscatter(self, send_data: Any, recv_data: Any, root: int = 0) -> Future:
        if self.is_null:
            return Future.completed(recv_data)
        send, send_spec, recv = self._bind_scatter(send_data, recv_data, root)
        request = self.comm.Iscatter(send_spec, recv.spec(), root=root)
        return Future(request, recv, send_binding=send)

    def iallgather(self, send_data: Any, recv_data: Any = None) -> Future:
        if self.is_null:
            return Future.completed(None)
        send = adapt(send_data)
        recv = self._receive_binding(send, recv_data, send.count * self._size)
        request = self.comm.Iallgather(send.spec(), recv.spec(send.count))
        return Future(request, recv, send_binding=send)

    def iallreduce(self, data: Any, operation: Operation, out: Any = None) -> Future:
        """Non-blocking allreduce, data must not be touched until completion."""
        if self.is_null:
            return Future.completed(data)
        binding, send_spec, recv, op = self._bind_allreduce(data, operation, out)
        request = self.comm.Iallreduce(send_spec, recv.spec(binding.count), op)
        if recv is binding:
            return Future(request, recv)
        return Future(request, recv, send_binding=binding)

    def ibarrier(self) -> Future:
        if self.is_null:
            return Future.completed(None)
        return Future(self.comm.Ibarrier())

    def split(self, color: Optional[int], key: Optional[int] = None) -> "Communicator":
        """Partition the group by color, ordering each part by key.

        Every rank must call split. Ranks passing a color of None get a
        Communicator over a null group.

        Args:
            color: ranks with the same color end up in the same group
            key: ordering of ranks in the new group, defaults to the current rank
        """
        if self.is_null:
            return self
        if key is None:
            key = self._rank
        return Communicator(self.comm.Split(color, key), registry=self._registry)
