try:
    from mpi4py import MPI
    from mpi4py.util import dtlib
except ImportError:
    MPI = None
    dtlib = None
import logging
from typing import Dict, Optional

import numpy as np

from ._exceptions import NotInitializedError
from .comm import IN_PLACE, BufferSpec, Comm, Message, ReductionFunction, Request


logger = logging.getLogger(__name__)

_MPI_DATATYPES: Dict[np.dtype, "MPI.Datatype"] = {}


def to_mpi_datatype(dtype: np.dtype) -> "MPI.Datatype":
    """MPI datatype for a numpy dtype, committed and cached on first use."""
    dtype = np.dtype(dtype)
    if dtype not in _MPI_DATATYPES:
        datatype = dtlib.from_numpy_dtype(dtype)
        if not datatype.is_predefined:
            datatype.Commit()
            logger.debug("committed MPI datatype for %s", dtype)
        _MPI_DATATYPES[dtype] = datatype
    return _MPI_DATATYPES[dtype]


def _to_mpi_buffer(buf):
    if buf is None:
        return None
    elif buf is IN_PLACE:
        return MPI.IN_PLACE
    return [buf.array, buf.count, to_mpi_datatype(buf.dtype)]


class MPIMessage(Message):
    def __init__(self, message: "MPI.Message", status: "MPI.Status"):
        self._message = message
        self._status = status

    def Get_count(self, dtype: np.dtype) -> int:
        return self._status.Get_count(to_mpi_datatype(dtype))

    def Recv(self, buf: BufferSpec):
        self._message.Recv(_to_mpi_buffer(buf))


class MPIComm(Comm):
    """Comm backed by an mpi4py communicator, COMM_WORLD by default."""

    op_domain = "mpi"

    def __init__(self, comm: Optional["MPI.Comm"] = None):
        if MPI is None:
            raise NotInitializedError("MPI not available")
        if comm is None:
            comm = MPI.COMM_WORLD
        self._comm: "MPI.Comm" = comm

    @property
    def mpi_comm(self) -> "MPI.Comm":
        """the wrapped mpi4py communicator, for calls this interface lacks"""
        return self._comm

    def __repr__(self):
        if self.is_null():
            return "MPIComm(COMM_NULL)"
        return f"MPIComm(rank={self.Get_rank()}, size={self.Get_size()})"

    def is_null(self) -> bool:
        return self._comm == MPI.COMM_NULL

    def is_initialized(self) -> bool:
        return MPI.Is_initialized() and not MPI.Is_finalized()

    def Get_rank(self) -> int:
        return self._comm.Get_rank()

    def Get_size(self) -> int:
        return self._comm.Get_size()

    def Send(self, buf: BufferSpec, dest: int, tag: int = 0):
        logger.debug("Send on rank %s with dest %s", self._comm.Get_rank(), dest)
        self._comm.Send(_to_mpi_buffer(buf), dest, tag=tag)

    def Isend(self, buf: BufferSpec, dest: int, tag: int = 0) -> Request:
        logger.debug("Isend on rank %s with dest %s", self._comm.Get_rank(), dest)
        return self._comm.Isend(_to_mpi_buffer(buf), dest, tag=tag)

    def Recv(self, buf: BufferSpec, source: int, tag: int = 0):
        logger.debug("Recv on rank %s with source %s", self._comm.Get_rank(), source)
        self._comm.Recv(_to_mpi_buffer(buf), source, tag=tag)

    def Irecv(self, buf: BufferSpec, source: int, tag: int = 0) -> Request:
        logger.debug("Irecv on rank %s with source %s", self._comm.Get_rank(), source)
        return self._comm.Irecv(_to_mpi_buffer(buf), source, tag=tag)

    def Mprobe(self, source: int, tag: int = 0) -> Message:
        logger.debug("Mprobe on rank %s with source %s", self._comm.Get_rank(), source)
        status = MPI.Status()
        message = self._comm.Mprobe(source=source, tag=tag, status=status)
        return MPIMessage(message, status)

    def Bcast(self, buf: BufferSpec, root: int = 0):
        logger.debug("Bcast on rank %s with root %s", self._comm.Get_rank(), root)
        self._comm.Bcast(_to_mpi_buffer(buf), root=root)

    def Ibcast(self, buf: BufferSpec, root: int = 0) -> Request:
        logger.debug("Ibcast on rank %s with root %s", self._comm.Get_rank(), root)
        return self._comm.Ibcast(_to_mpi_buffer(buf), root=root)

    def Gather(self, sendbuf, recvbuf, root: int = 0):
        logger.debug("Gather on rank %s with root %s", self._comm.Get_rank(), root)
        self._comm.Gather(_to_mpi_buffer(sendbuf), _to_mpi_buffer(recvbuf), root=root)

    def Igather(self, sendbuf, recvbuf, root: int = 0) -> Request:
        logger.debug("Igather on rank %s with root %s", self._comm.Get_rank(), root)
        return self._comm.Igather(
            _to_mpi_buffer(sendbuf), _to_mpi_buffer(recvbuf), root=root
        )

    def Gatherv(self, sendbuf, recvbuf, root: int = 0):
        logger.debug("Gatherv on rank %s with root %s", self._comm.Get_rank(), root)
        self._comm.Gatherv(
            _to_mpi_buffer(sendbuf), _to_mpi_buffer(recvbuf), root=root
        )

    def Scatter(self, sendbuf, recvbuf, root: int = 0):
        logger.debug("Scatter on rank %s with root %s", self._comm.Get_rank(), root)
        self._comm.Scatter(
            _to_mpi_buffer(sendbuf), _to_mpi_buffer(recvbuf), root=root
        )

    def Iscatter(self, sendbuf, recvbuf, root: int = 0) -> Request:
        logger.debug("Iscatter on rank %s with root %s", self._comm.Get_rank(), root)
        return self._comm.Iscatter(
            _to_mpi_buffer(sendbuf), _to_mpi_buffer(recvbuf), root=root
        )

    def Scatterv(self, sendbuf, recvbuf, root: int = 0):
        logger.debug("Scatterv on rank %s with root %s", self._comm.Get_rank(), root)
        self._comm.Scatterv(
            _to_mpi_buffer(sendbuf), _to_mpi_buffer(recvbuf), root=root
        )

    def Allgather(self, sendbuf, recvbuf):
        logger.debug("Allgather on rank %s", self._comm.Get_rank())
        self._comm.Allgather(_to_mpi_buffer(sendbuf), _to_mpi_buffer(recvbuf))

    def Iallgather(self, sendbuf, recvbuf) -> Request:
        logger.debug("Iallgather on rank %s", self._comm.Get_rank())
        return self._comm.Iallgather(_to_mpi_buffer(sendbuf), _to_mpi_buffer(recvbuf))

    def Allgatherv(self, sendbuf, recvbuf):
        logger.debug("Allgatherv on rank %s", self._comm.Get_rank())
        self._comm.Allgatherv(_to_mpi_buffer(sendbuf), _to_mpi_buffer(recvbuf))

    def Allreduce(self, sendbuf, recvbuf, op):
        logger.debug("Allreduce on rank %s with op %s", self._comm.Get_rank(), op)
        self._comm.Allreduce(_to_mpi_buffer(sendbuf), _to_mpi_buffer(recvbuf), op=op)

    def Iallreduce(self, sendbuf, recvbuf, op) -> Request:
        logger.debug("Iallreduce on rank %s with op %s", self._comm.Get_rank(), op)
        return self._comm.Iallreduce(
            _to_mpi_buffer(sendbuf), _to_mpi_buffer(recvbuf), op=op
        )

    def Barrier(self):
        logger.debug("Barrier on rank %s", self._comm.Get_rank())
        self._comm.Barrier()

    def Ibarrier(self) -> Request:
        logger.debug("Ibarrier on rank %s", self._comm.Get_rank())
        return self._comm.Ibarrier()

    def Split(self, color: Optional[int], key: int) -> "MPIComm":
        logger.debug(
            "Split on rank %s with color %s, key %s", self._comm.Get_rank(), color, key
        )
        if color is None:
            color = MPI.UNDEFINED
        return MPIComm(self._comm.Split(color, key))

    def Op_Create(self, function: ReductionFunction, commute: bool = True):
        logger.debug("creating MPI op for %s", function)
        return MPI.Op.Create(function, commute=commute)

    def builtin_op(self, name: str):
        return {"sum": MPI.SUM, "prod": MPI.PROD, "min": MPI.MIN, "max": MPI.MAX}[name]
