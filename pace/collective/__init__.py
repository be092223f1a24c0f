from . import testing
from ._exceptions import (
    ConcurrencyError,
    FixedSizeError,
    FutureStateError,
    NotInitializedError,
    UnsupportedTypeError,
    UsageError,
)
from .buffer import Buffer
from .comm import IN_PLACE, BufferSpec, Comm, Message, Request
from .communicator import Communicator
from .config import (
    CommunicatorConfig,
    CreatesComm,
    CreatesCommSelector,
    MPICommConfig,
    NullGroupCommConfig,
    configure_logging,
)
from .datatype import DataBinding, Datatype, adapt, register_datatype, wire_type
from .future import Future
from .local_comm import LocalComm
from .mpi import MPIComm
from .operators import OPERATOR_REGISTRY, OperatorRegistry
from .registry import Registry


__version__ = "0.1.0"
