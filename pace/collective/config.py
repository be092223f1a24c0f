import abc
import dataclasses
import logging
from typing import Any, ClassVar, Dict, Optional

import dacite
import yaml

from .comm import Comm
from .communicator import Communicator
from .mpi import MPI, MPIComm
from .registry import Registry


logger = logging.getLogger(__name__)

log_levels = {
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def configure_logging(log_rank: Optional[int], log_level: str):
    """
    Configure logging for the collective layer.

    Args:
        log_rank: rank to log from, or None to log on all ranks,
            ignored if running without MPI
        log_level: one of 'debug', 'info', 'warning', 'error', 'critical'
    """
    level = log_levels[log_level]
    if MPI is None:
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s:%(message)s",
            handlers=[logging.StreamHandler()],
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        rank = MPI.COMM_WORLD.Get_rank()
        if log_rank is None or int(log_rank) == rank:
            logging.basicConfig(
                level=level,
                format=(
                    f"%(asctime)s [%(levelname)s] (rank {rank}) %(name)s:%(message)s"
                ),
                handlers=[logging.StreamHandler()],
                datefmt="%Y-%m-%d %H:%M:%S",
            )


class CreatesComm(abc.ABC):
    """
    Retrieves and does cleanup for a substrate Comm object.
    """

    @abc.abstractmethod
    def get_comm(self) -> Comm:
        ...

    @abc.abstractmethod
    def cleanup(self, comm: Comm):
        """
        Perform any operations that must occur before exiting.
        """
        ...


@dataclasses.dataclass(frozen=True)
class CreatesCommSelector(CreatesComm):
    """
    Dataclass for selecting the CreatesComm implementation to use.

    dacite expects static class definitions, so this represents the part of
    the yaml configuration choosing a comm creator and defers to the selected
    type when called.

    Attributes:
        config: type-specific configuration
        type: type of Comm object to create, "mpi" (default) or "null"
    """

    config: CreatesComm = dataclasses.field(default_factory=lambda: MPICommConfig())
    type: str = "mpi"
    registry: ClassVar[Registry] = Registry(default_type="mpi")

    @classmethod
    def register(cls, type_name):
        return cls.registry.register(type_name)

    def get_comm(self) -> Comm:
        return self.config.get_comm()

    def cleanup(self, comm: Comm):
        return self.config.cleanup(comm)

    @classmethod
    def from_dict(cls, config: dict):
        type_name, creates_comm = cls.registry.resolve(config)
        return cls(config=creates_comm, type=type_name)


@CreatesCommSelector.register("mpi")
@dataclasses.dataclass
class MPICommConfig(CreatesComm):
    """
    Configuration for an MPIComm over MPI.COMM_WORLD, optionally split.

    Attributes:
        color: if given, ranks are split into groups of the same color
    """

    color: Optional[int] = None

    def get_comm(self) -> Comm:
        comm = MPIComm()
        if self.color is not None:
            comm = comm.Split(self.color, comm.Get_rank())
        return comm

    def cleanup(self, comm: Comm):
        pass


@CreatesCommSelector.register("null")
@dataclasses.dataclass
class NullGroupCommConfig(CreatesComm):
    """
    Configuration for an MPIComm over MPI.COMM_NULL.

    Every operation of a Communicator built on it is a no-op, which is useful
    for ranks taking no part in a computation.
    """

    def get_comm(self) -> Comm:
        return MPIComm(MPI.COMM_NULL)

    def cleanup(self, comm: Comm):
        pass


@dataclasses.dataclass
class CommunicatorConfig:
    """
    Configuration of a Communicator.

    Attributes:
        comm: selects and configures the substrate
        log_level: one of 'debug', 'info', 'warning', 'error', 'critical'
        log_rank: rank to log from, or all ranks if None
    """

    comm: CreatesCommSelector = dataclasses.field(
        default_factory=CreatesCommSelector
    )
    log_level: str = "info"
    log_rank: Optional[int] = None

    def __post_init__(self):
        if self.log_level not in log_levels:
            raise ValueError(
                f"log_level must be one of {list(log_levels)}, got {self.log_level}"
            )

    @classmethod
    def from_dict(cls, kwargs: Dict[str, Any]) -> "CommunicatorConfig":
        kwargs = dict(kwargs)
        kwargs["comm"] = CreatesCommSelector.from_dict(kwargs.get("comm") or {})
        return dacite.from_dict(
            data_class=cls, data=kwargs, config=dacite.Config(strict=True)
        )

    @classmethod
    def from_yaml(cls, path: str) -> "CommunicatorConfig":
        with open(path, "r") as f:
            config = yaml.safe_load(f)
        return cls.from_dict(config or {})

    def build(self) -> Communicator:
        """Configure logging, then create the Communicator."""
        configure_logging(self.log_rank, self.log_level)
        communicator = Communicator(self.comm.get_comm())
        logger.info("built %s from %s", communicator, self.comm.type)
        return communicator

    def cleanup(self, communicator: Communicator):
        self.comm.cleanup(communicator.comm)
