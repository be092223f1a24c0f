"""
Helpers for testing code written against Communicator without MPI.

Each rank runs on its own thread over a shared LocalComm group:

    >>> from pace.collective.testing import run_on_ranks
    >>> run_on_ranks(lambda communicator: communicator.sum(communicator.rank), 4)
    [6, 6, 6, 6]
"""
import concurrent.futures
from typing import Any, Callable, List, Optional

from ..communicator import Communicator
from ..local_comm import DEFAULT_TIMEOUT, LocalComm
from ..operators import OperatorRegistry


def make_communicators(
    total_ranks: int,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
    registry: Optional[OperatorRegistry] = None,
) -> List[Communicator]:
    """One Communicator per rank of a new LocalComm group."""
    return [
        Communicator(comm, registry=registry)
        for comm in LocalComm.create_group(total_ranks, timeout=timeout)
    ]


def run_on_ranks(
    worker: Callable[[Communicator], Any],
    total_ranks: int,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
    registry: Optional[OperatorRegistry] = None,
) -> List[Any]:
    """Call worker once per rank, each on its own thread.

    Args:
        worker: called with the Communicator of one rank
        total_ranks: number of simulated ranks
        timeout: seconds a rank waits on the others before failing
        registry: reduction operator cache, by default the process-wide one

    Returns:
        the return value of worker on each rank, in rank order

    Raises:
        the exception of the lowest rank on which worker failed
    """
    communicators = make_communicators(total_ranks, timeout=timeout, registry=registry)
    with concurrent.futures.ThreadPoolExecutor(max_workers=total_ranks) as executor:
        futures = [
            executor.submit(worker, communicator) for communicator in communicators
        ]
        concurrent.futures.wait(futures)
    return [future.result() for future in futures]
