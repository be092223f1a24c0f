import pytest

import pace.collective
from pace.collective.testing import run_on_ranks


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "parallel: test must be run under mpirun with several ranks"
    )


@pytest.fixture
def registry():
    return pace.collective.OperatorRegistry()


@pytest.fixture(params=[1, 2, 4])
def total_ranks(request):
    return request.param


@pytest.fixture
def run(registry):
    """Run a worker on every rank of a LocalComm group, returning results
    in rank order."""

    def run_func(worker, total_ranks, timeout=10.0):
        return run_on_ranks(worker, total_ranks, timeout=timeout, registry=registry)

    return run_func
