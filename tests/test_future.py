import unittest.mock

import numpy as np
import pytest

from pace.collective import Future, FutureStateError, Request
from pace.collective.datatype import DataBinding, adapt


@pytest.fixture
def request_mock():
    return unittest.mock.MagicMock(spec=Request)


def test_get_before_wait_raises(request_mock):
    future = Future(request_mock, adapt(np.zeros(2), receive=True))
    with pytest.raises(FutureStateError):
        future.get()
    future.wait()


def test_wait_then_get(request_mock):
    value = np.zeros(2)
    future = Future(request_mock, adapt(value, receive=True))
    assert not future.done
    future.wait()
    assert future.done
    request_mock.Wait.assert_called_once_with()
    assert future.get() is value


def test_get_twice_raises(request_mock):
    future = Future(request_mock, adapt(1.0))
    future.wait()
    assert future.get() == 1.0
    with pytest.raises(FutureStateError):
        future.get()


def test_wait_twice_waits_once(request_mock):
    future = Future(request_mock)
    future.wait()
    future.wait()
    request_mock.Wait.assert_called_once_with()
    assert future.get() is None


@pytest.mark.parametrize("complete", [True, False])
def test_ready_does_not_finalize(request_mock, complete):
    request_mock.Test.return_value = complete
    binding = unittest.mock.MagicMock(spec=DataBinding)
    future = Future(request_mock, binding)
    assert future.ready() is complete
    assert not future.done
    binding.get.assert_not_called()
    future.wait()


def test_finalize_releases_send_binding(request_mock):
    binding = unittest.mock.MagicMock(spec=DataBinding)
    send_binding = unittest.mock.MagicMock(spec=DataBinding)
    future = Future(request_mock, binding, send_binding=send_binding)
    future.wait()
    binding.get.assert_called_once_with()
    send_binding.release.assert_called_once_with()
    assert future.get() is binding.get.return_value


def test_staged_data_copied_back_on_wait(request_mock):
    base = np.zeros((2, 4))
    value = base[:, ::2]
    binding = adapt(value, receive=True)
    future = Future(request_mock, binding)
    binding.array[:] = 5.0
    np.testing.assert_array_equal(base, 0.0)
    future.wait()
    np.testing.assert_array_equal(base[:, ::2], 5.0)
    assert future.get() is value


def test_completed_future():
    future = Future.completed(3)
    assert future.done
    assert future.ready()
    future.wait()
    assert future.get() == 3


def test_discarding_pending_future_waits(request_mock):
    binding = unittest.mock.MagicMock(spec=DataBinding)
    future = Future(request_mock, binding)
    del future
    request_mock.Wait.assert_called_once_with()
    binding.get.assert_called_once_with()


def test_discarding_completed_future_does_not_wait(request_mock):
    future = Future(request_mock)
    future.wait()
    del future
    request_mock.Wait.assert_called_once_with()
