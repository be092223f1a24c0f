import logging
from typing import Any, Optional

from ._exceptions import FutureStateError
from .comm import Request
from .datatype import DataBinding


logger = logging.getLogger(__name__)


class Future:
    """Result of a non-blocking operation.

    The Future owns the buffers of the operation until it completes, after
    which get() hands the result back to the caller exactly once. Dropping a
    pending Future blocks until its request completes.
    """

    def __init__(
        self,
        request: Optional[Request],
        binding: Optional[DataBinding] = None,
        send_binding: Optional[DataBinding] = None,
    ):
        """
        Args:
            request: substrate request of the operation
            binding: binding whose value is the result, None if the operation
                has no result on this rank
            send_binding: separate send buffer kept alive until completion
        """
        self._request = request
        self._binding = binding
        self._send_binding = send_binding
        self._result: Any = None
        self._completed = False
        self._extracted = False

    @classmethod
    def completed(cls, value: Any = None) -> "Future":
        """A Future which is already complete with the given result."""
        future = cls(None)
        future._result = value
        future._completed = True
        return future

    @property
    def done(self) -> bool:
        return self._completed

    def wait(self):
        """Block until the operation completes, then finalize its buffers."""
        if not self._completed:
            self._request.Wait()
            self._finalize()

    def ready(self) -> bool:
        """Whether the operation has completed, without blocking.

        A Future which is ready still needs wait() before get().
        """
        if self._completed:
            return True
        return self._request.Test()

    def get(self) -> Any:
        """Extract the result of a completed operation.

        Raises:
            FutureStateError: if the operation has not been waited on, or the
                result was already extracted
        """
        if not self._completed:
            raise FutureStateError(
                "result of a pending operation requested, call wait() first"
            )
        if self._extracted:
            raise FutureStateError("result was already extracted from this Future")
        self._extracted = True
        result, self._result = self._result, None
        return result

    def _finalize(self):
        if self._binding is not None:
            self._result = self._binding.get()
        if self._send_binding is not None:
            self._send_binding.release()
        self._request = None
        self._binding = None
        self._send_binding = None
        self._completed = True

    def __del__(self):
        if not getattr(self, "_completed", True) and self._request is not None:
            logger.debug("waiting on pending request of discarded Future")
            self._request.Wait()
            self._finalize()
