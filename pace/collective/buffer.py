import threading
from typing import Dict, List, Tuple

import numpy as np

from .utils import is_c_contiguous, safe_assign_array


BufferKey = Tuple[Tuple[int, ...], np.dtype]
BUFFER_CACHE: Dict[BufferKey, List["Buffer"]] = {}
# ranks simulated on threads share the cache
_CACHE_LOCK = threading.Lock()


class Buffer:
    """A contiguous staging array, cached for re-use once released.

    Non-contiguous arrays cannot be handed to the substrate directly, so their
    data goes through one of these buffers.

    _key: key into cache storage to allow easy re-caching
    array: ndarray allocated
    """

    array: np.ndarray

    def __init__(self, key: BufferKey, array: np.ndarray):
        """Init a cacheable buffer.

        Args:
            key: a cache key made out of tuple of shape and dtype
            array: ndarray of actual data
        """
        self._key = key
        self.array = array

    @classmethod
    def pop_from_cache(cls, shape: Tuple[int, ...], dtype: np.dtype) -> "Buffer":
        """Retrieve or insert then retrieve of buffer from cache.

        Args:
            shape: shape of array
            dtype: type of array elements
        Return:
            a buffer wrapping an allocated array
        """
        key = (tuple(shape), np.dtype(dtype))
        with _CACHE_LOCK:
            if len(BUFFER_CACHE.setdefault(key, [])) > 0:
                return BUFFER_CACHE[key].pop()
        array = np.empty(key[0], dtype=key[1])
        assert is_c_contiguous(array)
        return cls(key, array)

    @staticmethod
    def push_to_cache(buffer: "Buffer"):
        """Push the buffer back into the cache.

        Args:
            buffer: buffer to push back in cache, using internal key
        """
        with _CACHE_LOCK:
            BUFFER_CACHE[buffer._key].append(buffer)

    def assign_to(self, destination_array: np.ndarray):
        """Assign internal array to destination_array.

        Args:
            destination_array: target ndarray
        """
        safe_assign_array(destination_array, self.array)

    def assign_from(self, source_array: np.ndarray):
        """Assign source_array to internal array.

        Args:
            source_array: source ndarray
        """
        safe_assign_array(self.array, source_array)
