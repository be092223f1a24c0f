from typing import List, Optional, Sequence, Union

import numpy as np


def is_contiguous(array: np.ndarray) -> bool:
    return array.flags["C_CONTIGUOUS"] or array.flags["F_CONTIGUOUS"]


def is_c_contiguous(array: np.ndarray) -> bool:
    return array.flags["C_CONTIGUOUS"]


def ensure_contiguous(maybe_array: Union[np.ndarray, None]) -> None:
    if maybe_array is not None and not is_c_contiguous(maybe_array):
        raise ValueError("ndarray is not contiguous")


def safe_assign_array(to_array: np.ndarray, from_array: np.ndarray):
    """Assign from_array into to_array, flattening both if their shapes differ
    but their sizes agree.

    Args:
        to_array: destination ndarray
        from_array: source ndarray
    """
    try:
        to_array[...] = from_array
    except ValueError:
        if np.size(to_array) == np.size(from_array):
            to_array.reshape(-1)[:] = np.reshape(from_array, -1)
        else:
            raise


def default_displacements(counts: Sequence[int]) -> List[int]:
    """Displacements placing each rank's block directly after the previous one."""
    displacements = [0]
    for count in counts[:-1]:
        displacements.append(displacements[-1] + count)
    return displacements[: len(counts)]


def required_length(
    counts: Sequence[int], displacements: Optional[Sequence[int]] = None
) -> int:
    """Minimum buffer length needed to hold every block of a v-variant."""
    if displacements is None:
        displacements = default_displacements(counts)
    return max(
        (displ + count for count, displ in zip(counts, displacements)), default=0
    )
