"""Helpers for jitted kernels, which can't raise exceptions with
formatted messages. Kernels return an error message as their last
output instead, and the wrapper below raises it in Python mode.
"""


class NumbaKernelError(Exception):
    """Error reported by a numba kernel through its message output."""


def wrap_numba_error(function):
    """Decorates a jitted kernel whose last output is an error message
    (empty string on success).

    A non-empty message raises NumbaKernelError, prefixed by the kernel
    name. On success, the message is stripped: a kernel with a single
    result returns it unpacked, others return a tuple.

    Usage
    -----
    @wrap_numba_error
    @nb.njit
    def kernel(array):
        if array.shape[0] == 0:
            return array, "Empty input."
        ...
        return result, ""
    """
    def wrapped(*args, **kwargs):
        *results, msg = function(*args, **kwargs)

        if msg:
            raise NumbaKernelError(f"Kernel {function.__name__} failed: {msg}")

        return results[0] if len(results) == 1 else tuple(results)

    return wrapped
