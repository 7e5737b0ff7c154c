from concurrent.futures import ThreadPoolExecutor
from typing import Callable, TypeVar

T = TypeVar("T")


class MutationQueue:
    """
    Runs read-modify-write cycles one at a time, in submission order.

    A single worker thread drains the queue, so two callers never interleave
    their cycles. A queued callable must not wait on another job submitted to
    the same queue.
    """

    def __init__(self, name: str = "bakker-mutations"):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)

    def run(self, fn: Callable[..., T], *args, **kwargs) -> T:
        return self._executor.submit(fn, *args, **kwargs).result()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
