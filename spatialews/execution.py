from concurrent.futures import FIRST_COMPLETED, ProcessPoolExecutor, ThreadPoolExecutor, wait
from typing import Any, Callable, List, NamedTuple, Optional, Sequence

from tqdm.auto import tqdm

from .exceptions import CancelledError, InvalidInputError

EXECUTION_MODES = ("sequential", "threads", "processes")


class TaskFailure(NamedTuple):
    """Exception raised by one task, kept at the task's position in the results."""
    index: int
    error: BaseException


class ExecutionContext:
    """
    How a batch of independent computations is executed.

    The context is passed explicitly to batch operations (``compute_indicator``,
    ``indictest``); there is no package-level execution plan.

    Parameters
    ----------
    mode : {"sequential", "threads", "processes"}, default "sequential"
        ``sequential`` runs tasks one after the other in the calling thread.
        ``threads`` and ``processes`` use a ``concurrent.futures`` worker pool;
        with ``processes`` the task function and its inputs must be picklable
        (no lambdas or closures as indicator functions).
    max_workers : int, optional
        Pool size, passed to the executor.
    show_progress : bool, default False
        Display a tqdm progress bar over the tasks.
    cancel_event : threading.Event, optional
        When set, no further task is started and the batch raises
        ``CancelledError``. Checked between tasks, never inside one.
    """

    def __init__(self, mode="sequential", max_workers=None, show_progress=False, cancel_event=None):
        if mode not in EXECUTION_MODES:
            raise InvalidInputError(f"mode must be one of {EXECUTION_MODES}, got {mode!r}")
        if max_workers is not None and max_workers < 1:
            raise InvalidInputError(f"max_workers must be >= 1, got {max_workers}")
        self.mode = mode
        self.max_workers = max_workers
        self.show_progress = show_progress
        self.cancel_event = cancel_event

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def check_cancelled(self):
        if self.cancelled:
            raise CancelledError("Batch cancelled")

    def detached(self):
        """Copy without cancel event and progress bar, safe to send to a worker process."""
        return ExecutionContext(self.mode, self.max_workers, False, None)

    def __repr__(self):
        return f"ExecutionContext(mode={self.mode!r}, max_workers={self.max_workers})"


def _run_guarded(func, item, cancel_event):
    if cancel_event is not None and cancel_event.is_set():
        raise CancelledError("Batch cancelled")
    return func(item)


def run_tasks(
    func: Callable[[Any], Any],
    items: Sequence[Any],
    context: Optional[ExecutionContext] = None,
    desc: Optional[str] = None,
    capture_errors: bool = False,
) -> List[Any]:
    """
    Apply ``func`` to every item and return the results in input order.

    Results of parallel tasks are stored by their index, whatever the order in
    which the tasks complete.

    Parameters
    ----------
    func : callable
        Function of one argument, without side effects.
    items : sequence
        Inputs, one task per item.
    context : ExecutionContext, optional
        Execution mode; sequential when None.
    desc : str, optional
        Label of the progress bar.
    capture_errors : bool, default False
        If True, an exception raised by a task is returned as a
        ``TaskFailure`` at that task's position and the other tasks proceed.
        If False, the first exception cancels the pending tasks and is
        re-raised. ``CancelledError`` is always re-raised.

    Returns
    -------
    list
        One result (or ``TaskFailure``) per item, in the order of ``items``.

    Raises
    ------
    CancelledError
        If ``context.cancel_event`` is set while tasks remain.
    """
    context = context or ExecutionContext()
    items = list(items)
    results: List[Any] = [None] * len(items)

    with tqdm(total=len(items), desc=desc, disable=not context.show_progress) as progress:
        if context.mode == "sequential" or len(items) <= 1:
            for index, item in enumerate(items):
                context.check_cancelled()
                try:
                    results[index] = func(item)
                except CancelledError:
                    raise
                except Exception as e:
                    if not capture_errors:
                        raise
                    results[index] = TaskFailure(index, e)
                progress.update(1)
            return results

        if context.mode == "threads":
            executor = ThreadPoolExecutor(max_workers=context.max_workers)
            cancel_event = context.cancel_event
        else:
            executor = ProcessPoolExecutor(max_workers=context.max_workers)
            # A threading.Event cannot cross process boundaries; checked here instead
            cancel_event = None

        with executor:
            pending = {executor.submit(_run_guarded, func, item, cancel_event): index
                       for index, item in enumerate(items)}
            try:
                while pending:
                    if context.cancelled:
                        raise CancelledError("Batch cancelled")
                    done, _ = wait(pending, timeout=0.1, return_when=FIRST_COMPLETED)
                    for future in done:
                        index = pending.pop(future)
                        try:
                            results[index] = future.result()
                        except CancelledError:
                            raise
                        except Exception as e:
                            if not capture_errors:
                                raise
                            results[index] = TaskFailure(index, e)
                        progress.update(1)
            except BaseException:
                for future in pending:
                    future.cancel()
                raise

    return results
