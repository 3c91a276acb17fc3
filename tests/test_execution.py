import threading
import time

import pytest

from spatialews.exceptions import CancelledError, InvalidInputError
from spatialews.execution import ExecutionContext, TaskFailure, run_tasks


def _slow_square(x):
    time.sleep(0.01 * (5 - x))
    return x * x


def _fail_on_two(x):
    if x == 2:
        raise ValueError("two")
    return x


@pytest.mark.parametrize("mode", ["sequential", "threads"])
def test_results_follow_input_order(mode):
    context = ExecutionContext(mode, max_workers=4)
    assert run_tasks(_slow_square, range(5), context) == [0, 1, 4, 9, 16]


def test_processes_mode():
    context = ExecutionContext("processes", max_workers=2)
    assert run_tasks(abs, [-1, -2, 3], context) == [1, 2, 3]


@pytest.mark.parametrize("mode", ["sequential", "threads"])
def test_errors(mode):
    context = ExecutionContext(mode, max_workers=2)
    results = run_tasks(_fail_on_two, range(4), context, capture_errors=True)
    assert results[:2] == [0, 1]
    assert results[3] == 3
    assert isinstance(results[2], TaskFailure)
    assert results[2].index == 2
    assert isinstance(results[2].error, ValueError)
    with pytest.raises(ValueError):
        run_tasks(_fail_on_two, range(4), context)


@pytest.mark.parametrize("mode", ["sequential", "threads"])
def test_cancel_before_start(mode):
    event = threading.Event()
    event.set()
    with pytest.raises(CancelledError):
        run_tasks(_slow_square, range(3), ExecutionContext(mode, cancel_event=event), capture_errors=True)


def test_cancel_between_tasks():
    event = threading.Event()
    seen = []

    def task(x):
        seen.append(x)
        if x == 1:
            event.set()
        return x

    with pytest.raises(CancelledError):
        run_tasks(task, range(5), ExecutionContext(cancel_event=event))
    assert seen == [0, 1]


def test_invalid_context():
    with pytest.raises(InvalidInputError):
        ExecutionContext("gpu")
    with pytest.raises(InvalidInputError):
        ExecutionContext("threads", max_workers=0)


def test_detached_context():
    context = ExecutionContext("threads", 3, show_progress=True, cancel_event=threading.Event())
    detached = context.detached()
    assert detached.mode == "threads"
    assert detached.max_workers == 3
    assert detached.cancel_event is None
    assert not detached.show_progress
