#!/usr/bin/env python3
"""
Grid Record Parallel Processing Backend Tests

This module tests the backends of GridParallelManager that run per-record conversion tasks: serial execution, the thread pool, the multiprocessing pool and the MPI request that falls back to multiprocessing on a single rank. The tests verify that results come back in task order whatever the backend, that the error policies either abort on the first failure or keep going with the failure recorded in its TaskResult, that worker counts are honoured, and that the rank distributor assigns every task exactly once under each load balancing strategy. Task functions are defined at module level so they can be pickled by the multiprocessing backend.

Tests Performed:
    Helper Functions:
        - simple_task: Task function that squares a number
        - offset_task: Task function taking an extra positional argument
        - error_task: Task function that raises ValueError for x=5

    Test Functions:
        - test_backends_return_task_order: Every backend returns the same ordered results
        - test_extra_arguments_forwarded: Extra args and kwargs reach the task function
        - test_error_handling_collect: Failures recorded with success False and an error text
        - test_error_handling_abort: The first failure propagates
        - test_invalid_backend: Unknown backend names raise ValueError
        - test_mpi_fallback: A single-rank MPI request becomes multiprocessing
        - test_n_workers_argument: Explicit and automatic worker counts
        - test_distributor_strategies: STATIC, BLOCK and CYCLIC cover every task once
        - test_compute_statistics: Task counts, worker times and load imbalance

Testing Approach:
    Tests use the actual GridParallelManager with small arithmetic tasks so results can be checked exactly.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import sys
from multiprocessing import cpu_count
from pathlib import Path

import pytest

package_dir = Path(__file__).parent.parent
sys.path.insert(0, str(package_dir))

from gridassembler.processing.parallel import (
    GridParallelManager, GridTaskDistributor, LoadBalanceStrategy, TaskResult, compute_statistics,
)


def simple_task(x: int) -> int:
    return x ** 2


def offset_task(x: int, offset: int, scale: int = 1) -> int:
    return (x + offset) * scale


def error_task(x: int) -> int:
    """
    Square the input but fail for x=5, so error policies can be checked on a batch where exactly one task fails.

    Parameters:
        x (int): Input integer value.

    Returns:
        int: Square of the input value.

    Raises:
        ValueError: If x equals 5.
    """
    if x == 5:
        raise ValueError(f"Intentional error for x={x}")
    return x ** 2


@pytest.mark.parametrize('backend', ['serial', 'thread', 'multiprocessing'])
def test_backends_return_task_order(backend: str) -> None:
    manager = GridParallelManager(backend=backend, n_workers=2, verbose=False)
    results = manager.parallel_map(simple_task, list(range(10)))

    assert [r.task_id for r in results] == list(range(10))
    assert [r.result for r in results] == [x ** 2 for x in range(10)]
    assert all(r.success for r in results)
    assert manager.get_statistics().completed_tasks == 10


def test_extra_arguments_forwarded() -> None:
    manager = GridParallelManager(backend='thread', n_workers=2, verbose=False)
    results = manager.parallel_map(offset_task, [1, 2, 3], 10, scale=2)
    assert [r.result for r in results] == [22, 24, 26]


@pytest.mark.parametrize('backend', ['serial', 'thread'])
def test_error_handling_collect(backend: str) -> None:
    """
    Verify the collect policy on a batch where one task fails. The remaining nine tasks succeed and the failed task keeps its position with success False, no result and an error text naming the exception.

    Parameters:
        backend (str): Backend under test.

    Returns:
        None
    """
    manager = GridParallelManager(backend=backend, n_workers=2, verbose=False)
    manager.set_error_policy('collect')
    results = manager.parallel_map(error_task, list(range(10)))

    failed = [r for r in results if not r.success]
    assert len(failed) == 1
    assert failed[0].task_id == 5
    assert failed[0].result is None
    assert failed[0].error.startswith('ValueError: Intentional error for x=5')
    assert sum(1 for r in results if r.success) == 9
    assert manager.get_statistics().failed_tasks == 1


@pytest.mark.parametrize('backend', ['serial', 'thread'])
def test_error_handling_abort(backend: str) -> None:
    manager = GridParallelManager(backend=backend, n_workers=2, verbose=False)
    manager.set_error_policy('abort')
    with pytest.raises(ValueError, match='x=5'):
        manager.parallel_map(error_task, list(range(10)))


def test_invalid_backend() -> None:
    with pytest.raises(ValueError):
        GridParallelManager(backend='gpu', verbose=False)
    manager = GridParallelManager(verbose=False)
    with pytest.raises(ValueError):
        manager.set_error_policy('ignore')


def test_mpi_fallback() -> None:
    manager = GridParallelManager(backend='mpi', n_workers=2, verbose=False)
    if manager.backend == 'mpi':
        pytest.skip("running under a multi-rank MPI launch")
    assert manager.backend == 'multiprocessing'
    assert manager.is_master
    assert [r.result for r in manager.parallel_map(simple_task, [1, 2, 3])] == [1, 4, 9]


def test_n_workers_argument() -> None:
    assert GridParallelManager(backend='thread', n_workers=1, verbose=False).size == 1
    assert GridParallelManager(backend='multiprocessing', n_workers=4, verbose=False).size == 4
    assert GridParallelManager(backend='thread', verbose=False).size == max(1, cpu_count() - 1)
    assert GridParallelManager(backend='serial', n_workers=4, verbose=False).size == 1


@pytest.mark.parametrize('strategy', list(LoadBalanceStrategy))
def test_distributor_strategies(strategy: LoadBalanceStrategy) -> None:
    tasks = list(range(11))
    assigned = []
    for rank in range(3):
        assigned.extend(GridTaskDistributor(rank, 3, strategy).distribute_tasks(tasks))
    assert sorted(task_id for task_id, _ in assigned) == tasks
    assert all(task_id == task for task_id, task in assigned)


def test_distributor_assignments() -> None:
    tasks = list(range(7))
    static = [GridTaskDistributor(r, 3, LoadBalanceStrategy.STATIC).distribute_tasks(tasks) for r in range(3)]
    assert [len(share) for share in static] == [3, 2, 2]
    cyclic = GridTaskDistributor(1, 3, LoadBalanceStrategy.CYCLIC).distribute_tasks(tasks)
    assert [task for _, task in cyclic] == [1, 4]
    block = GridTaskDistributor(2, 3, LoadBalanceStrategy.BLOCK).distribute_tasks(tasks)
    assert [task for _, task in block] == [6]


def test_compute_statistics() -> None:
    results = [
        TaskResult(task_id=0, success=True, execution_time=3.0, worker_rank=0),
        TaskResult(task_id=1, success=False, error='ValueError: bad', execution_time=1.0, worker_rank=1),
        TaskResult(task_id=2, success=True, execution_time=0.0, worker_rank=1),
    ]
    stats = compute_statistics(results)
    assert (stats.total_tasks, stats.completed_tasks, stats.failed_tasks) == (3, 2, 1)
    assert stats.total_time == pytest.approx(4.0)
    assert stats.worker_times == {0: 3.0, 1: 1.0}
    assert stats.load_imbalance == pytest.approx(0.5)
    assert compute_statistics([]).load_imbalance == 0.0
