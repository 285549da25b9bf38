#!/usr/bin/env python3

"""
Grid Record Parallel Processing Manager

This module runs the per-record conversion tasks of a source (geometry resolution, field normalization and spatial transforms) across workers. Records of one batch have no data dependency on each other, so the manager simply maps a task function over them and returns one TaskResult per task, in task order, carrying either the converted output or the formatted error of a rejected record. Four backends are available: serial execution in the calling thread, a thread pool sharing the process-wide location table cache, a multiprocessing pool whose workers each build their own cache, and MPI via mpi4py when more than one rank is running, where tasks are split across ranks and every rank receives the full result list so the following whole-batch steps see the same records everywhere. The error policy decides what a failed task does: ABORT re-raises the first failure, CONTINUE and COLLECT keep going and leave the failure in its TaskResult for the caller to count. Execution statistics (task counts, cumulative task time, per-worker time and load imbalance) are kept for the last map.

Classes:
    LoadBalanceStrategy: Task distribution strategies across MPI ranks.
    ErrorPolicy: Error handling strategies for failed tasks.
    TaskResult: Outcome of a single task.
    ParallelStats: Aggregated statistics of one map.
    GridTaskDistributor: Assigns tasks to MPI ranks.
    GridParallelManager: Maps a task function over records with the configured backend.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import sys
import time
import traceback
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from multiprocessing import cpu_count, get_context
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

try:
    from mpi4py import MPI
    MPI_AVAILABLE = True
except ImportError:
    MPI_AVAILABLE = False
    MPI = None

BACKENDS = ('serial', 'thread', 'multiprocessing', 'mpi')


class LoadBalanceStrategy(Enum):
    """
    Task distribution strategies across MPI ranks. STATIC gives each rank an equal contiguous share with the remainder spread over the first ranks, BLOCK uses equal ceiling-sized blocks and CYCLIC deals tasks round-robin, which suits batches whose expensive records (reduced grids, reprojections) cluster together.
    """
    STATIC = "static"
    BLOCK = "block"
    CYCLIC = "cyclic"


class ErrorPolicy(Enum):
    """
    Error handling strategies for failed tasks. ABORT re-raises the first failure, CONTINUE skips failed tasks and COLLECT additionally reports every failure when the map completes.
    """
    ABORT = "abort"
    CONTINUE = "continue"
    COLLECT = "collect"


@dataclass
class TaskResult:
    """
    Outcome of a single task. A failed task has success False, result None and the exception type, message and traceback in error.
    """
    task_id: int
    success: bool
    result: Any = None
    error: Optional[str] = None
    execution_time: float = 0.0
    worker_rank: int = 0


@dataclass
class ParallelStats:
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    total_time: float = 0.0
    worker_times: Dict[int, float] = field(default_factory=dict)
    load_imbalance: float = 0.0


def _run_task(task_id: int, task: Any, func: Callable, error_policy_value: str,
              func_args: Tuple, func_kwargs: Dict, worker_rank: int = 0) -> TaskResult:
    """
    Execute one task with timing and error capture. Defined at module level so the multiprocessing backend can pickle it.

    Parameters:
        task_id (int): Position of the task in the map.
        task (Any): Task object passed as the first argument of func.
        func (Callable): Task function.
        error_policy_value (str): Error policy value; 'abort' re-raises failures.
        func_args (Tuple): Extra positional arguments of func.
        func_kwargs (Dict): Extra keyword arguments of func.
        worker_rank (int): Rank or worker number recorded in the result (default: 0).

    Returns:
        TaskResult: Outcome of the task.
    """
    result = TaskResult(task_id=task_id, success=False, worker_rank=worker_rank)
    task_start = time.time()
    try:
        result.result = func(task, *func_args, **func_kwargs)
        result.success = True
    except Exception as e:
        result.error = f"{type(e).__name__}: {str(e)}\n{traceback.format_exc()}"
        if error_policy_value == ErrorPolicy.ABORT.value:
            raise
    finally:
        result.execution_time = time.time() - task_start
    return result


def _multiprocessing_task_wrapper(args: Tuple[int, Any, Callable, str, Tuple, Dict]) -> TaskResult:
    task_id, task, func, error_policy_value, func_args, func_kwargs = args
    return _run_task(task_id, task, func, error_policy_value, func_args, func_kwargs)


def compute_statistics(results: List[TaskResult]) -> ParallelStats:
    """Aggregate task counts, cumulative time, per-worker time and load imbalance of a result list."""
    stats = ParallelStats()
    stats.total_tasks = len(results)
    stats.completed_tasks = sum(1 for r in results if r.success)
    stats.failed_tasks = stats.total_tasks - stats.completed_tasks
    stats.total_time = sum(r.execution_time for r in results)

    for result in results:
        stats.worker_times[result.worker_rank] = stats.worker_times.get(result.worker_rank, 0.0) + result.execution_time

    if stats.worker_times:
        max_time = max(stats.worker_times.values())
        avg_time = sum(stats.worker_times.values()) / len(stats.worker_times)
        stats.load_imbalance = (max_time - avg_time) / avg_time if avg_time > 0 else 0.0
    return stats


class GridTaskDistributor:
    """
    Assign tasks to MPI ranks according to a load balancing strategy.
    """

    def __init__(self, rank: int, size: int, strategy: LoadBalanceStrategy = LoadBalanceStrategy.STATIC) -> None:
        self.rank = rank
        self.size = size
        self.strategy = strategy

    def distribute_tasks(self, tasks: List[Any]) -> List[Tuple[int, Any]]:
        """
        Return the (task_id, task) pairs this rank must execute. Every task is assigned to exactly one rank whatever the strategy.

        Parameters:
            tasks (List[Any]): Complete task list, identical on every rank.

        Returns:
            List[Tuple[int, Any]]: Tasks of this rank with their positions in the full list.
        """
        n_tasks = len(tasks)
        if self.strategy == LoadBalanceStrategy.CYCLIC:
            return [(i, tasks[i]) for i in range(self.rank, n_tasks, self.size)]

        if self.strategy == LoadBalanceStrategy.BLOCK:
            block_size = (n_tasks + self.size - 1) // self.size
            start = self.rank * block_size
            return [(i, tasks[i]) for i in range(start, min(start + block_size, n_tasks))]

        tasks_per_worker = n_tasks // self.size
        remainder = n_tasks % self.size
        if self.rank < remainder:
            start = self.rank * (tasks_per_worker + 1)
            end = start + tasks_per_worker + 1
        else:
            start = self.rank * tasks_per_worker + remainder
            end = start + tasks_per_worker
        return [(i, tasks[i]) for i in range(start, min(end, n_tasks))]


class GridParallelManager:
    """
    Map task functions over converted records with a serial, thread, multiprocessing or MPI backend.

    Examples:
        >>> manager = GridParallelManager(backend='thread', n_workers=4, verbose=False)
        >>> manager.set_error_policy('collect')
        >>> results = manager.parallel_map(convert_record, records, context)
        >>> converted = [r.result for r in results if r.success]
    """

    def __init__(self, backend: str = 'serial', n_workers: Optional[int] = None,
                 load_balance_strategy: Union[str, LoadBalanceStrategy] = "static",
                 verbose: bool = True) -> None:
        """
        Initialize the manager with the requested backend. The MPI backend is used only when mpi4py is importable and more than one rank runs; otherwise a request for it falls back to the multiprocessing backend, matching how a single-rank launch behaves. The worker count of the thread and multiprocessing backends defaults to the CPU count minus one.

        Parameters:
            backend (str): 'serial', 'thread', 'multiprocessing' or 'mpi' (default: 'serial').
            n_workers (Optional[int]): Worker count of the pool backends (default: None uses cpu_count() - 1).
            load_balance_strategy (str or LoadBalanceStrategy): Task distribution across MPI ranks (default: 'static').
            verbose (bool): Print backend and statistics messages (default: True).

        Returns:
            None

        Raises:
            ValueError: If the backend name is unknown.
        """
        if backend not in BACKENDS:
            raise ValueError(f"Invalid backend '{backend}'. Must be one of: {list(BACKENDS)}")

        self.verbose = verbose
        self.error_policy = ErrorPolicy.COLLECT
        self.comm = None
        self.rank = 0
        self.size = 1
        self.distributor: Optional[GridTaskDistributor] = None
        self.stats: Optional[ParallelStats] = None

        if isinstance(load_balance_strategy, str):
            load_balance_strategy = LoadBalanceStrategy(load_balance_strategy)

        if backend == 'mpi':
            if MPI_AVAILABLE and MPI is not None and MPI.COMM_WORLD.Get_size() > 1:
                self.comm = MPI.COMM_WORLD
                self.rank = self.comm.Get_rank()
                self.size = self.comm.Get_size()
                self.distributor = GridTaskDistributor(self.rank, self.size, load_balance_strategy)
            else:
                if verbose:
                    print("MPI not available or running on a single rank, falling back to multiprocessing backend")
                backend = 'multiprocessing'

        if backend in ('thread', 'multiprocessing'):
            self.size = n_workers or max(1, cpu_count() - 1)

        self.backend = backend
        self.is_master = self.rank == 0

        if self.is_master and self.verbose:
            if self.backend == 'serial':
                print("GridParallelManager initialized in serial mode")
            else:
                print(f"GridParallelManager initialized in {self.backend} mode with {self.size} workers")

    def set_error_policy(self, policy: Union[str, ErrorPolicy]) -> None:
        if isinstance(policy, str):
            policy = ErrorPolicy(policy)
        self.error_policy = policy

    def parallel_map(self, func: Callable, tasks: List[Any], *args, **kwargs) -> List[TaskResult]:
        """
        Execute a task function over every task with the configured backend. Results are returned in task order on every rank regardless of the order in which workers finish.

        Parameters:
            func (Callable): Task function receiving the task as first argument; must be picklable for the multiprocessing and MPI backends.
            tasks (List[Any]): Tasks to process.
            *args (tuple): Extra positional arguments passed to func.
            **kwargs (dict): Extra keyword arguments passed to func.

        Returns:
            List[TaskResult]: One result per task in task order.
        """
        tasks = list(tasks)
        if self.backend == 'mpi':
            results = self._mpi_map(func, tasks, *args, **kwargs)
        elif self.backend == 'thread':
            results = self._thread_map(func, tasks, *args, **kwargs)
        elif self.backend == 'multiprocessing':
            results = self._multiprocessing_map(func, tasks, *args, **kwargs)
        else:
            results = self._execute_local_tasks(func, list(enumerate(tasks)), *args, **kwargs)

        results.sort(key=lambda r: r.task_id)
        self.stats = compute_statistics(results)
        if self.verbose:
            self._print_statistics()
        if self.error_policy == ErrorPolicy.COLLECT and self.verbose and self.is_master:
            for result in results:
                if not result.success:
                    print(f"Task {result.task_id} failed: {(result.error or '').splitlines()[0]}")
        return results

    def _execute_local_tasks(self, func: Callable, local_tasks: List[Tuple[int, Any]],
                             *args, **kwargs) -> List[TaskResult]:
        return [_run_task(task_id, task, func, self.error_policy.value, args, kwargs, self.rank)
                for task_id, task in local_tasks]

    def _thread_map(self, func: Callable, tasks: List[Any], *args, **kwargs) -> List[TaskResult]:
        """
        Execute tasks on a thread pool. The threads share the process-wide location table cache, so a table needed by many records is built once. With the ABORT policy the first failure propagates out of the pool once it is reached in task order.

        Parameters:
            func (Callable): Task function.
            tasks (List[Any]): Tasks to process.
            *args (tuple): Extra positional arguments passed to func.
            **kwargs (dict): Extra keyword arguments passed to func.

        Returns:
            List[TaskResult]: Results in task order.
        """
        with ThreadPoolExecutor(max_workers=self.size) as pool:
            futures = [
                pool.submit(_run_task, i, task, func, self.error_policy.value, args, kwargs, i % self.size)
                for i, task in enumerate(tasks)
            ]
            return [future.result() for future in futures]

    def _multiprocessing_map(self, func: Callable, tasks: List[Any], *args, **kwargs) -> List[TaskResult]:
        """
        Execute tasks on a process pool. The 'fork' start method is preferred on Linux and 'spawn' is used elsewhere; when no pool can be started the tasks run serially in the calling process. Each worker process builds its own location tables.

        Parameters:
            func (Callable): Module-level task function.
            tasks (List[Any]): Picklable tasks to process.
            *args (tuple): Extra positional arguments passed to func.
            **kwargs (dict): Extra keyword arguments passed to func.

        Returns:
            List[TaskResult]: Results in task order.
        """
        task_args = [(i, task, func, self.error_policy.value, args, kwargs) for i, task in enumerate(tasks)]
        ctx_methods = ['spawn'] if sys.platform in ('win32', 'darwin') else ['fork', 'spawn']

        for ctx_method in ctx_methods:
            try:
                ctx = get_context(ctx_method)
                with ctx.Pool(processes=self.size) as pool:
                    return pool.map(_multiprocessing_task_wrapper, task_args)
            except OSError as e:
                if self.verbose:
                    print(f"Multiprocessing with '{ctx_method}' failed: {e}")

        if self.verbose:
            print("Falling back to serial execution")
        return [_multiprocessing_task_wrapper(a) for a in task_args]

    def _mpi_map(self, func: Callable, tasks: List[Any], *args, **kwargs) -> List[TaskResult]:
        """
        Execute tasks across MPI ranks. The master's task list is broadcast, each rank runs its share and the results are all-gathered so every rank returns the complete list.

        Parameters:
            func (Callable): Task function.
            tasks (List[Any]): Tasks to process; only the master's list is used.
            *args (tuple): Extra positional arguments passed to func.
            **kwargs (dict): Extra keyword arguments passed to func.

        Returns:
            List[TaskResult]: Results of all ranks.
        """
        assert self.comm is not None and self.distributor is not None, "MPI communicator must be initialized"

        tasks = self.comm.bcast(tasks, root=0)
        local_tasks = self.distributor.distribute_tasks(tasks)
        try:
            local_results = self._execute_local_tasks(func, local_tasks, *args, **kwargs)
        except Exception:
            self.comm.Abort(1)
            raise

        results: List[TaskResult] = []
        for worker_results in self.comm.allgather(local_results):
            results.extend(worker_results)
        return results

    def get_statistics(self) -> Optional[ParallelStats]:
        return self.stats

    def _print_statistics(self) -> None:
        if not self.is_master or not self.stats or not self.stats.total_tasks:
            return
        print("\n" + "=" * 60)
        print("PARALLEL EXECUTION STATISTICS")
        print("=" * 60)
        print(f"Backend:           {self.backend}")
        print(f"Total tasks:       {self.stats.total_tasks}")
        print(f"Completed:         {self.stats.completed_tasks}")
        print(f"Failed:            {self.stats.failed_tasks}")
        print(f"Success rate:      {100 * self.stats.completed_tasks / self.stats.total_tasks:.1f}%")
        print(f"Total time:        {self.stats.total_time:.2f} seconds")
        if len(self.stats.worker_times) > 1:
            print(f"Load imbalance:    {100 * self.stats.load_imbalance:.1f}%")
        print("=" * 60 + "\n")
