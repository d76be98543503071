"""
Parallel execution infrastructure for pairwise registration.

Provides PairParallelExecutor for distributing independent map-pair
registrations across multiple CPU cores using multiprocessing.
"""

from __future__ import annotations

import logging
import time
from multiprocessing import Pool, cpu_count
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..utils.exceptions import InputContractError

logger = logging.getLogger(__name__)


def _worker_wrapper(
    args: Tuple[int, Any, Callable, Dict[str, Any]],
) -> Tuple[int, Any, Optional[str], Optional[InputContractError]]:
    """
    Worker wrapper function for parallel pair processing.

    Must be at module level for pickling on Windows.

    Args:
        args: Tuple of (task_index, item, worker_fn, worker_kwargs)

    Returns:
        Tuple of (task_index, result, error_message, contract_error). Contract
        errors are sent back unchanged so the parent re-raises the same type
        it would raise when running sequentially.
    """
    idx, item, worker_fn, worker_kwargs = args
    try:
        result = worker_fn(item, **worker_kwargs)
        return (idx, result, None, None)
    except InputContractError as e:
        logger.error(f"Input contract violated on pair {item}: {e}")
        return (idx, None, f"InputContractError: {e}", e)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {str(e)}"
        logger.error(f"Worker error on pair {item}: {error_msg}")
        return (idx, None, error_msg, None)


class PairParallelExecutor:
    """
    Parallel executor for pairwise registrations.

    Manages the worker pool, distributes pairs to workers and collects
    results in input order.

    Example:
        executor = PairParallelExecutor(n_workers=4)
        estimates = executor.map_pairs(
            pairs=[(0, 1), (0, 2), (1, 2)],
            worker_fn=register_pair_task,
            worker_kwargs={'features': features, 'params': params}
        )
    """

    def __init__(self, n_workers: Optional[int] = None):
        """
        Initialize parallel executor.

        Args:
            n_workers: Number of worker processes. If None, uses cpu_count - 1
                to leave one core for system/coordination. Minimum is 1.
        """
        if n_workers is None:
            n_workers = max(1, cpu_count() - 1)
        else:
            n_workers = max(1, int(n_workers))

        self.n_workers = n_workers
        logger.debug(
            f"Initialized PairParallelExecutor with {self.n_workers} workers "
            f"(total CPUs: {cpu_count()})"
        )

    def map_pairs(
        self,
        pairs: List[Any],
        worker_fn: Callable,
        worker_kwargs: Dict[str, Any],
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> List[Any]:
        """
        Map worker function over pairs, in parallel when worthwhile.

        Args:
            pairs: Items to process (typically (i, j) map index tuples)
            worker_fn: Picklable function with signature
                worker_fn(pair, **worker_kwargs) -> result
            worker_kwargs: Fixed keyword arguments passed to each worker call
            progress_callback: Optional callback(completed_count, total_count)

        Returns:
            List of results in the same order as ``pairs``

        Raises:
            RuntimeError: If any pair fails
        """
        n_pairs = len(pairs)
        if n_pairs == 0:
            logger.info("No map pairs to register")
            return []

        logger.info(f"Registering {n_pairs} map pairs with {self.n_workers} workers")
        start_time = time.time()

        # If only 1 worker or 1 pair, use sequential processing (no pool overhead)
        if self.n_workers == 1 or n_pairs == 1:
            results = []
            for i, pair in enumerate(pairs):
                try:
                    results.append(worker_fn(pair, **worker_kwargs))
                except InputContractError:
                    raise
                except Exception as e:
                    logger.error(f"Error registering pair {pair}: {e}", exc_info=True)
                    raise RuntimeError(f"Pair registration failed: {e}") from e
                if progress_callback:
                    progress_callback(i + 1, n_pairs)

            logger.info(f"Sequential registration complete: {n_pairs} pairs in {time.time() - start_time:.1f}s")
            return results

        try:
            results = self._parallel_map(pairs, worker_fn, worker_kwargs, progress_callback)
        except InputContractError:
            raise
        except Exception as e:
            logger.error(f"Parallel registration failed: {e}", exc_info=True)
            raise RuntimeError(f"Parallel pair registration failed: {e}") from e

        logger.info(f"Parallel registration complete: {n_pairs} pairs in {time.time() - start_time:.1f}s")
        return results

    def _parallel_map(
        self,
        pairs: List[Any],
        worker_fn: Callable,
        worker_kwargs: Dict[str, Any],
        progress_callback: Optional[Callable],
    ) -> List[Any]:
        """
        Execute parallel mapping using multiprocessing.Pool.

        Uses imap_unordered for responsiveness, then reorders results to match
        input order.
        """
        n_pairs = len(pairs)
        worker_args = [(i, pair, worker_fn, worker_kwargs) for i, pair in enumerate(pairs)]

        results_dict = {}
        errors = []
        contract_errors = []
        with Pool(processes=min(self.n_workers, n_pairs)) as pool:
            for completed, (idx, result, error, contract_error) in enumerate(
                pool.imap_unordered(_worker_wrapper, worker_args), start=1
            ):
                if contract_error is not None:
                    contract_errors.append((idx, contract_error))
                elif error:
                    errors.append((idx, error))
                else:
                    results_dict[idx] = result
                if progress_callback:
                    progress_callback(completed, n_pairs)

        if contract_errors:
            # Report the first offending pair in input order
            raise min(contract_errors, key=lambda item: item[0])[1]

        if errors:
            error_msg = f"{len(errors)} pairs failed out of {n_pairs}"
            logger.error(error_msg)
            for idx, error in errors[:5]:
                logger.error(f"  Pair {pairs[idx]}: {error}")
            raise RuntimeError(error_msg)

        return [results_dict[i] for i in range(n_pairs)]
