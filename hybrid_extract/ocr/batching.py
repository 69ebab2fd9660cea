"""
Bounded-concurrency batch runner

Items are dispatched in groups of `batch_size` onto a worker pool of the same
size, with a pacing delay between groups. A deadline or cancellation stops
further dispatch; anything not finished is reported in `not_run`.
"""

import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, FIRST_EXCEPTION, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    """What happened to each item, keyed by its index in the input sequence"""
    results: Dict[int, Any] = field(default_factory=dict)
    errors: Dict[int, BaseException] = field(default_factory=dict)
    not_run: List[int] = field(default_factory=list)
    batches_dispatched: int = 0
    timed_out: bool = False
    cancelled: bool = False


def _remaining(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    return deadline - time.monotonic()


def run_in_batches(
    items: Sequence[Any],
    worker: Callable[[Any], Any],
    batch_size: int,
    delay: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
    deadline: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
    fatal: Tuple[Type[BaseException], ...] = (),
    on_batch_done: Optional[Callable[[int, int], None]] = None
) -> BatchOutcome:
    """
    Run worker over items in paced, bounded batches.

    Args:
        items: Work items
        worker: Called once per item on a pool thread
        batch_size: Items per batch and pool size
        delay: Seconds to wait between batches
        sleep: Sleep function (injectable for tests)
        deadline: time.monotonic() value after which nothing new is dispatched
            and unfinished items are abandoned
        cancel_event: Stops dispatch of further batches once set
        fatal: Exception types that abort the whole run; re-raised immediately
        on_batch_done: Callback(completed_items, total_items) after each batch

    Returns:
        BatchOutcome with per-index results and errors
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    outcome = BatchOutcome()
    total = len(items)
    if total == 0:
        return outcome

    executor = ThreadPoolExecutor(max_workers=batch_size, thread_name_prefix="ocr-batch")
    abandon = False

    try:
        for start in range(0, total, batch_size):
            batch_indices = list(range(start, min(start + batch_size, total)))

            if start > 0 and delay > 0:
                sleep(delay)

            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"Cancelled before batch {outcome.batches_dispatched + 1}")
                outcome.cancelled = True
                outcome.not_run.extend(range(start, total))
                break

            remaining = _remaining(deadline)
            if remaining is not None and remaining <= 0:
                logger.warning(f"Deadline reached before batch {outcome.batches_dispatched + 1}")
                outcome.timed_out = True
                outcome.not_run.extend(range(start, total))
                break

            logger.debug(
                f"Dispatching batch {outcome.batches_dispatched + 1}: "
                f"items {batch_indices[0] + 1}-{batch_indices[-1] + 1} of {total}"
            )
            futures = {executor.submit(worker, items[i]): i for i in batch_indices}
            outcome.batches_dispatched += 1
            pending = set(futures)

            while pending:
                remaining = _remaining(deadline)
                if remaining is not None and remaining <= 0:
                    break
                done, pending = wait(pending, timeout=remaining, return_when=FIRST_EXCEPTION)

                for future in done:
                    index = futures[future]
                    error = future.exception()
                    if error is None:
                        outcome.results[index] = future.result()
                    elif fatal and isinstance(error, fatal):
                        abandon = True
                        raise error
                    else:
                        outcome.errors[index] = error

            if pending:
                abandon = True
                outcome.timed_out = True
                for future in pending:
                    future.cancel()
                unfinished = sorted(futures[f] for f in pending)
                logger.warning(f"Deadline reached with {len(unfinished)} items unfinished")
                outcome.not_run.extend(unfinished)
                outcome.not_run.extend(range(batch_indices[-1] + 1, total))
                break

            if on_batch_done is not None:
                on_batch_done(batch_indices[-1] + 1, total)

    finally:
        # Abandoned threads are left to finish on their own
        executor.shutdown(wait=not abandon, cancel_futures=True)

    return outcome
