"""
Fork-join execution over contiguous row chunks of a batch.

Each chunk is handled by one worker and only writes the output slots of its
own rows, so results line up with input rows whatever order the workers
finish in. Row-level ``CodecError``/``GeometryError`` become a ``None``
result plus a ``Diagnostic``; anything else fails the whole call.
"""
import logging
from concurrent.futures import ThreadPoolExecutor

from .config import get_settings
from .errors import ROW_ERRORS, Diagnostic

logger = logging.getLogger(__name__)


def chunk_ranges(n_rows, chunk_size):
    return [
        (start, min(start + chunk_size, n_rows))
        for start in range(0, n_rows, chunk_size)
    ]


def for_each_chunk(func, n_rows, chunk_size=None, max_workers=None):
    """Call ``func(start, stop)`` for every chunk and return the results in
    chunk order, blocking until all chunks are done."""
    settings = get_settings()
    chunk_size = chunk_size or settings.chunk_size
    max_workers = max_workers or settings.max_workers

    chunks = chunk_ranges(n_rows, chunk_size)
    if len(chunks) <= 1 or max_workers == 1:
        return [func(start, stop) for start, stop in chunks]

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [pool.submit(func, start, stop) for start, stop in chunks]
        return [f.result() for f in futures]


def map_rows(func, n_rows, chunk_size=None, max_workers=None):
    """Evaluate ``func(i)`` for every row index.

    Returns
    -------
    (results, diagnostics)
        ``results`` has one slot per row, ``None`` for failed rows.
        ``diagnostics`` is ordered by row.
    """
    results = [None] * n_rows

    def run(start, stop):
        diagnostics = []
        for i in range(start, stop):
            try:
                results[i] = func(i)
            except ROW_ERRORS as err:
                logger.debug("row %d failed: %s", i, err)
                diagnostics.append(Diagnostic(i, err))
        return diagnostics

    per_chunk = for_each_chunk(run, n_rows, chunk_size, max_workers)
    return results, [d for chunk in per_chunk for d in chunk]
