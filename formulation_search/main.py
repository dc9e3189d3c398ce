"""
main.py - Formulation search CLI.

Usage
-----
    python -m formulation_search.main \
        --setup setup.json \
        --output combinations.csv \
        --workers 8 \
        --units percent

The run:
    1. Load the component / group setup (JSON) and apply CLI overrides.
    2. Validate it; a bad setup is reported as one message, nothing starts.
    3. Discretise every component and shard dimension 0 across workers.
    4. Stream progress while workers search; Ctrl-C stops them cooperatively.
    5. Export every stored row to CSV.
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
import time

from .config import EngineConfig, RequestValidationError, RunConfig
from .search.messages import Done, Progress
from .search.session import SearchSession
from .store.aggregator import ResultAggregator
from .store.export import UNIT_SCALES, write_csv
from .store.setup_file import load_setup, save_setup

logger = logging.getLogger("formulation_search")

# Seconds between progress log lines.
_PROGRESS_LOG_EVERY_S = 2.0


def run(cfg: RunConfig) -> ResultAggregator:
    """Execute one search and export its stored rows."""
    start = time.perf_counter()
    last_log = start

    with SearchSession(cfg.request, cfg.engine) as session:
        agg = session.aggregator
        try:
            for message in session.events():
                if not isinstance(message, (Progress, Done)):
                    continue
                now = time.perf_counter()
                if now - last_log >= _PROGRESS_LOG_EVERY_S:
                    last_log = now
                    logger.info(
                        "progress %5.1f%%  processed=%d/%d  valid=%d",
                        agg.progress_percent, agg.total_processed, agg.total_expected, agg.total_valid,
                    )
        except KeyboardInterrupt:
            logger.warning("Interrupted; waiting for workers to stop ...")
            session.cancel()
            for _ in session.events():
                pass

    summary = agg.summary()
    elapsed = time.perf_counter() - start
    logger.info(
        "═══ SEARCH %s ═══  processed=%d/%d  valid=%d  stored=%d  workers=%d  (%.1f s)",
        "CANCELLED" if summary.cancelled else "COMPLETE",
        summary.processed, summary.total_expected, summary.valid, summary.stored,
        summary.workers, elapsed,
    )
    if summary.truncated:
        logger.info("Showing first %d of %d rows", agg.display_limit, summary.stored)
    for row in agg.display_rows[:5]:
        logger.info("  %s", dict(zip(agg.component_names, row)))

    write_csv(cfg.output_path, agg.component_names, agg.iter_rows(), units=cfg.units)
    return agg


# ── CLI ────────────────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="formulation-search",
        description="Exhaustive constrained search over discretised formulation spaces",
    )
    parser.add_argument("--setup", required=True, help="Path to the setup JSON")
    parser.add_argument("--output", default="combinations.csv")
    parser.add_argument("--workers", type=int, default=None, help="Default: CPU count")
    parser.add_argument("--backend", default="process", choices=["process", "thread"])
    parser.add_argument("--display-limit", type=int, default=1_000)
    parser.add_argument("--batch-size", type=int, default=200)
    parser.add_argument("--max-stored", type=int, default=None, help="Per-worker row cap")
    parser.add_argument("--min-total", type=float, default=None)
    parser.add_argument("--max-total", type=float, default=None)
    parser.add_argument("--units", default="ratio", choices=sorted(UNIT_SCALES))
    parser.add_argument("--save-setup", default=None, help="Write the effective setup here")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler("formulation_search.log"),
        ],
    )

    try:
        request = load_setup(args.setup)
    except RequestValidationError as exc:
        logger.error("%s", exc)
        return 2
    if request is None:
        logger.error("Setup file not found: %s", args.setup)
        return 2

    overrides = {}
    if args.min_total is not None:
        overrides["min_total"] = args.min_total
    if args.max_total is not None:
        overrides["max_total"] = args.max_total
    if args.max_stored is not None:
        overrides["max_stored_results"] = args.max_stored
    if overrides:
        request = dataclasses.replace(request, **overrides)

    cfg = RunConfig(
        request=request,
        engine=EngineConfig(
            batch_size=args.batch_size,
            display_limit=args.display_limit,
            max_workers=args.workers,
            backend=args.backend,
        ),
        output_path=args.output,
        units=args.units,
    )

    try:
        run(cfg)
    except RequestValidationError as exc:
        logger.error("%s", exc)
        return 2

    if args.save_setup:
        save_setup(args.save_setup, cfg.request)
    return 0


if __name__ == "__main__":
    sys.exit(main())
