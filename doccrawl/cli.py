"""Command-line entry point: run one crawl config or a batch file."""
import argparse
import dataclasses
import logging
import os
import signal
import sys
from typing import List, Optional

from doccrawl import config as env
from doccrawl.container import Container
from doccrawl.domain.job import BatchConfig, JobSpec
from doccrawl.exceptions import ConfigError
from doccrawl.services.job_scheduler import save_report
from doccrawl.utils.urls import canonicalize, hostname

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="doccrawl", description="Crawl documentation sites into page records")
    parser.add_argument("config", help="Crawl config or batch file (YAML/JSON), or a start URL")
    parser.add_argument("--resume", metavar="PATH",
                        help="Resume from saved progress: a state file for one crawl, a state directory for a batch")
    parser.add_argument("--reset", action="store_true", help="Discard saved progress before starting")
    parser.add_argument("--results", metavar="PATH", help="Where to write the batch results JSON")
    parser.add_argument("--max-parallel", type=int, help="Override the batch max_parallel setting")
    parser.add_argument("--output", metavar="PATH", help="Page records file when crawling a single URL")
    parser.add_argument("--log-level", default=env.LOG_LEVEL, help="Logging level (default: %(default)s)")
    return parser


def default_results_path(config_arg: str) -> str:
    if _is_url(config_arg):
        return f"{hostname(config_arg) or 'doccrawl'}-results.json"
    stem, _ = os.path.splitext(config_arg)
    return f"{stem}-results.json"


def _is_url(value: str) -> bool:
    return value.startswith(("http://", "https://")) and canonicalize(value) is not None


def load_batch(container, args) -> BatchConfig:
    if _is_url(args.config):
        config = container.crawler_config_parser().from_url(args.config)
        spec = JobSpec(id=config.name, name=config.name, config=config, output_path=args.output)
        return BatchConfig(jobs=(spec,), max_parallel=1, continue_on_error=False, source=args.config)
    return container.batch_config_parser().load(args.config)


def apply_resume_path(container, batch: BatchConfig, resume_path: Optional[str]) -> BatchConfig:
    """Point jobs at the state given by `--resume`.

    A single crawl takes PATH as its state file unless PATH is a directory;
    a batch always treats PATH as the directory of `<job id>.state.json` files.
    """
    if not resume_path:
        return batch
    if len(batch.jobs) == 1 and not os.path.isdir(resume_path):
        spec = dataclasses.replace(batch.jobs[0], state_file=resume_path)
        return dataclasses.replace(batch, jobs=(spec,))
    container.config.DOCCRAWL_STATE_DIR.from_value(resume_path)
    return batch


def exit_code_for(report, continue_on_error: bool, interrupted: bool) -> int:
    if interrupted:
        return EXIT_INTERRUPTED
    if report.failed == 0 and report.cancelled == 0:
        return EXIT_OK
    return EXIT_OK if continue_on_error else EXIT_FAILED


def main(argv: Optional[List[str]] = None, container=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    container = container or Container()

    try:
        batch = load_batch(container, args)
    except ConfigError as e:
        logger.error("%s", e)
        return EXIT_FAILED
    batch = apply_resume_path(container, batch, args.resume)
    max_parallel = args.max_parallel or batch.max_parallel
    if max_parallel < 1:
        logger.error("--max-parallel must be >= 1")
        return EXIT_FAILED

    container.progress_logger().attach()
    scheduler = container.job_scheduler(
        max_parallel=max_parallel,
        continue_on_error=batch.continue_on_error,
        resume=bool(args.resume),
        reset=args.reset,
    )

    def _on_sigint(signum, frame):
        if scheduler.cancelled:
            raise KeyboardInterrupt
        logger.warning("Interrupted; cancelling jobs and saving progress (press Ctrl+C again to abort)")
        scheduler.cancel()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        report = scheduler.run(list(batch.jobs))
    finally:
        signal.signal(signal.SIGINT, previous)

    results_path = args.results or default_results_path(args.config)
    try:
        save_report(report, results_path)
    except OSError as e:
        logger.error("Could not write results to %s: %s", results_path, e)

    for result in report.jobs:
        if result.error:
            logger.info("  %s: %s (%s)", result.id, result.status.value, result.error)
        else:
            logger.info("  %s: %s", result.id, result.status.value)
    logger.info("Batch %s: %d/%d completed, %d failed, %d cancelled",
                report.status, report.completed, report.total, report.failed, report.cancelled)
    return exit_code_for(report, batch.continue_on_error, scheduler.cancelled)


if __name__ == "__main__":
    sys.exit(main())
