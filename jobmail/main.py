"""Main entry point for the jobmail pipeline service."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import json
import signal
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from jobmail.clients import (
    KeywordClassifier,
    LLMClassifier,
    MaildirSource,
    OllamaClient,
    PageFetcher,
    PlatformPolicy,
)
from jobmail.config.environment import EnvironmentConfig
from jobmail.config.exceptions import ConfigurationError
from jobmail.config.loader import load_config
from jobmail.config.models import AppConfig
from jobmail.domain.models import Platform
from jobmail.embeddings import EmbeddingIndex
from jobmail.enrichment import ContentExtractor, EnrichmentStage
from jobmail.extraction import ExtractionStage
from jobmail.filtering import EventBus, SemanticFilter
from jobmail.logging import get_logger
from jobmail.logging.config import configure_logging
from jobmail.persistence import PersistenceError, close_database, init_database
from jobmail.pipeline import Orchestrator, PipelineService, TaskQueue, dead_letter_handlers, stage_handlers
from jobmail.scheduler import SchedulerService

logger = get_logger(__name__, component="cli")

# Seconds in-flight tasks get to finish on shutdown
SHUTDOWN_GRACE_SECONDS = 30


@dataclass
class Runtime:
    """Everything a running process needs, wired together once."""

    app_config: AppConfig
    env_config: EnvironmentConfig
    ollama: OllamaClient
    pages: PageFetcher
    events: EventBus
    queue: TaskQueue
    orchestrator: Orchestrator
    service: PipelineService

    def close(self) -> None:
        self.events.close()
        self.ollama.close()
        self.pages.close()


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and settle the effective log level.

    Log level priority: CLI > environment > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level

    return app_config, env_config


def build_runtime(app_config: AppConfig, env_config: EnvironmentConfig) -> Runtime:
    """
    Initialize the database and construct every client, stage and service.

    Clients are created here once and injected; nothing else constructs them.
    """
    init_database(env_config.database_url)

    crawl_policy = PlatformPolicy()
    crawl_policy.seed(
        Platform(hostname=rule.hostname, can_crawl=rule.can_crawl, skip_reason=rule.skip_reason)
        for rule in app_config.platforms
    )

    ollama = OllamaClient(
        host=env_config.ollama_host,
        timeout=app_config.http.timeout,
        user_agent=app_config.http.user_agent,
        embed_timeout=app_config.embedding.timeout,
    )
    pages = PageFetcher(timeout=app_config.http.timeout)

    events = EventBus()
    index = EmbeddingIndex(
        ollama,
        app_config.embedding.model,
        dimension=app_config.embedding.dimension,
        timeout=app_config.embedding.timeout,
    )
    semantic_filter = SemanticFilter(index, events, threshold=app_config.filter.threshold)

    queue = TaskQueue(app_config)
    extraction = ExtractionStage(queue, app_config.extraction)
    enrichment = EnrichmentStage(
        pages,
        crawl_policy,
        ContentExtractor(
            generator=ollama,
            model=app_config.enrichment.llm_model,
            min_description_length=app_config.enrichment.min_description_length,
            max_prompt_chars=app_config.enrichment.max_prompt_chars,
        ),
        index,
        semantic_filter,
    )
    orchestrator = Orchestrator(
        queue,
        stage_handlers(extraction, enrichment, semantic_filter),
        dead_letters=dead_letter_handlers(enrichment),
    )

    classifier = KeywordClassifier(app_config.scan.job_keywords)
    if app_config.scan.classifier_model:
        classifier = LLMClassifier(ollama, app_config.scan.classifier_model, fallback=classifier)
    mail_source = MaildirSource(env_config.maildir_path) if env_config.maildir_path else None
    if mail_source is None:
        logger.warning(
            "MAILDIR_PATH is not set; scans will not read mail",
            extra={"event": "service.mail_source.missing"},
        )

    service = PipelineService(queue, events, mail_source=mail_source, classifier=classifier, config=app_config)

    logger.info(
        "Services initialized",
        extra={
            "event": "services.initialized",
            "embedding_model": app_config.embedding.model,
            "threshold": app_config.filter.threshold,
            "platforms": len(app_config.platforms),
        },
    )
    return Runtime(
        app_config=app_config,
        env_config=env_config,
        ollama=ollama,
        pages=pages,
        events=events,
        queue=queue,
        orchestrator=orchestrator,
        service=service,
    )


def run_scan_once(runtime: Runtime) -> int:
    """Scan, process every resulting task and report."""
    result = runtime.service.trigger_scan()
    processed = runtime.orchestrator.drain()
    dead = runtime.queue.list_dead()

    logger.info(
        f"Manual scan completed: {result.fetched} fetched, {result.processed} stored, "
        f"{result.job_related} job related, {processed} tasks processed",
        extra={
            "event": "service.manual_scan.completed",
            "duration_seconds": result.duration_seconds,
            "had_errors": result.had_errors,
            "tasks_processed": processed,
            "dead_tasks": len(dead),
        },
    )
    # Tasks still in backoff are picked up by the next run
    return 1 if result.had_errors else 0


def run_daemon(runtime: Runtime) -> int:
    """Run worker pools and the scheduler until SIGINT/SIGTERM."""
    shutdown_event = threading.Event()
    scheduler_service = SchedulerService(
        scan_callable=runtime.service.trigger_scan,
        scan_interval_seconds=runtime.app_config.scan.interval,
        reaper_callable=runtime.orchestrator.requeue_expired,
        reaper_interval_seconds=runtime.app_config.queues.reaper_interval,
        shutdown_event=shutdown_event,
    )

    def signal_handler(signum, frame):
        logger.info(
            f"Received signal {signum}, shutting down",
            extra={"event": "service.signal_received", "signal": signum},
        )
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    runtime.orchestrator.start()
    scheduler_service.start()
    logger.info("Workers and scheduler started. Press Ctrl+C to stop", extra={"event": "service.daemon_mode.started"})

    try:
        shutdown_event.wait()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down", extra={"event": "service.keyboard_interrupt"})

    scheduler_service.shutdown(wait=False)
    runtime.orchestrator.stop(timeout=SHUTDOWN_GRACE_SECONDS)
    return 0


def main(argv=None) -> int:
    """
    Main entry point for jobmail.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    start_time = time.time()
    parser = argparse.ArgumentParser(
        description="jobmail - finds job postings in your mail, enriches them and hides blacklisted ones"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml, then config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--scan-once",
        action="store_true",
        help="Scan mail once, process all resulting tasks and exit",
    )
    mode.add_argument(
        "--replace-blacklist",
        type=Path,
        metavar="FILE",
        help="Replace the blacklist with the lines of FILE, process the keyword tasks and exit",
    )
    mode.add_argument(
        "--queue-pending",
        action="store_true",
        help="Enqueue unfinished work (unprocessed messages, failed postings, stale embeddings) and exit",
    )
    mode.add_argument(
        "--stats",
        action="store_true",
        help="Print posting and queue statistics as JSON and exit",
    )

    args = parser.parse_args(argv)
    runtime: Optional[Runtime] = None

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)
        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=env_config.environment,
        )
        logger.info(
            "jobmail starting",
            extra={
                "event": "service.starting",
                "config_path": str(args.config) if args.config else None,
                "log_level": env_config.log_level,
            },
        )

        runtime = build_runtime(app_config, env_config)

        if args.scan_once:
            return run_scan_once(runtime)

        if args.replace_blacklist:
            text = args.replace_blacklist.read_text(encoding="utf-8")
            keywords = runtime.service.replace_blacklist(text)
            processed = runtime.orchestrator.drain()
            print(f"Blacklist replaced with {len(keywords)} keywords ({processed} tasks processed)")
            return 0

        if args.queue_pending:
            report = runtime.service.queue_pending_work()
            print(
                f"Queued {report.total} tasks: {report.messages} messages, {report.postings} postings, "
                f"{report.stale_embeddings} stale embeddings, {report.keywords} keywords"
            )
            return 0

        if args.stats:
            stats = {"records": runtime.service.posting_stats(), "queue": runtime.service.queue_stats()}
            print(json.dumps(stats, indent=2, sort_keys=True))
            return 0

        return run_daemon(runtime)

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        return 1
    except (PersistenceError, OSError) as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error",
            extra={"event": "service.fatal", "error_type": type(e).__name__, "error": str(e)},
            exc_info=True,
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    finally:
        if runtime is not None:
            runtime.close()
            close_database()
            logger.info(
                "jobmail stopped",
                extra={"event": "service.stopping", "uptime_seconds": round(time.time() - start_time, 2)},
            )


if __name__ == "__main__":
    sys.exit(main())
