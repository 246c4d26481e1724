from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone

from ingestor.core.config import Settings, get_settings
from ingestor.core.config_files import ConfigError, load_moderation_config, load_queries, resolve_allow_list
from ingestor.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from ingestor.jobs.ingest import IngestionCoordinator
from ingestor.schemas.candidates import RunSummary
from ingestor.services.extractor import ExtractionError, Extractor, HttpExtractor, StaticExtractor
from ingestor.services.moderation import ModerationContext
from ingestor.services.persistence import PersistenceGateway
from ingestor.services.repository import RepositoryError, get_repository
from ingestor.services.store import InMemoryStore, RecordStore

logger = logging.getLogger(__name__)


async def run_ingestion(
    settings: Settings,
    *,
    dry_run: bool = False,
    candidates_file: str | None = None,
) -> RunSummary:
    """Execute one batch run. Config and store errors raised here are fatal."""
    queries = load_queries(settings.queries_path)
    moderation_config = load_moderation_config(settings.moderation_config_path)
    allow_list = resolve_allow_list(settings)
    extractor: Extractor = (
        StaticExtractor.from_file(candidates_file)
        if candidates_file
        else HttpExtractor(settings.extractor_base_url, timeout_seconds=settings.extractor_timeout_seconds)
    )

    store: RecordStore = InMemoryStore(retention_days=settings.retention_days) if dry_run else get_repository()
    try:
        if not dry_run and settings.database_auto_migrate:
            await get_repository().ensure_schema()
        gateway = PersistenceGateway(store)
        blacklist = await gateway.load_moderation_blacklist()
        dedup = await gateway.load_dedup_state()
        logger.info(
            "run state loaded queries=%s blacklist=%s known_posts=%s allow_list=%s dry_run=%s",
            len(queries),
            len(blacklist),
            len(dedup.known_ids),
            "off" if allow_list is None else len(allow_list),
            dry_run,
        )

        coordinator = IngestionCoordinator(
            extractor=extractor,
            gateway=gateway,
            moderation=ModerationContext(config=moderation_config, blacklist=blacklist),
            dedup=dedup,
            allow_list=allow_list,
            query_delay_seconds=settings.query_delay_seconds,
        )
        summary = await coordinator.run(queries)
        await gateway.apply_retention(now=datetime.now(timezone.utc), max_records=settings.max_stored_records)
        return summary
    finally:
        await store.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run one ingestion pass over the configured search queries.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use an in-memory store instead of Postgres",
    )
    parser.add_argument(
        "--candidates-file",
        help="Replay candidates from a JSON file keyed by query instead of calling the scraper",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging()
    telemetry_runtime = setup_telemetry(settings)
    try:
        summary = asyncio.run(
            run_ingestion(settings, dry_run=args.dry_run, candidates_file=args.candidates_file)
        )
    except (ConfigError, RepositoryError, ExtractionError) as exc:
        logger.error("fatal startup failure: %s", exc)
        return 1
    finally:
        shutdown_telemetry(telemetry_runtime)

    print(summary.model_dump_json())
    return 0


if __name__ == "__main__":
    sys.exit(main())
