"""Run the ingestion worker: ``python -m klyro_pipeline``."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from klyro_pipeline.config import get_settings
from klyro_pipeline.pipeline import Pipeline

logger = logging.getLogger("klyro_pipeline")


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting worker with settings: %s", settings.redacted_summary())

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(Pipeline(settings).run())


if __name__ == "__main__":
    main()
