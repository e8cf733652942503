import asyncio
from loguru import logger
from cexfeed.config import Settings
from cexfeed.utils.logger import setup_logging
from cexfeed.orchestrator import Orchestrator


async def main():
    """Main entry point"""
    settings = Settings.from_env()
    setup_logging(settings.log_dir, settings.log_level)
    logger.info("🚀 Starting CEX announcements aggregator")

    # Load configuration from YAML files
    config = settings.load_app_config()

    orchestrator = Orchestrator(config)

    try:
        await orchestrator.run()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await orchestrator.cleanup()
        logger.info("✅ Shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
