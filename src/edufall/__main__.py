"""Main entry point for the EduFall game server."""
import logging
import logging.config
import asyncio
from typing import Any, Dict

from .config.env import ConfigError, load_config
from .config.settings import BASE_DIR, LOGGING_CONFIG
from .core.context import build_context, create_profile_store
from .models.database import Database


def setup_environment():
    """Set up the environment for the server."""
    # Ensure necessary directories exist
    (BASE_DIR / 'data').mkdir(exist_ok=True)
    (BASE_DIR / 'logs').mkdir(exist_ok=True)

    # Configure logging
    logging.config.dictConfig(LOGGING_CONFIG)
    logger = logging.getLogger(__name__)

    logger.info("Starting EduFall game server...")
    return logger


async def log_sink(player_id: str, message: Dict[str, Any]) -> None:
    """Stand-in UI channel when no engine is attached."""
    logging.getLogger("edufall.ui").debug(f"-> {player_id}: {message['type']}")


async def main():
    """Run the game server until interrupted."""
    logger = setup_environment()
    context = None

    try:
        config = load_config()
        logging.getLogger("edufall").setLevel(config.log_level)

        database = Database(config.database_url)
        context = build_context(
            log_sink,
            profile_store=create_profile_store(config, database),
            database=database,
            snapshot_interval=config.leaderboard_snapshot_interval,
        )
        await context.start()
        await asyncio.Event().wait()
    except ConfigError as e:
        logger.critical(f"Invalid configuration: {e}")
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Received shutdown signal, cleaning up...")
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
    finally:
        if context:
            try:
                async with asyncio.timeout(10.0):  # 10 second timeout for cleanup
                    await context.shutdown()
            except asyncio.TimeoutError:
                logger.error("Cleanup timed out")
            except Exception as e:
                logger.error(f"Error during cleanup: {e}", exc_info=True)

        # Final cleanup of any remaining tasks
        remaining_tasks = [t for t in asyncio.all_tasks()
                           if t is not asyncio.current_task()]
        if remaining_tasks:
            logger.warning(f"Found {len(remaining_tasks)} unclosed tasks, "
                           "forcing cleanup...")
            for task in remaining_tasks:
                task.cancel()
            try:
                async with asyncio.timeout(5.0):
                    await asyncio.gather(*remaining_tasks, return_exceptions=True)
            except asyncio.TimeoutError:
                logger.error("Final task cleanup timed out")


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass  # Handle Ctrl+C gracefully


if __name__ == "__main__":
    run()
