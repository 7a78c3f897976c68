import asyncio
import logging

from config import CFG, DB_PATH, is_memory_storage_enabled
from logging_setup import configure_logging

configure_logging("dizmen")

from database import init_db
from api_server import build_services, create_api_app, start_api_server, stop_api_server


logger = logging.getLogger(__name__)


async def main():
    """Application entry point."""
    if not CFG.session_secret:
        raise SystemExit("SESSION_SECRET is not set; refusing to start")

    if is_memory_storage_enabled():
        logger.warning("STORAGE_BACKEND=memory: data is lost on restart")
    else:
        await init_db()

    api_app = create_api_app(build_services())
    api_runner = await start_api_server(api_app)
    logger.info(
        "Dizmen started (verification_mode=%s, storage=%s, db=%s)",
        CFG.verification_mode,
        CFG.storage_backend,
        DB_PATH,
    )

    try:
        await asyncio.Event().wait()
    finally:
        await stop_api_server(api_runner)


if __name__ == "__main__":
    asyncio.run(main())
