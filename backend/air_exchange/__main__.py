"""Run the relay with uvicorn: ``python -m air_exchange``."""
import uvicorn

from air_exchange.config import get_config


def main() -> None:
    config = get_config()
    uvicorn.run(
        "air_exchange.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level,
    )


if __name__ == "__main__":
    main()
