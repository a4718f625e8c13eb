"""Run the API with uvicorn: ``python -m pos_core``."""

import uvicorn

from pos_core.core.config import settings


def main() -> None:
    uvicorn.run(
        "pos_core.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=int(settings.shutdown_grace_seconds),
    )


if __name__ == "__main__":
    main()
