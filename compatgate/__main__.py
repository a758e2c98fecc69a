"""Serve the default app: ``python -m compatgate``."""

import uvicorn

from compatgate.config.settings import settings


def main() -> None:
    uvicorn.run(
        "compatgate.core.gateway:build_default_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
