"""Run the service: ``python -m changewatch``."""

import uvicorn

from changewatch.core.config import settings


def main() -> None:
    uvicorn.run(
        "changewatch.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_config=None,
    )


if __name__ == "__main__":
    main()
