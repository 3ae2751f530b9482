"""
Server entry point.

    uvicorn docchat.main:app --reload
    docchat-server
"""

import uvicorn

from docchat.api.app import create_app
from docchat.config.settings import settings

app = create_app()


def run() -> None:
    uvicorn.run(
        "docchat.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development and settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
