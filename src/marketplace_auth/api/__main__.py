"""
marketplace_auth.api.__main__

Entrypoint for running the FastAPI application via `python -m marketplace_auth.api`.

Responsibilities:
- Load settings.
- Create the app.
- Start uvicorn with structlog-compatible logging config.
"""

from __future__ import annotations

import uvicorn

from marketplace_auth.api.app import create_app
from marketplace_auth.settings import get_settings


def main() -> None:
    settings = get_settings()
    app = create_app(settings=settings)

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,  # structlog
    )


if __name__ == "__main__":
    main()


# --- Module Notes -----------------------------------------------------------
# Missing provider settings do not stop the process: `/v1/health/auth` reports
# them and every authentication attempt fails fast with a configuration error.
