"""Process entry: `auibridge` console script or `python -m auibridge.main`."""

from __future__ import annotations

import uvicorn

from auibridge.config.settings import get_settings
from auibridge.core.gateway import create_app


def main() -> None:
    settings = get_settings()
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
