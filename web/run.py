from __future__ import annotations

import uvicorn

from app import create_app, load_config, resolve_config_path
from logging_setup import configure_logging


def main() -> None:
    configure_logging()
    cfg = load_config(resolve_config_path(None))
    uvicorn.run(create_app(), host=cfg.server.host, port=cfg.server.port, reload=False)


if __name__ == "__main__":
    main()
