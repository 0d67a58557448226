from __future__ import annotations

import os

import uvicorn

from algodid.env import load_dotenv_if_present


def main() -> None:
    # .env first: everything below reads ALGODID_* at call time.
    load_dotenv_if_present()

    from algodid.api.app import create_app
    from algodid.config import load_store_config
    from algodid.logs import configure_structured_logging
    from algodid.store.service import build_store

    cfg = load_store_config()
    configure_structured_logging(cfg.log_level)

    app = create_app(store=build_store(cfg))

    host = os.getenv("ALGODID_API_HOST", "127.0.0.1")
    port = int(os.getenv("ALGODID_API_PORT", "8080"))

    # Requests are logged as JSONL by RequestLogMiddleware.
    uvicorn.run(app, host=host, port=port, log_level=cfg.log_level.lower(), access_log=False)


if __name__ == "__main__":
    main()
