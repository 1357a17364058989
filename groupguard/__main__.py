"""
groupguard.__main__ — Process entry point
==========================================

Usage::

    python -m groupguard                # reads ./config.yaml and .env
    python -m groupguard other.yaml
"""

from __future__ import annotations

import logging
import os
import sys

import uvicorn
from dotenv import load_dotenv


def main() -> None:
    load_dotenv()

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
        datefmt="%H:%M:%S",
    )
    logger = logging.getLogger("groupguard")

    from groupguard.config import load_config

    config_path = sys.argv[1] if len(sys.argv) > 1 else "config.yaml"
    try:
        cfg = load_config(config_path)
    except (FileNotFoundError, ValueError) as exc:
        logger.error("%s", exc)
        sys.exit(1)
    os.environ["GROUPGUARD_CONFIG"] = config_path

    logger.info("Starting %s on port %d", cfg.community_name, cfg.api_port)
    uvicorn.run("groupguard.api.main:app", host="0.0.0.0", port=cfg.api_port, log_config=None)


if __name__ == "__main__":
    main()
