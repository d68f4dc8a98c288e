"""Entry point for running the commonkit MCP server."""

from __future__ import annotations

import logging
from os import environ

from commonkit.server import create_server


def main() -> None:
    logging.basicConfig(
        level=environ.get('COMMONKIT_LOG_LEVEL', 'WARNING').upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    server = create_server()
    server.run()


if __name__ == '__main__':
    main()
