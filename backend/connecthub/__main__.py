"""Command line entry point: ``python -m connecthub``.

Subcommands:
    serve (default)   Run the chat server.
    seed FILE         Load a user directory and send welcome messages from
                      synthetic accounts. Run it while the server is stopped;
                      the database file allows one writer process.
"""
import argparse
import asyncio
import logging

import uvicorn

from connecthub.autoreply.seed import load_directory, seed_directory
from connecthub.autoreply.service import AutoResponder
from connecthub.config import get_config
from connecthub.conversations.store import ConversationStore


def serve() -> None:
    config = get_config()
    uvicorn.run(
        "connecthub.main:app",
        host=config.server.host,
        port=config.server.port,
        ws_ping_interval=config.server.ws_ping_interval,
        ws_ping_timeout=config.server.ws_ping_timeout,
        log_level=config.logging.level.lower(),
    )


async def seed(path: str, per_user: int) -> None:
    config = get_config()
    store = ConversationStore(db_path=config.database.path, max_page_size=config.chat.max_page_size)
    try:
        responder = AutoResponder(store, settings=config.autoreply)
        await seed_directory(store, responder, load_directory(path), per_user=per_user)
    finally:
        store.close()


def main() -> None:
    parser = argparse.ArgumentParser(prog="connecthub", description="ConnectHub chat server.")
    subcommands = parser.add_subparsers(dest="command")
    subcommands.add_parser("serve", help="Run the chat server (default)")
    seed_parser = subcommands.add_parser("seed", help="Seed users and welcome conversations")
    seed_parser.add_argument("directory", help="YAML file with a 'users' list")
    seed_parser.add_argument(
        "--per-user",
        type=int,
        default=3,
        help="Welcome messages per regular account (default: 3)",
    )
    args = parser.parse_args()

    if args.command == "seed":
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        asyncio.run(seed(args.directory, args.per_user))
    else:
        serve()


if __name__ == "__main__":
    main()
