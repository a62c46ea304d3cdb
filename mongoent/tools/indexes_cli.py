"""
Index administration CLI for mongoent.

Commands:
- list: Show the indexes of every collection (or the given ones)
- drop: Drop all non-_id indexes of every collection (or the given ones)
- ensure: Create the identity counter's unique index

Usage:
    mongoent-indexes list
    mongoent-indexes list --collection users --format json
    mongoent-indexes drop --collection users --collection posts
    mongoent-indexes ensure

Connection settings come from MONGOENT_* environment variables.

Invariants:
    - drop never touches the _id index
    - The connection is closed on every exit path
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional, Sequence

import json_log_formatter

from ..config import DatabaseSettings, get_settings
from ..connection import Connection
from ..errors import MongoEntError
from ..model.master_mind import MasterMind
from ..store.base import DocumentStore

logger = logging.getLogger(__name__)


def setup_logging(settings: DatabaseSettings) -> None:
    """Configure logging based on settings.

    Args:
        settings: Database settings carrying log_level and log_format
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("motor").setLevel(logging.WARNING)


class IndexesCLI:
    """Index listing and dropping over a DocumentStore.

    Example:
        >>> cli = IndexesCLI(store)
        >>> await cli.list_indexes()
        {'users': [{'name': '_id_', 'key': {'_id': 1}}]}
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def _collections(self, collections: Optional[Sequence[str]]) -> List[str]:
        if collections:
            return list(collections)
        return await self.store.list_collection_names()

    async def list_indexes(self, collections: Optional[Sequence[str]] = None) -> Dict[str, List[Dict[str, Any]]]:
        """Indexes per collection.

        Args:
            collections: Collections to inspect (default: all)

        Returns:
            Collection name -> index descriptions
        """
        result: Dict[str, List[Dict[str, Any]]] = {}
        for collection in await self._collections(collections):
            result[collection] = await self.store.list_indexes(collection)
        return result

    async def drop_indexes(self, collections: Optional[Sequence[str]] = None) -> List[str]:
        """Drop the secondary indexes of collections.

        Returns:
            Names of the collections whose indexes were dropped
        """
        dropped: List[str] = []
        for collection in await self._collections(collections):
            await self.store.drop_indexes(collection)
            logger.info(f"Dropped indexes of {collection}")
            dropped.append(collection)
        return dropped

    async def ensure_indexes(self) -> str:
        """Create the identity counter's unique index."""
        return await MasterMind(store=self.store).ensure_index()


def _format_indexes(indexes: Dict[str, List[Dict[str, Any]]], output_format: str) -> str:
    if output_format == "json":
        return json.dumps(indexes, indent=2, sort_keys=True, default=str)

    lines: List[str] = []
    for collection, collection_indexes in indexes.items():
        lines.append(f"{collection}:")
        for index in collection_indexes:
            keys = ", ".join(f"{key} {direction}" for key, direction in dict(index.get("key", {})).items())
            unique = " (unique)" if index.get("unique") else ""
            lines.append(f"  - {index.get('name')}: {keys}{unique}")
    return "\n".join(lines)


async def _run(args: argparse.Namespace, settings: DatabaseSettings) -> int:
    connection = Connection(settings)
    store = await connection.connect()
    cli = IndexesCLI(store)

    try:
        if args.command == "list":
            indexes = await cli.list_indexes(args.collection)
            print(_format_indexes(indexes, args.format))

        elif args.command == "drop":
            dropped = await cli.drop_indexes(args.collection)
            print(f"Dropped indexes of {len(dropped)} collection(s)")

        elif args.command == "ensure":
            name = await cli.ensure_indexes()
            print(f"Ensured index {name}")
    finally:
        await connection.close()

    return 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point for index administration."""
    parser = argparse.ArgumentParser(description="mongoent index administration tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # list command
    list_parser = subparsers.add_parser("list", help="List indexes")
    list_parser.add_argument("--collection", "-c", action="append", help="Collection (repeatable)")
    list_parser.add_argument("--format", choices=["text", "json"], default="text", help="Output format")

    # drop command
    drop_parser = subparsers.add_parser("drop", help="Drop all indexes except _id")
    drop_parser.add_argument("--collection", "-c", action="append", help="Collection (repeatable)")

    # ensure command
    subparsers.add_parser("ensure", help="Create the identity counter index")

    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings)

    try:
        sys.exit(asyncio.run(_run(args, settings)))
    except MongoEntError as e:
        logger.error(f"{args.command} failed: {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
