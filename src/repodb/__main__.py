"""Entry point: python -m repodb [init|threads|messages <thread-id>|stats]

- "init":      Provision the repository for the authenticated user
- "threads":   List active threads, most recent first (default)
- "messages":  Print the messages of one thread
- "stats":     Thread/message counts and cache statistics
"""

from __future__ import annotations

import asyncio
import logging
import sys

from repodb.config import load_config
from repodb.errors import RepoDBError


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


async def _run(cmd: str, args: list[str]) -> None:
    config = load_config()
    _setup_logging(config.log_level)

    from repodb.core import RepoDB

    async with RepoDB(config) as db:
        identity = await db.store.get_identity()
        session = await db.connect(identity.login)

        if cmd == "init":
            print(f"Repository ready: {session.repo.full_name}")

        elif cmd == "threads":
            for thread in await session.chats.list_threads_by_owner():
                when = thread.last_message_at or thread.created_at
                print(f"{thread.id}  {when:%Y-%m-%d %H:%M}  {thread.display_title}")

        elif cmd == "messages":
            for message in await session.chats.list_messages_by_thread(args[0]):
                print(f"[{message.created_at:%Y-%m-%d %H:%M}] {message.role}: {message.text}")

        elif cmd == "stats":
            threads = await session.chats.list_threads_by_owner()
            total = 0
            for thread in threads:
                total += len(await session.chats.list_messages_by_thread(thread.id))
            stats = db.cache.stats()
            print(f"Repository: {session.repo.full_name} ({config.timeline.encoding})")
            print(f"Threads:    {len(threads)}")
            print(f"Messages:   {total}")
            print(f"Cache:      {stats.hits} hits, {stats.misses} misses, {stats.evictions} evictions")


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "threads"
    args = sys.argv[2:]

    if cmd not in ("init", "threads", "messages", "stats") or (cmd == "messages" and not args):
        print("Usage: python -m repodb [init|threads|messages <thread-id>|stats]")
        print("  init      Provision the backing repository")
        print("  threads   List threads (default)")
        print("  messages  Show the messages of a thread")
        print("  stats     Counts and cache statistics")
        sys.exit(1)

    try:
        asyncio.run(_run(cmd, args))
    except RepoDBError as e:
        logging.getLogger("repodb").error("%s", e)
        sys.exit(2)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
