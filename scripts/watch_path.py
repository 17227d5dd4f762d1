#!/usr/bin/env python3
"""Print live child events for a database location.

Connects a RestStore using ``FIRESYNC_URL`` / ``FIRESYNC_AUTH`` from the
environment, binds a SyncedCollection to the given path and logs every
add / change / remove until interrupted.

    FIRESYNC_URL=https://my-app.firebaseio.com python scripts/watch_path.py todos
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from firesync import FiresyncConfig, RestStore, SyncedCollection  # noqa: E402
from firesync.exceptions import FiresyncConfigError  # noqa: E402
from firesync.local.model import Model  # noqa: E402

_LOG = logging.getLogger("watch_path")


def _dump(model: Model) -> str:
    return json.dumps(model.to_dict(), sort_keys=True, default=str)


async def _watch(args: argparse.Namespace) -> int:
    try:
        config = FiresyncConfig.from_env(**({"url": args.url} if args.url else {}))
    except FiresyncConfigError as exc:
        _LOG.error("%s", exc)
        return 2

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    async with RestStore(config) as store:
        collection = SyncedCollection(store=store, path=args.path)

        def on_event(event: str, *payload: Any) -> None:
            if event in {"add", "remove", "change"}:
                print(f"{event:<7} {_dump(payload[0])}", flush=True)
            elif event == "sync":
                print(f"synced  /{collection.path} ({len(collection)} children)", flush=True)

        collection.on("all", on_event)
        await stop.wait()
        collection.close()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("path", help="Location to watch, e.g. 'todos'")
    parser.add_argument("--url", help="Database URL (defaults to FIRESYNC_URL)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(_watch(args))


if __name__ == "__main__":
    raise SystemExit(main())
