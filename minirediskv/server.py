"""TCP server accepting client connections, and the command-line entry point."""

from __future__ import annotations

import argparse
import logging
import socket
import sys
import threading
from collections.abc import Sequence

from minirediskv.commands import CommandProcessor, ReplicaSet
from minirediskv.rdb import RdbError, load_file
from minirediskv.replica import ReplicaLink
from minirediskv.store import Config, Store, ensure_rdb_file

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.2


class RedisServer:
    """Listens for clients and runs their commands against a shared store."""

    def __init__(
        self,
        config: Config,
        store: Store | None = None,
        host: str = "0.0.0.0",
    ) -> None:
        self.config = config
        self.store = store if store is not None else Store()
        self.replicas = ReplicaSet()
        self.processor = CommandProcessor(self.store, config, self.replicas)
        self.failed = False
        self._closed = threading.Event()
        self._listener = socket.create_server((host, config.port))
        self._listener.settimeout(_POLL_INTERVAL)
        logger.info("listening on %s:%d", *self.address)

    @property
    def address(self) -> tuple[str, int]:
        """Host and port the server is bound to."""
        host, port = self._listener.getsockname()[:2]
        return host, port

    def serve_forever(self) -> None:
        """Accept clients until closed, serving each on its own thread."""
        if self.config.role() == "slave":
            link = ReplicaLink(self.config, self.store)
            threading.Thread(target=link.run, daemon=True).start()

        while not self._closed.is_set():
            try:
                conn, peer = self._listener.accept()
            except socket.timeout:
                continue
            except OSError:
                if self._closed.is_set():
                    return
                raise
            conn.settimeout(None)
            logger.info("accepted connection from %s", peer)
            threading.Thread(target=self.handle_client, args=(conn,), daemon=True).start()

    def handle_client(self, conn: socket.socket) -> None:
        """Serve one client connection until it is closed."""
        with conn:
            while True:
                try:
                    data = conn.recv(1024)
                except OSError as exc:
                    logger.error("error reading connection data: %s", exc)
                    break
                if not data:
                    break
                logger.info("received message: %r", data)
                try:
                    reply = self.processor.handle_message(data, conn)
                except (OSError, RdbError) as exc:
                    logger.error("cannot read snapshot file: %s", exc)
                    self.failed = True
                    self.close()
                    break
                try:
                    conn.sendall(reply)
                except OSError as exc:
                    logger.error("error writing reply: %s", exc)
                    break

    def close(self) -> None:
        """Stop accepting clients."""
        self._closed.set()
        self._listener.close()


def parse_args(argv: Sequence[str] | None = None) -> Config:
    """Build a Config from command-line arguments."""
    parser = argparse.ArgumentParser(prog="minirediskv", description="Key/value server.")
    parser.add_argument("-port", "--port", type=int, default=6379, help="port to listen on")
    parser.add_argument(
        "-dir", "--dir", dest="directory", default="/tmp/redis-data",
        help="directory holding the RDB file",
    )
    parser.add_argument("-dbfilename", "--dbfilename", default="dump.rdb", help="RDB file name")
    parser.add_argument(
        "-replicaof", "--replicaof", default="nil",
        help="'<host> <port>' of the master to replicate from",
    )
    args = parser.parse_args(argv)
    replicaof = None if args.replicaof == "nil" else args.replicaof
    return Config(
        port=args.port,
        directory=args.directory,
        dbfilename=args.dbfilename,
        replicaof=replicaof,
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Start the server; return the process exit status."""
    logging.basicConfig(level=logging.INFO)
    config = parse_args(argv)
    ensure_rdb_file(config)
    store = Store()
    store.load(load_file(config.full_path()))

    try:
        server = RedisServer(config, store)
    except OSError as exc:
        logger.error("failed to bind to port %d: %s", config.port, exc)
        return 1

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.close()
    return 1 if server.failed else 0


if __name__ == "__main__":
    sys.exit(main())