#!/usr/bin/env python3
"""
Log Shipping Demo

Starts a tiny collector on localhost, then ships log lines and raw metrics to
it through sendtcp. Watch the connection open on the first line, get reused,
close after the idle timeout, and reopen for the next burst.
"""

import asyncio
import logging
import sys

sys.path.insert(0, "src")

from sendtcp import TCPLineHandler, create_sender, configure, shutdown


# ============================================================================
# Collector
# ============================================================================

async def handle_client(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
    peer = writer.get_extra_info("peername")
    print(f"[collector] connection from {peer}")
    while True:
        line = await reader.readline()
        if not line:
            break
        print(f"[collector] {line.decode('ascii').rstrip()}")
    print(f"[collector] {peer} closed")
    writer.close()


# ============================================================================
# Demo
# ============================================================================

async def main():
    server = await asyncio.start_server(handle_client, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]

    # Short idle timeout so the demo does not have to wait long
    configure(idle_timeout=0.5)

    def on_error(error, data):
        print(f"[app] dropped {data!r}: {error}")

    # Logging through the standard library
    handler = TCPLineHandler("127.0.0.1", port, error_handler=on_error)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s %(message)s"))
    log = logging.getLogger("demo")
    log.setLevel(logging.INFO)
    log.addHandler(handler)

    # Raw metrics with a shared secret, same destination, same connection
    metric = create_sender("127.0.0.1", port, on_error, {"password": "s3cret"})

    print("1. First burst")
    log.info("service started")
    metric("cpu=0.42\n")
    log.warning("disk at 91%")
    await asyncio.sleep(0.1)

    print("2. Going idle...")
    await asyncio.sleep(1.0)

    print("3. Second burst (reconnects)")
    log.info("still alive")
    metric("cpu=0.17\n")
    await metric.flush()

    print("4. Shipping to a port nobody listens on")
    nowhere = create_sender("127.0.0.1", 9, on_error)
    await nowhere.submit("this line is lost\n")

    await shutdown()
    server.close()
    await server.wait_closed()
    print("Demo complete!")


if __name__ == "__main__":
    asyncio.run(main())
