#!/usr/bin/env python3
"""
Dispatcher Worker — runs the queue consumer and delayed-message promoter
without the HTTP API.

Usage:
    python scripts/run_worker.py
    NOTIFIER_CONFIG=config/settings.yaml python scripts/run_worker.py

Stops on SIGINT / SIGTERM: the workers finish the delivery in hand, then
the queue, cache, channel and database connections are closed.
"""
import asyncio
import os
import signal
import sys

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def run_worker():
    from dotenv import load_dotenv
    load_dotenv()

    from config.logging import configure_logging
    from config.settings import load_settings
    from core.container import NotifierContainer

    settings = load_settings()
    log = configure_logging(settings)
    container = NotifierContainer.from_settings(settings)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await container.start()
    log.info("worker_running",
             routing_key=settings.queue.routing_key,
             concurrency=settings.queue.consumer_concurrency)
    try:
        await stop.wait()
        log.info("worker_shutdown_requested")
    finally:
        await container.stop()
    log.info("worker_exited")


def main():
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
