import asyncio
import logging
import signal
import sys
from typing import Dict


logger = logging.getLogger("eshut")

shutdown_event = asyncio.Event()

# a job in the middle of a long Facebook fan-out gets cancelled rather than waited for
tasks_to_cancel: Dict[str, asyncio.Task] = {}


def give_task_to_cancel(under_name: str, task: asyncio.Task):
    tasks_to_cancel[under_name] = task


def take_away_task_to_cancel(under_name: str) -> asyncio.Task:
    return tasks_to_cancel.pop(under_name)


def spiral_down_now(enable_exit1: bool):
    if shutdown_event.is_set() and enable_exit1:
        logger.info("exit(1)")
        sys.exit(1)
    shutdown_event.set()
    for k, task in tasks_to_cancel.items():
        logger.info("task cancel %r", k)
        task.cancel()


def setup_signals():
    loop = asyncio.get_running_loop()

    def h():
        logger.info("✋ Got signal")
        spiral_down_now(enable_exit1=True)

    try:
        loop.add_signal_handler(signal.SIGINT, h)
        loop.add_signal_handler(signal.SIGTERM, h)
    except NotImplementedError:
        def windows_handler(signum, frame):
            h()
        signal.signal(signal.SIGINT, windows_handler)
        signal.signal(signal.SIGTERM, windows_handler)


async def wait(timeout: float) -> bool:
    try:
        await asyncio.wait_for(shutdown_event.wait(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return False
