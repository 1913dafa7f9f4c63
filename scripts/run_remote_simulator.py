from __future__ import annotations

import argparse
import asyncio

from task_center.config.settings import get_settings
from task_center.errors import ConsoleError
from task_center.simulator.gateway import HttpTaskGateway
from task_center.simulator.run_simulator import RunSimulator


def _parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description=(
            "Track a remote console and complete its RUNNING tasks after the simulated run window."
        )
    )
    parser.add_argument(
        "--base-url",
        type=str,
        default=settings.remote_base_url,
        help="Console base URL (default: TASK_CENTER_REMOTE_BASE_URL).",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.refetch_interval_s,
        help="Seconds between task list refetches.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=settings.remote_timeout_s,
        help="HTTP timeout per request in seconds.",
    )
    parser.add_argument(
        "--cycles",
        type=int,
        default=0,
        help="Stop after this many refetches (0 runs until interrupted).",
    )
    return parser.parse_args()


async def watch(simulator: RunSimulator, *, interval_s: float, cycles: int = 0) -> int:
    """Refetch in a loop; returns the number of refetches that succeeded."""
    completed = 0
    attempt = 0
    while cycles <= 0 or attempt < cycles:
        attempt += 1
        try:
            shadows = await simulator.refresh()
        except ConsoleError as exc:
            print(f"Refetch failed: {exc.message}")
        else:
            completed += 1
            running = sum(1 for shadow in shadows if shadow.is_running)
            print(f"Tracking {len(shadows)} task(s), {running} running.")
        await asyncio.sleep(interval_s)
    return completed


async def _run(args: argparse.Namespace) -> None:
    gateway = HttpTaskGateway(args.base_url, timeout_s=args.timeout)
    simulator = RunSimulator(gateway)
    try:
        await watch(simulator, interval_s=args.interval, cycles=args.cycles)
    finally:
        await simulator.close()
        await gateway.aclose()


def main() -> None:
    args = _parse_args()
    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        print("Stopped.")


if __name__ == "__main__":
    main()
