"""Incident Autopilot — Main entry point.

Usage:
    python main.py api      # HTTP + WebSocket API with an in-process worker
    python main.py worker   # queue worker only
    python main.py demo     # create the "High Error Rate" incident and follow it
"""

from __future__ import annotations

import asyncio
import signal
import sys

from incident_agent.core.config import get_settings
from incident_agent.core.logging import configure_logging, get_logger
from incident_agent.core.models import EventKind, IncidentStatus
from incident_agent.core.runner import IncidentRuntime

COMMANDS = ("api", "worker", "demo")


def run_api() -> None:
    import uvicorn

    from incident_agent.api.app import create_app

    settings = get_settings()
    uvicorn.run(create_app(settings=settings), host=settings.api_host, port=settings.api_port)


async def run_worker() -> None:
    """Process queued incidents until interrupted."""
    logger = get_logger("main")
    runtime = IncidentRuntime(get_settings())
    await runtime.start(with_worker=True)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info("worker_listening", queue=runtime.queue.name)
    await stop.wait()
    await runtime.stop(timeout=30.0)


async def run_demo() -> None:
    """Run one incident end to end and print its event stream."""
    logger = get_logger("main")
    settings = get_settings()
    runtime = IncidentRuntime(settings)
    await runtime.start(with_worker=True)

    if not runtime.planner.has_reasoning_service:
        logger.warning("missing_api_key", msg="Set IAP_GROQ_API_KEY in .env for model analysis")

    subscriber = runtime.notifier.connect()
    try:
        incident = await runtime.intake.create(
            {
                "title": "High Error Rate",
                "description": "5xx responses above 20% for the last 10 minutes",
                "severity": "critical",
                "service": "api-gateway",
            }
        )
        runtime.notifier.subscribe(subscriber, incident.id)
        print(f"\n  Incident {incident.id} created ({incident.status.value})\n")

        while True:
            event = await subscriber.receive()
            if event.incident_id != incident.id:
                continue
            data = event.data
            if event.kind == EventKind.AGENT_STEP:
                step = data["step"]
                print(f"  [{step['step_number']}] {step['action']}: {str(step['output'])[:120]}")
            elif event.kind == EventKind.AGENT_THINKING:
                print(f"      ... {data['reasoning']}")
            elif event.kind == EventKind.INCIDENT_UPDATED and "status" in data:
                print(f"  >> status: {data['status']}")
            elif event.kind == EventKind.AGENT_ERROR:
                print(f"  !! error: {data['error']}")
            elif event.kind == EventKind.AGENT_COMPLETE:
                print("\n" + "=" * 70)
                print(f"  {data['status'].upper()} in {data['total_steps']} steps")
                print("=" * 70)
                print(data["resolution"])
                break
    finally:
        runtime.notifier.disconnect(subscriber)
        await runtime.stop(timeout=10.0)

    if data["status"] != IncidentStatus.RESOLVED.value:
        sys.exit(1)


def main() -> None:
    """CLI entry point."""
    command = sys.argv[1] if len(sys.argv) > 1 else "api"
    if command not in COMMANDS:
        print(f"Unknown command: {command}")
        print(f"Available: {list(COMMANDS)}")
        sys.exit(1)

    settings = get_settings()
    configure_logging(json_output=settings.log_json)

    if command == "api":
        run_api()
    elif command == "worker":
        asyncio.run(run_worker())
    else:
        asyncio.run(run_demo())


if __name__ == "__main__":
    main()
