import asyncio
import signal
from typing import Any

from loguru import logger

from subscriber.app.composition import create_subscriber_dependencies
from subscriber.app.core import SERVICE_NAME


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


async def _drain_errors(errors: "asyncio.Queue[Exception]") -> None:
    while True:
        error = await errors.get()
        _log("pipeline_error", error_type=type(error).__name__, error=str(error))


async def run_subscriber() -> None:
    deps = create_subscriber_dependencies()
    await deps.connect()

    pipeline = deps.pipeline
    error_reporter = asyncio.create_task(_drain_errors(deps.errors))

    def request_shutdown() -> None:
        _log("shutdown_signal")
        pipeline.stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown)
        except NotImplementedError:
            pass

    _log("subscriber_started")
    try:
        stats = await pipeline.run()
        _log(
            "subscriber_finished",
            batches_sent=stats.batches_sent,
            tokens_acknowledged=stats.tokens_acknowledged,
            batches_failed=stats.batches_failed,
            tokens_discarded=stats.tokens_discarded,
        )
    finally:
        error_reporter.cancel()
        try:
            await error_reporter
        except asyncio.CancelledError:
            pass
        await deps.close()
        _log("subscriber_stopped")


def main() -> None:
    try:
        asyncio.run(run_subscriber())
    except KeyboardInterrupt:
        _log("subscriber_interrupted")
    except Exception as e:
        logger.exception("subscriber failed: {}", e)
        raise


if __name__ == "__main__":
    main()
