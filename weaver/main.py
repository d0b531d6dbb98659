"""MarketWeaver — application entry point.

Boots the FastAPI control server and provides the CLI entry point for
interactive (API) and headless replay runs.
"""

import logging

from fastapi import FastAPI

from weaver.api.routers import router

app = FastAPI(title="MarketWeaver Replay API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("weaver")


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


def build_session(config, csv_path=None):
    """Wire data service, catalog and session from *config*."""
    from weaver.indicators.catalog import IndicatorCatalog, JsonIndicatorStore
    from weaver.market.data_service import MarketDataService
    from weaver.market.polygon_client import PolygonClient
    from weaver.session import ReplaySession

    client = PolygonClient(config) if config.remote_enabled else None
    if client is None:
        logger.info("POLYGON_API_KEY not set; running from local data only.")
    data_service = MarketDataService(csv_path or config.csv_path, client=client)
    catalog = IndicatorCatalog(JsonIndicatorStore(config.indicator_store_path))
    return ReplaySession.from_config(config, data_service=data_service, catalog=catalog)


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the API server or a headless run."""
    import argparse
    import asyncio

    from weaver.config import load_config
    from weaver.replay.controller import PLAYBACK_SPEEDS

    parser = argparse.ArgumentParser(description="MarketWeaver forex replay simulator")
    parser.add_argument("--csv", help="Local candle file (overrides CSV_PATH)")
    parser.add_argument("--port", type=int, help="API port (overrides API_PORT)")
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Replay without the API server and log the account summary",
    )
    parser.add_argument(
        "--ticks", type=int, default=100,
        help="Bars to replay in headless mode (default: 100)",
    )
    parser.add_argument(
        "--speed", type=float, choices=PLAYBACK_SPEEDS, default=1.0,
        help="Playback speed multiplier (default: 1)",
    )
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    session = build_session(config, csv_path=args.csv)

    if args.headless:
        asyncio.run(_run_headless(session, args.ticks))
    else:
        asyncio.run(_run_server(session, args.port or config.api_port, args.speed))


async def _run_server(session, port: int, speed: float = 1.0) -> None:
    """Start the session and serve the control API until shutdown."""
    import uvicorn

    from weaver.api.routers import configure_routers

    await session.start()
    await session.set_speed(speed)
    configure_routers(session)

    uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    server = uvicorn.Server(uvi_config)
    logger.info("Control API available at http://localhost:%d", port)
    try:
        await server.serve()
    finally:
        await session.shutdown()
        logger.info("MarketWeaver stopped.")


async def _run_headless(session, ticks: int) -> None:
    """Step through *ticks* bars from the start and log the outcome."""
    await session.start()
    if not session.controller.historical:
        logger.error("No candles loaded; nothing to replay.")
        return

    await session.step_forward()  # idle -> paused on the first bar
    for _ in range(max(ticks, 0)):
        await session.step_forward()

    replay = session.controller.to_dict()
    account = session.account_summary()
    logger.info(
        "Replayed to bar %d (%s, live=%s); balance %.2f, equity %.2f",
        replay["cursor_index"], replay["timeframe"], replay["is_live"],
        account["balance"], account["equity"],
    )
    latest = session.indicators.latest()
    if latest:
        logger.info("Latest indicators: %s", latest)
    await session.shutdown()


if __name__ == "__main__":
    _run_cli()
