"""EventVol — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
serving the API or running a single analysis from the command line.
"""

import logging

from fastapi import FastAPI

from eventvol.api.routers import router

app = FastAPI(title="EventVol Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("eventvol")


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


def build_service(config):
    """Create the database, repositories and analysis service for *config*.

    Returns:
        ``(service, backtest_repo)``.
    """
    from eventvol.config import load_settings
    from eventvol.repos.backtest_repo import BacktestRepo
    from eventvol.repos.candle_repo import CandleRepo
    from eventvol.repos.db import init_db
    from eventvol.repos.event_repo import EventRepo
    from eventvol.service import AnalysisService

    init_db(config.db_path)
    settings = load_settings(config.settings_path)
    service = AnalysisService(
        config,
        settings,
        CandleRepo(config.db_path, config.busy_timeout_ms),
        EventRepo(config.db_path, config.busy_timeout_ms),
    )
    return service, BacktestRepo(config.db_path, config.busy_timeout_ms)


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli(argv=None) -> int:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse

    from eventvol.cli.report import (
        print_backtest_summary,
        print_parameters,
        print_profile_summary,
    )
    from eventvol.config import load_config
    from eventvol.errors import EventVolError
    from eventvol.risk.straddle_params import StraddleMode

    parser = argparse.ArgumentParser(description="EventVol event volatility analyzer")
    parser.add_argument(
        "--mode",
        choices=["serve", "profile", "params", "backtest"],
        default="serve",
        help="What to run (default: serve)",
    )
    parser.add_argument("--symbol", help="Instrument, e.g. EURUSD")
    parser.add_argument("--event", help="Event type, e.g. 'Non-Farm Employment Change'")
    parser.add_argument(
        "--straddle",
        choices=[m.value for m in StraddleMode],
        default=StraddleMode.SIMULTANEOUS.value,
        help="Straddle mode for params/backtest (default: simultaneous)",
    )
    parser.add_argument("--env", help="Path to a .env file")
    args = parser.parse_args(argv)

    config = load_config(args.env)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.mode != "serve" and (not args.symbol or not args.event):
        parser.error(f"--mode {args.mode} needs --symbol and --event")

    service, backtest_repo = build_service(config)

    if args.mode == "serve":
        _serve(service, backtest_repo, config.api_port)
        return 0

    mode = StraddleMode(args.straddle)
    try:
        if args.mode == "profile":
            print_profile_summary(service.impact_profile(args.symbol, args.event))
        elif args.mode == "params":
            print_parameters(service.straddle_parameters(args.symbol, args.event, mode))
        else:
            result = service.backtest(args.symbol, args.event, mode)
            backtest_repo.insert_run(result.symbol, result.event_type, mode.value, result.stats)
            print_backtest_summary(result)
    except EventVolError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        service.shutdown()
    return 0


def _serve(service, backtest_repo, port: int) -> None:
    """Start the API server."""
    import uvicorn

    from eventvol.api.routers import configure_routers

    configure_routers(service, backtest_repo)
    logger.info("EventVol API available at http://localhost:%d", port)
    try:
        uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
    finally:
        service.shutdown()


if __name__ == "__main__":
    raise SystemExit(_run_cli())
