"""HTTP trigger for the ingestion pipeline.

Run with: uvicorn fixtures_etl.http_api:create_app --factory
"""
from __future__ import annotations

import asyncio
import hmac
import logging
from typing import Callable, Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import Config, get_ingest_secret, load_config
from .errors import ConfigError, TransportError, UnknownLeagueError, UpstreamError
from .logging_utils import log_json, setup_logging
from .orchestrate import Orchestrator
from .store import FixtureStore

SECRET_HEADER = "x-ingest-secret"


def _error(status: int, /, **body) -> JSONResponse:
    return JSONResponse({"ok": False, **body}, status_code=status)


def create_app(
    config: Optional[Config] = None,
    orchestrator_factory: Optional[Callable[[Config, logging.Logger], Orchestrator]] = None,
) -> FastAPI:
    logger = setup_logging()
    cfg = config or load_config()
    app = FastAPI(title="fixtures_etl")
    app.state.store = None

    def default_factory(c: Config, lg: logging.Logger) -> Orchestrator:
        # one engine (and connection pool) per process
        if app.state.store is None:
            app.state.store = FixtureStore.from_url(c.database_url)
        return Orchestrator(c, lg, store=app.state.store)

    factory = orchestrator_factory or default_factory

    @app.exception_handler(RequestValidationError)
    async def bad_params(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
        return _error(400, error=f"invalid parameters: {', '.join(fields)}")

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.api_route("/ingest", methods=["GET", "POST"])
    async def ingest(
        request: Request,
        league: Optional[str] = Query(None),
        season: Optional[str] = Query(None),
        date: Optional[str] = Query(None),
        date_from: Optional[str] = Query(None, alias="from"),
        date_to: Optional[str] = Query(None, alias="to"),
        days_ahead: int = Query(0, ge=0, le=60),
        timezone: Optional[str] = Query(None),
        x_ingest_secret: Optional[str] = Header(None, alias=SECRET_HEADER),
    ):
        secret = get_ingest_secret(cfg)
        if secret and not hmac.compare_digest((x_ingest_secret or "").encode("utf-8"), secret.encode("utf-8")):
            return _error(401, error="invalid or missing ingest secret")
        debug = "debug" in request.query_params
        season_value = int(season) if season and season.isdigit() and len(season) == 4 else None

        try:
            orchestrator = factory(cfg, logger)
        except ConfigError as exc:
            return _error(500, error=str(exc))
        try:
            summary = await orchestrator.run(
                league=league,
                date=date_from or date,
                date_to=date_to,
                days_ahead=days_ahead,
                season=season_value,
                timezone=timezone,
            )
        except UnknownLeagueError as exc:
            return _error(400, error=str(exc))
        except ValueError as exc:
            return _error(400, error=str(exc))
        except UpstreamError as exc:
            log_json(logger, "ingest_upstream_error", level=logging.ERROR, errors=exc.api_errors, last_url=exc.last_url)
            return _error(502, reason="upstream_error", api_errors=exc.api_errors, last_url=exc.last_url)
        except TransportError as exc:
            log_json(logger, "ingest_transport_error", level=logging.ERROR, status=exc.status_code, url=exc.url)
            return _error(500, error=str(exc), status=exc.status_code, last_url=exc.url)
        except asyncio.TimeoutError:
            return _error(500, error="ingestion timed out")
        except Exception as exc:
            logger.exception("ingest_failed")
            return _error(500, error=str(exc))
        finally:
            await orchestrator.close()
        return summary.as_response(debug=debug)

    return app
