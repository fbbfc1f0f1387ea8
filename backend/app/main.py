from __future__ import annotations

from typing import Annotated

from fastapi import Depends, FastAPI, Path, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger

from . import schemas
from .core.config import settings
from .core.errors import FORBIDDEN_ERRORS, NOT_FOUND_ERRORS, LedgerError
from .engine import SettlementEngine, get_engine

app = FastAPI(title="Confidential Settlement API", version="0.1.0", debug=settings.debug)

UserAddress = Annotated[str, Path(pattern=schemas.ADDRESS_PATTERN, description="Bettor address")]


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """Translate ledger failures into a stable JSON error body."""

    if isinstance(exc, NOT_FOUND_ERRORS):
        status_code = 404
    elif isinstance(exc, FORBIDDEN_ERRORS):
        status_code = 403
    else:
        status_code = 409
    logger.warning("{} {} rejected: {}", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"error": exc.code, "detail": str(exc)})


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


@app.get("/markets/count", response_model=schemas.MarketCount, tags=["markets"])
def market_count(engine: SettlementEngine = Depends(get_engine)):
    return schemas.MarketCount(count=engine.get_market_count())


@app.get("/markets/{market_id}", response_model=schemas.Market, tags=["markets"])
def get_market(market_id: Annotated[int, Path(ge=0)], engine: SettlementEngine = Depends(get_engine)):
    """Public market snapshot; totals appear once the KMS proof is recorded."""

    return schemas.Market.model_validate(engine.get_market(market_id))


@app.get("/markets/{market_id}/handles", response_model=schemas.MarketHandles, tags=["markets"])
def get_market_handles(market_id: Annotated[int, Path(ge=0)], engine: SettlementEngine = Depends(get_engine)):
    """Encrypted total handles to request a public decryption for."""

    return schemas.MarketHandles.model_validate(engine.get_market_handles(market_id))


@app.get("/markets/{market_id}/bets/{user}", response_model=schemas.UserBet, tags=["markets"])
def get_user_bet(
    market_id: Annotated[int, Path(ge=0)],
    user: UserAddress,
    engine: SettlementEngine = Depends(get_engine),
):
    return schemas.UserBet.model_validate(engine.get_user_bet(market_id, user))


@app.post("/markets/{market_id}/verified-totals", response_model=schemas.Market, tags=["markets"])
def submit_verified_totals(
    market_id: Annotated[int, Path(ge=0)],
    payload: schemas.VerifiedDecryption,
    engine: SettlementEngine = Depends(get_engine),
):
    """Relay revealed totals; anyone may submit a valid KMS proof."""

    engine.submit_verified_totals(market_id, payload.abi_encoded_clear_values, payload.decryption_proof)
    return schemas.Market.model_validate(engine.get_market(market_id))


@app.get("/unwraps/{request_id}", response_model=schemas.UnwrapRequest, tags=["unwraps"])
def get_unwrap_request(request_id: Annotated[int, Path(ge=1)], engine: SettlementEngine = Depends(get_engine)):
    return schemas.UnwrapRequest.model_validate(engine.get_unwrap_request(request_id))


@app.post("/unwraps/{request_id}/finalize", response_model=schemas.UnwrapRequest, tags=["unwraps"])
def finalize_unwrap(
    request_id: Annotated[int, Path(ge=1)],
    payload: schemas.VerifiedDecryption,
    engine: SettlementEngine = Depends(get_engine),
):
    """Release unwrapped tokens once the burnt amount has been revealed."""

    receipt = engine.finalize_unwrap(request_id, payload.abi_encoded_clear_values, payload.decryption_proof)
    return schemas.UnwrapRequest.model_validate(receipt)


@app.get("/events", response_model=schemas.EventList, tags=["events"])
def list_events(
    *,
    after: Annotated[int, Query(ge=0, description="Return events with a sequence above this value")] = 0,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    market_id: Annotated[int | None, Query(ge=0, description="Only events of this market")] = None,
    engine: SettlementEngine = Depends(get_engine),
):
    """Page through the append-only ledger event log for indexers."""

    events = engine.list_events(after, limit, market_id=market_id)
    next_after = events[-1].seq if events else after
    return schemas.EventList(
        next_after=next_after,
        items=[schemas.LedgerEvent.model_validate(event) for event in events],
    )
