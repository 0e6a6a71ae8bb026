# main.py
# FastAPI application: wiring of routers, background workers and error mapping.

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payouts.alert_service import AlertEvaluationLoop
from payouts.config import settings
from payouts.database import SessionLocal, create_db_and_tables
from payouts.exceptions import PayoutEngineError
from payouts.locks import schedule_locks
from payouts.payment_rail_service import SimulatedPaymentRail
from payouts.routers import alerts, reporting, schedules, transactions
from payouts.transaction_service import TransactionProcessor

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("Starting payout engine")
    await create_db_and_tables()

    if settings.SEED_DEMO_DATA:
        from payouts.seed_data import seed_demo_data

        async with SessionLocal() as db:
            await seed_demo_data(db)

    processor = TransactionProcessor(
        session_factory=SessionLocal,
        rail=SimulatedPaymentRail(),
        timeout_seconds=settings.RAIL_CONFIRMATION_TIMEOUT_SECONDS,
        locks=schedule_locks,
    )
    evaluation_loop = AlertEvaluationLoop(
        session_factory=SessionLocal,
        interval_seconds=settings.ALERT_EVALUATION_INTERVAL_SECONDS,
        locks=schedule_locks,
    )
    await processor.recover()
    app.state.processor = processor
    evaluation_loop.start()
    log.info("Payout engine ready")

    yield

    log.info("Shutting down payout engine")
    await evaluation_loop.stop()
    await processor.shutdown()
    app.state.processor = None
    log.info("Shutdown complete")


app = FastAPI(
    title="Pharmacy Payout Engine",
    description="Commission collection and payout scheduling with due-date alerting.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PayoutEngineError)
async def payout_engine_error_handler(request: Request, exc: PayoutEngineError):
    log.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(schedules.router)
app.include_router(transactions.router)
app.include_router(alerts.router)
app.include_router(reporting.router)


@app.get("/health")
async def health(request: Request):
    processor = getattr(request.app.state, "processor", None)
    return {
        "status": "ok",
        "inFlightTransactions": processor.in_flight_count if processor else 0,
    }


if __name__ == "__main__":
    uvicorn.run("payouts.main:app", host="0.0.0.0", port=8000)
