from contextlib import asynccontextmanager
from uuid import UUID
import logging

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .database import init_db
from .exceptions import (
    BusinessRuleError,
    LedgerError,
    LedgerValidationError,
    StorageTimeoutError,
)
from .models import (
    BalanceResponse,
    EntryListResponse,
    SweepResponse,
    TransactionRequest,
    TransactionResult,
)
from .service import LedgerService

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR = "the server encountered a problem and could not process your request"
GENERIC_BUSY_ERROR = "the server is busy, please retry later"


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Bonus Ledger API",
    description="Time-limited bonus points with FIFO spending, balance multiplication and expiry",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger_service = LedgerService()


def get_ledger_service() -> LedgerService:
    return ledger_service


def classify_error(exc: LedgerError) -> tuple[int, str]:
    """Map every ledger failure to the status code and message the caller sees."""
    if isinstance(exc, LedgerValidationError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc)
    if isinstance(exc, BusinessRuleError):
        return status.HTTP_400_BAD_REQUEST, str(exc)
    if isinstance(exc, StorageTimeoutError):
        return status.HTTP_503_SERVICE_UNAVAILABLE, GENERIC_BUSY_ERROR
    return status.HTTP_500_INTERNAL_SERVER_ERROR, GENERIC_SERVER_ERROR


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code, detail = classify_error(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc!r}", exc_info=exc)
    return JSONResponse(status_code=status_code, content={"detail": detail})


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "bonus-ledger"}


@app.post("/v1/transactions", response_model=TransactionResult, tags=["Transactions"])
def create_transaction(
    request: TransactionRequest,
    service: LedgerService = Depends(get_ledger_service),
) -> TransactionResult:
    return service.apply_transaction(request)


@app.get("/v1/users/{user_id}/balance", response_model=BalanceResponse, tags=["Users"])
def get_user_balance(
    user_id: UUID,
    horizon_days: int = Query(default=settings.expiring_horizon_days, gt=0, le=settings.max_horizon_days),
    service: LedgerService = Depends(get_ledger_service),
) -> BalanceResponse:
    return BalanceResponse(
        user_id=user_id,
        balance=service.get_balance(user_id),
        expiring=service.get_expiring_breakdown(user_id, horizon_days),
    )


@app.get("/v1/users/{user_id}/entries", response_model=EntryListResponse, tags=["Users"])
def get_user_entries(
    user_id: UUID,
    service: LedgerService = Depends(get_ledger_service),
) -> EntryListResponse:
    entries = service.list_active_entries(user_id)
    return EntryListResponse(user_id=user_id, entries=entries, total_count=len(entries))


@app.post("/v1/maintenance/sweep", response_model=SweepResponse, tags=["Maintenance"])
def sweep_expired_entries(service: LedgerService = Depends(get_ledger_service)) -> SweepResponse:
    return SweepResponse(expired=service.sweep_expired())


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
