import logging
from contextlib import asynccontextmanager
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from amounts import AmountCodec
from config import Settings, get_settings
from errors import StorageFailure, ValidationError
from scheduler import SchedulerManager
from schemas import (
    CardUpdateIn,
    CardsOut,
    ChartsOut,
    HistoryOut,
    TransactionIn,
    TransactionOut,
)
from services import (
    AggregationEngine,
    Clock,
    DashboardService,
    HistoryService,
    ResetService,
    TransactionService,
)
from store import LedgerStore
from tasks import TaskSupervisor

logger = logging.getLogger(__name__)


class Components:
    """Everything a request handler or the scheduler needs, built once."""

    def __init__(
        self,
        settings: Settings,
        store: LedgerStore,
        supervisor: Optional[TaskSupervisor] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.supervisor = supervisor or TaskSupervisor()
        self.codec = AmountCodec(settings.amount_mode)
        tz = ZoneInfo(settings.timezone)
        self.history = HistoryService(store)
        self.engine = AggregationEngine(
            store,
            codec=self.codec,
            tz=tz,
            clock=clock,
            supervisor=self.supervisor,
            history=self.history,
        )
        self.transactions = TransactionService(self.engine)
        self.resets = ResetService(store, self.codec)
        self.dashboard = DashboardService(store, self.codec)
        self.scheduler: Optional[SchedulerManager] = None
        if settings.scheduler_enabled:
            self.scheduler = SchedulerManager(self.resets, settings)

    def start(self) -> None:
        self.store.ensure_schema()
        if self.scheduler:
            self.scheduler.start()

    def stop(self) -> None:
        grace = self.settings.shutdown_grace_secs
        if self.scheduler:
            self.scheduler.stop()
        self.supervisor.shutdown(grace)
        self.store.close(grace)


router = APIRouter()


def get_components(request: Request) -> Components:
    return request.app.state.components


def _history_out(record, codec: AmountCodec) -> HistoryOut:
    return HistoryOut(
        id=record.id,
        operation_type=record.operation_type.value,
        amount=codec.to_amount(record.amount),
        is_incremental=record.is_incremental,
        recorded_at=record.recorded_at,
    )


def _transaction_out(txn, codec: AmountCodec) -> TransactionOut:
    return TransactionOut(
        id=txn.id,
        type=txn.type.value,
        amount=codec.to_amount(txn.amount),
        occurred_at=txn.occurred_at,
    )


@router.get("/cards", response_model=CardsOut)
def get_cards(components: Components = Depends(get_components)):
    return components.dashboard.cards()


@router.post("/cards/update")
def update_cards(
    payload: CardUpdateIn, components: Components = Depends(get_components)
):
    view = components.engine.apply(
        payload.type, payload.value, payload.is_incremental
    )
    return {"detail": "Data updated", "cards": view.as_dict(components.codec)}


@router.post("/cards/reset")
def reset_cards(components: Components = Depends(get_components)):
    view = components.resets.reset_all()
    return {"detail": "Data reset", "cards": view.as_dict(components.codec)}


@router.get("/cards/history", response_model=list[HistoryOut])
def get_history(components: Components = Depends(get_components)):
    return [
        _history_out(record, components.codec)
        for record in components.history.recent()
    ]


@router.get("/charts", response_model=ChartsOut)
def get_charts(components: Components = Depends(get_components)):
    return components.dashboard.charts()


@router.get("/transactions", response_model=list[TransactionOut])
def list_transactions(
    limit: int = 100, components: Components = Depends(get_components)
):
    return [
        _transaction_out(txn, components.codec)
        for txn in components.transactions.list(limit)
    ]


@router.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    payload: TransactionIn, components: Components = Depends(get_components)
):
    txn = components.transactions.record(
        payload.type, payload.amount, payload.timestamp
    )
    return _transaction_out(txn, components.codec)


@router.get("/health")
def health(components: Components = Depends(get_components)):
    if components.store.ping():
        return {"status": "ok"}
    return JSONResponse(status_code=503, content={"status": "unavailable"})


def _describe(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {error.get('msg')}" if loc else str(error.get("msg")))
    return "; ".join(parts) or "Invalid request"


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[LedgerStore] = None,
    supervisor: Optional[TaskSupervisor] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        resolved = settings or get_settings()
        components = Components(
            resolved,
            store or LedgerStore.from_settings(resolved),
            supervisor,
            clock,
        )
        components.start()
        app.state.components = components
        try:
            yield
        finally:
            components.stop()

    app = FastAPI(title="Household Ledger", lifespan=lifespan)
    app.include_router(router)

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def handle_bad_request(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": _describe(exc)})

    @app.exception_handler(StorageFailure)
    async def handle_storage_failure(request: Request, exc: StorageFailure):
        logger.error(f"request_failed: path={request.url.path} error={exc}")
        return JSONResponse(
            status_code=500, content={"detail": f"Storage failure: {exc}"}
        )

    return app


app = create_app()
