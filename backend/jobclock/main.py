from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .config import Settings, settings as default_settings
from .database import build_engine, build_session_factory, db_session
from .domain import ClockingActivity, WorkOrder
from .errors import ClockingConflictError, StoreNotConfiguredError
from .schemas import (
    ActivityEditRequest,
    ClockInRequest,
    ClockingActivityResponse,
    NoteConvertRequest,
    WorkOrderCreateRequest,
    WorkOrderResponse,
    WorkOrderUpdateRequest,
)
from .store import WorkOrderStore

logger = logging.getLogger(__name__)

# Ticks are frequent; their state is written on shutdown instead.
_UNPERSISTED_EVENTS = {"tick", "loaded"}


def get_store(request: Request) -> WorkOrderStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise StoreNotConfiguredError("No work-order store is attached to this application")
    return store


def _order_out(order: WorkOrder) -> WorkOrderResponse:
    return WorkOrderResponse.model_validate(order)


def _activity_out(activity: ClockingActivity) -> ClockingActivityResponse:
    return ClockingActivityResponse.model_validate(activity)


def _persist_snapshot(store: WorkOrderStore, factory: sessionmaker) -> None:
    try:
        with db_session(factory) as session:
            store.persist(session)
    except SQLAlchemyError as exc:
        logger.warning("Persisting work orders failed: %s", exc)


def _attach_persistence(store: WorkOrderStore, factory: sessionmaker):
    def on_change(event: str, changed: WorkOrderStore) -> None:
        if event not in _UNPERSISTED_EVENTS:
            _persist_snapshot(changed, factory)

    return store.subscribe(on_change)


def create_app(
    app_settings: Optional[Settings] = None,
    *,
    store: Optional[WorkOrderStore] = None,
    session_factory: Optional[sessionmaker] = None,
) -> FastAPI:
    app_settings = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        work_store = store or WorkOrderStore.from_settings(app_settings)
        factory = session_factory
        if factory is None and app_settings.persist_changes:
            factory = build_session_factory(build_engine(app_settings.sqlite_path))
        unsubscribe = None
        if factory is not None:
            with db_session(factory) as session:
                work_store.load_from_db(session)
            unsubscribe = _attach_persistence(work_store, factory)
        app.state.store = work_store
        work_store.start_ticker()
        try:
            yield
        finally:
            work_store.stop_ticker()
            if unsubscribe is not None:
                unsubscribe()
                _persist_snapshot(work_store, factory)
            app.state.store = None

    app = FastAPI(title=app_settings.app_name, lifespan=lifespan)
    app.state.settings = app_settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://127.0.0.1:5173", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/orders", response_model=list[WorkOrderResponse])
    def list_orders(work_store: WorkOrderStore = Depends(get_store)) -> list[WorkOrderResponse]:
        return [_order_out(order) for order in work_store.orders]

    @app.post("/orders", response_model=WorkOrderResponse, status_code=status.HTTP_201_CREATED)
    def create_order(
        payload: WorkOrderCreateRequest,
        work_store: WorkOrderStore = Depends(get_store),
    ) -> WorkOrderResponse:
        order = work_store.add_work_order(
            order_id=payload.id,
            customer=payload.customer,
            machine=payload.machine,
            description=payload.description,
            technician_id=payload.technician_id,
            technician_name=payload.technician_name,
            planned_hours=payload.planned_hours,
            is_scheduled=payload.is_scheduled,
            order_number=payload.order_number,
        )
        return _order_out(order)

    @app.patch("/orders/{order_id}", response_model=WorkOrderResponse)
    def update_order(
        order_id: str,
        payload: WorkOrderUpdateRequest,
        work_store: WorkOrderStore = Depends(get_store),
    ) -> WorkOrderResponse:
        changes = payload.model_dump(exclude_unset=True)
        order = work_store.update_work_order(order_id, **changes)
        if order is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Work order not found")
        return _order_out(order)

    def _change_status(work_store: WorkOrderStore, order_id: str, action: str) -> WorkOrderResponse:
        order = work_store.update_work_order_status(order_id, action)
        if order is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Work order not found")
        return _order_out(order)

    @app.post("/orders/{order_id}/start", response_model=WorkOrderResponse)
    def start_order(order_id: str, work_store: WorkOrderStore = Depends(get_store)) -> WorkOrderResponse:
        return _change_status(work_store, order_id, "start")

    @app.post("/orders/{order_id}/stop", response_model=WorkOrderResponse)
    def stop_order(order_id: str, work_store: WorkOrderStore = Depends(get_store)) -> WorkOrderResponse:
        return _change_status(work_store, order_id, "stop")

    @app.get("/orders/by-number/{order_number}", response_model=list[WorkOrderResponse])
    def order_job_cards(
        order_number: str,
        work_store: WorkOrderStore = Depends(get_store),
    ) -> list[WorkOrderResponse]:
        return [_order_out(order) for order in work_store.get_order_job_cards(order_number)]

    @app.post("/notes/convert", response_model=WorkOrderResponse, status_code=status.HTTP_201_CREATED)
    def convert_note(
        payload: NoteConvertRequest,
        work_store: WorkOrderStore = Depends(get_store),
    ) -> WorkOrderResponse:
        order = work_store.convert_note_to_order(
            payload.text,
            estimated_hours=payload.estimated_hours,
            technician_id=payload.technician_id,
            technician_name=payload.technician_name,
        )
        return _order_out(order)

    @app.get("/activities", response_model=list[ClockingActivityResponse])
    def list_activities(work_store: WorkOrderStore = Depends(get_store)) -> list[ClockingActivityResponse]:
        return [_activity_out(activity) for activity in work_store.activities]

    @app.post("/clock/in", response_model=ClockingActivityResponse, status_code=status.HTTP_201_CREATED)
    def clock_in(
        payload: ClockInRequest,
        work_store: WorkOrderStore = Depends(get_store),
    ) -> ClockingActivityResponse:
        try:
            activity = work_store.clock_in(
                payload.order_id,
                payload.technician_id,
                payload.technician_name,
                payload.description,
                payload.is_scheduled,
                machine=payload.machine,
                customer=payload.customer,
            )
        except ClockingConflictError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        return _activity_out(activity)

    @app.post("/clock/out/{activity_id}", response_model=ClockingActivityResponse)
    def clock_out(activity_id: str, work_store: WorkOrderStore = Depends(get_store)) -> ClockingActivityResponse:
        activity = work_store.clock_out(activity_id)
        if activity is None:
            activity = next((a for a in work_store.activities if a.id == activity_id), None)
        if activity is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Activity not found")
        return _activity_out(activity)

    @app.patch("/activities/{activity_id}", response_model=ClockingActivityResponse)
    def edit_activity(
        activity_id: str,
        payload: ActivityEditRequest,
        work_store: WorkOrderStore = Depends(get_store),
    ) -> ClockingActivityResponse:
        if not payload.is_admin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin rights required")
        activity = work_store.edit_activity(
            activity_id,
            clock_in_hour=payload.clock_in_hour,
            clock_in_minute=payload.clock_in_minute,
            clock_out_hour=payload.clock_out_hour,
            clock_out_minute=payload.clock_out_minute,
            is_admin=payload.is_admin,
        )
        if activity is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Activity not found")
        return _activity_out(activity)

    @app.get("/technicians/{technician_id}/activities", response_model=list[ClockingActivityResponse])
    def technician_activities(
        technician_id: str,
        work_store: WorkOrderStore = Depends(get_store),
    ) -> list[ClockingActivityResponse]:
        return [_activity_out(activity) for activity in work_store.get_activities_for_technician(technician_id)]

    @app.get("/technicians/{technician_id}/active", response_model=ClockingActivityResponse)
    def technician_active(
        technician_id: str,
        work_store: WorkOrderStore = Depends(get_store),
    ) -> ClockingActivityResponse:
        activity = work_store.get_active_activity(technician_id)
        if activity is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active activity")
        return _activity_out(activity)

    return app


app = create_app()
