"""GET /api/laundry/* - current status and analytics over the sample log."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from .aggregator import best_times, machine_analytics, weekly_times
from .source import EndpointListError

router = APIRouter()

NO_DATA = {"message": "No log data yet."}


@router.get("/api/laundry")
def laundry_status(request: Request, cached: str | None = None):
    refresher = request.app.state.refresher
    if cached == "1":
        return refresher.snapshot().to_response()

    # Live scrape, blocks until the cycle finishes
    try:
        snap = refresher.refresh()
    except EndpointListError:
        return JSONResponse(status_code=500, content={"error": "Failed to fetch laundry data."})
    return snap.to_response()


@router.get("/api/laundry/snapshot")
def laundry_snapshot(request: Request):
    return request.app.state.refresher.snapshot().to_response()


@router.get("/api/laundry/best-times")
def laundry_best_times(request: Request):
    store = request.app.state.store
    if not store.exists():
        return NO_DATA
    return {"bestTimes": best_times(store)}


@router.get("/api/laundry/machine-analytics")
def laundry_machine_analytics(request: Request, period: str | None = None):
    store = request.app.state.store
    if not store.exists():
        return NO_DATA
    return {"machineAnalytics": machine_analytics(store, period=period)}


@router.get("/api/laundry/weekly-times")
def laundry_weekly_times(request: Request, location: str | None = None,
                         type: str | None = None, status: str | None = None):
    store = request.app.state.store
    if not store.exists():
        return NO_DATA
    return {"weekStats": weekly_times(store, location=location, type_=type, status=status)}
