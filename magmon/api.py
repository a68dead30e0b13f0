from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from magmon import __version__
from magmon.config import MonitorConfig
from magmon.errors import MagMonitorError
from magmon.monitor import MagMonitor, build_monitor
from magmon.registry import SensorStatus, is_valid_address, normalize_address


def create_app(
    monitor: Optional[MagMonitor] = None,
    config: Optional[MonitorConfig] = None,
) -> FastAPI:
    """Build the HTTP front end.

    Without an explicit ``monitor`` a bleak-backed one is created when the
    application starts, from ``config`` or the ``MAGMON_*`` environment.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        active = monitor or build_monitor(config)
        app.state.monitor = active
        await active.start()
        try:
            yield
        finally:
            await active.close()

    app = FastAPI(title="magmon API", version=__version__, lifespan=lifespan)

    def _monitor(request: Request) -> MagMonitor:
        return request.app.state.monitor

    @app.get("/", response_class=PlainTextResponse)
    async def index():
        return "magmon"

    @app.get("/health")
    async def health():
        return {"status": "ok", "time": time.time()}

    @app.get("/devices")
    async def devices(request: Request):
        return _monitor(request).snapshot()

    @app.get("/{address}")
    async def device_status(address: str, request: Request):
        if not is_valid_address(address):
            raise HTTPException(status_code=400, detail="Invalid MAC address")
        monitor = _monitor(request)
        if not monitor.exists_device(address):
            await monitor.register_device(address)
        try:
            status = await monitor.get_latest_status(address)
        except MagMonitorError as exc:
            return JSONResponse(
                status_code=400,
                content={"error": str(exc), "status": SensorStatus.UNKNOWN.value},
            )
        return {"status": status.value}

    @app.delete("/{address}")
    async def remove_device(address: str, request: Request):
        if not is_valid_address(address):
            raise HTTPException(status_code=400, detail="Invalid MAC address")
        monitor = _monitor(request)
        if not monitor.exists_device(address):
            raise HTTPException(status_code=404, detail="Device is not registered")
        await monitor.unregister_device(address)
        return {"status": "unregistered", "address": normalize_address(address)}

    return app


app = create_app()
