from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import socketio
from config import settings
from errors import UpstreamUnavailable
from firebase_client import lifespan
from routes import admin_routes, driver_routes, instance_routes, request_routes, trip_routes
from socket_events import register_socket_events
import logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    root_path="/rides",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")
app.state.sio = sio
register_socket_events(sio, app)

@app.exception_handler(UpstreamUnavailable)
async def upstream_unavailable_handler(request: Request, exc: UpstreamUnavailable):
    logger.error(f"Upstream unavailable on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable"})

@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})

@app.get("/health", include_in_schema=False)
async def health_check():
    return {"status": "ok"}

app.include_router(request_routes.router, tags=["Requests"])
app.include_router(instance_routes.router, tags=["Ride instances"])
app.include_router(trip_routes.router, tags=["Trips"])
app.include_router(driver_routes.router, tags=["Drivers"])
app.include_router(admin_routes.router, tags=["Admin"])

socket_app = socketio.ASGIApp(sio, other_asgi_app=app)

if __name__ == "__main__":
    import uvicorn
    print(f"PORT {settings.PORT}")
    print(f"DATABASE_URL {settings.DATABASE_URL}")
    uvicorn.run(socket_app, host="0.0.0.0", port=settings.PORT)
