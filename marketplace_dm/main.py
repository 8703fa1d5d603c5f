import os
import time
import asyncio
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pythonjsonlogger import jsonlogger
from .routes import router
from .core import redis_startup, init_metrics, shutdown_connections
from .errors import MessagingError
from .file_storage import UPLOAD_ROOT
from .ws_manager import push_notifier


def configure_logging() -> logging.Logger:
    """JSON lines on stderr for everything under the marketplace_dm logger"""
    log = logging.getLogger('marketplace_dm')
    if not log.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s'))
        log.addHandler(handler)
    log.setLevel(os.getenv('LOG_LEVEL', 'INFO').upper())
    return log


logger = configure_logging()

app = FastAPI(title="Marketplace Messaging API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv('CORS_ORIGINS', '*').split(','),
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)
app.include_router(router, prefix="/api")
# attachment URLs returned by the upload endpoints resolve here
app.mount("/uploads", StaticFiles(directory=UPLOAD_ROOT), name="uploads")

_background = []


@app.get('/healthz')
async def healthz():
    return {'status': 'ok'}


@app.exception_handler(MessagingError)
async def messaging_error_handler(request: Request, exc: MessagingError):
    logger.info({'msg': 'request_rejected', 'path': request.url.path, 'status': exc.status_code, 'detail': exc.message})
    return JSONResponse(status_code=exc.status_code, content={'detail': exc.message})


@app.middleware('http')
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    logger.info({
        'msg': 'request',
        'method': request.method,
        'path': request.url.path,
        'status': response.status_code,
        'ms': round((time.perf_counter() - started) * 1000, 1),
    })
    return response


@app.on_event("startup")
async def startup():
    # a missing Redis or a busy metrics port must not keep the API down
    try:
        await redis_startup()
    except Exception as e:
        logger.warning({'msg': 'redis_start_failed', 'error': str(e)})
    init_metrics()
    _background.append(asyncio.create_task(push_notifier.start_redis_listener()))


@app.on_event("shutdown")
async def shutdown():
    for task in _background:
        task.cancel()
    _background.clear()
    await shutdown_connections()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv('PORT', '8000')))
