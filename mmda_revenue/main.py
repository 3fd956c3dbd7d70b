from fastapi import FastAPI, Request, Response
from mmda_revenue.config import PaymentConfig, settings
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from redis.exceptions import RedisError
from mmda_revenue.logging_setup import setup_logging, TRACE_ID_CTX
import uuid
import sentry_sdk
from sentry_sdk.integrations.asgi import SentryAsgiMiddleware
from mmda_revenue.modules.auth.router import router as auth_router
from mmda_revenue.modules.payments.router import router as payments_router
from mmda_revenue.redis_client import redis_client
from mmda_revenue.services.payment_service import PaymentService


app = FastAPI(title=settings.APP_NAME)

# initialize logging and Sentry
setup_logging(level=settings.LOG_LEVEL.upper())
if settings.SENTRY_DSN:
    sentry_sdk.init(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT)
    app.add_middleware(SentryAsgiMiddleware)

# one immutable payment config per process, shared by every request
app.state.payment_service = PaymentService(PaymentConfig.from_settings(settings))


@app.middleware("http")
async def add_trace_id(request: Request, call_next):
    trace_id = request.headers.get("x-trace-id") or str(uuid.uuid4())
    token = TRACE_ID_CTX.set(trace_id)
    try:
        response = await call_next(request)
    finally:
        TRACE_ID_CTX.reset(token)
    response.headers["X-Trace-Id"] = trace_id
    return response


app.include_router(auth_router, prefix="/auth")
app.include_router(payments_router, prefix="/payments")


@app.get("/")
async def root():
    return {"app": settings.APP_NAME, "status": "ok"}


@app.get("/metrics")
async def metrics():
    content = generate_latest()
    return Response(content=content, media_type=CONTENT_TYPE_LATEST)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/ready")
async def ready():
    # simple readiness: check redis
    try:
        await redis_client.ping()
    except RedisError:
        return Response(status_code=503, content="redis unavailable")
    return {"status": "ready"}
