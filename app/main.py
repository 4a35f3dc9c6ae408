import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core import config
from app.core.results import ErrorCode, error_body

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(message)s"
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Eternal Gift API",
    version="1.0.0",
)

from app.middleware.security import SecurityLoggingMiddleware
app.add_middleware(SecurityLoggingMiddleware)

if config.CORS_ORIGINS:
    allow_origins = [origin.strip() for origin in config.CORS_ORIGINS.split(",") if origin.strip()]
else:
    allow_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(part) for part in err.get("loc", ()) if part != "body") for err in exc.errors()]
    return JSONResponse(
        status_code=400,
        content=error_body(ErrorCode.INVALID_INPUT, "Invalid request data", fields=fields),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(
        "unhandled_error request_id=%s method=%s path=%s",
        getattr(request.state, "request_id", None),
        request.method,
        request.url.path,
    )
    return JSONResponse(
        status_code=500,
        content=error_body(ErrorCode.UNEXPECTED, "Something went wrong. Please try again later."),
    )


@app.on_event("startup")
def startup():
    logger.info("Eternal Gift API starting up gateway=%s", config.PAYMENT_GATEWAY)


from app.models import registry  # noqa: F401,E402

from app.routes.auth import router as auth_router
from app.routes.user import router as user_router
from app.routes.checkout import router as checkout_router
from app.routes.subscription import router as subscription_router
from app.routes.gifts import router as gifts_router
from app.routes.cron import router as cron_router


app.include_router(auth_router)
app.include_router(user_router)
app.include_router(checkout_router)
app.include_router(subscription_router)
app.include_router(gifts_router)
app.include_router(cron_router)


@app.get("/health")
def health_check():
    return {
        "status": "ok",
        "service": "eternal-gift-backend",
        "version": "1.0.0",
    }
