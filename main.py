import logging
import time
import uuid

from dotenv import load_dotenv

load_dotenv(override=False)

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware

import config
from core.logging import configure_logging, request_id_var
from routers.games import api as games_api
from routers.notifications import api as notifications_api
from routers.payments import api as payments_api

log_level = configure_logging(environment=config.ENVIRONMENT, log_level=config.LOG_LEVEL)
logger = logging.getLogger()

# Initialize FastAPI app
app = FastAPI(
    title=config.APP_NAME,
    description="Round settlement and game lifecycle orchestration for survivor pools",
    version=config.APP_VERSION,
    swagger_ui_parameters={
        "docExpansion": "none",
        "tryItOutEnabled": False,
        "persistAuthorization": False,
        "displayRequestDuration": True,
        "filter": True,
    },
)


# Add security scheme
def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    openapi_schema = get_openapi(
        title=config.APP_NAME,
        version=config.APP_VERSION,
        description="""
        Survivor Pool API

        ## Authentication
        Player endpoints take a Descope session token. Orchestration endpoints
        also accept the service credential; `/internal` endpoints take the cron token.

        Format: `Authorization: Bearer <token>`
        """,
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "bearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
        }
    }
    openapi_schema["security"] = [{"bearerAuth": []}]
    app.openapi_schema = openapi_schema
    return openapi_schema


app.openapi = custom_openapi


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Short ID for readability
        request_id = str(uuid.uuid4())[:8]
        token = request_id_var.set(request_id)
        request.state.request_id = request_id

        start_time = time.time()
        query_str = f"?{request.url.query}" if request.query_params else ""
        logger.info(
            f"REQUEST | id={request_id} | method={request.method} | path={request.url.path}{query_str} | "
            f"ip={request.client.host if request.client else 'unknown'}"
        )

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            logger.error(
                f"ERROR | id={request_id} | method={request.method} | path={request.url.path} | "
                f"error={type(e).__name__}: {str(e)} | time={process_time:.3f}s",
                exc_info=True,
            )
            raise
        finally:
            request_id_var.reset(token)

        process_time = time.time() - start_time
        logger.info(
            f"RESPONSE | id={request_id} | method={request.method} | path={request.url.path} | "
            f"status={response.status_code} | time={process_time:.3f}s"
        )
        response.headers["X-Request-ID"] = request_id
        return response


# Add request logging middleware (before CORS so it logs all requests)
app.add_middleware(RequestLoggingMiddleware)


class PreflightCORSMiddleware(CORSMiddleware):
    """CORS for player-facing routes. Preflights answer 204; cron routes skip CORS."""

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope["path"].startswith("/internal/"):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)

    def preflight_response(self, request_headers):
        response = super().preflight_response(request_headers)
        if response.status_code != 200:
            return response
        headers = {key: value for key, value in response.headers.items() if key not in ("content-length", "content-type")}
        return Response(status_code=204, headers=headers)


app.add_middleware(
    PreflightCORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*", "Authorization", "Content-Type", "Accept", "Origin", "X-Requested-With"],
)


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are input errors (400), never retried."""
    logger.warning(f"Validation error on {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request body", "errors": jsonable_errors(exc)},
    )


app.include_router(games_api.router)
app.include_router(payments_api.router)
app.include_router(notifications_api.router)


@app.on_event("startup")
async def startup_event():
    logger.info(f"{config.APP_NAME} started ({config.ENVIRONMENT})")

    from fastapi.routing import APIRoute
    logger.info("=== Registered Routes ===")
    for route in app.routes:
        if isinstance(route, APIRoute):
            methods = ",".join(route.methods)
            logger.info(f"{methods:8} {route.path}")
    logger.info("=== End of Routes ===")


@app.get("/")
async def read_root():
    """
    Root endpoint to check if the server is running.
    """
    return {
        "status": "online",
        "message": f"Welcome to {config.APP_NAME}!",
        "version": config.APP_VERSION,
        "environment": config.ENVIRONMENT,
    }


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring.
    """
    return {"status": "healthy"}
