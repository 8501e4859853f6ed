import json
from contextlib import asynccontextmanager

import azure.functions as func
from fastapi import (
    FastAPI,
    HTTPException,
    Security,
    status,
    Request,
)
from fastapi.responses import JSONResponse
from azure.cosmos import exceptions as cosmos_exceptions
from fastapi.security import APIKeyHeader, APIKeyQuery

from inventory_ledger.config import get_settings
from inventory_ledger.db import close_client, get_async_store
from inventory_ledger.engine.projector import Projector
from inventory_ledger.exceptions import ConfigurationError, InvalidPayloadError
from inventory_ledger.logging_config import logger, tracer
from inventory_ledger.routes.inventory_route import router as inventory_router
from inventory_ledger.store.cosmos_store import ledger_event_from_document

API_KEY_NAME = "x-functions-key"
api_key_header_scheme = APIKeyHeader(
    name=API_KEY_NAME,
    auto_error=False,
    scheme_name="ApiKeyAuthHeader",
    description="API Key (x-functions-key) in header",
)
api_key_query_scheme = APIKeyQuery(
    name="code",
    auto_error=False,
    scheme_name="ApiKeyAuthQuery",
    description="API Key (code) in query string",
)


def _get_azure_function_key(request: Request) -> str | None:
    """
    Safely retrieves the Azure Function key from the request context.
    """
    try:
        if request.function_context and request.function_context.function_directory:
            return request.function_context.function_directory.get_function_key()
    except AttributeError:
        pass
    return None


async def get_api_key(
    api_key_from_header: str = Security(api_key_header_scheme),
    api_key_from_query: str = Security(api_key_query_scheme),
    req: Request = None,
):
    """Validate API key from header or query against Azure Function key if available."""
    client_api_key = api_key_from_header or api_key_from_query
    azure_expected_key = _get_azure_function_key(req)

    if azure_expected_key:
        if not client_api_key or client_api_key != azure_expected_key:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid API key.",
            )
    elif not client_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required.",
        )
    return client_api_key


# Validate configuration once at startup
settings = get_settings()
settings.require_cosmos_endpoint()


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    await close_client()


app = FastAPI(
    title="Inventory Ledger API",
    version="1.0.0",
    openapi_url="/api/openapi.json",
    dependencies=[Security(get_api_key)],
    lifespan=lifespan,
)


@app.exception_handler(cosmos_exceptions.CosmosHttpResponseError)
async def handle_cosmos_http_error(
    request: Request, exc: cosmos_exceptions.CosmosHttpResponseError
):
    with tracer.start_as_current_span("handle_cosmos_error") as span:
        span.set_attribute("error", True)
        span.set_attribute("error.type", "cosmos_http_error")
        span.set_attribute("error.status_code", exc.status_code)

        if exc.status_code in (401, 403):
            logger.warning(
                "Cosmos DB authentication error",
                extra={"status_code": exc.status_code, "path": request.url.path}
            )
            return JSONResponse(
                status_code=exc.status_code,
                content={
                    "detail": "Unauthorized" if exc.status_code == 401 else "Forbidden"
                },
            )

        logger.error(
            "Cosmos DB HTTP error",
            extra={
                "status_code": exc.status_code,
                "message": str(exc),
                "path": request.url.path
            }
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": str(exc)},
        )


@app.exception_handler(ConfigurationError)
async def handle_configuration_error(_: Request, exc: ConfigurationError):
    logger.error(f"Service misconfigured: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Service is not configured correctly."},
    )


@app.exception_handler(ValueError)
async def handle_value_error(_: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


app.include_router(inventory_router)

function_app = func.FunctionApp()


@function_app.route(route="{*route}", auth_level=func.AuthLevel.FUNCTION)
async def main(req: func.HttpRequest) -> func.HttpResponse:
    """Azure Functions entry-point routed through FastAPI."""
    with tracer.start_as_current_span("process_request") as span:
        span.set_attribute("http.method", req.method)
        span.set_attribute("http.url", str(req.url))
        span.set_attribute("http.route", req.route_params.get('route', ''))

        logger.info(
            f"Processing {req.method} request",
            extra={
                "method": req.method,
                "path": str(req.url),
                "route": req.route_params.get('route', '')
            }
        )

        try:
            response = await func.AsgiMiddleware(app).handle_async(req)
            span.set_attribute("http.status_code", response.status_code)
            return response
        except Exception as e:
            span.set_attribute("error", True)
            span.set_attribute("error.type", type(e).__name__)
            span.set_attribute("error.message", str(e))

            logger.error(
                f"Error processing request: {str(e)}",
                extra={"error_type": type(e).__name__}
            )
            return func.HttpResponse(
                body=str(e),
                status_code=500
            )


@function_app.retry(
    strategy="exponential_backoff",
    max_retry_count="5",
    minimum_interval="00:00:01",
    maximum_interval="00:01:00",
)
@function_app.cosmos_db_trigger(
    arg_name="documents",
    connection="CosmosInventoryConnection",
    database_name="%COSMOSDB_DATABASE%",
    container_name="%COSMOSDB_CONTAINER_LEDGER%",
    lease_container_name="leases",
    create_lease_container_if_not_exists=True,
    max_items_per_invocation=settings.projector_batch_size,
    feed_poll_delay=1000,
    start_from_beginning=False,
)
async def project_ledger(documents: func.DocumentList) -> None:
    """
    Change feed entry-point: folds new ledger entries into snapshots.
    A raised error fails the invocation so the batch is delivered again.
    """
    with tracer.start_as_current_span("project_ledger") as span:
        span.set_attribute("batch.size", len(documents))
        events = []
        for document in documents:
            raw = json.loads(document.to_json())
            try:
                events.append(ledger_event_from_document(raw))
            except InvalidPayloadError as e:
                # Not an inventory event; nothing to project
                logger.error(
                    f"Skipping unreadable ledger document: {e}",
                    extra={"document_id": raw.get("id")},
                )

        projector = Projector(
            await get_async_store(), max_concurrency=settings.projector_batch_size
        )
        await projector.handle_batch(events)
