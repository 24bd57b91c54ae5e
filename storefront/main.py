import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.config import build_backend, get_config
from storefront.database import Degraded, Outcome
from storefront.errors import CatalogError
from storefront.schemas import DeleteResponse
from storefront.store import ProductStore

logger = logging.getLogger(__name__)

CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
CORS_HEADERS = ["Content-Type", "Authorization"]
DEGRADED_HEADER = "X-Catalog-Degraded"

router = APIRouter()


def get_store(request: Request) -> ProductStore:
    return request.app.state.store


def _respond(outcome: Outcome, content: Any = None, status_code: int = 200) -> JSONResponse:
    """JSON response for one store operation, flagged when it only succeeded through the fallback store."""
    headers = {}
    if isinstance(outcome, Degraded):
        headers[DEGRADED_HEADER] = outcome.reason
    if content is None:
        content = outcome.data
    return JSONResponse(content=content, status_code=status_code, headers=headers)


async def add_cors_headers(request: Request, call_next):
    """Every response carries the CORS headers, whether or not the request sent an Origin."""
    response = await call_next(request)
    response.headers.setdefault("Access-Control-Allow-Origin", "*")
    response.headers.setdefault("Access-Control-Allow-Methods", ", ".join(CORS_METHODS))
    response.headers.setdefault("Access-Control-Allow-Headers", ", ".join(CORS_HEADERS))
    return response


@router.get("/test")
def test_backend(store: ProductStore = Depends(get_store)):
    """Check that the API is up and the storage backend is reachable."""
    response = {
        "message": "API is working",
        "backend": store.backend.name,
        "productCount": None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    try:
        response["productCount"] = len(store.list_products())
    except CatalogError as e:
        response["backendError"] = e.message
    return response


@router.options("/api/products")
def products_options():
    return Response(status_code=200)


@router.get("/api/products")
def list_products(store: ProductStore = Depends(get_store)):
    return _respond(store.list_result())


@router.get("/api/products/{product_id}")
def get_product(product_id: str, store: ProductStore = Depends(get_store)):
    return _respond(store.get_result(product_id))


@router.post("/api/products", status_code=201)
def create_product(payload: Dict[str, Any] = Body(...), store: ProductStore = Depends(get_store)):
    return _respond(store.create_result(payload), status_code=201)


@router.put("/api/products")
def update_product(payload: Dict[str, Any] = Body(...), store: ProductStore = Depends(get_store)):
    return _respond(store.update_result(payload.get("id"), payload))


@router.delete("/api/products")
def delete_product(
    product_id: Optional[str] = Query(None, alias="id"),
    store: ProductStore = Depends(get_store),
):
    outcome = store.delete_result(product_id)
    body = DeleteResponse(success=True, message="Product deleted successfully")
    return _respond(outcome, body.model_dump())


async def catalog_error_handler(request: Request, exc: CatalogError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for item in exc.errors():
        where = ".".join(str(loc) for loc in item.get("loc", ()))
        messages.append(f"{where}: {item.get('msg')}")
    return JSONResponse(status_code=400, content={"error": "Invalid request: " + "; ".join(messages)})


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


def create_app(store: Optional[ProductStore] = None) -> FastAPI:
    """Build the API around ``store``, or around the configured backend when none is given."""
    if store is None:
        store = ProductStore(build_backend(get_config()))

    app = FastAPI(title="Storefront Catalog API")
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=CORS_METHODS,
        allow_headers=CORS_HEADERS,
    )
    app.middleware("http")(add_cors_headers)
    app.add_exception_handler(CatalogError, catalog_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.include_router(router)

    logger.info(f"Catalog API using {store.backend.name} backend")
    return app
