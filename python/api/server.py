"""
FastAPI Postcode Hierarchy API Server

Provides REST API endpoints for drill-down navigation of the administrative
hierarchy, decomposed postcode search and the write operations that
maintain the reference data.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import logging
from datetime import datetime, timezone
from typing import Any, Generator, Optional

from fastapi import FastAPI, Depends, Query, Path
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from api.models import (
    CountryCreate,
    CountryUpdate,
    CountyCreate,
    DistrictCreate,
    WardCreate,
    OutcodeCreate,
    IncodeCreate,
    PostcodeCreate,
    CountryResponse,
    CountyResponse,
    DistrictResponse,
    WardResponse,
    CodeResponse,
    PostcodeResponse,
    MessageResponse,
    StatusResponse,
    HealthResponse,
    ErrorResponse,
)
from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    create_error_response,
    HostAllowlistMiddleware,
    RequestLoggingMiddleware,
)
from config_manager import get_config, ConfigManager, ConfigurationError
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    get_db_provider,
    init_db,
    close_db,
)
from database.postcode_service import (
    Found,
    NotFoundAt,
    LookupResult,
    HierarchyResolver,
    PostcodeCodec,
    PostcodeCatalog,
    PostcodeSearchEngine,
)
from database.mutation_gateway import MutationGateway
from lookup_client import PostcodeLookupClient
from security_logger import get_security_logger

CONFIG_PATH = os.getenv("CONFIG_PATH")
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))

_config: ConfigManager = get_config(CONFIG_PATH)

# Setup logging
logging.basicConfig(
    level=_config.logging.level.upper(), format=_config.logging.format
)
logger = logging.getLogger(__name__)

get_security_logger(log_dir=_config.logging.security_log_dir)

DEFAULT_LIMIT = _config.pagination.default_limit
MAX_LIMIT = _config.pagination.max_limit

# Global state
_startup_time: Optional[datetime] = None
_lookup_client: Optional[PostcodeLookupClient] = None

NOT_FOUND_RESPONSES = {404: {"model": ErrorResponse, "description": "Not found"}}
CONFLICT_RESPONSES = {
    404: {"model": ErrorResponse, "description": "Parent not found"},
    409: {"model": ErrorResponse, "description": "Already exists"},
    422: {"model": ErrorResponse, "description": "Validation error"},
}


# ============================================
# DEPENDENCIES
# ============================================

def get_config_instance() -> ConfigManager:
    """Dependency to get the config instance."""
    return _config


def get_session(
    provider: DatabaseSessionProvider = Depends(get_db_provider),
) -> Generator[Session, None, None]:
    """Dependency yielding a request-scoped read session."""
    yield from provider.get_session()


def get_lookup_client(
    config: ConfigManager = Depends(get_config_instance),
) -> PostcodeLookupClient:
    """Dependency to get the shared lookup client."""
    global _lookup_client
    if _lookup_client is None:
        _lookup_client = PostcodeLookupClient(config.lookup)
    return _lookup_client


def _respond(result: LookupResult) -> Any:
    """Turn a tagged read result into a payload or an error response."""
    if isinstance(result, Found):
        return result.payload
    if isinstance(result, NotFoundAt):
        return create_error_response(
            code=f"{result.level.name}_NOT_FOUND",
            message=result.message,
            status_code=404,
            field=result.level.value,
        )
    return create_error_response(
        code=result.reason,
        message=result.message or result.reason,
        status_code=400,
    )


# Create FastAPI application
app = FastAPI(
    title=_config.api.title,
    description="Hierarchical resolution and decomposed search of UK postcodes",
    version=_config.api.version,
    docs_url=_config.api.docs_url,
    redoc_url=_config.api.redoc_url,
    openapi_url="/api/openapi.json",
)

# Setup middleware (last added runs first)
app.add_middleware(HostAllowlistMiddleware, allowed_hosts=_config.api.allowed_hosts)
setup_cors(app, _config.api.cors_origins)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)


@app.on_event("startup")
def startup():
    """Initialize the database provider on startup."""
    global _startup_time

    logger.info("Starting Postcode Hierarchy API...")
    try:
        settings = DatabaseSettings.from_env()
        db_config = _config.database
        if db_config.url:
            settings.url = db_config.url
        settings.pool_size = db_config.pool_size
        settings.max_overflow = db_config.max_overflow

        provider = init_db(settings=settings, echo=db_config.echo)
        if db_config.create_tables_on_startup:
            provider.create_tables()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise

    _startup_time = datetime.now(timezone.utc)
    logger.info("API ready")


@app.on_event("shutdown")
def shutdown():
    """Cleanup on shutdown."""
    logger.info("Shutting down Postcode Hierarchy API...")
    close_db()


# ============================================
# SERVICE ROUTES
# ============================================

@app.get("/", response_model=StatusResponse, include_in_schema=False)
def root():
    """Service status."""
    return StatusResponse(status="Working...")


@app.get("/robots.txt", response_class=PlainTextResponse, include_in_schema=False)
def robots():
    """Disallow all crawlers."""
    return "User-agent: *\nDisallow: /"


@app.get("/health", response_model=HealthResponse, summary="Health check")
def health_check(
    provider: DatabaseSessionProvider = Depends(get_db_provider),
    config: ConfigManager = Depends(get_config_instance),
):
    """Return service and database health. Always returns HTTP 200."""
    database_ok = provider.health_check()

    uptime_seconds = None
    if _startup_time:
        uptime_seconds = int((datetime.now(timezone.utc) - _startup_time).total_seconds())

    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        database="ok" if database_ok else "unavailable",
        version=config.api.version,
        uptime_seconds=uptime_seconds,
    )


# ============================================
# SEARCH AND POSTCODE ROUTES
# ============================================

@app.get("/search/", summary="Search postcodes")
def search(
    query: str = Query("", max_length=32),
    querytype: str = Query("postcode", max_length=16),
    skip: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    session: Session = Depends(get_session),
):
    """Prefix search over outcodes and incodes, e.g. "sw1a 1aa" or "sw1"."""
    engine = PostcodeSearchEngine(session)
    return _respond(engine.search(query, querytype.lower(), skip=skip, limit=limit))


@app.get("/related/", responses=NOT_FOUND_RESPONSES, summary="Postcodes in the same ward")
def related(
    postcode_id: int = Query(..., alias="id", ge=1),
    skip: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    session: Session = Depends(get_session),
):
    """Other postcodes sharing the ward of postcode `id`."""
    catalog = PostcodeCatalog(session)
    return _respond(catalog.list_related(postcode_id, skip=skip, limit=limit))


@app.get(
    "/details/",
    responses={502: {"model": ErrorResponse, "description": "Upstream lookup failed"}},
    summary="Third-party postcode details",
)
def details(
    postcode: str = Query(..., min_length=1, max_length=16),
    client: PostcodeLookupClient = Depends(get_lookup_client),
):
    """Proxy the external detail API for a postcode, body unchanged."""
    return client.fetch_details(postcode)


@app.get("/lookup/{postcode}/", summary="Resolve a full postcode")
def lookup(
    postcode: str = Path(..., max_length=16),
    session: Session = Depends(get_session),
):
    """Split a full postcode (e.g. "SW1A 1AA") and resolve it."""
    return _respond(PostcodeCodec(session).resolve_full_postcode(postcode))


@app.get("/postcode/", summary="List outcodes")
def list_outcodes(
    skip: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    query: str = Query("", max_length=32),
    session: Session = Depends(get_session),
    config: ConfigManager = Depends(get_config_instance),
):
    """List outcodes; a query switches to capped substring matching."""
    catalog = PostcodeCatalog(session, query_cap=config.pagination.query_result_cap)
    return _respond(catalog.list_outcodes(skip=skip, limit=limit, query=query))


@app.get("/postcode/{outcode}/", responses=NOT_FOUND_RESPONSES, summary="List incodes")
def list_incodes(
    outcode: str = Path(..., max_length=8),
    skip: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    query: str = Query("", max_length=32),
    session: Session = Depends(get_session),
    config: ConfigManager = Depends(get_config_instance),
):
    """List incodes used with an outcode; a query matches across all incodes."""
    catalog = PostcodeCatalog(session, query_cap=config.pagination.query_result_cap)
    return _respond(catalog.list_incodes(outcode, skip=skip, limit=limit, query=query))


@app.get("/postcode/{outcode}/{incode}/", summary="Resolve a postcode")
def resolve_postcode(
    outcode: str = Path(..., max_length=8),
    incode: str = Path(..., max_length=8),
    session: Session = Depends(get_session),
):
    """Joined record for a postcode, or an empty list if it is not registered."""
    return _respond(PostcodeCodec(session).resolve_postcode(outcode, incode))


@app.get("/area/{code}/", summary="Outcodes by area prefix")
def list_by_area(
    code: str = Path(..., max_length=8),
    skip: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    session: Session = Depends(get_session),
):
    """Outcodes starting with the area code, e.g. "sw"."""
    return _respond(PostcodeCatalog(session).list_by_area_prefix(code, skip=skip, limit=limit))


# ============================================
# MUTATION ROUTES
# ============================================

@app.post(
    "/country/",
    response_model=CountryResponse,
    status_code=201,
    responses=CONFLICT_RESPONSES,
    summary="Create a country",
)
def create_country(
    request: CountryCreate,
    provider: DatabaseSessionProvider = Depends(get_db_provider),
):
    with provider.get_unit_of_work() as uow:
        country = MutationGateway(uow.session).add_country(request.name, request.iso)
        uow.commit()
        return CountryResponse.model_validate(country)


@app.put(
    "/country/{country_id}",
    response_model=CountryResponse,
    responses=CONFLICT_RESPONSES,
    summary="Update a country",
)
def update_country(
    request: CountryUpdate,
    country_id: int = Path(..., ge=1),
    provider: DatabaseSessionProvider = Depends(get_db_provider),
):
    """Merge-patch: omitted or empty fields keep their stored values."""
    with provider.get_unit_of_work() as uow:
        country = MutationGateway(uow.session).update_country(
            country_id, name=request.name, iso=request.iso
        )
        uow.commit()
        return CountryResponse.model_validate(country)


@app.delete(
    "/country/{country_id}",
    response_model=MessageResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Country not found"},
        409: {"model": ErrorResponse, "description": "Country still has counties"},
    },
    summary="Delete a country",
)
def delete_country(
    country_id: int = Path(..., ge=1),
    provider: DatabaseSessionProvider = Depends(get_db_provider),
):
    with provider.get_unit_of_work() as uow:
        MutationGateway(uow.session).delete_country(country_id)
        uow.commit()
    return MessageResponse(message=f"Successfully deleted country: {country_id}")


@app.post(
    "/county/",
    response_model=CountyResponse,
    status_code=201,
    responses=CONFLICT_RESPONSES,
    summary="Create a county",
)
def create_county(
    request: CountyCreate,
    provider: DatabaseSessionProvider = Depends(get_db_provider),
):
    with provider.get_unit_of_work() as uow:
        county = MutationGateway(uow.session).add_county(
            request.name, request.code, request.country_id
        )
        uow.commit()
        return CountyResponse.model_validate(county)


@app.post(
    "/district/",
    response_model=DistrictResponse,
    status_code=201,
    responses=CONFLICT_RESPONSES,
    summary="Create a district",
)
def create_district(
    request: DistrictCreate,
    provider: DatabaseSessionProvider = Depends(get_db_provider),
):
    with provider.get_unit_of_work() as uow:
        district = MutationGateway(uow.session).add_district(
            request.name, request.code, request.county_id
        )
        uow.commit()
        return DistrictResponse.model_validate(district)


@app.post(
    "/ward/",
    response_model=WardResponse,
    status_code=201,
    responses=CONFLICT_RESPONSES,
    summary="Create a ward",
)
def create_ward(
    request: WardCreate,
    provider: DatabaseSessionProvider = Depends(get_db_provider),
):
    with provider.get_unit_of_work() as uow:
        ward = MutationGateway(uow.session).add_ward(
            request.name, request.code, request.district_id
        )
        uow.commit()
        return WardResponse.model_validate(ward)


@app.post(
    "/outcode/",
    response_model=CodeResponse,
    status_code=201,
    responses=CONFLICT_RESPONSES,
    summary="Create an outcode",
)
def create_outcode(
    request: OutcodeCreate,
    provider: DatabaseSessionProvider = Depends(get_db_provider),
):
    with provider.get_unit_of_work() as uow:
        outcode = MutationGateway(uow.session).add_outcode(request.code)
        uow.commit()
        return CodeResponse.model_validate(outcode)


@app.post(
    "/incode/",
    response_model=CodeResponse,
    status_code=201,
    responses=CONFLICT_RESPONSES,
    summary="Create an incode",
)
def create_incode(
    request: IncodeCreate,
    provider: DatabaseSessionProvider = Depends(get_db_provider),
):
    with provider.get_unit_of_work() as uow:
        incode = MutationGateway(uow.session).add_incode(request.code)
        uow.commit()
        return CodeResponse.model_validate(incode)


@app.post(
    "/postcode/",
    response_model=PostcodeResponse,
    status_code=201,
    responses=CONFLICT_RESPONSES,
    summary="Create a postcode",
)
def create_postcode(
    request: PostcodeCreate,
    provider: DatabaseSessionProvider = Depends(get_db_provider),
):
    with provider.get_unit_of_work() as uow:
        postcode = MutationGateway(uow.session).add_postcode(
            request.outcode_id,
            request.incode_id,
            request.latitude,
            request.longitude,
            request.ward_id,
        )
        uow.commit()
        return PostcodeResponse.model_validate(postcode)


# ============================================
# HIERARCHY ROUTES (registered last: they match any path)
# ============================================

@app.get("/{country}/", responses=NOT_FOUND_RESPONSES, summary="Country with its counties")
def get_county(country: str, session: Session = Depends(get_session)):
    return _respond(HierarchyResolver(session).get_county(country))


@app.get("/{country}/{county}/", responses=NOT_FOUND_RESPONSES, summary="County with its districts")
def get_district(country: str, county: str, session: Session = Depends(get_session)):
    return _respond(HierarchyResolver(session).get_district(country, county))


@app.get(
    "/{country}/{county}/{district}/",
    responses=NOT_FOUND_RESPONSES,
    summary="District with its wards",
)
def get_ward(
    country: str,
    county: str,
    district: str,
    session: Session = Depends(get_session),
):
    return _respond(HierarchyResolver(session).get_ward(country, county, district))


@app.get(
    "/{country}/{county}/{district}/{ward}/",
    responses=NOT_FOUND_RESPONSES,
    summary="Ward with its postcodes",
)
def get_postcodes(
    country: str,
    county: str,
    district: str,
    ward: str,
    session: Session = Depends(get_session),
):
    return _respond(HierarchyResolver(session).get_postcodes(country, county, district, ward))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
