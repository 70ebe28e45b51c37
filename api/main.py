from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException, Request, Security, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from pve_anonymizer import (
    AnonymizationEngine,
    AnonymizationOptions,
    AnonymizationReport,
    AnonymizedData,
    DataShape,
    InvalidInput,
    PseudonymManager,
    RuleType,
    anonymize_any,
    create_processor,
)
from pve_anonymizer.logger import Log
from pve_anonymizer.settings import get_settings

# ── Auth / API key ───────────────────────────────────────────────────────────

_API_KEY = get_settings().api_key
_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(key: Annotated[str | None, Security(_api_key_header)]) -> None:
    if not _API_KEY:
        return  # auth disabled
    if key == _API_KEY:
        return
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key",
    )


# ── Pydantic models ──────────────────────────────────────────────────────────


class OptionsIn(BaseModel):
    enable_pseudonyms: bool | None = None
    preserve_structure: bool | None = None
    max_processing_time: int | None = Field(default=None, gt=0)
    hash_salt: str | None = None
    enabled_rules: list[RuleType] | None = None


class AnonymizeRequest(BaseModel):
    data: Any
    options: OptionsIn | None = None
    data_type: DataShape | None = None


class AnonymizeResponse(BaseModel):
    data: Any
    data_type: DataShape
    metadata: dict[str, Any]


class ReportResponse(AnonymizeResponse):
    report: dict[str, Any]


class DetectRequest(BaseModel):
    data: Any
    enabled_rules: list[RuleType] | None = None


class LocationOut(BaseModel):
    type: str
    path: str
    value: str
    start: int
    end: int


class DetectResponse(BaseModel):
    has_pii: bool
    detected_types: list[str]
    confidence: float
    locations: list[LocationOut]


class MappingsImport(BaseModel):
    mappings: list[dict[str, Any]]


# ── Engine lifecycle ─────────────────────────────────────────────────────────

_engine: AnonymizationEngine | None = None


@asynccontextmanager
async def lifespan(_: FastAPI):
    from api.db import init_db, load_mappings, save_mappings

    settings = get_settings()
    Log.configure(settings.log_level)
    init_db()

    global _engine
    _engine = AnonymizationEngine(pseudonyms=PseudonymManager(settings.hash_salt))
    loaded = _engine.import_mappings(load_mappings())
    Log.info(f"Anonymization engine ready, {loaded} stored mappings loaded")
    yield
    saved = save_mappings(_engine.export_mappings())
    Log.info(f"Persisted {saved} mappings on shutdown")
    _engine = None


def _get_engine() -> AnonymizationEngine:
    if _engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Anonymization engine not initialised",
        )
    return _engine


def _options(options: OptionsIn | None) -> AnonymizationOptions:
    base = AnonymizationOptions.from_settings(get_settings())
    if options is None:
        return base
    changes = options.model_dump(exclude_none=True)
    if "enabled_rules" in changes:
        changes["enabled_rules"] = frozenset(RuleType(r) for r in changes["enabled_rules"])
    return base.with_overrides(**changes)


async def _run(request: AnonymizeRequest) -> tuple[DataShape, AnonymizedData[Any]]:
    engine = _get_engine()
    options = _options(request.options)
    if request.data_type is None:
        return await anonymize_any(request.data, options, engine)
    if request.data_type is DataShape.GENERIC:
        return DataShape.GENERIC, await engine.anonymize(request.data, options)

    processor = create_processor(request.data_type, engine)
    if not processor.can_process(request.data):
        raise HTTPException(
            status_code=422,
            detail=f"Data does not look like {request.data_type.value} data",
        )
    return request.data_type, await processor.process(request.data, options)


# ── FastAPI app ──────────────────────────────────────────────────────────────

app = FastAPI(title="pve-anonymizer", lifespan=lifespan)

_CORS_ORIGINS = [o.strip() for o in get_settings().cors_origins.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InvalidInput)
async def invalid_input_handler(_: Request, exc: InvalidInput) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc)},
    )


# ── Routes ───────────────────────────────────────────────────────────────────


@app.get("/health")
async def health() -> dict[str, Any]:
    return {"status": "ok"}


@app.post(
    "/anonymize",
    response_model=AnonymizeResponse,
    dependencies=[Depends(verify_api_key)],
)
async def anonymize(request: AnonymizeRequest) -> AnonymizeResponse:
    shape, result = await _run(request)
    return AnonymizeResponse(
        data=result.data, data_type=shape, metadata=result.metadata.to_dict()
    )


@app.post("/detect", response_model=DetectResponse, dependencies=[Depends(verify_api_key)])
async def detect(request: DetectRequest) -> DetectResponse:
    options = _options(OptionsIn(enabled_rules=request.enabled_rules))
    result = await _get_engine().detect_pii(request.data, options)
    return DetectResponse(
        has_pii=result.has_pii,
        detected_types=result.detected_types,
        confidence=result.confidence,
        locations=[
            LocationOut(
                type=loc.type, path=loc.path, value=loc.value, start=loc.start, end=loc.end
            )
            for loc in result.locations
        ],
    )


@app.post("/report", response_model=ReportResponse, dependencies=[Depends(verify_api_key)])
async def report(request: AnonymizeRequest) -> ReportResponse:
    shape, result = await _run(request)
    summary = AnonymizationReport.from_result(request.data, result, shape.value)
    Log.info(
        f"Report {summary.id}: {shape.value} data, "
        f"{summary.pseudonyms_created} pseudonyms, {summary.processing_time_ms}ms"
    )
    return ReportResponse(
        data=result.data,
        data_type=shape,
        metadata=result.metadata.to_dict(),
        report=summary.to_dict(),
    )


@app.get("/stats", dependencies=[Depends(verify_api_key)])
async def stats() -> dict[str, Any]:
    from api.db import count_mappings

    engine = _get_engine()
    mapping_stats = engine.pseudonyms.get_stats()
    return {
        "engine": engine.get_stats().to_dict(),
        "mappings": {
            "totalMappings": mapping_stats.total_mappings,
            "mappingsByType": mapping_stats.mappings_by_type,
            "mappingsByCategory": mapping_stats.mappings_by_category,
            "storedMappings": count_mappings(),
        },
    }


@app.get("/mappings", dependencies=[Depends(verify_api_key)])
async def list_mappings() -> dict[str, Any]:
    return {"mappings": _get_engine().export_mappings()}


@app.post("/mappings", dependencies=[Depends(verify_api_key)])
async def import_mappings(request: MappingsImport) -> dict[str, Any]:
    from api.db import save_mappings

    engine = _get_engine()
    imported = engine.import_mappings(request.mappings)
    save_mappings(engine.export_mappings())
    Log.info(f"Imported {imported} of {len(request.mappings)} mapping records")
    return {"imported": imported, "total": len(engine.pseudonyms)}


@app.delete("/mappings", dependencies=[Depends(verify_api_key)])
async def clear_mappings() -> dict[str, Any]:
    from api.db import clear_mappings as clear_stored

    engine = _get_engine()
    cleared = len(engine.pseudonyms)
    engine.clear_mappings()
    clear_stored()
    Log.info(f"Cleared {cleared} mappings")
    return {"cleared": cleared}
