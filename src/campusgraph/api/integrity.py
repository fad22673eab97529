"""Data integrity admin API endpoints."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from ..models import EntityKind
from ..quality import IntegrityIssue, IntegrityReport, RepairReport, health_score
from ..quality.integrity import ENTITY_PENALTIES
from . import get_catalog_engine

router = APIRouter(prefix="/admin/data-integrity")


class IntegrityResponse(BaseModel):
    success: bool = True
    report: IntegrityReport


class RepairRequest(BaseModel):
    issues: list[IntegrityIssue]
    dry_run: bool = Field(default=True, alias="dryRun")

    model_config = ConfigDict(populate_by_name=True)


class RepairResponse(BaseModel):
    success: bool = True
    result: RepairReport
    dry_run: bool
    message: str


class EntityHealthResponse(BaseModel):
    success: bool = True
    entity_type: EntityKind
    entity_id: str
    health_score: int
    issues: list[IntegrityIssue]


@router.get("", response_model=IntegrityResponse)
async def check_integrity(
    sample_size: int | None = Query(None, alias="sampleSize", ge=1, le=10000),
    check_mismatches: bool = Query(True, alias="checkMismatches"),
    check_orphans: bool = Query(True, alias="checkOrphans"),
    check_duplicates: bool = Query(True, alias="checkDuplicates"),
    check_links: bool = Query(True, alias="checkLinks"),
    engine=Depends(get_catalog_engine),
):
    """Run an integrity sweep over a sample of the catalog."""
    report = await engine.integrity.check(
        sample_size=sample_size,
        check_mismatches=check_mismatches,
        check_orphans=check_orphans,
        check_duplicates=check_duplicates,
        check_links=check_links,
    )
    return IntegrityResponse(report=report)


@router.post("/repair", response_model=RepairResponse)
async def repair_issues(
    request: RepairRequest,
    engine=Depends(get_catalog_engine),
):
    """Apply safe repairs; dry run by default."""
    result = await engine.integrity.repair(request.issues, dry_run=request.dry_run)
    message = (
        "Dry run completed. No changes made. Set dryRun=false to apply fixes."
        if request.dry_run
        else "Repairs applied."
    )
    return RepairResponse(result=result, dry_run=request.dry_run, message=message)


@router.get("/health/{entity_type}/{entity_id}", response_model=EntityHealthResponse)
async def entity_health(
    entity_type: EntityKind,
    entity_id: str,
    engine=Depends(get_catalog_engine),
):
    """Health score and issues for one entity."""
    issues = await engine.integrity.validate_entity(entity_id, entity_type)
    return EntityHealthResponse(
        entity_type=entity_type,
        entity_id=entity_id,
        health_score=health_score(issues, ENTITY_PENALTIES),
        issues=issues,
    )
