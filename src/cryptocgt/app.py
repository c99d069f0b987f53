# app.py
"""
FastAPI host around the capital-gains engine.

This file wires together:
- the web server (FastAPI + Uvicorn)
- the CSV parsing service
- the database session and the SQL transaction repository
- the engine (compute per request, nothing cached between calls)

Endpoints:
  GET  /health             -> liveness check
  GET  /version            -> app version metadata
  POST /transactions       -> add one transaction for the caller
  GET  /transactions       -> list the caller's saved transactions
  POST /upload/csv         -> parse CSV and PREVIEW (no DB writes)
  POST /import/csv         -> parse CSV and SAVE to DB (dedup by hash)
  GET  /calculate          -> tax summary + audit digests
  GET  /export/summary.csv -> summary, asset breakdown and events as CSV
  GET  /export/summary.pdf -> same content as a PDF

The caller's ledger is picked by the X-User-Id header (no authentication here).

  Command to start the server: uvicorn cryptocgt.app:app --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Iterator, Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Response, UploadFile
from pydantic import ValidationError
from sqlalchemy.orm import Session

from .__about__ import __title__, __version__
from .audit_digest import build_manifest, compute_digests
from .calc_runner import run_for_user
from .config import DEFAULT_USER_ID, configure_logging, default_calc_config
from .csv_normalizer import parse_csv
from .db import SessionLocal, init_db
from .errors import AmountScaleError, ConfigurationError, UnmatchedDisposalError
from .models import TransactionRow
from .report_pdf import build_summary_pdf
from .reporting import summary_to_csv
from .repository import SqlTransactionRepository
from .schemas import CalcConfig, CSVPreviewResponse, ImportCSVResponse, TaxSummary, Transaction

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Configure logging and make sure tables exist (idempotent)."""
    configure_logging()
    init_db()
    logger.info("%s %s started", __title__, __version__)
    yield


app = FastAPI(title=__title__, version=__version__, lifespan=lifespan)


# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------

def get_session() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    return (x_user_id or DEFAULT_USER_ID).strip() or DEFAULT_USER_ID


def get_calc_config(
    annual_exemption: Optional[str] = Query(None, description="Annual exemption, e.g. 3000"),
    flat_tax_rate: Optional[str] = Query(None, description="Flat rate in [0, 1], e.g. 0.2"),
    matching_strategy: Optional[str] = Query(None, pattern="^(PURE_FIFO|UK_HMRC)$"),
    unmatched_policy: Optional[str] = Query(None, pattern="^(REJECT|IGNORE|ZERO_COST_BASIS)$"),
) -> CalcConfig:
    """Environment defaults, overridden by whatever the query string provides."""
    overrides = {
        k: v
        for k, v in {
            "annual_exemption": annual_exemption,
            "flat_tax_rate": flat_tax_rate,
            "matching_strategy": matching_strategy,
            "unmatched_policy": unmatched_policy,
        }.items()
        if v is not None
    }
    try:
        return CalcConfig(**{**default_calc_config().model_dump(), **overrides})
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))


def _compute(session: Session, user_id: str, cfg: CalcConfig, tax_year: Optional[str]) -> TaxSummary:
    repo = SqlTransactionRepository(session)
    try:
        return run_for_user(repo, user_id, cfg, tax_year=tax_year)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except UnmatchedDisposalError as e:
        raise HTTPException(status_code=409, detail=str(e))


# -----------------------------------------------------------------------------
# Health + version endpoints (simple sanity checks)
# -----------------------------------------------------------------------------
@app.get("/health")
def health() -> Dict[str, str]:
    """Quick liveness check for monitoring or manual testing."""
    return {"status": "ok"}


@app.get("/version")
def version() -> Dict[str, str]:
    """Show the backend name and version (useful to confirm deployments)."""
    return {"name": __title__, "version": __version__}


# -----------------------------------------------------------------------------
# Transactions
# -----------------------------------------------------------------------------
@app.post("/transactions", status_code=201)
def add_transaction(
    tx: Transaction,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_user_id),
) -> Dict[str, Any]:
    try:
        inserted = SqlTransactionRepository(session).add(user_id, tx)
    except AmountScaleError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"inserted": inserted, "transaction": tx}


@app.get("/transactions")
def list_transactions(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    asset: str | None = None,
    kind: str | None = Query(None, pattern="^(ACQUISITION|DISPOSAL)$"),
    session: Session = Depends(get_session),
    user_id: str = Depends(get_user_id),
) -> Dict[str, Any]:
    """
    Paginated, filterable list of the caller's transactions, newest first.
    """
    q = session.query(TransactionRow).filter(TransactionRow.user_id == user_id)
    if asset:
        q = q.filter(TransactionRow.asset == asset.strip().upper())
    if kind:
        q = q.filter(TransactionRow.kind == kind)

    total = q.count()
    rows = (
        q.order_by(TransactionRow.occurred_at.desc(), TransactionRow.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )

    items = []
    for r in rows:
        items.append({
            "id": r.id,
            "occurred_at": r.occurred_at.isoformat(timespec="seconds"),
            "kind": r.kind,
            "asset": r.asset,
            "quantity": str(r.quantity),
            "unit_price": str(r.unit_price),
            "fee": str(r.fee),
            "exchange": r.exchange,
            "memo": r.memo,
        })

    return {"meta": {"page": page, "page_size": page_size, "total": total}, "items": items}


# -----------------------------------------------------------------------------
# CSV endpoints
# -----------------------------------------------------------------------------
async def _read_csv_upload(file: UploadFile) -> bytes:
    filename = file.filename or ""
    if not filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Please upload a .csv file")
    data = await file.read()
    if len(data) == 0:
        raise HTTPException(status_code=400, detail="Empty file")
    return data


@app.post("/upload/csv", response_model=CSVPreviewResponse)
async def upload_csv(file: UploadFile = File(...)) -> Dict[str, Any]:
    """
    Accept a CSV upload, parse & validate it, and return a PREVIEW (no DB writes).

    Why preview? Users can see what's parsed and fix errors before saving.
    """
    data = await _read_csv_upload(file)
    try:
        valid_rows, errors = parse_csv(data)
    except UnicodeDecodeError as e:
        raise HTTPException(status_code=400, detail=f"CSV is not valid UTF-8: {e!s}")

    return {
        "filename": file.filename,
        "total_valid": len(valid_rows),
        "total_errors": len(errors),
        "preview_first_5": valid_rows[:5],
        "errors": errors[:5],
    }


@app.post("/import/csv", response_model=ImportCSVResponse)
async def import_csv(
    file: UploadFile = File(...),
    session: Session = Depends(get_session),
    user_id: str = Depends(get_user_id),
) -> Dict[str, Any]:
    """
    Parse a CSV upload and SAVE valid rows for the caller.
    Rows identical to an already stored transaction (same hash) are skipped.
    """
    data = await _read_csv_upload(file)
    try:
        valid_rows, errors = parse_csv(data)
    except UnicodeDecodeError as e:
        raise HTTPException(status_code=400, detail=f"CSV is not valid UTF-8: {e!s}")

    repo = SqlTransactionRepository(session)
    inserted = 0
    skipped_duplicates = 0
    for tx in valid_rows:
        try:
            added = repo.add(user_id, tx)
        except AmountScaleError as e:
            errors.append({"row_number": None, "error": str(e), "raw_row": tx.model_dump(mode="json")})
            continue
        if added:
            inserted += 1
        else:
            skipped_duplicates += 1

    logger.info(
        "Imported %s for user=%s: inserted=%d duplicates=%d errors=%d",
        file.filename, user_id, inserted, skipped_duplicates, len(errors),
    )
    return {
        "filename": file.filename,
        "inserted": inserted,
        "skipped_duplicates": skipped_duplicates,
        "skipped_errors": len(errors),
        "note": "Use GET /calculate to recompute the tax summary.",
    }


# -----------------------------------------------------------------------------
# Calculation + exports
# -----------------------------------------------------------------------------
@app.get("/calculate")
def calculate(
    tax_year: Optional[str] = Query(None, description="UK tax year label, e.g. 2024-25"),
    cfg: CalcConfig = Depends(get_calc_config),
    session: Session = Depends(get_session),
    user_id: str = Depends(get_user_id),
) -> Dict[str, Any]:
    """
    Recompute the caller's tax summary from scratch and return it with
    input/output digests, so two runs over the same ledger can be compared.
    """
    summary = _compute(session, user_id, cfg, tax_year)
    txs = SqlTransactionRepository(session).list_for_user(user_id)
    digests = compute_digests(build_manifest(txs, cfg, summary))
    return {
        "user_id": user_id,
        "tax_year": tax_year,
        "summary": summary.model_dump(mode="json"),
        **digests,
    }


@app.get("/export/summary.csv", summary="Download the tax summary as CSV")
def export_summary_csv(
    tax_year: Optional[str] = None,
    cfg: CalcConfig = Depends(get_calc_config),
    session: Session = Depends(get_session),
    user_id: str = Depends(get_user_id),
) -> Response:
    summary = _compute(session, user_id, cfg, tax_year)
    suffix = f"-{tax_year}" if tax_year else ""
    headers = {"Content-Disposition": f'attachment; filename="crypto-tax-summary{suffix}.csv"'}
    return Response(
        content=summary_to_csv(summary).encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers=headers,
    )


@app.get("/export/summary.pdf", summary="Download the tax summary as PDF")
def export_summary_pdf(
    tax_year: Optional[str] = None,
    cfg: CalcConfig = Depends(get_calc_config),
    session: Session = Depends(get_session),
    user_id: str = Depends(get_user_id),
) -> Response:
    summary = _compute(session, user_id, cfg, tax_year)
    pdf = build_summary_pdf(summary, tax_year=tax_year)
    suffix = f"-{tax_year}" if tax_year else ""
    headers = {"Content-Disposition": f'attachment; filename="crypto-tax-summary{suffix}.pdf"'}
    return Response(content=pdf, media_type="application/pdf", headers=headers)
