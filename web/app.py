from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, create_engine, func, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

# allow importing the parser from repo root
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from ctfs_statement_parser import CtfsStatementParser, InclusionStatus, ParseResult, ZERO  # noqa: E402
from logging_setup import get_logger  # noqa: E402
from pdf_text import ExtractionError, load_statement_text  # noqa: E402
from statement_config import AppConfig, load_config  # noqa: E402
from statement_output import date_to_json, money_to_json, result_to_dict  # noqa: E402


APP_DIR = Path(__file__).resolve().parent
CONFIG_PATH = APP_DIR / "config.json"
CONFIG_ENV_VAR = "STATEMENT_WEB_CONFIG"
UPLOAD_SUFFIXES = {".pdf": "application/pdf", ".txt": "text/plain"}

logger = get_logger("ctfs_statement.web")


class Base(DeclarativeBase):
    pass


class Statement(Base):
    __tablename__ = "statements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    original_filename: Mapped[str] = mapped_column(String(512), nullable=False)
    stored_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    statement_date: Mapped[str] = mapped_column(String(16), index=True, nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    uploaded_by: Mapped[str] = mapped_column(String(128), nullable=False)

    # Money columns hold fixed two-decimal strings so sums stay exact.
    declared_purchases_total: Mapped[str] = mapped_column(String(32), nullable=False)
    computed_purchases_total: Mapped[str] = mapped_column(String(32), nullable=False)
    difference: Mapped[str] = mapped_column(String(32), nullable=False)
    is_match: Mapped[bool] = mapped_column(Boolean, nullable=False)
    excluded_count: Mapped[int] = mapped_column(Integer, nullable=False)
    warnings_json: Mapped[str] = mapped_column(Text, nullable=False)
    parsed_json: Mapped[str] = mapped_column(Text, nullable=False)


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    statement_id: Mapped[int] = mapped_column(ForeignKey("statements.id"), index=True, nullable=False)
    statement_date: Mapped[str] = mapped_column(String(16), nullable=False)
    transaction_date: Mapped[str] = mapped_column(String(16), index=True, nullable=False)
    posted_date: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[str] = mapped_column(String(32), nullable=False)
    inclusion_status: Mapped[str] = mapped_column(String(16), index=True, nullable=False)
    start_line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    raw_text: Mapped[str] = mapped_column(Text, nullable=False)


@dataclass(frozen=True)
class User:
    username: str
    token: str
    role: str


class LoginRequest(BaseModel):
    token: str


def resolve_config_path(config_path: Optional[Path]) -> Path:
    if config_path is not None:
        return config_path
    env_path = os.environ.get(CONFIG_ENV_VAR, "").strip()
    return Path(env_path) if env_path else CONFIG_PATH


def resolve_repo_path(raw: Path) -> Path:
    return raw if raw.is_absolute() else REPO_ROOT / raw


def build_user_index(cfg: AppConfig) -> Dict[str, User]:
    users: Dict[str, User] = {}
    for entry in cfg.users:
        token = entry.token.strip()
        if not token:
            continue
        users[token] = User(username=entry.username, token=token, role=entry.role)
    return users


def ensure_admin(user: User) -> None:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="admin permission required")


def parse_iso_date_or_400(raw: str, field_name: str) -> str:
    value = (raw or "").strip()
    try:
        parsed = date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"invalid {field_name}, expected YYYY-MM-DD")
    return parsed.isoformat()


def parse_inclusion_status_or_400(raw: str) -> str:
    wanted = raw.strip().lower()
    for status in InclusionStatus:
        if status.value.lower() == wanted:
            return status.value
    allowed = ", ".join(s.value for s in InclusionStatus)
    raise HTTPException(status_code=400, detail=f"invalid inclusion_status, expected one of: {allowed}")


def statement_to_dict(st: Statement) -> dict:
    return {
        "id": st.id,
        "original_filename": st.original_filename,
        "statement_date": st.statement_date or None,
        "uploaded_at": st.uploaded_at.isoformat(),
        "uploaded_by": st.uploaded_by,
        "declared_purchases_total": st.declared_purchases_total,
        "computed_purchases_total": st.computed_purchases_total,
        "difference": st.difference,
        "is_match": st.is_match,
        "excluded_count": st.excluded_count,
    }


def transaction_row_to_dict(tx: Transaction) -> dict:
    return {
        "id": tx.id,
        "statement_id": tx.statement_id,
        "statement_date": tx.statement_date or None,
        "transaction_date": tx.transaction_date,
        "posted_date": tx.posted_date,
        "description": tx.description,
        "amount": tx.amount,
        "inclusion_status": tx.inclusion_status,
        "start_line_number": tx.start_line_number,
    }


def summarize_rows(st: Statement, rows: List[Transaction]) -> dict:
    included = ZERO
    excluded = ZERO
    credits = ZERO
    included_count = 0
    for tx in rows:
        amount = Decimal(tx.amount)
        if amount <= 0:
            credits += amount
        elif tx.inclusion_status == InclusionStatus.INCLUDE.value:
            included += amount
            included_count += 1
        else:
            excluded += amount
    return {
        "statement_id": st.id,
        "statement_date": st.statement_date or None,
        "declared_purchases_total": st.declared_purchases_total,
        "computed_purchases_total": st.computed_purchases_total,
        "difference": st.difference,
        "is_match": st.is_match,
        "included_total": money_to_json(included),
        "included_count": included_count,
        "excluded_total": money_to_json(excluded),
        "excluded_count": st.excluded_count,
        "credit_total": money_to_json(credits),
        "transaction_count": len(rows),
    }


def create_app(config_path: Optional[Path] = None) -> FastAPI:
    cfg = load_config(resolve_config_path(config_path))

    db_path = resolve_repo_path(cfg.database.sqlite_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    upload_dir = resolve_repo_path(cfg.storage.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        f"sqlite+pysqlite:///{db_path}", future=True, connect_args={"check_same_thread": False}
    )
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(engine)

    user_index = build_user_index(cfg)
    parser = CtfsStatementParser(cfg.parser)

    app = FastAPI(title="CTFS Statement Reconciliation API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    bearer = HTTPBearer(auto_error=False)

    def get_db() -> Session:
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    def get_current_user(
        credentials: HTTPAuthorizationCredentials = Depends(bearer),
    ) -> User:
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise HTTPException(status_code=401, detail="missing bearer token")
        token = credentials.credentials.strip()
        user = user_index.get(token)
        if user is None:
            raise HTTPException(status_code=401, detail="invalid token")
        return user

    def get_statement_or_404(db: Session, statement_id: int) -> Statement:
        st = db.get(Statement, statement_id)
        if not st:
            raise HTTPException(status_code=404, detail="statement not found")
        return st

    @app.get("/api/health")
    def health() -> dict:
        return {"ok": True}

    @app.post("/api/login")
    def login(payload: LoginRequest) -> dict:
        token = payload.token.strip()
        user = user_index.get(token)
        if not user:
            raise HTTPException(status_code=401, detail="invalid token")
        return {
            "username": user.username,
            "role": user.role,
            "token": user.token,
        }

    @app.get("/api/me")
    def me(user: User = Depends(get_current_user)) -> dict:
        return {
            "username": user.username,
            "role": user.role,
        }

    def store_statement(
        db: Session, stored_path: Path, filename: str, username: str
    ) -> Tuple[Statement, ParseResult]:
        try:
            text = load_statement_text(stored_path)
        except ExtractionError as e:
            raise HTTPException(status_code=400, detail=f"extraction failed: {e}")

        result = parser.parse(text, filename)
        statement_date = date_to_json(result.statement_date) or ""
        declared = money_to_json(result.declared_purchases_total)

        if statement_date:
            existing = db.scalars(
                select(Statement).where(
                    Statement.statement_date == statement_date,
                    Statement.declared_purchases_total == declared,
                )
            ).first()
            if existing is not None:
                raise HTTPException(
                    status_code=409,
                    detail={
                        "message": "duplicate statement detected",
                        "existing_statement_id": existing.id,
                        "statement_date": existing.statement_date,
                        "declared_purchases_total": existing.declared_purchases_total,
                    },
                )

        parsed = result_to_dict(result)
        st = Statement(
            original_filename=filename,
            stored_path=str(stored_path),
            statement_date=statement_date,
            uploaded_at=datetime.now(timezone.utc),
            uploaded_by=username,
            declared_purchases_total=declared,
            computed_purchases_total=money_to_json(result.computed_purchases_total),
            difference=money_to_json(result.difference),
            is_match=result.is_match,
            excluded_count=result.excluded_count,
            warnings_json=json.dumps(parsed["warnings"], ensure_ascii=False),
            parsed_json=json.dumps(parsed, ensure_ascii=False),
        )
        db.add(st)
        db.flush()

        for tx in result.transactions:
            db.add(
                Transaction(
                    statement_id=st.id,
                    statement_date=statement_date,
                    transaction_date=tx.transaction_date.isoformat(),
                    posted_date=tx.posted_date.isoformat(),
                    description=tx.description,
                    amount=money_to_json(tx.amount),
                    inclusion_status=tx.inclusion_status.value,
                    start_line_number=tx.start_line_number,
                    raw_text=tx.raw_text,
                )
            )
        db.commit()
        return st, result

    @app.post("/api/statements/upload")
    async def upload_statement(
        file: UploadFile = File(...),
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> dict:
        ensure_admin(user)

        filename = os.path.basename(file.filename or "")
        suffix = Path(filename).suffix.lower()
        if suffix not in UPLOAD_SUFFIXES:
            raise HTTPException(status_code=400, detail="only PDF or extracted text files are supported")

        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        stored_path = upload_dir / f"{stamp}_{filename}"

        with stored_path.open("wb") as out:
            while True:
                chunk = await file.read(1024 * 1024)
                if not chunk:
                    break
                out.write(chunk)

        # The stored file only survives when the statement row is committed.
        try:
            st, result = store_statement(db, stored_path, filename, user.username)
        except Exception:
            db.rollback()
            stored_path.unlink(missing_ok=True)
            raise
        statement_date = st.statement_date

        logger.info(
            "Stored statement %d (%s) uploaded by %s: %d transaction(s), match=%s",
            st.id,
            filename,
            user.username,
            len(result.transactions),
            result.is_match,
        )
        return {
            "statement_id": st.id,
            "statement_date": statement_date or None,
            "transactions_count": len(result.transactions),
            "warnings_count": len(result.warnings),
            "is_match": result.is_match,
        }

    @app.get("/api/statements")
    def list_statements(
        limit: int = Query(default=500, ge=1, le=2000),
        offset: int = Query(default=0, ge=0),
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> dict:
        total = db.scalar(select(func.count()).select_from(Statement)) or 0
        rows = db.scalars(select(Statement).order_by(Statement.id.desc()).offset(offset).limit(limit)).all()
        items = [statement_to_dict(st) for st in rows]
        returned = len(items)
        return {
            "items": items,
            "offset": offset,
            "limit": limit,
            "returned": returned,
            "total": total,
            "has_more": offset + returned < total,
        }

    @app.get("/api/statements/{statement_id}")
    def get_statement(
        statement_id: int,
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> dict:
        st = get_statement_or_404(db, statement_id)
        out = statement_to_dict(st)
        out["warnings"] = json.loads(st.warnings_json)
        out["parsed"] = json.loads(st.parsed_json)
        return out

    @app.get("/api/statements/{statement_id}/file")
    def get_statement_file(
        statement_id: int,
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> FileResponse:
        st = get_statement_or_404(db, statement_id)
        path = Path(st.stored_path)
        if not path.exists():
            raise HTTPException(status_code=404, detail="file not found")
        media_type = UPLOAD_SUFFIXES.get(path.suffix.lower(), "application/octet-stream")
        return FileResponse(path=str(path), filename=st.original_filename, media_type=media_type)

    @app.get("/api/statements/{statement_id}/reconciliation")
    def get_reconciliation(
        statement_id: int,
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> dict:
        st = get_statement_or_404(db, statement_id)
        rows = db.scalars(
            select(Transaction).where(Transaction.statement_id == statement_id).order_by(Transaction.id)
        ).all()
        return summarize_rows(st, list(rows))

    @app.get("/api/transactions")
    def list_transactions(
        statement_id: Optional[int] = Query(default=None),
        inclusion_status: Optional[str] = Query(default=None),
        tx_date_from: Optional[str] = Query(default=None),
        tx_date_to: Optional[str] = Query(default=None),
        q: Optional[str] = Query(default=None),
        limit: int = Query(default=500, ge=1, le=2000),
        offset: int = Query(default=0, ge=0),
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> dict:
        stmt = select(Transaction).order_by(Transaction.id.desc())

        date_from: Optional[str] = None
        date_to: Optional[str] = None
        if tx_date_from:
            date_from = parse_iso_date_or_400(tx_date_from, "tx_date_from")
        if tx_date_to:
            date_to = parse_iso_date_or_400(tx_date_to, "tx_date_to")
        if date_from and date_to and date_from > date_to:
            raise HTTPException(status_code=400, detail="tx_date_from must be <= tx_date_to")

        if statement_id is not None:
            stmt = stmt.where(Transaction.statement_id == statement_id)
        if inclusion_status:
            stmt = stmt.where(Transaction.inclusion_status == parse_inclusion_status_or_400(inclusion_status))
        if date_from:
            stmt = stmt.where(Transaction.transaction_date >= date_from)
        if date_to:
            stmt = stmt.where(Transaction.transaction_date <= date_to)
        if q:
            stmt = stmt.where(Transaction.description.ilike(f"%{q}%"))

        rows = db.scalars(stmt.offset(offset).limit(limit + 1)).all()
        has_more = len(rows) > limit
        out = [transaction_row_to_dict(tx) for tx in rows[:limit]]
        return {
            "items": out,
            "offset": offset,
            "limit": limit,
            "returned": len(out),
            "has_more": has_more,
        }

    return app
