import html
import logging
import math
import os
import sys
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import psycopg2
import psycopg2.extras
from pydantic import BaseModel, EmailStr, constr
from dotenv import load_dotenv
from jose import JWTError, jwt
from passlib.hash import bcrypt

_project_root = Path(__file__).resolve().parents[1]
if str(_project_root) not in sys.path:
    sys.path.append(str(_project_root))

try:
    from backend import app_context
    from backend.mail import (
        EmailConfig,
        EmailProvider,
        create_email_provider,
        load_email_config,
    )
    from backend.app.entitlements import EntitlementError
    from backend.app.entitlements.repository import PostgresEntitlementRepository, managed_connection
    from backend.app.routes.account import router as account_router
    from backend.app.routes.payment import router as payment_router
    from backend.app.schemas.entitlements import ProfileResponse
    from backend.app.services.entitlements import get_entitlement_service
except ModuleNotFoundError as exc:
    if exc.name != "backend":
        raise
    import app_context  # type: ignore[no-redef]
    from mail import (  # type: ignore[no-redef]
        EmailConfig,
        EmailProvider,
        create_email_provider,
        load_email_config,
    )
    from app.entitlements import EntitlementError  # type: ignore[no-redef]
    from app.entitlements.repository import PostgresEntitlementRepository, managed_connection  # type: ignore[no-redef]
    from app.routes.account import router as account_router  # type: ignore[no-redef]
    from app.routes.payment import router as payment_router  # type: ignore[no-redef]
    from app.schemas.entitlements import ProfileResponse  # type: ignore[no-redef]
    from app.services.entitlements import get_entitlement_service  # type: ignore[no-redef]


load_dotenv()

def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))

DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "flora_db"),
    user=os.getenv("DB_USER", "flora_user"),
    password=os.getenv("DB_PASSWORD", "flora_pass"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)
DB_AUTO_MIGRATE = os.getenv("DB_AUTO_MIGRATE", "1").lower() in {"1", "true", "yes"}

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
JWT_EXP_MINUTES = int(os.getenv("JWT_EXP_MINUTES", "60"))  # default: 1 hour

CORS_ALLOW_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",")
    if origin.strip()
]

logger = logging.getLogger("flora")

EMAIL_CONFIG: EmailConfig = load_email_config()
EMAIL_SENDER = EMAIL_CONFIG.from_email

_email_provider: EmailProvider = create_email_provider(EMAIL_CONFIG)

USERS_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id SERIAL PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    created_utc TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE UNIQUE INDEX IF NOT EXISTS users_email_lower_idx ON users (LOWER(email));
"""


def get_email_provider() -> EmailProvider:
    return _email_provider


def set_email_provider(provider: EmailProvider) -> None:
    global _email_provider
    _email_provider = provider


def get_conn():
    return psycopg2.connect(**DB_CFG)


app_context.configure(get_conn=get_conn)


def send_contact_email(name: str, email: str, message: str) -> None:
    provider = get_email_provider()
    recipient = EMAIL_CONFIG.contact_recipient
    log_context = {
        **provider.describe(),
        "email_recipient": recipient,
        "email_reply_to": email,
        "email_type": "contact",
    }
    logger.info(
        "Dispatching contact email",
        extra={**log_context, "email_event": "contact.dispatch.start"},
    )
    safe_name = html.escape(name)
    safe_email = html.escape(email)
    safe_message = html.escape(message)
    subject = f"Flora Carbon: New message from {name}"
    text_body = f"Name: {name}\nUser Email: {email}\n\nMessage:\n{message}\n"
    html_body = (
        "<div style=\"font-family: Arial, sans-serif; border: 1px solid #eee; padding: 20px;\">"
        "<h2 style=\"color: #059669;\">New Website Message</h2>"
        f"<p><strong>Name:</strong> {safe_name}</p>"
        f"<p><strong>User Email:</strong> {safe_email}</p>"
        "<p><strong>Message:</strong></p>"
        f"<p style=\"background: #f4f4f4; padding: 10px;\">{safe_message}</p>"
        "</div>"
    )
    try:
        provider.send_email(recipient, subject, html_body, text_body, reply_to=email)
    except Exception:
        logger.exception(
            "Failed to send contact email",
            extra={**log_context, "email_event": "contact.dispatch.error"},
        )
        raise
    logger.info(
        "Contact email dispatched",
        extra={**log_context, "email_event": "contact.dispatch.success"},
    )


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    created_utc: datetime


class RegisterRequest(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=120)
    email: EmailStr
    password: constr(min_length=6, max_length=256)


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    token: str
    name: str
    email: str


class MessageResponse(BaseModel):
    msg: str


class ContactRequest(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=200)
    email: EmailStr
    message: constr(strip_whitespace=True, min_length=1, max_length=5000)


def create_access_token(*, subject: str, expires_delta: Optional[timedelta] = None) -> str:
    payload = {"sub": subject}
    if expires_delta is None:
        expires_delta = timedelta(minutes=JWT_EXP_MINUTES)
    expire = datetime.utcnow() + expires_delta
    payload["exp"] = expire
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


@contextmanager
def db_cursor():
    """Cursor on a fresh connection that is committed and closed on exit."""

    with managed_connection() as (conn, _managed):
        with conn.cursor(cursor_factory=psycopg2.extras.DictCursor) as cur:
            yield cur


def get_user_by_id(uid: int) -> Optional[UserOut]:
    with db_cursor() as cur:
        cur.execute("SELECT id, name, email, created_utc FROM users WHERE id = %s", (uid,))
        row = cur.fetchone()
    if not row:
        return None
    return UserOut(**dict(row))


def get_user_by_email(email: str):
    with db_cursor() as cur:
        cur.execute(
            "SELECT id, name, email, created_utc FROM users WHERE LOWER(email) = LOWER(%s)",
            (email,),
        )
        row = cur.fetchone()
    return dict(row) if row else None


def get_user_with_password(email: str):
    with db_cursor() as cur:
        cur.execute(
            "SELECT id, name, email, password_hash FROM users WHERE LOWER(email) = LOWER(%s)",
            (email.strip(),),
        )
        row = cur.fetchone()
    return dict(row) if row else None


def create_user(name: str, email: str, password: str) -> Optional[Dict[str, Any]]:
    """Insert a user; return ``None`` when the email is already registered."""

    password_hash = bcrypt.hash(password)
    try:
        with db_cursor() as cur:
            cur.execute(
                """
                INSERT INTO users (name, email, password_hash)
                VALUES (%s, %s, %s)
                RETURNING id, name, email, created_utc
                """,
                (name, email, password_hash),
            )
            row = cur.fetchone()
    except psycopg2.IntegrityError:
        return None
    return dict(row) if row else None


def extract_token(authorization: Optional[str], x_auth_token: Optional[str]) -> Optional[str]:
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    if x_auth_token and x_auth_token.strip():
        return x_auth_token.strip()
    return None


def resolve_user_from_token(token: str) -> Optional[UserOut]:
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
        subject = payload.get("sub")
        if subject is None:
            return None
        user_id = int(subject)
    except (JWTError, ValueError):
        return None

    return get_user_by_id(user_id)


def get_current_user(
    authorization: Optional[str] = Header(None),
    x_auth_token: Optional[str] = Header(None, alias="x-auth-token"),
) -> UserOut:
    token = extract_token(authorization, x_auth_token)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"msg": "No token, authorization denied"},
        )

    user = resolve_user_from_token(token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"msg": "Token is not valid"},
        )
    return user


def ensure_schema() -> None:
    with db_cursor() as cur:
        cur.execute(USERS_SCHEMA_SQL)
    PostgresEntitlementRepository().ensure_schema()


app = FastAPI(title="Flora Carbon API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials="*" not in CORS_ALLOW_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(account_router)
app.include_router(payment_router)


@app.exception_handler(EntitlementError)
async def handle_entitlement_error(request: Request, exc: EntitlementError) -> JSONResponse:
    logger.error(
        "Entitlement operation failed",
        extra={"error_code": exc.code, "path": request.url.path},
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": dict(exc.payload)})


@app.on_event("startup")
def run_migrations() -> None:
    if DB_AUTO_MIGRATE:
        ensure_schema()


@app.get("/")
def root():
    return {"message": "Flora Carbon backend is running successfully!"}


@app.get("/api/healthz")
@app.get("/health", include_in_schema=False)
def healthz():
    return {"ok": True}


@app.post("/api/auth/register", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
@app.post(
    "/api/auth/signup",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    include_in_schema=False,
)
def register(payload: RegisterRequest):
    email = payload.email.strip().lower()
    if get_user_by_email(email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"msg": "User already exists"})

    row = create_user(payload.name, email, payload.password)
    if row is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"msg": "User already exists"})

    get_entitlement_service().ensure_record(str(row["id"]))
    logger.info("User registered", extra={"user_id": row["id"]})
    return MessageResponse(msg="User registered successfully")


@app.post("/api/auth/login", response_model=LoginResponse)
@app.post("/api/auth/signin", response_model=LoginResponse, include_in_schema=False)
def login(payload: LoginRequest):
    user_row = get_user_with_password(payload.email)
    if not user_row or not bcrypt.verify(payload.password, user_row["password_hash"]):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"msg": "Invalid credentials"})

    token = create_access_token(subject=str(user_row["id"]))
    return LoginResponse(token=token, name=user_row["name"], email=user_row["email"])


@app.get("/api/auth/me", response_model=ProfileResponse)
@app.get("/api/auth/get", response_model=ProfileResponse, include_in_schema=False)
def read_current_user(current_user: UserOut = Depends(get_current_user)):
    view = get_entitlement_service().get_access(str(current_user.id))
    return ProfileResponse.from_view(name=current_user.name, email=current_user.email, view=view)


@app.post("/api/contact/send", response_model=MessageResponse)
def send_contact_message(payload: ContactRequest):
    try:
        send_contact_email(payload.name, payload.email, payload.message)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"msg": "Error sending email"},
        ) from exc
    return MessageResponse(msg="Success")

