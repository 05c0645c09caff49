import logging
import sqlite3
import sys
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from db_models import AddContactRequest, FinalResponse, IdentifyRequest
from db_setup import ContactStore, init_db
from resolver import EmptyIdentityError, identify as resolve_identity
from settings import get_settings

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO"):
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root.addHandler(handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    init_db(settings.db_name)
    logger.info("Contact reconciliation API started (db=%s, serialize_writes=%s)",
                settings.db_name, settings.serialize_writes)
    yield


app = FastAPI(
    title="Bitespeed Contact Reconciliation API",
    version="1.0.0",
    lifespan=lifespan,
)


def get_contact_store():
    store = ContactStore.connect(get_settings().db_name)
    try:
        yield store
    finally:
        store.close()


@app.exception_handler(sqlite3.Error)
async def storage_error_handler(request: Request, exc: sqlite3.Error) -> JSONResponse:
    logger.exception("Contact store failure on %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=503, content={"detail": "Contact store unavailable"})


@app.get("/")
async def root():
    return {"message": "Bitespeed API is up"}


@app.post("/identify", response_model=FinalResponse)
def identify(request: IdentifyRequest, store: ContactStore = Depends(get_contact_store)):
    try:
        contact = resolve_identity(store, request, serialize_writes=get_settings().serialize_writes)
    except EmptyIdentityError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    return FinalResponse(contact=contact)


@app.post("/add-contact")
def add_contact(request: AddContactRequest, store: ContactStore = Depends(get_contact_store)):
    """Add a raw contact row with all fields, for seeding and backfills"""
    if not request.email and not request.phoneNumber:
        raise HTTPException(status_code=400, detail="Either email or phoneNumber must be provided")

    contact_id = store.insert_contact(
        email=request.email,
        phone=request.phoneNumber,
        linked_id=request.linkedId,
        precedence=request.linkPrecedence,
        contact_id=request.id,
        created_at=request.createdAt,
    )
    logger.info("Seeded contact %d (%s)", contact_id, request.linkPrecedence.value)
    return {"message": "Contact added successfully", "contact_id": contact_id}


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
