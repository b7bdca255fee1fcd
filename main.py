import logging
import os
import sys
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Union

from fastapi import Body, Depends, FastAPI, Path, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, StrictBool
from pymongo import ASCENDING
from pymongo.database import Database
from starlette.concurrency import run_in_threadpool

from config import ConfigError, env_log_level, load_settings
from database import (
    ALL_RESORTS, BOOKINGS, EARNINGS_SUMMARY, HOTEL_LIST, PROPERTY_DATA, USER_INFO, USERS, YEARLY_EARNINGS,
    connect, create_document, delete_document, ensure_indexes, get_db, get_document, get_documents,
    insert_if_absent, reconcile, reconcile_many, timestamp, update_document,
)
from errors import AppError, InvalidInput, NotFound, StoreUnavailable
from schemas import (
    Booking as BookingSchema, Email, NonEmptyStr, Property as PropertySchema, User as UserSchema,
    UserInfo as UserInfoSchema, YearlyEarning as YearlyEarningSchema,
)
from validation import check_field_names, parse_object_id, require_bool, require_email

logging.basicConfig(
    level=env_log_level(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # run() connects before serving; `uvicorn main:app` connects here instead.
    if getattr(app.state, "client", None) is None:
        settings = load_settings()
        client = await run_in_threadpool(connect, settings)
        app.state.client = client
        app.state.db = client[settings.database_name]
    await run_in_threadpool(ensure_indexes, app.state.db)

    yield

    app.state.client.close()
    app.state.client = None
    app.state.db = None
    logger.info("MongoDB connection closed.")


app = FastAPI(title="Vrbo Booking API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-origin",
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


@app.middleware("http")
async def access_log(request: Request, call_next):
    start = time.perf_counter()
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
        return response
    finally:
        client = request.client.host if request.client else "-"
        logger.info('%s "%s %s" %d %.1fms', client, request.method, request.url.path, status,
                    (time.perf_counter() - start) * 1000)


# ------- Error handlers -------

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.body())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()]
    return JSONResponse(status_code=400, content={"error": "Invalid request data", "details": details})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error: %s", exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"message": "Something went wrong!"})


# ------- Helpers -------

def check_update_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    if not fields:
        raise InvalidInput("No fields to update")
    check_field_names(fields, "update")
    if "_id" in fields:
        raise InvalidInput("_id cannot be changed")
    return fields


# ------- Request models -------

class RegisterRequest(BaseModel):
    uid: Optional[str] = None
    name: NonEmptyStr
    email: Email
    imageURL: Optional[str] = None


class RoleUpdateRequest(BaseModel):
    isAdmin: StrictBool


class RoleByEmailRequest(BaseModel):
    email: Email
    isAdmin: StrictBool


class EarningAmountRequest(BaseModel):
    amount: float


# ------- Routes -------

@app.get("/", response_class=PlainTextResponse)
def root():
    return "Vrbo server is running"


# Users

@app.get("/users")
def list_or_find_users(email: Optional[str] = None, db: Database = Depends(get_db)):
    if email is None:
        return get_documents(db, USERS)
    require_email(email)
    user = get_document(db, USERS, {"email": email})
    if user is None:
        raise NotFound("User not found")
    return user


@app.get("/all-users")
def list_users(db: Database = Depends(get_db)):
    return get_documents(db, USERS)


@app.post("/users", status_code=201)
def register_user(payload: RegisterRequest, response: Response, db: Database = Depends(get_db)):
    """Register on first sign-in; a known email returns the stored account."""
    now = timestamp()
    user = UserSchema(
        uid=payload.uid,
        name=payload.name,
        email=payload.email,
        imageURL=payload.imageURL or None,
        createdAt=now,
        lastLogin=now,
        isAdmin=False,
    )
    doc = user.model_dump(exclude={"age", "securityDeposit", "idNumber"})
    result = insert_if_absent(db[USERS], {"email": payload.email}, doc)
    if not result.created:
        existing = get_document(db, USERS, {"email": payload.email})
        response.status_code = 200
        return {"message": "User already exists", "user": existing}
    doc["_id"] = result.upserted_id
    return {"message": "User created successfully", "user": doc}


@app.get("/users/{email}")
def get_user(email: str, db: Database = Depends(get_db)):
    require_email(email)
    user = get_document(db, USERS, {"email": email})
    if user is None:
        raise NotFound("User not found")
    return user


@app.put("/users/{user_id}")
def update_user(user_id: str, fields: Dict[str, Any] = Body(...), db: Database = Depends(get_db)):
    oid = parse_object_id(user_id, "user ID")
    check_update_fields(fields)
    if "isAdmin" in fields:
        require_bool(fields["isAdmin"], "isAdmin")
    if "email" in fields:
        require_email(fields["email"])
    if not update_document(db, USERS, {"_id": oid}, fields):
        raise NotFound("User not found")
    return {"message": "User updated successfully"}


@app.patch("/users/{user_id}")
def update_user_role(user_id: str, payload: RoleUpdateRequest, db: Database = Depends(get_db)):
    oid = parse_object_id(user_id, "user ID")
    if not update_document(db, USERS, {"_id": oid}, {"isAdmin": payload.isAdmin}):
        raise NotFound("User not found")
    return {"message": "User role updated successfully"}


@app.patch("/update-user")
def update_user_role_by_email(payload: RoleByEmailRequest, db: Database = Depends(get_db)):
    if not update_document(db, USERS, {"email": payload.email}, {"isAdmin": payload.isAdmin}):
        raise NotFound("User not found")
    return {"message": "User role updated successfully"}


@app.delete("/users/{user_id}")
def delete_user(user_id: str, db: Database = Depends(get_db)):
    oid = parse_object_id(user_id, "user ID")
    if not delete_document(db, USERS, {"_id": oid}):
        raise NotFound("User not found")
    return {"message": "User deleted successfully"}


@app.get("/userInfo")
def list_user_info(db: Database = Depends(get_db)):
    return get_documents(db, USER_INFO)


@app.put("/userInfo")
def save_user_info(payload: UserInfoSchema, db: Database = Depends(get_db)):
    data = payload.model_dump(exclude_none=True)
    key = {"email": data.pop("email")}
    result = reconcile(db[USER_INFO], key, data)
    return {"message": "User info saved", "created": result.created, "affected": result.affected}


# Resorts / hotels

@app.get("/hotel-data")
def list_resorts(db: Database = Depends(get_db)):
    return get_documents(db, ALL_RESORTS)


@app.get("/hotel-data/{resort_id}")
def get_resort(resort_id: str, db: Database = Depends(get_db)):
    oid = parse_object_id(resort_id, "resort ID")
    resort = get_document(db, ALL_RESORTS, {"_id": oid})
    if resort is None:
        raise NotFound("Resort not found")
    return resort


@app.get("/hotel-list")
def list_hotels(db: Database = Depends(get_db)):
    return get_documents(db, HOTEL_LIST)


@app.post("/hotel-list", status_code=201)
def add_hotel(hotel: Dict[str, Any] = Body(...), db: Database = Depends(get_db)):
    if not hotel:
        raise InvalidInput("Hotel data is empty")
    check_field_names(hotel, "hotel")
    if "_id" in hotel:
        raise InvalidInput("_id cannot be set")
    _id = create_document(db, HOTEL_LIST, hotel)
    return {"message": "Hotel added successfully", "insertedId": _id}


# Bookings

@app.put("/bookings")
def save_booking(payload: BookingSchema, db: Database = Depends(get_db)):
    data = payload.model_dump()
    key = {"email": data.pop("email"), "resortId": data.pop("resortId")}
    result = reconcile(db[BOOKINGS], key, data)
    message = "Booking created" if result.created else "Booking updated"
    return {"message": message, "created": result.created, "affected": result.affected}


@app.get("/bookings")
def my_bookings(email: str = Query(...), db: Database = Depends(get_db)):
    require_email(email)
    return get_documents(db, BOOKINGS, {"email": email})


@app.get("/all-bookings")
def list_bookings(db: Database = Depends(get_db)):
    return get_documents(db, BOOKINGS)


@app.delete("/bookings/{booking_id}")
def delete_booking(booking_id: str, db: Database = Depends(get_db)):
    oid = parse_object_id(booking_id, "booking ID")
    if not delete_document(db, BOOKINGS, {"_id": oid}):
        raise NotFound("Booking not found")
    return {"message": "Booking deleted successfully"}


# Yearly earnings, one document per year

@app.get("/yearly-earnings")
def list_yearly_earnings(db: Database = Depends(get_db)):
    return get_documents(db, YEARLY_EARNINGS, sort=[("year", ASCENDING)])


@app.get("/yearly-earnings/{year}")
def get_yearly_earning(year: int = Path(..., ge=1, le=9999), db: Database = Depends(get_db)):
    earning = get_document(db, YEARLY_EARNINGS, {"year": year})
    if earning is None:
        raise NotFound(f"No earnings recorded for {year}")
    return earning


@app.put("/yearly-earnings/{year}")
def save_yearly_earning(payload: EarningAmountRequest, year: int = Path(..., ge=1, le=9999),
                        db: Database = Depends(get_db)):
    result = reconcile(db[YEARLY_EARNINGS], {"year": year}, {"amount": payload.amount})
    return {"message": "Yearly earnings updated successfully", "year": year,
            "created": result.created, "affected": result.affected}


@app.put("/yearly-earnings")
def save_yearly_earnings(payload: Union[YearlyEarningSchema, List[YearlyEarningSchema]] = Body(...),
                         db: Database = Depends(get_db)):
    """
    Store one {year, amount} pair or a list of them. Writes are applied one
    by one; on a store failure part way the response lists which years were
    stored and which were not.
    """
    entries = payload if isinstance(payload, list) else [payload]
    if not entries:
        raise InvalidInput("No earnings given")
    items = [({"year": e.year}, {"amount": e.amount}) for e in entries]
    results = reconcile_many(db[YEARLY_EARNINGS], items)
    return {
        "message": "Yearly earnings updated successfully",
        "results": [
            {"year": e.year, "created": r.created, "affected": r.affected}
            for e, r in zip(entries, results)
        ],
    }


# Yearly earnings, single document holding a year -> amount map

@app.get("/yearly-earnings-summary")
def get_earnings_summary(db: Database = Depends(get_db)):
    return get_document(db, EARNINGS_SUMMARY, {}) or {}


@app.put("/yearly-earnings-summary")
def save_earnings_summary(earnings: Dict[str, float] = Body(...), db: Database = Depends(get_db)):
    if not earnings:
        raise InvalidInput("Invalid earnings data")
    result = reconcile(db[EARNINGS_SUMMARY], {}, earnings)
    return {"message": "Yearly earnings updated successfully",
            "created": result.created, "affected": result.affected}


# Property listings

@app.post("/add-property", status_code=201)
def add_property(payload: PropertySchema, db: Database = Depends(get_db)):
    doc = payload.model_dump()
    check_field_names(doc, "property")
    if "_id" in doc:
        raise InvalidInput("_id cannot be set")
    doc["createdAt"] = timestamp()
    _id = create_document(db, PROPERTY_DATA, doc)
    doc["_id"] = _id
    return {"message": "Property added successfully", "insertedId": _id, "property": doc}


@app.get("/add-property")
def list_properties(db: Database = Depends(get_db)):
    return get_documents(db, PROPERTY_DATA)


@app.get("/test")
def test_database(request: Request):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    db = getattr(request.app.state, "db", None)
    if db is not None:
        response["database"] = "✅ Available"
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"

    response["db_user"] = "✅ Set" if os.getenv("DB_USER") else "❌ Not Set"
    response["db_pass"] = "✅ Set" if os.getenv("DB_PASS") else "❌ Not Set"
    return response


def run():
    import uvicorn

    try:
        settings = load_settings()
    except ConfigError as e:
        logger.error("%s", e)
        sys.exit(1)
    try:
        client = connect(settings)
    except StoreUnavailable:
        sys.exit(1)
    app.state.client = client
    app.state.db = client[settings.database_name]
    logger.info("Server is running on port %d", settings.port)
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
