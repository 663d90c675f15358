from __future__ import annotations
import logging
import mimetypes
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pymongo.errors import PyMongoError

from .auth import AuthService, LoggedIn, Session
from .contacts import CONTACT_LIST, reply_link, submit_contact
from .dashboard import dashboard_stats
from .database import configure_logging, get_db, settings
from .errors import (AuthError, EmptyCartError, GatewayError, NotFoundError, SubmissionInProgressError,
                     ValidationError)
from .gateway import Gateway, MongoGateway
from .listing import ListParams, fetch_page
from .notifications import Notifier
from .orders import ORDER_LIST, OrderSubmitter, customer_orders, update_status
from .products import PRODUCT_LIST, CatalogLoader, ImageUpload, ProductManager
from .schemas import CONTACTS, PRODUCTS, USERS, Credentials, StatusUpdate
from .sessions import SessionStore, StorefrontSession

logger = logging.getLogger(__name__)

SESSION_COOKIE = "storefront_session"


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    yield


app = FastAPI(title="ZontropaTi Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------------------
# Dependencies
# -----------------------------

_gateway: Optional[Gateway] = None
_auth: Optional[AuthService] = None
sessions = SessionStore(max_sessions=settings.MAX_SESSIONS, idle_seconds=settings.SESSION_IDLE_MIN * 60)


async def get_gateway() -> Gateway:
    global _gateway
    if _gateway is None:
        _gateway = MongoGateway(await get_db(), settings.PUBLIC_BASE_URL)
    return _gateway


def _log_auth_change(session: Session) -> None:
    if isinstance(session, LoggedIn):
        logger.info("signed in: %s", session.email)
    else:
        logger.debug("signed out")


async def get_auth(gateway: Gateway = Depends(get_gateway)) -> AuthService:
    global _auth
    if _auth is None or _auth.gateway is not gateway:
        _auth = AuthService(gateway, settings.JWT_SECRET, settings.JWT_EXPIRES_MIN)
        _auth.on_auth_change(_log_auth_change)
    return _auth


async def get_visitor(request: Request, response: Response,
                      auth: AuthService = Depends(get_auth)) -> StorefrontSession:
    session_id, visitor = sessions.get(request.cookies.get(SESSION_COOKIE))
    visitor.auth.service = auth
    response.set_cookie(SESSION_COOKIE, session_id, httponly=True, samesite="lax")
    return visitor


async def find_visitor(request: Request,
                       auth: AuthService = Depends(get_auth)) -> Optional[StorefrontSession]:
    """The caller's existing session, without starting a new one."""
    visitor = sessions.peek(request.cookies.get(SESSION_COOKIE))
    if visitor is not None:
        visitor.auth.service = auth
    return visitor


def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


async def current_session(token: Optional[str] = Depends(bearer_token),
                          visitor: StorefrontSession = Depends(get_visitor)) -> Session:
    if token:
        return visitor.auth.service.get_current_user(token)
    # an expired or forged token logs the visitor out
    return visitor.auth.adopt(visitor.auth.token)


async def require_admin(session: Session = Depends(current_session)) -> LoggedIn:
    if not isinstance(session, LoggedIn):
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not session.is_admin:
        raise HTTPException(status_code=403, detail="Admin only")
    return session


def _reply(notifier: Notifier, **payload: Any) -> Dict[str, Any]:
    return {**payload, "notifications": [n.as_dict() for n in notifier.drain()]}


# -----------------------------
# Error mapping
# -----------------------------

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": "Validation failed", "errors": exc.errors})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    logger.info("not found: %s", exc)
    return JSONResponse(status_code=404, content={"detail": "Not found"})


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    return JSONResponse(status_code=401, content={"detail": str(exc)})


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    logger.error("gateway failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": "Something went wrong. Please try again."})


# -----------------------------
# Health & seed
# -----------------------------

@app.get("/")
async def root():
    return {"message": f"{settings.STORE_NAME} Storefront API running"}


@app.get("/test")
async def test():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": settings.DATABASE_NAME,
        "collections": [],
    }
    try:
        db = await get_db()
        response["collections"] = await db.list_collection_names()
        response["database"] = "✅ Connected"
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


SEED_PRODUCTS: List[Dict[str, Any]] = [
    {"name": "Digital Tire Pressure Gauge", "description": "Backlit display, reads PSI, BAR and KPA up to 150 PSI.", "price": 850, "category": "Diagnostics", "image_url": "https://images.unsplash.com/photo-1580273916550-e323be2ae537?q=80&w=1200&auto=format&fit=crop"},
    {"name": "OBD2 Scanner", "description": "Reads and clears engine fault codes on most cars built after 2001.", "price": 2450, "category": "Diagnostics", "image_url": "https://images.unsplash.com/photo-1619642751034-765dfdf7c58e?q=80&w=1200&auto=format&fit=crop"},
    {"name": "46 Piece Socket Set", "description": "Chrome vanadium sockets with quick-release ratchet in a carry case.", "price": 1890, "category": "Hand Tools", "image_url": "https://images.unsplash.com/photo-1581147036324-c17ac41dfa6c?q=80&w=1200&auto=format&fit=crop"},
    {"name": "Portable Air Compressor", "description": "12V inflator with auto shut-off and LED work light.", "price": 3200, "category": "Accessories", "image_url": "https://images.unsplash.com/photo-1487754180451-c456f719a1fc?q=80&w=1200&auto=format&fit=crop"},
    {"name": "Hydraulic Floor Jack", "description": "2 ton low-profile jack with safety overload valve.", "price": 4750, "category": "Lifting", "image_url": "https://images.unsplash.com/photo-1530046339160-ce3e530c7d2f?q=80&w=1200&auto=format&fit=crop"},
    {"name": "Jump Starter Cables", "description": "3 metre copper cables with insulated clamps.", "price": 650, "category": "Accessories", "image_url": "https://images.unsplash.com/photo-1625047509248-ec889cbff17f?q=80&w=1200&auto=format&fit=crop"},
]


@app.post("/seed")
async def seed(gateway: Gateway = Depends(get_gateway), auth: AuthService = Depends(get_auth)):
    seeded = 0
    if await gateway.count(PRODUCTS) == 0:
        await gateway.insert(PRODUCTS, SEED_PRODUCTS)
        seeded = len(SEED_PRODUCTS)
    admin_created = False
    if settings.ADMIN_EMAIL and settings.ADMIN_PASSWORD:
        existing = await gateway.select(USERS, {"email": settings.ADMIN_EMAIL.lower()}, limit=1)
        if not existing.rows:
            await auth.sign_up(settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD, is_admin=True)
            admin_created = True
    return {"seeded": seeded, "admin_created": admin_created}


# -----------------------------
# Storefront
# -----------------------------

@app.get("/products")
async def list_products(gateway: Gateway = Depends(get_gateway),
                        visitor: Optional[StorefrontSession] = Depends(find_visitor)):
    notifier = visitor.notifier if visitor else Notifier()
    products = await CatalogLoader(gateway, notifier).load()
    return _reply(notifier, items=[p.model_dump(mode="json") for p in products])


@app.get("/cart")
async def get_cart(visitor: StorefrontSession = Depends(get_visitor)):
    return _reply(visitor.notifier, **visitor.cart.as_dict(), form=visitor.form.values())


@app.post("/cart/items/{product_id}")
async def add_to_cart(product_id: str, gateway: Gateway = Depends(get_gateway),
                      visitor: StorefrontSession = Depends(get_visitor)):
    product = await CatalogLoader(gateway, visitor.notifier).get(product_id)
    visitor.cart.add(product)
    return _reply(visitor.notifier, **visitor.cart.as_dict())


class QuantityPayload(BaseModel):
    quantity: int


@app.put("/cart/items/{product_id}")
async def set_cart_quantity(product_id: str, payload: QuantityPayload,
                            visitor: StorefrontSession = Depends(get_visitor)):
    visitor.cart.set_quantity(product_id, payload.quantity)
    return _reply(visitor.notifier, **visitor.cart.as_dict())


@app.delete("/cart/items/{product_id}")
async def remove_from_cart(product_id: str, visitor: StorefrontSession = Depends(get_visitor)):
    visitor.cart.remove(product_id)
    return _reply(visitor.notifier, **visitor.cart.as_dict())


class CheckoutPayload(BaseModel):
    customer_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


@app.post("/orders")
async def place_order(payload: CheckoutPayload, response: Response,
                      gateway: Gateway = Depends(get_gateway),
                      visitor: StorefrontSession = Depends(get_visitor),
                      session: Session = Depends(current_session)):
    if not visitor.form.submitting:
        visitor.form.fill(**payload.model_dump())
    user_id = session.user_id if isinstance(session, LoggedIn) else None
    try:
        result = await OrderSubmitter(gateway, visitor.notifier).submit(visitor.cart, visitor.form, user_id)
    except EmptyCartError as e:
        response.status_code = 400
        return _reply(visitor.notifier, ok=False, detail=str(e))
    except SubmissionInProgressError as e:
        response.status_code = 409
        return _reply(visitor.notifier, ok=False, detail=str(e))
    if not result.ok:
        response.status_code = 502
    return _reply(
        visitor.notifier,
        ok=result.ok,
        order_ids=[o["id"] for o in result.orders],
        cart=visitor.cart.as_dict(),
        form=visitor.form.values(),
    )


@app.get("/orders/mine")
async def my_orders(page: int = Query(1, ge=1), gateway: Gateway = Depends(get_gateway),
                    session: Session = Depends(current_session)):
    if not isinstance(session, LoggedIn):
        raise HTTPException(status_code=401, detail="You need to be logged in to view orders.")
    result = await customer_orders(gateway, session.user_id, page, settings.PAGE_SIZE)
    return result.as_dict()


@app.post("/contacts")
async def send_contact(payload: Dict[str, Any], response: Response,
                       gateway: Gateway = Depends(get_gateway),
                       visitor: StorefrontSession = Depends(get_visitor)):
    row = await submit_contact(gateway, payload, visitor.notifier)
    if row is None:
        response.status_code = 502
    return _reply(visitor.notifier, ok=row is not None, id=row["id"] if row else None)


@app.get("/notifications")
async def notifications(visitor: Optional[StorefrontSession] = Depends(find_visitor)):
    return _reply(visitor.notifier if visitor else Notifier())


@app.get("/files/{bucket}/{path}")
async def public_file(bucket: str, path: str, gateway: Gateway = Depends(get_gateway)):
    data = await gateway.download_file(bucket, path)
    return Response(content=data, media_type=mimetypes.guess_type(path)[0] or "application/octet-stream")


# -----------------------------
# Auth
# -----------------------------

@app.post("/auth/signup")
async def signup(payload: Credentials, auth: AuthService = Depends(get_auth)):
    try:
        user = await auth.sign_up(payload.email, payload.password)
    except AuthError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"user": {"id": user.user_id, "email": user.email}, "message": "Sign up successful!"}


@app.post("/auth/login")
async def login(payload: Credentials, visitor: StorefrontSession = Depends(get_visitor)):
    user = await visitor.auth.login(payload.email, payload.password)
    visitor.notifier.success("Login successful!")
    return _reply(
        visitor.notifier,
        token=visitor.auth.token,
        user={"id": user.user_id, "email": user.email, "is_admin": user.is_admin},
    )


@app.post("/auth/logout")
async def logout(visitor: StorefrontSession = Depends(get_visitor)):
    visitor.auth.logout()
    return {"message": "Logged out"}


@app.get("/auth/me")
async def me(session: Session = Depends(current_session)):
    if isinstance(session, LoggedIn):
        return {"logged_in": True, "id": session.user_id, "email": session.email, "is_admin": session.is_admin}
    return {"logged_in": False, "is_admin": False}


# -----------------------------
# Admin
# -----------------------------

@app.get("/admin/stats")
async def admin_stats(response: Response, gateway: Gateway = Depends(get_gateway),
                      admin: LoggedIn = Depends(require_admin)):
    notifier = Notifier()
    stats = await dashboard_stats(gateway, notifier)
    if stats is None:
        response.status_code = 502
    return _reply(notifier, stats=stats)


@app.get("/admin/orders")
async def admin_orders(page: int = Query(1, ge=1), q: str = "",
                       product_id: Optional[str] = None, category: Optional[str] = None,
                       status: Optional[str] = None, order_id: Optional[str] = None,
                       gateway: Gateway = Depends(get_gateway),
                       admin: LoggedIn = Depends(require_admin)):
    params = ListParams(
        page=page, search=q, page_size=settings.PAGE_SIZE,
        filters={"product_id": product_id, "category": category, "status": status, "order_id": order_id},
    )
    return (await fetch_page(gateway, ORDER_LIST, params)).as_dict()


@app.patch("/admin/orders/{order_id}")
async def admin_update_order(order_id: str, payload: StatusUpdate, response: Response,
                             gateway: Gateway = Depends(get_gateway),
                             admin: LoggedIn = Depends(require_admin)):
    notifier = Notifier()
    ok = await update_status(gateway, order_id, payload.status, notifier)
    if not ok:
        response.status_code = 502
    return _reply(notifier, ok=ok, id=order_id, status=payload.status)


@app.get("/admin/products")
async def admin_products(page: int = Query(1, ge=1), q: str = "", category: Optional[str] = None,
                         gateway: Gateway = Depends(get_gateway),
                         admin: LoggedIn = Depends(require_admin)):
    params = ListParams(page=page, search=q, page_size=settings.PAGE_SIZE, filters={"category": category})
    return (await fetch_page(gateway, PRODUCT_LIST, params)).as_dict()


async def _image(upload: Optional[UploadFile]) -> Optional[ImageUpload]:
    if upload is None or not upload.filename:
        return None
    return ImageUpload(upload.filename, await upload.read(), upload.content_type)


@app.post("/admin/products")
async def admin_create_product(response: Response,
                               name: str = Form(""), description: str = Form(""),
                               price: str = Form(""), category: Optional[str] = Form(None),
                               image: Optional[UploadFile] = File(None),
                               gateway: Gateway = Depends(get_gateway),
                               admin: LoggedIn = Depends(require_admin)):
    notifier = Notifier()
    data = {"name": name, "description": description, "price": price, "category": category}
    row = await ProductManager(gateway, notifier).create(data, await _image(image))
    if row is None:
        response.status_code = 502
    return _reply(notifier, product=row)


@app.put("/admin/products/{product_id}")
async def admin_update_product(product_id: str, response: Response,
                               name: str = Form(""), description: str = Form(""),
                               price: str = Form(""), category: Optional[str] = Form(None),
                               image: Optional[UploadFile] = File(None),
                               gateway: Gateway = Depends(get_gateway),
                               admin: LoggedIn = Depends(require_admin)):
    notifier = Notifier()
    data = {"name": name, "description": description, "price": price, "category": category}
    row = await ProductManager(gateway, notifier).update(product_id, data, await _image(image))
    if row is None:
        response.status_code = 502
    return _reply(notifier, product=row)


@app.delete("/admin/products/{product_id}")
async def admin_delete_product(product_id: str, response: Response,
                               gateway: Gateway = Depends(get_gateway),
                               admin: LoggedIn = Depends(require_admin)):
    notifier = Notifier()
    ok = await ProductManager(gateway, notifier).delete(product_id)
    if not ok:
        response.status_code = 502
    return _reply(notifier, ok=ok, id=product_id)


@app.get("/admin/contacts")
async def admin_contacts(page: int = Query(1, ge=1), q: str = "",
                         gateway: Gateway = Depends(get_gateway),
                         admin: LoggedIn = Depends(require_admin)):
    params = ListParams(page=page, search=q, page_size=settings.PAGE_SIZE)
    return (await fetch_page(gateway, CONTACT_LIST, params)).as_dict()


@app.get("/admin/contacts/{contact_id}/reply")
async def admin_contact_reply(contact_id: str, gateway: Gateway = Depends(get_gateway),
                              admin: LoggedIn = Depends(require_admin)):
    contact = await gateway.get(CONTACTS, contact_id)
    return {"id": contact_id, "mailto": reply_link(contact, settings.STORE_NAME)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
