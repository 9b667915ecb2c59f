import asyncio
import logging
import os
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo import ASCENDING

from config import get_settings
from database import DocumentStore
from errors import PartialFailure, RestaurantError, ValidationFailed
from payments import RazorpayGateway, get_gateway
from schemas import (
    COLLECTIONS,
    INVENTORY,
    MENU_CATEGORIES,
    MENU_ITEMS,
    ORDERS,
    PROFILES,
    USER_ROLES,
    InventoryItem,
    MenuCategory,
    MenuItem,
    OrderItem,
    OrderStatus,
    PriceModifier,
    StaffProfile,
    StaffRole,
    TableStatus,
    UserRole,
    utcnow,
)
from stats import collect_dashboard, inventory_summary, restock_level, table_summary
from voice import VoiceOrderParser
from workflow import WorkflowCoordinator

settings = get_settings()

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Restaurant Floor API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------------
# Dependencies
# ----------------------------
def get_store() -> DocumentStore:
    store = getattr(app.state, "store", None)
    if store is None:
        store = DocumentStore.from_settings(settings)
        app.state.store = store
    return store


def get_coordinator(store: DocumentStore = Depends(get_store)) -> WorkflowCoordinator:
    return WorkflowCoordinator(store)


def get_payment_gateway():
    gateway = getattr(app.state, "gateway", None)
    if gateway is None:
        gateway = get_gateway(settings)
        app.state.gateway = gateway
    return gateway


def get_voice_parser() -> VoiceOrderParser:
    parser = getattr(app.state, "voice_parser", None)
    if parser is None:
        parser = VoiceOrderParser(settings.bedrock_model_id, settings.aws_region)
        app.state.voice_parser = parser
    return parser


@app.exception_handler(RestaurantError)
async def restaurant_error_handler(request: Request, exc: RestaurantError):
    content: Dict[str, Any] = {"detail": exc.detail}
    if isinstance(exc, PartialFailure):
        content["completed_id"] = exc.completed_id
        content["pending_step"] = exc.pending_step
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=content)


# ----------------------------
# Root & health
# ----------------------------
@app.get("/")
def read_root():
    return {"message": "Restaurant Floor Backend Running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        store = get_store()
        response["database"] = "✅ Available"
        response["connection_status"] = "Connected"
        try:
            response["collections"] = store.db.list_collection_names()
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------------
# Menu Endpoints
# ----------------------------
@app.get("/menu")
def list_menu(available_only: bool = False, store: DocumentStore = Depends(get_store)):
    filt = {"is_available": True} if available_only else None
    return store.get_documents(MENU_ITEMS, filt, sort=[("name", ASCENDING)])


class MenuItemUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    category_id: Optional[str] = None
    image_url: Optional[str] = None
    variants: Optional[List[PriceModifier]] = None
    addons: Optional[List[PriceModifier]] = None
    is_available: Optional[bool] = None


@app.post("/menu", status_code=201)
def create_menu_item(item: MenuItem, store: DocumentStore = Depends(get_store)):
    item_id = store.create_document(MENU_ITEMS, item)
    return store.get_document(MENU_ITEMS, item_id)


@app.patch("/menu/{item_id}")
def update_menu_item(item_id: str, patch: MenuItemUpdate, store: DocumentStore = Depends(get_store)):
    update_data = patch.model_dump(exclude_unset=True)
    if not update_data:
        return {"updated": False}
    if not store.update_document(MENU_ITEMS, item_id, update_data):
        raise HTTPException(status_code=404, detail="Menu item not found")
    return store.get_document(MENU_ITEMS, item_id)


@app.delete("/menu/{item_id}")
def delete_menu_item(item_id: str, store: DocumentStore = Depends(get_store)):
    if not store.delete_document(MENU_ITEMS, item_id):
        raise HTTPException(status_code=404, detail="Menu item not found")
    return {"deleted": True}


@app.get("/menu/categories")
def list_categories(store: DocumentStore = Depends(get_store)):
    return store.get_documents(MENU_CATEGORIES, sort=[("sort_order", ASCENDING)])


@app.post("/menu/categories", status_code=201)
def create_category(category: MenuCategory, store: DocumentStore = Depends(get_store)):
    category_id = store.create_document(MENU_CATEGORIES, category)
    return store.get_document(MENU_CATEGORIES, category_id)


# ----------------------------
# Tables (floor plan)
# ----------------------------
class TableCreate(BaseModel):
    number: int = Field(..., ge=1)
    capacity: int = Field(..., ge=1)


class TableStatusUpdate(BaseModel):
    status: TableStatus


@app.get("/tables")
def list_tables(coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    return coordinator.tables.list()


@app.post("/tables", status_code=201)
def create_table(payload: TableCreate, coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    table_id = coordinator.tables.create(payload.number, payload.capacity)
    return coordinator.tables.get(table_id)


@app.patch("/tables/{table_id}/status")
def override_table_status(table_id: str, payload: TableStatusUpdate,
                          coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    return coordinator.override_table_status(table_id, payload.status)


@app.post("/tables/{table_id}/reserve")
def reserve_table(table_id: str, coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    return coordinator.reserve_table(table_id)


@app.post("/tables/{table_id}/free")
def free_table(table_id: str, coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    return coordinator.tables.free(table_id)


# ----------------------------
# Orders (POS -> Kitchen -> Billing)
# ----------------------------
class OrderPlaceItem(BaseModel):
    menu_item_id: str
    quantity: int = Field(..., ge=1)
    variants: List[str] = Field(default_factory=list)
    addons: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


class PlaceOrderRequest(BaseModel):
    table_id: str
    items: List[OrderPlaceItem]
    total_amount: Optional[float] = Field(None, ge=0, description="Client-side total, checked against the snapshot")
    notes: Optional[str] = None
    waiter_id: Optional[str] = None


class UpdateOrderStatus(BaseModel):
    status: OrderStatus


class MarkPaidRequest(BaseModel):
    payment_id: str = Field(..., min_length=1)


class PayRequest(BaseModel):
    currency: Optional[str] = None


def snapshot_items(store: DocumentStore, lines: List[OrderPlaceItem]) -> List[OrderItem]:
    """Copy name and price (base + chosen variants and addons) from the menu as it is now."""
    snapshot: List[OrderItem] = []
    for it in lines:
        menu_doc = store.get_document(MENU_ITEMS, it.menu_item_id)
        if not menu_doc or not menu_doc.get("is_available", True):
            raise ValidationFailed(f"Menu item not found or unavailable: {it.menu_item_id}")
        modifiers = {m["name"]: float(m.get("price", 0)) for m in menu_doc.get("variants", [])}
        addons = {m["name"]: float(m.get("price", 0)) for m in menu_doc.get("addons", [])}
        price = float(menu_doc.get("price", 0))
        for name in it.variants:
            if name not in modifiers:
                raise ValidationFailed(f"Unknown variant {name!r} for {menu_doc['name']}")
            price += modifiers[name]
        for name in it.addons:
            if name not in addons:
                raise ValidationFailed(f"Unknown addon {name!r} for {menu_doc['name']}")
            price += addons[name]
        snapshot.append(OrderItem(
            menu_item_id=menu_doc["id"],
            name=menu_doc["name"],
            quantity=it.quantity,
            price=round(price, 2),
            variants=it.variants,
            addons=it.addons,
            notes=it.notes,
        ))
    return snapshot


@app.post("/orders", status_code=201)
def place_order(payload: PlaceOrderRequest, coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    if not payload.items:
        raise ValidationFailed("No items provided")
    items = snapshot_items(coordinator.store, payload.items)
    total = round(sum(i.price * i.quantity for i in items), 2)
    if payload.total_amount is not None:
        total = payload.total_amount
    order_id = coordinator.create_order(
        payload.table_id, items, total, notes=payload.notes, waiter_id=payload.waiter_id
    )
    return coordinator.orders.get(order_id)


@app.get("/orders")
def list_orders(status: Optional[OrderStatus] = None, table_id: Optional[str] = None,
                coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    if status is None:
        return coordinator.orders.active_orders(table_id)
    filt: Dict[str, Any] = {"status": status}
    if table_id:
        filt["table_id"] = table_id
    docs = coordinator.store.get_documents(ORDERS, filt)
    # Sort newest first
    docs.sort(key=lambda d: d.get("created_at"), reverse=True)
    return docs


@app.get("/orders/{order_id}")
def get_order(order_id: str, coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    return coordinator.orders.get(order_id)


@app.patch("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: UpdateOrderStatus,
                        coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    return coordinator.advance_order(order_id, payload.status)


@app.post("/orders/{order_id}/bump")
def bump_order(order_id: str, coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    return coordinator.bump_order(order_id)


@app.post("/orders/{order_id}/pay")
def pay_order(order_id: str, payload: Optional[PayRequest] = None,
              coordinator: WorkflowCoordinator = Depends(get_coordinator),
              gateway=Depends(get_payment_gateway)):
    currency = (payload.currency if payload else None) or settings.payment_currency
    return coordinator.take_payment(order_id, gateway, currency)


@app.patch("/orders/{order_id}/paid")
def mark_order_paid(order_id: str, payload: MarkPaidRequest,
                    coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    return coordinator.mark_paid(order_id, payload.payment_id)


@app.get("/kitchen")
def kitchen_board(coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    return coordinator.orders.kitchen_board()


class RazorpayVerifyRequest(BaseModel):
    razorpay_payment_id: str
    razorpay_order_id: str
    razorpay_signature: str
    local_order_id: str


@app.post("/payments/razorpay/verify")
def verify_razorpay_payment(payload: RazorpayVerifyRequest,
                            coordinator: WorkflowCoordinator = Depends(get_coordinator),
                            gateway=Depends(get_payment_gateway)):
    if not isinstance(gateway, RazorpayGateway):
        raise HTTPException(status_code=400, detail="Razorpay not configured")
    if not gateway.verify_signature(payload.razorpay_order_id, payload.razorpay_payment_id,
                                    payload.razorpay_signature):
        raise HTTPException(status_code=400, detail="Invalid signature")
    order = coordinator.mark_paid(payload.local_order_id, payload.razorpay_payment_id)
    return {"status": "success", "message": "Payment verified", "order": order}


# ----------------------------
# Reservations
# ----------------------------
class ReservationCreate(BaseModel):
    table_id: str
    customer_name: str
    customer_phone: Optional[str] = None
    party_size: int
    reservation_time: datetime
    notes: Optional[str] = None


class ReservationUpdate(BaseModel):
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    party_size: Optional[int] = None
    reservation_time: Optional[datetime] = None
    status: Optional[str] = None
    notes: Optional[str] = None


@app.get("/reservations")
def list_reservations(table_id: Optional[str] = None,
                      coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    if table_id:
        return coordinator.reservations.for_table(table_id)
    return coordinator.reservations.list()


@app.get("/reservations/upcoming")
def upcoming_reservations(coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    upcoming = coordinator.reservations.upcoming()
    return {"count": len(upcoming), "reservations": upcoming}


@app.post("/reservations", status_code=201)
def create_reservation(payload: ReservationCreate, coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    reservation_id = coordinator.create_reservation(
        payload.table_id, payload.customer_name, payload.party_size, payload.reservation_time,
        customer_phone=payload.customer_phone, notes=payload.notes,
    )
    return coordinator.reservations.get(reservation_id)


@app.patch("/reservations/{reservation_id}")
def update_reservation(reservation_id: str, patch: ReservationUpdate,
                       coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    update_data = patch.model_dump(exclude_unset=True)
    if not update_data:
        return {"updated": False}
    return coordinator.update_reservation(reservation_id, update_data)


@app.post("/reservations/{reservation_id}/cancel")
def cancel_reservation(reservation_id: str, coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    return coordinator.cancel_reservation(reservation_id)


# ----------------------------
# Voice ordering
# ----------------------------
class VoiceParseRequest(BaseModel):
    transcript: str


@app.post("/voice/parse")
def parse_voice_order(payload: VoiceParseRequest,
                      coordinator: WorkflowCoordinator = Depends(get_coordinator),
                      parser: VoiceOrderParser = Depends(get_voice_parser)):
    items = coordinator.voice_order(payload.transcript, parser)
    return {"items": [i.model_dump() for i in items], "recognized": len(items)}


# ----------------------------
# Inventory
# ----------------------------
class InventoryUpdate(BaseModel):
    item_name: Optional[str] = None
    quantity: Optional[float] = Field(None, ge=0)
    unit: Optional[str] = None
    threshold_level: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None


@app.get("/inventory")
def list_inventory(store: DocumentStore = Depends(get_store)):
    return store.get_documents(INVENTORY, sort=[("item_name", ASCENDING)])


@app.get("/inventory/summary")
def inventory_overview(store: DocumentStore = Depends(get_store)):
    return inventory_summary(store.get_documents(INVENTORY, sort=[("item_name", ASCENDING)]))


@app.post("/inventory", status_code=201)
def add_inventory_item(item: InventoryItem, store: DocumentStore = Depends(get_store)):
    item_id = store.create_document(INVENTORY, item)
    return store.get_document(INVENTORY, item_id)


@app.patch("/inventory/{item_id}")
def update_inventory_item(item_id: str, patch: InventoryUpdate, store: DocumentStore = Depends(get_store)):
    update_data = patch.model_dump(exclude_unset=True)
    if not update_data:
        return {"updated": False}
    if not store.update_document(INVENTORY, item_id, update_data):
        raise HTTPException(status_code=404, detail="Inventory item not found")
    return store.get_document(INVENTORY, item_id)


@app.post("/inventory/{item_id}/restock")
def restock_inventory_item(item_id: str, store: DocumentStore = Depends(get_store)):
    item = store.get_document(INVENTORY, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Inventory item not found")
    store.update_document(INVENTORY, item_id, {"quantity": restock_level(item), "updated_at": utcnow()})
    return store.get_document(INVENTORY, item_id)


@app.delete("/inventory/{item_id}")
def delete_inventory_item(item_id: str, store: DocumentStore = Depends(get_store)):
    if not store.delete_document(INVENTORY, item_id):
        raise HTTPException(status_code=404, detail="Inventory item not found")
    return {"deleted": True}


# ----------------------------
# Staff
# ----------------------------
class StaffCreate(BaseModel):
    name: str
    email: str
    role: UserRole = "waiter"


class StaffRoleUpdate(BaseModel):
    role: UserRole


@app.get("/staff")
def list_staff(store: DocumentStore = Depends(get_store)):
    roles = {r["id"]: r.get("role") for r in store.get_documents(USER_ROLES)}
    return [
        {
            "id": p["id"],
            "name": p.get("name") or "Unknown",
            "email": p.get("email") or "No Email",
            "role": roles.get(p["id"]) or "waiter",
            "joined_at": p.get("joined_at"),
        }
        for p in store.get_documents(PROFILES, sort=[("name", ASCENDING)])
    ]


@app.post("/staff", status_code=201)
def add_staff(payload: StaffCreate, store: DocumentStore = Depends(get_store)):
    batch = store.batch()
    staff_id = batch.new_id()
    batch.set(PROFILES, staff_id, StaffProfile(name=payload.name, email=payload.email))
    batch.set(USER_ROLES, staff_id, StaffRole(role=payload.role))
    batch.commit()
    return {"id": staff_id, "name": payload.name, "email": payload.email, "role": payload.role}


@app.patch("/staff/{staff_id}/role")
def update_staff_role(staff_id: str, payload: StaffRoleUpdate, store: DocumentStore = Depends(get_store)):
    if not store.get_document(PROFILES, staff_id):
        raise HTTPException(status_code=404, detail="Staff member not found")
    store.batch().set(USER_ROLES, staff_id, StaffRole(role=payload.role)).commit()
    return {"id": staff_id, "role": payload.role}


@app.delete("/staff/{staff_id}")
def remove_staff(staff_id: str, store: DocumentStore = Depends(get_store)):
    # Removes access here only; the account itself lives with the auth provider.
    if not store.delete_document(PROFILES, staff_id):
        raise HTTPException(status_code=404, detail="Staff member not found")
    store.delete_document(USER_ROLES, staff_id)
    return {"deleted": True}


# ----------------------------
# Dashboard
# ----------------------------
@app.get("/stats/dashboard")
def dashboard(coordinator: WorkflowCoordinator = Depends(get_coordinator)):
    stats = collect_dashboard(coordinator.store)
    stats["tables"] = table_summary(coordinator.tables.list())
    stats["upcoming_reservations"] = len(coordinator.reservations.upcoming())
    return stats


# ----------------------------
# Live snapshot feeds
# ----------------------------
@app.websocket("/ws/{collection}")
async def snapshot_feed(websocket: WebSocket, collection: str, status: Optional[str] = None):
    if collection not in COLLECTIONS:
        await websocket.close(code=1008)
        return
    await websocket.accept()
    store = await run_in_threadpool(get_store)
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def on_snapshot(snapshot):
        loop.call_soon_threadsafe(queue.put_nowait, snapshot)

    async def pump():
        while True:
            snapshot = await queue.get()
            await websocket.send_json(jsonable_encoder(asdict(snapshot)))

    unsubscribe = await run_in_threadpool(
        store.subscribe, collection, {"status": status} if status else None, on_snapshot
    )
    sender = asyncio.create_task(pump())
    try:
        while True:
            # Clients only listen; reading is how a disconnect shows up.
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Snapshot feed for %s closed", collection)
    finally:
        unsubscribe()
        sender.cancel()
        for outcome in await asyncio.gather(sender, return_exceptions=True):
            if isinstance(outcome, Exception):
                logger.warning("Snapshot feed for %s stopped sending: %s", collection, outcome)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
