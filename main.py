import logging
import os
import re
from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError

import config
import database
import media
from database import create_document, ensure_indexes, get_documents
from queries import QueryError, build_order_query, build_product_query, next_order_id
from schemas import (
    AdminLogin,
    AdminRegister,
    AdminUser,
    Category,
    Order,
    OrderCreate,
    OrderStatusUpdate,
    Product,
    ProductUpdate,
)
from security import AuthNotConfigured, create_token, decode_token, has_role, hash_password, verify_password

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Maktabati API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------- Helpers ----------------------

def get_db():
    if database.db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return database.db


def to_object_id(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid ID")


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    d.pop("passwordHash", None)
    return d


def with_categories(db, products: List[dict]) -> List[dict]:
    """Replace each product's category id with {id, name}."""
    ids = {p.get("category") for p in products if p.get("category") and ObjectId.is_valid(p["category"])}
    names = {}
    if ids:
        for c in db["category"].find({"_id": {"$in": [ObjectId(i) for i in ids]}}):
            names[str(c["_id"])] = c.get("name")
    out = []
    for p in products:
        item = serialize(p)
        cat_id = item.get("category")
        item["category"] = {"id": cat_id, "name": names.get(cat_id)} if cat_id else None
        out.append(item)
    return out


def name_pattern(name: str) -> dict:
    return {"$regex": f"^{re.escape(name.strip())}$", "$options": "i"}


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        message = err.get("msg", "Invalid value")
        messages.append(f"{location}: {message}" if location else message)
    return JSONResponse(status_code=400, content={"detail": ", ".join(messages)})


@app.exception_handler(AuthNotConfigured)
async def auth_not_configured_handler(request: Request, exc: AuthNotConfigured):
    logger.error("Admin token requested but JWT_SECRET is not set")
    return JSONResponse(status_code=500, content={"detail": "Auth not configured"})

# ---------------------- Schema endpoint ----------------------
@app.get("/schema")
def get_schema():
    return {
        "category": Category.model_json_schema(),
        "product": Product.model_json_schema(),
        "order": Order.model_json_schema(),
        "adminuser": AdminUser.model_json_schema(),
    }

# ---------------------- Health ----------------------
@app.get("/")
def root():
    return {"brand": "Maktabati", "status": "ok"}

@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": config.DATABASE_NAME or "❌ Not Set",
        "collections": []
    }
    try:
        if database.db is None:
            response["database"] = "❌ Not Connected"
        else:
            response["database"] = "✅ Connected"
            response["collections"] = database.db.list_collection_names()
    except Exception as e:
        response["database"] = f"⚠️ Error: {str(e)[:120]}"
    return response

@app.on_event("startup")
def startup_event():
    if not config.JWT_SECRET:
        logger.error("JWT_SECRET is not set; admin authentication is disabled")
    if database.db is not None:
        ensure_indexes(database.db)

# ---------------------- Auth utils ----------------------

def require_admin(authorization: Optional[str] = Header(default=None)) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="No token provided")
    claims = decode_token(authorization.split(" ", 1)[1])
    if not claims or not ObjectId.is_valid(claims.get("sub", "")):
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    admin = get_db()["adminuser"].find_one({"_id": ObjectId(claims["sub"])})
    if not admin or not admin.get("isActive", True):
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return admin


def require_role(role: str):
    def dependency(admin: dict = Depends(require_admin)) -> dict:
        if not has_role(admin.get("role", ""), role):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return admin
    return dependency


def public_user(admin: dict) -> dict:
    return {
        "id": str(admin["_id"]),
        "username": admin.get("username"),
        "email": admin.get("email"),
        "role": admin.get("role"),
        "lastLogin": admin.get("lastLogin"),
        "createdAt": admin.get("createdAt"),
    }

# ---------------------- Admin accounts ----------------------

@app.post("/api/admin/auth/register", status_code=201)
def register_admin(body: AdminRegister):
    db = get_db()
    username = body.username.strip().lower()
    email = body.email.lower()
    if db["adminuser"].find_one({"email": email}):
        raise HTTPException(status_code=409, detail="Email is already registered")
    if db["adminuser"].find_one({"username": username}):
        raise HTTPException(status_code=409, detail="Username is taken")
    user = AdminUser(username=username, email=email, password_hash=hash_password(body.password), role="admin")
    try:
        new_id = create_document("adminuser", user.to_document())
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Email or username is already registered")
    logger.info("Registered admin %s", email)
    admin = db["adminuser"].find_one({"_id": ObjectId(new_id)})
    return {"message": "Admin account created", "user": public_user(admin)}


@app.post("/api/admin/auth/login")
def admin_login(body: AdminLogin):
    db = get_db()
    admin = db["adminuser"].find_one({"email": body.email.lower()})
    if not admin:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not admin.get("isActive", True):
        raise HTTPException(status_code=401, detail="Account is disabled")
    if not verify_password(body.password, admin.get("passwordHash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    now = datetime.now(timezone.utc)
    db["adminuser"].update_one({"_id": admin["_id"]}, {"$set": {"lastLogin": now, "updatedAt": now}})
    admin["lastLogin"] = now
    token = create_token(str(admin["_id"]), admin["email"], admin.get("role", "admin"))
    return {"message": "Logged in", "user": public_user(admin), "token": token}


@app.get("/api/admin/auth/verify")
def verify_admin(admin=Depends(require_admin)):
    return {"user": public_user(admin), "authenticated": True}

# ---------------------- Categories ----------------------

@app.get("/api/categories")
def list_categories():
    get_db()
    cats = sorted(get_documents("category"), key=lambda c: c.get("name", "").lower())
    return {"categories": [serialize(c) for c in cats], "total": len(cats)}


@app.get("/api/admin/categories")
def admin_list_categories(admin=Depends(require_admin)):
    db = get_db()
    cats = [serialize(c) for c in db["category"].find().sort("name", 1)]
    for c in cats:
        c["productCount"] = db["product"].count_documents({"category": c["id"]})
    return {"categories": cats, "total": len(cats)}


@app.post("/api/admin/categories", status_code=201)
def create_category(body: Category, admin=Depends(require_admin)):
    db = get_db()
    if db["category"].find_one({"name": name_pattern(body.name)}):
        raise HTTPException(status_code=409, detail="Category with this name already exists")
    new_id = create_document("category", body.to_document())
    return {"message": "Category created", "category": serialize(db["category"].find_one({"_id": ObjectId(new_id)}))}


@app.put("/api/admin/categories/{cat_id}")
def update_category(cat_id: str, body: Category, admin=Depends(require_admin)):
    db = get_db()
    _id = to_object_id(cat_id)
    if not db["category"].find_one({"_id": _id}):
        raise HTTPException(status_code=404, detail="Category not found")
    if db["category"].find_one({"_id": {"$ne": _id}, "name": name_pattern(body.name)}):
        raise HTTPException(status_code=409, detail="Category with this name already exists")
    update = {**body.to_document(), "updatedAt": datetime.now(timezone.utc)}
    db["category"].update_one({"_id": _id}, {"$set": update})
    return {"message": "Category updated", "category": serialize(db["category"].find_one({"_id": _id}))}


@app.delete("/api/admin/categories/{cat_id}")
def delete_category(cat_id: str, admin=Depends(require_admin)):
    db = get_db()
    _id = to_object_id(cat_id)
    if not db["category"].find_one({"_id": _id}):
        raise HTTPException(status_code=404, detail="Category not found")
    in_use = db["product"].count_documents({"category": cat_id})
    if in_use > 0:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot delete category. It is being used by {in_use} product(s). Reassign or delete these products first.",
        )
    db["category"].delete_one({"_id": _id})
    return {"message": "Category deleted"}

# ---------------------- Products ----------------------

def _run_product_query(db, active_only: bool, **params):
    try:
        plan = build_product_query(active_only=active_only, **params)
    except QueryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    docs, pagination = plan.execute(db["product"])
    return {"products": with_categories(db, docs), "pagination": pagination.to_dict("totalProducts")}


@app.get("/api/products")
def list_products(
    search: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = Query(default=None, alias="minPrice"),
    max_price: Optional[float] = Query(default=None, alias="maxPrice"),
    sort_by: str = Query(default="createdAt", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
    page: int = 1,
    limit: int = 12,
):
    return _run_product_query(
        get_db(), True, search=search, category=category, min_price=min_price, max_price=max_price,
        sort_by=sort_by, sort_order=sort_order, page=page, limit=limit,
    )


@app.get("/api/products/featured")
def featured_products():
    db = get_db()
    docs = list(
        db["product"].find({"isActive": True, "images.0": {"$exists": True}}).sort("createdAt", -1).limit(12)
    )
    products = with_categories(db, docs)
    return {"products": products, "total": len(products)}


@app.get("/api/products/{pid}")
def get_product(pid: str):
    db = get_db()
    p = db["product"].find_one({"_id": to_object_id(pid)})
    if not p or not p.get("isActive", True):
        raise HTTPException(status_code=404, detail="Product not found")
    return {"product": with_categories(db, [p])[0]}


def _check_category(db, cat_id: str) -> None:
    if not ObjectId.is_valid(cat_id) or not db["category"].find_one({"_id": ObjectId(cat_id)}):
        raise HTTPException(status_code=400, detail="Category not found")


@app.get("/api/admin/products")
def admin_list_products(
    search: Optional[str] = None,
    category: Optional[str] = None,
    sort_by: str = Query(default="createdAt", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
    page: int = 1,
    limit: int = 50,
    admin=Depends(require_admin),
):
    return _run_product_query(
        get_db(), False, search=search, category=category,
        sort_by=sort_by, sort_order=sort_order, page=page, limit=limit,
    )


@app.post("/api/admin/products", status_code=201)
def create_product(body: Product, admin=Depends(require_admin)):
    db = get_db()
    _check_category(db, body.category)
    new_id = create_document("product", body.to_document())
    logger.info("Product %s created by %s", new_id, admin.get("email"))
    return {"message": "Product created", "product": with_categories(db, [db["product"].find_one({"_id": ObjectId(new_id)})])[0]}


@app.get("/api/admin/products/{pid}")
def admin_get_product(pid: str, admin=Depends(require_admin)):
    db = get_db()
    p = db["product"].find_one({"_id": to_object_id(pid)})
    if not p:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"product": with_categories(db, [p])[0]}


@app.patch("/api/admin/products/{pid}")
def update_product(pid: str, body: ProductUpdate, admin=Depends(require_admin)):
    db = get_db()
    _id = to_object_id(pid)
    if not db["product"].find_one({"_id": _id}):
        raise HTTPException(status_code=404, detail="Product not found")
    changes = body.to_document(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "category" in changes:
        _check_category(db, changes["category"])
    changes["updatedAt"] = datetime.now(timezone.utc)
    db["product"].update_one({"_id": _id}, {"$set": changes})
    return {"message": "Product updated", "product": with_categories(db, [db["product"].find_one({"_id": _id})])[0]}


@app.delete("/api/admin/products/{pid}")
def delete_product(pid: str, admin=Depends(require_admin)):
    db = get_db()
    res = db["product"].delete_one({"_id": to_object_id(pid)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"message": "Product deleted"}

# ---------------------- Orders ----------------------

def _category_of(db, product_id: str) -> Optional[str]:
    if not ObjectId.is_valid(product_id):
        return None
    product = db["product"].find_one({"_id": ObjectId(product_id)}, {"category": 1})
    return product.get("category") if product else None


@app.post("/api/orders", status_code=201)
def create_order(body: OrderCreate):
    db = get_db()
    data = body.to_document()
    for item in data["items"]:
        item["category"] = _category_of(db, item["productId"])
    data["orderId"] = next_order_id(db)
    data["status"] = "pending"
    try:
        new_id = create_document("order", data)
    except DuplicateKeyError:
        logger.error("Order id %s already taken", data["orderId"])
        raise HTTPException(status_code=500, detail="Could not allocate an order number. Please try again.")
    except Exception:
        logger.exception("Error saving order")
        raise HTTPException(status_code=500, detail="Failed to save the order. Please try again.")
    saved = db["order"].find_one({"_id": ObjectId(new_id)})
    logger.info("Order %s created (%s items, %.2f)", saved["orderId"], saved["totalItems"], saved["totalAmount"])
    return {
        "message": "Order saved",
        "orderId": saved["orderId"],
        "order": {
            "id": new_id,
            "orderId": saved["orderId"],
            "status": saved["status"],
            "totalAmount": saved["totalAmount"],
            "createdAt": saved["createdAt"],
        },
    }


@app.get("/api/orders")
def list_orders(
    status: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = Query(default="createdAt", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
    page: int = 1,
    limit: int = 12,
    admin=Depends(require_admin),
):
    db = get_db()
    try:
        plan = build_order_query(search=search, status=status, category=category,
                                 sort_by=sort_by, sort_order=sort_order, page=page, limit=limit)
    except QueryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    docs, pagination = plan.execute(db["order"])
    return {"orders": [serialize(o) for o in docs], "pagination": pagination.to_dict("totalOrders")}


@app.get("/api/orders/{oid}")
def get_order(oid: str, admin=Depends(require_admin)):
    o = get_db()["order"].find_one({"_id": to_object_id(oid)})
    if not o:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"order": serialize(o)}


@app.patch("/api/orders/{oid}")
def update_order_status(oid: str, body: OrderStatusUpdate, admin=Depends(require_admin)):
    db = get_db()
    _id = to_object_id(oid)
    if not db["order"].find_one({"_id": _id}):
        raise HTTPException(status_code=404, detail="Order not found")
    db["order"].update_one({"_id": _id}, {"$set": {"status": body.status, "updatedAt": datetime.now(timezone.utc)}})
    logger.info("Order %s set to %s by %s", oid, body.status, admin.get("email"))
    return {"message": "Order status updated", "order": serialize(db["order"].find_one({"_id": _id}))}

# ---------------------- Dashboard ----------------------

@app.get("/api/admin/dashboard/stats")
def dashboard_stats(admin=Depends(require_admin)):
    db = get_db()
    revenue = sum(
        o.get("totalAmount", 0)
        for o in db["order"].find({"status": {"$ne": "cancelled"}}, {"totalAmount": 1})
    )
    return {
        "totalProducts": db["product"].count_documents({"isActive": True}),
        "totalCategories": db["category"].count_documents({}),
        "totalOrders": db["order"].count_documents({}),
        "pendingOrders": db["order"].count_documents({"status": "pending"}),
        "totalRevenue": round(revenue, 2),
    }

# ---------------------- Uploads ----------------------

@app.post("/api/admin/upload")
def upload_image(file: UploadFile = File(...), admin=Depends(require_admin)):
    # one byte past the limit is enough to reject an oversized file
    data = file.file.read(media.MAX_UPLOAD_BYTES + 1)
    try:
        result = media.upload_image(data, file.filename, file.content_type)
    except media.InvalidImage as e:
        raise HTTPException(status_code=400, detail=str(e))
    except media.UploadError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"message": "File uploaded", **result}

# ---------------------- Seed data ----------------------

SAMPLE_CATEGORIES = [
    {"name": "Textbooks", "description": "Academic textbooks for all subjects"},
    {"name": "Notebooks", "description": "Notebooks and writing pads"},
    {"name": "Stationery", "description": "Pens, pencils, and writing supplies"},
    {"name": "Art Supplies", "description": "Drawing and painting materials"},
    {"name": "Calculators", "description": "Scientific and graphing calculators"},
    {"name": "Bags & Cases", "description": "Backpacks and pencil cases"},
]

SAMPLE_PRODUCTS = [
    {
        "name": "Mathematics Textbook - Algebra",
        "description": "Comprehensive algebra textbook for high school students with solved examples and practice problems.",
        "price": 45.99, "category": "Textbooks", "stock": 25, "tags": ["math", "school"],
        "images": ["https://images.unsplash.com/photo-1544947950-fa07a98d237f?w=400&h=400&fit=crop"],
    },
    {
        "name": "Scientific Calculator",
        "description": "Advanced scientific calculator with graphing capabilities and 2-line display.",
        "price": 89.99, "category": "Calculators", "stock": 15, "tags": ["math"],
        "images": ["https://images.unsplash.com/photo-1572177812156-58036aae439c?w=400&h=400&fit=crop"],
    },
    {
        "name": "Premium Notebook Set",
        "description": "Set of 5 premium spiral notebooks with 200 pages each, perfect for note-taking.",
        "price": 24.99, "category": "Notebooks", "stock": 40, "tags": ["school", "paper"],
        "images": ["https://images.unsplash.com/photo-1531346878377-a5be20888e57?w=400&h=400&fit=crop"],
    },
    {
        "name": "Art Supply Kit",
        "description": "Complete art supply kit including colored pencils, markers, sketchbook, and paints.",
        "price": 67.99, "category": "Art Supplies", "stock": 12, "tags": ["art", "drawing"],
        "images": ["https://images.unsplash.com/photo-1513475382585-d06e58bcb0e0?w=400&h=400&fit=crop"],
    },
    {
        "name": "School Backpack",
        "description": "Durable waterproof backpack with multiple compartments for books and supplies.",
        "price": 39.99, "category": "Bags & Cases", "stock": 30, "tags": ["school", "bag"],
        "images": ["https://images.unsplash.com/photo-1553062407-98eeb64c6a62?w=400&h=400&fit=crop"],
    },
    {
        "name": "Mechanical Pencil Set",
        "description": "Professional mechanical pencil set with 0.5mm and 0.7mm leads and erasers.",
        "price": 18.99, "category": "Stationery", "stock": 60, "tags": ["pencil", "writing"],
        "images": ["https://images.unsplash.com/photo-1554224155-6726b3ff858f?w=400&h=400&fit=crop"],
    },
]


@app.post("/api/admin/seed")
def seed_sample_data(admin=Depends(require_role("super_admin"))):
    """Insert the sample catalogue; existing categories and products are left alone."""
    db = get_db()
    category_ids = {}
    for cat in SAMPLE_CATEGORIES:
        existing = db["category"].find_one({"name": name_pattern(cat["name"])})
        category_ids[cat["name"]] = str(existing["_id"]) if existing else create_document("category", Category(**cat).to_document())
    created = 0
    for prod in SAMPLE_PRODUCTS:
        if db["product"].find_one({"name": prod["name"]}):
            continue
        create_document("product", Product(**{**prod, "category": category_ids[prod["category"]]}).to_document())
        created += 1
    return {"message": "Sample data seeded", "categoriesCreated": len(category_ids), "productsCreated": created}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
