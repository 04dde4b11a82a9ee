from typing import Optional, List, Literal
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from database import get_db
from utils.tokenJWT import get_current_user
from models.users import User
from models.store import Store
from models.product import Category, Product, StoreProduct
from schemas.product import StoreOut, StoreProductOut, StoreProductPage


router = APIRouter(
    prefix="/stores",
    tags=["Shop"]
)

# Pickup locations, open ones first
@router.get("", response_model=List[StoreOut])
def list_stores(
    db: Session = Depends(get_db),
):
    return db.query(Store).order_by(Store.is_open.desc(), Store.name.asc()).all()


@router.get("/{store_id}/products", response_model=StoreProductPage)
def list_store_products(
    store_id: int,
    # Search and filter parameters
    q: Optional[str] = Query(None, description="Search by product or category name"),
    category: Optional[str] = Query(None, description="Filter by category"),

    page: int = Query(1, ge=1),
    page_size: int = Query(24, ge=1, le=100),
    sort_by: Literal["name", "price"] = "name",
    order: Literal["asc", "desc"] = "asc",
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not db.query(Store.id).filter(Store.id == store_id).first():
        raise HTTPException(status_code=404, detail="Store not found")

    query = (
        db.query(Product, StoreProduct, Category)
        .join(StoreProduct, StoreProduct.product_id == Product.id)
        .outerjoin(Category, Category.id == Product.category_id)
        .filter(StoreProduct.store_id == store_id, StoreProduct.available.is_(True))
    )

    # Apply general search filter
    if q:
        like = f"%{q}%"
        query = query.filter(Product.name.ilike(like) | Category.name.ilike(like))

    # Filter by specific category
    if category:
        query = query.filter(Category.name.ilike(f"%{category}%"))

    # Configure sorting logic
    allowed = {
        "name": Product.name,
        "price": StoreProduct.price,
    }
    sort_col = allowed.get(sort_by, Product.name)
    if order == "desc":
        query = query.order_by(sort_col.desc(), Product.id.asc())
    else:
        query = query.order_by(sort_col.asc(), Product.id.asc())

    total = query.count()
    rows = query.offset((page - 1) * page_size).limit(page_size).all()
    items = [
        StoreProductOut(
            id=product.id,
            name=product.name,
            category=cat.name if cat else None,
            price=float(sp.price),
            available=sp.available,
            image_url=product.image_url,
            age_restricted=product.age_restricted,
        )
        for product, sp, cat in rows
    ]
    return {"items": items, "total": total, "page": page, "page_size": page_size}
