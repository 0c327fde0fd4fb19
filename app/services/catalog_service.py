from typing import Iterable, Optional

from sqlalchemy.orm import Session

from app.models import Product


def get_active_products(db: Session, workspace_id) -> list[Product]:
    return (
        db.query(Product)
        .filter(Product.workspace_id == workspace_id, Product.is_active.is_(True))
        .order_by(Product.name)
        .all()
    )


def _normalize(value: Optional[str]) -> str:
    return " ".join((value or "").casefold().split())


def match_product(products: Iterable[Product], name: Optional[str]) -> Optional[Product]:
    """Case-insensitive substring match of a model-supplied product name.

    An exact name wins. Otherwise exactly one candidate must contain, or be
    contained in, the query; none or several means no match.
    """
    query = _normalize(name)
    if not query:
        return None

    products = list(products)
    exact = [p for p in products if _normalize(p.name) == query]
    if len(exact) == 1:
        return exact[0]

    candidates = [p for p in products if query in _normalize(p.name) or _normalize(p.name) in query]
    if len(candidates) == 1:
        return candidates[0]
    return None


def format_price(value) -> str:
    text = f"{value:.2f}"
    return text[:-3] if text.endswith(".00") else text


def render_catalog(products: Iterable[Product]) -> str:
    lines = []
    for product in products:
        line = f"- {product.name}"
        if product.description:
            line += f": {product.description}"
        line += f" ({format_price(product.price)})"
        if product.stock is not None and product.stock <= 0:
            line += " [out of stock]"
        lines.append(line)
    return "\n".join(lines)
