"""Market data service layer (stocks, indices, news).

Read paths are cache-aside through `cache`; writes here are limited to view
counters, which bypass the cache.
"""
from __future__ import annotations

import random
from datetime import date, timedelta
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from .errors import NotFoundError, field_error
from .models import MarketIndex, News, Stock
from .pagination import PageRequest, paginate_query

MARKETS = ("KOSPI", "KOSDAQ")
STOCK_SORT_FIELDS = {
    "rank": Stock.rank,
    "name": Stock.name,
    "currentPrice": Stock.current_price,
    "changePercent": Stock.change_percent,
    "marketCap": Stock.market_cap,
    "per": Stock.per,
    "pbr": Stock.pbr,
}
HISTORY_DAYS = 30


def _iso(dt) -> str | None:
    return dt.isoformat() if dt else None


def serialize_stock(s: Stock) -> dict[str, Any]:
    return {
        "id": s.id,
        "symbol": s.symbol,
        "name": s.name,
        "market": s.market,
        "currentPrice": s.current_price,
        "change": s.change,
        "changePercent": s.change_percent,
        "volume": s.volume,
        "marketCap": s.market_cap,
        "sales": s.sales,
        "operatingIncome": s.operating_income,
        "netIncome": s.net_income,
        "per": s.per,
        "pbr": s.pbr,
        "score": s.score,
        "rank": s.rank,
        "updatedAt": _iso(s.updated_at),
    }


def serialize_index(i: MarketIndex) -> dict[str, Any]:
    return {
        "id": i.id,
        "name": i.name,
        "symbol": i.symbol,
        "value": i.value,
        "change": i.change,
        "changePercent": i.change_percent,
        "country": i.country,
        "updatedAt": _iso(i.updated_at),
    }


def serialize_news(n: News, *, full: bool = False) -> dict[str, Any]:
    out = {
        "id": n.id,
        "title": n.title,
        "summary": n.summary,
        "source": n.source,
        "url": n.url,
        "imageUrl": n.image_url,
        "isHot": n.is_hot,
        "category": n.category,
        "tags": n.tags or [],
        "views": n.views,
        "publishedAt": _iso(n.published_at),
    }
    if full:
        out["content"] = n.content
    return out


# ---- Stocks ---------------------------------------------------------------------

def list_stocks(
    db: Session,
    *,
    market: str | None,
    search: str | None,
    sort_by: str,
    sort_order: str,
    page_req: PageRequest,
) -> tuple[list[dict[str, Any]], int]:
    if sort_by not in STOCK_SORT_FIELDS:
        raise field_error("sortBy", f"sortBy must be one of: {', '.join(STOCK_SORT_FIELDS)}", "invalid_choice")
    q = db.query(Stock)
    if market:
        if market not in MARKETS:
            raise field_error("market", "market must be KOSPI or KOSDAQ", "invalid_choice")
        q = q.filter(Stock.market == market)
    if search:
        like = f"%{search.lower()}%"
        q = q.filter(or_(func.lower(Stock.name).like(like), func.lower(Stock.symbol).like(like)))
    col = STOCK_SORT_FIELDS[sort_by]
    q = q.order_by(col.desc() if sort_order == "desc" else col.asc(), Stock.id.asc())
    rows, total = paginate_query(q, page_req)
    return [serialize_stock(s) for s in rows], total


def stock_stats(db: Session) -> dict[str, int]:
    rows = db.query(Stock.market, Stock.change_percent).all()
    return {
        "total": len(rows),
        "kospi": sum(1 for m, _ in rows if m == "KOSPI"),
        "kosdaq": sum(1 for m, _ in rows if m == "KOSDAQ"),
        "gainers": sum(1 for _, c in rows if (c or 0) > 0),
        "losers": sum(1 for _, c in rows if (c or 0) < 0),
        "unchanged": sum(1 for _, c in rows if not c),
    }


def price_history(symbol: str, current_price: float, *, today: date | None = None) -> list[dict[str, Any]]:
    """Synthetic daily OHLCV for the last 30 days plus today.

    Seeded per symbol and day so repeated calls agree within a day.
    """
    today = today or date.today()
    rng = random.Random(f"{symbol}:{today.isoformat()}")
    price = current_price * 0.9
    out = []
    for back in range(HISTORY_DAYS, -1, -1):
        day = today - timedelta(days=back)
        price = price * (1 + (rng.random() - 0.5) * 0.05)
        out.append(
            {
                "date": day.isoformat(),
                "open": round(price * 0.99, 2),
                "high": round(price * 1.02, 2),
                "low": round(price * 0.98, 2),
                "close": round(price, 2),
                "volume": rng.randint(500_000, 1_500_000),
            }
        )
    return out


def stock_detail(db: Session, symbol: str) -> dict[str, Any]:
    stock = db.query(Stock).filter(Stock.symbol == symbol).first()
    if stock is None:
        raise NotFoundError("stock not found")
    price = stock.current_price or 0
    volume = stock.volume or 0
    out = serialize_stock(stock)
    out.update(
        {
            "history": price_history(stock.symbol, price),
            "relatedNews": [],
            "volumeBreakdown": {
                "retail": int(volume * 0.4),
                "foreign": int(volume * 0.3),
                "institutional": int(volume * 0.3),
            },
            "metrics": {
                "week52High": price * 1.2,
                "week52Low": price * 0.8,
                "avgVolume": volume * 0.9,
                "beta": 1.15,
                "dividend": price * 0.02,
                "dividendYield": 2.0,
            },
        }
    )
    return out


def list_indices(db: Session, country: str | None = None) -> list[dict[str, Any]]:
    q = db.query(MarketIndex)
    if country:
        q = q.filter(MarketIndex.country == country.upper())
    return [serialize_index(i) for i in q.order_by(MarketIndex.id.asc()).all()]


# ---- News -----------------------------------------------------------------------

def list_news(
    db: Session,
    *,
    category: str | None,
    is_hot: bool | None,
    search: str | None,
    page_req: PageRequest,
) -> tuple[list[dict[str, Any]], int]:
    q = db.query(News)
    if category and category != "all":
        q = q.filter(News.category == category)
    if is_hot is not None:
        q = q.filter(News.is_hot.is_(is_hot))
    if search:
        like = f"%{search.lower()}%"
        q = q.filter(or_(func.lower(News.title).like(like), func.lower(News.content).like(like)))
    q = q.order_by(News.published_at.desc(), News.id.desc())
    rows, total = paginate_query(q, page_req)
    return [serialize_news(n) for n in rows], total


def get_news(db: Session, news_id: int) -> dict[str, Any]:
    news = db.get(News, news_id)
    if news is None:
        raise NotFoundError("news not found")
    news.views = (news.views or 0) + 1
    db.commit()
    return serialize_news(news, full=True)


__all__ = [
    "MARKETS",
    "STOCK_SORT_FIELDS",
    "serialize_stock",
    "serialize_index",
    "serialize_news",
    "list_stocks",
    "stock_stats",
    "price_history",
    "stock_detail",
    "list_indices",
    "list_news",
    "get_news",
]
