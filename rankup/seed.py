"""Seed demo data: stocks, market indices, news, two users and a few posts.

Run: flask --app rankup.wsgi seed-demo  (or python scripts/seed_demo.py)

Creates rows only if they are absent. Safe for repeats.
"""
from __future__ import annotations

from werkzeug.security import generate_password_hash

from .db import get_session
from .models import MarketIndex, News, Post, Stock, User

DEMO_PASSWORD = "Demo1234!"

STOCKS = [
    # symbol, name, market, price, change, change%, volume, market cap, per, pbr, score
    ("005930", "Samsung Electronics", "KOSPI", 71200, 800, 1.14, 15_230_000, 425_000_000_000_000, 13.2, 1.3, 92.5),
    ("000660", "SK Hynix", "KOSPI", 178500, -1500, -0.83, 3_120_000, 130_000_000_000_000, 9.8, 1.9, 90.1),
    ("035420", "NAVER", "KOSPI", 189000, 2000, 1.07, 820_000, 31_000_000_000_000, 24.5, 1.4, 81.7),
    ("035720", "Kakao", "KOSPI", 43550, -250, -0.57, 2_400_000, 19_300_000_000_000, 41.0, 2.1, 70.4),
    ("247540", "Ecopro BM", "KOSDAQ", 231000, 5500, 2.44, 1_050_000, 22_600_000_000_000, 88.3, 8.2, 66.9),
    ("091990", "Celltrion Healthcare", "KOSDAQ", 66900, -300, -0.45, 640_000, 10_500_000_000_000, 52.1, 5.4, 61.3),
]

INDICES = [
    ("KOSPI", "KS11", 2612.43, 12.8, 0.49, "KR"),
    ("KOSDAQ", "KQ11", 845.12, -3.4, -0.40, "KR"),
    ("S&P 500", "GSPC", 5210.36, 21.4, 0.41, "US"),
    ("NASDAQ", "IXIC", 16340.87, 98.2, 0.60, "US"),
    ("Nikkei 225", "N225", 39110.76, -150.2, -0.38, "JP"),
]

NEWS = [
    ("Chipmakers rally on AI server demand", "semiconductor", True, ["samsung", "hynix"]),
    ("KOSDAQ battery names slip after profit taking", "battery", False, ["ecopro"]),
    ("Bank of Korea holds base rate steady", "macro", True, ["rates"]),
]


def _seed_stocks(db) -> int:
    created = 0
    for rank, (sym, name, market, price, chg, pct, vol, cap, per, pbr, score) in enumerate(STOCKS, start=1):
        if db.query(Stock.id).filter(Stock.symbol == sym).first():
            continue
        db.add(
            Stock(
                symbol=sym,
                name=name,
                market=market,
                current_price=price,
                change=chg,
                change_percent=pct,
                volume=vol,
                market_cap=cap,
                per=per,
                pbr=pbr,
                score=score,
                rank=rank,
            )
        )
        created += 1
    return created


def _seed_indices(db) -> int:
    created = 0
    for name, sym, value, chg, pct, country in INDICES:
        if db.query(MarketIndex.id).filter(MarketIndex.symbol == sym).first():
            continue
        db.add(MarketIndex(name=name, symbol=sym, value=value, change=chg, change_percent=pct, country=country))
        created += 1
    return created


def _seed_news(db) -> int:
    created = 0
    for title, category, hot, tags in NEWS:
        if db.query(News.id).filter(News.title == title).first():
            continue
        db.add(
            News(
                title=title,
                content=f"{title}. Full article text for the demo feed.",
                summary=title,
                source="RANKUP Newsroom",
                is_hot=hot,
                category=category,
                tags=tags,
            )
        )
        created += 1
    return created


def _user(db, email: str, name: str, role: str) -> tuple[User, bool]:
    existing = db.query(User).filter(User.email == email).first()
    if existing:
        return existing, False
    user = User(
        email=email,
        name=name,
        password_hash=generate_password_hash(DEMO_PASSWORD),
        provider="email",
        role=role,
        email_verified=True,
    )
    db.add(user)
    db.flush()
    return user, True


def seed_demo() -> dict[str, int]:
    db = get_session()
    try:
        counts = {"stocks": _seed_stocks(db), "indices": _seed_indices(db), "news": _seed_news(db)}
        db.flush()
        admin, new_admin = _user(db, "admin@rankup.local", "Admin", "admin")
        member, new_member = _user(db, "demo@rankup.local", "Demo", "user")
        counts["users"] = int(new_admin) + int(new_member)
        counts["posts"] = 0
        if not db.query(Post.id).filter(Post.author_id == member.id).first():
            samsung = db.query(Stock).filter(Stock.symbol == "005930").first()
            db.add(
                Post(
                    title="Memory cycle bottoming out?",
                    content="Inventory data suggests DRAM prices are turning. Thoughts?",
                    category="stock",
                    tags=["semiconductor"],
                    author_id=member.id,
                    stock_id=samsung.id if samsung else None,
                )
            )
            db.add(
                Post(
                    title="Welcome to RANKUP",
                    content="Share ideas, be kind, and report spam.",
                    category="notice",
                    is_pinned=True,
                    author_id=admin.id,
                )
            )
            counts["posts"] = 2
        db.commit()
        return counts
    finally:
        db.close()


__all__ = ["seed_demo", "DEMO_PASSWORD"]
