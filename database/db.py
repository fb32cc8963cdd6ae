"""Database helpers for persisted trade results."""

from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from config import DATABASE_URL
from database.models import Base, TradeRecord
from trading.models import TradeResult, TradeType
from utils.addressing import normalize_address

engine = create_engine(DATABASE_URL, future=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@dataclass
class TradeAnalytics:
    total_trades: int = 0
    successful_trades: int = 0
    failed_trades: int = 0
    success_rate: float = 0.0
    buy_count: int = 0
    sell_count: int = 0
    # Base asset spent on buys and received from sells, smallest unit.
    base_spent: str = "0"
    base_received: str = "0"
    total_gas_cost: str = "0"
    avg_price_impact: float = 0.0
    total_retries: int = 0
    by_route_type: dict[str, int] = field(default_factory=dict)
    by_error_code: dict[str, int] = field(default_factory=dict)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)


def get_db() -> Session:
    return SessionLocal()


def _route_payload(result: TradeResult) -> dict:
    payload = asdict(result.route)
    payload["route_type"] = result.route.route_type.value
    return payload


def record_trade_result(result: TradeResult) -> TradeRecord:
    db = get_db()
    try:
        record = TradeRecord(
            token_address=normalize_address(result.token_address),
            trade_type=result.trade_type.value,
            phase=result.phase.value,
            route_type=result.route.route_type.value,
            dex=result.route.dex or None,
            success=bool(result.success),
            tx_hash=result.tx_hash or None,
            amount_in=str(result.amount_in),
            amount_out=str(result.amount_out),
            execution_price=str(result.execution_price),
            price_impact=float(result.price_impact),
            gas_used=str(result.gas_used),
            gas_cost=str(result.gas_cost),
            retries=int(result.retries),
            error=result.error or None,
            error_code=result.error_code or None,
            route=_route_payload(result),
            executed_at=datetime.utcfromtimestamp(float(result.timestamp)),
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        return record
    finally:
        db.close()


def get_trade_history(token_address: Optional[str] = None, limit: int = 50) -> list[TradeRecord]:
    db = get_db()
    try:
        query = db.query(TradeRecord)
        if token_address:
            query = query.filter(TradeRecord.token_address == normalize_address(token_address))
        return query.order_by(TradeRecord.executed_at.desc(), TradeRecord.id.desc()).limit(max(1, int(limit))).all()
    finally:
        db.close()


def get_trade_analytics(token_address: Optional[str] = None) -> TradeAnalytics:
    db = get_db()
    try:
        query = db.query(TradeRecord)
        if token_address:
            query = query.filter(TradeRecord.token_address == normalize_address(token_address))
        rows = query.all()
    finally:
        db.close()

    stats = TradeAnalytics(total_trades=len(rows))
    if not rows:
        return stats

    spent = received = gas_cost = 0
    impacts: list[float] = []
    routes: Counter[str] = Counter()
    errors: Counter[str] = Counter()
    for row in rows:
        stats.total_retries += int(row.retries or 0)
        if row.trade_type == TradeType.BUY.value:
            stats.buy_count += 1
        else:
            stats.sell_count += 1
        if row.route_type:
            routes[row.route_type] += 1
        if not row.success:
            stats.failed_trades += 1
            errors[row.error_code or "UNKNOWN_ERROR"] += 1
            continue
        stats.successful_trades += 1
        impacts.append(float(row.price_impact or 0.0))
        gas_cost += int(row.gas_cost or 0)
        if row.trade_type == TradeType.BUY.value:
            spent += int(row.amount_in or 0)
        else:
            received += int(row.amount_out or 0)

    stats.success_rate = stats.successful_trades / stats.total_trades * 100
    stats.base_spent = str(spent)
    stats.base_received = str(received)
    stats.total_gas_cost = str(gas_cost)
    stats.avg_price_impact = sum(impacts) / len(impacts) if impacts else 0.0
    stats.by_route_type = dict(routes)
    stats.by_error_code = dict(errors)
    return stats
