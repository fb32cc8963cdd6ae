"""SQLAlchemy models."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, JSON, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class TradeRecord(Base):
    __tablename__ = "trades"

    id = Column(Integer, primary_key=True)
    token_address = Column(String, nullable=False, index=True)
    trade_type = Column(String, nullable=False)  # BUY/SELL
    phase = Column(String, nullable=False)  # BONDING_CURVE/DEX
    route_type = Column(String, nullable=True)
    dex = Column(String, nullable=True)
    success = Column(Boolean, default=False, nullable=False)
    tx_hash = Column(String, nullable=True, index=True)
    # Smallest-unit integers stored as strings; they overflow SQL integers.
    amount_in = Column(String, nullable=False, default="0")
    amount_out = Column(String, nullable=False, default="0")
    execution_price = Column(String, nullable=False, default="0")
    price_impact = Column(Float, nullable=False, default=0.0)
    gas_used = Column(String, nullable=False, default="0")
    gas_cost = Column(String, nullable=False, default="0")
    retries = Column(Integer, nullable=False, default=0)
    error = Column(String, nullable=True)
    error_code = Column(String, nullable=True)
    route = Column(JSON, nullable=True)
    executed_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
