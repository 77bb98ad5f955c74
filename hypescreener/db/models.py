from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

from hypescreener.utils.time import utcnow

Base = declarative_base()


class Token(Base):
    __tablename__ = "tokens"

    id = Column(Integer, primary_key=True, index=True)
    contract_address = Column(String, unique=True, index=True, nullable=False)  # always lowercase
    symbol = Column(String, nullable=False)
    name = Column(String, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    is_hidden = Column(Boolean, nullable=False, default=False)
    low_liquidity = Column(Boolean, nullable=False, default=False)
    pair_address = Column(String, nullable=True)
    websites = Column(JSON, nullable=True, default=list)
    socials = Column(JSON, nullable=True, default=list)
    image_url = Column(String, nullable=True)
    # When set, the social sync leaves image_url alone
    manual_image = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class TokenMetricSnapshot(Base):
    __tablename__ = "token_metrics"

    id = Column(Integer, primary_key=True, index=True)
    contract_address = Column(
        String,
        ForeignKey("tokens.contract_address", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    price_usd = Column(Float, nullable=True)
    liquidity_usd = Column(Float, nullable=True)
    volume_24h = Column(Float, nullable=True)
    market_cap = Column(Float, nullable=True)
    fdv = Column(Float, nullable=True)
    price_change_1h = Column(Float, nullable=True)
    price_change_24h = Column(Float, nullable=True)
    execution_id = Column(String, index=True, nullable=True)
    recorded_at = Column(DateTime(timezone=True), index=True, nullable=False, default=utcnow)


class EcosystemMetricSnapshot(Base):
    __tablename__ = "ecosystem_metrics"

    id = Column(Integer, primary_key=True, index=True)
    total_market_cap = Column(Float, nullable=False, default=0)
    total_volume_24h = Column(Float, nullable=False, default=0)
    visible_market_cap = Column(Float, nullable=False, default=0)
    visible_volume_24h = Column(Float, nullable=False, default=0)
    total_liquidity = Column(Float, nullable=False, default=0)
    token_count = Column(Integer, nullable=False, default=0)
    visible_token_count = Column(Integer, nullable=False, default=0)
    avg_price_change_1h = Column(Float, nullable=True)
    avg_price_change_24h = Column(Float, nullable=True)
    execution_id = Column(String, nullable=True)
    recorded_at = Column(DateTime(timezone=True), index=True, nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ExternalAssetSnapshot(Base):
    __tablename__ = "external_asset_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    symbol = Column(String, index=True, nullable=False)
    price = Column(Float, nullable=False, default=0)
    market_cap = Column(Float, nullable=False, default=0)
    percent_change_24h = Column(Float, nullable=False, default=0)
    fully_diluted_market_cap = Column(Float, nullable=False, default=0)
    volume_24h = Column(Float, nullable=False, default=0)
    volume_change_24h = Column(Float, nullable=False, default=0)
    execution_id = Column(String, nullable=True)
    synced_at = Column(DateTime(timezone=True), index=True, nullable=False, default=utcnow)


class ExecutionRecord(Base):
    __tablename__ = "query_executions"

    id = Column(Integer, primary_key=True, index=True)
    execution_id = Column(String, unique=True, index=True, nullable=False)
    query_id = Column(Integer, index=True, nullable=False)
    status = Column(String, index=True, nullable=False)  # PENDING, COMPLETED, FAILED, API_ERROR, UNMAPPED_QUERY
    engine_state = Column(String, nullable=True)
    trigger_id = Column(String, nullable=True)
    row_count = Column(Integer, nullable=True)
    error_message = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), index=True, nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class RevenueSnapshot(Base):
    __tablename__ = "daily_revenue"

    id = Column(Integer, primary_key=True, index=True)
    day = Column(Date, unique=True, index=True, nullable=False)
    revenue = Column(Float, nullable=False, default=0)
    annualized_revenue = Column(Float, nullable=True)
    query_id = Column(Integer, nullable=True)
    execution_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ProtocolTvlSnapshot(Base):
    __tablename__ = "protocol_tvl"

    id = Column(Integer, primary_key=True, index=True)
    day = Column(Date, index=True, nullable=False)
    protocol_name = Column(String, nullable=False)
    daily_tvl = Column(Float, nullable=False, default=0)
    total_daily_tvl = Column(Float, nullable=True)
    query_id = Column(Integer, nullable=True)
    execution_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint('day', 'protocol_name', name='uix_protocol_tvl_day_protocol'),
    )


class JobRunLog(Base):
    __tablename__ = "job_runs"

    id = Column(Integer, primary_key=True, index=True)
    execution_id = Column(String, index=True, nullable=False)
    job_type = Column(String, index=True, nullable=False)
    status = Column(String, nullable=False)  # COMPLETED, FAILED, PARTIAL_FAILURE
    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=False)
    duration_ms = Column(Integer, default=0)
    success_count = Column(Integer, default=0)
    error_count = Column(Integer, default=0)
    error_message = Column(String, nullable=True)
    details = Column(JSON, nullable=True, default=dict)
