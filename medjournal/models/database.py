from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    Index,
    JSON,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


class HealthEntryRow(Base):
    __tablename__ = "health_entries"
    __table_args__ = (
        CheckConstraint(
            "severity IN ('low', 'medium', 'high')", name="ck_health_entries_severity"
        ),
        CheckConstraint(
            "confidence_score IS NULL OR (confidence_score >= 0 AND confidence_score <= 1)",
            name="ck_health_entries_confidence",
        ),
        UniqueConstraint("data_hash", name="uq_health_entries_data_hash"),
        Index("ix_health_entries_owner_created", "wallet_address", "created_at"),
    )

    id = Column(String(36), primary_key=True)
    wallet_address = Column(String(64), nullable=False)

    entry_text = Column(Text, nullable=False)
    symptoms = Column(JSON, nullable=False, default=list)
    mood = Column(String(120), nullable=False)
    severity = Column(String(16), nullable=False)
    summary = Column(Text, nullable=False)
    confidence_score = Column(Float, nullable=True)

    data_hash = Column(String(66), nullable=False)
    tx_hash = Column(String(66), nullable=False)
    block_number = Column(BigInteger, nullable=True)

    submitted_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<HealthEntryRow id={self.id}>"


def build_engine(database_url: str):
    """
    Engine for a hosted Postgres (transaction pooler) or a local SQLite file.
    In-memory SQLite shares one connection so every thread sees the same data.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    return create_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_recycle=1800,
        pool_pre_ping=True,
    )


def build_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
