from sqlalchemy import BigInteger, Boolean, Column, DateTime, Integer, String, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class LedgerEntryRow(Base):
    __tablename__ = "ledger_entries"
    txid = Column(String(64), primary_key=True)
    accrued_cents = Column(BigInteger, nullable=False, default=0)
    last_updated = Column(DateTime(timezone=True))
    consumed = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=0)
    unit_price_cents = Column(BigInteger, nullable=True)


class ReceiptRow(Base):
    __tablename__ = "receipts"
    end_to_end_id = Column(String(64), primary_key=True)  # dedup key
    txid = Column(String(64), nullable=False, index=True)
    payer_name = Column(String(200))
    pix_key = Column(String(140))
    amount_cents = Column(BigInteger, nullable=False)
    timestamp = Column(DateTime(timezone=True))
    kind = Column(String(8), nullable=False, default="pix")  # 'pix' or 'carry'
    used = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
