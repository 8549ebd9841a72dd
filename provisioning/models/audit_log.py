"""Append-only audit log of signup intent transitions and finalize outcomes.
No updates or deletes - every record is permanent."""
from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.sql import func
from provisioning.database import Base, json_column_type


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    # Plain string, not a FK: purged intents keep their history
    intent_id = Column(String(36), nullable=True, index=True)
    company_id = Column(Integer, nullable=True, index=True)

    # category: status_change | finalize | failed_attempt | retention
    category = Column(String(32), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)

    # Optional structured data (e.g. old_status, new_status, trigger)
    meta = Column(json_column_type(), nullable=True)

    actor_email = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)

    # UTC only - server_default
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
