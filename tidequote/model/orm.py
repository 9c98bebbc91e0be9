from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    Float,
    Integer,
    String,
)


Base = declarative_base()

COUNTER_ID = 1


# ----------------------------
# ORM models
# ----------------------------
class Contribution(Base):
    __tablename__ = "contributions"
    # the primary key is the uniqueness guard: one row per identity, ever
    identity_id = Column(String, primary_key=True)
    display_name = Column(String, nullable=False, default="")
    email = Column(String, nullable=False, default="")
    created_at = Column(Float, nullable=False)


class ClickCounter(Base):
    __tablename__ = "click_counter"
    __table_args__ = (
        CheckConstraint("value >= 0", name="click_counter_nonneg"),
    )
    # singleton row, id == COUNTER_ID
    id = Column(Integer, primary_key=True)
    value = Column(BigInteger, nullable=False, default=0)
