from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from ecopickup.database.base import Base, TimestampMixin


class Material(TimestampMixin, Base):
    """Catalog entry for a recyclable material type (e.g. ``pet_bottles``)."""

    __tablename__ = "materials"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(120), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="Recyclable")
    average_price_per_kg: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
