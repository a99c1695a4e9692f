from datetime import datetime
from sqlalchemy import String, DateTime, Text, ForeignKey, Integer, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db import Base

class UserORM(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    email: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    role: Mapped[str] = mapped_column(String, nullable=False, default="GESTIONNAIRE")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class EmployeeORM(Base):
    __tablename__ = "employees"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    dept: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class AssetModelORM(Base):
    __tablename__ = "asset_models"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    type: Mapped[str] = mapped_column(String, nullable=False, index=True)
    brand: Mapped[str] = mapped_column(String, nullable=False)
    model_name: Mapped[str] = mapped_column(String, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    items: Mapped[list["AssetItemORM"]] = relationship(
        back_populates="asset_model", cascade="all, delete-orphan", passive_deletes=True
    )
    stock_items: Mapped[list["StockItemORM"]] = relationship(
        back_populates="asset_model", cascade="all, delete-orphan", passive_deletes=True
    )


class AssetItemORM(Base):
    __tablename__ = "asset_items"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    asset_model_id: Mapped[str] = mapped_column(
        String, ForeignKey("asset_models.id", ondelete="CASCADE"), nullable=False, index=True
    )
    asset_tag: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    serial: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="EN_STOCK", index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    asset_model: Mapped[AssetModelORM] = relationship(back_populates="items")


class StockItemORM(Base):
    __tablename__ = "stock_items"
    __table_args__ = (
        CheckConstraint("loaned >= 0 AND loaned <= quantity", name="ck_stock_items_loaned_range"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    asset_model_id: Mapped[str] = mapped_column(
        String, ForeignKey("asset_models.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    loaned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    asset_model: Mapped[AssetModelORM] = relationship(back_populates="stock_items")


class LoanORM(Base):
    __tablename__ = "loans"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    employee_id: Mapped[str] = mapped_column(String, ForeignKey("employees.id"), nullable=False, index=True)
    created_by_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)

    status: Mapped[str] = mapped_column(String, nullable=False, default="OPEN", index=True)
    opened_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    pickup_signature_url: Mapped[str | None] = mapped_column(String, nullable=True)
    pickup_signed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    return_signature_url: Mapped[str | None] = mapped_column(String, nullable=True)
    return_signed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    deleted_by_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    employee: Mapped[EmployeeORM] = relationship()
    lines: Mapped[list["LoanLineORM"]] = relationship(
        back_populates="loan",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="LoanLineORM.created_at",
    )


class LoanLineORM(Base):
    __tablename__ = "loan_lines"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_loan_lines_quantity_positive"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    loan_id: Mapped[str] = mapped_column(
        String, ForeignKey("loans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    asset_item_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("asset_items.id", ondelete="SET NULL"), nullable=True, index=True
    )
    stock_item_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("stock_items.id", ondelete="SET NULL"), nullable=True, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    loan: Mapped[LoanORM] = relationship(back_populates="lines")
    asset_item: Mapped[AssetItemORM | None] = relationship()
    stock_item: Mapped[StockItemORM | None] = relationship()
