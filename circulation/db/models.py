from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    BigInteger,
    Numeric,
    SmallInteger,
    String,
    Table,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from circulation.db.session import Base
from sqlalchemy.sql import func


# ======================
# Enums
# ======================

class CopyStatus(str, Enum):
    AVAILABLE = "available"
    ON_LOAN = "on_loan"
    RESERVED = "reserved"
    LOST = "lost"
    MAINTENANCE = "maintenance"


class LoanStatus(str, Enum):
    BORROWED = "borrowed"
    RETURNED = "returned"
    OVERDUE = "overdue"
    LOST = "lost"


ACTIVE_LOAN_STATUSES = (LoanStatus.BORROWED, LoanStatus.OVERDUE)


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class MemberStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    ONLINE = "online"
    OTHER = "other"


class ActorType(str, Enum):
    MEMBER = "member"
    STAFF = "staff"
    SYSTEM = "system"


# ======================
# Catálogo (solo lectura para el motor)
# ======================

class Publisher(Base):
    __tablename__ = "publishers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    website: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_email: Mapped[str | None] = mapped_column(String(150), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)

    books: Mapped[list["Book"]] = relationship("Book", back_populates="publisher")


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)


class Author(Base):
    __tablename__ = "authors"
    __table_args__ = (
        UniqueConstraint("first_name", "last_name", name="uq_authors_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)


class BookAuthor(Base):
    __tablename__ = "book_authors"

    book_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("books.id", ondelete="CASCADE"),
        primary_key=True,
    )
    author_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("authors.id", ondelete="CASCADE"),
        primary_key=True,
    )
    author_order: Mapped[int] = mapped_column(SmallInteger, default=1, nullable=False)

    author: Mapped["Author"] = relationship("Author")


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)


book_tags = Table(
    "book_tags",
    Base.metadata,
    Column("book_id", Integer, ForeignKey("books.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Book(Base):
    __tablename__ = "books"
    __table_args__ = (
        UniqueConstraint("isbn", name="uq_books_isbn"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    isbn: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    subtitle: Mapped[str | None] = mapped_column(String(255), nullable=True)

    publisher_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("publishers.id", ondelete="SET NULL"),
        nullable=True,
    )
    category_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True,
    )

    pub_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pages: Mapped[int | None] = mapped_column(Integer, nullable=True)
    language: Mapped[str | None] = mapped_column(String(50), default="English", nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    publisher: Mapped[Optional["Publisher"]] = relationship("Publisher", back_populates="books")
    authors: Mapped[list["BookAuthor"]] = relationship(
        "BookAuthor",
        order_by="BookAuthor.author_order",
        cascade="all, delete-orphan",
    )
    tags: Mapped[list["Tag"]] = relationship("Tag", secondary=book_tags)
    copies: Mapped[list["Copy"]] = relationship("Copy", back_populates="book")


class Member(Base):
    __tablename__ = "members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    membership_no: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(150), unique=True, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    join_date: Mapped[date] = mapped_column(Date, default=date.today, nullable=False)

    status: Mapped[MemberStatus] = mapped_column(
        SqlEnum(MemberStatus),
        nullable=False,
        default=MemberStatus.ACTIVE,
    )


class Staff(Base):
    __tablename__ = "staff"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    staff_no: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(150), unique=True, nullable=True)
    role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    hire_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


# ======================
# Copy (estado de disponibilidad versionado)
# ======================

class Copy(Base):
    __tablename__ = "book_copies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    book_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("books.id", ondelete="RESTRICT"),
        nullable=False,
    )
    accession_no: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    acquisition_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    purchase_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    location: Mapped[str | None] = mapped_column(String(100), nullable=True)
    condition: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[CopyStatus] = mapped_column(
        SqlEnum(CopyStatus),
        nullable=False,
        default=CopyStatus.AVAILABLE,
    )
    # Solo lo modifica copy_state, siempre con compare-and-set
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    retired_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    book: Mapped["Book"] = relationship("Book", back_populates="copies")

    __table_args__ = (
        Index("idx_copies_book_status", "book_id", "status"),
        Index("idx_copies_book_location", "book_id", "location"),
    )


# ======================
# Loan
# ======================

class Loan(Base):
    __tablename__ = "loans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    copy_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("book_copies.id", ondelete="RESTRICT"),
        nullable=False,
    )
    member_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("members.id", ondelete="RESTRICT"),
        nullable=False,
    )
    staff_issued_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("staff.id", ondelete="SET NULL"),
        nullable=True,
    )

    loan_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    return_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    status: Mapped[LoanStatus] = mapped_column(
        SqlEnum(LoanStatus),
        nullable=False,
        default=LoanStatus.BORROWED,
    )

    fine_amount: Mapped[Decimal] = mapped_column(
        Numeric(8, 2),
        nullable=False,
        default=Decimal("0.00"),
    )
    renewal_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    history: Mapped[list["LoanStatusHistory"]] = relationship(
        "LoanStatusHistory",
        back_populates="loan",
        order_by="LoanStatusHistory.id",
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("idx_member_status", "member_id", "status"),
        # Como mucho un préstamo activo por copia
        Index(
            "uq_loans_active_copy",
            "copy_id",
            unique=True,
            sqlite_where=text("status IN ('BORROWED', 'OVERDUE')"),
            postgresql_where=text("status IN ('BORROWED', 'OVERDUE')"),
        ),
    )


class LoanStatusHistory(Base):
    __tablename__ = "loan_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    loan_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("loans.id", ondelete="RESTRICT"),
        nullable=False,
    )

    old_status: Mapped[LoanStatus | None] = mapped_column(
        SqlEnum(LoanStatus),
        nullable=True,
    )
    new_status: Mapped[LoanStatus] = mapped_column(
        SqlEnum(LoanStatus),
        nullable=False,
    )

    changed_by_staff_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("staff.id", ondelete="SET NULL"),
        nullable=True,
    )

    changed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    loan: Mapped["Loan"] = relationship("Loan", back_populates="history")


# ======================
# Reservation
# ======================

class Reservation(Base):
    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    member_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("members.id", ondelete="CASCADE"),
        nullable=False,
    )
    book_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("books.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Copia concreta pedida por el socio (opcional)
    copy_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("book_copies.id", ondelete="SET NULL"),
        nullable=True,
    )
    # Copia apartada para el socio mientras dura la ventana de recogida
    held_copy_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("book_copies.id", ondelete="SET NULL"),
        nullable=True,
    )

    reserved_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    status: Mapped[ReservationStatus] = mapped_column(
        SqlEnum(ReservationStatus),
        nullable=False,
        default=ReservationStatus.ACTIVE,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("idx_member_book", "member_id", "book_id"),
        # Cola FIFO: activas de un libro ordenadas por (reserved_at, id)
        Index("idx_reservations_queue", "book_id", "status", "reserved_at", "id"),
        Index("idx_reservations_expiry", "status", "expires_at"),
        Index(
            "uq_reservations_active_member_book",
            "member_id",
            "book_id",
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
    )


# ======================
# Payment (inmutable)
# ======================

class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    member_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("members.id", ondelete="RESTRICT"),
        nullable=False,
    )
    loan_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("loans.id", ondelete="SET NULL"),
        nullable=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    payment_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(
        SqlEnum(PaymentMethod),
        nullable=False,
        default=PaymentMethod.CASH,
    )
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)


# ======================
# ActivityLog
# ======================

class ActivityLog(Base):
    __tablename__ = "activity_log"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
    )
    actor_type: Mapped[ActorType] = mapped_column(SqlEnum(ActorType), nullable=False)
    actor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_actor", "actor_type", "actor_id"),
    )
