import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.infra.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Route(Base):
    __tablename__ = "routes"

    route_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    origin: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    destination: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    trips: Mapped[list["Trip"]] = relationship("Trip", back_populates="route")


class Bus(Base):
    __tablename__ = "buses"

    bus_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    plate_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    seat_layout: Mapped["SeatLayout | None"] = relationship(
        "SeatLayout", back_populates="bus", uselist=False
    )
    trips: Mapped[list["Trip"]] = relationship("Trip", back_populates="bus")


class SeatLayout(Base):
    __tablename__ = "seat_layouts"

    layout_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    bus_id: Mapped[str] = mapped_column(ForeignKey("buses.bus_id"), nullable=False, unique=True)
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False)
    seats_per_row: Mapped[int] = mapped_column(Integer, nullable=False)

    bus: Mapped[Bus] = relationship("Bus", back_populates="seat_layout")


class Trip(Base):
    __tablename__ = "trips"
    __table_args__ = (Index("ix_trips_departure_time", "departure_time"),)

    trip_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    route_id: Mapped[str] = mapped_column(ForeignKey("routes.route_id"), nullable=False)
    bus_id: Mapped[str] = mapped_column(ForeignKey("buses.bus_id"), nullable=False)
    departure_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    route: Mapped[Route] = relationship("Route", back_populates="trips")
    bus: Mapped[Bus] = relationship("Bus", back_populates="trips")
    bookings: Mapped[list["Booking"]] = relationship("Booking", back_populates="trip")


class Seat(Base):
    __tablename__ = "seats"

    seat_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    bus_id: Mapped[str] = mapped_column(ForeignKey("buses.bus_id"), nullable=False)
    seat_code: Mapped[str] = mapped_column(String(8), nullable=False)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (Index("ix_bookings_booked_at_status", "booked_at", "status"),)

    booking_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    trip_id: Mapped[str] = mapped_column(ForeignKey("trips.trip_id"), nullable=False, index=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    booked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    trip: Mapped[Trip] = relationship("Trip", back_populates="bookings")
    payments: Mapped[list["Payment"]] = relationship("Payment", back_populates="booking")


class SeatStatus(Base):
    __tablename__ = "seat_statuses"

    seat_status_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    trip_id: Mapped[str] = mapped_column(ForeignKey("trips.trip_id"), nullable=False, index=True)
    seat_id: Mapped[str] = mapped_column(ForeignKey("seats.seat_id", ondelete="CASCADE"), nullable=False)
    state: Mapped[str] = mapped_column(String(16), nullable=False, default="available")


class Payment(Base):
    __tablename__ = "payments"

    payment_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str] = mapped_column(ForeignKey("bookings.booking_id"), nullable=False)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    booking: Mapped[Booking] = relationship("Booking", back_populates="payments")
