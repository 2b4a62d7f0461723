from sqlalchemy import Column, Float, ForeignKey, Index, Integer, Text, UniqueConstraint, text

from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()
metadata = Base.metadata


class Providers(Base):
    __tablename__ = 'providers'

    business_name = Column(Text, nullable=False)
    requires_confirmation = Column(Integer, nullable=False, server_default=text('1'))
    default_buffer_time = Column(Integer, nullable=False, server_default=text('0'))
    id = Column(Integer, primary_key=True)
    slot_interval = Column(Integer)  # NULL = global default
    timezone = Column(Text)  # NULL = global default
    min_booking_notice = Column(Integer)  # hours
    max_booking_advance = Column(Integer)  # days
    allow_client_cancellation = Column(Integer, nullable=False, server_default=text('1'))
    cancellation_deadline = Column(Integer, nullable=False, server_default=text('0'))  # hours
    is_active = Column(Integer, nullable=False, server_default=text('1'))
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    locations = relationship('Locations', back_populates='provider')
    members = relationship('Members', back_populates='provider')
    services = relationship('Services', back_populates='provider')


class Locations(Base):
    __tablename__ = 'locations'

    provider_id = Column(ForeignKey('providers.id', ondelete='CASCADE'), nullable=False)
    name = Column(Text, nullable=False)
    city = Column(Text, nullable=False)
    city_only = Column(Integer, nullable=False, server_default=text('0'))
    is_active = Column(Integer, nullable=False, server_default=text('1'))
    id = Column(Integer, primary_key=True)
    address = Column(Text)
    postal_code = Column(Text)
    latitude = Column(Float)
    longitude = Column(Float)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    provider = relationship('Providers', back_populates='locations')
    members = relationship('Members', back_populates='location')


class Members(Base):
    __tablename__ = 'members'

    provider_id = Column(ForeignKey('providers.id', ondelete='CASCADE'), nullable=False)
    location_id = Column(ForeignKey('locations.id'), nullable=False)
    name = Column(Text, nullable=False)
    access_code = Column(Text, nullable=False, unique=True)
    is_default = Column(Integer, nullable=False, server_default=text('0'))
    is_active = Column(Integer, nullable=False, server_default=text('1'))
    id = Column(Integer, primary_key=True)
    email = Column(Text)
    phone = Column(Text)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))
    updated_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    provider = relationship('Providers', back_populates='members')
    location = relationship('Locations', back_populates='members')


class Services(Base):
    __tablename__ = 'services'

    provider_id = Column(ForeignKey('providers.id', ondelete='CASCADE'), nullable=False)
    name = Column(Text, nullable=False)
    duration = Column(Integer, nullable=False)  # minutes
    price = Column(Integer, nullable=False)  # minor currency units
    buffer_time = Column(Integer, nullable=False, server_default=text('0'))
    location_ids = Column(Text, nullable=False, server_default=text("'[]'"))
    is_active = Column(Integer, nullable=False, server_default=text('1'))
    id = Column(Integer, primary_key=True)
    member_ids = Column(Text)  # NULL = every member
    description = Column(Text)

    provider = relationship('Providers', back_populates='services')


class Availability(Base):
    __tablename__ = 'availability'
    __table_args__ = (
        UniqueConstraint('provider_id', 'member_id', 'location_id', 'day_of_week', 'effective_from'),
    )

    provider_id = Column(ForeignKey('providers.id', ondelete='CASCADE'), nullable=False)
    location_id = Column(ForeignKey('locations.id'), nullable=False)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    is_open = Column(Integer, nullable=False, server_default=text('0'))
    slots = Column(Text, nullable=False, server_default=text("'[]'"))
    id = Column(Integer, primary_key=True)
    member_id = Column(ForeignKey('members.id', ondelete='CASCADE'))  # NULL = location level
    effective_from = Column(Text)  # ISO date; NULL = in force until the first scheduled change
    updated_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))


class AvailabilityExceptions(Base):
    __tablename__ = 'availability_exceptions'
    __table_args__ = (
        UniqueConstraint('provider_id', 'member_id', 'location_id', 'date'),
    )

    provider_id = Column(ForeignKey('providers.id', ondelete='CASCADE'), nullable=False)
    location_id = Column(ForeignKey('locations.id'), nullable=False)
    date = Column(Text, nullable=False)
    is_open = Column(Integer, nullable=False, server_default=text('0'))
    slots = Column(Text, nullable=False, server_default=text("'[]'"))
    id = Column(Integer, primary_key=True)
    member_id = Column(ForeignKey('members.id', ondelete='CASCADE'))
    reason = Column(Text)
    updated_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))


class BlockedPeriods(Base):
    __tablename__ = 'blocked_periods'

    provider_id = Column(ForeignKey('providers.id', ondelete='CASCADE'), nullable=False)
    start_date = Column(Text, nullable=False)
    end_date = Column(Text, nullable=False)
    all_day = Column(Integer, nullable=False, server_default=text('1'))
    is_recurring = Column(Integer, nullable=False, server_default=text('0'))
    id = Column(Integer, primary_key=True)
    member_id = Column(ForeignKey('members.id', ondelete='CASCADE'))  # NULL = every member
    location_id = Column(ForeignKey('locations.id'))  # NULL = every location
    start_time = Column(Text)
    end_time = Column(Text)
    recurring_days = Column(Text)
    reason = Column(Text)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))


class Bookings(Base):
    __tablename__ = 'bookings'
    __table_args__ = (
        Index('idx_bookings_member_start', 'provider_id', 'member_id', 'date_start'),
        Index('idx_bookings_location_start', 'provider_id', 'location_id', 'date_start'),
    )

    provider_id = Column(ForeignKey('providers.id', ondelete='CASCADE'), nullable=False)
    # Plain ids: a booking outlives edits and deletions in the catalog
    location_id = Column(Integer, nullable=False)
    service_id = Column(Integer, nullable=False)
    date_start = Column(Text, nullable=False)  # UTC "%Y-%m-%d %H:%M:%S"
    date_end = Column(Text, nullable=False)
    duration = Column(Integer, nullable=False)
    buffer_time = Column(Integer, nullable=False, server_default=text('0'))
    price = Column(Integer, nullable=False)
    status = Column(Text, nullable=False, server_default=text("'pending'"))
    cancel_token = Column(Text, nullable=False, unique=True)
    provider_name = Column(Text, nullable=False)
    service_name = Column(Text, nullable=False)
    location_name = Column(Text, nullable=False)
    location_address = Column(Text, nullable=False)
    reminders_sent = Column(Text, nullable=False, server_default=text("'[]'"))
    created_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    updated_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    id = Column(Integer, primary_key=True)
    member_id = Column(Integer)
    member_name = Column(Text)
    client_id = Column(Text)
    client_name = Column(Text)
    client_email = Column(Text)
    client_phone = Column(Text)
    notes = Column(Text)
    cancelled_at = Column(Text)
    cancelled_by = Column(Text)
    cancel_reason = Column(Text)
    review_request_sent_at = Column(Text)


class AgendaVersions(Base):
    __tablename__ = 'agenda_versions'
    __table_args__ = (
        UniqueConstraint('provider_id', 'scope_key', 'date'),
    )

    provider_id = Column(ForeignKey('providers.id', ondelete='CASCADE'), nullable=False)
    scope_key = Column(Text, nullable=False)  # "member:<id>" / "location:<id>"
    date = Column(Text, nullable=False)  # local calendar date
    version = Column(Integer, nullable=False, server_default=text('0'))
    id = Column(Integer, primary_key=True)
