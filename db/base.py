from sqlalchemy import Column, DateTime, MetaData, Numeric, String, func
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

# Named constraints so check/foreign key violations are identifiable in errors
metadata = MetaData(naming_convention={
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
})

# The declarative base that all models will inherit from.
Base = declarative_base(metadata=metadata)


class Timestamped(Base):
    """
    An abstract base class that provides a `created_at` column.
    """
    __abstract__ = True
    created_at = Column(DateTime, default=func.now(), nullable=False)


class MinorUnits(TypeDecorator):
    """Integer amount in a chain's smallest unit (wei fits in 78 digits).

    SQLite has no exact decimal type, so values are kept as text there.
    """
    impl = Numeric(78, 0)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(78))
        return dialect.type_descriptor(Numeric(78, 0))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = int(value)
        return str(value) if dialect.name == "sqlite" else value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)
