from enum import Enum

from sqlalchemy.orm import DeclarativeBase, declared_attr


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models with automatic table naming."""

    @declared_attr.directive
    def __tablename__(cls) -> str:  # noqa: N805
        return cls.__name__.lower()


def enum_values(enum_cls: type[Enum]) -> list[str]:
    """Persist enum values (``"earn"``) rather than member names (``"EARN"``)."""

    return [member.value for member in enum_cls]
