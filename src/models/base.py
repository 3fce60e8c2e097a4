from sqlalchemy import Enum
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def value_enum(enum_cls, name: str) -> Enum:
    """Enum column type that persists member values instead of member names."""
    return Enum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])
