from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import relationship

from src.utils.time import utcnow
from .base import Base


class MetadataRecord(Base):
    """
    SIP-016 metadata for a token in one locale.

    The record with a NULL `l10n_locale` is the default one. `declared_locale` keeps the locale tag
    the default payload announces for itself in its `localization` block, so a request for that
    locale resolves to the default record.
    """

    __tablename__ = "metadata"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_id = Column(Integer, ForeignKey("tokens.id", ondelete="CASCADE"), nullable=False, index=True)
    sip = Column(Integer, nullable=False, default=16)
    l10n_locale = Column(String, nullable=True)
    l10n_uri = Column(String, nullable=True)
    declared_locale = Column(String, nullable=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    image = Column(String, nullable=True)
    cached_image = Column(String, nullable=True)
    cached_thumbnail_image = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    token = relationship("Token", back_populates="metadata_records")
    attributes = relationship(
        "MetadataAttribute",
        back_populates="record",
        order_by="MetadataAttribute.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    properties = relationship(
        "MetadataProperty",
        back_populates="record",
        order_by="MetadataProperty.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("token_id", "l10n_locale", name="metadata_token_id_locale_unique"),
        Index(
            "metadata_token_id_default_unique",
            "token_id",
            unique=True,
            postgresql_where=text("l10n_locale IS NULL"),
            sqlite_where=text("l10n_locale IS NULL"),
        ),
    )

    @property
    def is_default(self) -> bool:
        return self.l10n_locale is None


class MetadataAttribute(Base):
    __tablename__ = "metadata_attributes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    metadata_id = Column(Integer, ForeignKey("metadata.id", ondelete="CASCADE"), nullable=False, index=True)
    trait_type = Column(String, nullable=False)
    value = Column(JSON, nullable=False)
    display_type = Column(String, nullable=True)

    record = relationship("MetadataRecord", back_populates="attributes")


class MetadataProperty(Base):
    __tablename__ = "metadata_properties"

    id = Column(Integer, primary_key=True, autoincrement=True)
    metadata_id = Column(Integer, ForeignKey("metadata.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    value = Column(JSON, nullable=True)

    record = relationship("MetadataRecord", back_populates="properties")
