"""
SQLAlchemy ORM Models for the Postcode Hierarchy Service

Schema overview:
- Normalized administrative tree (country -> county -> district -> ward)
- Slugs unique within the parent scope, enforced by composite unique indexes
- Postcodes decomposed into two deduplicated code tables (outcodes, incodes)
  joined through the postcodes table, which also carries coordinates

Tables:
1. countries - Top level of the hierarchy
2. counties - Belong to a country
3. districts - Belong to a county
4. wards - Belong to a district
5. outcodes - Distinct outward codes (area + district, e.g. "sw1a")
6. incodes - Distinct inward codes (sector + unit, e.g. "1aa")
7. postcodes - Junction of outcode + incode, located in a ward
"""

import re
import unicodedata
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    String, Integer, Float, DateTime, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()


# Field limits shared with the API schemas
COUNTRY_NAME_MAX = 50
COUNTY_NAME_MAX = 50
AREA_NAME_MAX = 100
ISO_CODE_MAX = 3
AREA_CODE_MAX = 9
OUTCODE_MAX = 4
INCODE_LENGTH = 3


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


# ============================================
# HIERARCHY MODELS
# ============================================

class Country(Base, TimestampMixin):
    """
    Top level of the administrative hierarchy.

    Name and slug are unique across all countries.
    """
    __tablename__ = "countries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(COUNTRY_NAME_MAX), nullable=False, unique=True)
    slug: Mapped[str] = mapped_column(String(COUNTRY_NAME_MAX * 2), nullable=False, unique=True)
    iso: Mapped[Optional[str]] = mapped_column(String(ISO_CODE_MAX), nullable=True)

    counties: Mapped[List["County"]] = relationship(
        "County",
        back_populates="country"
    )

    def __repr__(self) -> str:
        return f"<Country(id={self.id}, slug='{self.slug}')>"


class County(Base, TimestampMixin):
    """A county within a country; slug is unique per country."""
    __tablename__ = "counties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(COUNTY_NAME_MAX), nullable=False)
    slug: Mapped[str] = mapped_column(String(COUNTY_NAME_MAX * 2), nullable=False)
    code: Mapped[str] = mapped_column(String(AREA_CODE_MAX), nullable=False)
    country_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("countries.id"),
        nullable=False
    )

    country: Mapped["Country"] = relationship("Country", back_populates="counties")
    districts: Mapped[List["District"]] = relationship(
        "District",
        back_populates="county"
    )

    __table_args__ = (
        UniqueConstraint('slug', 'country_id', name='uq_county_slug_country'),
    )

    def __repr__(self) -> str:
        return f"<County(id={self.id}, slug='{self.slug}', country_id={self.country_id})>"


class District(Base, TimestampMixin):
    """A district within a county; slug is unique per county."""
    __tablename__ = "districts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(AREA_NAME_MAX), nullable=False)
    slug: Mapped[str] = mapped_column(String(AREA_NAME_MAX * 2), nullable=False)
    code: Mapped[str] = mapped_column(String(AREA_CODE_MAX), nullable=False)
    county_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("counties.id"),
        nullable=False
    )

    county: Mapped["County"] = relationship("County", back_populates="districts")
    wards: Mapped[List["Ward"]] = relationship(
        "Ward",
        back_populates="district"
    )

    __table_args__ = (
        UniqueConstraint('slug', 'county_id', name='uq_district_slug_county'),
    )

    def __repr__(self) -> str:
        return f"<District(id={self.id}, slug='{self.slug}', county_id={self.county_id})>"


class Ward(Base, TimestampMixin):
    """An electoral ward within a district; slug is unique per district."""
    __tablename__ = "wards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(AREA_NAME_MAX), nullable=False)
    slug: Mapped[str] = mapped_column(String(AREA_NAME_MAX * 2), nullable=False)
    code: Mapped[str] = mapped_column(String(AREA_CODE_MAX), nullable=False)
    district_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("districts.id"),
        nullable=False
    )

    district: Mapped["District"] = relationship("District", back_populates="wards")
    postcodes: Mapped[List["Postcode"]] = relationship(
        "Postcode",
        back_populates="ward"
    )

    __table_args__ = (
        UniqueConstraint('slug', 'district_id', name='uq_ward_slug_district'),
    )

    def __repr__(self) -> str:
        return f"<Ward(id={self.id}, slug='{self.slug}', district_id={self.district_id})>"


# ============================================
# POSTCODE MODELS
# ============================================

class Outcode(Base):
    """
    Outward half of a postcode (area + district, e.g. "sw1a").

    Shared by every postcode in the district, so rows are never deleted.
    Codes are stored lowercase.
    """
    __tablename__ = "outcodes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(OUTCODE_MAX), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<Outcode(id={self.id}, code='{self.code}')>"


class Incode(Base):
    """Inward half of a postcode (sector + unit, e.g. "1aa"). Stored lowercase."""
    __tablename__ = "incodes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(INCODE_LENGTH), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<Incode(id={self.id}, code='{self.code}')>"


class Postcode(Base):
    """
    Junction of an outcode and an incode.

    The (outcode, incode) pair is unique system-wide; the ward is not part of
    the key. Owns the coordinate pair.
    """
    __tablename__ = "postcodes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    outcode_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("outcodes.id"),
        nullable=False
    )
    incode_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("incodes.id"),
        nullable=False
    )
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    ward_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("wards.id"),
        nullable=False
    )

    outcode: Mapped["Outcode"] = relationship("Outcode")
    incode: Mapped["Incode"] = relationship("Incode")
    ward: Mapped["Ward"] = relationship("Ward", back_populates="postcodes")

    __table_args__ = (
        UniqueConstraint('outcode_id', 'incode_id', name='uq_postcode_outcode_incode'),
        Index('ix_postcodes_outcode_id', 'outcode_id'),
        Index('ix_postcodes_ward_id', 'ward_id'),
    )

    def __repr__(self) -> str:
        return (
            f"<Postcode(id={self.id}, outcode_id={self.outcode_id}, "
            f"incode_id={self.incode_id})>"
        )


# ============================================
# HELPER FUNCTIONS
# ============================================

def slugify(name: str) -> str:
    """
    Derive a URL-safe slug from a display name.

    Strips accents, lowercases, collapses every run of characters other than
    ASCII letters and digits into a single hyphen and trims hyphens from both
    ends. Applying it twice gives the same result.

    Args:
        name: The display name (can be None)

    Returns:
        Slug string, or empty string if name is None/empty
    """
    if not name:
        return ""

    normalized = unicodedata.normalize('NFKD', name)
    normalized = ''.join(c for c in normalized if unicodedata.category(c) != 'Mn')
    normalized = re.sub(r'[^a-z0-9]+', '-', normalized.lower())
    return normalized.strip('-')


def normalize_code(code: str) -> str:
    """
    Normalize an outcode/incode for storage and matching.

    Removes all whitespace and lowercases.
    """
    if not code:
        return ""
    return re.sub(r'\s+', '', code).lower()
