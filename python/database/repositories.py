"""
Repository Pattern for Postcode Hierarchy Database Operations

Provides the storage port used by the services: typed lookups, the
hierarchy join and the prefix scans over the two code tables. Services never
build queries themselves, so they stay independent of the storage engine.
"""

import logging
from typing import List, Optional, Sequence, Tuple, Type, TypeVar

from sqlalchemy import select, func, and_, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from database.models import (
    Base,
    Country,
    County,
    District,
    Ward,
    Outcode,
    Incode,
    Postcode,
    normalize_code,
)
from database.monitoring import query_timer, timed_query

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)

# (outcode, incode) code strings
CodePair = Tuple[str, str]


class RepositoryError(Exception):
    """Base exception for repository errors."""

    def __init__(self, message: str, entity: str = "", identifier: object = None):
        self.entity = entity
        self.identifier = identifier
        super().__init__(message)


class EntityNotFoundError(RepositoryError):
    """Raised when an entity addressed by id does not exist."""
    pass


class AlreadyExistsError(RepositoryError):
    """Raised when a create or rename would break a uniqueness invariant."""
    pass


class ParentNotFoundError(RepositoryError):
    """Raised when a referenced parent row does not exist."""
    pass


class ReferentialConflictError(RepositoryError):
    """Raised when a delete is blocked by dependent rows."""
    pass


def _add_and_flush(session: Session, entity: ModelT, label: str) -> ModelT:
    """Insert or flush a row; a unique index violation surfaces as AlreadyExistsError."""
    try:
        session.add(entity)
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise AlreadyExistsError(
            f"Already exists, {label}: {e.orig}", entity=label
        )
    logger.debug(f"Saved {label}: {entity!r}")
    return entity


# ============================================
# HIERARCHY REPOSITORY
# ============================================

class HierarchyRepository:
    """Repository for the country -> county -> district -> ward tree."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, model: Type[ModelT], entity_id: int) -> Optional[ModelT]:
        """Get any hierarchy row by primary key."""
        return self.session.get(model, entity_id)

    def get_country_by_slug(self, slug: str) -> Optional[Country]:
        query = select(Country).where(Country.slug == slug)
        return self.session.execute(query).scalar_one_or_none()

    def find_country_conflict(
        self,
        name: str,
        slug: str,
        exclude_id: Optional[int] = None
    ) -> Optional[Country]:
        """
        Find a country that already uses this name or slug.

        Args:
            name: Display name to check
            slug: Slug derived from the name
            exclude_id: Country to ignore (the one being updated)
        """
        query = select(Country).where(or_(Country.name == name, Country.slug == slug))
        if exclude_id is not None:
            query = query.where(Country.id != exclude_id)
        return self.session.execute(query.limit(1)).scalar_one_or_none()

    def get_county(self, slug: str, country_id: int) -> Optional[County]:
        query = select(County).where(
            and_(County.slug == slug, County.country_id == country_id)
        )
        return self.session.execute(query).scalar_one_or_none()

    def get_district(self, slug: str, county_id: int) -> Optional[District]:
        query = select(District).where(
            and_(District.slug == slug, District.county_id == county_id)
        )
        return self.session.execute(query).scalar_one_or_none()

    def get_ward(self, slug: str, district_id: int) -> Optional[Ward]:
        query = select(Ward).where(
            and_(Ward.slug == slug, Ward.district_id == district_id)
        )
        return self.session.execute(query).scalar_one_or_none()

    def list_counties(self, country_id: int) -> List[County]:
        query = select(County).where(County.country_id == country_id).order_by(County.id)
        return list(self.session.execute(query).scalars().all())

    def list_districts(self, county_id: int) -> List[District]:
        query = select(District).where(District.county_id == county_id).order_by(District.id)
        return list(self.session.execute(query).scalars().all())

    def list_wards(self, district_id: int) -> List[Ward]:
        query = select(Ward).where(Ward.district_id == district_id).order_by(Ward.id)
        return list(self.session.execute(query).scalars().all())

    def count_counties(self, country_id: int) -> int:
        """Count counties that reference a country."""
        query = select(func.count()).select_from(County).where(
            County.country_id == country_id
        )
        return self.session.execute(query).scalar_one()

    @timed_query("resolve_ward_chain")
    def resolve_ward_chain(
        self,
        country_slug: str,
        county_slug: str,
        district_slug: str,
        ward_slug: str
    ) -> Optional[Ward]:
        """
        Resolve a full slug chain to a ward with a single joined query.

        Returns:
            The Ward, or None if any link of the chain is broken
        """
        query = (
            select(Ward)
            .join(District, Ward.district_id == District.id)
            .join(County, District.county_id == County.id)
            .join(Country, County.country_id == Country.id)
            .where(
                and_(
                    Country.slug == country_slug,
                    County.slug == county_slug,
                    District.slug == district_slug,
                    Ward.slug == ward_slug
                )
            )
            .limit(1)
        )
        return self.session.execute(query).scalar_one_or_none()

    def add(self, entity: ModelT) -> ModelT:
        """Insert a hierarchy row."""
        return _add_and_flush(self.session, entity, type(entity).__name__)

    def update(self, entity: ModelT) -> ModelT:
        """Flush pending attribute changes; unique violations become AlreadyExistsError."""
        return _add_and_flush(self.session, entity, type(entity).__name__)

    def delete(self, entity: Base) -> None:
        self.session.delete(entity)
        self.session.flush()


# ============================================
# POSTCODE REPOSITORY
# ============================================

class PostcodeRepository:
    """Repository for outcodes, incodes and the postcode junction."""

    def __init__(self, session: Session):
        self.session = session

    def get_outcode(self, code: str) -> Optional[Outcode]:
        query = select(Outcode).where(Outcode.code == normalize_code(code))
        return self.session.execute(query).scalar_one_or_none()

    def get_incode(self, code: str) -> Optional[Incode]:
        query = select(Incode).where(Incode.code == normalize_code(code))
        return self.session.execute(query).scalar_one_or_none()

    def get_by_id(self, model: Type[ModelT], entity_id: int) -> Optional[ModelT]:
        return self.session.get(model, entity_id)

    def get_postcode(self, outcode_id: int, incode_id: int) -> Optional[Postcode]:
        query = select(Postcode).where(
            and_(Postcode.outcode_id == outcode_id, Postcode.incode_id == incode_id)
        )
        return self.session.execute(query).scalar_one_or_none()

    def list_outcodes(self, offset: int = 0, limit: int = 20) -> List[Outcode]:
        query = select(Outcode).order_by(Outcode.code).offset(offset).limit(limit)
        return list(self.session.execute(query).scalars().all())

    def search_outcodes(self, fragment: str, cap: int) -> List[Outcode]:
        """Outcodes containing the fragment anywhere, at most `cap` rows."""
        query = (
            select(Outcode)
            .where(Outcode.code.contains(normalize_code(fragment), autoescape=True))
            .order_by(Outcode.code)
            .limit(cap)
        )
        return list(self.session.execute(query).scalars().all())

    def search_incodes(self, fragment: str, cap: int) -> List[Incode]:
        """Incodes containing the fragment anywhere, at most `cap` rows."""
        query = (
            select(Incode)
            .where(Incode.code.contains(normalize_code(fragment), autoescape=True))
            .order_by(Incode.code)
            .limit(cap)
        )
        return list(self.session.execute(query).scalars().all())

    def match_outcodes_by_prefix(
        self,
        prefix: str,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> List[Outcode]:
        """
        Prefix scan over the outcode table (``code LIKE prefix%``).

        Args:
            prefix: Leading characters, normalized before matching
            offset: Pagination offset
            limit: Maximum results, None for all
        """
        query = (
            select(Outcode)
            .where(Outcode.code.startswith(normalize_code(prefix), autoescape=True))
            .order_by(Outcode.code)
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        with query_timer("match_outcodes_by_prefix"):
            return list(self.session.execute(query).scalars().all())

    def match_incodes_by_prefix(self, prefix: str) -> List[Incode]:
        """Prefix scan over the incode table (``code LIKE prefix%``)."""
        query = (
            select(Incode)
            .where(Incode.code.startswith(normalize_code(prefix), autoescape=True))
            .order_by(Incode.code)
        )
        with query_timer("match_incodes_by_prefix"):
            return list(self.session.execute(query).scalars().all())

    def list_incodes_for_outcode(
        self,
        outcode_id: int,
        offset: int = 0,
        limit: int = 20
    ) -> List[Incode]:
        """Distinct incodes that form a postcode with the given outcode."""
        used = select(Postcode.incode_id).where(Postcode.outcode_id == outcode_id)
        query = (
            select(Incode)
            .where(Incode.id.in_(used))
            .order_by(Incode.code)
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.execute(query).scalars().all())

    @timed_query("get_postcode_details")
    def get_postcode_details(
        self,
        outcode_id: int,
        incode_id: int
    ) -> Optional[Tuple[Postcode, Outcode, Incode, Ward, District, County, Country]]:
        """
        Join a postcode with its codes and the whole hierarchy above its ward.

        Returns:
            Tuple of rows, or None if the pair is not registered
        """
        query = (
            select(Postcode, Outcode, Incode, Ward, District, County, Country)
            .join(Outcode, Postcode.outcode_id == Outcode.id)
            .join(Incode, Postcode.incode_id == Incode.id)
            .join(Ward, Postcode.ward_id == Ward.id)
            .join(District, Ward.district_id == District.id)
            .join(County, District.county_id == County.id)
            .join(Country, County.country_id == Country.id)
            .where(
                and_(
                    Postcode.outcode_id == outcode_id,
                    Postcode.incode_id == incode_id
                )
            )
            .limit(1)
        )
        row = self.session.execute(query).first()
        return tuple(row) if row is not None else None

    def list_codes_for_ward(
        self,
        ward_id: int,
        exclude_postcode_id: Optional[int] = None,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> List[CodePair]:
        """Project the postcodes of a ward to (outcode, incode) code strings."""
        query = (
            select(Outcode.code, Incode.code)
            .select_from(Postcode)
            .join(Outcode, Postcode.outcode_id == Outcode.id)
            .join(Incode, Postcode.incode_id == Incode.id)
            .where(Postcode.ward_id == ward_id)
            .order_by(Outcode.code, Incode.code)
            .offset(offset)
        )
        if exclude_postcode_id is not None:
            query = query.where(Postcode.id != exclude_postcode_id)
        if limit is not None:
            query = query.limit(limit)
        return [(row[0], row[1]) for row in self.session.execute(query)]

    @timed_query("find_postcode_codes")
    def find_postcode_codes(
        self,
        outcode_ids: Sequence[int],
        incode_ids: Optional[Sequence[int]] = None,
        offset: int = 0,
        limit: int = 20
    ) -> List[CodePair]:
        """
        Postcodes whose outcode is in `outcode_ids` and, when given, whose
        incode is in `incode_ids`, projected to code strings.
        """
        conditions = [Postcode.outcode_id.in_(list(outcode_ids))]
        if incode_ids is not None:
            conditions.append(Postcode.incode_id.in_(list(incode_ids)))

        query = (
            select(Outcode.code, Incode.code)
            .select_from(Postcode)
            .join(Outcode, Postcode.outcode_id == Outcode.id)
            .join(Incode, Postcode.incode_id == Incode.id)
            .where(and_(*conditions))
            .order_by(Outcode.code, Incode.code)
            .offset(offset)
            .limit(limit)
        )
        return [(row[0], row[1]) for row in self.session.execute(query)]

    def add(self, entity: ModelT) -> ModelT:
        """Insert an outcode, incode or postcode row."""
        return _add_and_flush(self.session, entity, type(entity).__name__)
