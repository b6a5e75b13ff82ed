"""
Mutation Gateway for the Postcode Hierarchy

All writes go through this gateway. Each create checks uniqueness in the
parent scope, then parent existence, then inserts. The checks give precise
errors; the unique indexes remain the real guard, and a violation caught at
flush time is reported the same way as a failed pre-check.

The gateway never commits. Callers run it inside a unit of work:

    with db_provider.get_unit_of_work() as uow:
        gateway = MutationGateway(uow.session)
        country = gateway.add_country("United Kingdom", "GB")
        uow.commit()
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from database.models import (
    Country,
    County,
    District,
    Ward,
    Outcode,
    Incode,
    Postcode,
    slugify,
    normalize_code,
)
from database.repositories import (
    HierarchyRepository,
    PostcodeRepository,
    EntityNotFoundError,
    AlreadyExistsError,
    ParentNotFoundError,
    ReferentialConflictError,
)

logger = logging.getLogger(__name__)


def _slug_for(name: str) -> str:
    slug = slugify(name)
    if not slug:
        raise ValueError("Name must contain at least one letter or digit")
    return slug


class MutationGateway:
    """Validated create/update/delete operations for every entity type."""

    def __init__(self, session: Session):
        self.session = session
        self.hierarchy = HierarchyRepository(session)
        self.postcodes = PostcodeRepository(session)

    def _require_parent(self, model, parent_id: int, label: str):
        parent = self.session.get(model, parent_id)
        if parent is None:
            raise ParentNotFoundError(
                f"{label} not found: {parent_id}", entity=label, identifier=parent_id
            )
        return parent

    # ============================================
    # HIERARCHY
    # ============================================

    def add_country(self, name: str, iso: Optional[str] = None) -> Country:
        """
        Create a country.

        Raises:
            AlreadyExistsError: If the name or its slug is already taken
            ValueError: If the name has no letter or digit to build a slug from
        """
        slug = _slug_for(name)
        if self.hierarchy.find_country_conflict(name, slug) is not None:
            raise AlreadyExistsError(
                f"Country already exists: {name}", entity="Country", identifier=slug
            )

        country = self.hierarchy.add(Country(name=name, slug=slug, iso=iso or None))
        logger.info(f"Country created: id={country.id} slug={slug}")
        return country

    def add_county(self, name: str, code: str, country_id: int) -> County:
        """
        Create a county under a country.

        Raises:
            AlreadyExistsError: If the slug is taken within the country
            ParentNotFoundError: If the country does not exist
        """
        slug = _slug_for(name)
        if self.hierarchy.get_county(slug, country_id) is not None:
            raise AlreadyExistsError(
                f"County already exists: {name}", entity="County", identifier=slug
            )
        self._require_parent(Country, country_id, "Country")

        county = self.hierarchy.add(
            County(name=name, slug=slug, code=code, country_id=country_id)
        )
        logger.info(f"County created: id={county.id} slug={slug} country_id={country_id}")
        return county

    def add_district(self, name: str, code: str, county_id: int) -> District:
        """
        Create a district under a county.

        Raises:
            AlreadyExistsError: If the slug is taken within the county
            ParentNotFoundError: If the county does not exist
        """
        slug = _slug_for(name)
        if self.hierarchy.get_district(slug, county_id) is not None:
            raise AlreadyExistsError(
                f"District already exists: {name}", entity="District", identifier=slug
            )
        self._require_parent(County, county_id, "County")

        district = self.hierarchy.add(
            District(name=name, slug=slug, code=code, county_id=county_id)
        )
        logger.info(f"District created: id={district.id} slug={slug} county_id={county_id}")
        return district

    def add_ward(self, name: str, code: str, district_id: int) -> Ward:
        """
        Create a ward under a district.

        Raises:
            AlreadyExistsError: If the slug is taken within the district
            ParentNotFoundError: If the district does not exist
        """
        slug = _slug_for(name)
        if self.hierarchy.get_ward(slug, district_id) is not None:
            raise AlreadyExistsError(
                f"Ward already exists: {name}", entity="Ward", identifier=slug
            )
        self._require_parent(District, district_id, "District")

        ward = self.hierarchy.add(
            Ward(name=name, slug=slug, code=code, district_id=district_id)
        )
        logger.info(f"Ward created: id={ward.id} slug={slug} district_id={district_id}")
        return ward

    def update_country(
        self,
        country_id: int,
        name: Optional[str] = None,
        iso: Optional[str] = None
    ) -> Country:
        """
        Merge-patch a country.

        Omitted or empty fields keep their stored values. The slug is always
        recomputed from the resulting name.

        Raises:
            EntityNotFoundError: If the country does not exist
            AlreadyExistsError: If the new name collides with another country
        """
        country = self.hierarchy.get_by_id(Country, country_id)
        if country is None:
            raise EntityNotFoundError(
                f"Country not found: {country_id}", entity="Country", identifier=country_id
            )

        new_name = name or country.name
        new_slug = _slug_for(new_name)
        conflict = self.hierarchy.find_country_conflict(
            new_name, new_slug, exclude_id=country.id
        )
        if conflict is not None:
            raise AlreadyExistsError(
                f"Country already exists: {new_name}", entity="Country", identifier=new_slug
            )

        country.name = new_name
        country.slug = new_slug
        country.iso = iso or country.iso
        self.hierarchy.update(country)
        logger.info(f"Country updated: id={country.id} slug={new_slug}")
        return country

    def delete_country(self, country_id: int) -> None:
        """
        Delete a country that no county references.

        Raises:
            EntityNotFoundError: If the country does not exist
            ReferentialConflictError: If any county still belongs to it
        """
        country = self.hierarchy.get_by_id(Country, country_id)
        if country is None:
            raise EntityNotFoundError(
                f"Country not found: {country_id}", entity="Country", identifier=country_id
            )

        dependents = self.hierarchy.count_counties(country.id)
        if dependents:
            raise ReferentialConflictError(
                f"Country {country_id} still has {dependents} counties",
                entity="Country",
                identifier=country_id
            )

        self.hierarchy.delete(country)
        logger.info(f"Country deleted: id={country_id}")

    # ============================================
    # POSTCODES
    # ============================================

    def add_outcode(self, code: str) -> Outcode:
        """Create an outcode. Codes are stored lowercase without whitespace."""
        normalized = normalize_code(code)
        if self.postcodes.get_outcode(normalized) is not None:
            raise AlreadyExistsError(
                f"Outcode already exists: {normalized}", entity="Outcode", identifier=normalized
            )
        return self.postcodes.add(Outcode(code=normalized))

    def add_incode(self, code: str) -> Incode:
        """Create an incode. Codes are stored lowercase without whitespace."""
        normalized = normalize_code(code)
        if self.postcodes.get_incode(normalized) is not None:
            raise AlreadyExistsError(
                f"Incode already exists: {normalized}", entity="Incode", identifier=normalized
            )
        return self.postcodes.add(Incode(code=normalized))

    def add_postcode(
        self,
        outcode_id: int,
        incode_id: int,
        latitude: float,
        longitude: float,
        ward_id: int
    ) -> Postcode:
        """
        Link an outcode and an incode into a postcode located in a ward.

        Raises:
            AlreadyExistsError: If the (outcode, incode) pair is registered
            ParentNotFoundError: If the outcode, incode or ward is missing
        """
        if self.postcodes.get_postcode(outcode_id, incode_id) is not None:
            raise AlreadyExistsError(
                f"Postcode already exists: outcode_id={outcode_id} incode_id={incode_id}",
                entity="Postcode",
                identifier=(outcode_id, incode_id)
            )
        self._require_parent(Outcode, outcode_id, "Outcode")
        self._require_parent(Incode, incode_id, "Incode")
        self._require_parent(Ward, ward_id, "Ward")

        postcode = self.postcodes.add(
            Postcode(
                outcode_id=outcode_id,
                incode_id=incode_id,
                latitude=latitude,
                longitude=longitude,
                ward_id=ward_id
            )
        )
        logger.info(f"Postcode created: id={postcode.id} ward_id={ward_id}")
        return postcode
