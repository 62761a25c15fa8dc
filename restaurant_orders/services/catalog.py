"""
Catalog and Postcode Lookups

Read-only views over reference data maintained by catalog tooling outside
this service. Intake depends on the two contracts below, never on the
tables directly, so tests and other stores can supply their own.

    - CatalogLookup: item id → configured selection groups
    - PostcodeDirectory: postal code → Postcode row
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from restaurant_orders.models import CatalogItem, Postcode, SelectionGroup

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectionGroupRule:
    """
    One selection group attached to a catalog item.

    Attributes:
        name: Group display name (used in validation messages)
        is_required: At least one option must be chosen
        option_ids: Ids of the options belonging to the group
    """
    name: str
    is_required: bool
    option_ids: frozenset[int] = field(default_factory=frozenset)

    def is_satisfied_by(self, selected_option_ids: set[int]) -> bool:
        return bool(self.option_ids & selected_option_ids)


class CatalogLookup(ABC):
    """Contract for reading an item's selection groups."""

    @abstractmethod
    async def get_selection_groups(
        self,
        db: AsyncSession,
        item_id: int,
    ) -> list[SelectionGroupRule]:
        """
        Return the groups configured for an item.

        Items unknown to the catalog have no groups (empty list).
        """
        pass


class PostcodeDirectory(ABC):
    """Contract for resolving a postal code."""

    @abstractmethod
    async def resolve(self, db: AsyncSession, code: str) -> Optional[Postcode]:
        """Return the Postcode row for ``code``, or None if it is unknown."""
        pass


# =============================================================================
# SQL IMPLEMENTATIONS
# =============================================================================

class SqlCatalogLookup(CatalogLookup):
    """CatalogLookup over the items / selection_groups / selection_options tables."""

    async def get_selection_groups(
        self,
        db: AsyncSession,
        item_id: int,
    ) -> list[SelectionGroupRule]:
        result = await db.execute(
            select(CatalogItem)
            .where(CatalogItem.id == item_id)
            .options(
                selectinload(CatalogItem.selection_groups)
                .selectinload(SelectionGroup.options)
            )
        )
        item = result.scalar_one_or_none()
        if item is None:
            logger.debug(f"Catalog: item {item_id} not configured, no selection rules")
            return []

        return [
            SelectionGroupRule(
                name=group.name,
                is_required=group.is_required,
                option_ids=frozenset(option.id for option in group.options),
            )
            for group in item.selection_groups
        ]


class SqlPostcodeDirectory(PostcodeDirectory):
    """PostcodeDirectory over the postcodes table (exact, trimmed match)."""

    async def resolve(self, db: AsyncSession, code: str) -> Optional[Postcode]:
        result = await db.execute(
            select(Postcode).where(Postcode.code == code.strip())
        )
        return result.scalar_one_or_none()


@lru_cache()
def get_catalog_lookup() -> CatalogLookup:
    """Get the configured catalog lookup instance."""
    return SqlCatalogLookup()


@lru_cache()
def get_postcode_directory() -> PostcodeDirectory:
    """Get the configured postcode directory instance."""
    return SqlPostcodeDirectory()
