"""Counterparty directory: party lookup and creation, including the
auto-created supplier/customer that stands for another company."""
import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shopbooks.core.enum_utils import get_enum_value
from shopbooks.core.exceptions import NotFoundError, ValidationError
from shopbooks.models.company import Company
from shopbooks.models.party import Party, PartyType


logger = logging.getLogger(__name__)


class PartyDirectory:
    """Find/create parties inside one company's namespace."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_party(self, party_id: uuid.UUID, company_id: Optional[uuid.UUID] = None) -> Party:
        party = await self.db.get(Party, party_id)
        if party is None or (company_id is not None and party.company_id != company_id):
            raise NotFoundError("Party", party_id)
        return party

    async def find_party(
        self,
        company_id: uuid.UUID,
        linked_company_id: uuid.UUID,
        party_type: PartyType = PartyType.SUPPLIER,
    ) -> Optional[Party]:
        """Find the party that represents `linked_company_id` in `company_id`'s books."""
        result = await self.db.execute(
            select(Party).where(
                Party.company_id == company_id,
                Party.linked_company_id == linked_company_id,
                Party.party_type == get_enum_value(party_type),
            )
        )
        return result.scalar_one_or_none()

    async def phone_in_use(self, company_id: uuid.UUID, phone: Optional[str]) -> bool:
        if not phone:
            return False
        result = await self.db.execute(
            select(Party.id).where(Party.company_id == company_id, Party.phone == phone)
        )
        return result.first() is not None

    async def list_parties(self, company_id: uuid.UUID, party_type: Optional[str] = None) -> list[Party]:
        stmt = select(Party).where(Party.company_id == company_id)
        if party_type:
            stmt = stmt.where(Party.party_type == get_enum_value(party_type))
        result = await self.db.execute(stmt.order_by(Party.name))
        return list(result.scalars())

    async def create_party(
        self,
        company_id: uuid.UUID,
        name: str,
        actor: str,
        party_type: PartyType = PartyType.CUSTOMER,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        gst_number: Optional[str] = None,
        address: Optional[str] = None,
        linked_company_id: Optional[uuid.UUID] = None,
        is_auto_created: bool = False,
    ) -> Party:
        """Stage a new party; duplicate phones in the same company are rejected."""
        if not name or not name.strip():
            raise ValidationError("Party name is required", field="name")
        if await self.db.get(Company, company_id) is None:
            raise NotFoundError("Company", company_id)
        if await self.phone_in_use(company_id, phone):
            raise ValidationError(
                f"A party with phone {phone} already exists in this company",
                error_code="DUPLICATE_PHONE",
                field="phone",
            )

        party = Party(
            company_id=company_id,
            party_type=get_enum_value(party_type),
            name=name.strip(),
            phone=phone or None,
            email=email or None,
            gst_number=gst_number or None,
            address=address,
            linked_company_id=linked_company_id,
            is_auto_created=is_auto_created,
            created_by=actor,
        )
        self.db.add(party)
        await self.db.flush()
        return party

    async def find_or_create_counterparty(
        self,
        target_company_id: uuid.UUID,
        source_company: Company,
        actor: str,
        party_type: PartyType = PartyType.SUPPLIER,
    ) -> Party:
        """
        Resolve the party standing for `source_company` in the target company.

        Keyed by linked_company_id only. Contact details are copied when the
        source company has them; a phone already used by another party in the
        target company is dropped instead of blocking the conversion. Two
        concurrent creations collide on the (company, type, linked company)
        unique constraint; the retry then finds the winner's row.
        """
        party = await self.find_party(target_company_id, source_company.id, party_type)
        if party is not None:
            return party

        phone = source_company.phone
        if await self.phone_in_use(target_company_id, phone):
            logger.warning(
                "Phone %s already used in company %s; creating counterparty for %s without it",
                phone, target_company_id, source_company.id,
            )
            phone = None

        party = await self.create_party(
            company_id=target_company_id,
            name=source_company.name,
            actor=actor,
            party_type=party_type,
            phone=phone,
            email=source_company.email,
            gst_number=source_company.gst_number,
            address=source_company.address,
            linked_company_id=source_company.id,
            is_auto_created=True,
        )
        logger.info(
            "Auto-created %s party %s for company %s in company %s",
            get_enum_value(party_type), party.id, source_company.id, target_company_id,
        )
        return party
