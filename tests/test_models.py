from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

from leadenrich.models.enums import LeadStatus, ScoreTier
from leadenrich.models.lead import Lead


@pytest.mark.asyncio
async def test_lead_to_dict_serialises_enums_and_dates(session_factory):
    async with session_factory() as session:
        async with session.begin():
            lead = Lead(
                tax_id="12345678000190",
                status=LeadStatus.PROCESSED,
                tier=ScoreTier.HIGH,
                founded_on=date(2001, 5, 10),
                partners=[{"name": "Ana", "document": None, "role": "Sócio"}],
            )
            session.add(lead)
            await session.flush()
            await session.refresh(lead)
            data = lead.to_dict(exclude=["street_view_url"])

    assert data["tax_id"] == "12345678000190"
    assert data["status"] == "processed"
    assert data["tier"] == "high"
    assert data["founded_on"] == "2001-05-10"
    assert data["partners"][0]["name"] == "Ana"
    assert "street_view_url" not in data
    assert lead.has_coordinates is False


@pytest.mark.asyncio
async def test_tax_id_is_unique(session_factory):
    async with session_factory() as session:
        async with session.begin():
            session.add(Lead(tax_id="12345678000190"))

    with pytest.raises(IntegrityError):
        async with session_factory() as session:
            async with session.begin():
                session.add(Lead(tax_id="12345678000190"))
