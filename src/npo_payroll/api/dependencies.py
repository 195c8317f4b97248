"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from npo_payroll.calculators.tax_table import TaxBracketTable, get_tax_table
from npo_payroll.database import get_session_factory
from npo_payroll.models import Company


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


def get_tax_table_dependency() -> TaxBracketTable:
    return get_tax_table()


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
TaxTable = Annotated[TaxBracketTable, Depends(get_tax_table_dependency)]


async def get_company_or_404(db: AsyncSession, company_id: int) -> Company:
    company = await db.get(Company, company_id)
    if company is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Company not found",
        )
    return company
