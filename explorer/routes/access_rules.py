from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.models.access import AccessRuleIn, AccessRuleRead
from explorer.models.users import RequestIdentity
from explorer.routes.deps import require_admin
from explorer.services.access_control_service import get_rules, set_rules
from explorer.utils.db_async import get_session

router = APIRouter(prefix="/api/access-rules", tags=["access-rules"])


@router.get("", response_model=List[AccessRuleRead])
async def read_rules(
    _admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> List[AccessRuleRead]:
    return await get_rules(db)


@router.put("", response_model=List[AccessRuleRead])
async def replace_rules(
    rules: List[AccessRuleIn],
    _admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> List[AccessRuleRead]:
    """Replace the whole rule set; list order is evaluation order."""
    return await set_rules(db, rules)
