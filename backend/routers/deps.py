"""
Shared router dependencies.

Repositories and the audited SMS sender are built per request from the
database session, so tests can swap either with ``app.dependency_overrides``.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.sms_storage import SmsRepositories
from sms_integration.sms_client import SMSClient
from sms_integration.sms_sender import SMSSender


async def get_repositories(db: AsyncSession = Depends(get_db)) -> SmsRepositories:
    return SmsRepositories.from_session(db)


async def get_sms_sender(repos: SmsRepositories = Depends(get_repositories)) -> SMSSender:
    return SMSSender(SMSClient(), repos.sms_log)
