from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from backoffice.crud.base import CRUDBase
from backoffice.models.setting import Setting
from pydantic import BaseModel


class SettingCreate(BaseModel):
    key: str
    value: str


class CRUDSetting(CRUDBase[Setting, SettingCreate, BaseModel]):
    async def get_value(self, db: AsyncSession, key: str) -> Optional[str]:
        result = await db.execute(select(self.model.value).where(self.model.key == key))
        return result.scalar_one_or_none()

    async def set_value(self, db: AsyncSession, key: str, value: str) -> Setting:
        existing = await db.execute(select(self.model).where(self.model.key == key))
        setting = existing.scalar_one_or_none()
        if setting is None:
            return await self.create(db, obj_in=SettingCreate(key=key, value=value))
        return await self.update(db, db_obj=setting, obj_in={"value": value})


setting_crud = CRUDSetting(Setting)
