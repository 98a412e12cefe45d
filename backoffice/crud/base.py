from typing import Any, Dict, Generic, List, Optional, Type, TypeVar, Union, Tuple, Sequence
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_
from sqlalchemy.dialects import postgresql, sqlite
from backoffice.models.base import Base
from backoffice.core.exceptions import NotFoundError

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
UpdateSchemaType = TypeVar("UpdateSchemaType", bound=BaseModel)

class CRUDBase(Generic[ModelType, CreateSchemaType, UpdateSchemaType]):
    def __init__(self, model: Type[ModelType]):
        self.model = model

    async def get(self, db: AsyncSession, id: Any, *, raise_if_not_found: bool = True) -> Optional[ModelType]:
        """Get a single record by ID"""
        result = await db.execute(select(self.model).where(self.model.id == id))
        obj = result.scalar_one_or_none()

        if raise_if_not_found and obj is None:
            raise NotFoundError(f"{self.model.__name__}")

        return obj

    async def get_multi(
        self,
        db: AsyncSession,
        *,
        skip: int = 0,
        limit: int = 100,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        order_desc: bool = True
    ) -> Tuple[List[ModelType], int]:
        """Get multiple records with pagination and filtering"""
        query = select(self.model)

        # Apply filters
        if filters:
            filter_conditions = []
            for field, value in filters.items():
                if hasattr(self.model, field):
                    if isinstance(value, (list, tuple)):
                        filter_conditions.append(getattr(self.model, field).in_(value))
                    else:
                        filter_conditions.append(getattr(self.model, field) == value)

            if filter_conditions:
                query = query.where(and_(*filter_conditions))

        # Get total count for pagination
        count_query = select(func.count()).select_from(query.subquery())
        total_result = await db.execute(count_query)
        total = total_result.scalar()

        # Apply ordering
        if order_by and hasattr(self.model, order_by):
            order_field = getattr(self.model, order_by)
            query = query.order_by(order_field.desc() if order_desc else order_field.asc())
        else:
            # Default ordering by created_at desc
            query = query.order_by(self.model.created_at.desc())

        # Apply pagination
        query = query.offset(skip).limit(limit)

        result = await db.execute(query)
        items = list(result.scalars().all())

        return items, total

    async def create(self, db: AsyncSession, *, obj_in: CreateSchemaType, commit: bool = True) -> ModelType:
        """Create a new record"""
        # Use model_dump() to preserve Python types (date, datetime, etc.)
        obj_in_data = obj_in.model_dump(exclude_unset=True)

        db_obj = self.model(**obj_in_data)
        db.add(db_obj)
        if commit:
            await db.commit()
            await db.refresh(db_obj)
        else:
            await db.flush()
        return db_obj

    async def update(
        self,
        db: AsyncSession,
        *,
        db_obj: ModelType,
        obj_in: Union[UpdateSchemaType, Dict[str, Any]],
        commit: bool = True
    ) -> ModelType:
        """Update a record"""
        if isinstance(obj_in, dict):
            update_data = obj_in
        else:
            update_data = obj_in.model_dump(exclude_unset=True)

        for field, value in update_data.items():
            if hasattr(db_obj, field):
                setattr(db_obj, field, value)

        db.add(db_obj)
        if commit:
            await db.commit()
            await db.refresh(db_obj)
        else:
            await db.flush()
        return db_obj

    async def insert_if_absent(
        self,
        db: AsyncSession,
        *,
        values: Dict[str, Any],
        conflict_columns: Sequence[str]
    ) -> Optional[Any]:
        """
        INSERT ... ON CONFLICT DO NOTHING RETURNING id.
        Returns the new primary key, or None when a row with the same key already exists.
        The caller owns the transaction.
        """
        dialect = db.get_bind().dialect.name
        if dialect == "postgresql":
            insert_fn = postgresql.insert
        elif dialect == "sqlite":
            insert_fn = sqlite.insert
        else:
            raise NotImplementedError(f"insert_if_absent is not supported on {dialect}")

        stmt = (
            insert_fn(self.model)
            .values(**values)
            .on_conflict_do_nothing(index_elements=list(conflict_columns))
            .returning(self.model.id)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

