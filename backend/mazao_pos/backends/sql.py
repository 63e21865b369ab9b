"""Self-hosted backend: users/shops in a relational database via async SQLAlchemy.

Password accounts live in ``auth_accounts`` (bcrypt hashes); a successful
sign-in yields a signed session token that is persisted on the device and
validated again on the next start-up.
"""

import asyncio
import logging

from jose import JWTError
from sqlalchemy import inspect as sa_inspect
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from mazao_pos.backends.base import (
    AuthEvent,
    BackendError,
    BaseAuthClient,
    RemoteBackend,
    RemoteSession,
    Row,
)
from mazao_pos.core.security import (
    create_session_token,
    decode_session_token,
    hash_password,
    verify_password,
)
from mazao_pos.db.base import Base, create_all, create_engine, create_session_factory
from mazao_pos.models import AuthAccount, Shop, User
from mazao_pos.services.local_cache import KeyValueStore

logger = logging.getLogger(__name__)

TABLES: dict[str, type[Base]] = {
    "users": User,
    "shops": Shop,
}


def _to_row(obj: Base) -> Row:
    return {attr.key: getattr(obj, attr.key) for attr in sa_inspect(obj).mapper.column_attrs}


class SqlRowStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def _model(table: str) -> type[Base]:
        try:
            return TABLES[table]
        except KeyError:
            raise BackendError(f"Unknown table: {table}")

    @staticmethod
    def _where(model: type[Base], filters: Row) -> list:
        conditions = []
        for column, value in filters.items():
            attr = getattr(model, column, None)
            if attr is None:
                raise BackendError(f"Unknown column: {model.__tablename__}.{column}")
            conditions.append(attr.is_(None) if value is None else attr == value)
        return conditions

    async def select(self, table: str, filters: Row) -> list[Row]:
        model = self._model(table)
        query = select(model).where(*self._where(model, filters))
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return [_to_row(obj) for obj in result.scalars().all()]
        except SQLAlchemyError as exc:
            logger.error("Select from %s failed: %s", table, exc, exc_info=True)
            raise BackendError("Database error") from exc

    async def select_one(self, table: str, filters: Row) -> Row | None:
        model = self._model(table)
        query = select(model).where(*self._where(model, filters)).limit(1)
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                obj = result.scalars().first()
                return _to_row(obj) if obj is not None else None
        except SQLAlchemyError as exc:
            logger.error("Select from %s failed: %s", table, exc, exc_info=True)
            raise BackendError("Database error") from exc

    async def insert(self, table: str, row: Row) -> Row:
        model = self._model(table)
        try:
            obj = model(**row)
        except TypeError as exc:
            raise BackendError(f"Invalid {table} row: {exc}") from exc
        try:
            async with self._session_factory() as session:
                session.add(obj)
                await session.commit()
                await session.refresh(obj)
                return _to_row(obj)
        except IntegrityError as exc:
            logger.info("Insert into %s violated a constraint: %s", table, exc.orig)
            raise BackendError("A record with these details already exists", 409) from exc
        except SQLAlchemyError as exc:
            logger.error("Insert into %s failed: %s", table, exc, exc_info=True)
            raise BackendError("Database error") from exc

    async def update(self, table: str, filters: Row, patch: Row) -> list[Row]:
        model = self._model(table)
        query = select(model).where(*self._where(model, filters))
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                objs = result.scalars().all()
                for obj in objs:
                    for column, value in patch.items():
                        setattr(obj, column, value)
                await session.commit()
                return [_to_row(obj) for obj in objs]
        except IntegrityError as exc:
            logger.info("Update of %s violated a constraint: %s", table, exc.orig)
            raise BackendError("A record with these details already exists", 409) from exc
        except SQLAlchemyError as exc:
            logger.error("Update of %s failed: %s", table, exc, exc_info=True)
            raise BackendError("Database error") from exc


class SqlAuthClient(BaseAuthClient):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: KeyValueStore | None = None,
    ):
        super().__init__(cache)
        self._session_factory = session_factory

    async def _account_by_email(self, email: str) -> AuthAccount | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AuthAccount).where(AuthAccount.email == email.strip().lower())
            )
            return result.scalar_one_or_none()

    async def sign_in_with_password(self, email: str, password: str) -> RemoteSession:
        try:
            account = await self._account_by_email(email)
        except SQLAlchemyError as exc:
            logger.error("Account lookup failed: %s", exc, exc_info=True)
            raise BackendError("Database error") from exc

        # bcrypt is deliberately slow; keep it off the event loop
        if account is None or not await asyncio.to_thread(
            verify_password, password, account.hashed_password
        ):
            raise BackendError("Invalid login credentials", 400)

        token, expire = create_session_token(account.id, account.email)
        session = RemoteSession(
            user_id=account.id,
            email=account.email,
            access_token=token,
            expires_at=expire,
        )
        await self._store_session(session)
        await self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str) -> str:
        hashed = await asyncio.to_thread(hash_password, password)
        account = AuthAccount(email=email.strip().lower(), hashed_password=hashed)
        try:
            async with self._session_factory() as session:
                session.add(account)
                await session.commit()
                return account.id
        except IntegrityError as exc:
            raise BackendError("User already registered", 422) from exc
        except SQLAlchemyError as exc:
            logger.error("Sign up failed: %s", exc, exc_info=True)
            raise BackendError("Database error") from exc

    async def sign_out(self) -> None:
        await self._clear_session()
        await self._emit(AuthEvent.SIGNED_OUT, None)

    async def get_session(self) -> RemoteSession | None:
        if self._session is None:
            self._session = await self._load_session()
        session = self._session
        if session is None:
            return None
        try:
            payload = decode_session_token(session.access_token)
        except JWTError:
            logger.info("Persisted session token is no longer valid")
            await self._clear_session()
            await self._emit(AuthEvent.SIGNED_OUT, None)
            return None
        if payload.get("type") != "session" or payload.get("sub") != session.user_id:
            await self._clear_session()
            return None
        return session

    async def reset_password_for_email(self, email: str) -> None:
        raise BackendError(
            "Password reset by email is not available on this server. "
            "Ask your shop admin to reset your password."
        )


class SqlBackend(RemoteBackend):
    name = "sql"

    def __init__(
        self,
        database_url: str | None = None,
        cache: KeyValueStore | None = None,
        engine: AsyncEngine | None = None,
    ):
        if engine is None:
            if not database_url:
                raise ValueError("SqlBackend needs a database_url or an engine")
            engine = create_engine(database_url)
        self.engine = engine
        session_factory = create_session_factory(engine)
        self.rows = SqlRowStore(session_factory)
        self.auth = SqlAuthClient(session_factory, cache)

    async def start(self) -> None:
        await create_all(self.engine)

    async def aclose(self) -> None:
        await self.engine.dispose()
