# (c) Copyright Datacraft, 2026
from functools import lru_cache
from typing import Generator
from sqlalchemy import create_engine, Engine
from sqlalchemy.pool import NullPool
from sqlalchemy.orm import sessionmaker, Session as SQLAlchemySession

from twofactor.config import get_settings


@lru_cache()
def get_engine() -> Engine:
	db_url = get_settings().db_url
	if db_url.startswith("sqlite"):
		return create_engine(db_url, connect_args={"check_same_thread": False})
	return create_engine(db_url, poolclass=NullPool)


@lru_cache()
def get_sessionmaker() -> sessionmaker:
	return sessionmaker(get_engine(), expire_on_commit=False)


def get_db() -> Generator[SQLAlchemySession, None, None]:
	"""FastAPI dependency for database sessions."""
	db = get_sessionmaker()()
	try:
		yield db
	finally:
		db.close()
