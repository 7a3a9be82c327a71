from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from portfolio_import.core.config import settings

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True, pool_recycle=1800)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
