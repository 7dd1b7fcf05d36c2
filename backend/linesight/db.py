from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from linesight.config import get_settings

settings = get_settings()

# Read-only consumer: the schema is owned by the ingestion service.
engine = create_engine(settings.database_url, echo=settings.sql_echo, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

