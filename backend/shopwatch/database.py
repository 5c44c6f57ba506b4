from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./shopwatch.db")
DB_TIMEOUT_SECONDS = int(os.getenv("DB_TIMEOUT_SECONDS", "30"))

if DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False, "timeout": DB_TIMEOUT_SECONDS}
    engine_args = {}
else:
    connect_args = {"connect_timeout": DB_TIMEOUT_SECONDS}
    engine_args = {"pool_timeout": DB_TIMEOUT_SECONDS, "pool_pre_ping": True}

engine = create_engine(DATABASE_URL, connect_args=connect_args, **engine_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
