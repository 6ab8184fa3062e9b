from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from invoice_recon.config import DATABASE_URL

# SQLite needs cross-thread access: the worker and scheduler threads open
# their own sessions against the same file.
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

class Base(DeclarativeBase):
	pass
