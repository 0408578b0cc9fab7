"""
Database schema and connection management.

Uses SQLite with SQLAlchemy as the reference persistence collaborator:
contacts, companies (with their parent edge), areas of activity, and a
single graph_state row whose version guards link/hierarchy commits.
"""

from datetime import datetime
from pathlib import Path
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()

GRAPH_STATE_ID = 1


class ContactRecord(Base):
    """Contact row."""

    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    email = Column(String(255))
    phone = Column(String(50))
    mobile = Column(String(50))
    address = Column(Text)
    job_title = Column(String(100))
    tags = Column(JSON)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class CompanyRecord(Base):
    """Company row; parent_company_id is the hierarchy edge."""

    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255))
    phone = Column(String(50))
    website = Column(String(255))
    address = Column(Text)
    industry = Column(String(100))
    tags = Column(JSON)
    parent_company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class AreaOfActivityRecord(Base):
    """Contact <-> company link."""

    __tablename__ = "areas_of_activity"
    __table_args__ = (UniqueConstraint("contact_id", "company_id", name="uq_area_contact_company"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=False)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False)
    role = Column(String(100))
    job_description = Column(Text)
    is_primary_company = Column(Boolean, nullable=False, default=False)
    is_primary_contact = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class GraphState(Base):
    """Optimistic-concurrency token for links and hierarchy edges."""

    __tablename__ = "graph_state"

    id = Column(Integer, primary_key=True)
    version = Column(Integer, nullable=False, default=0)


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    with Session() as session:
        if session.get(GraphState, GRAPH_STATE_ID) is None:
            session.add(GraphState(id=GRAPH_STATE_ID, version=0))
            session.commit()


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    engine = create_engine(f"sqlite:///{db_path}")
    Session = sessionmaker(bind=engine)
    return Session()
