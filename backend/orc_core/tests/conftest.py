import os
os.environ["ORC_STUCK_THRESHOLD"] = "3"
import pytest
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[2]))

from orc_core import integrity, models
from orc_core.actors import resolve_actor
from orc_core.database import Base, build_engine
from orc_core.kinds import EntityKind

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = build_engine(SQLALCHEMY_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def reset_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def workshop(db):
    """
    orc: purpose: minimal factory/workshop/workbench/commission hierarchy shared by tests
    orc: outputs: WORK-001 row; FACT-001, BENCH-001 and COMM-001 exist alongside it
    orc: status: active
    """

    factory = integrity.create(db, EntityKind.FACTORY, {"name": "forest"})
    shop = integrity.create(db, EntityKind.WORKSHOP, {"factory_id": factory.id, "name": "north"})
    integrity.create(db, EntityKind.WORKBENCH, {"workshop_id": shop.id, "name": "bench-one"})
    integrity.create(db, EntityKind.COMMISSION, {"workshop_id": shop.id, "title": "Launch"})
    return shop


@pytest.fixture
def commission(db, workshop):
    return db.get(models.Commission, "COMM-001")


@pytest.fixture
def imp(db, workshop):
    return resolve_actor(db, "IMP-BENCH-001")
