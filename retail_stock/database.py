from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from retail_stock.config import settings

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    # Import all models so Base.metadata knows about them
    import retail_stock.models.product  # noqa: F401
    import retail_stock.models.batch  # noqa: F401
    import retail_stock.models.movement  # noqa: F401
    import retail_stock.models.document  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
