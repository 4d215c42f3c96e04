from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from .config import settings


def _normalized_database_url(raw_url: str) -> str:
    """
    DATABASE_URL normalisation:
    - postgres:// and driverless postgresql:// use the psycopg3 dialect.
    - Anything else (SQLite etc.) is returned unchanged.
    """
    if not raw_url:
        return "sqlite:///./dairypro.db"
    raw_url = raw_url.strip()
    if raw_url.startswith("postgres://"):
        return "postgresql+psycopg://" + raw_url[len("postgres://") :]
    if raw_url.startswith("postgresql://") and "+psycopg" not in raw_url.split("://", 1)[0]:
        return "postgresql+psycopg://" + raw_url[len("postgresql://") :]
    return raw_url


DATABASE_URL = _normalized_database_url(settings.database_url)

# In-memory SQLite: one shared connection so tables created by init_db are visible to every request (tests)
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
_use_static_pool = DATABASE_URL.startswith("sqlite") and ":memory:" in DATABASE_URL
engine = create_engine(
    DATABASE_URL,
    connect_args=_connect_args,
    poolclass=StaticPool if _use_static_pool else None,
)


def get_db():
    with Session(engine) as session:
        yield session


def seed_plans(db: Session) -> None:
    """Default catalogue, only when the plan table is empty."""
    from app.models import Plan
    from app.services.plans import DEFAULT_PLANS

    if db.exec(select(Plan)).first():
        return
    for order, (name, (price, days)) in enumerate(DEFAULT_PLANS.items()):
        db.add(Plan(name=name, label=name.capitalize(), price=price, days=days, sort_order=order))
    db.commit()


def init_db():
    import app.models  # noqa: F401  register tables on the metadata

    SQLModel.metadata.create_all(engine)
    with Session(engine) as db:
        seed_plans(db)
