from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def import_models() -> None:
    """Register every model on Base.metadata (create_all, Alembic autogenerate)."""
    import video_interview.db.models  # noqa: F401
