from sqlalchemy.engine import Engine

from database import Base, create_db_engine
from models import User
from schemas import RegisterIn
from services import UserService


def memory_engine() -> Engine:
    engine = create_db_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


def make_user(session, username: str = "alice", monthly_budget: float = 0) -> User:
    return UserService(session).register(
        RegisterIn(
            username=username,
            email=f"{username}@example.com",
            password="secret123",
            full_name=username.title(),
            monthly_budget=monthly_budget,
        )
    )
