from mathbridge.database import Base, get_engine
import mathbridge.models  # noqa: F401  registers every table on Base.metadata


def init_db() -> None:
    Base.metadata.create_all(bind=get_engine())


if __name__ == "__main__":
    print("Creating scheduling tables...")
    init_db()
    print("✅ Tables created successfully!")
