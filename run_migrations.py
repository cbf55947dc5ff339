#!/usr/bin/env python3
"""
Run the database migrations.
Usage: python3 run_migrations.py
"""
import subprocess
import sys
from pathlib import Path


def run_migrations():
    """Run Alembic migrations inside the docker-compose backend container."""
    project_dir = Path(__file__).parent

    print("Running database migrations via Docker...")

    try:
        result = subprocess.run(
            ["docker-compose", "exec", "-w", "/src/pizzaday", "backend", "alembic", "upgrade", "head"],
            cwd=project_dir,
            check=True,
            capture_output=True,
            text=True
        )

        print("Migrations applied.")
        if result.stdout:
            print(result.stdout)

    except subprocess.CalledProcessError as e:
        print("Migration failed:")
        if e.stderr:
            print(e.stderr)
        if e.stdout:
            print(e.stdout)
        sys.exit(1)
    except FileNotFoundError:
        print("docker-compose not found. Make sure Docker is installed and running.")
        print("\nAlternative:")
        print("   cd pizzaday && alembic upgrade head")
        sys.exit(1)


if __name__ == "__main__":
    run_migrations()
