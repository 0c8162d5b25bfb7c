#!/usr/bin/env python3
"""
Reset development database - fresh schema, one company, seed users and a
starter department. Prints a bearer token per seeded user.
Run from the backend/ directory.
"""
import os
from pathlib import Path

backend_dir = Path(__file__).parent
os.chdir(backend_dir)

# Load .env before kpi_tracker.config reads the environment.
from dotenv import load_dotenv
load_dotenv(backend_dir / ".env", override=True)

# Always target the local sqlite dev DB for this script.
os.environ["DATABASE_URL"] = "sqlite:///./dev.db"

from kpi_tracker import models
from kpi_tracker.core.security import create_access_token_for_subject
from kpi_tracker.database import Base, SessionLocal, engine
from kpi_tracker.schemas import DepartmentCreate
from kpi_tracker.services.departments_service import create_department

SEED_USERS = [
    ("Owner", "owner@kpi.local", models.RoleName.owner),
    ("Manager", "manager@kpi.local", models.RoleName.manager),
    ("Member", "member@kpi.local", models.RoleName.member),
]


def main():
    db_path = backend_dir / "dev.db"

    if db_path.exists():
        print(f"Removing existing database: {db_path}")
        db_path.unlink()

    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    print("✅ Tables created")

    db = SessionLocal()
    try:
        company = models.Company(name="Dev Agency")
        db.add(company)
        for role_name in models.RoleName:
            db.add(models.Role(name=role_name, description=role_name.value))
        db.commit()

        for name, email, role_name in SEED_USERS:
            role = db.query(models.Role).filter(models.Role.name == role_name).first()
            db.add(
                models.User(
                    company_id=company.id,
                    name=name,
                    email=email,
                    role_id=role.id,
                    active=True,
                )
            )
        db.commit()
        print("✅ Users created")

        result = create_department(
            db, company.id, DepartmentCreate(name="Sales", type=models.DepartmentType.sales)
        )
        print(f"✅ {result.message}")

        print("\nDevelopment tokens:")
        for _, email, role_name in SEED_USERS:
            token = create_access_token_for_subject(email, expires_minutes=60 * 24)
            print(f"  {role_name.value:<8} {token}")

        print(f"\nDatabase: {db_path}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
