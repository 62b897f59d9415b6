from app.database import SessionLocal, init_db
from app.core.init_system import seed_demo_data


def seed():
    init_db()
    db = SessionLocal()
    try:
        result = seed_demo_data(db)
        if result["created_users"]:
            for email in result["created_users"]:
                print(f"Created {email}")
            print(f"Password for all demo users: '{result['password']}'")
        else:
            print(f"Demo tenant {result['tenant_id']} already seeded, nothing to do")
    finally:
        db.close()


if __name__ == "__main__":
    seed()
