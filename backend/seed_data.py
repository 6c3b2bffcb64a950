"""Seed database with demo data."""
from confirmsure.auth import hash_password
from confirmsure.database import Base, SessionLocal, engine
from confirmsure.models import Factory, UserProfile
from confirmsure.schemas import ProductCreate
from confirmsure.security import Principal
from confirmsure.use_cases.products import create_product_use_case, transition_product_status_use_case


def seed():
    """Seed database with demo data."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    try:
        if db.query(UserProfile).filter(UserProfile.email == "admin@confirmsure.local").first():
            print("Database already seeded, nothing to do.")
            return

        factory = Factory(
            name="Demo Electronics Co",
            location="Shenzhen",
            contact_email="factory@confirmsure.local",
            contact_phone="+8675500000000",
            country="China",
        )
        db.add(factory)
        db.flush()

        users_data = [
            {
                'email': 'admin@confirmsure.local',
                'password': 'Admin-123!',
                'full_name': 'Platform Admin',
                'role': 'admin',
                'factory_id': None,
            },
            {
                'email': 'manager@confirmsure.local',
                'password': 'Manager-123!',
                'full_name': 'Factory Manager',
                'role': 'factory_manager',
                'factory_id': factory.id,
            },
            {
                'email': 'operator@confirmsure.local',
                'password': 'Operator-123!',
                'full_name': 'Line Operator',
                'role': 'factory_operator',
                'factory_id': factory.id,
            },
        ]

        users = []
        for user_data in users_data:
            password = user_data.pop('password')
            user = UserProfile(password_hash=hash_password(password), **user_data)
            db.add(user)
            users.append(user)
        db.commit()

        admin, manager, operator = (Principal.from_user(user) for user in users)

        products_data = [
            {'product_name': 'Wireless Earbuds', 'product_type': 'Audio', 'batch_id': 'EB-2026-01'},
            {'product_name': 'Smart Watch', 'product_type': 'Wearables', 'batch_id': 'SW-2026-01'},
            {'product_name': 'Power Bank 20000mAh', 'product_type': 'Accessories'},
        ]
        products = [
            create_product_use_case(db=db, principal=operator, data=ProductCreate(**product_data))
            for product_data in products_data
        ]

        # Walk the first product through to published so its page verifies as authentic.
        first = products[0]
        transition_product_status_use_case(db=db, principal=operator, product_id=first.id, action="submit")
        transition_product_status_use_case(db=db, principal=admin, product_id=first.id, action="approve")
        transition_product_status_use_case(db=db, principal=manager, product_id=first.id, action="publish")

        print("✅ Database seeded successfully!")
        print("\nDemo users:")
        print("  admin@confirmsure.local / Admin-123! (Administrator)")
        print("  manager@confirmsure.local / Manager-123! (Factory manager)")
        print("  operator@confirmsure.local / Operator-123! (Factory operator)")
        print("\nDemo QR codes:")
        for product in products:
            print(f"  {product.qr_code}  {product.product_name}")

    except Exception as e:
        db.rollback()
        print(f"❌ Error seeding database: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
