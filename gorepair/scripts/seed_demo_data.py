"""
Seed a local database with a catalog, a customer and a few technicians
Run with: python -m gorepair.scripts.seed_demo_data
"""
from sqlalchemy.orm import Session

from gorepair.db.session import SessionLocal
from gorepair.models.catalog import Part, Service
from gorepair.models.technician import TechnicianProfile, TechnicianStatus, WEEKDAYS
from gorepair.models.user import User, UserRole
from gorepair.utils.auth import get_password_hash

DEMO_PASSWORD = "Demo@123"


def create_demo_services(db: Session):
    services_data = [
        {
            "name": "AC Gas Refill",
            "category": "AC Repair",
            "price": 1800,
            "estimated_duration": 90,
            "skills_required": ["ac_gas_refill"],
            "description": "Leak check and refrigerant top-up for split and window units",
        },
        {
            "name": "AC General Service",
            "category": "AC Repair",
            "price": 600,
            "estimated_duration": 60,
            "skills_required": ["ac_service"],
            "description": "Filter and coil cleaning, drain line flush",
        },
        {
            "name": "Washing Machine Repair",
            "category": "Appliance Repair",
            "price": 500,
            "estimated_duration": 60,
            "skills_required": ["washing_machine"],
            "description": "Diagnosis and repair of front and top load machines",
        },
        {
            "name": "Switchboard Rewiring",
            "category": "Electrical",
            "price": 350,
            "estimated_duration": 45,
            "skills_required": ["wiring"],
            "description": "Replace damaged switches and rewire one board",
        },
    ]

    created = 0
    for data in services_data:
        existing = db.query(Service).filter(Service.name == data["name"]).first()
        if not existing:
            db.add(Service(**data))
        else:
            for key, value in data.items():
                setattr(existing, key, value)
        created += 1

    db.commit()
    print(f"✅ Created/Updated {created} services")
    return created


def create_demo_parts(db: Session):
    parts_data = [
        {"sku": "AC-CAP-45", "name": "AC Run Capacitor 45uF", "category": "AC Repair", "price": 450, "quantity_in_stock": 40},
        {"sku": "AC-R32-1KG", "name": "R32 Refrigerant 1kg", "category": "AC Repair", "price": 900, "quantity_in_stock": 25},
        {"sku": "WM-BELT-01", "name": "Washing Machine Drive Belt", "category": "Appliance Repair", "price": 250, "quantity_in_stock": 60},
        {"sku": "EL-SW-6A", "name": "6A Modular Switch", "category": "Electrical", "price": 50, "quantity_in_stock": 300},
    ]

    created = 0
    for data in parts_data:
        existing = db.query(Part).filter(Part.sku == data["sku"]).first()
        if not existing:
            db.add(Part(**data))
        else:
            for key, value in data.items():
                setattr(existing, key, value)
        created += 1

    db.commit()
    print(f"✅ Created/Updated {created} parts")
    return created


def _get_or_create_user(db: Session, email: str, **fields) -> User:
    user = db.query(User).filter(User.email == email).first()
    if user:
        for key, value in fields.items():
            setattr(user, key, value)
        return user

    user = User(email=email, password_hash=get_password_hash(DEMO_PASSWORD), **fields)
    db.add(user)
    db.flush()
    return user


def create_demo_customer(db: Session):
    _get_or_create_user(
        db,
        "customer@gorepair.in",
        full_name="Priya Sharma",
        phone="9820012345",
        role=UserRole.USER,
        is_active=True,
    )
    db.commit()
    print("✅ Created/Updated demo customer")
    return 1


def create_demo_technicians(db: Session):
    weekday_shift = {day: {"start": "09:00", "end": "19:00", "available": day != "sunday"} for day in WEEKDAYS}

    technicians_data = [
        {
            "email": "ravi.tech@gorepair.in",
            "full_name": "Ravi Kumar",
            "phone": "9876500001",
            "latitude": 12.9716,
            "longitude": 77.5946,
            "skills": ["ac_gas_refill", "ac_service"],
            "services": ["AC Repair"],
            "experience_years": 6,
        },
        {
            "email": "anil.tech@gorepair.in",
            "full_name": "Anil Naik",
            "phone": "9876500002",
            "latitude": 12.9352,
            "longitude": 77.6245,
            "skills": ["washing_machine", "wiring"],
            "services": ["Appliance Repair", "Electrical"],
            "experience_years": 3,
        },
        {
            "email": "suresh.tech@gorepair.in",
            "full_name": "Suresh Rao",
            "phone": "9876500003",
            "latitude": 13.0358,
            "longitude": 77.5970,
            "skills": ["ac_service", "wiring"],
            "services": [],
            "experience_years": 10,
        },
    ]

    created = 0
    for data in technicians_data:
        user = _get_or_create_user(
            db,
            data["email"],
            full_name=data["full_name"],
            phone=data["phone"],
            role=UserRole.TECHNICIAN,
            is_active=True,
            is_online=True,
            latitude=data["latitude"],
            longitude=data["longitude"],
        )

        profile = user.technician_profile or TechnicianProfile(user_id=user.id)
        profile.skills = data["skills"]
        profile.services = data["services"]
        profile.experience_years = data["experience_years"]
        profile.working_hours = weekday_shift
        profile.status = TechnicianStatus.ACTIVE
        if user.technician_profile is None:
            db.add(profile)
        created += 1

    db.commit()
    print(f"✅ Created/Updated {created} technicians")
    return created


def main():
    db = SessionLocal()

    try:
        print("🚀 Starting demo data creation...")
        print("-" * 50)

        services_count = create_demo_services(db)
        parts_count = create_demo_parts(db)
        create_demo_customer(db)
        technicians_count = create_demo_technicians(db)

        print("-" * 50)
        print("✅ Demo data creation complete!")
        print(f"   - Services: {services_count}")
        print(f"   - Parts: {parts_count}")
        print(f"   - Technicians: {technicians_count}")
        print(f"   - Password for every demo account: {DEMO_PASSWORD}")

    except Exception as e:
        print(f"❌ Error creating demo data: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
