import argparse
import os
import sys

from dotenv import load_dotenv

load_dotenv(dotenv_path=os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"))

from fastapi import HTTPException

from tuition_module import init_tuition_module
from tuition_module.database import SessionLocal
from tuition_module.models import Student, User
from tuition_module.services import create_center_with_login

DEMO_STUDENTS = [
    ("Aarav Sharma", "5", "Sunrise Public School", "Rohit Sharma", "9800000001"),
    ("Sita Karki", "5", "Sunrise Public School", "Maya Karki", "9800000002"),
    ("Nabin Thapa", "6", "Valley Academy", "Hari Thapa", "9800000003"),
]


def create_demo_center(center_name, username, password):
    init_tuition_module()
    db = SessionLocal()
    try:
        if db.query(User).filter(User.username == username).first():
            print(f"User '{username}' already exists. Nothing to do.")
            return

        center = create_center_with_login(
            db,
            center_name=center_name,
            address="Demo address",
            contact_number="9800000000",
            username=username,
            password=password,
        )
        for name, grade, school, parent, contact in DEMO_STUDENTS:
            db.add(Student(
                name=name,
                grade=grade,
                school_name=school,
                parent_name=parent,
                contact_number=contact,
                center_id=center.id,
            ))
        db.commit()
        print(f"Created center '{center.center_name}' (id={center.id}) with login '{username}'.")
        print(f"Added {len(DEMO_STUDENTS)} demo students.")
    except HTTPException as e:
        db.rollback()
        print(f"Error: {e.detail}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create a demo tuition center with a center login")
    parser.add_argument("--name", default="Demo Tuition Center")
    parser.add_argument("--username", default="demo_center")
    parser.add_argument("--password", default="DemoCenter@123")
    args = parser.parse_args()
    create_demo_center(args.name, args.username, args.password)
