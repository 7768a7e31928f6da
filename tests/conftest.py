from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.database import get_db
from app.models.all_models import (
    Base,
    Clinic,
    InventoryItem,
    LabOrder,
    Patient,
    PaymentStatus,
    PrescriptionItem,
    User,
    UserRole,
    UserStatus,
    Visit,
    VisitPriority,
    VisitStage,
    clinic_now,
)
from app.services.notifications import NotificationService, get_notifier
from app.utils.auth import create_access_token, hash_password
from main import app

PASSWORD = "Secret#123"
PAYSTACK_SECRET = "sk_test_paystack"
MPESA_SECRET = "mpesa-callback-secret"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def webhook_secrets(monkeypatch):
    monkeypatch.setattr(settings, "PAYSTACK_SECRET_KEY", PAYSTACK_SECRET)
    monkeypatch.setattr(settings, "MPESA_CALLBACK_SECRET", MPESA_SECRET)


@pytest.fixture
def outbox():
    return []


@pytest.fixture
def client(session_factory, outbox):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    notifier = NotificationService(
        sms_sender=lambda phone, message: outbox.append(("sms", phone, message)),
        email_sender=lambda email, subject, body: outbox.append(("email", email, subject, body)),
    )
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


# ===== DATA =====

@pytest.fixture
def make_clinic(db):
    def _make(name="Uhai Clinic", slug=None, fee=500.0, **kwargs):
        clinic = Clinic(
            name=name,
            slug=slug or name.lower().replace(" ", "-"),
            currency="KES",
            settings={"consultationFee": fee},
            **kwargs
        )
        db.add(clinic)
        db.commit()
        db.refresh(clinic)
        return clinic
    return _make


@pytest.fixture
def clinic(make_clinic):
    return make_clinic()


@pytest.fixture
def make_user(db, clinic):
    def _make(role, status=UserStatus.ACTIVE, email=None, clinic_id=None):
        label = getattr(role, "value", role).lower().replace(" ", "")
        user = User(
            clinic_id=clinic_id or clinic.id,
            full_name=f"{getattr(role, 'value', role)} User",
            email=email or f"{label}@uhai.co.ke",
            password=hash_password(PASSWORD),
            role=role,
            status=status,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN)


@pytest.fixture
def doctor(make_user):
    return make_user(UserRole.DOCTOR)


@pytest.fixture
def nurse(make_user):
    return make_user(UserRole.NURSE)


@pytest.fixture
def receptionist(make_user):
    return make_user(UserRole.RECEPTIONIST)


@pytest.fixture
def pharmacist(make_user):
    return make_user(UserRole.PHARMACIST)


@pytest.fixture
def accountant(make_user):
    return make_user(UserRole.ACCOUNTANT)


@pytest.fixture
def lab_tech(make_user):
    return make_user(UserRole.LAB_TECH)


@pytest.fixture
def patient(db, clinic):
    patient = Patient(clinic_id=clinic.id, name="Wanjiku Kamau", phone="+254712345678", age=34, history=[])
    db.add(patient)
    db.commit()
    db.refresh(patient)
    return patient


@pytest.fixture
def stock_item(db, clinic):
    item = InventoryItem(clinic_id=clinic.id, name="Amoxicillin 500mg", stock=50, min_stock_level=10, price=100.0)
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


@pytest.fixture
def make_visit(db, clinic, patient):
    """Visit placed directly at ``stage``; bill lines are (name, price) / (name, qty, price, inventory_id)."""
    def _make(stage=VisitStage.CHECK_IN, payment_status=PaymentStatus.PENDING, fee=500.0,
              labs=(), prescription=(), priority=VisitPriority.NORMAL.value, waited_minutes=0,
              queue_number=1, diagnosis=None):
        started = clinic_now() - timedelta(minutes=waited_minutes)
        visit = Visit(
            clinic_id=clinic.id,
            patient_id=patient.id,
            patient_name=patient.name,
            queue_number=queue_number,
            stage=stage,
            stage_start_time=started,
            start_time=started,
            priority=priority,
            consultation_fee=fee,
            total_bill=fee,
            payment_status=payment_status,
            diagnosis=diagnosis,
            meta={},
        )
        visit.lab_orders = [LabOrder(test_name=name, price=price) for name, price in labs]
        visit.prescription = [
            PrescriptionItem(name=name, quantity=qty, price=price, inventory_id=inventory_id)
            for name, qty, price, inventory_id in prescription
        ]
        db.add(visit)
        db.commit()
        db.refresh(visit)
        return visit
    return _make


@pytest.fixture
def headers_for():
    def _headers(user):
        token = create_access_token({"sub": str(user.id), "role": user.role.value})
        return {"Authorization": f"Bearer {token}"}
    return _headers
