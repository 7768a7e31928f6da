# app/models/all_models.py
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Text, Integer, Float, JSON, Enum, Date, Time, Uuid, text, event
from sqlalchemy.orm import declarative_base, relationship
import enum
import uuid
from datetime import datetime
import pytz

from app.config import settings as app_settings

Base = declarative_base()

# Timezone setup
CLINIC_TZ = pytz.timezone(app_settings.TIMEZONE)

def clinic_now():
    return datetime.now(CLINIC_TZ)

def as_clinic_time(value):
    """Attach the clinic timezone to naive datetimes read back from the store."""
    if value is None:
        return None
    if value.tzinfo is None:
        return CLINIC_TZ.localize(value)
    return value.astimezone(CLINIC_TZ)

def _values(enum_cls):
    return [member.value for member in enum_cls]

# Enums
class UserRole(str, enum.Enum):
    SUPER_ADMIN = "SuperAdmin"
    ADMIN = "Admin"
    DOCTOR = "Doctor"
    NURSE = "Nurse"
    RECEPTIONIST = "Receptionist"
    LAB_TECH = "Lab Tech"
    PHARMACIST = "Pharmacist"
    ACCOUNTANT = "Accountant"

class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    INVITED = "invited"
    SUSPENDED = "suspended"
    DEACTIVATED = "deactivated"

class Gender(str, enum.Enum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"

class VisitStage(str, enum.Enum):
    CHECK_IN = "Check-In"
    VITALS = "Vitals"
    CONSULTATION = "Consultation"
    LAB = "Lab"
    BILLING = "Billing"
    PHARMACY = "Pharmacy"
    CLEARANCE = "Clearance"
    COMPLETED = "Completed"

class VisitPriority(str, enum.Enum):
    NORMAL = "Normal"
    URGENT = "Urgent"
    EMERGENCY = "Emergency"

class PaymentStatus(str, enum.Enum):
    PENDING = "Pending"
    PAID = "Paid"

class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "Scheduled"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    NO_SHOW = "No-Show"

class TransactionStatus(str, enum.Enum):
    PENDING = "Pending"
    SUCCESS = "Success"
    FAILED = "Failed"

class ClinicPlan(str, enum.Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"

class ClinicStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    PENDING = "pending"
    CANCELLED = "cancelled"

class LabOrderStatus(str, enum.Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"

class InventoryCategory(str, enum.Enum):
    MEDICINE = "Medicine"
    SUPPLY = "Supply"
    LAB = "Lab"
    EQUIPMENT = "Equipment"

class InventoryAction(str, enum.Enum):
    CREATED = "Created"
    UPDATED = "Updated"
    RESTOCKED = "Restocked"
    DISPENSED = "Dispensed"
    DELETED = "Deleted"

# ================================
# TENANCY
# ================================

class Clinic(Base):
    __tablename__ = "clinics"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(150), nullable=False)
    slug = Column(String(160), unique=True, nullable=False)
    email = Column(String(255))
    phone = Column(String(20))
    country = Column(String(60), default="Kenya")
    currency = Column(String(3), default=app_settings.CURRENCY)
    timezone = Column(String(60), default=app_settings.TIMEZONE)
    plan = Column(Enum(ClinicPlan, name="clinic_plan", values_callable=_values), nullable=False, default=ClinicPlan.FREE)
    status = Column(Enum(ClinicStatus, name="clinic_status", values_callable=_values), nullable=False, default=ClinicStatus.ACTIVE)
    settings = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=clinic_now, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime(timezone=True), default=clinic_now, onupdate=clinic_now, server_default=text("CURRENT_TIMESTAMP"))

    # Relationships
    users = relationship("User", back_populates="clinic")
    patients = relationship("Patient", back_populates="clinic")
    transactions = relationship("Transaction", back_populates="clinic")

    @property
    def consultation_fee(self) -> float:
        return float((self.settings or {}).get("consultationFee", app_settings.DEFAULT_CONSULTATION_FEE))

    @property
    def sms_enabled(self) -> bool:
        return bool((self.settings or {}).get("smsEnabled", True))

# ================================
# CORE USER MANAGEMENT MODELS
# ================================

class User(Base):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid(as_uuid=True), ForeignKey("clinics.id"), nullable=True)
    full_name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(20))
    password = Column(String(255), nullable=True)
    role = Column(Enum(UserRole, name="user_role", values_callable=_values), nullable=False, default=UserRole.RECEPTIONIST)
    status = Column(Enum(UserStatus, name="user_status", values_callable=_values), nullable=False, default=UserStatus.ACTIVE)
    department = Column(String(100))
    specialization = Column(String(100))
    license_number = Column(String(100))
    invited_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"))
    last_login_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=clinic_now, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime(timezone=True), default=clinic_now, onupdate=clinic_now, server_default=text("CURRENT_TIMESTAMP"))

    # Relationships
    clinic = relationship("Clinic", back_populates="users")

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

# ================================
# PATIENT RECORDS
# ================================

class Patient(Base):
    __tablename__ = "patients"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid(as_uuid=True), ForeignKey("clinics.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    phone = Column(String(20))
    age = Column(Integer)
    gender = Column(Enum(Gender, name="gender", values_callable=_values))
    blood_group = Column(String(5))
    allergies = Column(JSON, default=list)
    history = Column(JSON, default=list)  # newest first, "[YYYY-MM-DD] ..." entries
    notes = Column(Text)
    vitals = Column(JSON)
    emergency_contact = Column(JSON)
    last_visit = Column(Date)
    created_at = Column(DateTime(timezone=True), default=clinic_now, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime(timezone=True), default=clinic_now, onupdate=clinic_now, server_default=text("CURRENT_TIMESTAMP"))

    # Relationships
    clinic = relationship("Clinic", back_populates="patients")
    visits = relationship("Visit", back_populates="patient")
    appointments = relationship("Appointment", back_populates="patient")

# ================================
# APPOINTMENTS
# ================================

class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid(as_uuid=True), ForeignKey("clinics.id"), nullable=False, index=True)
    patient_id = Column(Uuid(as_uuid=True), ForeignKey("patients.id"), nullable=False)
    appointment_date = Column(Date, nullable=False)
    appointment_time = Column(Time, nullable=False)
    reason = Column(Text)
    status = Column(Enum(AppointmentStatus, name="appointment_status", values_callable=_values), nullable=False, default=AppointmentStatus.SCHEDULED)
    visit_id = Column(Uuid(as_uuid=True), ForeignKey("visits.id"))
    reminder_sent_at = Column(DateTime(timezone=True))
    cancellation_reason = Column(Text)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"))
    created_at = Column(DateTime(timezone=True), default=clinic_now, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime(timezone=True), default=clinic_now, onupdate=clinic_now, server_default=text("CURRENT_TIMESTAMP"))

    # Relationships
    patient = relationship("Patient", back_populates="appointments")

# ================================
# VISITS
# ================================

class Visit(Base):
    __tablename__ = "visits"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid(as_uuid=True), ForeignKey("clinics.id"), nullable=False, index=True)
    patient_id = Column(Uuid(as_uuid=True), ForeignKey("patients.id"), nullable=False)
    patient_name = Column(String(200), nullable=False)
    doctor_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"))
    queue_number = Column(Integer, default=0)
    stage = Column(Enum(VisitStage, name="visit_stage", values_callable=_values), nullable=False, default=VisitStage.CHECK_IN, index=True)
    stage_start_time = Column(DateTime(timezone=True), nullable=False, default=clinic_now)
    start_time = Column(DateTime(timezone=True), nullable=False, default=clinic_now)
    # free text so legacy values never break reads; ranked by app.core.queue
    priority = Column(String(20), nullable=False, default=VisitPriority.NORMAL.value)
    insurance = Column(JSON)
    vitals = Column(JSON)
    chief_complaint = Column(Text)
    diagnosis = Column(Text)
    doctor_notes = Column(Text)
    medications_dispensed = Column(Boolean, default=False)
    consultation_fee = Column(Float, nullable=False, default=app_settings.DEFAULT_CONSULTATION_FEE)
    total_bill = Column(Float, nullable=False, default=0.0)
    payment_status = Column(Enum(PaymentStatus, name="payment_status", values_callable=_values), nullable=False, default=PaymentStatus.PENDING)
    meta = Column("metadata", JSON, default=dict)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=clinic_now, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime(timezone=True), default=clinic_now, onupdate=clinic_now, server_default=text("CURRENT_TIMESTAMP"))

    # Relationships
    patient = relationship("Patient", back_populates="visits")
    lab_orders = relationship("LabOrder", back_populates="visit", cascade="all, delete-orphan", order_by="LabOrder.ordered_at")
    prescription = relationship("PrescriptionItem", back_populates="visit", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}

class LabOrder(Base):
    __tablename__ = "lab_orders"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    visit_id = Column(Uuid(as_uuid=True), ForeignKey("visits.id", ondelete="CASCADE"), nullable=False)
    test_id = Column(String(50))
    test_name = Column(String(150), nullable=False)
    price = Column(Float, nullable=False, default=0.0)
    status = Column(Enum(LabOrderStatus, name="lab_order_status", values_callable=_values), nullable=False, default=LabOrderStatus.PENDING)
    result = Column(Text)
    flag = Column(String(20))
    notes = Column(Text)
    ordered_at = Column(DateTime(timezone=True), default=clinic_now)
    completed_at = Column(DateTime(timezone=True))

    visit = relationship("Visit", back_populates="lab_orders")

class PrescriptionItem(Base):
    __tablename__ = "prescription_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    visit_id = Column(Uuid(as_uuid=True), ForeignKey("visits.id", ondelete="CASCADE"), nullable=False)
    inventory_id = Column(Uuid(as_uuid=True), ForeignKey("inventory_items.id"))
    name = Column(String(150), nullable=False)
    dosage = Column(String(150))
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Float, nullable=False, default=0.0)

    visit = relationship("Visit", back_populates="prescription")

# ================================
# PAYMENTS
# ================================

class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid(as_uuid=True), ForeignKey("clinics.id"), nullable=False, index=True)
    reference = Column(String(100), unique=True, nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), default=app_settings.CURRENCY)
    provider = Column(String(30), nullable=False, default="paystack")
    status = Column(Enum(TransactionStatus, name="transaction_status", values_callable=_values), nullable=False, default=TransactionStatus.PENDING)
    meta = Column("metadata", JSON, default=dict)
    review_reason = Column(Text)
    flagged_at = Column(DateTime(timezone=True))
    processed_at = Column(DateTime(timezone=True))
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"))
    created_at = Column(DateTime(timezone=True), default=clinic_now, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime(timezone=True), default=clinic_now, onupdate=clinic_now, server_default=text("CURRENT_TIMESTAMP"))

    clinic = relationship("Clinic", back_populates="transactions")

# ================================
# INVENTORY
# ================================

class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid(as_uuid=True), ForeignKey("clinics.id"), nullable=False, index=True)
    name = Column(String(150), nullable=False)
    category = Column(Enum(InventoryCategory, name="inventory_category", values_callable=_values), default=InventoryCategory.MEDICINE)
    unit = Column(String(20), default="units")
    stock = Column(Integer, nullable=False, default=0)
    min_stock_level = Column(Integer, nullable=False, default=10)
    price = Column(Float, nullable=False, default=0.0)
    batch_number = Column(String(50))
    expiry_date = Column(Date)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=clinic_now, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime(timezone=True), default=clinic_now, onupdate=clinic_now, server_default=text("CURRENT_TIMESTAMP"))

    logs = relationship("InventoryLog", back_populates="item")

class InventoryLog(Base):
    __tablename__ = "inventory_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid(as_uuid=True), ForeignKey("clinics.id"), nullable=False, index=True)
    item_id = Column(Uuid(as_uuid=True), ForeignKey("inventory_items.id"))
    item_name = Column(String(150), nullable=False)
    action = Column(Enum(InventoryAction, name="inventory_action", values_callable=_values), nullable=False)
    quantity_change = Column(Integer, default=0)
    notes = Column(Text)
    actor_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"))
    actor_name = Column(String(200))
    created_at = Column(DateTime(timezone=True), default=clinic_now, server_default=text("CURRENT_TIMESTAMP"))

    item = relationship("InventoryItem", back_populates="logs")

@event.listens_for(InventoryLog, "before_update")
@event.listens_for(InventoryLog, "before_delete")
def _inventory_logs_are_append_only(mapper, connection, target):
    raise ValueError("Inventory log entries are immutable")

# ================================
# AUDIT
# ================================

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid(as_uuid=True), ForeignKey("clinics.id"), index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"))
    action = Column(String(100), nullable=False)
    resource_type = Column(String(100))
    resource_id = Column(String(100))
    details = Column(JSON)
    status = Column(String(20), default="Success")
    created_at = Column(DateTime(timezone=True), default=clinic_now, server_default=text("CURRENT_TIMESTAMP"))
