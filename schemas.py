"""
Database Schemas for the Telehealth Booking API

Each stored Pydantic model maps to a MongoDB collection (lowercased class name).
Request bodies and response shapes live alongside them.
"""
from datetime import date as Date, datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

HHMM = r"^([01]\d|2[0-3]):[0-5]\d$"

Weekday = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
Role = Literal["patient", "doctor", "admin"]
AppointmentStatus = Literal["pending", "confirmed", "cancelled", "completed", "no-show"]
ConsultationType = Literal["in-person", "video", "chat"]

WEEKDAYS: List[str] = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


# ----------------------------- Time ranges -----------------------------
class TimeSlot(BaseModel):
    start_time: str = Field(..., pattern=HHMM, description="Start time in HH:MM")
    end_time: str = Field(..., pattern=HHMM, description="End time in HH:MM")


class TimeWindow(TimeSlot):
    """One bookable window of a weekly template."""

    enabled: bool = True


WeeklyTemplate = Dict[Weekday, List[TimeWindow]]


# ----------------------------- Actors -----------------------------
class Doctor(BaseModel):
    user_id: str = Field(..., description="Reference to user with role=doctor")
    name: str
    email: Optional[EmailStr] = None
    specialization: str
    license_number: str
    experience: int = Field(0, ge=0)
    consultation_fee: float = Field(500.0, ge=0)
    available_days: List[Weekday] = []
    weekly_template: WeeklyTemplate = {}
    consultation_types: List[ConsultationType] = ["in-person"]
    languages: List[str] = []
    is_verified: bool = False


class Patient(BaseModel):
    user_id: str = Field(..., description="Reference to user with role=patient")
    name: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    blood_group: Optional[Literal["A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"]] = None
    allergies: List[str] = []


class PatientCreate(BaseModel):
    name: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    blood_group: Optional[Literal["A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"]] = None
    allergies: List[str] = []


class DoctorUpdate(BaseModel):
    """Profile details a doctor may edit. Verification and availability are separate."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    email: Optional[EmailStr] = None
    specialization: Optional[str] = None
    license_number: Optional[str] = None
    experience: Optional[int] = Field(None, ge=0)
    consultation_fee: Optional[float] = Field(None, ge=0)
    consultation_types: Optional[List[ConsultationType]] = None
    languages: Optional[List[str]] = None


class DoctorOut(Doctor):
    id: str


class PatientOut(Patient):
    id: str


# ----------------------------- Availability -----------------------------
class Availability(BaseModel):
    available_days: List[Weekday] = []
    weekly_template: WeeklyTemplate = {}


class AvailabilityUpdate(BaseModel):
    available_days: Optional[List[Weekday]] = None
    weekly_template: Optional[WeeklyTemplate] = None


class ProjectedSlot(BaseModel):
    date: Date
    weekday: Weekday
    slots: List[TimeWindow]


class DoctorDetail(DoctorOut):
    projected_slots: List[ProjectedSlot] = []


# ----------------------------- Appointments -----------------------------
class Appointment(BaseModel):
    patient_id: str
    provider_id: str
    date: datetime = Field(..., description="Appointment day at midnight")
    time_slot: TimeSlot
    status: AppointmentStatus = "pending"
    consultation_type: ConsultationType = "in-person"
    symptoms: Optional[str] = None
    diagnosis: Optional[str] = None
    notes: Optional[str] = None
    prescription_ref: Optional[str] = None
    meeting_link: Optional[str] = None
    meeting_id: Optional[str] = None
    is_paid: bool = False
    payment_ref: Optional[str] = None


class AppointmentOut(Appointment):
    id: str
    date: Date
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AppointmentRequest(BaseModel):
    provider_id: str
    date: Date
    time_slot: TimeSlot
    consultation_type: ConsultationType = "in-person"
    symptoms: Optional[str] = None
    notes: Optional[str] = None


class VideoAppointmentRequest(BaseModel):
    provider_id: str
    date: Date
    time_slot: TimeSlot
    symptoms: Optional[str] = None
    notes: Optional[str] = None


class AvailabilityCheck(BaseModel):
    provider_id: str
    date: Date
    time_slot: TimeSlot


class StatusUpdate(BaseModel):
    status: AppointmentStatus


class AppointmentUpdate(BaseModel):
    """General field update. Status, schedule and parties are not editable here."""

    model_config = ConfigDict(extra="forbid")

    symptoms: Optional[str] = None
    diagnosis: Optional[str] = None
    notes: Optional[str] = None
    meeting_link: Optional[str] = None
    is_paid: Optional[bool] = None


# ----------------------------- Prescriptions -----------------------------
class PrescribedMedicine(BaseModel):
    name: str
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None
    instructions: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=1)


class Prescription(BaseModel):
    appointment_id: str
    patient_id: str
    provider_id: str
    medicines: List[PrescribedMedicine]
    diagnosis: Optional[str] = None
    notes: Optional[str] = None
    follow_up_date: Optional[datetime] = None
    status: Literal["active", "expired", "fulfilled"] = "active"


class PrescriptionCreate(BaseModel):
    appointment_id: str
    medicines: List[PrescribedMedicine] = Field(..., min_length=1)
    diagnosis: Optional[str] = None
    notes: Optional[str] = None
    follow_up_date: Optional[datetime] = None


class PrescriptionOut(Prescription):
    id: str
    created_at: Optional[datetime] = None


# ----------------------------- Pharmacy -----------------------------
MedicineForm = Literal["tablet", "capsule", "syrup", "injection", "ointment", "drops", "inhaler"]
OrderStatus = Literal["pending", "processing", "dispatched", "delivered", "cancelled"]
PaymentStatus = Literal["pending", "completed", "failed", "refunded"]


class Medicine(BaseModel):
    name: str
    generic_name: Optional[str] = None
    manufacturer: Optional[str] = None
    category: str
    form: MedicineForm = "tablet"
    strength: Optional[str] = None
    requires_prescription: bool = True
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    is_active: bool = True


class MedicineOut(Medicine):
    id: str


class MedicineUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    generic_name: Optional[str] = None
    manufacturer: Optional[str] = None
    category: Optional[str] = None
    strength: Optional[str] = None
    requires_prescription: Optional[bool] = None
    price: Optional[float] = Field(None, ge=0)
    is_active: Optional[bool] = None


class StockUpdate(BaseModel):
    quantity: int = Field(..., ge=0)
    action: Literal["add", "subtract", "set"]


class ShippingAddress(BaseModel):
    name: str
    phone: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    zip_code: str
    country: str = "India"


class OrderItemRequest(BaseModel):
    medicine_id: str
    quantity: int = Field(..., ge=1)


class OrderItem(BaseModel):
    medicine_id: str
    name: str
    quantity: int
    price: float
    total: float


class MedicineOrderCreate(BaseModel):
    prescription_id: str
    items: List[OrderItemRequest] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: Literal["cod", "online"] = "online"


class MedicineOrder(BaseModel):
    patient_id: str
    prescription_id: str
    items: List[OrderItem]
    shipping_address: ShippingAddress
    total_amount: float
    payment_method: Literal["cod", "online"] = "online"
    payment_status: PaymentStatus = "pending"
    payment_ref: Optional[str] = None
    order_status: OrderStatus = "pending"
    delivered_at: Optional[datetime] = None


class MedicineOrderOut(MedicineOrder):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderStatusUpdate(BaseModel):
    order_status: OrderStatus


# ----------------------------- Payments -----------------------------
class PaymentTarget(BaseModel):
    """What a payment settles: one appointment or one medicine order."""

    appointment_id: Optional[str] = None
    medicine_order_id: Optional[str] = None

    @model_validator(mode="after")
    def exactly_one_target(self):
        if (self.appointment_id is None) == (self.medicine_order_id is None):
            raise ValueError("Provide exactly one of appointment_id or medicine_order_id")
        return self

    def target(self) -> tuple[str, str]:
        if self.appointment_id is not None:
            return "appointment", self.appointment_id
        return "medicine_order", self.medicine_order_id


class Payment(BaseModel):
    appointment_id: Optional[str] = None
    medicine_order_id: Optional[str] = None
    order_id: str
    payment_id: str
    signature: str
    amount: float
    currency: str = "INR"
    status: PaymentStatus = "pending"
    method: Literal["razorpay", "stripe", "paypal", "cod"] = "razorpay"


class PaymentOut(Payment):
    id: str
    created_at: Optional[datetime] = None


class GatewayOrder(BaseModel):
    """A gateway order as issued, kept so a verification can be tied back to its target."""

    order_id: str
    target: Literal["appointment", "medicine_order"]
    target_id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    status: Literal["created", "paid"] = "created"


class PaymentOrderRequest(PaymentTarget):
    currency: str = "INR"
    receipt: Optional[str] = None


class PaymentOrder(BaseModel):
    order_id: str
    amount: int = Field(..., description="Amount in the smallest currency unit")
    currency: str
    receipt: Optional[str] = None


class PaymentVerifyRequest(PaymentTarget):
    order_id: str
    payment_id: str
    signature: str


# ----------------------------- Admin -----------------------------
class DashboardStats(BaseModel):
    doctors: int
    verified_doctors: int
    patients: int
    appointments: int
    appointments_by_status: Dict[str, int]
    prescriptions: int
    medicine_orders: int
    revenue: float
    recent_orders: List[MedicineOrderOut] = []
