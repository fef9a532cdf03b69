from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, List, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

import database as store
from auth import Actor, get_current_user
from admin import AdminService
from availability import AvailabilityModel
from booking import BookingService
from config import (
    CORS_ORIGINS,
    LOG_LEVEL,
    MAX_HORIZON_DAYS,
    PORT,
    RAZORPAY_API_URL,
    RAZORPAY_KEY_ID,
    RAZORPAY_SECRET,
    SLOT_HORIZON_DAYS,
)
from errors import BookingError, NotFound, ServiceUnavailable
from ledger import BookingLedger
from logging_config import setup_logging
from medicines import MedicineCatalog
from meetings import JitsiMeetingProvider, MeetingProvider
from orders import OrderService
from payments import PaymentService, RazorpayGateway
from prescriptions import PrescriptionService
from profiles import Profiles
from schemas import (
    AppointmentOut,
    AppointmentRequest,
    AppointmentUpdate,
    Availability,
    AvailabilityCheck,
    AvailabilityUpdate,
    DashboardStats,
    Doctor,
    DoctorDetail,
    DoctorOut,
    DoctorUpdate,
    Medicine,
    MedicineOrderCreate,
    MedicineOrderOut,
    MedicineOut,
    MedicineUpdate,
    OrderStatusUpdate,
    PatientCreate,
    PatientOut,
    PaymentOrder,
    PaymentOrderRequest,
    PaymentOut,
    PaymentVerifyRequest,
    PrescriptionCreate,
    PrescriptionOut,
    ProjectedSlot,
    StatusUpdate,
    StockUpdate,
    VideoAppointmentRequest,
)
from slots import clinic_now, clinic_today, project_slots

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    profiles: Profiles
    availability: AvailabilityModel
    ledger: BookingLedger
    booking: BookingService
    prescriptions: PrescriptionService
    catalog: MedicineCatalog
    orders: OrderService
    payments: PaymentService
    admin: AdminService


def build_services(
    database: Database,
    meetings: MeetingProvider,
    gateway: Optional[RazorpayGateway],
    payment_secret: Optional[str],
    today: Callable[[], date],
    now: Callable[[], datetime],
) -> Services:
    profiles = Profiles(database)
    availability = AvailabilityModel(database, profiles)
    ledger = BookingLedger(database)
    catalog = MedicineCatalog(database)
    orders = OrderService(database, catalog, profiles)
    return Services(
        profiles=profiles,
        availability=availability,
        ledger=ledger,
        booking=BookingService(ledger, availability, profiles, meetings, today=today, now=now),
        prescriptions=PrescriptionService(database, ledger, profiles),
        catalog=catalog,
        orders=orders,
        payments=PaymentService(database, ledger, profiles, orders, gateway, payment_secret),
        admin=AdminService(database, profiles, ledger),
    )


def get_services(request: Request) -> Services:
    services = request.app.state.services
    if services is None:
        raise ServiceUnavailable("Database not available")
    return services


router = APIRouter(prefix="/api/v1")

# ----------------------------- Doctors & Availability -----------------------------
@router.post("/doctors", response_model=DoctorOut, status_code=201)
def create_doctor(profile: Doctor, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.profiles.create_doctor(profile, actor)


@router.get("/doctors", response_model=List[DoctorOut])
def list_doctors(
    specialization: Optional[str] = None,
    name: Optional[str] = None,
    language: Optional[str] = None,
    verified: Optional[bool] = None,
    services: Services = Depends(get_services),
):
    return services.profiles.list_doctors(specialization, name=name, language=language, verified=verified)


@router.get("/doctors/{doctor_id}", response_model=DoctorDetail)
def get_doctor(doctor_id: str, services: Services = Depends(get_services)):
    doctor = services.profiles.require_doctor(doctor_id)
    template = services.availability.get_template(doctor_id)
    doctor["projected_slots"] = list(project_slots(template, SLOT_HORIZON_DAYS, services.booking.today()))
    return doctor


@router.put("/doctors/{doctor_id}", response_model=DoctorOut)
def update_doctor(
    doctor_id: str,
    body: DoctorUpdate,
    actor: Actor = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.profiles.update_doctor(doctor_id, body, actor)


@router.delete("/doctors/{doctor_id}", status_code=204)
def delete_doctor(doctor_id: str, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    services.admin.delete_doctor(doctor_id, actor)


@router.get("/doctors/{doctor_id}/slots", response_model=List[ProjectedSlot])
def get_doctor_slots(
    doctor_id: str,
    days: int = Query(SLOT_HORIZON_DAYS, ge=1, le=MAX_HORIZON_DAYS),
    services: Services = Depends(get_services),
):
    template = services.availability.get_template(doctor_id)
    return list(project_slots(template, days, services.booking.today()))


@router.put("/doctors/{doctor_id}/availability", response_model=Availability)
def update_availability(
    doctor_id: str,
    body: AvailabilityUpdate,
    actor: Actor = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.availability.set_template(doctor_id, body.available_days, body.weekly_template, actor)


@router.get("/doctors/{doctor_id}/appointments", response_model=List[AppointmentOut])
def list_doctor_appointments(doctor_id: str, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.booking.for_provider(doctor_id, actor)


# ----------------------------- Patients -----------------------------
@router.post("/patients", response_model=PatientOut, status_code=201)
def create_patient(body: PatientCreate, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.profiles.create_patient(body, actor)


@router.get("/patients/me", response_model=PatientOut)
def get_my_patient_profile(actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    patient = services.profiles.patient_for(actor)
    if patient is None:
        raise NotFound("Patient not found", code="patient_not_found")
    return patient


# ----------------------------- Appointments -----------------------------
@router.post("/appointments", response_model=AppointmentOut, status_code=201)
def create_appointment(req: AppointmentRequest, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.booking.create_appointment(
        actor,
        req.provider_id,
        req.date,
        req.time_slot,
        consultation_type=req.consultation_type,
        symptoms=req.symptoms,
        notes=req.notes,
    )


@router.post("/appointments/video", response_model=AppointmentOut, status_code=201)
def create_video_appointment(
    req: VideoAppointmentRequest, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)
):
    return services.booking.create_video_appointment(
        actor, req.provider_id, req.date, req.time_slot, symptoms=req.symptoms, notes=req.notes
    )


@router.post("/appointments/availability", response_model=dict)
def check_availability(req: AvailabilityCheck, services: Services = Depends(get_services)):
    return {"available": services.booking.check_availability(req.provider_id, req.date, req.time_slot)}


@router.get("/appointments", response_model=List[AppointmentOut])
def list_appointments(actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.booking.list_appointments(actor)


@router.get("/appointments/upcoming", response_model=List[AppointmentOut])
def list_upcoming_appointments(actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.booking.upcoming(actor)


@router.get("/appointments/patient/{patient_id}", response_model=List[AppointmentOut])
def list_patient_appointments(patient_id: str, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.booking.for_patient(patient_id, actor)


@router.get("/appointments/{appointment_id}", response_model=AppointmentOut)
def get_appointment(appointment_id: str, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.booking.get_appointment(appointment_id, actor)


@router.put("/appointments/{appointment_id}", response_model=AppointmentOut)
def update_appointment(
    appointment_id: str,
    body: AppointmentUpdate,
    actor: Actor = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.booking.update_appointment(appointment_id, body, actor)


@router.put("/appointments/{appointment_id}/status", response_model=AppointmentOut)
def update_appointment_status(
    appointment_id: str,
    body: StatusUpdate,
    actor: Actor = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.booking.update_status(appointment_id, body.status, actor)


@router.delete("/appointments/{appointment_id}", status_code=204)
def delete_appointment(appointment_id: str, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    services.booking.delete_appointment(appointment_id, actor)


@router.post("/admin/appointments/no-show-sweep", response_model=List[AppointmentOut])
def sweep_no_shows(actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.booking.sweep_no_shows(actor)


@router.put("/admin/doctors/{doctor_id}/approve", response_model=DoctorOut)
def approve_doctor(doctor_id: str, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.admin.approve_doctor(doctor_id, actor)


@router.get("/admin/dashboard/stats", response_model=DashboardStats)
def dashboard_stats(actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.admin.dashboard_stats(actor)



# ----------------------------- Prescriptions -----------------------------
@router.post("/prescriptions", response_model=PrescriptionOut, status_code=201)
def create_prescription(body: PrescriptionCreate, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.prescriptions.create(body, actor)


@router.get("/prescriptions", response_model=List[PrescriptionOut])
def list_prescriptions(actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.prescriptions.list(actor)


@router.get("/prescriptions/{prescription_id}", response_model=PrescriptionOut)
def get_prescription(prescription_id: str, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.prescriptions.get(prescription_id, actor)


# ----------------------------- Pharmacy -----------------------------
@router.get("/medicines", response_model=List[MedicineOut])
def search_medicines(name: Optional[str] = None, category: Optional[str] = None, services: Services = Depends(get_services)):
    return services.catalog.search(name, category)


@router.post("/medicines", response_model=MedicineOut, status_code=201)
def create_medicine(body: Medicine, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.catalog.create(body, actor)


@router.get("/medicines/{medicine_id}", response_model=MedicineOut)
def get_medicine(medicine_id: str, services: Services = Depends(get_services)):
    return services.catalog.get(medicine_id)


@router.put("/medicines/{medicine_id}", response_model=MedicineOut)
def update_medicine(
    medicine_id: str,
    body: MedicineUpdate,
    actor: Actor = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.catalog.update(medicine_id, body, actor)


@router.put("/medicines/{medicine_id}/stock", response_model=MedicineOut)
def update_medicine_stock(
    medicine_id: str,
    body: StockUpdate,
    actor: Actor = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.catalog.update_stock(medicine_id, body, actor)


@router.post("/orders", response_model=MedicineOrderOut, status_code=201)
def create_order(body: MedicineOrderCreate, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.orders.create(body, actor)


@router.get("/orders", response_model=List[MedicineOrderOut])
def list_orders(actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.orders.list(actor)


@router.get("/orders/mine", response_model=List[MedicineOrderOut])
def list_my_orders(actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.orders.mine(actor)


@router.get("/orders/{order_id}", response_model=MedicineOrderOut)
def get_order(order_id: str, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.orders.get(order_id, actor)


@router.put("/orders/{order_id}/status", response_model=MedicineOrderOut)
def update_order_status(
    order_id: str,
    body: OrderStatusUpdate,
    actor: Actor = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.orders.set_status(order_id, body.order_status, actor)


# ----------------------------- Payments -----------------------------
@router.post("/payments/create-order", response_model=PaymentOrder)
def create_payment_order(body: PaymentOrderRequest, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.payments.create_order(body, actor)


@router.post("/payments/verify", response_model=PaymentOut)
def verify_payment(body: PaymentVerifyRequest, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.payments.verify(body, actor)


@router.get("/payments", response_model=List[PaymentOut])
def list_payments(actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.payments.list(actor)


@router.post("/payments/{payment_id}/refund", response_model=PaymentOut)
def refund_payment(payment_id: str, actor: Actor = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.payments.refund(payment_id, actor)


# ----------------------------- Application -----------------------------
def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app(
    database: Optional[Database] = None,
    meetings: Optional[MeetingProvider] = None,
    gateway: Optional[RazorpayGateway] = None,
    payment_secret: Optional[str] = RAZORPAY_SECRET,
    today: Callable[[], date] = clinic_today,
    now: Callable[[], datetime] = clinic_now,
) -> FastAPI:
    setup_logging(LOG_LEVEL)
    app = FastAPI(title="Telehealth Booking API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if database is None:
        database = store.get_database()
    if gateway is None and RAZORPAY_KEY_ID and RAZORPAY_SECRET:
        gateway = RazorpayGateway(RAZORPAY_KEY_ID, RAZORPAY_SECRET, RAZORPAY_API_URL)

    app.state.database = database
    app.state.services = None
    if database is not None:
        store.ensure_indexes(database)
        app.state.services = build_services(
            database, meetings or JitsiMeetingProvider(), gateway, payment_secret, today, now
        )
    else:
        logger.warning("database_not_configured")

    app.add_exception_handler(BookingError, booking_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.get("/")
    def root():
        return {"message": "Telehealth Booking API running"}

    @app.get("/health")
    def health():
        response = {"backend": "running", "database": "not configured", "collections": []}
        if app.state.database is not None:
            try:
                response["collections"] = app.state.database.list_collection_names()[:10]
                response["database"] = "connected"
            except Exception as e:
                logger.warning("health_check_failed", error=str(e))
                response["database"] = "error"
        return response

    app.include_router(router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=PORT)
