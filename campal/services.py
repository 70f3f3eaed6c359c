"""
Business Logic Services for the CAMPAL Registration Application

This module contains service classes that implement the business logic
of the registration system: the district/church directory, sign-up
validation, payment confirmation, QR check-in and the organizer password
gate. Services handle validation and raise the exceptions defined in
``campal.exceptions``.
"""

import hmac
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo

from .exceptions import (
    AlreadyCheckedInException,
    CheckinException,
    CheckinTokenNotFoundException,
    DataValidationException,
    PasswordConfirmationException,
    PaymentException,
    RegistrationNotFoundException,
)
from .models import (
    Church,
    District,
    PaymentMethod,
    PaymentStatus,
    Registration,
    calculate_age,
    parse_birth_date,
)
from .repositories import TableRepository

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/Sao_Paulo"
ALL = "all"
MIN_NAME_LENGTH = 2

IPITINGA_DISTRICT = "IPITINGA"
IPITINGA_CHURCHES = [
    "ATEUA-GRANDE - IPITINGA – ANPA",
    "ATEUAZINHO - IPITINGA - ANPA",
    "ATLETICO - IPITINGA - ANPA",
    "BOM FUTURO - IPITINGA – ANPA",
    "BOM JESUS - IPITINGA – ANPA",
    "CAMPINA - IPITINGA – ANPA",
    "CURUPERÉ - IPITINGA - ANPA",
    "IPITINGA DO MOJU - IPITINGA – ANPA",
    "JAMBUAÇÚ - IPITINGA – ANPA",
    "LUSO BRASILEIRO - IPITINGA – ANPA",
    "MONTE SINAI - KM 34 - IPITINGA – ANPA",
    "MONTE SINAI II - KM 30 - IPITINGA – ANPA",
    "NOVA VIDA-IPITINGA - SEDE – ANPA",
    "PRIMAVERA - IPITINGA – ANPA",
    "TRACUATEUA - ACARÁ – ANPA",
    "TREVO - IPITINGA - ANPA",
]


def _is_active(value: Optional[str]) -> bool:
    return bool(value) and value != ALL


def _name_key(name: str) -> str:
    return " ".join(name.split()).casefold()


@dataclass
class RegistrationFilter:
    """Management-page filters; empty or 'all' disables a filter"""
    search: str = ""
    district_id: str = ""
    church_id: str = ""
    payment_status: str = ""

    @classmethod
    def from_args(cls, args: Mapping) -> 'RegistrationFilter':
        return cls(
            search=(args.get("search") or "").strip(),
            district_id=args.get("district_id") or "",
            church_id=args.get("church_id") or "",
            payment_status=args.get("payment_status") or "",
        )

    def matches(self, registration: Registration) -> bool:
        if self.search and self.search.lower() not in registration.full_name.lower():
            return False
        if _is_active(self.district_id) and registration.district_id != self.district_id:
            return False
        if _is_active(self.church_id) and registration.church_id != self.church_id:
            return False
        if _is_active(self.payment_status) and registration.payment_status.value != self.payment_status:
            return False
        return True


class DirectoryService:
    """
    Handles districts and churches

    Districts and churches are small lookup tables; this service lists
    them for the form selects, validates new entries from the admin page
    and seeds a district with its churches.
    """

    def __init__(self, district_repository: TableRepository, church_repository: TableRepository):
        """
        Initialize directory service

        Args:
            district_repository: Repository for the districts table
            church_repository: Repository for the churches table
        """
        self.district_repository = district_repository
        self.church_repository = church_repository

    def list_districts(self) -> List[District]:
        rows = self.district_repository.select(order_by="name")
        return [District.from_dict(row) for row in rows]

    def list_churches(self, district_id: Optional[str] = None,
                      districts: Optional[List[District]] = None) -> List[Church]:
        """
        Get churches ordered by name, each with its district attached

        Args:
            district_id: Optional district to restrict the list to
            districts: Already loaded districts, to skip reading them again
        """
        filters = {"district_id": district_id} if district_id else None
        if districts is None:
            districts = self.list_districts()
        districts = {d.id: d for d in districts}
        churches = []
        for row in self.church_repository.select(filters, order_by="name"):
            church = Church.from_dict(row)
            church.district = districts.get(church.district_id)
            churches.append(church)
        return churches

    def get_district(self, district_id: str) -> Optional[District]:
        row = self.district_repository.find_one("id", district_id)
        return District.from_dict(row) if row else None

    def get_church(self, church_id: str) -> Optional[Church]:
        row = self.church_repository.find_one("id", church_id)
        return Church.from_dict(row) if row else None

    def add_district(self, name: str) -> District:
        """
        Create a district

        Raises:
            DataValidationException: If the name is too short or already taken
        """
        name = (name or "").strip()
        if len(name) < MIN_NAME_LENGTH:
            raise DataValidationException("name", "Nome deve ter pelo menos 2 caracteres")
        if any(_name_key(d.name) == _name_key(name) for d in self.list_districts()):
            raise DataValidationException("name", f"Distrito '{name}' já cadastrado")

        row = self.district_repository.insert([{"name": name}])[0]
        logger.info("District created: %s", name)
        return District.from_dict(row)

    def add_church(self, name: str, district_id: str) -> Church:
        """
        Create a church inside an existing district

        Raises:
            DataValidationException: If the name or district is invalid
        """
        name = (name or "").strip()
        if not district_id:
            raise DataValidationException("district_id", "Distrito é obrigatório")
        district = self.get_district(district_id)
        if district is None:
            raise DataValidationException("district_id", "Distrito não encontrado")
        if len(name) < MIN_NAME_LENGTH:
            raise DataValidationException("name", "Nome deve ter pelo menos 2 caracteres")
        siblings = self.church_repository.select({"district_id": district.id})
        if any(_name_key(row["name"]) == _name_key(name) for row in siblings):
            raise DataValidationException("name", f"Igreja '{name}' já cadastrada em {district.name}")

        row = self.church_repository.insert([{"name": name, "district_id": district.id}])[0]
        logger.info("Church created: %s (%s)", name, district.name)
        church = Church.from_dict(row)
        church.district = district
        return church

    def seed_district(self, name: str, church_names: List[str]) -> Dict:
        """
        Make sure a district and its churches exist

        Safe to run repeatedly: the district is created only when missing
        and only churches not yet registered under it are inserted.

        Returns:
            Summary with district id, whether the district was created,
            the inserted church names and the expected total
        """
        row = self.district_repository.find_one("name", name)
        created = row is None
        if created:
            row = self.district_repository.insert([{"name": name}])[0]
            logger.info("District %s created", name)
        district_id = str(row["id"])

        existing = {
            _name_key(church["name"])
            for church in self.church_repository.select({"district_id": district_id})
        }
        missing = [church for church in church_names
                   if _name_key(church) not in existing]
        if missing:
            self.church_repository.insert(
                [{"name": church, "district_id": district_id} for church in missing]
            )
        logger.info("%d churches already present, %d inserted for %s",
                    len(existing), len(missing), name)

        return {
            "district_id": district_id,
            "created": created,
            "inserted": missing,
            "total_churches": len(church_names),
        }


class RegistrationService:
    """
    Handles sign-up and the registration listing

    This service validates the public form, stores new registrations and
    provides the filtered listing and counters of the management page.
    """

    def __init__(self, registration_repository: TableRepository, directory: DirectoryService,
                 timezone_name: str = DEFAULT_TIMEZONE):
        """
        Initialize registration service

        Args:
            registration_repository: Repository for the registrations table
            directory: Directory service used to validate district/church
            timezone_name: Zone used for registration timestamps
        """
        self.registration_repository = registration_repository
        self.directory = directory
        self.timezone = ZoneInfo(timezone_name)

    def now(self) -> datetime:
        return datetime.now(self.timezone)

    def validate_form(self, form: Mapping, today: Optional[date] = None) -> Dict:
        """
        Validate the public registration form

        Args:
            form: Submitted fields (full_name, birth_date, district_id, church_id)
            today: Reference date for the age, defaults to today

        Returns:
            Cleaned values including the parsed birth date and derived age

        Raises:
            DataValidationException: With every failing field in ``errors``
        """
        today = today or self.now().date()
        errors: Dict[str, str] = {}
        cleaned: Dict = {}

        full_name = " ".join((form.get("full_name") or "").split())
        if len(full_name) < MIN_NAME_LENGTH:
            errors["full_name"] = "Nome deve ter pelo menos 2 caracteres"
        cleaned["full_name"] = full_name

        raw_birth = (form.get("birth_date") or "").strip()
        if not raw_birth:
            errors["birth_date"] = "Data de nascimento é obrigatória"
        else:
            try:
                birth_date = parse_birth_date(raw_birth)
            except ValueError:
                errors["birth_date"] = "Data inválida"
            else:
                if birth_date > today:
                    errors["birth_date"] = "Data inválida"
                else:
                    cleaned["birth_date"] = birth_date
                    cleaned["age"] = calculate_age(birth_date, today)

        district_id = (form.get("district_id") or "").strip()
        district = None
        if not district_id:
            errors["district_id"] = "Distrito é obrigatório"
        else:
            district = self.directory.get_district(district_id)
            if district is None:
                errors["district_id"] = "Distrito não encontrado"
        cleaned["district"] = district

        church_id = (form.get("church_id") or "").strip()
        church = None
        if not church_id:
            errors["church_id"] = "Igreja é obrigatória"
        else:
            church = self.directory.get_church(church_id)
            if church is None:
                errors["church_id"] = "Igreja não encontrada"
            elif district is not None and church.district_id != district.id:
                errors["church_id"] = "Igreja não pertence ao distrito selecionado"
        cleaned["church"] = church

        if errors:
            field_name = next(iter(errors))
            raise DataValidationException(field_name, errors[field_name], errors)
        return cleaned

    def register(self, form: Mapping, today: Optional[date] = None) -> Registration:
        """
        Validate and store a new registration

        The registration starts with a pending payment, no check-in and a
        fresh check-in token for its QR code.

        Returns:
            The stored Registration with district and church attached

        Raises:
            DataValidationException: If the form is invalid
            DataAccessException: If the insert fails
        """
        cleaned = self.validate_form(form, today)
        district: District = cleaned["district"]
        church: Church = cleaned["church"]

        row = {
            "full_name": cleaned["full_name"],
            "birth_date": cleaned["birth_date"].isoformat(),
            "age": cleaned["age"],
            "district_id": district.id,
            "church_id": church.id,
            "payment_status": PaymentStatus.PENDING.value,
            "payment_method": None,
            "checkin_status": False,
            "checkin_datetime": None,
            "checkin_token": uuid.uuid4().hex,
            "registration_date": self.now().isoformat(timespec="seconds"),
        }
        stored = self.registration_repository.insert([row])[0]
        registration = Registration.from_dict(stored)
        registration.district = district
        registration.church = church
        logger.info("Registration %s created for %s (age %d)",
                    registration.id, registration.full_name, registration.age)
        return registration

    def _attach(self, registrations: List[Registration]) -> List[Registration]:
        district_list = self.directory.list_districts()
        districts = {d.id: d for d in district_list}
        churches = {c.id: c for c in self.directory.list_churches(districts=district_list)}
        for registration in registrations:
            registration.district = districts.get(registration.district_id)
            registration.church = churches.get(registration.church_id)
        return registrations

    def list_registrations(self, filters: Optional[RegistrationFilter] = None) -> List[Registration]:
        """
        Get registrations, newest first, with district and church attached

        Args:
            filters: Optional management-page filters
        """
        rows = self.registration_repository.select(order_by="created_at", descending=True)
        registrations = self._attach([Registration.from_dict(row) for row in rows])
        if filters:
            registrations = self.filter_registrations(registrations, filters)
        return registrations

    @staticmethod
    def filter_registrations(registrations: List[Registration],
                             filters: RegistrationFilter) -> List[Registration]:
        return [registration for registration in registrations if filters.matches(registration)]

    def get_registration(self, registration_id: str) -> Optional[Registration]:
        row = self.registration_repository.find_one("id", registration_id)
        if not row:
            return None
        return self._attach([Registration.from_dict(row)])[0]

    def get_registration_or_raise(self, registration_id: str) -> Registration:
        """
        Get registration by ID or raise exception if not found

        Raises:
            RegistrationNotFoundException: If registration not found
        """
        registration = self.get_registration(registration_id)
        if registration is None:
            raise RegistrationNotFoundException(registration_id)
        return registration

    def get_by_token(self, token: str) -> Optional[Registration]:
        if not token:
            return None
        row = self.registration_repository.find_one("checkin_token", token)
        if not row:
            return None
        return self._attach([Registration.from_dict(row)])[0]

    @staticmethod
    def compute_stats(registrations: List[Registration]) -> Dict[str, int]:
        """
        Counters shown above the management table

        Returns:
            Dictionary with total, paid, pending, free and payable counts
        """
        return {
            "total": len(registrations),
            "paid": sum(1 for r in registrations if r.payment_status is PaymentStatus.PAID),
            "pending": sum(1 for r in registrations if r.payment_status is PaymentStatus.PENDING),
            "free": sum(1 for r in registrations if r.is_free),
            "payable": sum(1 for r in registrations if not r.is_free),
        }


class PaymentService:
    """
    Handles payment confirmation

    Payment changes are plain field updates on the registration row:
    pending -> paid records the method, paid -> pending clears it.
    Free registrations never change state.
    """

    def __init__(self, registration_service: RegistrationService):
        self.registration_service = registration_service
        self.registration_repository = registration_service.registration_repository

    def confirm_payment(self, registration_id: str, method) -> Registration:
        """
        Mark a registration as paid

        Args:
            registration_id: ID of the registration
            method: PaymentMethod or its string value ('pix', 'dinheiro', 'cash')

        Raises:
            RegistrationNotFoundException: If the registration does not exist
            PaymentException: If the registration is free or already paid,
                or the method is unknown
        """
        registration = self.registration_service.get_registration_or_raise(registration_id)
        try:
            method = method if isinstance(method, PaymentMethod) else PaymentMethod.parse(method)
        except ValueError:
            raise PaymentException(registration_id, "confirm", f"método de pagamento inválido: {method}")
        if registration.is_free:
            raise PaymentException(registration_id, "confirm", "inscrição gratuita (até 10 anos)")
        if registration.is_paid:
            raise PaymentException(registration_id, "confirm", "pagamento já confirmado")

        self.registration_repository.update("id", registration_id, {
            "payment_status": PaymentStatus.PAID.value,
            "payment_method": method.value,
        })
        logger.info("Payment confirmed for %s via %s", registration_id, method.value)
        registration.payment_status = PaymentStatus.PAID
        registration.payment_method = method
        return registration

    def revert_payment(self, registration_id: str) -> Registration:
        """
        Move a paid registration back to pending

        Raises:
            RegistrationNotFoundException: If the registration does not exist
            PaymentException: If the registration is not paid
        """
        registration = self.registration_service.get_registration_or_raise(registration_id)
        if not registration.is_paid:
            raise PaymentException(registration_id, "revert", "pagamento não está confirmado")

        self.registration_repository.update("id", registration_id, {
            "payment_status": PaymentStatus.PENDING.value,
            "payment_method": None,
        })
        logger.info("Payment reverted for %s", registration_id)
        registration.payment_status = PaymentStatus.PENDING
        registration.payment_method = None
        return registration


class CheckinService:
    """
    Handles QR check-in and the attendance summary

    A QR code carries the registration's check-in token; scanning it looks
    the participant up and confirming stores the Brazil-time timestamp.
    """

    def __init__(self, registration_service: RegistrationService,
                 timezone_name: str = DEFAULT_TIMEZONE):
        self.registration_service = registration_service
        self.registration_repository = registration_service.registration_repository
        self.timezone = ZoneInfo(timezone_name)

    def lookup_by_token(self, token: str) -> Registration:
        """
        Find the participant behind a scanned QR token

        Raises:
            CheckinTokenNotFoundException: If no registration has this token
            AlreadyCheckedInException: If the participant already checked in
        """
        token = (token or "").strip()
        registration = self.registration_service.get_by_token(token)
        if registration is None:
            raise CheckinTokenNotFoundException(token)
        if registration.checkin_status:
            raise AlreadyCheckedInException(registration.id, registration.checkin_datetime)
        return registration

    def confirm_checkin(self, registration_id: str, now: Optional[datetime] = None) -> Registration:
        """
        Record the participant's arrival

        Raises:
            RegistrationNotFoundException: If the registration does not exist
            AlreadyCheckedInException: If the participant already checked in
        """
        registration = self.registration_service.get_registration_or_raise(registration_id)
        if registration.checkin_status:
            raise AlreadyCheckedInException(registration.id, registration.checkin_datetime)

        moment = (now or datetime.now(self.timezone)).astimezone(self.timezone)
        checkin_datetime = moment.isoformat(timespec="seconds")
        self.registration_repository.update("id", registration_id, {
            "checkin_status": True,
            "checkin_datetime": checkin_datetime,
        })
        logger.info("Check-in confirmed for %s at %s", registration_id, checkin_datetime)
        registration.checkin_status = True
        registration.checkin_datetime = checkin_datetime
        return registration

    def revert_checkin(self, registration_id: str) -> Registration:
        """
        Undo a check-in confirmed by mistake

        Raises:
            CheckinException: If the participant has not checked in
        """
        registration = self.registration_service.get_registration_or_raise(registration_id)
        if not registration.checkin_status:
            raise CheckinException(registration_id, "revert", "participante ainda não fez check-in")

        self.registration_repository.update("id", registration_id, {
            "checkin_status": False,
            "checkin_datetime": None,
        })
        logger.info("Check-in reverted for %s", registration_id)
        registration.checkin_status = False
        registration.checkin_datetime = None
        return registration

    def get_checkin_summary(self) -> Dict:
        """
        Get attendance counters and the participant list

        Returns:
            Dictionary with total, present, absent and participants
        """
        participants = self.registration_service.list_registrations()
        participants.sort(key=lambda r: r.full_name.lower())
        present = sum(1 for r in participants if r.checkin_status)
        return {
            "total": len(participants),
            "present": present,
            "absent": len(participants) - present,
            "participants": participants,
        }


class OrganizerPasswordService:
    """
    Confirms organizer actions with the shared event password

    Payment changes on the management page ask for this password
    before they are applied.
    """

    def __init__(self, password: str):
        if not password:
            raise ValueError("ORGANIZER_PASSWORD must be configured")
        self._password = password

    def verify(self, password: str) -> bool:
        """
        Raises:
            PasswordConfirmationException: If the password does not match
        """
        if not password or not hmac.compare_digest(password.encode(), self._password.encode()):
            raise PasswordConfirmationException()
        return True
