"""
Data Models for the CAMPAL Registration Application

This module contains the data classes that represent the rows stored in
the hosted database: districts, churches and registrations. These classes
use dataclasses for clean, type-safe data representation.
"""

from dataclasses import dataclass, asdict, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, Optional

FREE_AGE_LIMIT = 10
REGISTRATION_FEE_LABEL = "R$ 10,00"


class PaymentStatus(Enum):
    """Enumeration for registration payment status"""
    PENDING = "pending"
    PAID = "paid"

    @property
    def label(self) -> str:
        return "Pago" if self is PaymentStatus.PAID else "Pendente"


class PaymentMethod(Enum):
    """Enumeration for accepted payment methods"""
    PIX = "pix"
    DINHEIRO = "dinheiro"

    @classmethod
    def parse(cls, value: str) -> 'PaymentMethod':
        """
        Parse a payment method, accepting 'cash' as an alias of 'dinheiro'

        Raises:
            ValueError: If the value is not a known method
        """
        normalized = (value or "").strip().lower()
        if normalized == "cash":
            normalized = cls.DINHEIRO.value
        return cls(normalized)


class ReportType(Enum):
    """Scope of a registration PDF report"""
    GENERAL = "general"
    DISTRICT = "district"
    CHURCH = "church"


def parse_birth_date(value) -> date:
    """
    Parse a birth date typed in the form

    Accepts the Brazilian ``DD/MM/AAAA`` format used by the form mask
    and ISO ``AAAA-MM-DD`` as stored in the database.

    Raises:
        ValueError: If the value is empty or not a real date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = (value or "").strip()
    if not text:
        raise ValueError("empty date")
    if "/" in text:
        return datetime.strptime(text, "%d/%m/%Y").date()
    return date.fromisoformat(text[:10])


def calculate_age(birth_date: date, today: Optional[date] = None) -> int:
    """Whole years between birth_date and today"""
    today = today or date.today()
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


@dataclass
class District:
    """A church district (e.g. IPITINGA)"""
    id: str
    name: str
    created_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'District':
        return cls(
            id=str(data['id']),
            name=data['name'],
            created_at=data.get('created_at')
        )

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class Church:
    """A local church, belonging to a district"""
    id: str
    name: str
    district_id: str
    created_at: Optional[str] = None
    district: Optional[District] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'Church':
        district = data.get('district')
        return cls(
            id=str(data['id']),
            name=data['name'],
            district_id=str(data['district_id']),
            created_at=data.get('created_at'),
            district=District.from_dict(district) if district else None
        )

    def to_dict(self) -> Dict:
        data = asdict(self)
        data.pop('district')
        return data


@dataclass
class Registration:
    """
    Data model for a camp registration

    Represents one participant's sign-up with its payment and
    check-in state. District and church are attached by the
    services layer when listing.
    """
    id: str
    full_name: str
    birth_date: date
    age: int
    district_id: str
    church_id: str
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: Optional[PaymentMethod] = None
    checkin_status: bool = False
    checkin_datetime: Optional[str] = None
    checkin_token: Optional[str] = None
    registration_date: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    district: Optional[District] = field(default=None, compare=False)
    church: Optional[Church] = field(default=None, compare=False)

    @classmethod
    def from_dict(cls, data: Dict) -> 'Registration':
        """
        Create Registration instance from a database row

        Args:
            data: Row dictionary, optionally with embedded
                'district' and 'church' dictionaries

        Returns:
            Registration instance
        """
        method = data.get('payment_method')
        district = data.get('district')
        church = data.get('church')
        return cls(
            id=str(data['id']),
            full_name=data['full_name'],
            birth_date=parse_birth_date(data['birth_date']),
            age=int(data['age']),
            district_id=str(data['district_id']),
            church_id=str(data['church_id']),
            payment_status=PaymentStatus(data.get('payment_status') or 'pending'),
            payment_method=PaymentMethod.parse(method) if method else None,
            checkin_status=bool(data.get('checkin_status')),
            checkin_datetime=data.get('checkin_datetime'),
            checkin_token=data.get('checkin_token'),
            registration_date=data.get('registration_date'),
            created_at=data.get('created_at'),
            updated_at=data.get('updated_at'),
            district=District.from_dict(district) if district else None,
            church=Church.from_dict(church) if church else None
        )

    def to_dict(self) -> Dict:
        """
        Convert registration to a row dictionary for the database

        Embedded district/church objects are left out.
        """
        return {
            'id': self.id,
            'full_name': self.full_name,
            'birth_date': self.birth_date.isoformat(),
            'age': self.age,
            'district_id': self.district_id,
            'church_id': self.church_id,
            'payment_status': self.payment_status.value,
            'payment_method': self.payment_method.value if self.payment_method else None,
            'checkin_status': self.checkin_status,
            'checkin_datetime': self.checkin_datetime,
            'checkin_token': self.checkin_token,
            'registration_date': self.registration_date,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @property
    def is_free(self) -> bool:
        """Children up to FREE_AGE_LIMIT years old do not pay"""
        return self.age <= FREE_AGE_LIMIT

    @property
    def is_paid(self) -> bool:
        return self.payment_status is PaymentStatus.PAID

    @property
    def fee_label(self) -> str:
        return "Gratuito" if self.is_free else REGISTRATION_FEE_LABEL

    @property
    def protocol(self) -> str:
        """Short code shown to the participant after signing up"""
        return (self.checkin_token or self.id)[:8].upper()

    @property
    def district_name(self) -> str:
        return self.district.name if self.district else ""

    @property
    def church_name(self) -> str:
        return self.church.name if self.church else ""
