import pytest

from campal.app import create_app
from campal.repositories import RepositoryFactory
from campal.services import (
    CheckinService,
    DirectoryService,
    PaymentService,
    RegistrationService,
)

ORGANIZER_PASSWORD = "segredo"


def district_rows():
    return [
        {"id": "d1", "name": "IPITINGA", "created_at": "2025-08-01T00:00:00+00:00"},
        {"id": "d2", "name": "CENTRAL", "created_at": "2025-08-01T00:00:00+00:00"},
    ]


def church_rows():
    return [
        {"id": "c1", "name": "BOM JESUS - IPITINGA – ANPA", "district_id": "d1"},
        {"id": "c2", "name": "CAMPINA - IPITINGA – ANPA", "district_id": "d1"},
        {"id": "c3", "name": "Igreja Central", "district_id": "d2"},
    ]


def registration_rows():
    return [
        {
            "id": "r1", "full_name": "Ana Souza", "birth_date": "1995-03-10", "age": 30,
            "district_id": "d1", "church_id": "c1",
            "payment_status": "pending", "payment_method": None,
            "checkin_status": False, "checkin_datetime": None, "checkin_token": "tok-ana",
            "registration_date": "2025-09-01T10:00:00-03:00",
            "created_at": "2025-09-01T13:00:00+00:00",
        },
        {
            "id": "r2", "full_name": "Bruno Lima", "birth_date": "2017-01-15", "age": 8,
            "district_id": "d1", "church_id": "c2",
            "payment_status": "pending", "payment_method": None,
            "checkin_status": False, "checkin_datetime": None, "checkin_token": "tok-bruno",
            "registration_date": "2025-09-02T10:00:00-03:00",
            "created_at": "2025-09-02T13:00:00+00:00",
        },
        {
            "id": "r3", "full_name": "Carla Dias", "birth_date": "2000-05-20", "age": 25,
            "district_id": "d2", "church_id": "c3",
            "payment_status": "paid", "payment_method": "pix",
            "checkin_status": True, "checkin_datetime": "2025-09-26T19:30:00-03:00",
            "checkin_token": "tok-carla",
            "registration_date": "2025-09-03T10:00:00-03:00",
            "created_at": "2025-09-03T13:00:00+00:00",
        },
    ]


@pytest.fixture
def repositories():
    return {
        "districts": RepositoryFactory.create_memory_repository("districts", district_rows()),
        "churches": RepositoryFactory.create_memory_repository("churches", church_rows()),
        "registrations": RepositoryFactory.create_memory_repository("registrations", registration_rows()),
    }


@pytest.fixture
def directory(repositories):
    return DirectoryService(repositories["districts"], repositories["churches"])


@pytest.fixture
def registration_service(repositories, directory):
    return RegistrationService(repositories["registrations"], directory)


@pytest.fixture
def payment_service(registration_service):
    return PaymentService(registration_service)


@pytest.fixture
def checkin_service(registration_service):
    return CheckinService(registration_service)


@pytest.fixture
def campal_app(repositories):
    config = {
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "REPOSITORY_TYPE": "memory",
        "ORGANIZER_PASSWORD": ORGANIZER_PASSWORD,
        "SEED_ON_START": False,
    }
    return create_app(config, repositories)


@pytest.fixture
def client(campal_app):
    return campal_app.app.test_client()
