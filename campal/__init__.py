"""
CAMPAL Registration Package

A church-camp sign-up and check-in system built with Flask.
Participants register through a public form; organizers confirm payments,
check participants in by QR code and export PDF/Excel reports. Data lives
in a hosted Supabase database.

Main Components:
- models: Data models for districts, churches and registrations
- repositories: Table access layer (Supabase or in-memory)
- services: Business logic for sign-up, payments and check-in
- reports: PDF, Excel and QR code rendering
- exceptions: Custom exception classes for error handling
- app: Main Flask application class

Usage:
    from campal import create_app

    app = create_app()
    app.run()
"""

__version__ = "1.0.0"

from .app import CampalApp, create_app, create_development_app, create_production_app
from .models import (
    Church,
    District,
    PaymentMethod,
    PaymentStatus,
    Registration,
    ReportType,
)
from .services import (
    CheckinService,
    DirectoryService,
    OrganizerPasswordService,
    PaymentService,
    RegistrationFilter,
    RegistrationService,
)
from .repositories import RepositoryFactory
from .exceptions import (
    CampalException,
    RegistrationNotFoundException,
    CheckinTokenNotFoundException,
    AlreadyCheckedInException,
    PaymentException,
    CheckinException,
    DataValidationException,
    DataAccessException,
    PasswordConfirmationException,
)

__all__ = [
    # App factory functions
    'CampalApp',
    'create_app',
    'create_development_app',
    'create_production_app',

    # Data models
    'District',
    'Church',
    'Registration',
    'PaymentStatus',
    'PaymentMethod',
    'ReportType',

    # Services
    'DirectoryService',
    'RegistrationService',
    'RegistrationFilter',
    'PaymentService',
    'CheckinService',
    'OrganizerPasswordService',

    # Repository factory
    'RepositoryFactory',

    # Exceptions
    'CampalException',
    'RegistrationNotFoundException',
    'CheckinTokenNotFoundException',
    'AlreadyCheckedInException',
    'PaymentException',
    'CheckinException',
    'DataValidationException',
    'DataAccessException',
    'PasswordConfirmationException',
]
