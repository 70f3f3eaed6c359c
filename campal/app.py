"""
Main Application Module for the CAMPAL Registration Application

This module contains the main Flask application class that wires the
repositories and services together and handles HTTP requests: the public
sign-up form, the organizers' management page, QR check-in and the
PDF/Excel report downloads.
"""

import logging
import os
from datetime import timedelta
from io import BytesIO
from typing import Dict, Optional
from urllib.parse import urlsplit

import click
from dotenv import load_dotenv
from flask import (
    Flask,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    send_file,
    url_for,
)

from .exceptions import (
    AlreadyCheckedInException,
    CampalException,
    CheckinException,
    CheckinTokenNotFoundException,
    DataAccessException,
    DataValidationException,
    PasswordConfirmationException,
    PaymentException,
)
from .models import FREE_AGE_LIMIT, REGISTRATION_FEE_LABEL, ReportType
from .reports import (
    CHECKIN_EXCEL_FILENAME,
    CHECKIN_PDF_FILENAME,
    EXCEL_MIMETYPE,
    build_checkin_rows,
    build_registration_report,
    format_date_br,
    format_datetime_br,
    render_checkin_excel,
    render_checkin_pdf,
    render_qr_png,
    render_registration_pdf,
)
from .repositories import RepositoryFactory, TableRepository
from .services import (
    IPITINGA_CHURCHES,
    IPITINGA_DISTRICT,
    CheckinService,
    DirectoryService,
    OrganizerPasswordService,
    PaymentService,
    RegistrationFilter,
    RegistrationService,
)

TABLES = ("districts", "churches", "registrations")

EVENT_INFO = {
    "name": "CAMPAL 2025",
    "place": "IPITINGA",
    "theme": "FORTES NA PALAVRA",
    "dates": "26 a 28 de Setembro de 2025",
    "venue": "CATRE IPITINGA",
    "deadline": "15 de setembro",
    "fee": REGISTRATION_FEE_LABEL,
    "free_age_limit": FREE_AGE_LIMIT,
}


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _is_local_path(url: str) -> bool:
    """True for same-site paths like '/gerenciar?x=1', never '//host' or 'http://host'"""
    if not url.startswith("/") or url.startswith(("//", "/\\")):
        return False
    parts = urlsplit(url)
    return not parts.scheme and not parts.netloc


def load_environment_config() -> Dict:
    """
    Read configuration from the environment (and a .env file if present)

    Returns:
        Dictionary with the keys understood by CampalApp
    """
    load_dotenv()
    return {
        'SECRET_KEY': os.environ.get("SECRET_KEY", "campal-dev-secret"),
        'DEBUG': _env_flag("DEBUG"),
        'REPOSITORY_TYPE': os.environ.get("REPOSITORY_TYPE", "supabase"),
        'SUPABASE_URL': os.environ.get("SUPABASE_URL"),
        'SUPABASE_KEY': os.environ.get("SUPABASE_KEY"),
        'ORGANIZER_PASSWORD': os.environ.get("ORGANIZER_PASSWORD"),
        'TIMEZONE': os.environ.get("TIMEZONE", "America/Sao_Paulo"),
        'LOG_LEVEL': os.environ.get("LOG_LEVEL", "INFO"),
        'SEED_ON_START': _env_flag("SEED_ON_START"),
    }


class CampalApp:
    """
    Main Flask application class for CAMPAL registrations

    This class orchestrates the repositories and services and handles
    the web interface for sign-up, management and check-in.
    """

    def __init__(self, config: Optional[dict] = None,
                 repositories: Optional[Dict[str, TableRepository]] = None):
        """
        Initialize the CAMPAL application

        Args:
            config: Optional configuration overrides
            repositories: Optional ready-made repositories keyed by table
                name; when omitted they are built from REPOSITORY_TYPE
        """
        self.app = Flask(__name__)
        self._configure_app(config)
        self.logger = self.app.logger

        self.repositories = repositories or self._create_repositories()

        self.directory_service = DirectoryService(
            self.repositories["districts"], self.repositories["churches"]
        )
        self.registration_service = RegistrationService(
            self.repositories["registrations"], self.directory_service, self.config['TIMEZONE']
        )
        self.payment_service = PaymentService(self.registration_service)
        self.checkin_service = CheckinService(self.registration_service, self.config['TIMEZONE'])
        self.password_service = OrganizerPasswordService(self.config['ORGANIZER_PASSWORD'])

        if self.config['SEED_ON_START']:
            self.directory_service.seed_district(IPITINGA_DISTRICT, IPITINGA_CHURCHES)

        self._register_template_helpers()
        self._register_routes()
        self._register_error_handlers()
        self._register_commands()

    @property
    def config(self):
        return self.app.config

    def _configure_app(self, config: Optional[dict] = None) -> None:
        """
        Configure Flask application settings

        Environment values are the defaults; the config argument wins.
        """
        default_config = {
            'PERMANENT_SESSION_LIFETIME': timedelta(days=1),
        }
        default_config.update(load_environment_config())

        if config:
            default_config.update(config)

        self.app.config.update(default_config)
        self.app.secret_key = default_config['SECRET_KEY']
        self.app.permanent_session_lifetime = default_config['PERMANENT_SESSION_LIFETIME']

        logging.basicConfig(
            level=getattr(logging, str(default_config['LOG_LEVEL']).upper(), logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    def _create_repositories(self) -> Dict[str, TableRepository]:
        repo_type = self.config['REPOSITORY_TYPE']
        if repo_type == 'supabase':
            client = RepositoryFactory.create_supabase_client(
                self.config['SUPABASE_URL'], self.config['SUPABASE_KEY']
            )
            return {
                table: RepositoryFactory.create_repository('supabase', table, client=client)
                for table in TABLES
            }
        return {table: RepositoryFactory.create_repository(repo_type, table) for table in TABLES}

    def _register_template_helpers(self) -> None:
        timezone_name = self.config['TIMEZONE']
        self.app.add_template_filter(format_date_br, "date_br")
        self.app.add_template_filter(
            lambda value: format_datetime_br(value, timezone_name), "datetime_br"
        )
        self.app.context_processor(lambda: {"event": EVENT_INFO})

    def _register_routes(self) -> None:
        """Register all Flask routes"""
        self.app.add_url_rule("/", "index", self.index)
        self.app.add_url_rule("/inscricao", "register", self.register, methods=["GET", "POST"])
        self.app.add_url_rule("/ingresso/<token>", "ticket", self.ticket)
        self.app.add_url_rule("/ingresso/<token>/qrcode.png", "ticket_qrcode", self.ticket_qrcode)
        self.app.add_url_rule("/api/igrejas", "api_churches", self.api_churches)

        self.app.add_url_rule("/gerenciar", "management", self.management)
        self.app.add_url_rule("/gerenciar/pagamento/<registration_id>", "payment",
                              self.payment, methods=["POST"])
        self.app.add_url_rule("/gerenciar/relatorio", "registration_report", self.registration_report)

        self.app.add_url_rule("/checkin", "checkin", self.checkin, methods=["GET", "POST"])
        self.app.add_url_rule("/checkin/<registration_id>/confirmar", "checkin_confirm",
                              self.checkin_confirm, methods=["POST"])
        self.app.add_url_rule("/checkin/<registration_id>/desfazer", "checkin_revert",
                              self.checkin_revert, methods=["POST"])
        self.app.add_url_rule("/checkin/relatorio", "checkin_report", self.checkin_report)
        self.app.add_url_rule("/checkin/relatorio.xlsx", "checkin_report_excel", self.checkin_report_excel)
        self.app.add_url_rule("/checkin/relatorio.pdf", "checkin_report_pdf", self.checkin_report_pdf)

        self.app.add_url_rule("/admin", "admin", self.admin, methods=["GET", "POST"])

    def _register_error_handlers(self) -> None:
        """Register error handlers for custom exceptions"""

        @self.app.errorhandler(DataAccessException)
        def handle_data_access(e):
            self.logger.error("Database error: %s", e)
            return render_template("error.html",
                                   error_title="Erro ao acessar os dados",
                                   error_message="Tente novamente em instantes."), 500

        @self.app.errorhandler(CampalException)
        def handle_campal_exception(e):
            return render_template("error.html",
                                   error_title="Não foi possível concluir a operação",
                                   error_message=e.message), e.status_code

    def _register_commands(self) -> None:
        """Register Flask CLI commands"""

        @self.app.cli.command("seed-district")
        @click.option("--name", default=IPITINGA_DISTRICT, show_default=True)
        def seed_district(name):
            """Create the district and its churches if they are missing."""
            churches = IPITINGA_CHURCHES if name == IPITINGA_DISTRICT else []
            summary = self.directory_service.seed_district(name, churches)
            state = "criado" if summary["created"] else "já existe"
            click.echo(f"Distrito {name} {state} ({summary['district_id']})")
            for church in summary["inserted"]:
                click.echo(f"✓ {church}")
            click.echo(f"{len(summary['inserted'])} novas igrejas de {summary['total_churches']}")

    # ------------------------------------------------------------- public

    def index(self):
        """Landing page with the event information"""
        return render_template("index.html")

    def register(self):
        """
        Registration form

        Returns:
            The form (re-rendered with errors on invalid input) or a
            redirect to the participant's ticket on success
        """
        values = {}
        errors = {}
        status = 200

        if request.method == "POST":
            values = request.form.to_dict()
            try:
                registration = self.registration_service.register(values)
                flash(f"Inscrição realizada com sucesso! Protocolo: {registration.protocol}", "success")
                return redirect(url_for("ticket", token=registration.checkin_token, novo=1))
            except DataValidationException as e:
                errors = e.errors
                status = 400

        return render_template(
            "register.html",
            districts=self.directory_service.list_districts(),
            churches=self.directory_service.list_churches(),
            values=values,
            errors=errors,
        ), status

    def _registration_for_token(self, token: str):
        registration = self.registration_service.get_by_token(token)
        if registration is None:
            raise CheckinTokenNotFoundException(token)
        return registration

    def ticket(self, token: str):
        """Confirmation/ticket page with the check-in QR code"""
        registration = self._registration_for_token(token)
        return render_template("ticket.html", registration=registration,
                               is_new=request.args.get("novo") == "1")

    def ticket_qrcode(self, token: str):
        """QR code PNG for a ticket"""
        registration = self._registration_for_token(token)
        png = render_qr_png(registration.checkin_token)
        return send_file(BytesIO(png), mimetype="image/png",
                         download_name=f"campal-{registration.protocol}.png")

    def api_churches(self):
        """Churches of a district, for the dependent select on the form"""
        district_id = request.args.get("district_id") or None
        churches = self.directory_service.list_churches(district_id)
        return jsonify([church.to_dict() for church in churches])

    # --------------------------------------------------------- management

    def management(self):
        """Registration list with filters, counters and payment actions"""
        filters = RegistrationFilter.from_args(request.args)
        registrations = self.registration_service.list_registrations(filters)
        return render_template(
            "management.html",
            registrations=registrations,
            stats=self.registration_service.compute_stats(registrations),
            filters=filters,
            districts=self.directory_service.list_districts(),
            churches=self.directory_service.list_churches(),
        )

    def payment(self, registration_id: str):
        """
        Confirm or revert a payment after the organizer password check

        Form fields: action ('confirm' or 'revert'), method, password
        """
        action = request.form.get("action", "")
        next_url = request.form.get("next") or ""
        if not _is_local_path(next_url):
            next_url = url_for("management")

        try:
            self.password_service.verify(request.form.get("password", ""))
            if action == "confirm":
                self.payment_service.confirm_payment(registration_id, request.form.get("method", ""))
                flash("Status atualizado: pagamento confirmado.", "success")
            elif action == "revert":
                self.payment_service.revert_payment(registration_id)
                flash("Status atualizado: pagamento marcado como pendente.", "success")
            else:
                flash("Ação inválida.", "error")
        except PasswordConfirmationException:
            flash("Senha incorreta.", "error")
        except PaymentException as e:
            self.logger.warning("Payment change refused: %s", e)
            flash(f"Erro ao atualizar status: {e.reason}.", "error")

        return redirect(next_url)

    def registration_report(self):
        """Download a general, district or church PDF report"""
        filters = RegistrationFilter.from_args(request.args)
        try:
            report_type = ReportType(request.args.get("type", ReportType.GENERAL.value))
        except ValueError:
            raise DataValidationException("type", "Tipo de relatório inválido")

        report = build_registration_report(
            self.registration_service.list_registrations(filters),
            report_type,
            request.args.get("selected_id") or None,
            self.directory_service.list_districts(),
            self.directory_service.list_churches(),
        )
        self.logger.info("Report %s generated with %d registrations", report.filename, report.total)
        return send_file(BytesIO(render_registration_pdf(report)), mimetype="application/pdf",
                         as_attachment=True, download_name=report.filename)

    # ----------------------------------------------------------- check-in

    def checkin(self):
        """
        Check-in scanner page

        A POST carries the token read from the QR code; the participant is
        shown for confirmation unless the token is unknown or already used.
        """
        participant = None
        token = (request.values.get("token") or "").strip()

        if token:
            try:
                participant = self.checkin_service.lookup_by_token(token)
            except CheckinTokenNotFoundException as e:
                flash(f"Erro ao ler QR Code: {e.message}", "error")
            except AlreadyCheckedInException as e:
                when = format_datetime_br(e.checkin_datetime, self.config['TIMEZONE'])
                flash(f"Check-in já realizado: participante já realizou check-in em {when}", "error")

        return render_template("checkin.html", participant=participant)

    def checkin_confirm(self, registration_id: str):
        """Confirm the participant's presence"""
        try:
            self.checkin_service.confirm_checkin(registration_id)
            flash("Check-in realizado com sucesso! Participante pode entrar no evento.", "success")
        except AlreadyCheckedInException:
            flash("Erro ao confirmar check-in: participante já registrado.", "error")
        return redirect(url_for("checkin"))

    def checkin_revert(self, registration_id: str):
        """Undo a check-in from the report page"""
        try:
            self.checkin_service.revert_checkin(registration_id)
            flash("Check-in desfeito.", "success")
        except CheckinException as e:
            flash(f"Erro ao desfazer check-in: {e.reason}.", "error")
        return redirect(url_for("checkin_report"))

    def checkin_report(self):
        """Attendance counters and participant list"""
        summary = self.checkin_service.get_checkin_summary()
        return render_template("checkin_report.html", summary=summary)

    def checkin_report_excel(self):
        summary = self.checkin_service.get_checkin_summary()
        rows = build_checkin_rows(summary["participants"], self.config['TIMEZONE'])
        return send_file(BytesIO(render_checkin_excel(rows)), mimetype=EXCEL_MIMETYPE,
                         as_attachment=True, download_name=CHECKIN_EXCEL_FILENAME)

    def checkin_report_pdf(self):
        summary = self.checkin_service.get_checkin_summary()
        rows = build_checkin_rows(summary["participants"], self.config['TIMEZONE'])
        return send_file(BytesIO(render_checkin_pdf(rows, summary)), mimetype="application/pdf",
                         as_attachment=True, download_name=CHECKIN_PDF_FILENAME)

    # -------------------------------------------------------------- admin

    def admin(self):
        """Add districts and churches"""
        errors = {}
        status = 200

        if request.method == "POST":
            kind = request.form.get("kind")
            try:
                if kind == "district":
                    district = self.directory_service.add_district(request.form.get("name", ""))
                    flash(f"Distrito adicionado com sucesso! {district.name} foi adicionado à lista.", "success")
                    return redirect(url_for("admin"))
                elif kind == "church":
                    self.directory_service.add_church(request.form.get("name", ""),
                                                      request.form.get("district_id", ""))
                    flash("Igreja adicionada com sucesso!", "success")
                    return redirect(url_for("admin"))
                else:
                    flash("Formulário inválido.", "error")
            except DataValidationException as e:
                errors = {kind: e.validation_error}
                status = 400

        return render_template(
            "admin.html",
            districts=self.directory_service.list_districts(),
            churches=self.directory_service.list_churches(),
            errors=errors,
        ), status

    def run(self, host: str = '127.0.0.1', port: int = 5000, debug: bool = None) -> None:
        """
        Run the Flask development server

        Args:
            host: Host address to bind to
            port: Port number to listen on
            debug: Debug mode (overrides config if provided)
        """
        if debug is not None:
            self.app.config['DEBUG'] = debug

        self.app.run(host=host, port=port, debug=self.app.config['DEBUG'])


def create_app(config: Optional[dict] = None,
               repositories: Optional[Dict[str, TableRepository]] = None) -> CampalApp:
    """
    Factory function to create and configure the application

    Args:
        config: Optional configuration dictionary
        repositories: Optional repositories keyed by table name

    Returns:
        Configured CampalApp instance
    """
    return CampalApp(config, repositories)


def create_development_app() -> CampalApp:
    """
    Create application configured for development

    Uses the in-memory backend seeded with the IPITINGA churches.
    """
    dev_config = {
        'DEBUG': True,
        'REPOSITORY_TYPE': 'memory',
        'SEED_ON_START': True,
        'ORGANIZER_PASSWORD': os.environ.get("ORGANIZER_PASSWORD") or 'campal-dev',
        'LOG_LEVEL': 'DEBUG',
    }
    return create_app(dev_config)


def create_production_app() -> CampalApp:
    """
    Create application configured for production

    Supabase credentials and the organizer password come from the environment.
    """
    prod_config = {
        'DEBUG': False,
        'REPOSITORY_TYPE': 'supabase',
    }
    return create_app(prod_config)


if __name__ == "__main__":
    app = create_development_app()
    app.run(debug=True)
