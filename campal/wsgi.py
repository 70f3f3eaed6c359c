"""WSGI entry point, e.g. ``flask --app campal.wsgi run`` or ``flask --app campal.wsgi seed-district``"""

from .app import create_production_app

application = create_production_app()
app = application.app
