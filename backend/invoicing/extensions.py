# Overview: Flask extension instances for database, migrations and the fiscal authority client.

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate


class FiscalAuthority:
    """
    Holds one FiscalAuthorityClient per application.

    The client (and its cached authentication ticket) lives as long as the
    app does. Tests may pass a replacement client to init_app.
    """
    extension_key = "fiscal_authority"

    def __init__(self, app=None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app, client=None):
        if client is None:
            client = self._build_client(app.config)
        app.extensions[self.extension_key] = client

    @staticmethod
    def _build_client(config):
        from .services.fiscal_client import FiscalAuthorityClient, OpenSSLCmsSigner

        signer = None
        if config.get("FISCAL_CERT_PATH") and config.get("FISCAL_KEY_PATH"):
            signer = OpenSSLCmsSigner(config["FISCAL_CERT_PATH"], config["FISCAL_KEY_PATH"])

        return FiscalAuthorityClient(
            cuit=config.get("FISCAL_CUIT", ""),
            environment=config.get("FISCAL_ENVIRONMENT", "homologation"),
            signer=signer,
            service=config.get("FISCAL_SERVICE", "wsfe"),
            currency_code=config.get("FISCAL_CURRENCY_CODE", "PES"),
            timeout=config.get("FISCAL_TIMEOUT_SECONDS", 30.0),
        )

    @property
    def client(self):
        return current_app.extensions[self.extension_key]


db = SQLAlchemy()
migrate = Migrate()
fiscal = FiscalAuthority()
