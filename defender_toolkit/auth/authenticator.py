"""
Authentication module — Supports certificate-based and delegated interactive auth.
Uses MSAL for token acquisition against Microsoft Identity Platform, one
token per resource (Graph, Defender for Endpoint API, Defender for Cloud Apps).
"""

from __future__ import annotations

import base64
import getpass
import logging
import os
from typing import Optional

from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption
from cryptography.hazmat.primitives.hashes import SHA1
import msal

from ..config import AuthConfig, REQUIRED_PERMISSIONS

logger = logging.getLogger("defender_toolkit.auth")


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


class Authenticator:
    """
    Handles MSAL-based authentication for the Defender APIs.
    Supports:
      - Certificate-based app-only authentication
      - Delegated interactive authentication (device code flow)
    Tokens are memoised per scope for the lifetime of a run.
    """

    def __init__(self, config: AuthConfig):
        self.config = config
        self._tokens: dict[str, str] = {}
        self._app: Optional[msal.ClientApplication] = None
        self.thumbprint: str = ""

    async def acquire_token(self, scope: str) -> str:
        """Acquire an access token for a resource scope."""
        if scope in self._tokens:
            return self._tokens[scope]
        if self.config.mode == "certificate":
            token = self._acquire_certificate_token(scope)
        elif self.config.mode == "delegated":
            token = self._acquire_delegated_token(scope)
        else:
            raise AuthenticationError(f"Unknown auth mode: {self.config.mode}")
        self._tokens[scope] = token
        return token

    def _confidential_app(self) -> msal.ConfidentialClientApplication:
        """Build the MSAL confidential client from the configured PFX."""
        cert_config = self.config.certificate
        if not cert_config:
            raise AuthenticationError("Certificate auth config not provided.")

        logger.info("Loading app certificate...")

        cert_path = cert_config.certificate_path
        password = cert_config.certificate_password
        if not password:
            password = os.environ.get("DEFENDER_CERT_PASSWORD", "")
        if not password:
            password = getpass.getpass("Enter the certificate password: ")

        try:
            with open(cert_path, "r") as f:
                cert_base64 = f.read().strip()

            cert_bytes = base64.b64decode(cert_base64)
            password_bytes = password.encode("utf-8") if password else None

            private_key, certificate, _ = pkcs12.load_key_and_certificates(
                cert_bytes, password_bytes
            )

            private_key_pem = private_key.private_bytes(
                Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
            ).decode("utf-8")

            thumbprint = certificate.fingerprint(SHA1()).hex()

        except FileNotFoundError:
            raise AuthenticationError(
                f"Certificate file not found: {cert_path}. "
                "Pass --cert-path or set certificate_path in the profile."
            )
        except Exception as e:
            raise AuthenticationError(f"Failed to load certificate: {e}")

        self.thumbprint = thumbprint
        logger.info(f"Certificate loaded. Thumbprint: {thumbprint}")

        return msal.ConfidentialClientApplication(
            client_id=cert_config.client_id,
            authority=f"https://login.microsoftonline.com/{cert_config.tenant_id}",
            client_credential={
                "thumbprint": thumbprint,
                "private_key": private_key_pem,
            },
        )

    def certificate_thumbprint(self) -> str:
        """SHA-1 thumbprint of the app certificate, loading the PFX if needed."""
        if self.config.certificate and self.config.certificate.thumbprint:
            return self.config.certificate.thumbprint
        if self._app is None:
            self._app = self._confidential_app()
        return self.thumbprint.upper()

    def _acquire_certificate_token(self, scope: str) -> str:
        """Acquire token using certificate-based client credentials."""
        if self._app is None:
            self._app = self._confidential_app()

        logger.info(f"Requesting app-only token for {scope}")
        result = self._app.acquire_token_for_client(scopes=[scope])

        if "access_token" in result:
            return result["access_token"]
        error = result.get("error_description", result.get("error", "Unknown"))
        raise AuthenticationError(f"Certificate auth failed for {scope}: {error}")

    def _acquire_delegated_token(self, scope: str) -> str:
        """Acquire token using delegated (device code) flow, silently when possible."""
        deleg_config = self.config.delegated
        if not deleg_config:
            raise AuthenticationError("Delegated auth config not provided.")

        if self._app is None:
            self._app = msal.PublicClientApplication(
                client_id=deleg_config.client_id,
                authority=f"https://login.microsoftonline.com/{deleg_config.tenant_id}",
            )

        accounts = self._app.get_accounts()
        if accounts:
            result = self._app.acquire_token_silent([scope], account=accounts[0])
            if result and "access_token" in result:
                return result["access_token"]

        logger.info("Initiating device code authentication flow...")
        flow = self._app.initiate_device_flow(scopes=[scope])
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Device code flow failed: {flow.get('error_description', 'Unknown')}"
            )

        print(f"\n{'='*60}")
        print(f"  To sign in, open: {flow['verification_uri']}")
        print(f"  Enter code: {flow['user_code']}")
        print(f"{'='*60}\n")

        result = self._app.acquire_token_by_device_flow(flow)

        if "access_token" in result:
            return result["access_token"]
        error = result.get("error_description", result.get("error", "Unknown"))
        raise AuthenticationError(f"Delegated auth failed: {error}")

    @staticmethod
    def list_required_permissions() -> dict[str, str]:
        """Return the map of API permissions the deployers use."""
        return REQUIRED_PERMISSIONS
