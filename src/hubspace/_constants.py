"""Internal constants extracted from the Hubspace Android app."""

from __future__ import annotations

from pathlib import Path

# Keycloak realm used by the Hubspace app
IDP_BASE = "https://accounts.hubspaceconnect.com/auth/realms/thd"
AUTH_URL = f"{IDP_BASE}/protocol/openid-connect/auth"
LOGIN_URL = f"{IDP_BASE}/login-actions/authenticate"
TOKEN_URL = f"{IDP_BASE}/protocol/openid-connect/token"

CLIENT_ID = "hubspace_android"
REDIRECT_URI = "hubspace-app://loginredirect"

# Fixed PKCE pair shipped in the app
CODE_CHALLENGE = "-mOIrXE66x4ozP_s8wYn_l5ov1e8hzQGVoObDtti20c"
CODE_VERIFIER = (
    "s27y9Tyc-s-XkNlhY_0KBaA7DDgirvHhoJM6TA8ZPRcjaA4ApKPF.5bIQogmUD.E5M_fWpW_M~eVNR_"
    "hxBMWE5oncrKo2cI-qp9U8wloSu9ERL60dAqBu9IKeUawNDFi"
)

AUTH_SCOPE = "openid offline_access"
REFRESH_SCOPE = "openid email offline_access profile"

API_BASE = "https://api2.afero.net/v1"
# The metadevice endpoints are only routed when the semantics host is requested.
API_HOST = "semantics2.afero.net"

DEVICE_TYPE_ID = "metadevice.device"

CRED_DIR = Path.home() / ".config" / "hubspace"
CRED_FILE = CRED_DIR / "credentials.json"
