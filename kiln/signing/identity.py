import logging

import requests
from pydantic import SecretStr

from kiln.config.environment import BuildEnvironment
from kiln.const import SIGSTORE_OIDC_AUDIENCE
from kiln.error import KilnSigningError
from kiln.settings import SETTINGS

log = logging.getLogger(__name__)


def request_github_actions_id_token(
    environment: BuildEnvironment,
    audience: str = SIGSTORE_OIDC_AUDIENCE,
    session: requests.Session | None = None,
) -> SecretStr:
    """Request a short-lived OIDC identity token from the GitHub Actions token service.

    Requires the workflow to grant ``id-token: write``, which exposes the request URL and bearer token to the job.

    :raises KilnSigningError: If the token service is not available or does not return a token.
    """
    if not environment.can_request_identity_token:
        raise KilnSigningError(
            "GitHub Actions OIDC token is not available. Grant the workflow 'id-token: write' permission."
        )

    url = environment.actions_id_token_request_url
    url += ("&" if "?" in url else "?") + f"audience={audience}"
    headers = {"Authorization": f"bearer {environment.actions_id_token_request_token.get_secret_value()}"}
    log.debug("Requesting GitHub Actions OIDC token")
    try:
        response = (session or requests).get(url, headers=headers, timeout=SETTINGS.http_timeout)
        response.raise_for_status()
        value = response.json().get("value")
    except (requests.RequestException, ValueError) as e:
        raise KilnSigningError(f"Failed to obtain GitHub Actions OIDC token: {e}") from e
    if not value:
        raise KilnSigningError("GitHub Actions OIDC token response did not contain a token")
    return SecretStr(value)
