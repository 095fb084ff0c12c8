"""
Authorization endpoint and login flow.
GET /authorize: validate the request, show the login form.
POST /auth/login: check credentials with the identity store, issue a code, redirect.
"""
import html
import logging
from typing import Annotated
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from gateway_auth.audit import (
    EVENT_CODE_ISSUED,
    EVENT_LOGIN_FAIL,
    EVENT_LOGIN_OK,
    OUTCOME_FAIL,
    OUTCOME_SUCCESS,
    get_client_ip,
    log_audit,
)
from gateway_auth.domain import Client, parse_scope
from gateway_auth.errors import AuthenticationFailure, IdentityServiceError
from gateway_auth.identity import IdentityVerifier, get_identity_verifier
from gateway_auth.pkce import is_valid_challenge
from gateway_auth.provider import OAuthProvider, get_provider
from gateway_auth.rate_limit import login_limiter

logger = logging.getLogger(__name__)
router = APIRouter()

LOGIN_PATH = "/auth/login"
MSG_INVALID_CREDENTIALS = "Invalid username or password."
MSG_AUTH_UNAVAILABLE = "Authentication failed. Please try again."
MSG_MISSING_PARAMS = "Missing required parameters."
MSG_INVALID_CHALLENGE = "Invalid code_challenge."


def _with_query(uri: str, params: dict[str, str]) -> str:
    """Append params to uri, keeping any query it already has."""
    parts = urlsplit(uri)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def _redirect_error(redirect_uri: str, error: str, error_description: str, state: str | None) -> RedirectResponse:
    params = {"error": error, "error_description": error_description}
    if state:
        params["state"] = state
    return RedirectResponse(url=_with_query(redirect_uri, params), status_code=302)


def _bad_request(message: str) -> HTMLResponse:
    return HTMLResponse(f"<h1>Invalid request</h1><p>{html.escape(message)}</p>", status_code=400)


def render_login_form(
    *,
    client_id: str,
    redirect_uri: str,
    code_challenge: str,
    state: str | None = None,
    scope: str | None = None,
    client_name: str | None = None,
    username: str | None = None,
    error: str | None = None,
) -> str:
    """Login page carrying the authorization request as hidden fields (all values escaped)."""

    def e(s: str | None) -> str:
        return html.escape(s or "")

    requester = f"<strong>{e(client_name)}</strong> is requesting access." if client_name else "An application is requesting access."
    error_html = f'<p class="error">{e(error)}</p>' if error else ""
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Sign in</title>
  <style>
    body {{ font-family: system-ui, sans-serif; background: #f4f6f8; display: flex; justify-content: center; margin: 3rem 1rem; }}
    .card {{ background: #fff; border-radius: 8px; box-shadow: 0 2px 12px rgba(0,0,0,.12); padding: 2rem; max-width: 360px; width: 100%; }}
    label {{ display: block; font-weight: 600; margin-bottom: .25rem; }}
    input[type=text], input[type=password] {{ width: 100%; box-sizing: border-box; padding: .5rem; margin-bottom: 1rem; }}
    .error {{ background: #fdecea; color: #c0392b; padding: .6rem .9rem; border-radius: 4px; }}
  </style>
</head>
<body>
  <div class="card">
  <h1>Sign in</h1>
  <p>{requester}</p>
  {error_html}
  <form method="post" action="{LOGIN_PATH}">
    <input type="hidden" name="client_id" value="{e(client_id)}"/>
    <input type="hidden" name="redirect_uri" value="{e(redirect_uri)}"/>
    <input type="hidden" name="state" value="{e(state)}"/>
    <input type="hidden" name="code_challenge" value="{e(code_challenge)}"/>
    <input type="hidden" name="scope" value="{e(scope)}"/>
    <label for="username">Username</label>
    <input type="text" id="username" name="username" value="{e(username)}" autocomplete="username" required/>
    <label for="password">Password / App password</label>
    <input type="password" id="password" name="password" autocomplete="current-password" required/>
    <button type="submit">Authorize</button>
  </form>
  </div>
</body>
</html>"""


def _resolve_redirect_uri(client: Client, redirect_uri: str | None) -> str | None:
    """Registered redirect URI to use, or None if the request's URI is not allowed."""
    if not redirect_uri:
        return client.redirect_uris[0] if len(client.redirect_uris) == 1 else None
    return redirect_uri if client.redirect_uri_allowed(redirect_uri) else None


@router.get("/authorize", response_class=HTMLResponse)
def authorize_get(
    provider: Annotated[OAuthProvider, Depends(get_provider)],
    response_type: str | None = None,
    client_id: str | None = None,
    redirect_uri: str | None = None,
    scope: str | None = None,
    state: str | None = None,
    code_challenge: str | None = None,
    code_challenge_method: str | None = None,
):
    """
    OAuth2 authorization endpoint (GET).
    Client and redirect_uri problems get a 400 page (never a redirect to an unverified URI);
    everything after that is reported back to the client via redirect.
    """
    if not client_id:
        return _bad_request("client_id is required.")
    client = provider.clients.get_client(client_id)
    if client is None:
        return _bad_request("Unknown client_id.")

    target = _resolve_redirect_uri(client, redirect_uri)
    if target is None:
        return _bad_request("redirect_uri not allowed.")

    if response_type != "code":
        return _redirect_error(target, "unsupported_response_type", "response_type must be 'code'", state)
    if not code_challenge:
        return _redirect_error(target, "invalid_request", "code_challenge is required", state)
    if not is_valid_challenge(code_challenge):
        return _redirect_error(target, "invalid_request", "code_challenge must be 43-128 unreserved characters", state)
    if (code_challenge_method or "S256") != "S256":
        return _redirect_error(target, "invalid_request", "code_challenge_method must be S256", state)

    body = render_login_form(
        client_id=client.client_id,
        redirect_uri=target,
        code_challenge=code_challenge,
        state=state,
        scope=" ".join(parse_scope(scope)),
        client_name=client.client_name,
    )
    return HTMLResponse(body)


@router.post(LOGIN_PATH)
def login(
    request: Request,
    provider: Annotated[OAuthProvider, Depends(get_provider)],
    verifier: Annotated[IdentityVerifier | None, Depends(get_identity_verifier)],
    username: str | None = Form(None),
    password: str | None = Form(None),
    client_id: str | None = Form(None),
    redirect_uri: str | None = Form(None),
    state: str | None = Form(None),
    code_challenge: str | None = Form(None),
    scope: str | None = Form(None),
):
    """
    Process login. On success: issue an authorization code and redirect to
    redirect_uri?code=...&state=... On failure: show the form again with a generic error.
    """
    ip = get_client_ip(request)
    allowed, retry_after = login_limiter.check_and_consume(ip)
    if not allowed:
        logger.warning("Login rate limit exceeded for ip=%s", ip)
        return HTMLResponse(
            "<h1>Too many requests</h1><p>Please wait and try again.</p>",
            status_code=429,
            headers={"Retry-After": str(retry_after)},
        )

    form_args = {
        "client_id": client_id or "",
        "redirect_uri": redirect_uri or "",
        "code_challenge": code_challenge or "",
        "state": state,
        "scope": scope,
    }
    if not (username and password and client_id and redirect_uri and code_challenge):
        return HTMLResponse(render_login_form(**form_args, error=MSG_MISSING_PARAMS), status_code=400)
    if not is_valid_challenge(code_challenge):
        form_args["code_challenge"] = ""
        return HTMLResponse(render_login_form(**form_args, error=MSG_INVALID_CHALLENGE), status_code=400)

    client = provider.clients.get_client(client_id)
    if client is None or not client.redirect_uri_allowed(redirect_uri):
        return _bad_request("Unknown client or redirect_uri not allowed.")
    form_args["client_name"] = client.client_name

    if verifier is None:
        logger.error("Login attempted but NEXTCLOUD_URL is not configured")
        return HTMLResponse("<h1>Server configuration error</h1>", status_code=500)

    try:
        subject = verifier.verify(username, password)
    except AuthenticationFailure:
        log_audit(EVENT_LOGIN_FAIL, client_id=client_id, ip=ip, outcome=OUTCOME_FAIL, reason="credentials rejected")
        return HTMLResponse(
            render_login_form(**form_args, username=username, error=MSG_INVALID_CREDENTIALS),
            status_code=401,
        )
    except IdentityServiceError as e:
        log_audit(EVENT_LOGIN_FAIL, client_id=client_id, ip=ip, outcome=OUTCOME_FAIL, reason=f"identity store error: {e}")
        return HTMLResponse(
            render_login_form(**form_args, username=username, error=MSG_AUTH_UNAVAILABLE),
            status_code=502,
        )

    log_audit(EVENT_LOGIN_OK, client_id=client_id, subject=subject, ip=ip, outcome=OUTCOME_SUCCESS)
    code = provider.issue_auth_code(
        pkce_challenge=code_challenge,
        client_id=client_id,
        scopes=parse_scope(scope),
        redirect_uri=redirect_uri,
        subject=subject,
        state=state,
    )
    log_audit(EVENT_CODE_ISSUED, client_id=client_id, subject=subject, ip=ip, outcome=OUTCOME_SUCCESS)

    params = {"code": code}
    if state:
        params["state"] = state
    return RedirectResponse(url=_with_query(redirect_uri, params), status_code=302)
