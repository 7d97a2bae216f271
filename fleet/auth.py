"""Token hand-off between the marketing site and the main app."""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

TOKEN_PARAM = "auth_token"
REDIRECT_PARAM = "redirect"
TOKEN_KEY = "auth_token"


@dataclass
class AuthHandoff:
    """Outcome of reading the hand-off parameters on arrival."""

    clean_url: str
    token: Optional[str] = None
    redirect: Optional[str] = None
    login_url: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.token is not None


def _with_query(url: str, params: dict, fragment: Optional[str] = None) -> str:
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query) if k not in params]
    query.extend((k, v) for k, v in params.items() if v is not None)
    path = parts.path or "/"
    return urlunsplit((
        parts.scheme,
        parts.netloc,
        path,
        urlencode(query),
        parts.fragment if fragment is None else fragment,
    ))


def build_main_app_url(
    main_app_url: str, token: Optional[str] = None, redirect: str = "/"
) -> str:
    """
    URL the marketing site sends a signed-in user to:
    <MAIN_APP_URL>/?auth_token=<token>&redirect=<path>

    The redirect is left out for the root path.
    """
    return _with_query(
        main_app_url,
        {
            TOKEN_PARAM: token,
            REDIRECT_PARAM: redirect if redirect and redirect != "/" else None,
        },
    )


def build_login_url(marketing_url: str, return_url: Optional[str] = None) -> str:
    """The marketing site's login page, optionally with a return_url."""
    base = marketing_url.rstrip("/") + "/"
    return _with_query(base, {"return_url": return_url}, fragment="/login")


def consume_auth_params(url: str, storage, marketing_url: str) -> AuthHandoff:
    """
    Read the hand-off parameters from the URL the main app was opened with.

    A token in the query is stored under auth_token and both parameters
    are stripped from the URL. Without a token in the URL or in storage the
    result carries the login URL to send the user to.
    """
    parts = urlsplit(url)
    params = dict(parse_qsl(parts.query))
    token = params.get(TOKEN_PARAM)
    redirect = params.get(REDIRECT_PARAM)

    if token:
        storage.set_item(TOKEN_KEY, token)
        logger.debug("Stored auth token from hand-off URL")
        remaining = [
            (k, v) for k, v in parse_qsl(parts.query)
            if k not in (TOKEN_PARAM, REDIRECT_PARAM)
        ]
        url = urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(remaining),
                          parts.fragment))

    stored = storage.get_item(TOKEN_KEY)
    if not stored:
        return AuthHandoff(
            clean_url=url,
            login_url=build_login_url(marketing_url, return_url=parts.path or "/"),
        )
    return AuthHandoff(
        clean_url=url,
        token=stored,
        redirect=redirect if redirect and redirect != "/" else None,
    )
