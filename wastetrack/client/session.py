"""
Client session state.

The session is one immutable value moved along by ``reduce(state, event)``:

    anonymous -> authenticating -> authenticated(profile) -> expired
                      |                   ^                    |
                      |                   +---- token refreshed-+
                      +-> anonymous (sign-in failed)

Starting a sign-in from any state drops the previous identity. Expiry keeps
the refresh token so the session can be renewed. Signing out returns to
``anonymous`` from anywhere. Events that make no sense in the current state
leave it unchanged.
"""
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Union


class SessionStatus(str, Enum):
    anonymous = "anonymous"
    authenticating = "authenticating"
    authenticated = "authenticated"
    expired = "expired"


@dataclass(frozen=True)
class SessionState:
    status: SessionStatus = SessionStatus.anonymous
    profile: Optional[dict] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.authenticated and self.access_token is not None

    @property
    def role(self) -> Optional[str]:
        return self.profile.get("role") if self.profile else None

    @property
    def company_id(self) -> Optional[str]:
        return self.profile.get("company_id") if self.profile else None


@dataclass(frozen=True)
class SignInStarted:
    email: str


@dataclass(frozen=True)
class SignInSucceeded:
    profile: dict
    access_token: str
    refresh_token: Optional[str] = None


@dataclass(frozen=True)
class SignInFailed:
    error: str


@dataclass(frozen=True)
class TokenRefreshed:
    access_token: str
    refresh_token: Optional[str] = None


@dataclass(frozen=True)
class ProfileLoaded:
    profile: dict


@dataclass(frozen=True)
class SessionExpired:
    pass


@dataclass(frozen=True)
class SignedOut:
    pass


SessionEvent = Union[
    SignInStarted, SignInSucceeded, SignInFailed, TokenRefreshed, ProfileLoaded, SessionExpired, SignedOut
]

ANONYMOUS = SessionState()


def reduce(state: SessionState, event: SessionEvent) -> SessionState:
    status = state.status
    if isinstance(event, SignedOut):
        return ANONYMOUS
    if isinstance(event, SignInStarted):
        return SessionState(status=SessionStatus.authenticating)
    if isinstance(event, SignInSucceeded):
        if status is SessionStatus.authenticating:
            return SessionState(
                status=SessionStatus.authenticated,
                profile=dict(event.profile),
                access_token=event.access_token,
                refresh_token=event.refresh_token,
            )
        return state
    if isinstance(event, SignInFailed):
        if status is SessionStatus.authenticating:
            return SessionState(status=SessionStatus.anonymous, error=event.error)
        return state
    if isinstance(event, TokenRefreshed):
        if status in (SessionStatus.authenticated, SessionStatus.expired) and state.profile is not None:
            return replace(state, status=SessionStatus.authenticated, access_token=event.access_token,
                           refresh_token=event.refresh_token or state.refresh_token, error=None)
        return state
    if isinstance(event, ProfileLoaded):
        if status is SessionStatus.authenticated:
            return replace(state, profile=dict(event.profile))
        return state
    if isinstance(event, SessionExpired):
        if status is SessionStatus.authenticated:
            return SessionState(status=SessionStatus.expired, profile=state.profile,
                                refresh_token=state.refresh_token, error="Session expired")
        return state
    raise TypeError(f"Unknown session event {event!r}")
