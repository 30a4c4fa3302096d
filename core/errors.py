"""Error taxonomy shared by importers, the exporter and the credential manager.

Every error carries the service it came from and, when there was one, the
HTTP status that caused it, so a caller can render a useful message without
digging into the exception chain.
"""

from __future__ import annotations


class TransferError(Exception):
    """Base class for everything the transfer engine raises on purpose."""

    default_detail = "Playlist transfer failed"

    def __init__(
        self,
        detail: str | None = None,
        *,
        service: str | None = None,
        status_code: int | None = None,
    ):
        self.detail = detail or self.default_detail
        self.service = service
        self.status_code = status_code
        super().__init__(self._format())

    def _format(self) -> str:
        prefix = self.service.capitalize() if self.service else ""
        if self.status_code is not None:
            prefix = f"{prefix} error {self.status_code}".strip()
        return f"{prefix}: {self.detail}" if prefix else self.detail


# ---------------------------------------------------------------------------
# Input references
# ---------------------------------------------------------------------------

class InvalidIdentifier(TransferError):
    default_detail = "Invalid playlist reference"


class NotAPlaylistURL(InvalidIdentifier):
    default_detail = "This does not appear to be a playlist URL"


class EmptyResult(TransferError):
    default_detail = "No valid tracks found"


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

class Unauthorized(TransferError):
    default_detail = "Authorization failed"


class AuthError(Unauthorized):
    """Credential lifecycle failures (signed out, refresh, interactive flow)."""


class SignedOut(AuthError):
    default_detail = "Not signed in"


class SessionInProgress(AuthError):
    default_detail = "A sign-in session is already in progress"


class InvalidCallback(AuthError):
    default_detail = "Authorization callback did not contain a code"


class RefreshFailed(AuthError):
    default_detail = "Token refresh failed, sign in again"


class AuthorizationFailed(AuthError):
    default_detail = "Interactive authorization failed"


# ---------------------------------------------------------------------------
# Remote calls
# ---------------------------------------------------------------------------

class NotFound(TransferError):
    default_detail = "Not found"


class NetworkFailure(TransferError):
    default_detail = "Network request failed"


class DecodeFailure(TransferError):
    default_detail = "Response did not match the expected schema"


class PlaylistCreationFailed(TransferError):
    default_detail = "Couldn't create playlist"


class AddTracksFailed(TransferError):
    default_detail = "Couldn't add tracks to the playlist"
