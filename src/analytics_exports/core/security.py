"""Signed, time-limited download tokens.

Uses PyJWT.  A token names the job it grants access to and expires when the
job's download window closes.
"""

import uuid
from datetime import datetime

import jwt

DOWNLOAD_TOKEN_TYPE = "download"


class InvalidDownloadTokenError(Exception):
    """Raised when a download token is malformed, forged, or for another job."""


def create_download_token(
    job_id: uuid.UUID,
    owner_id: str,
    expires_at: datetime,
    secret_key: str,
    algorithm: str = "HS256",
) -> str:
    """Create a signed download token.

    Args:
        job_id: The job whose artifact may be downloaded.
        owner_id: Owner of the job.
        expires_at: Expiry of the token (the job's download expiry).
        secret_key: Secret key for signing.
        algorithm: JWT signing algorithm.

    Returns:
        The encoded JWT string.
    """
    payload = {
        "sub": str(job_id),
        "owner": owner_id,
        "exp": expires_at,
        "type": DOWNLOAD_TOKEN_TYPE,
    }
    return jwt.encode(payload, secret_key, algorithm=algorithm)


def decode_download_token(token: str, job_id: uuid.UUID, secret_key: str, algorithm: str = "HS256") -> dict:
    """Decode and validate a download token for one job.

    Args:
        token: The encoded JWT string.
        job_id: The job being downloaded.
        secret_key: Secret key for verification.
        algorithm: JWT signing algorithm.

    Returns:
        The decoded token payload.

    Raises:
        jwt.ExpiredSignatureError: If the token has expired.
        InvalidDownloadTokenError: If the token is invalid or for another job.
    """
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
    except jwt.ExpiredSignatureError:
        raise
    except jwt.InvalidTokenError as exc:
        msg = "Invalid download token"
        raise InvalidDownloadTokenError(msg) from exc
    if payload.get("type") != DOWNLOAD_TOKEN_TYPE or payload.get("sub") != str(job_id):
        msg = "Download token does not grant access to this export"
        raise InvalidDownloadTokenError(msg)
    return payload
