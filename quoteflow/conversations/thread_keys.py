"""Thread-identity keys for inbound emails.

An email is matched to its conversation through a key derived from whatever
threading metadata the mail provider forwarded. The most explicit identifier
wins; the subject line is the last resort, so two unrelated emails sharing a
subject collapse onto one key.
"""

from __future__ import annotations

_FNV_OFFSET_BASIS = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF


def fnv1a_64(value: str) -> str:
    """Return the 64-bit FNV-1a hash of ``value`` as 16 lowercase hex digits."""

    digest = _FNV_OFFSET_BASIS
    for byte in value.encode("utf-8"):
        digest ^= byte
        digest = (digest * _FNV_PRIME) & _MASK_64
    return f"{digest:016x}"


def _present(value: str | None) -> bool:
    return value is not None and value != ""


def resolve_thread_key(
    message_id: str | None = None,
    provider_thread_id: str | None = None,
    conversation_id: str | None = None,
    in_reply_to: str | None = None,
    subject: str | None = None,
) -> str:
    """Derive the thread-identity key for an inbound email.

    Precedence, first non-empty input wins:

    1. ``THREAD_<provider_thread_id>``
    2. ``CONV_<conversation_id>``
    3. ``REPLY_<hash(in_reply_to)>``
    4. ``MSG_<hash(message_id)>``
    5. ``SUBJ_<hash(subject)>``, with a missing subject hashed as ``""``

    The function is pure: identical inputs always yield the identical key.
    """

    if _present(provider_thread_id):
        return f"THREAD_{provider_thread_id}"
    if _present(conversation_id):
        return f"CONV_{conversation_id}"
    if _present(in_reply_to):
        return f"REPLY_{fnv1a_64(in_reply_to)}"
    if _present(message_id):
        return f"MSG_{fnv1a_64(message_id)}"
    return f"SUBJ_{fnv1a_64(subject or '')}"


def message_fingerprint(thread_key: str, subject: str | None, body: str | None) -> str:
    """Stable replay key for emails delivered without a message id."""

    return f"FP_{fnv1a_64(thread_key + chr(0) + (subject or '') + chr(0) + (body or ''))}"


__all__ = ["fnv1a_64", "message_fingerprint", "resolve_thread_key"]
