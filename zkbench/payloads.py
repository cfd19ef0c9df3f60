"""
Request payload helpers shared by the preflight and every load generator.

Provides the synthetic registration identity that the ``/register``
endpoint expects and a tolerant JSON accessor for responses that may not
carry a JSON body (5xx pages, proxies, timeouts).  Keeping both in one
module means the preflight, the sweep and the staged engine all generate
identical traffic.

Key Concepts Demonstrated:
- Collision-free identity generation using timestamp + random suffix
- Faker-generated personal attributes so the server hashes varied inputs
- Defensive JSON parsing that never raises into a load worker
"""

from __future__ import annotations

import random
import string
import time
from datetime import date
from typing import Any

from faker import Faker

# One shared generator: constructing Faker is far more expensive than
# drawing values from it.
_fake = Faker()


def safe_json(response: Any) -> dict[str, Any]:
    """
    Return response JSON as dict, or an empty dict if parsing fails.

    Args:
        response: A ``requests``/Locust ``Response`` object.

    Returns:
        The parsed JSON body as a dictionary, or ``{}`` if parsing fails
        or the top-level value is not a dict.
    """
    try:
        data = response.json()
    except ValueError:
        return {}

    if isinstance(data, dict):
        return data
    return {}


def unique_email() -> str:
    """
    Generate an email address that is unique across workers and runs.

    Combines a millisecond timestamp with a short random suffix so that
    concurrent workers (or back-to-back runs) never register the same
    identity twice.
    """
    ts = int(time.time() * 1000)
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=8))
    return f"user-{ts}-{suffix}@example.com"


def age_on(dob: date, today: date) -> int:
    """Return the age in whole years of someone born on *dob* at *today*."""
    had_birthday = (today.month, today.day) >= (dob.month, dob.day)
    return today.year - dob.year - (0 if had_birthday else 1)


def build_user() -> dict[str, Any]:
    """
    Build a fresh ``/register`` payload with synthetic personal attributes.

    Returns:
        A JSON-serialisable dictionary with ``email``, ``name``, ``age``,
        ``country`` (ISO-3166 alpha-2) and ``dob`` (``YYYY-MM-DD``).
        ``age`` is derived from ``dob`` so the two never disagree.
    """
    dob = _fake.date_of_birth(minimum_age=18, maximum_age=90)
    return {
        "email": unique_email(),
        "name": _fake.name(),
        "age": age_on(dob, date.today()),
        "country": _fake.country_code(),
        "dob": dob.isoformat(),
    }
