"""Dotted version comparison used to order release branches."""

import functools


def _parse(part: str) -> int:
    # Non-numeric components count as 0 rather than failing.
    try:
        return int(part)
    except ValueError:
        return 0


def compare_versions(v1: str, v2: str) -> int:
    """Compare two version strings such as ``"1.2.3"`` and ``"1.10.0"``.

    Returns -1 if *v1* sorts before *v2*, 1 if after, and 0 if equal.
    Components are compared as integers, left to right.  When one version
    is a prefix of the other, the shorter one sorts first.
    """
    p1 = v1.split(".")
    p2 = v2.split(".")
    for a, b in zip(p1, p2):
        n1, n2 = _parse(a), _parse(b)
        if n1 < n2:
            return -1
        if n1 > n2:
            return 1
    if len(p1) < len(p2):
        return -1
    if len(p1) > len(p2):
        return 1
    return 0


version_key = functools.cmp_to_key(compare_versions)
