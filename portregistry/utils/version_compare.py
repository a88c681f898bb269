"""RPM-style version comparison.

Version and revision strings are split into alternating runs of digits and
letters; separators (anything that is not an ASCII letter or digit) only
delimit runs. Numeric runs compare by magnitude ("7" < "10"), alphabetic
runs compare character by character, and a numeric run beats an alphabetic
one.

The same function backs the ``VERSION`` SQLite collation, so it must stay
deterministic: changing its results changes the order (and uniqueness) of
rows already written to a registry file.

Alphabetic runs only compare up to the shorter run, so one run that is a
prefix of another compares equal: "1.ab" == "1.abc" and "1.ab" == "1.abd",
yet "1.abc" < "1.abd". The ordering is therefore not transitive. Because
the UNIQUE constraints on ``ports`` go through this collation, whether two
such versions collide can depend on which rows were inserted first.
"""

from functools import cmp_to_key
import string

VERSION_COLLATION = "VERSION"

_DIGITS = frozenset(string.digits)
_LETTERS = frozenset(string.ascii_letters)
_ALNUM = _DIGITS | _LETTERS


def _skip_separators(value: str, pos: int) -> int:
    while pos < len(value) and value[pos] not in _ALNUM:
        pos += 1
    return pos


def _run_end(value: str, pos: int, charset: frozenset) -> int:
    while pos < len(value) and value[pos] in charset:
        pos += 1
    return pos


def _strip_zeros(value: str, pos: int, end: int) -> int:
    while pos < end and value[pos] == "0":
        pos += 1
    return pos


def compare(a: str, b: str) -> int:
    """Compare two version strings.

    Returns -1 if ``a`` sorts before ``b``, 0 if they are equivalent and 1
    if ``a`` sorts after ``b``.

    Examples:
        >>> compare("1.2.3", "1.2.10")
        -1
        >>> compare("7.1.002", "7.1.000")
        1
        >>> compare("1.0", "1.0.0")
        -1
    """
    if a == b:
        return 0

    pos_a = pos_b = 0
    len_a, len_b = len(a), len(b)

    while pos_a < len_a and pos_b < len_b:
        pos_a = _skip_separators(a, pos_a)
        pos_b = _skip_separators(b, pos_b)

        # An empty segment means the string is exhausted
        if pos_a == len_a or pos_b == len_b:
            break

        char_a, char_b = a[pos_a], b[pos_b]

        # Digit segments beat anything else (RedHat compatibility rule)
        if char_a in _DIGITS and char_b not in _DIGITS:
            return 1
        if char_a in _LETTERS and char_b in _DIGITS:
            return -1

        if char_a in _LETTERS:
            end_a = _run_end(a, pos_a, _LETTERS)
            end_b = _run_end(b, pos_b, _LETTERS)
        else:
            end_a = _run_end(a, pos_a, _DIGITS)
            end_b = _run_end(b, pos_b, _DIGITS)

            pos_a = _strip_zeros(a, pos_a, end_a)
            pos_b = _strip_zeros(b, pos_b, end_b)

            count_a = end_a - pos_a
            count_b = end_b - pos_b
            if count_a > count_b:
                return 1
            if count_b > count_a:
                return -1

        # Character-wise comparison up to the shorter segment
        while pos_a < end_a and pos_b < end_b:
            if a[pos_a] != b[pos_b]:
                return 1 if a[pos_a] > b[pos_b] else -1
            pos_a += 1
            pos_b += 1

        pos_a, pos_b = end_a, end_b

    if pos_a >= len_a and pos_b >= len_b:
        return 0
    return 1 if pos_a < len_a else -1


version_key = cmp_to_key(compare)


def sort_versions(versions, reverse: bool = False) -> list[str]:
    """Return ``versions`` sorted with :func:`compare`."""
    return sorted(versions, key=version_key, reverse=reverse)
