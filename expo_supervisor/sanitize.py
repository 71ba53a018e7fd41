"""
Argument sanitization for child process commands.

Commands are always spawned without a shell; stripping shell metacharacters
here is a second layer against argument injection, not a content filter.
"""

import re
from dataclasses import dataclass, field

# Characters removed from every command token
DANGEROUS_CHARS = re.compile(r"[;|&`()<>$\n\r]")

# Allowed characters for package names (npm scopes included)
PACKAGE_NAME_PATTERN = re.compile(r"[@a-z0-9\-_/]+", re.IGNORECASE)


@dataclass
class PackageNames:
    """Package names split by validity, input order preserved."""

    valid: list[str] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)


def sanitize_command(command: list[str]) -> list[str]:
    """Strip shell metacharacters from each token."""
    return [DANGEROUS_CHARS.sub("", token) for token in command]


def validate_package_name(name: str) -> bool:
    return bool(PACKAGE_NAME_PATTERN.fullmatch(name))


def sanitize_package_names(names: list[str]) -> PackageNames:
    """Partition package names into valid and invalid ones."""
    result = PackageNames()
    for name in names:
        if validate_package_name(name):
            result.valid.append(name)
        else:
            result.invalid.append(name)
    return result
