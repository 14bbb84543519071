"""Validate the role table and print each role's closure: python3 -m roleguard"""

import logging
import sys

from roleguard.core.registry import default_registry
from roleguard.core.resolver import RoleResolver
from roleguard.exceptions import RegistryError
from roleguard.logging_config import log_startup_info, setup_logging
from roleguard.rbac import Role


def main() -> int:
    setup_logging()
    logger = logging.getLogger("roleguard")
    try:
        registry = default_registry()
    except RegistryError as exc:
        logger.error("Role registry is invalid: %s", exc.message)
        return 1

    log_startup_info(registry)
    resolver = RoleResolver(registry)
    for role in Role:
        closure = sorted(r.value for r in resolver.expand(role))
        print(f"{role.value}: {', '.join(closure)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
