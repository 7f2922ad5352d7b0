"""Generation config resolution, generator capability and sessions."""

from bindsync.generate.canonicalize import canonicalize, check_deterministic
from bindsync.generate.generator import (
    BindgenGenerator,
    BindingGenerator,
    CommandGenerator,
    get_generator,
    register_generator,
)
from bindsync.generate.rules import DEFAULT_RULES, PlatformRule, load_rules, resolve_config
from bindsync.generate.session import GenerationSession

__all__ = [
    "BindgenGenerator",
    "BindingGenerator",
    "CommandGenerator",
    "DEFAULT_RULES",
    "GenerationSession",
    "PlatformRule",
    "canonicalize",
    "check_deterministic",
    "get_generator",
    "load_rules",
    "register_generator",
    "resolve_config",
]
