# personas/
# 分析员与高管人设的发现与加载。 / Analyst & executive persona discovery and loading.

from readerpanel.personas.loader import (
    PersonaLoader,
    default_executives,
    default_readers,
    parse_frontmatter,
)

__all__ = [
    "PersonaLoader",
    "default_executives",
    "default_readers",
    "parse_frontmatter",
]
