"""Image keyword resolution."""

from aiwriter.resolver.image_resolver import ImageResolver, pick_variant

__all__ = ["ImageResolver", "pick_variant"]
