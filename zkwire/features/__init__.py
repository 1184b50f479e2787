from .multi import CheckWriter, MultiReader, MultiWriter

__all__ = ["CheckWriter", "MultiReader", "MultiWriter"]
